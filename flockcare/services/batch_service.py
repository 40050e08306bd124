"""Batch registry service: enrollment, lookup and closing of batches."""

import logging
from datetime import UTC, date, datetime

from flockcare.core import db_client
from flockcare.core.config import Constants
from flockcare.core.errors import BatchNotFoundError, CallerError
from flockcare.core.logging import span
from flockcare.domain.batch import Batch, BatchStatus
from flockcare.schedule.day_age import to_calendar_date


logger = logging.getLogger(__name__)


async def get_batch(*, batch_id: str) -> Batch:
    """Fetch a batch by ID.

    Raises:
        CallerError: If batch_id is empty
        BatchNotFoundError: If no batch has this ID
    """
    with span("batch_service.get_batch"):
        if not batch_id:
            msg = "batchId is required"
            raise CallerError(msg)

        try:
            record = await db_client.get_record(collection="batches", record_id=batch_id)
        except db_client.RecordNotFoundError as e:
            msg = f"Batch {batch_id} not found"
            raise BatchNotFoundError(msg) from e

        return Batch.model_validate(record)


async def list_active_batches() -> list[Batch]:
    """List all active batches, oldest enrollment first."""
    with span("batch_service.list_active_batches"):
        records = await db_client.list_records(
            collection="batches",
            per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
            filter_query=f'status = "{BatchStatus.ACTIVE}"',
            sort="+entry_date",
        )
        return [Batch.model_validate(record) for record in records]


async def enroll_batch(*, batch_number: str, entry_date: date | datetime | str) -> Batch:
    """Enroll a new batch; its entry date becomes day 1.

    Raises:
        CallerError: If batch_number is empty or entry_date is not a date
    """
    with span("batch_service.enroll_batch"):
        if not batch_number or not batch_number.strip():
            msg = "batchNumber is required"
            raise CallerError(msg)

        try:
            entry_day = to_calendar_date(entry_date)
        except ValueError as e:
            msg = f"Invalid entry date: {entry_date}"
            raise CallerError(msg) from e

        now = datetime.now(UTC).isoformat()
        record = await db_client.create_record(
            collection="batches",
            data={
                "batch_number": batch_number.strip(),
                "entry_date": entry_day.isoformat(),
                "status": BatchStatus.ACTIVE,
                "created": now,
                "updated": now,
            },
        )
        logger.info("Enrolled batch %s (entry %s)", batch_number, entry_day.isoformat())
        return Batch.model_validate(record)


async def close_batch(*, batch_id: str) -> Batch:
    """Close a batch. Closed batches stay readable but accept no new completions.

    Raises:
        CallerError: If batch_id is empty
        BatchNotFoundError: If no batch has this ID
    """
    with span("batch_service.close_batch"):
        batch = await get_batch(batch_id=batch_id)
        if not batch.is_active:
            logger.info("Batch %s already closed", batch_id)
            return batch

        record = await db_client.update_record(
            collection="batches",
            record_id=batch.id,
            data={"status": BatchStatus.CLOSED, "updated": datetime.now(UTC).isoformat()},
        )
        logger.info("Closed batch %s", batch_id)
        return Batch.model_validate(record)
