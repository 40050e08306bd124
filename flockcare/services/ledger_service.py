"""Completion ledger: the authoritative store of task completion facts.

Task instances are never stored; they are materialized from the schedule
template on every read and merged with the ``completions`` collection, which
holds at most one record per (batch_id, instance_id).

Key Concepts:
- Idempotent complete: a second ``complete`` for the same instance succeeds
  with ``already_completed=True`` and leaves the stored record untouched.
- Tombstones: ``uncomplete`` clears a record (``completed = false``,
  ``cleared_at`` set) instead of deleting it; a later ``complete`` reactivates it.
- No internal retry: callers retry, which is safe because complete is idempotent.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, date, datetime
from typing import Any

from dateutil.parser import isoparse
from pydantic import ValidationError

from flockcare.core import db_client
from flockcare.core.config import Constants, settings
from flockcare.core.errors import CallerError, StaleInstanceError
from flockcare.core.logging import log_with_batch_context, span
from flockcare.core.redis_client import redis_client
from flockcare.domain.batch import Batch
from flockcare.domain.task import CompletionRecord, CompletionResult, CompletionStats, TaskInstance
from flockcare.schedule.day_age import day_of_age as compute_day_of_age
from flockcare.schedule.materializer import materialize, materialize_range, resolve
from flockcare.schedule.template import default_template
from flockcare.services import batch_service


logger = logging.getLogger(__name__)

_COLLECTION = "completions"
_CACHE_KEY_PREFIX = f"flockcare:{Constants.HISTORY_CACHE_KEY_PREFIX}"

_completion_locks: dict[tuple[int, str, str], asyncio.Lock] = {}
_completion_lock_users: dict[tuple[int, str, str], int] = {}


@asynccontextmanager
async def _completion_lock(batch_id: str, instance_id: str) -> AsyncIterator[None]:
    """Per-instance lock serializing read-then-write in this process, scoped to the running loop.

    The lock is dropped once no writer holds or awaits it.
    """
    key = (id(asyncio.get_running_loop()), batch_id, instance_id)
    lock = _completion_locks.setdefault(key, asyncio.Lock())
    _completion_lock_users[key] = _completion_lock_users.get(key, 0) + 1
    try:
        async with lock:
            yield
    finally:
        _completion_lock_users[key] -= 1
        if not _completion_lock_users[key]:
            del _completion_lock_users[key]
            del _completion_locks[key]


def _require(value: str | None, name: str) -> str:
    if not value or not str(value).strip():
        msg = f"{name} is required"
        raise CallerError(msg)
    return str(value)


def _to_timestamp(value: datetime | str | None) -> datetime:
    if value is None:
        return datetime.now(UTC)
    if isinstance(value, str):
        try:
            return isoparse(value)
        except ValueError as e:
            msg = f"Invalid completedAt timestamp: {value}"
            raise CallerError(msg) from e
    return value


def _to_record(raw: dict[str, Any]) -> CompletionRecord:
    return CompletionRecord.model_validate({**raw, "completed": bool(raw.get("completed"))})


def _batch_filter(batch_id: str) -> str:
    return f'batch_id = "{db_client.sanitize_param(batch_id)}"'


async def _find_record(batch_id: str, instance_id: str) -> CompletionRecord | None:
    raw = await db_client.get_first_record(
        collection=_COLLECTION,
        filter_query=f'{_batch_filter(batch_id)} && instance_id = "{db_client.sanitize_param(instance_id)}"',
    )
    return _to_record(raw) if raw else None


async def _completed_records(batch_id: str, extra_filter: str = "", sort: str = "") -> list[CompletionRecord]:
    filter_query = f'{_batch_filter(batch_id)} && completed = "true"'
    if extra_filter:
        filter_query = f"{filter_query} && {extra_filter}"
    records = await db_client.list_records(
        collection=_COLLECTION,
        per_page=Constants.DEFAULT_PER_PAGE_LIMIT,
        filter_query=filter_query,
        sort=sort,
    )
    return [_to_record(raw) for raw in records]


def _merge(instances: list[TaskInstance], records: list[CompletionRecord]) -> list[TaskInstance]:
    by_instance = {record.instance_id: record for record in records if record.completed}
    merged = []
    for instance in instances:
        record = by_instance.get(instance.instance_id)
        if record is None:
            merged.append(instance)
        else:
            merged.append(
                instance.with_completion(
                    completed=True, completed_at=record.completed_at, completed_by=record.completed_by
                )
            )
    return merged


async def _resolve_for_write(batch_id: str | None, instance_id: str | None) -> tuple[Batch, TaskInstance]:
    batch_id = _require(batch_id, "batchId")
    instance_id = _require(instance_id, "instanceId")
    batch = await batch_service.get_batch(batch_id=batch_id)

    instance = resolve(batch, instance_id)
    if instance is None:
        msg = f"Task instance {instance_id} is not part of the current schedule"
        raise StaleInstanceError(msg)
    return batch, instance


async def invalidate_history_cache(batch_id: str) -> None:
    """Drop every cached history page of a batch. Failures are logged, never raised."""
    try:
        keys = await redis_client.keys(f"{_CACHE_KEY_PREFIX}:{batch_id}:*")
        if keys:
            success = await redis_client.delete_with_retry(*keys)
            if success:
                logger.debug("Invalidated %d history cache entries for batch %s", len(keys), batch_id)
            else:
                logger.warning("Failed to invalidate %d history cache entries, queued for retry", len(keys))
    except Exception as e:
        logger.warning("Failed to invalidate history cache: %s", e)


async def get_todos(*, batch_id: str, day_of_age: int) -> list[TaskInstance]:
    """Instances due on day_of_age with completion state populated; empty when nothing is due.

    Raises:
        CallerError: If batch_id is missing or the batch does not exist
    """
    with span("ledger_service.get_todos"):
        batch = await batch_service.get_batch(batch_id=_require(batch_id, "batchId"))
        instances = materialize(batch, day_of_age)
        if not instances:
            return []

        records = await _completed_records(batch.id, f'day_of_age = "{int(day_of_age)}"')
        return _merge(instances, records)


async def get_upcoming(*, batch_id: str, from_day: int, to_day: int) -> dict[int, list[TaskInstance]]:
    """Instances grouped by day-of-age over [from_day, to_day]; days without tasks are omitted.

    Raises:
        CallerError: If batch_id is missing or the batch does not exist
    """
    with span("ledger_service.get_upcoming"):
        batch = await batch_service.get_batch(batch_id=_require(batch_id, "batchId"))
        grouped = materialize_range(batch, from_day, to_day)
        if not grouped:
            return {}

        records = await _completed_records(
            batch.id, f'day_of_age >= "{int(from_day)}" && day_of_age <= "{int(to_day)}"'
        )
        return {day: _merge(instances, records) for day, instances in grouped.items()}


async def get_history(*, batch_id: str, limit: int | None = None) -> list[TaskInstance]:
    """Completed instances of a batch, most recently completed first.

    Records whose instance no longer resolves against the template are skipped.

    Args:
        batch_id: Batch to read
        limit: Maximum number of instances to return (default: all)

    Raises:
        CallerError: If batch_id is missing, the batch does not exist or limit is negative
    """
    batch_id = _require(batch_id, "batchId")
    if limit is not None and limit < 0:
        msg = f"limit must be >= 0, got {limit}"
        raise CallerError(msg)

    cache_key = f"{_CACHE_KEY_PREFIX}:{batch_id}:{limit if limit is not None else 'all'}"
    try:
        cached_value = await redis_client.get(cache_key)
        if cached_value:
            try:
                history = [TaskInstance.model_validate(item) for item in json.loads(cached_value)]
                logger.debug("Returning cached history for batch %s", batch_id)
                return history
            except (json.JSONDecodeError, ValidationError) as e:
                logger.warning("Failed to deserialize cached history: %s", e)
    except Exception as e:
        logger.warning("Failed to retrieve cached history from Redis: %s", e)

    with span("ledger_service.get_history"):
        batch = await batch_service.get_batch(batch_id=batch_id)
        records = await _completed_records(batch.id, sort="-completed_at")

        history: list[TaskInstance] = []
        for record in records:
            if limit is not None and len(history) >= limit:
                break
            instance = resolve(batch, record.instance_id)
            if instance is None:
                log_with_batch_context(
                    logger,
                    "warning",
                    "Skipping completion of stale instance",
                    batch_id=batch.id,
                    instance_id=record.instance_id,
                )
                continue
            history.append(
                instance.with_completion(
                    completed=True, completed_at=record.completed_at, completed_by=record.completed_by
                )
            )

        try:
            payload = json.dumps([item.model_dump(mode="json") for item in history])
            await redis_client.set(cache_key, payload, settings.history_cache_ttl_seconds)
        except Exception as e:
            logger.warning("Failed to cache history in Redis: %s", e)

        return history


async def complete(
    *,
    batch_id: str,
    instance_id: str,
    completed_by: str | None = None,
    completed_at: datetime | str | None = None,
    notes: str = "",
) -> CompletionResult:
    """Record that an instance was completed. Idempotent.

    Args:
        batch_id: Batch the instance belongs to
        instance_id: Instance to complete
        completed_by: Operator name (default: settings.default_operator_name)
        completed_at: Completion time (default: now)
        notes: Opaque payload from the completion form

    Returns:
        CompletionResult with already_completed=True if a record already existed

    Raises:
        CallerError: Missing IDs, unknown or closed batch, invalid timestamp
        StaleInstanceError: The instance ID does not resolve against the template
    """
    with span("ledger_service.complete"):
        batch, instance = await _resolve_for_write(batch_id, instance_id)
        if not batch.is_active:
            msg = f"Batch {batch.id} is closed"
            raise CallerError(msg)

        stamp = _to_timestamp(completed_at)
        operator = completed_by or settings.default_operator_name
        now = datetime.now(UTC).isoformat()

        async with _completion_lock(batch.id, instance.instance_id):
            existing = await _find_record(batch.id, instance.instance_id)
            if existing is not None and existing.completed:
                log_with_batch_context(
                    logger, "info", "Instance already completed", batch_id=batch.id, instance_id=instance.instance_id
                )
                return CompletionResult(success=True, already_completed=True, message="Already completed")

            data = {
                "completed": True,
                "completed_at": stamp.isoformat(),
                "completed_by": operator,
                "notes": notes,
                "cleared_at": None,
                "updated": now,
            }
            if existing is not None:
                await db_client.update_record(collection=_COLLECTION, record_id=existing.id, data=data)
            else:
                try:
                    await db_client.create_record(
                        collection=_COLLECTION,
                        data={
                            "batch_id": batch.id,
                            "instance_id": instance.instance_id,
                            "definition_id": instance.definition_id,
                            "day_of_age": instance.day_of_age,
                            "created": now,
                            **data,
                        },
                    )
                except db_client.DuplicateRecordError:
                    # Another writer inserted between the lookup and the insert
                    logger.info("Concurrent completion of %s detected", instance.instance_id)
                    return CompletionResult(success=True, already_completed=True, message="Already completed")

        await invalidate_history_cache(batch.id)
        log_with_batch_context(
            logger,
            "info",
            "Completed task instance",
            batch_id=batch.id,
            instance_id=instance.instance_id,
            completed_by=operator,
        )
        return CompletionResult(success=True, message="Completed")


async def uncomplete(*, batch_id: str, instance_id: str) -> CompletionResult:
    """Clear a completion for manual correction. Idempotent; never deletes the record.

    Raises:
        CallerError: Missing IDs or unknown batch
        StaleInstanceError: The instance ID does not resolve against the template
    """
    with span("ledger_service.uncomplete"):
        batch, instance = await _resolve_for_write(batch_id, instance_id)

        async with _completion_lock(batch.id, instance.instance_id):
            existing = await _find_record(batch.id, instance.instance_id)
            if existing is None or not existing.completed:
                return CompletionResult(success=True, message="Not completed")

            now = datetime.now(UTC).isoformat()
            await db_client.update_record(
                collection=_COLLECTION,
                record_id=existing.id,
                data={
                    "completed": False,
                    "completed_at": None,
                    "completed_by": None,
                    "cleared_at": now,
                    "updated": now,
                },
            )

        await invalidate_history_cache(batch.id)
        log_with_batch_context(
            logger, "info", "Cleared task completion", batch_id=batch.id, instance_id=instance.instance_id
        )
        return CompletionResult(success=True, message="Cleared")


async def get_completion_stats(*, batch_id: str, today: date | datetime | str | None = None) -> CompletionStats:
    """Count scheduled and completed instances from day 1 up to the batch's current day-of-age.

    Raises:
        CallerError: If batch_id is missing or the batch does not exist
    """
    with span("ledger_service.get_completion_stats"):
        batch = await batch_service.get_batch(batch_id=_require(batch_id, "batchId"))
        current_day = min(compute_day_of_age(batch.entry_date, today or date.today()), default_template.last_day)

        scheduled_ids = {
            instance.instance_id
            for instances in materialize_range(batch, 1, current_day).values()
            for instance in instances
        }
        records = await _completed_records(batch.id, f'day_of_age <= "{max(current_day, 0)}"')
        completed = len({record.instance_id for record in records} & scheduled_ids)

        return CompletionStats(
            batch_id=batch.id,
            day_of_age=current_day,
            scheduled=len(scheduled_ids),
            completed=completed,
        )
