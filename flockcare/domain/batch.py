"""Batch domain models and enums."""

from datetime import date
from enum import StrEnum

from pydantic import AliasChoices, Field, field_validator

from flockcare.domain.base import WireModel
from flockcare.schedule.day_age import to_calendar_date


class BatchStatus(StrEnum):
    """Batch lifecycle state."""

    ACTIVE = "active"
    CLOSED = "closed"


class Batch(WireModel):
    """One cohort of animals enrolled together."""

    id: str = Field(..., validation_alias=AliasChoices("id", "_id", "batchId", "batch_id"), description="Batch ID")
    batch_number: str = Field(..., description="Human-readable batch number")
    entry_date: date = Field(..., description="Enrollment date (day 1)")
    status: BatchStatus = Field(default=BatchStatus.ACTIVE, description="Lifecycle state")

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value

    @field_validator("entry_date", mode="before")
    @classmethod
    def _strip_time(cls, value: object) -> object:
        # Registry records may carry a full timestamp; only the calendar day matters.
        if isinstance(value, str | date):
            return to_calendar_date(value)
        return value

    @property
    def is_active(self) -> bool:
        return self.status == BatchStatus.ACTIVE
