"""Task instance, completion and overlay domain models."""

from datetime import date, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from flockcare.domain.base import WireModel
from flockcare.domain.schedule import TaskCategory, TaskPriority


class TaskInstance(WireModel):
    """A task definition realized for one batch on one day-of-age."""

    instance_id: str = Field(..., min_length=1, description="Stable ID derived from batch, definition and day")
    batch_id: str = Field(..., description="Owning batch ID")
    batch_number: str = Field(default="", description="Owning batch number")
    day_of_age: int = Field(..., ge=1, description="Day-of-age the instance is due")
    scheduled_date: date | None = Field(default=None, description="Calendar date of day_of_age")
    definition_id: str = Field(..., description="Template definition this instance realizes")
    series_id: str = Field(..., description="Definition ID suffixed by the position in its series")
    category: TaskCategory
    title: str
    description: str = ""
    priority: TaskPriority = TaskPriority.MEDIUM
    dosage: str | None = None
    duration: int = Field(default=1, ge=1)
    position_in_series: int = Field(default=1, ge=1)
    estimated_minutes: int = 0
    materials: list[str] = Field(default_factory=list)
    notes: str = ""
    completed: bool = False
    completed_at: datetime | None = None
    completed_by: str | None = None

    @property
    def is_series(self) -> bool:
        return self.duration > 1

    def display_description(self) -> str:
        """Description with dosage and series position appended, as shown in task lists."""
        text = self.description or self.title
        if self.dosage:
            text += f" (dosage: {self.dosage})"
        if self.is_series:
            text += f" [day {self.position_in_series}/{self.duration}]"
        return text

    def with_completion(
        self, *, completed: bool, completed_at: datetime | None = None, completed_by: str | None = None
    ) -> "TaskInstance":
        """Return a copy carrying the given completion state."""
        return self.model_copy(
            update={
                "completed": completed,
                "completed_at": completed_at if completed else None,
                "completed_by": completed_by if completed else None,
            }
        )


class CompletionRecord(BaseModel):
    """The ledger's durable fact that an instance was completed (or cleared)."""

    id: str
    batch_id: str
    instance_id: str
    definition_id: str
    day_of_age: int
    completed: bool
    completed_at: datetime | None = None
    completed_by: str | None = None
    notes: str = ""
    cleared_at: datetime | None = None


class CompletionResult(WireModel):
    """Outcome of an idempotent complete/uncomplete call."""

    success: bool = True
    already_completed: bool = False
    message: str = ""


class CompletionStats(WireModel):
    """Completion counts for a batch up to its current day-of-age."""

    batch_id: str
    day_of_age: int
    scheduled: int
    completed: int

    @property
    def completion_rate(self) -> float:
        return self.completed / self.scheduled if self.scheduled else 0.0


class OverlayStatus(StrEnum):
    """Where a local mutation stands relative to the ledger."""

    IN_FLIGHT = "in_flight"  # Remote call issued, no answer yet
    UNCONFIRMED = "unconfirmed"  # Remote call failed or its answer was lost
    ACKNOWLEDGED = "acknowledged"  # Ledger accepted the call; waiting for a read to reflect it


class OverlayEntry(BaseModel):
    """Client-local mirror of a completion that a ledger read has not yet reflected."""

    instance_id: str
    batch_id: str
    day_of_age: int
    completed: bool
    updated_at: datetime = Field(..., description="Local clock time of the mutation")
    status: OverlayStatus = OverlayStatus.IN_FLIGHT


class StatusChange(BaseModel):
    """Registry entry describing the latest completion change of one instance in this process."""

    instance_id: str
    completed: bool
    timestamp: datetime
    source: str | None = None
    consumed_by: set[str] = Field(default_factory=set)
