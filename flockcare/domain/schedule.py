"""Schedule template domain models and enums."""

from enum import StrEnum

from pydantic import ConfigDict, Field

from flockcare.domain.base import WireModel


class TaskCategory(StrEnum):
    """Kind of care action a task definition describes."""

    INSPECTION = "inspection"
    VACCINE = "vaccine"
    MEDICATION = "medication"
    FEEDING = "feeding"
    NUTRITION = "nutrition"
    CARE = "care"
    ENVIRONMENT = "environment"
    EVALUATION = "evaluation"
    DOCUMENTATION = "documentation"
    LOGISTICS = "logistics"


class TaskPriority(StrEnum):
    """How urgently a task should be done on its day."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TaskDefinition(WireModel):
    """One template entry, scheduled on the day-of-age its series starts."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Template-unique definition ID")
    category: TaskCategory = Field(..., description="Kind of care action")
    title: str = Field(..., description="Short title shown in task lists")
    description: str = Field(default="", description="What to do")
    priority: TaskPriority = Field(default=TaskPriority.MEDIUM, description="Urgency on the day it is due")
    duration: int = Field(default=1, ge=1, description="Number of consecutive days the task runs")
    dosage: str | None = Field(default=None, description="Dosage instructions, if any")
    estimated_minutes: int = Field(default=0, ge=0, description="Expected effort in minutes")
    materials: tuple[str, ...] = Field(default=(), description="Materials needed")
    notes: str = Field(default="", description="Operator notes")

    @property
    def is_series(self) -> bool:
        return self.duration > 1
