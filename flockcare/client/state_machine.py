"""Pure transition functions for the client-observed lifecycle of a task instance.

PENDING -> DUE -> COMPLETING -> COMPLETED, with COMPLETING -> DUE when the
remote call fails and the overlay is rolled back, and COMPLETED -> DUE on an
explicit uncomplete.
"""

from enum import StrEnum

from flockcare.domain.task import OverlayEntry, OverlayStatus, TaskInstance


class TaskPhase(StrEnum):
    """Client-side phase of a single task instance."""

    PENDING = "pending"  # Not materialized yet
    DUE = "due"
    COMPLETING = "completing"  # Optimistically completed, remote call unsettled
    COMPLETED = "completed"


class InvalidTransitionError(ValueError):
    """Raised when a phase change is not in the transition table."""

    def __init__(self, current: TaskPhase, target: TaskPhase) -> None:
        """Initialize with the rejected transition."""
        super().__init__(f"Cannot move task from {current} to {target}")
        self.current = current
        self.target = target


TRANSITIONS: dict[TaskPhase, set[TaskPhase]] = {
    TaskPhase.PENDING: {TaskPhase.DUE, TaskPhase.COMPLETED},
    TaskPhase.DUE: {TaskPhase.COMPLETING, TaskPhase.COMPLETED},
    TaskPhase.COMPLETING: {TaskPhase.COMPLETED, TaskPhase.DUE},
    TaskPhase.COMPLETED: {TaskPhase.DUE},
}


def can_transition(current: TaskPhase, target: TaskPhase) -> bool:
    return target in TRANSITIONS[current]


def transition(current: TaskPhase, target: TaskPhase) -> TaskPhase:
    """Validate and perform a phase change.

    Raises:
        InvalidTransitionError: If target is not reachable from current
    """
    if not can_transition(current, target):
        raise InvalidTransitionError(current, target)
    return target


def materialize(instance: TaskInstance) -> TaskPhase:
    """Phase of a freshly materialized instance, from the ledger's completion flag."""
    return transition(TaskPhase.PENDING, TaskPhase.COMPLETED if instance.completed else TaskPhase.DUE)


def begin_completion(current: TaskPhase) -> TaskPhase:
    return transition(current, TaskPhase.COMPLETING)


def confirm_completion(current: TaskPhase) -> TaskPhase:
    return transition(current, TaskPhase.COMPLETED)


def fail_completion(current: TaskPhase) -> TaskPhase:
    return transition(current, TaskPhase.DUE)


def uncomplete(current: TaskPhase) -> TaskPhase:
    return transition(current, TaskPhase.DUE)


def phase_for(instance: TaskInstance, overlay: OverlayEntry | None = None) -> TaskPhase:
    """Phase shown for an instance given the ledger's state and any overlay entry.

    A completed overlay is COMPLETED once the ledger acknowledged the call and
    COMPLETING until then; a pending uncomplete shows as DUE.
    """
    if overlay is None or overlay.completed == instance.completed:
        return TaskPhase.COMPLETED if instance.completed else TaskPhase.DUE
    if not overlay.completed:
        return TaskPhase.DUE
    return TaskPhase.COMPLETED if overlay.status == OverlayStatus.ACKNOWLEDGED else TaskPhase.COMPLETING
