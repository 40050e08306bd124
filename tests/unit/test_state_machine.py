"""Tests for task phase transitions."""

from datetime import UTC, date, datetime

import pytest

from flockcare.client import state_machine
from flockcare.client.state_machine import InvalidTransitionError, TaskPhase
from flockcare.domain.batch import Batch
from flockcare.domain.task import OverlayEntry, OverlayStatus
from flockcare.schedule.materializer import materialize


INSTANCE = materialize(Batch(id="b1", batch_number="B-01", entry_date=date(2024, 3, 1)), 1)[0]
NOW = datetime(2024, 3, 1, 8, tzinfo=UTC)


def _overlay(completed: bool, status: OverlayStatus) -> OverlayEntry:
    return OverlayEntry(
        instance_id=INSTANCE.instance_id,
        batch_id="b1",
        day_of_age=1,
        completed=completed,
        updated_at=NOW,
        status=status,
    )


@pytest.mark.unit
class TestTransitions:
    def test_happy_path(self):
        phase = state_machine.materialize(INSTANCE)
        assert phase == TaskPhase.DUE
        phase = state_machine.begin_completion(phase)
        assert phase == TaskPhase.COMPLETING
        assert state_machine.confirm_completion(phase) == TaskPhase.COMPLETED

    def test_failed_completion_rolls_back_to_due(self):
        assert state_machine.fail_completion(TaskPhase.COMPLETING) == TaskPhase.DUE

    def test_uncomplete(self):
        assert state_machine.uncomplete(TaskPhase.COMPLETED) == TaskPhase.DUE

    def test_materialize_completed_instance(self):
        assert state_machine.materialize(INSTANCE.with_completion(completed=True)) == TaskPhase.COMPLETED

    @pytest.mark.parametrize(
        ("current", "target"),
        [
            (TaskPhase.PENDING, TaskPhase.COMPLETING),
            (TaskPhase.COMPLETED, TaskPhase.COMPLETING),
            (TaskPhase.DUE, TaskPhase.PENDING),
            (TaskPhase.COMPLETING, TaskPhase.COMPLETING),
        ],
    )
    def test_invalid(self, current, target):
        assert not state_machine.can_transition(current, target)
        with pytest.raises(InvalidTransitionError) as exc_info:
            state_machine.transition(current, target)
        assert exc_info.value.current == current
        assert exc_info.value.target == target

    def test_double_begin_is_rejected(self):
        with pytest.raises(InvalidTransitionError):
            state_machine.begin_completion(TaskPhase.COMPLETING)

    def test_nothing_returns_to_pending(self):
        for phase in TaskPhase:
            assert not state_machine.can_transition(phase, TaskPhase.PENDING)


@pytest.mark.unit
class TestPhaseFor:
    def test_without_overlay(self):
        assert state_machine.phase_for(INSTANCE) == TaskPhase.DUE
        assert state_machine.phase_for(INSTANCE.with_completion(completed=True)) == TaskPhase.COMPLETED

    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            (OverlayStatus.IN_FLIGHT, TaskPhase.COMPLETING),
            (OverlayStatus.UNCONFIRMED, TaskPhase.COMPLETING),
            (OverlayStatus.ACKNOWLEDGED, TaskPhase.COMPLETED),
        ],
    )
    def test_pending_completion(self, status, expected):
        assert state_machine.phase_for(INSTANCE, _overlay(True, status)) == expected

    def test_pending_uncomplete_shows_due(self):
        completed = INSTANCE.with_completion(completed=True)
        assert state_machine.phase_for(completed, _overlay(False, OverlayStatus.IN_FLIGHT)) == TaskPhase.DUE

    def test_agreeing_overlay_is_ignored(self):
        assert state_machine.phase_for(INSTANCE, _overlay(False, OverlayStatus.UNCONFIRMED)) == TaskPhase.DUE
