"""Tests for the view coordinator: optimistic completion, verification and view lifecycle."""

import asyncio
from collections import Counter

import pytest

from flockcare.client.coordinator import NoticeLevel, TaskCoordinator, TaskView, ViewDisposedError
from flockcare.client.notifier import CompletionNotifier, ReturnChannel
from flockcare.client.overlay import OverlayCache
from flockcare.client.state_machine import TaskPhase
from flockcare.core.errors import BatchNotFoundError, StaleInstanceError, TransientLedgerError
from flockcare.domain.batch import Batch
from flockcare.domain.task import CompletionResult, OverlayStatus
from flockcare.schedule.materializer import materialize, materialize_range
from tests.unit.conftest import ENTRY_DATE


BATCH = Batch(id="b1", batch_number="B-01", entry_date=ENTRY_DATE)
ENTRY_CHECK = "b1:entry_check:1"
GLUCOSE = "b1:glucose_water:1"


class FakeLedger:
    """In-process stand-in for LedgerClient with switchable failures and gates."""

    def __init__(self, batch: Batch):
        self.batch = batch
        self.completed: set[str] = set()
        self.calls: Counter[str] = Counter()
        self.complete_error: Exception | None = None
        self.uncomplete_error: Exception | None = None
        self.read_error: Exception | None = None
        self.complete_gate: asyncio.Event | None = None
        self.read_gate: asyncio.Event | None = None
        self.complete_started = asyncio.Event()
        self.read_started = asyncio.Event()

    def _with_state(self, instances):
        return [i.with_completion(completed=i.instance_id in self.completed) for i in instances]

    async def _read(self, name: str):
        self.calls[name] += 1
        self.read_started.set()
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.read_error is not None:
            raise self.read_error

    async def get_todos(self, batch_id, day_of_age):
        await self._read("get_todos")
        return self._with_state(materialize(self.batch, day_of_age))

    async def get_upcoming(self, batch_id, from_day, to_day):
        await self._read("get_upcoming")
        return {day: self._with_state(items) for day, items in materialize_range(self.batch, from_day, to_day).items()}

    async def get_history(self, batch_id, limit=None):
        await self._read("get_history")
        history = [
            i
            for items in materialize_range(self.batch, 1, 80).values()
            for i in self._with_state(items)
            if i.completed
        ]
        return history[:limit] if limit is not None else history

    async def complete(self, batch_id, instance_id, completed_by=None, completed_at=None, notes=""):
        self.calls["complete"] += 1
        self.complete_started.set()
        if self.complete_gate is not None:
            await self.complete_gate.wait()
        if self.complete_error is not None:
            raise self.complete_error
        already = instance_id in self.completed
        self.completed.add(instance_id)
        return CompletionResult(already_completed=already, message="Already completed" if already else "Completed")

    async def uncomplete(self, batch_id, instance_id):
        self.calls["uncomplete"] += 1
        if self.uncomplete_error is not None:
            raise self.uncomplete_error
        self.completed.discard(instance_id)
        return CompletionResult(message="Cleared")


def _shown(view: TaskView, instance_id: str) -> bool:
    return next(t for t in view.tasks if t.instance_id == instance_id).completed


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger(BATCH)


@pytest.fixture
def overlay(kv_store, clock) -> OverlayCache:
    return OverlayCache(kv_store, grace_seconds=300, clock=clock)


@pytest.fixture
async def coordinator(ledger, overlay, clock):
    coordinator = TaskCoordinator(ledger, overlay, CompletionNotifier(clock=clock), clock=clock, verify_delay_seconds=3600)
    yield coordinator
    await coordinator.close()


@pytest.fixture
async def view(coordinator) -> TaskView:
    view = TaskView(coordinator, "list", BATCH)
    await view.load_today()
    return view


@pytest.mark.unit
class TestLoad:
    async def test_load_today(self, view, coordinator):
        assert view.day_of_age == 1
        assert [t.instance_id for t in view.tasks] == [ENTRY_CHECK, GLUCOSE]
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.DUE
        assert coordinator.phase("b1:feed_control:9") == TaskPhase.PENDING

    async def test_load_degrades_on_transient_error(self, coordinator, ledger):
        ledger.read_error = TransientLedgerError("unreachable")
        view = TaskView(coordinator, "list", BATCH)

        assert await view.load_today() == []
        assert view.tasks == []
        assert view.notices[-1].level == NoticeLevel.WARNING

    async def test_before_enrollment_skips_fetch(self, coordinator, ledger):
        view = TaskView(coordinator, "list", BATCH)

        assert await view.load_today(today="2026-02-27") == []
        assert view.day_of_age == -1
        assert ledger.calls["get_todos"] == 0

    async def test_load_upcoming_window(self, coordinator):
        view = TaskView(coordinator, "upcoming", BATCH)

        upcoming = await view.load_upcoming(days=5)

        assert upcoming
        assert min(upcoming) >= 2
        assert max(upcoming) <= 6
        assert view.upcoming == upcoming

    async def test_load_upcoming_past_cycle(self, coordinator, ledger):
        view = TaskView(coordinator, "upcoming", BATCH)

        assert await view.load_upcoming(today="2026-12-31") == {}
        assert ledger.calls["get_upcoming"] == 0


@pytest.mark.unit
class TestComplete:
    async def test_success(self, view, coordinator, overlay):
        outcome = await view.complete(ENTRY_CHECK, completed_by="ana")

        assert outcome.phase == TaskPhase.COMPLETED
        assert outcome.notice.level == NoticeLevel.SUCCESS
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.COMPLETED
        assert overlay.get_overlay(ENTRY_CHECK).status == OverlayStatus.ACKNOWLEDGED
        assert _shown(view, ENTRY_CHECK)
        assert not _shown(view, GLUCOSE)

    async def test_shown_completed_before_ledger_answers(self, view, coordinator, ledger):
        ledger.complete_gate = asyncio.Event()

        pending = asyncio.create_task(view.complete(ENTRY_CHECK))
        await ledger.complete_started.wait()

        assert _shown(view, ENTRY_CHECK)
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.COMPLETING
        ledger.complete_gate.set()
        await pending

    async def test_double_tap_issues_one_call(self, view, ledger):
        ledger.complete_gate = asyncio.Event()

        first = asyncio.create_task(view.complete(ENTRY_CHECK))
        await ledger.complete_started.wait()
        second = asyncio.create_task(view.complete(ENTRY_CHECK))
        await asyncio.sleep(0)
        assert _shown(view, ENTRY_CHECK)

        ledger.complete_gate.set()
        first_outcome, second_outcome = await asyncio.gather(first, second)

        assert ledger.calls["complete"] == 1
        assert second_outcome.deduplicated
        assert first_outcome.phase == second_outcome.phase == TaskPhase.COMPLETED
        assert _shown(view, ENTRY_CHECK)

    async def test_tap_after_completion_skips_network(self, view, ledger):
        await view.complete(ENTRY_CHECK)

        outcome = await view.complete(ENTRY_CHECK)

        assert outcome.already_completed
        assert outcome.notice.level == NoticeLevel.INFO
        assert ledger.calls["complete"] == 1

    async def test_already_completed_elsewhere(self, view, ledger):
        ledger.completed.add(ENTRY_CHECK)

        outcome = await view.complete(ENTRY_CHECK)

        assert outcome.already_completed
        assert outcome.phase == TaskPhase.COMPLETED

    async def test_transient_failure_keeps_completion(self, view, coordinator, overlay, ledger):
        ledger.complete_error = TransientLedgerError("timed out")

        outcome = await view.complete(ENTRY_CHECK)

        assert outcome.phase == TaskPhase.COMPLETING
        assert outcome.completed
        assert outcome.notice.message == "Saved locally, syncing."
        assert overlay.get_overlay(ENTRY_CHECK).status == OverlayStatus.UNCONFIRMED
        assert _shown(view, ENTRY_CHECK)

        # A stale re-read does not undo the local completion
        await view.load_today()
        assert _shown(view, ENTRY_CHECK)
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.COMPLETING

    async def test_unsynced_completion_listed_in_history(self, view, ledger, clock):
        await view.complete(GLUCOSE)
        clock.advance(minutes=5)
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)

        history = await view.load_history()

        assert ENTRY_CHECK not in ledger.completed
        assert [h.instance_id for h in history] == [ENTRY_CHECK, GLUCOSE]
        assert history[0].completed
        assert history[0].completed_at == clock()
        assert [h.instance_id for h in await view.load_history(limit=1)] == [ENTRY_CHECK]

    async def test_rejected_completion_rolls_back(self, view, coordinator, overlay, ledger):
        ledger.complete_error = StaleInstanceError("gone")

        outcome = await view.complete(ENTRY_CHECK)

        assert outcome.phase == TaskPhase.DUE
        assert not outcome.completed
        assert outcome.notice.message == "Task unavailable, please refresh."
        assert overlay.get_overlay(ENTRY_CHECK) is None
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.DUE
        assert not _shown(view, ENTRY_CHECK)

    async def test_missing_instance_id(self, view, ledger):
        outcome = await view.complete("")

        assert outcome.notice.level == NoticeLevel.ERROR
        assert ledger.calls["complete"] == 0


@pytest.mark.unit
class TestUncomplete:
    async def test_uncomplete(self, view, coordinator, ledger):
        await view.complete(ENTRY_CHECK)
        await view.load_history()
        assert [h.instance_id for h in view.history] == [ENTRY_CHECK]

        outcome = await view.uncomplete(ENTRY_CHECK)

        assert outcome.phase == TaskPhase.DUE
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.DUE
        assert not _shown(view, ENTRY_CHECK)
        assert view.history == []
        assert ENTRY_CHECK not in ledger.completed

    async def test_uncomplete_while_syncing_is_refused(self, view, ledger):
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)

        outcome = await view.uncomplete(ENTRY_CHECK)

        assert outcome.notice.level == NoticeLevel.ERROR
        assert ledger.calls["uncomplete"] == 0
        assert _shown(view, ENTRY_CHECK)

    async def test_unsynced_uncomplete_hidden_from_history(self, view, ledger):
        await view.complete(ENTRY_CHECK)
        ledger.uncomplete_error = TransientLedgerError("timed out")
        await view.uncomplete(ENTRY_CHECK)

        history = await view.load_history()

        assert ENTRY_CHECK in ledger.completed
        assert history == []

    async def test_uncomplete_of_due_task_is_a_no_op(self, view, ledger):
        outcome = await view.uncomplete(ENTRY_CHECK)

        assert outcome.phase == TaskPhase.DUE
        assert ledger.calls["uncomplete"] == 0


@pytest.mark.unit
class TestVerification:
    async def test_confirms_when_ledger_recorded_it(self, view, coordinator, overlay, ledger):
        ledger.complete_error = TransientLedgerError("response lost")
        await view.complete(ENTRY_CHECK)
        ledger.completed.add(ENTRY_CHECK)

        report = await coordinator.verify_pending()

        assert report.confirmed == [ENTRY_CHECK]
        assert overlay.get_overlay(ENTRY_CHECK) is None
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.COMPLETED
        assert ledger.calls["complete"] == 1

    async def test_keeps_within_grace(self, view, coordinator, overlay, ledger, clock):
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)
        clock.advance(seconds=60)

        report = await coordinator.verify_pending()

        assert report.kept == [ENTRY_CHECK]
        assert _shown(view, ENTRY_CHECK)

    async def test_rolls_back_after_grace(self, view, coordinator, overlay, ledger, clock):
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)
        clock.advance(seconds=301)

        report = await coordinator.verify_pending()

        assert [e.instance_id for e in report.mismatched] == [ENTRY_CHECK]
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.DUE
        assert not _shown(view, ENTRY_CHECK)
        assert view.notices[-1].message == "Your completion did not take effect."
        assert ledger.calls["complete"] == 1

    async def test_background_verification_repeats_until_rolled_back(self, ledger, overlay, clock):
        coordinator = TaskCoordinator(ledger, overlay, CompletionNotifier(clock=clock), clock=clock, verify_delay_seconds=0.01)
        view = TaskView(coordinator, "list", BATCH)
        await view.load_today()
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)
        reads = ledger.calls["get_todos"]

        async def wait_for(predicate):
            for _ in range(200):
                if predicate():
                    return
                await asyncio.sleep(0.01)
            raise AssertionError("condition not reached")

        # Inside the grace window the entry survives each background read
        await wait_for(lambda: ledger.calls["get_todos"] > reads + 1)
        assert overlay.get_overlay(ENTRY_CHECK).status == OverlayStatus.UNCONFIRMED

        clock.advance(minutes=30)
        await wait_for(lambda: coordinator.phase(ENTRY_CHECK) == TaskPhase.DUE)
        await coordinator.close()

        assert overlay.get_overlay(ENTRY_CHECK) is None
        assert not _shown(view, ENTRY_CHECK)
        assert view.notices[-1].message == "Your completion did not take effect."
        assert ledger.calls["complete"] == 1

    async def test_failed_read_leaves_entries(self, view, coordinator, overlay, ledger, clock):
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)
        ledger.read_error = TransientLedgerError("still down")
        clock.advance(seconds=301)

        report = await coordinator.verify_pending()

        assert report.confirmed == report.kept == report.mismatched == []
        assert overlay.get_overlay(ENTRY_CHECK) is not None

    async def test_rejected_read_discards_entries(self, view, coordinator, overlay, ledger):
        ledger.complete_error = TransientLedgerError("timed out")
        await view.complete(ENTRY_CHECK)
        ledger.read_error = BatchNotFoundError("Batch b1 not found")

        report = await coordinator.verify_pending()

        assert [e.instance_id for e in report.mismatched] == [ENTRY_CHECK]
        assert overlay.get_overlay(ENTRY_CHECK) is None
        assert not _shown(view, ENTRY_CHECK)

    async def test_acknowledged_entries_are_verified_quietly(self, view, coordinator, overlay):
        await view.complete(ENTRY_CHECK)
        notices = len(view.notices)

        report = await coordinator.verify_pending()

        assert report.confirmed == [ENTRY_CHECK]
        assert overlay.pending() == []
        assert len(view.notices) == notices

    async def test_restart_verifies_restored_entries(self, kv_store, clock, ledger):
        first = OverlayCache(kv_store, clock=clock)
        await first.mark_pending(ENTRY_CHECK, True, batch_id="b1")
        ledger.completed.add(ENTRY_CHECK)

        restored = OverlayCache(kv_store, clock=clock)
        await restored.load()
        coordinator = TaskCoordinator(ledger, restored, CompletionNotifier(clock=clock), clock=clock)
        report = await coordinator.verify_pending()
        await coordinator.close()

        assert report.confirmed == [ENTRY_CHECK]
        assert ledger.calls["complete"] == 0


@pytest.mark.unit
class TestViewLifecycle:
    async def test_other_view_updates_without_fetch(self, view, coordinator, ledger):
        detail = view.open_detail(ENTRY_CHECK)
        await detail.load_today()
        reads = ledger.calls["get_todos"]

        await detail.complete(ENTRY_CHECK)

        assert _shown(view, ENTRY_CHECK)
        assert ledger.calls["get_todos"] == reads
        assert view.history[0].instance_id == ENTRY_CHECK

    async def test_return_channel_reports_changes_once(self, coordinator):
        channel: ReturnChannel = ReturnChannel()
        child = TaskView(coordinator, "child", BATCH, return_channel=channel)
        await child.load_today()
        await child.complete(ENTRY_CHECK)

        await child.dispose()
        await child.dispose()

        changes = await channel.receive(timeout=1)
        assert [(c.instance_id, c.completed, c.source) for c in changes] == [(ENTRY_CHECK, True, "child")]

    async def test_activate_picks_up_missed_changes(self, coordinator):
        coordinator.notifier.publish(ENTRY_CHECK, True, source="elsewhere")
        late = TaskView(coordinator, "late", BATCH)

        assert [c.instance_id for c in late.activate()] == [ENTRY_CHECK]
        assert late.activate() == []

    async def test_dispose_cancels_pending_load(self, coordinator, ledger):
        view = TaskView(coordinator, "list", BATCH)
        ledger.read_gate = asyncio.Event()

        load = asyncio.create_task(view.load_today())
        await ledger.read_started.wait()
        await view.dispose()

        with pytest.raises(ViewDisposedError):
            await load
        assert view.tasks == []
        assert coordinator.notifier.listener_count == 0

    async def test_disposed_view_rejects_actions(self, view):
        await view.dispose()

        with pytest.raises(ViewDisposedError):
            await view.complete(ENTRY_CHECK)
        with pytest.raises(ViewDisposedError):
            await view.load_today()

    async def test_completion_settles_after_view_disposed(self, view, coordinator, ledger, overlay):
        ledger.complete_gate = asyncio.Event()
        pending = asyncio.create_task(view.complete(ENTRY_CHECK))
        await ledger.complete_started.wait()

        await view.dispose()
        ledger.complete_gate.set()
        outcome = await pending

        assert outcome.phase == TaskPhase.COMPLETED
        assert coordinator.phase(ENTRY_CHECK) == TaskPhase.COMPLETED
        assert overlay.get_overlay(ENTRY_CHECK).status == OverlayStatus.ACKNOWLEDGED
