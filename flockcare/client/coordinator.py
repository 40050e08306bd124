"""Coordinates task views with the ledger, the local overlay and the notifier.

``TaskCoordinator`` is created once per process and owns everything shared:
the phase of each instance, in-flight completion calls, and background
verification. ``TaskView`` is one mounted surface (a list, a detail page);
it keeps its own rendered lists and heals them from notifier events instead
of re-fetching.
"""

import asyncio
import itertools
import logging
from collections import defaultdict
from collections.abc import Callable, Coroutine
from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Any, TypeVar

from pydantic import BaseModel

from flockcare.client import state_machine
from flockcare.client.ledger_client import LedgerClient
from flockcare.client.notifier import CompletionNotifier, ReturnChannel
from flockcare.client.overlay import OverlayCache, ReconcileReport
from flockcare.client.state_machine import TaskPhase
from flockcare.core.config import settings
from flockcare.core.errors import (
    ALREADY_COMPLETED_RESPONSE,
    CallerError,
    ErrorCategory,
    ErrorResponse,
    LedgerError,
    ReconciliationMismatchError,
    TransientLedgerError,
    classify_error_with_response,
)
from flockcare.core.logging import log_with_context, span
from flockcare.domain.batch import Batch
from flockcare.domain.task import OverlayEntry, OverlayStatus, StatusChange, TaskInstance
from flockcare.schedule.day_age import day_of_age, has_started
from flockcare.schedule.materializer import resolve, upcoming_window
from flockcare.schedule.template import ScheduleTemplate, default_template


logger = logging.getLogger(__name__)

T = TypeVar("T")

VERIFICATION_SOURCE = "verification"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class NoticeLevel(StrEnum):
    """How a notice is presented to the operator."""

    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


_LEVEL_BY_CATEGORY = {
    ErrorCategory.ALREADY_COMPLETED: NoticeLevel.INFO,
    ErrorCategory.TRANSIENT: NoticeLevel.WARNING,
    ErrorCategory.RECONCILIATION_MISMATCH: NoticeLevel.ERROR,
    ErrorCategory.STALE_INSTANCE: NoticeLevel.ERROR,
    ErrorCategory.CALLER_ERROR: NoticeLevel.ERROR,
    ErrorCategory.UNKNOWN: NoticeLevel.ERROR,
}


class Notice(BaseModel):
    """A toast or banner for the operator."""

    level: NoticeLevel
    message: str
    code: str | None = None
    instance_id: str | None = None

    @classmethod
    def from_response(cls, response: ErrorResponse, instance_id: str | None = None) -> "Notice":
        return cls(
            level=_LEVEL_BY_CATEGORY[response.category],
            message=response.message,
            code=response.code,
            instance_id=instance_id,
        )

    @classmethod
    def from_error(cls, exc: Exception, instance_id: str | None = None) -> "Notice":
        return cls.from_response(classify_error_with_response(exc), instance_id)


class CompletionOutcome(BaseModel):
    """Result of a complete/uncomplete action as seen by the acting view."""

    instance_id: str
    phase: TaskPhase
    completed: bool
    already_completed: bool = False
    deduplicated: bool = False
    notice: Notice | None = None


class ViewDisposedError(RuntimeError):
    """Raised when a disposed view is used, or when disposal cancels an operation."""


class TaskCoordinator:
    """Process-wide owner of instance phases, in-flight calls and verification."""

    def __init__(
        self,
        ledger: LedgerClient,
        overlay: OverlayCache,
        notifier: CompletionNotifier,
        *,
        template: ScheduleTemplate = default_template,
        clock: Callable[[], datetime] = _utcnow,
        verify_delay_seconds: float | None = None,
    ) -> None:
        """Initialize the coordinator. The overlay should already be loaded."""
        self.ledger = ledger
        self.overlay = overlay
        self.notifier = notifier
        self.template = template
        self._clock = clock
        self._verify_delay = (
            verify_delay_seconds if verify_delay_seconds is not None else settings.verify_interval_seconds
        )

        self._phases: dict[str, TaskPhase] = {}
        self._inflight: dict[str, asyncio.Task[CompletionOutcome]] = {}
        self._background: set[asyncio.Task[Any]] = set()
        self._verification_scheduled = False
        self._notice_listeners: list[Callable[[Notice], None]] = []

    def now(self) -> datetime:
        return self._clock()

    def today(self) -> date:
        return self._clock().date()

    def phase(self, instance_id: str) -> TaskPhase:
        """Current phase of an instance; PENDING if it was never materialized here."""
        return self._phases.get(instance_id, TaskPhase.PENDING)

    def subscribe_notices(self, listener: Callable[[Notice], None]) -> Callable[[], None]:
        """Receive notices not tied to a single action (verification results)."""
        self._notice_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._notice_listeners:
                self._notice_listeners.remove(listener)

        return unsubscribe

    def _emit_notice(self, notice: Notice) -> None:
        for listener in list(self._notice_listeners):
            try:
                listener(notice)
            except Exception:
                logger.exception("Notice listener failed")

    def _observe(self, instances: list[TaskInstance]) -> list[TaskInstance]:
        """Merge overlay state over fresh instances and record their phases."""
        merged = self.overlay.apply(instances)
        for remote, shown in zip(instances, merged, strict=True):
            if remote.instance_id in self._inflight:
                continue
            self._phases[remote.instance_id] = state_machine.phase_for(
                remote, self.overlay.get_overlay(remote.instance_id)
            )
            if shown.completed != remote.completed:
                logger.debug("Overlay kept %s completed=%s over remote read", shown.instance_id, shown.completed)
        return merged

    async def _settle(self, remote: list[TaskInstance]) -> ReconcileReport:
        report = await self.overlay.reconcile(remote, now=self._clock())
        for entry in report.mismatched:
            self._roll_back(entry)
        return report

    def _roll_back(self, entry: OverlayEntry) -> None:
        """Revert a local mutation the ledger never recorded, and tell every view."""
        current = self.phase(entry.instance_id)
        if entry.completed and current == TaskPhase.COMPLETING:
            self._phases[entry.instance_id] = state_machine.fail_completion(current)
        else:
            self._phases[entry.instance_id] = TaskPhase.DUE if entry.completed else TaskPhase.COMPLETED

        self.notifier.publish(entry.instance_id, not entry.completed, source=VERIFICATION_SOURCE)
        error = ReconciliationMismatchError(f"Ledger did not record the change to {entry.instance_id}")
        log_with_context(
            logger,
            "warning",
            "Rolled back unconfirmed overlay",
            batch_id=entry.batch_id,
            instance_id=entry.instance_id,
            completed=entry.completed,
        )
        self._emit_notice(Notice.from_error(error, entry.instance_id))

    async def fetch_todos(self, batch: Batch, day: int) -> list[TaskInstance]:
        with span("coordinator.fetch_todos"):
            remote = await self.ledger.get_todos(batch.id, day)
            await self._settle(remote)
            return self._observe(remote)

    async def fetch_upcoming(self, batch: Batch, from_day: int, to_day: int) -> dict[int, list[TaskInstance]]:
        with span("coordinator.fetch_upcoming"):
            if from_day > to_day:
                return {}
            grouped = await self.ledger.get_upcoming(batch.id, from_day, to_day)
            await self._settle([instance for instances in grouped.values() for instance in instances])
            return {day: self._observe(instances) for day, instances in grouped.items()}

    async def fetch_history(self, batch: Batch, limit: int | None = None) -> list[TaskInstance]:
        """Completed instances, newest first, with local completions not yet in the ledger's history."""
        with span("coordinator.fetch_history"):
            remote = await self.ledger.get_history(batch.id, limit)
            await self._settle(remote)
            history = self._observe(remote)

            listed = {instance.instance_id for instance in history}
            retracted: set[str] = set()
            local: list[TaskInstance] = []
            for entry in self.overlay.pending(batch.id):
                if not entry.completed:
                    retracted.add(entry.instance_id)
                elif entry.instance_id not in listed:
                    instance = resolve(batch, entry.instance_id, template=self.template)
                    if instance is not None:
                        local.append(instance.with_completion(completed=True, completed_at=entry.updated_at))

            merged = [instance for instance in history if instance.instance_id not in retracted] + local
            merged.sort(key=lambda instance: instance.completed_at or datetime.min.replace(tzinfo=UTC), reverse=True)
            return merged[:limit] if limit is not None else merged

    async def complete(
        self,
        batch: Batch,
        instance_id: str,
        *,
        completed_by: str | None = None,
        notes: str = "",
        source: str | None = None,
    ) -> CompletionOutcome:
        """Complete an instance: optimistic overlay, ledger call, then publish.

        A second call while the first is in flight joins the first instead of
        issuing another request. The call runs in its own task, so it settles
        even if the calling view is disposed meanwhile.
        """
        if not instance_id:
            error = CallerError("instanceId is required")
            return CompletionOutcome(
                instance_id="", phase=TaskPhase.PENDING, completed=False, notice=Notice.from_error(error)
            )

        running = self._inflight.get(instance_id)
        if running is not None:
            outcome = await asyncio.shield(running)
            return outcome.model_copy(update={"deduplicated": True})

        if self.phase(instance_id) == TaskPhase.COMPLETED:
            return CompletionOutcome(
                instance_id=instance_id,
                phase=TaskPhase.COMPLETED,
                completed=True,
                already_completed=True,
                notice=Notice.from_response(ALREADY_COMPLETED_RESPONSE, instance_id),
            )

        task = asyncio.create_task(self._complete(batch, instance_id, completed_by, notes, source))
        self._inflight[instance_id] = task
        task.add_done_callback(lambda _t: self._inflight.pop(instance_id, None))
        return await asyncio.shield(task)

    async def _complete(
        self,
        batch: Batch,
        instance_id: str,
        completed_by: str | None,
        notes: str,
        source: str | None,
    ) -> CompletionOutcome:
        with span("coordinator.complete"):
            current = self.phase(instance_id)
            if current in (TaskPhase.PENDING, TaskPhase.DUE):
                current = state_machine.begin_completion(TaskPhase.DUE)
            self._phases[instance_id] = current

            # Durable before the remote call: survives a restart mid-call
            await self.overlay.mark_pending(instance_id, True, batch_id=batch.id)

            try:
                result = await self.ledger.complete(
                    batch.id, instance_id, completed_by=completed_by, completed_at=self._clock(), notes=notes
                )
            except TransientLedgerError as e:
                await self.overlay.set_status(instance_id, OverlayStatus.UNCONFIRMED)
                self._schedule_verification()
                log_with_context(logger, "warning", "Completion unconfirmed", instance_id=instance_id, error=str(e))
                return CompletionOutcome(
                    instance_id=instance_id,
                    phase=TaskPhase.COMPLETING,
                    completed=True,
                    notice=Notice.from_error(e, instance_id),
                )
            except LedgerError as e:
                await self.overlay.discard(instance_id)
                self._phases[instance_id] = state_machine.fail_completion(current)
                log_with_context(logger, "info", "Completion rejected", instance_id=instance_id, code=e.code)
                return CompletionOutcome(
                    instance_id=instance_id,
                    phase=TaskPhase.DUE,
                    completed=False,
                    notice=Notice.from_error(e, instance_id),
                )

            await self.overlay.set_status(instance_id, OverlayStatus.ACKNOWLEDGED)
            self._phases[instance_id] = state_machine.confirm_completion(current)
            self.notifier.publish(instance_id, True, source=source)

            if result.already_completed:
                notice = Notice.from_response(ALREADY_COMPLETED_RESPONSE, instance_id)
            else:
                notice = Notice(level=NoticeLevel.SUCCESS, message="Task completed.", instance_id=instance_id)
            return CompletionOutcome(
                instance_id=instance_id,
                phase=TaskPhase.COMPLETED,
                completed=True,
                already_completed=result.already_completed,
                notice=notice,
            )

    async def uncomplete(self, batch: Batch, instance_id: str, *, source: str | None = None) -> CompletionOutcome:
        """Clear a completion (manual correction)."""
        with span("coordinator.uncomplete"):
            current = self.phase(instance_id)
            if current == TaskPhase.COMPLETING or instance_id in self._inflight:
                error = CallerError("Completion is still syncing; try again shortly")
                return CompletionOutcome(
                    instance_id=instance_id, phase=current, completed=True, notice=Notice.from_error(error, instance_id)
                )
            if current != TaskPhase.COMPLETED:
                return CompletionOutcome(instance_id=instance_id, phase=current, completed=False)

            await self.overlay.mark_pending(instance_id, False, batch_id=batch.id)
            self._phases[instance_id] = state_machine.uncomplete(current)

            try:
                await self.ledger.uncomplete(batch.id, instance_id)
            except TransientLedgerError as e:
                await self.overlay.set_status(instance_id, OverlayStatus.UNCONFIRMED)
                self._schedule_verification()
                return CompletionOutcome(
                    instance_id=instance_id,
                    phase=TaskPhase.DUE,
                    completed=False,
                    notice=Notice.from_error(e, instance_id),
                )
            except LedgerError as e:
                await self.overlay.discard(instance_id)
                self._phases[instance_id] = TaskPhase.COMPLETED
                return CompletionOutcome(
                    instance_id=instance_id,
                    phase=TaskPhase.COMPLETED,
                    completed=True,
                    notice=Notice.from_error(e, instance_id),
                )

            await self.overlay.set_status(instance_id, OverlayStatus.ACKNOWLEDGED)
            self.notifier.publish(instance_id, False, source=source)
            return CompletionOutcome(
                instance_id=instance_id,
                phase=TaskPhase.DUE,
                completed=False,
                notice=Notice(level=NoticeLevel.INFO, message="Completion cleared.", instance_id=instance_id),
            )

    async def verify_pending(self, now: datetime | None = None) -> ReconcileReport:
        """Re-read the ledger for every settled overlay entry; confirm or roll back.

        Entries whose call is still in flight are skipped. Nothing is resubmitted.
        A transient failure leaves the affected entries for the next sweep.
        """
        with span("coordinator.verify_pending"):
            groups: dict[tuple[str, int], list[OverlayEntry]] = defaultdict(list)
            for entry in self.overlay.pending():
                if entry.status == OverlayStatus.IN_FLIGHT or entry.instance_id in self._inflight:
                    continue
                if not entry.batch_id or not has_started(entry.day_of_age):
                    logger.warning("Discarding overlay entry with unparseable ID %s", entry.instance_id)
                    await self.overlay.discard(entry.instance_id)
                    continue
                groups[(entry.batch_id, entry.day_of_age)].append(entry)

            combined = ReconcileReport()
            for (batch_id, day), entries in sorted(groups.items()):
                try:
                    remote = await self.ledger.get_todos(batch_id, day)
                except TransientLedgerError as e:
                    logger.info("Verification read failed for batch %s day %d: %s", batch_id, day, e)
                    continue
                except LedgerError as e:
                    # The batch or its schedule is gone; the entries can never be confirmed
                    logger.warning("Verification read rejected for batch %s day %d: %s", batch_id, day, e)
                    for entry in entries:
                        await self.overlay.discard(entry.instance_id)
                        if entry.status == OverlayStatus.UNCONFIRMED:
                            self._roll_back(entry)
                            combined.mismatched.append(entry)
                    continue

                unconfirmed = {e.instance_id for e in entries if e.status == OverlayStatus.UNCONFIRMED}
                report = await self.overlay.reconcile(remote, now=now or self._clock())
                for entry in report.mismatched:
                    self._roll_back(entry)
                for instance_id in report.confirmed:
                    if instance_id in unconfirmed:
                        remote_instance = next(i for i in remote if i.instance_id == instance_id)
                        self._phases[instance_id] = state_machine.phase_for(remote_instance)
                        self.notifier.publish(instance_id, remote_instance.completed, source=VERIFICATION_SOURCE)

                combined.confirmed.extend(report.confirmed)
                combined.kept.extend(report.kept)
                combined.mismatched.extend(report.mismatched)

            if combined.confirmed or combined.mismatched:
                logger.info(
                    "Verification sweep: %d confirmed, %d kept, %d rolled back",
                    len(combined.confirmed),
                    len(combined.kept),
                    len(combined.mismatched),
                )
            return combined

    def _has_unconfirmed(self) -> bool:
        return any(entry.status == OverlayStatus.UNCONFIRMED for entry in self.overlay.pending())

    def _schedule_verification(self) -> None:
        """Re-read the ledger after a delay, repeating while unconfirmed entries remain."""
        if self._verification_scheduled:
            return
        self._verification_scheduled = True

        async def _verify_later() -> None:
            try:
                await asyncio.sleep(self._verify_delay)
            finally:
                self._verification_scheduled = False
            await self.verify_pending()
            if self._has_unconfirmed():
                self._schedule_verification()

        self._spawn(_verify_later())

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def close(self) -> None:
        """Let in-flight completions settle, then cancel background verification."""
        if self._inflight:
            await asyncio.gather(*self._inflight.values(), return_exceptions=True)
        for task in list(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)


_surface_counter = itertools.count(1)


class TaskView:
    """One mounted task surface for a batch.

    Lists (``tasks``, ``upcoming``, ``history``) are replaced by loads and
    patched in place by notifier events. After ``dispose`` nothing mutates
    them: pending loads are cancelled and listeners removed.
    """

    def __init__(
        self,
        coordinator: TaskCoordinator,
        surface_id: str,
        batch: Batch,
        *,
        return_channel: ReturnChannel[list[StatusChange]] | None = None,
        focus_instance_id: str | None = None,
    ) -> None:
        """Mount the view and subscribe it to completion changes."""
        self.coordinator = coordinator
        self.surface_id = surface_id
        self.batch = batch
        self.focus_instance_id = focus_instance_id

        self.day_of_age: int | None = None
        self.tasks: list[TaskInstance] = []
        self.upcoming: dict[int, list[TaskInstance]] = {}
        self.history: list[TaskInstance] = []
        self.notices: list[Notice] = []

        self._disposed = False
        self._tasks: set[asyncio.Task[Any]] = set()
        self._changes: dict[str, StatusChange] = {}
        self._return_channel = return_channel
        self._unsubscribe = coordinator.notifier.subscribe(self._on_change)
        self._unsubscribe_notices = coordinator.subscribe_notices(self._on_notice)

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def _check_alive(self) -> None:
        if self._disposed:
            msg = f"View {self.surface_id} is disposed"
            raise ViewDisposedError(msg)

    async def _run(self, coro: Coroutine[Any, Any, T]) -> T:
        """Run coro as a task owned by this view, so dispose can cancel it."""
        if self._disposed:
            coro.close()
            self._check_alive()
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        try:
            return await task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if task.cancelled() and self._disposed and not (current and current.cancelling()):
                msg = f"View {self.surface_id} was disposed during a load"
                raise ViewDisposedError(msg) from None
            raise

    def _notify(self, notice: Notice | None) -> None:
        if notice is not None and not self._disposed:
            self.notices.append(notice)

    def _on_notice(self, notice: Notice) -> None:
        if notice.instance_id is None or self._shows(notice.instance_id):
            self._notify(notice)

    def _shows(self, instance_id: str) -> bool:
        if any(i.instance_id == instance_id for i in self.tasks):
            return True
        if any(i.instance_id == instance_id for i in self.history):
            return True
        return any(i.instance_id == instance_id for items in self.upcoming.values() for i in items)

    def _set_completed(self, instance_id: str, completed: bool, when: datetime | None = None) -> bool:
        """Patch every list showing the instance; returns True if anything changed."""
        if self._disposed:
            return False

        changed = False
        stamp = when or self.coordinator.now()

        def patch(items: list[TaskInstance]) -> list[TaskInstance]:
            nonlocal changed
            patched = []
            for item in items:
                if item.instance_id == instance_id and item.completed != completed:
                    item = item.with_completion(completed=completed, completed_at=stamp, completed_by=item.completed_by)
                    changed = True
                patched.append(item)
            return patched

        self.tasks = patch(self.tasks)
        self.upcoming = {day: patch(items) for day, items in self.upcoming.items()}

        in_history = any(i.instance_id == instance_id for i in self.history)
        if completed and not in_history:
            candidates = itertools.chain(self.tasks, *self.upcoming.values())
            source = next((i for i in candidates if i.instance_id == instance_id), None)
            if source is not None:
                self.history = [source, *self.history]
                changed = True
        elif not completed and in_history:
            self.history = [i for i in self.history if i.instance_id != instance_id]
            changed = True
        return changed

    def _on_change(self, change: StatusChange) -> None:
        if self._disposed:
            return
        self._set_completed(change.instance_id, change.completed, change.timestamp)
        self.coordinator.notifier.mark_consumed(self.surface_id, change.instance_id)

    def _apply_returned(self, changes: list[StatusChange]) -> None:
        for change in changes:
            self._on_change(change)

    def _current_day(self, today: date | datetime | str | None) -> int:
        self.day_of_age = day_of_age(self.batch.entry_date, today or self.coordinator.today())
        return self.day_of_age

    async def load_today(self, today: date | datetime | str | None = None) -> list[TaskInstance]:
        """Fetch, overlay and show the tasks due today. Degrades to an empty list on ledger errors."""
        self._check_alive()
        day = self._current_day(today)
        if not has_started(day) or day > self.coordinator.template.last_day:
            self.tasks = []
            return self.tasks

        try:
            tasks = await self._run(self.coordinator.fetch_todos(self.batch, day))
        except LedgerError as e:
            self._notify(Notice.from_error(e))
            tasks = []

        if not self._disposed:
            self.tasks = tasks
            self.coordinator.notifier.drain(self.surface_id)
        return tasks

    async def load_upcoming(
        self, today: date | datetime | str | None = None, days: int | None = None
    ) -> dict[int, list[TaskInstance]]:
        """Fetch the look-ahead window after today, grouped by day-of-age."""
        self._check_alive()
        day = self._current_day(today)
        from_day, to_day = upcoming_window(day, days, template=self.coordinator.template)

        try:
            grouped = await self._run(self.coordinator.fetch_upcoming(self.batch, from_day, to_day))
        except LedgerError as e:
            self._notify(Notice.from_error(e))
            grouped = {}

        if not self._disposed:
            self.upcoming = grouped
        return grouped

    async def load_history(self, limit: int | None = None) -> list[TaskInstance]:
        """Fetch completed instances, newest first."""
        self._check_alive()
        try:
            history = await self._run(self.coordinator.fetch_history(self.batch, limit))
        except LedgerError as e:
            self._notify(Notice.from_error(e))
            history = []

        if not self._disposed:
            self.history = history
        return history

    def _record(self, outcome: CompletionOutcome) -> None:
        if self._disposed:
            return
        self._set_completed(outcome.instance_id, outcome.completed)
        self._notify(outcome.notice)
        self._changes[outcome.instance_id] = StatusChange(
            instance_id=outcome.instance_id,
            completed=outcome.completed,
            timestamp=self.coordinator.now(),
            source=self.surface_id,
        )

    async def complete(
        self, instance_id: str, completed_by: str | None = None, notes: str = ""
    ) -> CompletionOutcome:
        """Complete an instance, showing it completed before the ledger answers."""
        self._check_alive()
        if instance_id:
            self._set_completed(instance_id, True)
        outcome = await self.coordinator.complete(
            self.batch, instance_id, completed_by=completed_by, notes=notes, source=self.surface_id
        )
        self._record(outcome)
        return outcome

    async def uncomplete(self, instance_id: str) -> CompletionOutcome:
        self._check_alive()
        outcome = await self.coordinator.uncomplete(self.batch, instance_id, source=self.surface_id)
        self._record(outcome)
        return outcome

    def activate(self) -> list[StatusChange]:
        """Apply changes published while this view was not listening."""
        self._check_alive()
        changes = self.coordinator.notifier.drain(self.surface_id)
        for change in changes:
            self._set_completed(change.instance_id, change.completed, change.timestamp)
        return changes

    def open_detail(self, instance_id: str | None = None) -> "TaskView":
        """Open a child view whose changes come back to this view when it closes."""
        self._check_alive()
        channel: ReturnChannel[list[StatusChange]] = ReturnChannel()
        channel.on_result(self._apply_returned)
        return TaskView(
            self.coordinator,
            f"{self.surface_id}/detail-{next(_surface_counter)}",
            self.batch,
            return_channel=channel,
            focus_instance_id=instance_id,
        )

    async def dispose(self) -> None:
        """Tear the view down: stop listening, cancel its loads, report back to the parent."""
        if self._disposed:
            return
        self._disposed = True
        self._unsubscribe()
        self._unsubscribe_notices()

        pending = [task for task in self._tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        if self._return_channel is not None:
            self._return_channel.send(list(self._changes.values()))
        logger.debug("Disposed view %s", self.surface_id)
