"""Local overlay of completions the ledger has not reflected yet.

Every mutation is written to the durable key-value store before the
in-memory index, so a completion tapped just before the process dies is
still shown (and still verified) after a restart.

Reconciliation never regresses: a remote read that contradicts an overlay
entry keeps the overlay, because the read may predate the write. The entry
is only dropped when a remote read agrees with it, or when the remote call
is known to have failed and the contradiction outlives the grace window.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field, ValidationError

from flockcare.core.config import Constants, settings
from flockcare.core.kv_store import KeyValueStore
from flockcare.domain.task import OverlayEntry, OverlayStatus, TaskInstance
from flockcare.schedule.materializer import parse_instance_id


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ReconcileReport(BaseModel):
    """Outcome of reconciling the overlay against one remote snapshot."""

    confirmed: list[str] = Field(default_factory=list, description="Entries the remote now agrees with (dropped)")
    kept: list[str] = Field(default_factory=list, description="Entries kept over a contradicting remote read")
    mismatched: list[OverlayEntry] = Field(
        default_factory=list, description="Unconfirmed entries contradicted past the grace window (dropped)"
    )


class OverlayCache:
    """Durable overlay of pending local completion state, keyed by instance ID."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        grace_seconds: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize over a durable store. Call ``load`` to pick up entries from a previous run."""
        self._store = store
        self._index: dict[str, OverlayEntry] = {}
        self._grace = timedelta(
            seconds=grace_seconds if grace_seconds is not None else settings.reconcile_grace_seconds
        )
        self._clock = clock

    @staticmethod
    def _key(instance_id: str) -> str:
        return f"{Constants.OVERLAY_KEY_PREFIX}{instance_id}"

    async def _write(self, entry: OverlayEntry) -> None:
        await self._store.set(self._key(entry.instance_id), entry.model_dump_json())
        self._index[entry.instance_id] = entry

    async def load(self) -> int:
        """Rebuild the in-memory index from the durable store.

        Entries whose remote call was in flight when the process stopped are
        marked unconfirmed: the call's outcome is unknown.

        Returns:
            Number of entries loaded
        """
        self._index.clear()
        for key in await self._store.keys(Constants.OVERLAY_KEY_PREFIX):
            raw = await self._store.get(key)
            if raw is None:
                continue
            try:
                entry = OverlayEntry.model_validate_json(raw)
            except ValidationError as e:
                logger.warning("Dropping unreadable overlay entry %s: %s", key, e)
                await self._store.remove(key)
                continue

            if entry.status == OverlayStatus.IN_FLIGHT:
                entry = entry.model_copy(update={"status": OverlayStatus.UNCONFIRMED})
                await self._write(entry)
            else:
                self._index[entry.instance_id] = entry

        logger.info("Loaded %d overlay entries", len(self._index))
        return len(self._index)

    async def mark_pending(
        self,
        instance_id: str,
        completed: bool,
        *,
        batch_id: str | None = None,
        status: OverlayStatus = OverlayStatus.IN_FLIGHT,
    ) -> OverlayEntry:
        """Record a local mutation; durable before this returns."""
        parsed = parse_instance_id(instance_id)
        entry = OverlayEntry(
            instance_id=instance_id,
            batch_id=batch_id or (parsed[0] if parsed else ""),
            day_of_age=parsed[2] if parsed else 0,
            completed=completed,
            updated_at=self._clock(),
            status=status,
        )
        await self._write(entry)
        logger.debug("Overlay %s -> completed=%s (%s)", instance_id, completed, status)
        return entry

    async def set_status(self, instance_id: str, status: OverlayStatus) -> OverlayEntry | None:
        """Move an existing entry to a new status, keeping its mutation time."""
        entry = self._index.get(instance_id)
        if entry is None or entry.status == status:
            return entry
        entry = entry.model_copy(update={"status": status})
        await self._write(entry)
        return entry

    def get_overlay(self, instance_id: str) -> OverlayEntry | None:
        return self._index.get(instance_id)

    def pending(self, batch_id: str | None = None) -> list[OverlayEntry]:
        """Entries not yet reflected by a remote read, oldest first."""
        entries = [e for e in self._index.values() if batch_id is None or e.batch_id == batch_id]
        return sorted(entries, key=lambda e: e.updated_at)

    async def discard(self, instance_id: str) -> None:
        await self._store.remove(self._key(instance_id))
        self._index.pop(instance_id, None)

    async def reconcile(self, remote_snapshot: Iterable[TaskInstance], now: datetime | None = None) -> ReconcileReport:
        """Settle overlay entries against a fresh remote read.

        Only instances present in the snapshot are considered.
        """
        report = ReconcileReport()
        current = now or self._clock()

        for remote in remote_snapshot:
            entry = self._index.get(remote.instance_id)
            if entry is None:
                continue

            if remote.completed == entry.completed:
                await self.discard(entry.instance_id)
                report.confirmed.append(entry.instance_id)
            elif entry.status == OverlayStatus.UNCONFIRMED and current - entry.updated_at > self._grace:
                await self.discard(entry.instance_id)
                report.mismatched.append(entry)
                logger.warning(
                    "Overlay mismatch for %s: local completed=%s, remote completed=%s",
                    entry.instance_id,
                    entry.completed,
                    remote.completed,
                )
            else:
                report.kept.append(entry.instance_id)

        if report.confirmed or report.mismatched:
            logger.debug(
                "Reconciled overlay: %d confirmed, %d kept, %d mismatched",
                len(report.confirmed),
                len(report.kept),
                len(report.mismatched),
            )
        return report

    def apply(self, instances: Iterable[TaskInstance]) -> list[TaskInstance]:
        """Merge overlay entries over a list of instances."""
        merged = []
        for instance in instances:
            entry = self._index.get(instance.instance_id)
            if entry is None or entry.completed == instance.completed:
                merged.append(instance)
            else:
                merged.append(
                    instance.with_completion(
                        completed=entry.completed,
                        completed_at=entry.updated_at,
                        completed_by=instance.completed_by,
                    )
                )
        return merged
