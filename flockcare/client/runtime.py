"""Device-side composition: one store, overlay, notifier and coordinator per process."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import httpx

from flockcare.client.coordinator import TaskCoordinator
from flockcare.client.ledger_client import LedgerClient
from flockcare.client.notifier import CompletionNotifier
from flockcare.client.overlay import OverlayCache
from flockcare.core.config import settings
from flockcare.core.kv_store import SqliteKeyValueStore
from flockcare.core.logging import instrument_httpx
from flockcare.client.scheduler import start_scheduler, stop_scheduler


logger = logging.getLogger(__name__)


@asynccontextmanager
async def open_coordinator(
    *,
    overlay_path: str | Path | None = None,
    base_url: str | None = None,
    http_client: httpx.AsyncClient | None = None,
    run_scheduler: bool = True,
) -> AsyncIterator[TaskCoordinator]:
    """Build a coordinator over the durable overlay and the remote task service.

    Overlay entries left over from a previous run are loaded before the
    coordinator is handed out, and verified immediately.
    """
    store = SqliteKeyValueStore(overlay_path)
    owns_http = http_client is None
    http = http_client
    coordinator: TaskCoordinator | None = None
    scheduler_started = False
    try:
        await store.open()
        if owns_http:
            instrument_httpx()
            http = httpx.AsyncClient()

        overlay = OverlayCache(store)
        restored = await overlay.load()
        coordinator = TaskCoordinator(
            LedgerClient(http, base_url=base_url or settings.ledger_base_url),
            overlay,
            CompletionNotifier(),
        )

        if restored:
            logger.info("Verifying %d overlay entries from a previous run", restored)
            await coordinator.verify_pending()

        if run_scheduler:
            start_scheduler(coordinator)
            scheduler_started = True

        yield coordinator
    finally:
        if scheduler_started:
            stop_scheduler()
        if coordinator is not None:
            await coordinator.close()
        if owns_http and http is not None:
            await http.aclose()
        await store.close()
