"""Pytest configuration and fixtures for unit tests."""

from datetime import UTC, date, datetime, timedelta

import pytest

from flockcare.core.kv_store import InMemoryKeyValueStore
from flockcare.domain.batch import Batch
from flockcare.services import batch_service
from tests.unit.mocks import InMemoryDBClient


ENTRY_DATE = date(2026, 3, 1)


class FakeClock:
    """Settable clock injected wherever a component reads the time."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2026, 3, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> datetime:
        self.current += timedelta(**kwargs)
        return self.current

    def set_day(self, entry_date: date, day: int) -> datetime:
        """Move to 08:00 on the given day of age of a batch entered on entry_date."""
        target = entry_date + timedelta(days=day - 1)
        self.current = datetime(target.year, target.month, target.day, 8, 0, tzinfo=UTC)
        return self.current


@pytest.fixture
def in_memory_db():
    """Provides a fresh InMemoryDBClient for each test."""
    return InMemoryDBClient()


@pytest.fixture
def patched_db(monkeypatch, in_memory_db):
    """Patches flockcare.core.db_client functions to use InMemoryDBClient."""
    monkeypatch.setattr("flockcare.core.db_client.create_record", in_memory_db.create_record)
    monkeypatch.setattr("flockcare.core.db_client.get_record", in_memory_db.get_record)
    monkeypatch.setattr("flockcare.core.db_client.update_record", in_memory_db.update_record)
    monkeypatch.setattr("flockcare.core.db_client.delete_record", in_memory_db.delete_record)
    monkeypatch.setattr("flockcare.core.db_client.list_records", in_memory_db.list_records)
    monkeypatch.setattr("flockcare.core.db_client.get_first_record", in_memory_db.get_first_record)
    return in_memory_db


@pytest.fixture
async def batch(patched_db) -> Batch:
    """An active batch entered on ENTRY_DATE."""
    return await batch_service.enroll_batch(batch_number="B-2026-01", entry_date=ENTRY_DATE)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def kv_store() -> InMemoryKeyValueStore:
    return InMemoryKeyValueStore()
