"""Tests for the local key-value stores."""

import pytest

from flockcare.core.kv_store import InMemoryKeyValueStore, SqliteKeyValueStore


@pytest.fixture(params=["memory", "sqlite"])
async def store(request, tmp_path):
    if request.param == "memory":
        yield InMemoryKeyValueStore()
        return
    async with SqliteKeyValueStore(tmp_path / "kv.db") as sqlite_store:
        yield sqlite_store


@pytest.mark.unit
class TestKeyValueStore:
    async def test_set_get_remove(self, store):
        assert await store.get("overlay:a") is None

        await store.set("overlay:a", "1")
        await store.set("overlay:a", "2")
        assert await store.get("overlay:a") == "2"

        await store.remove("overlay:a")
        await store.remove("overlay:a")
        assert await store.get("overlay:a") is None

    async def test_keys_by_prefix(self, store):
        await store.set("overlay:b", "x")
        await store.set("overlay:a", "x")
        await store.set("overlay_other", "x")
        await store.set("settings", "x")

        assert await store.keys("overlay:") == ["overlay:a", "overlay:b"]
        assert len(await store.keys()) == 4

    async def test_prefix_is_literal(self, store):
        await store.set("a%b", "x")
        await store.set("axb", "x")

        assert await store.keys("a%") == ["a%b"]


@pytest.mark.unit
class TestSqliteKeyValueStore:
    async def test_values_survive_reopen(self, tmp_path):
        path = tmp_path / "nested" / "kv.db"
        async with SqliteKeyValueStore(path) as store:
            await store.set("overlay:a", '{"completed": true}')

        reopened = SqliteKeyValueStore(path)
        assert await reopened.get("overlay:a") == '{"completed": true}'
        assert reopened.is_open
        await reopened.close()
        assert not reopened.is_open

    async def test_health_status(self, tmp_path):
        async with SqliteKeyValueStore(tmp_path / "kv.db") as store:
            await store.set("k", "v")
            status = store.get_health_status()

        assert status["backend"] == "sqlite"
        assert status["total_operations"] == 1
        assert status["open"] is True
