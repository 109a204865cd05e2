"""Tests for the cache services and progress stores."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from linguascore.exceptions import PersistenceError
from linguascore.storage.cache import MemoryCache, RedisCache, text_cache_key
from linguascore.storage.progress_store import (
    JsonProgressStore,
    MemoryProgressStore,
    apply_update,
    get_path,
)


class TestMemoryCache:
    async def test_set_get(self):
        cache = MemoryCache()
        await cache.set("k", "v", 60)
        assert await cache.get("k") == "v"
        assert await cache.get("missing") is None

    async def test_expired_entry_is_a_miss(self):
        cache = MemoryCache()
        await cache.set("k", "v", 0)
        assert await cache.get("k") is None
        assert len(cache) == 0

    async def test_eviction_when_full(self):
        cache = MemoryCache(max_entries=2)
        await cache.set("a", "1", 60)
        await cache.set("b", "2", 60)
        await cache.set("c", "3", 60)
        assert len(cache) == 2
        assert await cache.get("a") is None
        assert await cache.get("c") == "3"

    def test_text_cache_key_is_stable(self):
        assert text_cache_key("p", "hello") == text_cache_key("p", "hello")
        assert text_cache_key("p", "hello") != text_cache_key("p", "hello", "pro")
        assert text_cache_key("p", "x").startswith("p:")


class TestRedisCache:
    def _cache(self, client):
        cache = RedisCache("redis://localhost:6379/0")
        cache._client = client
        return cache

    async def test_errors_degrade_to_miss(self):
        client = MagicMock()
        client.get = AsyncMock(side_effect=ConnectionError("refused"))
        client.setex = AsyncMock(side_effect=ConnectionError("refused"))
        client.ping = AsyncMock(side_effect=ConnectionError("refused"))
        cache = self._cache(client)
        assert await cache.get("k") is None
        await cache.set("k", "v", 10)
        assert await cache.ping() is False

    async def test_set_uses_ttl(self):
        client = MagicMock()
        client.setex = AsyncMock()
        client.get = AsyncMock(return_value="v")
        cache = self._cache(client)
        await cache.set("k", "v", 30)
        client.setex.assert_awaited_once_with("k", 30, "v")
        assert await cache.get("k") == "v"


class TestApplyUpdate:
    def test_operators(self):
        doc = {"stats": {"total_messages": 2}, "tags": ["a"]}
        apply_update(
            doc,
            inc={"stats.total_messages": 3, "total_xp": 10},
            set_={"stats.recent_accuracy": 82.5},
            add_to_set={"tags": ["a", "b"]},
        )
        assert doc["stats"] == {"total_messages": 5, "recent_accuracy": 82.5}
        assert doc["total_xp"] == 10
        assert doc["tags"] == ["a", "b"]

    def test_set_replaces_non_dict_parent(self):
        doc = {"streak": 3}
        apply_update(doc, set_={"streak.current": 4})
        assert doc["streak"] == {"current": 4}

    def test_get_path(self):
        doc = {"streak": {"current": 4}}
        assert get_path(doc, "streak.current") == 4
        assert get_path(doc, "streak.longest", 0) == 0
        assert get_path(doc, "streak.current.days") is None


class TestMemoryProgressStore:
    async def test_upsert_and_read(self):
        store = MemoryProgressStore()
        assert await store.find_one("u1") is None
        await store.find_one_and_update("u1", inc={"total_xp": 5})
        doc = await store.find_one_and_update("u1", inc={"total_xp": 7})
        assert doc["total_xp"] == 12
        assert doc["user_id"] == "u1"

    async def test_no_upsert(self):
        store = MemoryProgressStore()
        assert await store.find_one_and_update("u1", inc={"x": 1}, upsert=False) is None
        assert await store.find_one("u1") is None

    async def test_returned_document_is_a_copy(self):
        store = MemoryProgressStore()
        doc = await store.find_one_and_update("u1", set_={"a.b": 1})
        doc["a"]["b"] = 99
        assert (await store.find_one("u1"))["a"]["b"] == 1

    async def test_user_locks_released(self):
        store = MemoryProgressStore()
        for n in range(20):
            await store.find_one_and_update(f"u{n}", inc={"total_xp": 1})
        assert len(store._locks) == 0
        assert (await store.find_one("u19"))["total_xp"] == 1


class TestJsonProgressStore:
    async def test_round_trip(self, tmp_path):
        store = JsonProgressStore(tmp_path)
        await store.find_one_and_update(
            "user/1", inc={"total_xp": 10}, add_to_set={"activities": ["conversation"]}
        )
        await store.find_one_and_update("user/1", inc={"total_xp": 5})
        doc = await store.find_one("user/1")
        assert doc["total_xp"] == 15
        assert doc["activities"] == ["conversation"]
        assert (tmp_path / "user%2F1.json").exists()

    async def test_missing_user(self, tmp_path):
        store = JsonProgressStore(tmp_path)
        assert await store.find_one("ghost") is None
        assert await store.find_one_and_update("ghost", inc={"x": 1}, upsert=False) is None

    async def test_write_failure_raises_persistence_error(self, tmp_path, monkeypatch):
        store = JsonProgressStore(tmp_path)

        def broken_write(path, doc):
            raise OSError("disk full")

        monkeypatch.setattr(store, "_write", broken_write)
        with pytest.raises(PersistenceError) as exc_info:
            await store.find_one_and_update("u1", inc={"total_xp": 1})
        assert exc_info.value.user_id == "u1"

    async def test_similar_ids_keep_separate_documents(self, tmp_path):
        store = JsonProgressStore(tmp_path)
        await store.find_one_and_update("alice.smith", inc={"total_xp": 10})
        await store.find_one_and_update("alice_smith", inc={"total_xp": 3})
        await store.find_one_and_update("alice/smith", inc={"total_xp": 1})
        assert (await store.find_one("alice.smith"))["total_xp"] == 10
        assert (await store.find_one("alice_smith"))["total_xp"] == 3
        assert (await store.find_one("alice/smith"))["user_id"] == "alice/smith"
        assert len(list(tmp_path.glob("*.json"))) == 3
