"""Tests for hard75.data.cache — LocalCache (SQLite key/value storage)."""

import sqlite3

from hard75.data.cache import LocalCache, completions_key


class TestLocalCacheGetSet:
    def test_missing_key_returns_default(self, cache):
        assert cache.get("nope") is None
        assert cache.get("nope", []) == []

    def test_round_trips_json_values(self, cache):
        cache.set("custom_tasks", [{"id": "t1", "order_index": 0}])
        assert cache.get("custom_tasks") == [{"id": "t1", "order_index": 0}]

    def test_set_overwrites(self, cache):
        cache.set("user_profile", {"name": "A"})
        cache.set("user_profile", {"name": "B"})
        assert cache.get("user_profile") == {"name": "B"}

    def test_unserializable_value_is_skipped(self, cache):
        cache.set("bad", {"when": object()})
        assert cache.get("bad") is None

    def test_corrupt_row_falls_back_to_default(self, cache, tmp_path):
        with sqlite3.connect(str(tmp_path / "test_cache.db")) as conn:
            conn.execute(
                "INSERT INTO cache (key, value, updated_at) VALUES ('broken', '{oops', 'now')"
            )
        assert cache.get("broken", "fallback") == "fallback"

    def test_persists_across_instances(self, tmp_path):
        path = str(tmp_path / "shared.db")
        LocalCache(db_path=path).set("challenges", [{"id": "c1"}])
        assert LocalCache(db_path=path).get("challenges") == [{"id": "c1"}]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "cache.db"
        LocalCache(db_path=str(path)).set("k", 1)
        assert path.exists()


class TestLocalCacheMaintenance:
    def test_remove(self, cache):
        cache.set("k", 1)
        cache.remove("k")
        assert cache.get("k") is None

    def test_clear(self, cache):
        cache.set("a", 1)
        cache.set("b", 2)
        cache.clear()
        assert cache.keys() == []

    def test_keys_by_prefix(self, cache):
        cache.set(completions_key("2024-01-02"), {})
        cache.set(completions_key("2024-01-01"), {})
        cache.set("custom_tasks", [])
        assert cache.keys("task_completions_") == [
            "task_completions_2024-01-01",
            "task_completions_2024-01-02",
        ]
        assert len(cache.keys()) == 3


class TestInMemoryCache:
    def test_memory_database_keeps_data(self):
        cache = LocalCache(db_path=":memory:")
        cache.set("k", {"v": 1})
        assert cache.get("k") == {"v": 1}
