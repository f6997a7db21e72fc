import datetime

import pytest

from face_attendance.cache import (
    CacheBackend,
    TTLCacheBackend,
    ReadThroughCache,
    DescriptorCache,
    AttendanceMarkerCache,
    RecentAttendanceMarker,
    SessionCache,
    SessionProjection
)
from face_attendance.exceptions import PersistenceError


class FakeTimer:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenBackend(CacheBackend):
    """所有操作都失败的缓存后端"""

    def get(self, key):
        raise ConnectionError("cache down")

    def set(self, key, value, ttl=None):
        raise ConnectionError("cache down")

    def delete(self, key):
        raise ConnectionError("cache down")

    def items(self, prefix=""):
        raise ConnectionError("cache down")

    def clear(self):
        raise ConnectionError("cache down")


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def backend(timer):
    return TTLCacheBackend(capacity=3, timer=timer)


class TestTTLCacheBackend:
    def test_entry_expires_after_ttl(self, backend, timer):
        backend.set("a", "1", ttl=10)
        timer.now += 9.9
        assert backend.get("a") == "1"
        timer.now += 0.1
        assert backend.get("a") is None

    def test_entry_without_ttl_never_expires(self, backend, timer):
        backend.set("a", "1")
        timer.now += 10 ** 9
        assert backend.get("a") == "1"

    def test_least_recently_used_is_evicted(self, backend):
        backend.set("a", "1")
        backend.set("b", "2")
        backend.set("c", "3")
        backend.get("a")
        backend.set("d", "4")
        assert backend.get("b") is None
        assert backend.get("a") == "1"

    def test_items_filters_prefix_and_expired(self, backend, timer):
        backend.set("x:1", "a", ttl=5)
        backend.set("x:2", "b", ttl=50)
        backend.set("y:1", "c")
        timer.now += 10
        assert backend.items("x:") == {"x:2": "b"}

    def test_delete(self, backend):
        backend.set("a", "1")
        assert backend.delete("a") is True
        assert backend.delete("a") is False


class TestReadThroughCache:
    def test_miss_loads_from_store_and_repopulates(self, backend):
        cache = ReadThroughCache(backend, "t", 60)
        calls = []

        def load():
            calls.append(1)
            return {"v": 1}

        assert cache.get("k", load) == {"v": 1}
        assert cache.get("k", load) == {"v": 1}
        assert len(calls) == 1

    def test_missing_in_store_is_not_cached(self, backend):
        cache = ReadThroughCache(backend, "t", 60)
        assert cache.get("k", lambda: None) is None
        assert cache.peek("k") is None

    def test_write_persists_before_caching(self, backend):
        cache = ReadThroughCache(backend, "t", 60)
        order = []

        def persist():
            order.append("store")
            assert cache.peek("k") is None
            return "row"

        assert cache.write("k", [1], persist) == "row"
        assert order == ["store"]
        assert cache.peek("k") == [1]

    def test_store_failure_leaves_cache_untouched(self, backend):
        cache = ReadThroughCache(backend, "t", 60)
        cache.put("k", "old")

        def persist():
            raise PersistenceError("写入失败")

        with pytest.raises(PersistenceError):
            cache.write("k", "new", persist)
        assert cache.peek("k") == "old"

    def test_cache_failure_is_swallowed(self):
        cache = ReadThroughCache(BrokenBackend(), "t", 60)
        assert cache.write("k", 1, lambda: "row") == "row"
        assert cache.get("k", lambda: 5) == 5
        assert cache.invalidate("k") is False
        assert cache.entries() == {}

    def test_undecodable_entry_is_dropped(self, backend):
        cache = ReadThroughCache(backend, "t", 60)
        backend.set("t:k", "{not json")
        assert cache.peek("k") is None
        assert backend.get("t:k") is None


class TestStores:
    def test_descriptor_completeness_marker_expires_before_entries(self, backend, timer):
        cache = DescriptorCache(TTLCacheBackend(timer=timer), ttl=100)
        cache.replace_all({1: [[0.0] * 128]})
        assert cache.is_complete()

        timer.now += 96
        assert not cache.is_complete()
        assert 1 in cache.get_all()

    def test_replace_all_drops_stale_entries(self, timer):
        cache = DescriptorCache(TTLCacheBackend(timer=timer), ttl=100)
        cache.put(5, [[1.0] * 128])
        cache.replace_all({1: [[0.0] * 128]})
        assert set(cache.get_all()) == {1}

    def test_marker_round_trip(self, backend):
        cache = AttendanceMarkerCache(backend, ttl=3600)
        marker = RecentAttendanceMarker(last_type="ENTRY", timestamp=datetime.datetime(2024, 3, 4, 9, 0))
        cache.put(3, marker)
        assert cache.peek(3) == marker
        assert backend.get("recent_attendance:3") is not None

    def test_session_projection_round_trip(self, backend):
        cache = SessionCache(backend, ttl=60)
        cache.put("sid", SessionProjection(person_id=1, role="admin", name="张三"))
        assert cache.peek("sid") == SessionProjection(person_id=1, role="admin", name="张三")

    def test_malformed_projection_is_dropped(self, backend):
        cache = SessionCache(backend, ttl=60)
        backend.set("session:sid", '{"role": "admin"}')
        assert cache.peek("sid") is None

    def test_evicted_descriptor_entry_makes_gallery_incomplete(self, timer):
        backend = TTLCacheBackend(capacity=3, timer=timer)
        cache = DescriptorCache(backend, ttl=100)
        cache.replace_all({1: [[0.0] * 128], 2: [[1.0] * 128]})
        assert cache.is_complete()

        # 读取标记会把它移到LRU末尾，被淘汰的是最早写入的描述符条目
        backend.set("session:x", "{}")
        assert backend.get("descriptors:1") is None
        assert backend.get("descriptors_meta:__complete__") is not None

        assert not cache.is_complete()
        assert cache.complete_gallery() is None

    def test_single_entry_updates_keep_marker_in_step(self, timer):
        cache = DescriptorCache(TTLCacheBackend(timer=timer), ttl=100)
        cache.replace_all({1: [[0.0] * 128]})

        cache.put(2, [[1.0] * 128])
        assert set(cache.complete_gallery()) == {1, 2}

        cache.invalidate(1)
        assert set(cache.complete_gallery()) == {2}

    def test_empty_gallery_is_complete(self, timer):
        cache = DescriptorCache(TTLCacheBackend(timer=timer), ttl=100)
        assert not cache.is_complete()
        cache.replace_all({})
        assert cache.complete_gallery() == {}
