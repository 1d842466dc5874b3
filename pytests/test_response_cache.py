from __future__ import annotations

import threading

import pytest

from api.services.response_cache import ResponseCache


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_cached_loads_once():
    cache = ResponseCache()
    calls = []

    def loader():
        calls.append(1)
        return "value"

    assert cache.cached("company", 1, loader) == "value"
    assert cache.cached("company", 1, loader) == "value"
    assert len(calls) == 1
    assert cache.stats()["company"] == {
        "size": 1,
        "hits": 1,
        "misses": 1,
        "in_flight": 0,
        "tracked_keys": 0,
    }


def test_loader_errors_are_not_cached():
    cache = ResponseCache()

    def boom():
        raise LookupError("nope")

    with pytest.raises(LookupError):
        cache.cached("company", 1, boom)
    assert cache.peek("company", 1) is None
    assert cache.cached("company", 1, lambda: "ok") == "ok"


def test_evict_only_touches_one_key():
    cache = ResponseCache()
    cache.cached("company", 1, lambda: "a")
    cache.cached("company", 2, lambda: "b")
    cache.cached("checkVat", 1, lambda: "c")

    cache.evict("company", 1)

    assert cache.peek("company", 1) is None
    assert cache.peek("company", 2) == "b"
    assert cache.peek("checkVat", 1) == "c"


def test_evict_all_drops_region_only():
    cache = ResponseCache()
    cache.cached("companies", (0, None), lambda: ["x"])
    cache.cached("companies", (1, 10), lambda: ["y"])
    cache.cached("company", 1, lambda: "a")

    cache.evict_all("companies")

    assert cache.peek("companies", (0, None)) is None
    assert cache.peek("companies", (1, 10)) is None
    assert cache.peek("company", 1) == "a"


def test_put_after_key_eviction_is_dropped():
    cache = ResponseCache()
    token = cache.begin("company", 1)
    cache.evict("company", 1)
    assert cache.put("company", 1, "stale", token) is False
    assert cache.peek("company", 1) is None


def test_put_after_region_eviction_is_dropped():
    cache = ResponseCache()
    token = cache.begin("companies", (0, None))
    cache.evict_all("companies")
    assert cache.put("companies", (0, None), ["stale"], token) is False
    assert len(cache) == 0


def test_put_with_current_token_is_stored():
    cache = ResponseCache()
    cache.evict("company", 1)
    token = cache.begin("company", 1)
    assert cache.put("company", 1, "fresh", token) is True
    assert cache.get("company", 1) == "fresh"


def test_put_rejects_token_for_other_key():
    cache = ResponseCache()
    token = cache.begin("company", 1)
    with pytest.raises(ValueError):
        cache.put("company", 2, "x", token)


def test_in_flight_load_does_not_resurrect_evicted_data():
    cache = ResponseCache()
    loading = threading.Event()
    evicted = threading.Event()
    results = []

    def slow_loader():
        loading.set()
        assert evicted.wait(timeout=5)
        return "pre-update"

    t = threading.Thread(target=lambda: results.append(cache.cached("company", 1, slow_loader)))
    t.start()
    assert loading.wait(timeout=5)
    cache.evict("company", 1)
    evicted.set()
    t.join(timeout=5)

    # The caller still gets its answer, but it is not kept.
    assert results == ["pre-update"]
    assert cache.peek("company", 1) is None
    assert cache.cached("company", 1, lambda: "post-update") == "post-update"


def test_ttl_expiry():
    clock = _Clock()
    cache = ResponseCache(ttl_seconds=30, clock=clock)
    cache.cached("company", 1, lambda: "a")

    clock.now += 29
    assert cache.get("company", 1) == "a"

    clock.now += 1
    assert cache.get("company", 1) is None
    assert cache.cached("company", 1, lambda: "b") == "b"


def test_disabled_cache_always_loads():
    cache = ResponseCache(enabled=False)
    calls = []
    for _ in range(3):
        cache.cached("company", 1, lambda: calls.append(1) or len(calls))
    assert len(calls) == 3
    assert len(cache) == 0


def test_clear_drops_everything():
    cache = ResponseCache()
    cache.cached("company", 1, lambda: "a")
    cache.cached("checkVat", 1, lambda: "b")
    token = cache.begin("company", 2)

    cache.clear()

    assert len(cache) == 0
    assert cache.put("company", 2, "stale", token) is False


def test_concurrent_access_is_consistent():
    cache = ResponseCache()
    errors = []

    def worker(n: int) -> None:
        try:
            for i in range(200):
                key = (n + i) % 10
                value = cache.cached("company", key, lambda k=key: f"v{k}")
                if value != f"v{key}":
                    errors.append(value)
                if i % 7 == 0:
                    cache.evict("company", key)
                if i % 50 == 0:
                    cache.evict_all("company")
        except Exception as e:  # pragma: no cover - surfaced via assert below
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []


def test_evicting_idle_keys_leaves_no_bookkeeping():
    cache = ResponseCache()
    for company_id in range(1, 1001):
        cache.cached("company", company_id, lambda: "a")
        cache.evict("company", company_id)
        cache.evict("checkVat", company_id)

    for region in ("company", "checkVat"):
        stats = cache.stats()[region]
        assert stats["size"] == 0
        assert stats["in_flight"] == 0
        assert stats["tracked_keys"] == 0


def test_eviction_bookkeeping_dropped_when_load_finishes():
    cache = ResponseCache()
    token = cache.begin("company", 1)
    cache.evict("company", 1)
    assert cache.stats()["company"]["tracked_keys"] == 1
    assert cache.stats()["company"]["in_flight"] == 1

    assert cache.put("company", 1, "stale", token) is False
    assert cache.stats()["company"]["tracked_keys"] == 0
    assert cache.stats()["company"]["in_flight"] == 0


def test_failed_and_released_loads_are_not_tracked():
    cache = ResponseCache()

    def boom():
        raise LookupError("nope")

    with pytest.raises(LookupError):
        cache.cached("checkVat", 1, boom)

    token = cache.begin("checkVat", 2)
    cache.evict("checkVat", 2)
    cache.release(token)

    assert cache.stats()["checkVat"]["in_flight"] == 0
    assert cache.stats()["checkVat"]["tracked_keys"] == 0


def test_overlapping_loads_keep_eviction_until_last_finishes():
    cache = ResponseCache()
    first = cache.begin("company", 1)
    cache.evict("company", 1)
    second = cache.begin("company", 1)

    assert cache.put("company", 1, "stale", first) is False
    # The second load started after the eviction, so its value is current.
    assert cache.put("company", 1, "fresh", second) is True
    assert cache.peek("company", 1) == "fresh"
    assert cache.stats()["company"]["tracked_keys"] == 0
