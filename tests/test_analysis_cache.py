"""Analysis cache tests"""

import threading

import pytest

from income_engine.core.analysis_cache import AnalysisCache, UnknownCacheNamespace

def test_miss_returns_none(cache):
    assert cache.get("AAPL:moderate") is None

def test_entry_served_until_ttl_elapses(cache, clock):
    cache.set("AAPL:moderate", {"price": 1.0})

    clock.advance(150)
    assert cache.get("AAPL:moderate") == {"price": 1.0}

    clock.advance(150)
    assert cache.get("AAPL:moderate") == {"price": 1.0}

    clock.advance(0.1)
    assert cache.get("AAPL:moderate") is None
    assert cache.stats()['namespaces']['analysis']['count'] == 0

def test_callers_cannot_mutate_cached_payload(cache):
    payload = {"indicators": [1, 2]}
    cache.set("K", payload)

    payload["indicators"].append(3)
    first = cache.get("K")
    first["indicators"].append(4)

    assert cache.get("K") == {"indicators": [1, 2]}

def test_namespaces_are_isolated(cache):
    cache.set("K", "analysis-value")
    cache.set("K", "opportunity-value", namespace="opportunities")

    assert cache.invalidate("K") is True
    assert cache.get("K") is None
    assert cache.get("K", namespace="opportunities") == "opportunity-value"

def test_invalidate_missing_key(cache):
    assert cache.invalidate("nope") is False

def test_invalidate_all(cache):
    cache.set("A", 1)
    cache.set("B", 2)
    cache.set("C", 3, namespace="opportunities")

    assert cache.invalidate_all("analysis") == 2
    assert cache.get("C", namespace="opportunities") == 3
    assert cache.invalidate_all() == 1
    assert cache.stats()['total_entries'] == 0

def test_stats_report_ages_and_counters(cache, clock):
    cache.set("A", 1)
    clock.advance(12.5)
    cache.set("B", 2)
    cache.get("A")
    cache.get("missing")

    stats = cache.stats()
    analysis = stats['namespaces']['analysis']

    assert stats['ttl_seconds'] == 300.0
    assert stats['total_entries'] == 2
    assert analysis['keys'] == ["A", "B"]
    assert analysis['entry_ages'] == {"A": 12.5, "B": 0.0}
    assert analysis['hits'] == 1
    assert analysis['misses'] == 1

def test_none_payload_rejected(cache):
    with pytest.raises(ValueError):
        cache.set("K", None)

def test_unknown_namespace(cache):
    with pytest.raises(UnknownCacheNamespace):
        cache.get("K", namespace="quotes")

@pytest.mark.parametrize("kwargs", [{"ttl_seconds": 0}, {"namespaces": ()}])
def test_invalid_construction(kwargs):
    with pytest.raises(ValueError):
        AnalysisCache(**kwargs)

def test_concurrent_writers_and_readers():
    cache = AnalysisCache(ttl_seconds=60)
    errors = []

    def worker(n):
        try:
            for i in range(200):
                key = f"S{i % 10}"
                cache.set(key, {"writer": n, "i": i})
                value = cache.get(key)
                assert value is None or set(value) == {"writer", "i"}
                if i % 50 == 0:
                    cache.invalidate_all("opportunities")
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert cache.stats()['namespaces']['analysis']['count'] == 10
