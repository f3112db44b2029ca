#!/usr/bin/env python3
"""
🗄️ INCOME SIGNAL ENGINE - ANALYSIS CACHE
src/income_engine/core/analysis_cache.py

Thread-safe, namespaced, TTL-bounded cache for analysis results.

- One lock per namespace; operations on different namespaces never contend
- Payloads are deep-copied on the way in and out, so callers cannot mutate
  a cached entry through a reference they hold
- Expired entries are evicted when read
- A miss is a ``None`` return, not an exception

Author: Income Signal Engine
Version: 1.0.0
"""

import copy
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from .logger import LoggerFactory, LogCategory

DEFAULT_NAMESPACES = ("analysis", "opportunities")

# ============================================================================
# CACHE CONTAINERS
# ============================================================================

@dataclass
class CacheEntry:
    payload: Any
    stored_at: float

class ThreadSafeCounter:
    """Thread-safe counter for cache statistics"""

    def __init__(self, initial_value: int = 0):
        self._value = initial_value
        self._lock = threading.RLock()

    def increment(self, amount: int = 1) -> int:
        with self._lock:
            self._value += amount
            return self._value

    def get(self) -> int:
        with self._lock:
            return self._value

class _Namespace:
    """Entries of one namespace guarded by their own lock"""

    def __init__(self, name: str):
        self.name = name
        self.entries: Dict[str, CacheEntry] = {}
        self.lock = threading.RLock()
        self.hits = ThreadSafeCounter()
        self.misses = ThreadSafeCounter()

# ============================================================================
# ANALYSIS CACHE
# ============================================================================

class AnalysisCache:
    """
    Namespaced TTL cache

    ``clock`` returns seconds as a float and defaults to ``time.monotonic``;
    tests inject a controllable clock to exercise expiry.
    """

    def __init__(self, ttl_seconds: float = 300.0,
                 namespaces: Iterable[str] = DEFAULT_NAMESPACES,
                 clock: Callable[[], float] = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.ttl_seconds = float(ttl_seconds)
        self.clock = clock
        self.logger = LoggerFactory.get_logger('analysis_cache', LogCategory.CACHE)
        self._namespaces = {name: _Namespace(name) for name in namespaces}

        if not self._namespaces:
            raise ValueError("At least one cache namespace is required")

    def _namespace(self, namespace: str) -> _Namespace:
        try:
            return self._namespaces[namespace]
        except KeyError:
            raise UnknownCacheNamespace(
                f"Unknown cache namespace {namespace!r}; known: {sorted(self._namespaces)}"
            )

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.stored_at > self.ttl_seconds

    # ========================================================================
    # PUBLIC INTERFACE
    # ========================================================================

    def get(self, key: str, namespace: str = "analysis") -> Optional[Any]:
        """Return a copy of the cached payload, or None when absent or expired"""

        ns = self._namespace(namespace)

        with ns.lock:
            entry = ns.entries.get(key)
            if entry is None:
                ns.misses.increment()
                return None

            if self._is_expired(entry, self.clock()):
                del ns.entries[key]
                ns.misses.increment()
                self.logger.debug("Cache entry expired", cache_key=key, namespace=namespace)
                return None

            ns.hits.increment()
            return copy.deepcopy(entry.payload)

    def set(self, key: str, payload: Any, namespace: str = "analysis"):
        """Store a copy of ``payload``; replaces any existing entry"""

        if payload is None:
            raise ValueError("Cannot cache a None payload")

        ns = self._namespace(namespace)
        stored = copy.deepcopy(payload)

        with ns.lock:
            ns.entries[key] = CacheEntry(payload=stored, stored_at=self.clock())

    def invalidate(self, key: str, namespace: str = "analysis") -> bool:
        """Drop one entry; returns whether it existed"""

        ns = self._namespace(namespace)

        with ns.lock:
            removed = ns.entries.pop(key, None) is not None

        if removed:
            self.logger.debug("Cache entry invalidated", cache_key=key, namespace=namespace)
        return removed

    def invalidate_all(self, namespace: Optional[str] = None) -> int:
        """Clear one namespace, or every namespace when none is given"""

        targets = [self._namespace(namespace)] if namespace else list(self._namespaces.values())
        cleared = 0

        for ns in targets:
            with ns.lock:
                cleared += len(ns.entries)
                ns.entries.clear()

        self.logger.info("🗑️ Cache cleared",
                         namespace=namespace or 'all',
                         entries_cleared=cleared)
        return cleared

    def stats(self) -> Dict[str, Any]:
        """Entry count, entry ages and hit/miss counters per namespace"""

        now = self.clock()
        namespaces = {}
        total = 0

        for name, ns in self._namespaces.items():
            with ns.lock:
                ages = {key: round(now - entry.stored_at, 3) for key, entry in ns.entries.items()}

            total += len(ages)
            namespaces[name] = {
                'count': len(ages),
                'keys': sorted(ages),
                'entry_ages': ages,
                'hits': ns.hits.get(),
                'misses': ns.misses.get(),
            }

        return {
            'ttl_seconds': self.ttl_seconds,
            'total_entries': total,
            'namespaces': namespaces,
        }

# ============================================================================
# CACHE EXCEPTIONS
# ============================================================================

class UnknownCacheNamespace(KeyError):
    """Raised for a namespace the cache was not built with"""
    pass
