"""In-process response caches with explicit eviction.

Regions are named dicts (e.g. "companies", "company", "checkVat"). Reads that
miss take a token before loading; writes carrying an outdated token are
dropped, so an eviction that happens while a load is in flight cannot be undone
by that load storing pre-eviction data.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional, Tuple, TypeVar

from logging_utils import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass(frozen=True)
class CacheToken:
    region: str
    key: Hashable
    region_generation: int
    key_generation: int


@dataclass
class _Region:
    entries: Dict[Hashable, Tuple[Any, float]] = field(default_factory=dict)
    generation: int = 0
    # Only kept for keys with loads in flight; dropped when the last one finishes.
    key_generations: Dict[Hashable, int] = field(default_factory=dict)
    pending: Dict[Hashable, int] = field(default_factory=dict)
    hits: int = 0
    misses: int = 0


class ResponseCache:
    """Thread-safe cache of named regions.

    `ttl_seconds` <= 0 means entries never expire. `enabled=False` turns every
    read into a miss and every write into a no-op; evictions still work.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = 0,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._lock = threading.Lock()
        self._regions: Dict[str, _Region] = {}
        self._ttl = float(ttl_seconds or 0)
        self._enabled = enabled
        self._clock = clock

    def _region(self, name: str) -> _Region:
        region = self._regions.get(name)
        if region is None:
            region = self._regions[name] = _Region()
        return region

    def get(self, region: str, key: Hashable, default: Any = None) -> Any:
        """Return the cached value, or `default` on a miss."""
        with self._lock:
            value = self._lookup(self._region(region), key)
        return default if value is _MISSING else value

    def _lookup(self, region: _Region, key: Hashable) -> Any:
        if not self._enabled:
            region.misses += 1
            return _MISSING
        entry = region.entries.get(key)
        if entry is None:
            region.misses += 1
            return _MISSING
        value, stored_at = entry
        if self._ttl > 0 and self._clock() - stored_at >= self._ttl:
            del region.entries[key]
            region.misses += 1
            return _MISSING
        region.hits += 1
        return value

    def _token(self, region: str, key: Hashable) -> CacheToken:
        r = self._region(region)
        r.pending[key] = r.pending.get(key, 0) + 1
        return CacheToken(
            region=region,
            key=key,
            region_generation=r.generation,
            key_generation=r.key_generations.get(key, 0),
        )

    def _release(self, token: CacheToken) -> None:
        r = self._region(token.region)
        left = r.pending.get(token.key, 0) - 1
        if left > 0:
            r.pending[token.key] = left
        else:
            r.pending.pop(token.key, None)
            r.key_generations.pop(token.key, None)

    def begin(self, region: str, key: Hashable) -> CacheToken:
        """Take a token for a load; hand it back through `put` or `release`."""
        with self._lock:
            return self._token(region, key)

    def release(self, token: CacheToken) -> None:
        """Give back a token whose load failed or was abandoned."""
        with self._lock:
            self._release(token)

    def put(self, region: str, key: Hashable, value: Any, token: CacheToken) -> bool:
        """Store `value` unless the region or key was evicted after `token` was taken.

        Consumes the token. Returns True if the value was stored.
        """
        if token.region != region or token.key != key:
            raise ValueError(f"token for {token.region}[{token.key!r}] used for {region}[{key!r}]")
        with self._lock:
            r = self._region(region)
            try:
                if not self._enabled:
                    return False
                if (
                    r.generation != token.region_generation
                    or r.key_generations.get(key, 0) != token.key_generation
                ):
                    logger.debug("cache put dropped (evicted meanwhile): %s[%r]", region, key)
                    return False
                r.entries[key] = (value, self._clock())
                return True
            finally:
                self._release(token)

    def cached(self, region: str, key: Hashable, loader: Callable[[], T]) -> T:
        """Return the cached value or call `loader` and cache its result.

        Exceptions raised by `loader` propagate and nothing is cached.
        """
        with self._lock:
            value = self._lookup(self._region(region), key)
            if value is not _MISSING:
                return value
            token = self._token(region, key)
        try:
            value = loader()
        except BaseException:
            self.release(token)
            raise
        self.put(region, key, value, token)
        return value

    def evict(self, region: str, key: Hashable) -> None:
        with self._lock:
            r = self._region(region)
            r.entries.pop(key, None)
            # With no load in flight there is nothing that could write stale data back.
            if r.pending.get(key):
                r.key_generations[key] = r.key_generations.get(key, 0) + 1

    def evict_all(self, region: str) -> None:
        with self._lock:
            r = self._region(region)
            r.entries.clear()
            r.key_generations.clear()
            r.generation += 1

    def clear(self) -> None:
        """Drop every region (entries and counters)."""
        with self._lock:
            for r in self._regions.values():
                r.entries.clear()
                r.key_generations.clear()
                r.generation += 1
                r.hits = 0
                r.misses = 0

    def stats(self) -> Dict[str, Dict[str, int]]:
        with self._lock:
            return {
                name: {
                    "size": len(r.entries),
                    "hits": r.hits,
                    "misses": r.misses,
                    "in_flight": len(r.pending),
                    "tracked_keys": len(r.key_generations),
                }
                for name, r in self._regions.items()
            }

    def __len__(self) -> int:
        with self._lock:
            return sum(len(r.entries) for r in self._regions.values())

    def peek(self, region: str, key: Hashable) -> Optional[Any]:
        """Return the stored value without touching counters or TTL (tests, admin)."""
        with self._lock:
            r = self._regions.get(region)
            if r is None:
                return None
            entry = r.entries.get(key)
            return entry[0] if entry is not None else None
