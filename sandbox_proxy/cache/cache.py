import asyncio
import gzip
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from prometheus_client import Counter

from sandbox_proxy.vars import (
    PROXY_CACHE_COMPRESS_THRESHOLD,
    PROXY_CACHE_EVICT_BATCH,
    PROXY_CACHE_MAX_AGE,
    PROXY_CACHE_MAX_SIZE,
)

logger = logging.getLogger("uvicorn.error")

CACHE_LOOKUPS = Counter(
    "proxy_cache_lookups_total",
    "Content cache lookups by result",
    ["result"],
)


@dataclass
class CacheEntry:
    key: str
    payload: bytes
    content_type: str
    stored_at: float
    is_compressed: bool
    original_size: int


@dataclass(frozen=True)
class CachedContent:
    payload: bytes
    content_type: str


def cache_key(endpoint: str, url: str, *parts) -> str:
    """
    Build a cache fingerprint such as ``image:<url>:<quality>:<format>``.

    Every option that changes the produced bytes must be passed in ``parts``.
    """
    rendered = [str(p).lower() if isinstance(p, bool) else str(p) for p in parts]
    return ":".join([endpoint, url, *rendered])


class CompressingCache:
    """
    In-memory TTL cache of fetched and transformed payloads.

    Payloads above ``compress_threshold`` bytes are stored gzip-compressed;
    (de)compression runs in a worker thread so the event loop keeps serving.
    """

    def __init__(
        self,
        max_age: float = PROXY_CACHE_MAX_AGE,
        max_size: int = PROXY_CACHE_MAX_SIZE,
        compress_threshold: int = PROXY_CACHE_COMPRESS_THRESHOLD,
        evict_batch: int = PROXY_CACHE_EVICT_BATCH,
        clock: Callable[[], float] = time.time,
    ):
        self.max_age = max_age
        self.max_size = max(1, max_size)
        self.compress_threshold = compress_threshold
        self.evict_batch = max(1, evict_batch)
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._key_locks: Dict[str, Tuple[asyncio.Lock, int]] = {}
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    async def get(self, key: str) -> Optional[CachedContent]:
        entry = self._entries.get(key)
        if entry is None:
            self._record_miss()
            return None

        if self._clock() - entry.stored_at > self.max_age:
            # Only drop it if nobody replaced it meanwhile
            if self._entries.get(key) is entry:
                del self._entries[key]
            logger.debug(f"[Cache] Expired {key[:80]}")
            self._record_miss()
            return None

        payload = entry.payload
        if entry.is_compressed:
            payload = await asyncio.to_thread(gzip.decompress, payload)
        self.hits += 1
        CACHE_LOOKUPS.labels(result="hit").inc()
        return CachedContent(payload=payload, content_type=entry.content_type)

    async def set(self, key: str, payload: bytes, content_type: str) -> None:
        lock, users = self._key_locks.get(key, (asyncio.Lock(), 0))
        self._key_locks[key] = (lock, users + 1)
        try:
            async with lock:
                compressed = len(payload) > self.compress_threshold
                stored = (
                    await asyncio.to_thread(gzip.compress, payload)
                    if compressed
                    else bytes(payload)
                )
                if len(self._entries) >= self.max_size:
                    self._evict_oldest()
                self._entries[key] = CacheEntry(
                    key=key,
                    payload=stored,
                    content_type=content_type,
                    stored_at=self._clock(),
                    is_compressed=compressed,
                    original_size=len(payload),
                )
        finally:
            lock, users = self._key_locks[key]
            if users <= 1:
                del self._key_locks[key]
            else:
                self._key_locks[key] = (lock, users - 1)

    def _evict_oldest(self) -> None:
        oldest = sorted(self._entries.values(), key=lambda e: e.stored_at)
        for entry in oldest[: self.evict_batch]:
            del self._entries[entry.key]
        logger.debug(f"[Cache] Evicted {min(len(oldest), self.evict_batch)} entries")

    def _record_miss(self) -> None:
        self.misses += 1
        CACHE_LOOKUPS.labels(result="miss").inc()

    def clear(self) -> None:
        size_before = len(self._entries)
        self._entries.clear()
        self.hits = 0
        self.misses = 0
        logger.info(f"[Cache] Cleared {size_before} entries")

    def stats(self) -> dict:
        total = self.hits + self.misses
        hit_rate = (self.hits / total * 100) if total > 0 else 0
        stored = sum(len(e.payload) for e in self._entries.values())
        original = sum(e.original_size for e in self._entries.values())
        ratio = (original / stored) if stored else 1.0
        return {
            "cacheSize": len(self._entries),
            "maxSize": self.max_size,
            "maxAgeSeconds": self.max_age,
            "hits": self.hits,
            "misses": self.misses,
            "hitRate": f"{hit_rate:.1f}%",
            "compressedEntries": sum(
                1 for e in self._entries.values() if e.is_compressed
            ),
            "storedBytes": stored,
            "compressionRatio": f"{ratio:.1f}:1",
        }
