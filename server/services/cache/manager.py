# =============================================================================
# services/cache/manager.py
# =============================================================================

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    expires_at: float
    last_accessed: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class CacheManager:
    """
    Generic in-memory key/value cache with per-entry TTL
    Size-bounded with least-recently-accessed eviction, plus a periodic sweep
    for entries nobody reads again.

    One instance is created at service start and handed to every upstream
    client; all mutations run without awaiting, so the event loop keeps them atomic.
    """

    def __init__(self, max_entries: int = 1000, sweep_interval_seconds: float = 1800,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.sweep_interval_seconds = sweep_interval_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._sweeper: Optional[asyncio.Task] = None

    # ===== LIFECYCLE =====

    def start(self):
        """Start the background sweep task on the running event loop"""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())
            logger.info(f"🧹 Cache sweeper started (every {self.sweep_interval_seconds}s)")

    async def close(self):
        """Stop the sweeper and drop every entry"""
        if self._sweeper is not None:
            self._sweeper.cancel()
            try:
                await self._sweeper
            except asyncio.CancelledError:
                pass
            self._sweeper = None
        self.clear()

    async def _sweep_loop(self):
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            removed = self.sweep()
            if removed:
                logger.info(f"🧹 Cache cleanup: removed {removed} expired items")

    # ===== CORE OPERATIONS =====

    async def get(self, key: str) -> Optional[Any]:
        """Return the cached value, or None when missing or expired"""
        entry = self._entries.get(key)
        if entry is None:
            return None

        now = self._clock()
        if entry.is_expired(now):
            self.delete(key)
            return None

        entry.last_accessed = now
        return entry.value

    async def set(self, key: str, value: Any, ttl_seconds: float):
        """Insert or replace an entry, resetting its expiry"""
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            created_at=now,
            expires_at=now + ttl_seconds,
            last_accessed=now
        )
        self.enforce_limit()

    def has(self, key: str) -> bool:
        """Check if a live entry exists (without updating access time)"""
        entry = self._entries.get(key)
        if entry is None:
            return False
        if entry.is_expired(self._clock()):
            self.delete(key)
            return False
        return True

    def delete(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()

    def enforce_limit(self) -> int:
        """Evict least-recently-accessed entries down to max_entries"""
        overflow = len(self._entries) - self.max_entries
        if overflow <= 0:
            return 0

        oldest = sorted(self._entries.values(), key=lambda e: e.last_accessed)[:overflow]
        for entry in oldest:
            del self._entries[entry.key]

        logger.debug(f"Cache limit reached, evicted {len(oldest)} entries")
        return len(oldest)

    def sweep(self) -> int:
        """Remove every currently-expired entry"""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    # ===== MAINTENANCE & INTROSPECTION =====

    def invalidate_pattern(self, pattern: str) -> int:
        """Delete every key matching a regular expression"""
        regex = re.compile(pattern)
        doomed = [key for key in self._entries if regex.search(key)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def keys(self) -> List[str]:
        return list(self._entries.keys())

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> Dict:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total": len(self._entries),
            "active": len(self._entries) - expired,
            "expired": expired,
            "max_entries": self.max_entries,
            "memory_usage": self._estimate_memory_usage()
        }

    def _estimate_memory_usage(self) -> Dict:
        """Rough size estimate based on the JSON form of each value"""
        total = 0
        for key, entry in self._entries.items():
            total += len(key) * 2
            total += len(json.dumps(entry.value, default=str)) * 2
            total += 100  # per-entry overhead
        return {"bytes": total, "mb": round(total / 1024 / 1024, 2)}
