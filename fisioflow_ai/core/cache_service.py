"""Three-tier response cache: memory, small durable tier, large durable tier."""

import asyncio
import json
from collections import defaultdict
from dataclasses import replace
from datetime import UTC, datetime, timedelta
from typing import Any, Callable

from fisioflow_ai.lib.errors import StorageFull
from fisioflow_ai.lib.logger import LogCategory, get_logger
from fisioflow_ai.models.cache import CacheEntry
from fisioflow_ai.models.response import EvidenceLevel, Response
from fisioflow_ai.storage.kv_store import KeyValueStore, MemoryStore, SQLiteKVStore

logger = get_logger(__name__, LogCategory.CACHE)

DAY = 24 * 60 * 60

EVIDENCE_TTL = {
    EvidenceLevel.HIGH: 30 * DAY,
    EvidenceLevel.MODERATE: 14 * DAY,
    EvidenceLevel.LOW: 7 * DAY,
}

EMERGENCY_EVICTION_SHARE = 0.25


class TieredCache:
    """Caches premium responses across memory, tier-1 and tier-2 stores.

    Lookups go memory -> tier-1 -> tier-2 and promote hits into every faster
    tier. Writes land in memory plus exactly one durable tier chosen by the
    serialized size of the entry.
    """

    def __init__(
        self,
        memory: MemoryStore,
        tier1: SQLiteKVStore,
        tier2: KeyValueStore,
        default_ttl: int = DAY,
        small_entry_max_bytes: int = 50 * 1024,
        enabled: bool = True,
        clock: Callable[[], datetime] | None = None,
    ):
        self.memory = memory
        self.tier1 = tier1
        self.tier2 = tier2
        self.default_ttl = default_ttl
        self.small_entry_max_bytes = small_entry_max_bytes
        self.enabled = enabled
        self.clock = clock or (lambda: datetime.now(UTC))
        self.lock = asyncio.Lock()

        self.hits: dict[str, int] = defaultdict(int)
        self.misses = 0
        self.writes: dict[str, int] = defaultdict(int)
        self.emergency_cleanups = 0
        self.memory_only_writes = 0

    @property
    def tiers(self) -> list[KeyValueStore]:
        return [self.memory, self.tier1, self.tier2]

    def ttl_for(self, response: Response) -> int:
        """Default TTL in seconds from the response's evidence level."""
        level = response.evidence_level
        if level is None:
            return self.default_ttl
        return EVIDENCE_TTL[level]

    async def get(self, key: str) -> Response | None:
        """Look up a response, promoting hits toward faster tiers.

        Expired entries found on the way are deleted from their tier and the
        lookup continues.

        Args:
            key: Cache key

        Returns:
            Cached response or None
        """
        if not self.enabled:
            return None

        async with self.lock:
            now = self.clock()
            missed: list[KeyValueStore] = []

            for tier in self.tiers:
                try:
                    entry = await tier.get(key)
                except Exception as e:
                    logger.warning(f"Cache {tier.name} read failed for {key}: {e}")
                    missed.append(tier)
                    continue

                if entry is None:
                    missed.append(tier)
                    continue

                if entry.is_expired(now):
                    await tier.delete(key)
                    logger.debug(f"Evicted expired entry {key} from {tier.name}")
                    missed.append(tier)
                    continue

                entry.touch(now)
                await self._write_quietly(tier, key, entry)
                for faster in missed:
                    await self._promote(faster, key, entry)

                self.hits[tier.name] += 1
                logger.info(f"Cache hit in {tier.name} for {key}")
                return entry.response

            self.misses += 1
            return None

    async def _promote(self, tier: KeyValueStore, key: str, entry: CacheEntry) -> None:
        if tier is self.tier1 and self._serialized_size(entry) > self.small_entry_max_bytes:
            return
        await self._write_quietly(tier, key, replace(entry))

    async def _write_quietly(self, tier: KeyValueStore, key: str, entry: CacheEntry) -> None:
        try:
            await tier.set(key, entry)
        except StorageFull:
            logger.debug(f"No room to refresh {key} in {tier.name}")
        except Exception as e:
            logger.warning(f"Cache {tier.name} write failed for {key}: {e}")

    async def set(self, key: str, response: Response, ttl: int | None = None) -> None:
        """Store a response.

        Args:
            key: Cache key
            response: Response to cache
            ttl: Seconds to live; defaults by evidence level
        """
        if not self.enabled:
            return

        ttl = ttl if ttl is not None else self.ttl_for(response)
        if ttl <= 0:
            raise ValueError("ttl must be positive")

        async with self.lock:
            now = self.clock()
            # Cached responses never alias the caller's object
            entry = CacheEntry(
                key=key,
                response=replace(
                    response,
                    references=list(response.references),
                    suggestions=list(response.suggestions),
                    follow_up_questions=list(response.follow_up_questions),
                    metadata=dict(response.metadata),
                ),
                created_at=now,
                expires_at=now + timedelta(seconds=ttl),
                access_count=0,
                last_accessed=now,
            )

            await self.memory.set(key, entry)
            self.writes[self.memory.name] += 1

            size = self._serialized_size(entry)
            if size <= self.small_entry_max_bytes:
                await self._set_tier1(key, entry, size)
            else:
                try:
                    await self.tier2.set(key, replace(entry))
                    self.writes[self.tier2.name] += 1
                except Exception as e:
                    self.memory_only_writes += 1
                    logger.error(f"Tier-2 write failed for {key}, kept in memory only: {e}")

            logger.debug(f"Cached {key} ({size} bytes, ttl {ttl}s)")

    async def _set_tier1(self, key: str, entry: CacheEntry, size: int) -> None:
        try:
            await self.tier1.set(key, replace(entry))
            self.writes[self.tier1.name] += 1
            return
        except StorageFull as e:
            logger.warning(f"{e}; running emergency cleanup")

        evicted = await self._emergency_cleanup()
        try:
            await self.tier1.set(key, replace(entry))
            self.writes[self.tier1.name] += 1
        except StorageFull:
            self.memory_only_writes += 1
            logger.error(
                f"Tier-1 still full after evicting {evicted} entries; "
                f"{key} ({size} bytes) kept in memory only"
            )

    async def _emergency_cleanup(self) -> int:
        """Evict the oldest quarter of tier-1 by last access."""
        self.emergency_cleanups += 1
        entries = []
        for key in await self.tier1.keys():
            entry = await self.tier1.get(key)
            if entry is not None:
                entries.append(entry)

        if not entries:
            return 0

        entries.sort(key=lambda e: e.last_accessed)
        count = max(1, int(len(entries) * EMERGENCY_EVICTION_SHARE))
        for entry in entries[:count]:
            await self.tier1.delete(entry.key)

        logger.info(f"Emergency cleanup evicted {count} of {len(entries)} tier-1 entries")
        return count

    async def delete(self, key: str) -> None:
        async with self.lock:
            for tier in self.tiers:
                await tier.delete(key)

    async def clear(self) -> None:
        async with self.lock:
            for tier in self.tiers:
                await tier.clear()
        logger.info("🧹 Cache cleared")

    async def invalidate(self, pattern: str) -> int:
        """Delete every key containing ``pattern`` from all tiers."""
        removed = 0
        async with self.lock:
            for tier in self.tiers:
                for key in await tier.keys():
                    if pattern in key and await tier.delete(key):
                        removed += 1
        logger.info(f"Invalidated {removed} cache entries matching '{pattern}'")
        return removed

    async def cleanup_expired(self) -> int:
        """Background sweep: delete expired entries in every tier."""
        async with self.lock:
            now = self.clock()
            removed = 0
            for tier in self.tiers:
                try:
                    removed += await tier.purge_expired(now)
                except Exception as e:
                    logger.error(f"Cache sweep failed on {tier.name}: {e}")
        if removed:
            logger.info(f"Cache sweep removed {removed} expired entries")
        return removed

    async def get_stats(self) -> dict[str, Any]:
        total_hits = sum(self.hits.values())
        lookups = total_hits + self.misses
        return {
            "enabled": self.enabled,
            "entries": {
                "memory": await self.memory.size(),
                "tier1": await self.tier1.size(),
                "tier2": await self.tier2.size(),
            },
            "tier1_bytes": await self.tier1.used_bytes(),
            "tier1_capacity": self.tier1.max_bytes,
            "hits": dict(self.hits),
            "misses": self.misses,
            "hit_rate": total_hits / lookups if lookups else 0.0,
            "writes": dict(self.writes),
            "emergency_cleanups": self.emergency_cleanups,
            "memory_only_writes": self.memory_only_writes,
            "memory_evictions": self.memory.evictions,
        }

    @staticmethod
    def _serialized_size(entry: CacheEntry) -> int:
        return len(json.dumps(entry.to_dict(), ensure_ascii=False).encode("utf-8"))
