"""Tests for the tiered response cache."""

from datetime import timedelta

import pytest

from fisioflow_ai.core.cache_service import EVIDENCE_TTL, TieredCache
from fisioflow_ai.models.cache import CacheEntry
from fisioflow_ai.models.response import EvidenceLevel, Response, ResponseSource
from fisioflow_ai.storage.kv_store import MemoryStore, SQLiteDocumentStore, SQLiteKVStore


def premium_response(content="Resposta premium", evidence=None):
    metadata = {"evidence_level": evidence.value} if evidence else {}
    return Response(
        query_id="q-1",
        content=content,
        confidence=0.85,
        source=ResponseSource.PREMIUM,
        provider="chatgpt_plus",
        metadata=metadata,
    )


@pytest.fixture
def make_cache(tmp_path, clock):
    def factory(**kwargs):
        return TieredCache(
            memory=MemoryStore(max_entries=kwargs.pop("memory_max_entries", 1000)),
            tier1=SQLiteKVStore(
                tmp_path / "tier1.db", max_bytes=kwargs.pop("tier1_max_bytes", 5 * 1024 * 1024)
            ),
            tier2=SQLiteDocumentStore(tmp_path / "tier2.db"),
            clock=clock,
            **kwargs,
        )

    return factory


@pytest.mark.unit
def test_cache_entry_rejects_non_positive_lifetime(clock):
    with pytest.raises(ValueError):
        CacheEntry(
            key="k", response=premium_response(), created_at=clock(), expires_at=clock()
        )


@pytest.mark.unit
def test_ttl_follows_evidence_level(make_cache):
    cache = make_cache(default_ttl=3600)

    assert cache.ttl_for(premium_response()) == 3600
    assert cache.ttl_for(premium_response(evidence=EvidenceLevel.HIGH)) == 30 * 86400
    assert cache.ttl_for(premium_response(evidence=EvidenceLevel.MODERATE)) == 14 * 86400
    assert EVIDENCE_TTL[EvidenceLevel.LOW] == 7 * 86400


@pytest.mark.unit
@pytest.mark.asyncio
async def test_set_writes_memory_and_tier1_for_small_entries(make_cache):
    cache = make_cache()

    await cache.set("ai_cache_1", premium_response())

    assert await cache.memory.size() == 1
    assert await cache.tier1.size() == 1
    assert await cache.tier2.size() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cached_answer_is_isolated_from_caller_changes(make_cache):
    cache = make_cache()
    response = premium_response()

    await cache.set("ai_cache_1", response)
    response.response_time = 1234.0
    response.metadata["model"] = "changed"
    response.references.append("Outra referência")

    cached = await cache.get("ai_cache_1")
    assert cached.response_time == 0.0
    assert "model" not in cached.metadata
    assert cached.references == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_set_writes_tier2_for_large_entries(make_cache):
    cache = make_cache(small_entry_max_bytes=1024)

    await cache.set("ai_cache_big", premium_response(content="x" * 4096))

    assert await cache.tier1.size() == 0
    assert await cache.tier2.size() == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_hit_and_miss(make_cache):
    cache = make_cache()
    await cache.set("ai_cache_1", premium_response())

    hit = await cache.get("ai_cache_1")
    assert hit.content == "Resposta premium"
    assert await cache.get("ai_cache_2") is None

    stats = await cache.get_stats()
    assert stats["hits"] == {"memory": 1}
    assert stats["misses"] == 1
    assert stats["hit_rate"] == pytest.approx(0.5)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_promotes_from_tier1_to_memory(make_cache):
    cache = make_cache()
    await cache.set("ai_cache_1", premium_response())
    await cache.memory.clear()

    assert await cache.get("ai_cache_1") is not None
    assert await cache.memory.get("ai_cache_1") is not None
    assert (await cache.get_stats())["hits"] == {"tier1": 1}


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_promotes_from_tier2_to_faster_tiers(make_cache):
    cache = make_cache()
    await cache.set("ai_cache_1", premium_response())
    entry = await cache.tier1.get("ai_cache_1")
    await cache.tier2.set("ai_cache_1", entry)
    await cache.memory.clear()
    await cache.tier1.clear()

    assert await cache.get("ai_cache_1") is not None
    assert await cache.memory.get("ai_cache_1") is not None
    assert await cache.tier1.get("ai_cache_1") is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_expired_entries_are_evicted_on_read(make_cache, clock):
    cache = make_cache()
    await cache.set("ai_cache_1", premium_response(), ttl=60)

    clock.advance(seconds=60)

    assert await cache.get("ai_cache_1") is None
    assert await cache.memory.size() == 0
    assert await cache.tier1.size() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cleanup_expired_sweeps_every_tier(make_cache, clock):
    cache = make_cache(small_entry_max_bytes=1024)
    await cache.set("short", premium_response(), ttl=60)
    await cache.set("short-big", premium_response(content="x" * 4096), ttl=60)
    await cache.set("long", premium_response(), ttl=3600)

    clock.advance(minutes=5)

    assert await cache.cleanup_expired() == 4
    assert await cache.memory.keys() == ["long"]
    assert await cache.tier1.keys() == ["long"]
    assert await cache.tier2.size() == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rejects_non_positive_ttl(make_cache):
    cache = make_cache()
    with pytest.raises(ValueError):
        await cache.set("ai_cache_1", premium_response(), ttl=0)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_memory_tier_evicts_least_recently_accessed(make_cache, clock):
    cache = make_cache(memory_max_entries=2)
    await cache.set("a", premium_response())
    clock.advance(seconds=1)
    await cache.set("b", premium_response())
    clock.advance(seconds=1)
    await cache.get("a")
    clock.advance(seconds=1)
    await cache.set("c", premium_response())

    assert sorted(await cache.memory.keys()) == ["a", "c"]
    assert cache.memory.evictions == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tier1_full_triggers_emergency_cleanup(make_cache, clock):
    probe = make_cache()
    await probe.set("probe", premium_response())
    entry_bytes = await probe.tier1.used_bytes()
    await probe.clear()

    cache = make_cache(tier1_max_bytes=entry_bytes * 4 + entry_bytes // 2)
    for n in range(4):
        await cache.set(f"k{n}", premium_response())
        clock.advance(seconds=1)

    await cache.set("k4", premium_response())

    keys = await cache.tier1.keys()
    assert cache.emergency_cleanups == 1
    assert "k0" not in keys
    assert "k4" in keys
    assert cache.memory_only_writes == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_entry_larger_than_tier1_stays_in_memory(make_cache):
    cache = make_cache(tier1_max_bytes=100)

    await cache.set("ai_cache_1", premium_response())

    assert cache.memory_only_writes == 1
    assert await cache.tier1.size() == 0
    assert await cache.get("ai_cache_1") is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalidate_and_clear(make_cache):
    cache = make_cache()
    await cache.set("ai_cache_lombar", premium_response())
    await cache.set("ai_cache_ombro", premium_response())

    assert await cache.invalidate("lombar") == 2  # memory and tier1
    assert await cache.get("ai_cache_lombar") is None

    await cache.clear()
    assert await cache.get("ai_cache_ombro") is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disabled_cache_is_a_no_op(make_cache):
    cache = make_cache(enabled=False)
    await cache.set("ai_cache_1", premium_response())

    assert await cache.get("ai_cache_1") is None
    assert await cache.memory.size() == 0


@pytest.mark.unit
def test_entry_expiry_boundary(clock):
    entry = CacheEntry(
        key="k",
        response=premium_response(),
        created_at=clock(),
        expires_at=clock() + timedelta(seconds=10),
    )
    assert not entry.is_expired(clock() + timedelta(seconds=9))
    assert entry.is_expired(clock() + timedelta(seconds=10))
