"""Tests for the knowledge base service and its store."""

import pytest

from fisioflow_ai.core.knowledge_base import KnowledgeBase, generate_summary, initial_confidence
from fisioflow_ai.core.knowledge_index import KnowledgeIndex
from fisioflow_ai.lib.errors import IndexCorruption, ValidationError
from fisioflow_ai.models.knowledge import SearchParams
from fisioflow_ai.storage.knowledge_store import KnowledgeStore
from fisioflow_ai.storage.sqlite_store import SQLiteStore


@pytest.fixture
def sqlite_store(tmp_path):
    return SQLiteStore(db_path=tmp_path / "engine.db")


@pytest.fixture
def kb(sqlite_store, clock):
    return KnowledgeBase(
        store=KnowledgeStore(sqlite_store),
        index=KnowledgeIndex(clock=clock),
        clock=clock,
    )


@pytest.mark.unit
def test_initial_confidence_components(entry_data):
    assert initial_confidence(entry_data()) == pytest.approx(0.9)
    assert initial_confidence(
        entry_data(author={"name": "Estagiário", "experience": 1}, references=[], tags=[])
    ) == pytest.approx(0.5)
    assert initial_confidence(entry_data(content="x" * 600)) == pytest.approx(1.0)


@pytest.mark.unit
def test_generate_summary_takes_two_sentences():
    assert generate_summary("Primeira. Segunda! Terceira? Quarta.") == "Primeira. Segunda."
    assert generate_summary("Uma frase só.") == "Uma frase só."


@pytest.mark.unit
@pytest.mark.asyncio
async def test_add_knowledge_persists_and_indexes(kb, entry_data, clock):
    entry_id = await kb.add_knowledge(entry_data())

    entry = kb.get_entry(entry_id)
    assert entry.confidence == pytest.approx(0.9)
    assert entry.usage_count == 0
    assert entry.created_at == clock()
    assert entry.summary

    stored = kb.store.get(entry_id)
    assert stored.title == entry.title

    results = await kb.search(SearchParams(text="dor lombar crônica"))
    assert [r.entry.id for r in results] == [entry_id]


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"title": "Dor"}, "title"),
        ({"content": "curto demais"}, "content"),
        ({"type": "recipe"}, "type"),
        ({"author": {"experience": 3}}, "author"),
        ({"tenant_id": ""}, "tenant_id"),
    ],
)
async def test_add_knowledge_rejects_invalid(kb, entry_data, overrides, field):
    with pytest.raises(ValidationError) as exc_info:
        await kb.add_knowledge(entry_data(**overrides))
    assert exc_info.value.field == field
    assert kb.list_entries() == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_search_persists_usage_bump(kb, entry_data):
    entry_id = await kb.add_knowledge(entry_data())

    await kb.search(SearchParams(text="lombar"))

    assert kb.store.get(entry_id).usage_count == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_disabled_knowledge_base_returns_nothing(kb, entry_data):
    await kb.add_knowledge(entry_data())
    kb.enabled = False

    assert await kb.search(SearchParams(text="lombar")) == []


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_entry_reindexes(kb, entry_data, clock):
    entry_id = await kb.add_knowledge(entry_data())
    clock.advance(hours=1)

    updated = await kb.update_entry(
        entry_id,
        {"title": "Protocolo para cervicalgia", "content": "Mobilização cervical e exercícios."},
    )

    assert updated.updated_at == clock()
    assert updated.created_at < updated.updated_at
    assert await kb.search(SearchParams(text="cervicalgia"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_update_entry_rejects_protected_fields(kb, entry_data):
    entry_id = await kb.add_knowledge(entry_data())

    with pytest.raises(ValidationError):
        await kb.update_entry(entry_id, {"confidence": 1.0})
    with pytest.raises(KeyError):
        await kb.update_entry("missing", {"title": "Outro título"})


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delete_entry(kb, entry_data):
    entry_id = await kb.add_knowledge(entry_data())

    assert await kb.delete_entry(entry_id) is True
    assert kb.get_entry(entry_id) is None
    assert await kb.search(SearchParams(text="lombar")) == []
    assert await kb.delete_entry(entry_id) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_feedback_adjusts_confidence_within_bounds(kb, entry_data):
    entry_id = await kb.add_knowledge(entry_data())

    entry = await kb.record_feedback(entry_id, positive=True)
    assert entry.confidence == pytest.approx(0.95)
    entry = await kb.record_feedback(entry_id, positive=True)
    entry = await kb.record_feedback(entry_id, positive=True)
    assert entry.confidence == pytest.approx(1.0)

    entry = await kb.record_feedback(entry_id, positive=False)
    assert entry.confidence == pytest.approx(0.95)
    assert entry.feedback_count == 4
    assert entry.success_rate == pytest.approx(0.75)

    for _ in range(30):
        entry = await kb.record_feedback(entry_id, positive=False)
    assert entry.confidence == pytest.approx(0.1)

    with pytest.raises(KeyError):
        await kb.record_feedback("missing", positive=True)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_rebuilds_index_from_store(sqlite_store, kb, entry_data, clock):
    entry_id = await kb.add_knowledge(entry_data())

    restarted = KnowledgeBase(
        store=KnowledgeStore(sqlite_store), index=KnowledgeIndex(clock=clock), clock=clock
    )
    assert await restarted.load() == 1

    results = await restarted.search(SearchParams(text="lombar"))
    assert [r.entry.id for r in results] == [entry_id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_reports_corrupt_documents(sqlite_store, kb):
    sqlite_store.save_knowledge("broken", "clinic-1", {"id": "broken", "updated_at": "now"})

    with pytest.raises(IndexCorruption) as exc_info:
        await kb.load()
    assert exc_info.value.entry_id == "broken"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_statistics(kb, entry_data):
    assert kb.get_statistics()["total_entries"] == 0

    await kb.add_knowledge(entry_data())
    await kb.add_knowledge(entry_data(type="exercise", title="Ponte glútea progressiva"))

    stats = kb.get_statistics()
    assert stats["total_entries"] == 2
    assert stats["by_type"] == {"protocol": 1, "exercise": 1}
    assert stats["by_author"] == {"Dra. Souza": 2}
    assert len(stats["recently_added"]) == 2
