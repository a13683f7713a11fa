"""Knowledge base CRUD, search and feedback endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from fisioflow_ai.api.dependencies import get_engine
from fisioflow_ai.api.models.errors import not_found_error
from fisioflow_ai.api.models.requests import (
    KnowledgeCreateRequest,
    KnowledgeFeedbackRequest,
    KnowledgeUpdateRequest,
)
from fisioflow_ai.core.engine import AIEngine
from fisioflow_ai.models.knowledge import SearchParams

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/knowledge", tags=["knowledge"])


def _not_found(entry_id: str) -> HTTPException:
    return HTTPException(
        status_code=404,
        detail=not_found_error(f"Knowledge entry {entry_id} not found", param="id").model_dump(),
    )


@router.post("", status_code=201)
async def create_entry(request: KnowledgeCreateRequest, engine: AIEngine = Depends(get_engine)):
    entry_id = await engine.add_knowledge(request.model_dump(exclude_none=True))
    return {"id": entry_id}


@router.get("")
async def list_entries(tenant_id: str | None = None, engine: AIEngine = Depends(get_engine)):
    entries = engine.list_entries(tenant_id)
    return {"data": [e.model_dump(mode="json") for e in entries], "total": len(entries)}


@router.get("/statistics")
async def statistics(engine: AIEngine = Depends(get_engine)):
    return engine.get_statistics()


@router.post("/search")
async def search(params: SearchParams, engine: AIEngine = Depends(get_engine)):
    """Ranked knowledge search. Returned entries count as used."""
    results = await engine.search(params)
    return {"data": [r.model_dump(mode="json") for r in results], "total": len(results)}


@router.get("/{entry_id}")
async def get_entry(entry_id: str, engine: AIEngine = Depends(get_engine)):
    entry = engine.get_entry(entry_id)
    if entry is None:
        raise _not_found(entry_id)
    return entry.model_dump(mode="json")


@router.patch("/{entry_id}")
async def update_entry(
    entry_id: str,
    request: KnowledgeUpdateRequest,
    engine: AIEngine = Depends(get_engine),
):
    try:
        entry = await engine.update_entry(entry_id, request.model_dump(exclude_none=True))
    except KeyError:
        raise _not_found(entry_id)
    return entry.model_dump(mode="json")


@router.delete("/{entry_id}")
async def delete_entry(entry_id: str, engine: AIEngine = Depends(get_engine)):
    if not await engine.delete_entry(entry_id):
        raise _not_found(entry_id)
    return {"id": entry_id, "deleted": True}


@router.post("/{entry_id}/feedback")
async def entry_feedback(
    entry_id: str,
    request: KnowledgeFeedbackRequest,
    engine: AIEngine = Depends(get_engine),
):
    try:
        entry = await engine.record_knowledge_feedback(entry_id, request.positive)
    except KeyError:
        raise _not_found(entry_id)
    return {
        "id": entry.id,
        "confidence": entry.confidence,
        "success_rate": entry.success_rate,
        "feedback_count": entry.feedback_count,
    }
