"""Query resolution endpoint."""

import logging

from fastapi import APIRouter, Depends

from fisioflow_ai.api.dependencies import get_engine
from fisioflow_ai.api.models.requests import QueryRequest
from fisioflow_ai.core.engine import AIEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["queries"])


@router.post("/queries")
async def process_query(request: QueryRequest, engine: AIEngine = Depends(get_engine)):
    """Resolve a clinical query through knowledge base, cache, provider or fallback.

    Returns:
        Serialized Response; ``source`` tells which stage answered
    """
    response = await engine.process_query(
        text=request.text,
        type=request.type,
        context=request.context,
        priority=request.priority,
        max_response_time=request.max_response_time,
    )
    return response.to_dict()
