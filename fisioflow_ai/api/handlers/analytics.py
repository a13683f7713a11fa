"""Analytics and reporting endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from fisioflow_ai.api.dependencies import get_engine
from fisioflow_ai.api.models.errors import not_found_error
from fisioflow_ai.api.models.requests import QueryFeedbackRequest
from fisioflow_ai.core.engine import AIEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/analytics", tags=["analytics"])


@router.get("")
async def current_analytics(engine: AIEngine = Depends(get_engine)):
    return engine.get_current_analytics()


@router.get("/report")
async def detailed_report(period: str = "24h", engine: AIEngine = Depends(get_engine)):
    """Detailed report for ``24h``, ``7d`` or ``30d``."""
    return engine.get_detailed_report(period)


@router.get("/economy")
async def economy_report(engine: AIEngine = Depends(get_engine)):
    return engine.get_economy_report()


@router.post("/feedback")
async def query_feedback(request: QueryFeedbackRequest, engine: AIEngine = Depends(get_engine)):
    if not engine.track_user_feedback(request.query_id, request.rating):
        raise HTTPException(
            status_code=404,
            detail=not_found_error(
                f"Query {request.query_id} not found", param="query_id"
            ).model_dump(),
        )
    return {"query_id": request.query_id, "rating": request.rating}
