"""Health check endpoint handler."""

import logging

from fastapi import APIRouter, Depends

from fisioflow_ai.api.dependencies import get_engine
from fisioflow_ai.core.engine import AIEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(engine: AIEngine = Depends(get_engine)):
    """Component status: knowledge base, cache, providers and background jobs."""
    status = await engine.health()
    logger.info(f"Health check: {status['status']}")
    return status
