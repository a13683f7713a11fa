"""Provider, cache and alert management endpoints."""

import logging

from fastapi import APIRouter, Depends, HTTPException

from fisioflow_ai.api.dependencies import get_engine
from fisioflow_ai.api.models.errors import not_found_error
from fisioflow_ai.core.engine import AIEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1", tags=["operations"])


@router.get("/providers")
async def provider_stats(engine: AIEngine = Depends(get_engine)):
    return engine.get_provider_stats()


@router.post("/providers/test")
async def test_providers(engine: AIEngine = Depends(get_engine)):
    """Run a connectivity check against every provider."""
    results = await engine.test_all_providers()
    logger.info(f"Provider connectivity: {results}")
    return results


@router.delete("/cache")
async def clear_cache(engine: AIEngine = Depends(get_engine)):
    await engine.clear_cache()
    return {"cleared": True}


@router.get("/alerts")
async def list_alerts(include_resolved: bool = False, engine: AIEngine = Depends(get_engine)):
    alerts = engine.get_alerts(include_resolved=include_resolved)
    return {"data": [a.to_dict() for a in alerts], "total": len(alerts)}


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(alert_id: str, engine: AIEngine = Depends(get_engine)):
    try:
        alert = engine.resolve_alert(alert_id)
    except KeyError:
        raise HTTPException(
            status_code=404,
            detail=not_found_error(f"Alert {alert_id} not found", param="id").model_dump(),
        )
    return alert.to_dict()
