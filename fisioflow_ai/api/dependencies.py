"""Shared FastAPI dependencies."""

from fastapi import HTTPException, Request

from fisioflow_ai.api.models.errors import server_error
from fisioflow_ai.core.engine import AIEngine


def get_engine(request: Request) -> AIEngine:
    """Engine built by the application lifespan."""
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=503, detail=server_error("Engine not started").model_dump()
        )
    return engine
