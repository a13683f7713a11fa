"""
FisioFlow AI Engine HTTP server

Exposes query resolution, knowledge base management, analytics and
operational endpoints over FastAPI. The engine is built on startup from
config/engine.yaml and shut down with the application.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from fisioflow_ai.api.config import APIConfig
from fisioflow_ai.api.handlers.analytics import router as analytics_router
from fisioflow_ai.api.handlers.health import router as health_router
from fisioflow_ai.api.handlers.knowledge import router as knowledge_router
from fisioflow_ai.api.handlers.operations import router as operations_router
from fisioflow_ai.api.handlers.queries import router as queries_router
from fisioflow_ai.api.middleware.request_logger import RequestLoggerMiddleware
from fisioflow_ai.api.models.errors import create_error_response, invalid_request_error, server_error
from fisioflow_ai.core.engine import AIEngine
from fisioflow_ai.lib.config import EngineConfig
from fisioflow_ai.lib.errors import ValidationError
from fisioflow_ai.lib.logger import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build and start the engine, then stop it on shutdown."""
    logger.info("Starting FisioFlow AI API server")

    engine_config = EngineConfig(config_path=app.state.config.get("engine.config_path"))
    engine = AIEngine.from_config(engine_config)
    await engine.start()
    app.state.engine = engine

    yield

    logger.info("Shutting down API server")
    await engine.shutdown()
    app.state.engine = None


app = FastAPI(
    title="FisioFlow AI Engine",
    description="Economical clinical query resolution: knowledge base, cache, premium providers",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

config = APIConfig()
app.state.config = config

setup_logging(
    log_level=config.get("logging.level", "INFO"),
    log_file=config.get("logging.file"),
    structured=config.get("logging.structured", False),
)

if config.get("cors.enabled", True):
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get("cors.allow_origins", ["*"]),
        allow_credentials=True,
        allow_methods=config.get("cors.allow_methods", ["GET", "POST", "OPTIONS"]),
        allow_headers=config.get("cors.allow_headers", ["Content-Type", "Authorization"]),
    )
    logger.info("CORS enabled")

if config.get("logging.log_requests", True):
    app.add_middleware(RequestLoggerMiddleware)
    logger.info("Request logging middleware enabled")


@app.exception_handler(ValidationError)
async def engine_validation_handler(request: Request, exc: ValidationError):
    logger.warning(f"Invalid request on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=400,
        content=invalid_request_error(str(exc), param=exc.field).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    param = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or None
    message = first.get("msg", "Invalid request")
    logger.warning(f"Invalid request on {request.url.path}: {message}")
    return JSONResponse(
        status_code=400,
        content=invalid_request_error(message, param=param).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Return ``{"error": {...}}`` at the top level instead of under ``detail``."""
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(str(exc.detail), "api_error").model_dump(),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(status_code=500, content=server_error().model_dump())


@app.get("/")
async def root():
    """API root endpoint."""
    return {
        "message": "FisioFlow AI Engine",
        "version": "0.1.0",
        "docs": "/docs",
        "endpoints": {
            "queries": "/v1/queries",
            "knowledge": "/v1/knowledge",
            "analytics": "/v1/analytics",
            "providers": "/v1/providers",
            "alerts": "/v1/alerts",
            "health": "/health",
        },
    }


app.include_router(queries_router)
app.include_router(knowledge_router)
app.include_router(analytics_router)
app.include_router(operations_router)
app.include_router(health_router)


if __name__ == "__main__":
    import uvicorn

    server_config = config.get("server", {})

    uvicorn.run(
        "main:app",
        host=server_config.get("host", "0.0.0.0"),
        port=server_config.get("port", 8000),
        reload=server_config.get("reload", False),
        workers=1 if server_config.get("reload", False) else server_config.get("workers", 1),
        log_level=config.get("logging.level", "info").lower(),
    )
