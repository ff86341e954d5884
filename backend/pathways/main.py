import os
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from pathways.core.cache import CacheClient, close_redis, create_redis_client
from pathways.core.config import PipelineConfig
from pathways.core.logging import configure_logging, get_logger, get_trace_id
from pathways.core.metrics import record_http_request
from pathways.core.middleware import TraceIDMiddleware
from pathways.core.tracing import (
    StatusCode,
    configure_tracing,
    get_trace_id_from_context,
    instrument_fastapi,
    record_exception,
    set_span_status,
    shutdown_tracing,
)
from pathways.routes import cache, health, metrics, pathway
from pathways.services.ai.llm_client import LLMClient
from pathways.services.ai.orchestration import PathwayOrchestrator
from pathways.services.cache.pathway_cache import PathwayCache
from pathways.services.index.reader import LocalSearchIndex

logger = get_logger(__name__)


def create_app(
    config: Optional[PipelineConfig] = None,
    llm_client: Optional[LLMClient] = None,
    index: Optional[LocalSearchIndex] = None,
    enable_tracing: bool = True,
) -> FastAPI:
    """
    Build the API application.

    Services are created here and kept on app.state; startup connects Redis
    and warms the index, shutdown closes Redis.
    """
    # JSON output in production (containerized), console output in development
    log_level = os.getenv("LOG_LEVEL", "INFO")
    json_output = os.getenv("LOG_JSON", "true").lower() == "true"
    configure_logging(log_level=log_level, json_output=json_output)

    if enable_tracing:
        configure_tracing()

    config = config or PipelineConfig.from_env()
    index = index or LocalSearchIndex(config.data_dir)
    llm_client = llm_client or LLMClient.from_settings(config.llm)

    app = FastAPI(
        title="Educational Pathways API",
        description="High school, college and career pathway search",
        version="1.0.0"
    )

    app.state.config = config
    app.state.index = index
    app.state.llm_client = llm_client
    app.state.cache_client = CacheClient()
    app.state.pathway_cache = PathwayCache(app.state.cache_client, config.cache)
    app.state.orchestrator = PathwayOrchestrator(config, llm_client, index)

    # CORS for local dev; restrict in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Must be added after CORS middleware
    app.add_middleware(TraceIDMiddleware)

    if enable_tracing:
        instrument_fastapi(app)

    @app.on_event("startup")
    async def startup_event():
        """Connect Redis and load the index."""
        logger.info("app_startup_started")

        if config.cache.enabled:
            redis_client = await create_redis_client(config.cache.redis_url)
            if redis_client is not None:
                app.state.cache_client.redis = redis_client
                logger.info("app_startup_redis_ready")
            else:
                logger.warning(
                    "app_startup_redis_unavailable",
                    message="Redis cache not available. Responses will not be cached.",
                )

        index.warm()
        if not config.llm.api_key:
            logger.warning(
                "app_startup_llm_unconfigured",
                message="LLM_API_KEY not set. Agents will use their fallbacks.",
            )
        logger.info("app_startup_completed", data_dir=str(index.store.data_dir))

    @app.on_event("shutdown")
    async def shutdown_event():
        logger.info("app_shutdown_started")
        shutdown_tracing()
        await close_redis(app.state.cache_client.redis)
        app.state.cache_client.redis = None
        logger.info("app_shutdown_completed")

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        start_time = getattr(request.state, "start_time", time.time())
        duration = time.time() - start_time
        trace_id = get_trace_id() or get_trace_id_from_context()

        set_span_status(StatusCode.ERROR if exc.status_code >= 500 else StatusCode.OK, exc.detail)
        record_http_request(
            method=request.method,
            endpoint=request.url.path,
            status_code=exc.status_code,
            duration_seconds=duration,
        )
        logger.warning(
            "http_exception",
            status_code=exc.status_code,
            detail=exc.detail,
            path=request.url.path,
            method=request.method,
        )
        response = JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.detail, "trace_id": trace_id},
        )
        if trace_id:
            response.headers["X-Trace-ID"] = trace_id
        return response

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        trace_id = get_trace_id() or get_trace_id_from_context()

        record_exception(exc)
        set_span_status(StatusCode.ERROR, str(exc))
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=request.url.path,
            method=request.method,
            exc_info=True,
        )
        response = JSONResponse(
            status_code=500,
            content={"success": False, "error": pathway.GENERIC_FAILURE, "trace_id": trace_id},
        )
        if trace_id:
            response.headers["X-Trace-ID"] = trace_id
        return response

    app.include_router(pathway.router, prefix="/api/pathway", tags=["Pathway"])
    app.include_router(cache.router, prefix="/cache", tags=["Cache"])
    app.include_router(health.router, prefix="/health", tags=["Health"])
    app.include_router(metrics.router, prefix="/metrics", tags=["Metrics"])

    return app


app = create_app()
