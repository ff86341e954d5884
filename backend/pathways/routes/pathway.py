"""
Pathway endpoint.

POST /api/pathway  {message, conversationHistory?, profile?|userProfile?}
GET  /api/pathway  service info
"""
import json
import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from pathways.core.errors import InvalidRequestError
from pathways.core.logging import get_logger
from pathways.models import build_pathway_response, parse_pathway_request
from pathways.routes.dependencies import get_orchestrator, get_pathway_cache
from pathways.services.ai.orchestration import PathwayOrchestrator
from pathways.services.cache.pathway_cache import PathwayCache

logger = get_logger(__name__)

router = APIRouter()

GENERIC_FAILURE = "Failed to process your request. Please try again."


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


@router.post("")
async def create_pathway(
    request: Request,
    orchestrator: PathwayOrchestrator = Depends(get_orchestrator),
    cache: PathwayCache = Depends(get_pathway_cache),
):
    """
    Answer a pathway question.

    Cached responses are returned with `cached: true`; conversational
    replies are never cached.
    """
    start_time = time.time()

    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = None

    try:
        payload = parse_pathway_request(body)
    except InvalidRequestError as exc:
        logger.warning("pathway_request_invalid", error=exc.message)
        return _error(400, exc.message)

    cache_key = cache.key_for(payload.message, payload.conversation_history, payload.profile)
    cached = await cache.get(cache_key)
    if cached is not None:
        logger.info("pathway_completed_cached", message=payload.message)
        return {**cached, "cached": True}

    try:
        result = await orchestrator.run(
            payload.message,
            payload.conversation_history,
            payload.profile,
        )
    except Exception as exc:
        logger.error(
            "pathway_request_failed",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=True,
        )
        return _error(500, GENERIC_FAILURE)

    processing_ms = int((time.time() - start_time) * 1000)
    response = build_pathway_response(result, processing_ms).model_dump(exclude_none=True)

    if result.attempts_used > 0 and not result.errors:
        await cache.set(
            cache_key,
            response,
            metadata={"query": payload.message, "qualityScore": result.quality_score},
        )

    logger.info(
        "pathway_request_completed",
        category=result.category.value,
        quality_score=result.quality_score,
        attempts=result.attempts_used,
        processing_ms=processing_ms,
    )
    return response


@router.get("")
async def pathway_info():
    return {
        "service": "Educational Pathways API",
        "version": "1.0.0",
        "endpoints": {
            "POST /api/pathway": {
                "body": {
                    "message": "string (required)",
                    "conversationHistory": "array of {role, content} (optional)",
                    "profile": "object (optional)",
                },
            },
        },
        "features": [
            "Query classification",
            "Multi-attempt search with quality reflection",
            "Relevance verification",
            "Program aggregation by CIP code",
            "Response caching",
        ],
    }
