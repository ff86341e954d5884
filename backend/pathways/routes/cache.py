"""
Cache administration.

POST /cache/invalidate  {tags: [...]}
"""
from fastapi import APIRouter, Depends

from pathways.core.logging import get_logger
from pathways.models import CacheInvalidateRequest
from pathways.routes.dependencies import get_pathway_cache
from pathways.services.cache.pathway_cache import PathwayCache

logger = get_logger(__name__)
router = APIRouter()


@router.post("/invalidate")
async def invalidate_cache(
    request: CacheInvalidateRequest,
    cache: PathwayCache = Depends(get_pathway_cache),
):
    """
    Drop every cached response stored under the given tags.

    Security: Should require admin authentication in production.
    """
    removed = await cache.invalidate_tags(request.tags)
    logger.info("cache_invalidated", tags=request.tags, removed=removed)
    return {"success": True, "tags": request.tags, "removed": removed}
