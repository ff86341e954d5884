"""
Prometheus scrape endpoint.

GET /metrics

Process and index gauges are refreshed on every scrape; counters and
histograms are updated where the events happen.
"""
from fastapi import APIRouter, Depends, Response
from fastapi.responses import PlainTextResponse

from pathways.core.logging import get_logger
from pathways.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    update_index_metrics,
    update_resource_metrics,
)
from pathways.routes.dependencies import get_index
from pathways.services.index.reader import LocalSearchIndex

logger = get_logger(__name__)
router = APIRouter()


@router.get("", response_class=PlainTextResponse)
async def metrics(index: LocalSearchIndex = Depends(get_index)):
    update_resource_metrics()
    try:
        update_index_metrics(index.store.stats())
    except OSError as e:
        logger.error("metrics_index_stats_failed", error=str(e), error_type=type(e).__name__)
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
