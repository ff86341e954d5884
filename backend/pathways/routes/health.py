"""
Health check endpoints.

GET /health/       liveness
GET /health/index  loaded index files and row counts
"""
from fastapi import APIRouter, Depends

from pathways.core.logging import get_logger
from pathways.routes.dependencies import get_index
from pathways.services.index.reader import LocalSearchIndex

logger = get_logger(__name__)
router = APIRouter()


@router.get("/")
async def health_check():
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/index")
async def index_health(index: LocalSearchIndex = Depends(get_index)):
    """
    Index status.

    Files that are missing report null rows; the service still answers
    with empty results for lookups that need them.
    """
    files = index.store.stats()
    missing = sorted(name for name, rows in files.items() if rows is None)
    return {
        "status": "ok" if not missing else "degraded",
        "data_dir": str(index.store.data_dir),
        "files": files,
        "missing": missing,
    }
