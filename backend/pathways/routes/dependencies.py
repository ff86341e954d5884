"""
FastAPI dependency providers.

Services are built once in create_app() and kept on app.state; routes receive
them through Depends so tests can override any of them.
"""
from fastapi import Request

from pathways.services.ai.orchestration import PathwayOrchestrator
from pathways.services.cache.pathway_cache import PathwayCache
from pathways.services.index.reader import LocalSearchIndex


def get_orchestrator(request: Request) -> PathwayOrchestrator:
    return request.app.state.orchestrator


def get_pathway_cache(request: Request) -> PathwayCache:
    return request.app.state.pathway_cache


def get_index(request: Request) -> LocalSearchIndex:
    return request.app.state.index
