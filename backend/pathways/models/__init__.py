"""Pydantic models for API requests and responses."""

from .requests import CacheInvalidateRequest, PathwayRequest, parse_pathway_request
from .responses import PathwayData, PathwayResponse, build_pathway_response

__all__ = [
    "CacheInvalidateRequest",
    "PathwayRequest",
    "parse_pathway_request",
    "PathwayData",
    "PathwayResponse",
    "build_pathway_response",
]
