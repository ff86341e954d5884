"""Local read-only reference index (JSONL tables) and pathway tracing."""

from .reader import LocalSearchIndex, JsonlStore
from .tracer import PathwayTracer

__all__ = ["LocalSearchIndex", "JsonlStore", "PathwayTracer"]
