"""Keyword extraction, tool planning and execution, reflection and aggregation."""

from .keywords import KeywordExtractor, detect_mode
from .planner import plan_tools

__all__ = ["KeywordExtractor", "detect_mode", "plan_tools"]
