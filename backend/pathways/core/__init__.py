"""
Core application modules.
Contains configuration, logging, caching, metrics and tracing.
"""
from .config import PipelineConfig

__all__ = ["PipelineConfig"]
