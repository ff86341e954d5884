"""
Structured logging for the pathways service.

Entries are JSON lines (console output in development) carrying:
- timestamp (ISO 8601, UTC), level, logger, service
- trace_id / request_id of the HTTP request (bound by TraceIDMiddleware)
- node / attempt of the pipeline step that emitted them (bound by the orchestrator)

Correlation fields live in structlog's contextvars, so the verifier or the
tool executor logging inside a node needs no extra arguments:

    logger = get_logger(__name__)
    logger.info("verification_completed", level="college", kept=4)
"""
import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

import structlog
from structlog.contextvars import (
    bind_contextvars,
    bound_contextvars,
    get_contextvars,
    unbind_contextvars,
)
from structlog.types import Processor

SERVICE_NAME = "pathways_api"


def add_service_name(
    logger: structlog.BoundLogger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    event_dict["service"] = SERVICE_NAME
    return event_dict


def configure_logging(
    log_level: str = "INFO",
    service_name: Optional[str] = None,
    json_output: bool = True
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        service_name: Service name stamped on entries (defaults to SERVICE_NAME)
        json_output: JSON lines when True, human-readable console output otherwise
    """
    global SERVICE_NAME
    if service_name:
        SERVICE_NAME = service_name

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_service_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]
    processors.append(
        structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """Structured logger, typically named after the calling module."""
    return structlog.get_logger(name)


def _bind(key: str, value: Optional[str]) -> None:
    if value is None:
        unbind_contextvars(key)
    else:
        bind_contextvars(**{key: value})


def set_trace_id(trace_id: Optional[str]) -> None:
    _bind("trace_id", trace_id)


def get_trace_id() -> Optional[str]:
    return get_contextvars().get("trace_id")


def set_request_id(request_id: Optional[str]) -> None:
    _bind("request_id", request_id)


def get_request_id() -> Optional[str]:
    return get_contextvars().get("request_id")


@contextmanager
def request_context(trace_id: str, request_id: str) -> Iterator[None]:
    """Bind the correlation IDs of one HTTP request; previous values come back on exit."""
    with bound_contextvars(trace_id=trace_id, request_id=request_id):
        yield


@contextmanager
def pipeline_context(node: str, attempt: int) -> Iterator[None]:
    """Tag everything logged while one orchestrator node runs."""
    with bound_contextvars(node=node, attempt=attempt):
        yield


def generate_request_id() -> str:
    return str(uuid.uuid4())


def generate_trace_id() -> str:
    return str(uuid.uuid4())
