"""
Exception hierarchy for the pathways service.

Oracle and parsing failures are absorbed by the agent that hit them; only
InvalidRequestError reaches the HTTP boundary (as a 400).
"""


class PathwayError(Exception):
    """Base class for service errors."""


class InvalidRequestError(PathwayError):
    """Caller input rejected before the pipeline runs."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
