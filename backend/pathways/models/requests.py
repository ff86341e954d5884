"""
Request models for API endpoints.

POST /api/pathway bodies are validated by hand so that input errors produce
the `{"success": false, "error": ...}` shape with a 400, not FastAPI's 422.
"""
from typing import Any, Dict, List

from pydantic import BaseModel, Field, ValidationError

from pathways.core.errors import InvalidRequestError
from pathways.services.ai.schema import ConversationTurn, UserProfile

MESSAGE_REQUIRED = "Message is required and must be a string"
HISTORY_NOT_ARRAY = "Conversation history must be an array"


class PathwayRequest(BaseModel):
    """Validated pathway request."""
    message: str
    conversation_history: List[ConversationTurn] = Field(default_factory=list)
    profile: UserProfile = Field(default_factory=UserProfile)


class CacheInvalidateRequest(BaseModel):
    """Tags whose cache entries should be dropped."""
    tags: List[str] = Field(default_factory=lambda: ["pathway"])


def parse_pathway_request(body: Any) -> PathwayRequest:
    """
    Validate a raw JSON body.

    Raises:
        InvalidRequestError: if the message or history is malformed
    """
    if not isinstance(body, dict):
        raise InvalidRequestError(MESSAGE_REQUIRED)

    message = body.get("message")
    if not isinstance(message, str) or not message.strip():
        raise InvalidRequestError(MESSAGE_REQUIRED)

    history = body.get("conversationHistory")
    if history is None:
        history = []
    if not isinstance(history, list):
        raise InvalidRequestError(HISTORY_NOT_ARRAY)

    turns: List[ConversationTurn] = []
    for item in history:
        if not isinstance(item, dict):
            continue
        content = item.get("content")
        try:
            turns.append(ConversationTurn(
                role=item.get("role", "assistant"),
                content=content if isinstance(content, str) else "",
            ))
        except ValidationError:
            continue

    raw_profile: Dict[str, Any] = body.get("profile") or body.get("userProfile") or {}
    return PathwayRequest(
        message=message.strip(),
        conversation_history=turns,
        profile=UserProfile.from_payload(raw_profile),
    )
