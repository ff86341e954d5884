"""
Query classification agent.

Responsibilities:
- Decide whether a message needs index tools or a conversational reply
- Answer trivial messages (bare affirmatives, greetings) without the oracle
- Validate oracle output against the Classification schema

Failures of any kind resolve to a conversational clarification.
"""
import re
from typing import Sequence

from pathways.core.logging import get_logger
from pathways.core.metrics import record_llm_schema_validation_failure
from pathways.services.ai.json_extraction import JSONExtractionError, extract_json_object
from pathways.services.ai.llm_client import LLMClient
from pathways.services.ai.schema import (
    Classification,
    ConversationTurn,
    QueryCategory,
    SchemaValidationError,
    validate_classification_payload,
)

logger = get_logger(__name__)

SIMPLE_AFFIRMATIVE_RE = re.compile(r"^(yes|yeah|yep|yup|sure|ok|okay)$")
SIMPLE_GREETING_RE = re.compile(r"^(hi|hello|hey|aloha|thanks|thank you|got it|cool)$")
ACKNOWLEDGEMENT_RE = re.compile(r"^(thanks|thank you|got it|cool)$")
HISTORY_WINDOW = 4

FALLBACK_CLASSIFICATION = Classification(
    needs_tools=False,
    category=QueryCategory.CLARIFICATION,
    reasoning="Fallback classification",
)

SYSTEM_PROMPT = """You classify messages sent to an educational pathways assistant (high school programs, college programs, careers).

Categories:
- search: the user wants to find or explore programs, careers or pathways, names any subject or field, or agrees to an offered search
- clarification: the user asks about results that were just shown
- greeting: greetings and social niceties
- reasoning: the user describes their situation or asks for advice without requesting programs
- followup: the user continues the previous topic

Check the assistant's last message for context. When unsure, choose reasoning.

Return ONLY JSON:
{"needsTools": true, "queryType": "search", "reasoning": "brief explanation"}"""


def format_recent_history(history: Sequence[ConversationTurn]) -> str:
    recent = list(history)[-HISTORY_WINDOW:]
    if not recent:
        return "No previous conversation"
    return "\n\n".join(
        f"{'USER' if turn.role == 'user' else 'ASSISTANT'}: {turn.content}" for turn in recent
    )


class QueryClassifier:
    """Fast-path and oracle-backed intent classification."""

    def __init__(self, llm_client: LLMClient, temperature: float = 0.1):
        self.llm_client = llm_client
        self.temperature = temperature

    async def classify(
        self,
        message: str,
        history: Sequence[ConversationTurn] = (),
    ) -> Classification:
        lowered = message.lower().strip()

        if SIMPLE_AFFIRMATIVE_RE.match(lowered):
            return Classification(
                needs_tools=True,
                category=QueryCategory.FOLLOWUP,
                reasoning="User gave affirmative response",
            )
        if SIMPLE_GREETING_RE.match(lowered):
            category = QueryCategory.CLARIFICATION if ACKNOWLEDGEMENT_RE.match(lowered) else QueryCategory.GREETING
            return Classification(
                needs_tools=False,
                category=category,
                reasoning="Simple greeting or acknowledgment",
            )

        user_prompt = (
            f"Recent conversation:\n{format_recent_history(history)}\n\n"
            f'Classify this message: "{message}"'
        )
        try:
            text = await self.llm_client.complete(
                agent="classifier",
                system_prompt=SYSTEM_PROMPT,
                user_prompt=user_prompt,
                temperature=self.temperature,
                max_tokens=200,
            )
            classification = validate_classification_payload(extract_json_object(text))
        except (JSONExtractionError, SchemaValidationError) as exc:
            record_llm_schema_validation_failure("classifier")
            logger.warning("classifier_invalid_output", error=str(exc))
            return FALLBACK_CLASSIFICATION
        except Exception as exc:
            logger.warning(
                "classifier_failed",
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return FALLBACK_CLASSIFICATION

        logger.info(
            "query_classified",
            category=classification.category.value,
            needs_tools=classification.needs_tools,
        )
        return classification
