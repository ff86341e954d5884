"""
Unit tests for the query classification agent.
"""
import pytest

from pathways.services.ai.agents.classifier import (
    FALLBACK_CLASSIFICATION,
    QueryClassifier,
    format_recent_history,
)
from pathways.services.ai.schema import Classification, ConversationTurn, QueryCategory


@pytest.mark.asyncio
@pytest.mark.parametrize("message", ["yes", "Sure", " ok "])
async def test_simple_affirmative_needs_tools(llm, message):
    result = await QueryClassifier(llm).classify(message)

    assert result.needs_tools is True
    assert result.category == QueryCategory.FOLLOWUP
    assert llm.calls == []


@pytest.mark.asyncio
async def test_greeting_fast_path(llm):
    result = await QueryClassifier(llm).classify("Aloha")

    assert result.needs_tools is False
    assert result.category == QueryCategory.GREETING
    assert llm.calls == []


@pytest.mark.asyncio
async def test_acknowledgement_is_clarification(llm):
    result = await QueryClassifier(llm).classify("thanks")

    assert result.category == QueryCategory.CLARIFICATION
    assert result.needs_tools is False


@pytest.mark.asyncio
async def test_oracle_classification(llm):
    llm.responses["classifier"] = (
        'Here you go:\n```json\n{"needsTools": false, "queryType": "Reasoning", "reasoning": "advice"}\n```'
    )
    history = [ConversationTurn(role="assistant", content="What interests you?")]

    result = await QueryClassifier(llm).classify("Is nursing a good career for me?", history)

    assert result.needs_tools is False
    assert result.category == QueryCategory.REASONING
    assert "ASSISTANT: What interests you?" in llm.prompts_for("classifier")[0]


@pytest.mark.asyncio
async def test_invalid_category_falls_back(llm):
    llm.responses["classifier"] = '{"needsTools": true, "queryType": "banana"}'

    result = await QueryClassifier(llm).classify("nursing programs")

    assert result.needs_tools is False
    assert result.category == QueryCategory.CLARIFICATION
    assert result.reasoning == "Fallback classification"


@pytest.mark.asyncio
async def test_non_json_output_falls_back(llm):
    llm.responses["classifier"] = "search"

    result = await QueryClassifier(llm).classify("nursing programs")

    assert result.category == QueryCategory.CLARIFICATION


@pytest.mark.asyncio
async def test_oracle_error_falls_back(llm):
    llm.responses["classifier"] = RuntimeError("circuit open")

    result = await QueryClassifier(llm).classify("nursing programs")

    assert result.needs_tools is False
    assert result.reasoning == "Fallback classification"


def test_recent_history_window():
    history = [ConversationTurn(role="user", content=str(i)) for i in range(6)]

    text = format_recent_history(history)

    assert text.split("\n\n") == ["USER: 2", "USER: 3", "USER: 4", "USER: 5"]
    assert format_recent_history([]) == "No previous conversation"


@pytest.mark.parametrize(
    "category, expected",
    [
        (QueryCategory.FOLLOWUP, QueryCategory.FOLLOWUP),
        (QueryCategory.CLARIFICATION, QueryCategory.CLARIFICATION),
        (" Search ", QueryCategory.SEARCH),
    ],
)
def test_classification_accepts_members_and_strings(category, expected):
    result = Classification(needs_tools=True, category=category, reasoning="r")

    assert result.category == expected


def test_fallback_classification():
    assert FALLBACK_CLASSIFICATION.category == QueryCategory.CLARIFICATION
    assert FALLBACK_CLASSIFICATION.needs_tools is False
