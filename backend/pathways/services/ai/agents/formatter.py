"""
Response formatting agent.

Turns aggregated results into a short markdown narrative, and answers
conversational (no-tool) messages. Every oracle call has a deterministic
fallback, so formatting never fails a request.
"""
import json
import re
from typing import Dict, List, Optional, Sequence

from pathways.core.logging import get_logger
from pathways.services.ai.llm_client import LLMClient
from pathways.services.ai.schema import (
    ConversationTurn,
    HighSchoolFamily,
    ProgramFamily,
    QueryCategory,
    UserProfile,
)

logger = get_logger(__name__)

PREAMBLE_RE = re.compile(r"^(Here's|Here is|Here are).*?:\s*", re.IGNORECASE)
FENCE_RE = re.compile(r"```(?:markdown)?\s*")
BLANK_LINES_RE = re.compile(r"\n{3,}")
TRAILING_SPACES_RE = re.compile(r" +$", re.MULTILINE)

HISTORY_WINDOW = 6
PROMPT_PROGRAM_LIMIT = 10

NO_RESULTS_MESSAGE = """## No Results Found

I couldn't find any programs matching that search.

You might want to try:
- Broader search terms
- Related career fields
- Asking about specific schools or islands

What area are you interested in exploring?"""

RESULTS_SYSTEM_PROMPT = """You write short, friendly summaries of educational pathway search results for students in Hawaii.

Rules:
- Use simple markdown: ## for headers, **bold** for emphasis, - for bullets. No emojis.
- Only mention programs that appear in the data. Never invent programs, schools or campuses.
- Skip a section entirely when its data is empty.
- Sections, in order: "## High School Programs", "## College Programs", "## Career Paths".
- Keep it under 200 words and end with one question that keeps the conversation going."""

NO_RESULTS_SYSTEM_PROMPT = """You are a conversational guide for Hawaii educational pathways. The user's search returned no results.

Write one sentence acknowledging the search, then 2-3 alternative searches as bullets, then one question.
Start with "## No Results Found". Minimal formatting, no emojis."""

CONVERSATION_SYSTEM_PROMPT = """You are a friendly guide to educational pathways in Hawaii: high school programs of study, college programs and careers.
Answer briefly in markdown (2-4 sentences). No emojis. When it fits, offer to search for programs."""

CONVERSATION_FALLBACKS = {
    QueryCategory.GREETING: "## Aloha!\n\nI can help you explore educational pathways in Hawaii. What interests you?",
    QueryCategory.REASONING: "Happy to explain. What would you like to know more about?",
}
DEFAULT_CONVERSATION_FALLBACK = "I'm here to help you explore educational pathways. What are you interested in?"


def clean_markdown(markdown: str) -> str:
    text = PREAMBLE_RE.sub("", markdown.strip())
    text = FENCE_RE.sub("", text)
    text = BLANK_LINES_RE.sub("\n\n", text)
    return TRAILING_SPACES_RE.sub("", text).strip()


def fallback_narrative(summary: Dict[str, int]) -> str:
    parts = []
    if summary.get("total_high_school_programs", 0) > 0:
        parts.append(
            f"**{summary['total_high_school_programs']}** high school programs at "
            f"**{summary.get('total_high_schools', 0)}** schools"
        )
    if summary.get("total_college_programs", 0) > 0:
        parts.append(
            f"**{summary['total_college_programs']}** college programs at "
            f"**{summary.get('total_college_campuses', 0)}** campuses"
        )
    if summary.get("total_career_paths", 0) > 0:
        parts.append(f"**{summary['total_career_paths']}** career opportunities")

    if not parts:
        return NO_RESULTS_MESSAGE
    return (
        "## Programs Found\n\n"
        f"I found {' and '.join(parts)} related to your interests.\n\n"
        "Check out the details below!"
    )


def conversation_fallback(category: QueryCategory, has_profile: bool) -> str:
    if category == QueryCategory.CLARIFICATION:
        if has_profile:
            return "Yes, I'm confident about that based on your profile. Want me to search for programs?"
        return "Yes, I'm confident about that. Want me to search for programs?"
    return CONVERSATION_FALLBACKS.get(category, DEFAULT_CONVERSATION_FALLBACK)


def _history_text(history: Sequence[ConversationTurn]) -> str:
    recent = list(history)[-HISTORY_WINDOW:]
    if not recent:
        return "Conversation History: (First message in conversation)"
    lines = [f"{'User' if t.role == 'user' else 'Assistant'}: {t.content}" for t in recent]
    return "Conversation History (Recent):\n" + "\n".join(lines)


def _results_context(
    high_school: Sequence[HighSchoolFamily],
    families: Sequence[ProgramFamily],
    career_codes: Sequence[str],
) -> str:
    lines: List[str] = []
    if high_school:
        lines.append("High School Programs:")
        for family in high_school[:PROMPT_PROGRAM_LIMIT]:
            schools = ", ".join(family.schools[:3])
            more = "..." if len(family.schools) > 3 else ""
            lines.append(f"  - {family.name} ({len(family.schools)} schools: {schools}{more})")
    if families:
        lines.append("College Programs:")
        for family in families[:PROMPT_PROGRAM_LIMIT]:
            lines.append(
                f"  - {family.name} ({family.campus_count} campuses: {', '.join(family.campuses)})"
            )
    if career_codes:
        lines.append(f"Related career codes (SOC): {', '.join(career_codes)}")
    return "\n".join(lines)


class ResponseFormatter:
    """Narrative and conversational replies with deterministic fallbacks."""

    def __init__(self, llm_client: LLMClient):
        self.llm_client = llm_client

    async def format_results(
        self,
        query: str,
        high_school: Sequence[HighSchoolFamily],
        families: Sequence[ProgramFamily],
        career_codes: Sequence[str],
        summary: Dict[str, int],
        history: Sequence[ConversationTurn] = (),
        profile: Optional[UserProfile] = None,
    ) -> str:
        if not high_school and not families:
            return await self.format_no_results(query, history, profile)

        user_prompt = "\n\n".join([
            _history_text(history),
            f'User Query: "{query}"',
            "Search Results:\n" + _results_context(high_school, families, career_codes),
            "Write the summary.",
        ])
        try:
            text = await self.llm_client.complete(
                agent="formatter",
                system_prompt=RESULTS_SYSTEM_PROMPT,
                user_prompt=user_prompt,
                temperature=0.4,
                max_tokens=600,
            )
        except Exception as exc:
            logger.warning("formatter_failed", error=str(exc), error_type=type(exc).__name__)
            return fallback_narrative(summary)
        return clean_markdown(text) or fallback_narrative(summary)

    async def format_no_results(
        self,
        query: str,
        history: Sequence[ConversationTurn] = (),
        profile: Optional[UserProfile] = None,
    ) -> str:
        parts = [_history_text(history), f'User Query: "{query}"']
        if profile is not None and not profile.is_empty:
            parts.append(f"User Profile: {json.dumps(profile.model_dump(exclude_defaults=True))}")
        parts.append("Generate a helpful, simple response.")
        try:
            text = await self.llm_client.complete(
                agent="formatter_no_results",
                system_prompt=NO_RESULTS_SYSTEM_PROMPT,
                user_prompt="\n\n".join(parts),
                temperature=0.5,
                max_tokens=300,
            )
        except Exception as exc:
            logger.warning("formatter_no_results_failed", error=str(exc), error_type=type(exc).__name__)
            return NO_RESULTS_MESSAGE
        return clean_markdown(text) or NO_RESULTS_MESSAGE

    async def conversational_reply(
        self,
        message: str,
        category: QueryCategory,
        history: Sequence[ConversationTurn] = (),
        profile: Optional[UserProfile] = None,
    ) -> str:
        has_profile = profile is not None and not profile.is_empty
        messages = [{"role": "system", "content": CONVERSATION_SYSTEM_PROMPT}]
        if has_profile:
            messages[0]["content"] += (
                f"\n\nStudent profile: {json.dumps(profile.model_dump(exclude_defaults=True))}"
            )
        messages.extend(
            {"role": turn.role, "content": turn.content} for turn in list(history)[-HISTORY_WINDOW:]
        )
        messages.append({"role": "user", "content": message})

        try:
            data = await self.llm_client.chat(
                agent="conversational",
                messages=messages,
                max_tokens=400,
                temperature=0.6,
            )
            choices = data.get("choices") or [{}]
            text = (choices[0].get("message") or {}).get("content") or ""
        except Exception as exc:
            logger.warning("conversational_reply_failed", error=str(exc), error_type=type(exc).__name__)
            return conversation_fallback(category, has_profile)
        return clean_markdown(text) or conversation_fallback(category, has_profile)
