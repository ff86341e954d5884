"""
Relevance verification agent.

Scores candidate programs 0-10 against the user's intent in batches, then
keeps the survivors of an adaptive threshold: when at least one program is a
strong match the bar is raised, otherwise a weaker bar applies so a result
set of merely-decent programs is not emptied.

Oracle output is parsed into a tagged outcome (ParsedScores | FallbackScores);
a fallback batch keeps every candidate at a neutral score.
"""
import asyncio
import math
import re
from typing import Any, List, Optional, Sequence

from pathways.core.config import VerifierSettings
from pathways.core.logging import get_logger
from pathways.core.metrics import (
    record_llm_schema_validation_failure,
    record_verifier_fallback,
    record_verifier_score,
)
from pathways.services.ai.json_extraction import (
    JSONExtractionError,
    extract_json_array,
    extract_json_object,
)
from pathways.services.ai.llm_client import LLMClient
from pathways.services.ai.schema import (
    BatchScore,
    Candidate,
    ConversationTurn,
    FallbackScores,
    KeywordMode,
    ParsedScores,
    ProgramLevel,
    QuickVerification,
    SchemaValidationError,
    UserProfile,
    VerificationOutcome,
    VerifiedProgram,
    validate_quick_verification_payload,
)

logger = get_logger(__name__)

EXTENDED_AFFIRMATIVE_RE = re.compile(
    r"^(yes|yeah|yep|sure|ok|okay|yea|ye|yup|affirmative|correct|right|exactly|indeed"
    r"|certainly|absolutely|definitely|sounds good|that works|that's right)$"
)
META_QUERY_MARKERS = ("what did", "show me more", "tell me")
HISTORY_WINDOW = 6

SYSTEM_PROMPT = """You rate how relevant educational programs are to what a student is looking for.

Read the conversation history first: short or vague messages ("show me more", "what about Hilo?") refer to the most recent educational topic discussed.
Use the student profile: programs matching stated interests score higher, programs matching career goals score highest, and programs unrelated to a stated career goal score lower.
Students want complete pathways, so the same subject at a different education level is still relevant. Only a different subject area is irrelevant.

Scale:
10 exact subject, exact level, fits the profile
8-9 exact subject at any level, or a very close subject
6-7 related subject
5 loosely connected
0-4 different subject area

Return ONLY a JSON array, one entry per program:
[{"index": 1, "score": 8, "reasoning": "brief reason"}]"""

QUICK_SYSTEM_PROMPT = """You decide whether one educational program matches what a student is looking for.
The same subject at a different education level still counts as relevant. Use the conversation history when the query is vague.
Respond ONLY with JSON: {"isRelevant": true, "score": 0-10, "reasoning": "brief reason"}"""


def should_include_profile(query: str, mode: Optional[KeywordMode] = None) -> bool:
    """Profiles are left out when the user is just confirming a previous topic."""
    if mode == KeywordMode.AFFIRMATIVE:
        return False
    return not EXTENDED_AFFIRMATIVE_RE.match(query.lower().strip())


def coerce_score(value: Any) -> Optional[int]:
    """Integer score clamped to [0, 10]; None for non-numeric values."""
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)):
        return None
    if isinstance(value, float) and not math.isfinite(value):
        return None
    return max(0, min(10, int(round(value))))


def parse_batch_scores(text: str, batch_size: int) -> VerificationOutcome:
    """
    Parse a verifier reply for a batch of batch_size programs.

    Entries with an index outside 1..batch_size or a non-numeric score are
    dropped. No parseable array at all yields FallbackScores.
    """
    try:
        entries = extract_json_array(text)
    except JSONExtractionError as exc:
        return FallbackScores(reason=str(exc))

    scores: List[BatchScore] = []
    seen = set()
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        index = entry.get("index")
        if isinstance(index, bool) or not isinstance(index, (int, float)):
            continue
        if isinstance(index, float) and not (math.isfinite(index) and index.is_integer()):
            continue
        index = int(index)
        score = coerce_score(entry.get("score"))
        if score is None or not 1 <= index <= batch_size or index in seen:
            continue
        seen.add(index)
        reasoning = entry.get("reasoning")
        scores.append(BatchScore(
            index=index,
            score=score,
            reasoning=str(reasoning) if reasoning else "No reasoning provided",
        ))
    return ParsedScores(scores=scores)


def apply_adaptive_threshold(
    verified: Sequence[VerifiedProgram],
    level: ProgramLevel,
    settings: VerifierSettings,
) -> List[VerifiedProgram]:
    """Keep programs at or above the applicable bar, best score first."""
    strong_bar, weak_bar = (
        settings.hs_thresholds if level == ProgramLevel.HIGH_SCHOOL else settings.college_thresholds
    )
    has_strong = any(v.relevance_score >= settings.strong_match_score for v in verified)
    threshold = strong_bar if has_strong else weak_bar
    kept = [v for v in verified if v.relevance_score >= threshold]
    return sorted(kept, key=lambda v: v.relevance_score, reverse=True)


def most_recent_topic(history: Sequence[ConversationTurn]) -> Optional[str]:
    for turn in reversed(list(history)[-HISTORY_WINDOW:]):
        if turn.role != "user":
            continue
        content = turn.content.lower()
        if len(content) > 10 and not any(marker in content for marker in META_QUERY_MARKERS):
            return turn.content
    return None


def format_conversation_history(history: Sequence[ConversationTurn]) -> str:
    if not history:
        return "Conversation History: (No previous messages)"

    lines = [
        f"{'User' if turn.role == 'user' else 'Assistant'}: {turn.content}"
        for turn in list(history)[-HISTORY_WINDOW:]
    ]
    text = "Conversation History:\n" + "\n".join(lines)
    topic = most_recent_topic(history)
    if topic:
        text += f'\n\nMost Recent Educational Topic: "{topic}"'
    return text


def format_user_profile(profile: Optional[UserProfile]) -> str:
    if profile is None or profile.is_empty:
        return "User Profile: (No profile information available)"

    parts = ["User Profile:"]
    if profile.interests:
        parts.append(f"- Interests: {', '.join(profile.interests)}")
    goals = list(profile.goals) + list(profile.career_goals)
    if goals:
        parts.append(f"- Goals: {', '.join(goals)}")
    if profile.grade_level:
        parts.append(f"- Grade Level: {profile.grade_level}")
    if profile.location:
        parts.append(f"- Location: {profile.location}")
    if profile.education_level:
        parts.append(f"- Education Level: {profile.education_level}")
    for key, value in profile.extra.items():
        if isinstance(value, list):
            if value:
                parts.append(f"- {key}: {', '.join(str(v) for v in value)}")
        elif value:
            parts.append(f"- {key}: {value}")
    return "\n".join(parts)


def format_query_context(query: str, intent: str) -> str:
    if intent == query:
        return f'Current User Query: "{query}"'
    return f'Current User Query: "{query}"\nExtracted Search Intent: "{intent}"'


class ResultVerifier:
    """Batch relevance scoring with adaptive filtering."""

    def __init__(self, llm_client: LLMClient, settings: Optional[VerifierSettings] = None):
        self.llm_client = llm_client
        self.settings = settings or VerifierSettings()

    def _cap(self, level: ProgramLevel) -> int:
        if level == ProgramLevel.HIGH_SCHOOL:
            return self.settings.max_hs_candidates
        return self.settings.max_college_candidates

    async def verify(
        self,
        query: str,
        candidates: Sequence[Candidate],
        level: ProgramLevel,
        history: Sequence[ConversationTurn] = (),
        intent: Optional[str] = None,
        profile: Optional[UserProfile] = None,
    ) -> List[VerifiedProgram]:
        """
        Score candidates and return the adaptive-threshold survivors.

        Oracle failures never raise: the affected batch is kept at the
        fallback score.
        """
        capped = list(candidates)[:self._cap(level)]
        if not capped:
            return []

        size = self.settings.batch_size
        batches = [capped[i:i + size] for i in range(0, len(capped), size)]
        context = "\n\n".join([
            format_conversation_history(history),
            format_user_profile(profile),
            format_query_context(query, intent or query),
        ])

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def run(batch: List[Candidate]) -> List[VerifiedProgram]:
            async with semaphore:
                return await self._verify_batch(batch, level, context)

        scored: List[VerifiedProgram] = []
        for batch_result in await asyncio.gather(*(run(b) for b in batches)):
            scored.extend(batch_result)

        kept = apply_adaptive_threshold(scored, level, self.settings)
        logger.info(
            "verification_completed",
            level=level.value,
            candidates=len(capped),
            scored=len(scored),
            kept=len(kept),
        )
        return kept

    async def _verify_batch(
        self,
        batch: List[Candidate],
        level: ProgramLevel,
        context: str,
    ) -> List[VerifiedProgram]:
        label = "High School" if level == ProgramLevel.HIGH_SCHOOL else "College"
        program_list = "\n".join(f"{i}. {c.display_name}" for i, c in enumerate(batch, start=1))
        user_prompt = (
            f"{context}\n\n{label} Programs to verify:\n{program_list}\n\n"
            "Rate each program 0-10 for the student's real intent and profile. Return the JSON array only."
        )

        try:
            text = await self.llm_client.complete(
                agent="verifier",
                system_prompt=SYSTEM_PROMPT,
                user_prompt=user_prompt,
                temperature=self.settings.temperature,
                max_tokens=800,
            )
            outcome = parse_batch_scores(text, len(batch))
        except Exception as exc:
            outcome = FallbackScores(reason=f"{type(exc).__name__}: {exc}")

        if isinstance(outcome, FallbackScores):
            record_verifier_fallback(level.value, outcome.reason.split(":")[0][:40])
            logger.warning(
                "verifier_batch_fallback",
                level=level.value,
                reason=outcome.reason,
                batch_size=len(batch),
            )
            return [
                VerifiedProgram(
                    candidate=c,
                    relevance_score=self.settings.fallback_score,
                    reasoning="Fallback ranking",
                )
                for c in batch
            ]

        verified = []
        for entry in outcome.scores:
            record_verifier_score(level.value, entry.score)
            verified.append(VerifiedProgram(
                candidate=batch[entry.index - 1],
                relevance_score=entry.score,
                reasoning=entry.reasoning,
            ))
        return verified

    async def quick_verify(
        self,
        query: str,
        program_name: str,
        level: ProgramLevel,
        history: Sequence[ConversationTurn] = (),
        intent: Optional[str] = None,
        profile: Optional[UserProfile] = None,
    ) -> QuickVerification:
        """Single-program check; neutral result on any failure."""
        user_prompt = "\n\n".join([
            format_conversation_history(history),
            format_user_profile(profile),
            format_query_context(query, intent or query),
            f'Program: "{program_name}"\nProgram Type: {level.value.replace("_", " ")}',
        ])
        try:
            text = await self.llm_client.complete(
                agent="quick_verify",
                system_prompt=QUICK_SYSTEM_PROMPT,
                user_prompt=user_prompt,
                temperature=self.settings.temperature,
                max_tokens=200,
                json_mode=True,
            )
            payload = extract_json_object(text)
            payload.setdefault("isRelevant", True)
            payload["score"] = coerce_score(payload.get("score", self.settings.quick_verify_fallback_score))
            return validate_quick_verification_payload(payload)
        except (JSONExtractionError, SchemaValidationError) as exc:
            record_llm_schema_validation_failure("quick_verify")
            logger.warning("quick_verify_invalid_output", error=str(exc))
        except Exception as exc:
            logger.warning("quick_verify_failed", error=str(exc), error_type=type(exc).__name__)

        return QuickVerification(
            is_relevant=True,
            score=self.settings.quick_verify_fallback_score,
            reasoning="Fallback verification",
        )
