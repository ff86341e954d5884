"""
Keyword extraction for pathway searches.

The extraction mode depends on how the message relates to the conversation:
- topic pivot ("what about ...", "actually ...", "no ..."): current message only
- affirmative continuation ("yes", "sure", "show me more" after an assistant
  turn): keywords come from the latest assistant message, never from the
  reply itself or from profile interests
- normal: current message, topped up with profile interests when sparse;
  profile career goals add target CIP codes
"""
import re
from typing import List, Optional, Sequence

from pathways.core.config import PipelineConfig
from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    ConversationTurn,
    KeywordMode,
    KeywordSet,
    UserProfile,
)

logger = get_logger(__name__)

NON_WORD_RE = re.compile(r"[^\w\s]")
TOPIC_PIVOT_RE = re.compile(
    r"^(what about|how about|tell me about|instead|actually|now|switch to|change to|no|wait)\b"
)
AFFIRMATIVE_PREFIX_RE = re.compile(r"^(yes|yeah|yep|sure|ok|okay|show me more|tell me more|more)\b")

MAX_BASE_KEYWORDS = 3
MAX_INTEREST_TOPUP = 2


def extract_terms(text: str, stop_words: frozenset, limit: int = MAX_BASE_KEYWORDS) -> List[str]:
    """Lowercase, strip punctuation, drop stop words and short words, keep the first `limit`."""
    words = NON_WORD_RE.sub(" ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in stop_words][:limit]


def detect_mode(message: str, history: Sequence[ConversationTurn]) -> KeywordMode:
    lowered = message.lower().strip()
    if TOPIC_PIVOT_RE.match(lowered):
        return KeywordMode.TOPIC_PIVOT
    if AFFIRMATIVE_PREFIX_RE.match(lowered) and history:
        return KeywordMode.AFFIRMATIVE
    return KeywordMode.NORMAL


def _dedupe(terms: Sequence[str], limit: int) -> List[str]:
    seen = []
    for term in terms:
        if term and term not in seen:
            seen.append(term)
    return seen[:limit]


def career_goal_cip_codes(profile: Optional[UserProfile], config: PipelineConfig) -> List[str]:
    """CIP codes for career goals named in the profile."""
    if profile is None:
        return []
    codes: List[str] = []
    for goal in profile.career_goals:
        goal_lower = goal.lower()
        for phrase, cips in config.career_cip_codes.items():
            if phrase in goal_lower:
                codes.extend(c for c in cips if c not in codes)
    return codes


class KeywordExtractor:
    """Builds the KeywordSet for the first attempt of a request."""

    def __init__(self, config: PipelineConfig):
        self.config = config

    def extract(
        self,
        message: str,
        history: Sequence[ConversationTurn] = (),
        profile: Optional[UserProfile] = None,
        mode: Optional[KeywordMode] = None,
    ) -> KeywordSet:
        mode = mode or detect_mode(message, history)
        stop_words = self.config.search_stop_words
        interests = profile.interests if profile else []

        if mode == KeywordMode.AFFIRMATIVE:
            last_assistant = next((t for t in reversed(history) if t.role == "assistant"), None)
            keywords = extract_terms(last_assistant.content, stop_words) if last_assistant else []
        else:
            keywords = extract_terms(message, stop_words)
            if mode == KeywordMode.NORMAL and len(keywords) < 2 and interests:
                keywords.extend(i.lower() for i in interests[:MAX_INTEREST_TOPUP])

        keywords = _dedupe(keywords, self.config.max_keywords)
        if mode == KeywordMode.NORMAL:
            target_cips = career_goal_cip_codes(profile, self.config)
        else:
            target_cips = []

        logger.info(
            "keywords_extracted",
            mode=mode.value,
            keywords=keywords,
            target_cip_codes=target_cips,
        )
        return KeywordSet(keywords=tuple(keywords), mode=mode, target_cip_codes=tuple(target_cips))
