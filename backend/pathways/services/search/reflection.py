"""
Heuristic quality gate and retry strategy.

The reflector scores one attempt's verified data on four dimensions
(completeness, quantity, topical relevance, profile alignment) without calling
the oracle. When the score is too low the strategy builds a fresh, broader
KeywordSet for the next attempt.
"""
from typing import Iterable, List, Optional, Sequence

from pathways.core.config import PipelineConfig
from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    KeywordMode,
    KeywordSet,
    ReflectionResult,
    RerunContext,
    SearchStrategy,
    UserProfile,
    VerifiedData,
)
from pathways.services.search.keywords import extract_terms

logger = get_logger(__name__)

MAX_RELATED_TERMS = 3
MAX_PROFILE_TERMS = 2
MAX_CATEGORY_TERMS = 6
TERMS_PER_CATEGORY = 3


def _count_matches(names: Iterable[str], terms: Sequence[str]) -> int:
    lowered = [t.lower() for t in terms if t]
    if not lowered:
        return 0
    return sum(1 for name in names if any(t in name.lower() for t in lowered))


class Reflector:
    """Deterministic scoring of a search attempt."""

    def __init__(self, config: PipelineConfig):
        self.config = config
        self.settings = config.reflection

    def _top_names(self, data: VerifiedData) -> List[str]:
        top_n = self.settings.top_n
        return (
            [p.name for p in data.high_school_programs[:top_n]]
            + [p.name for p in data.college_programs[:top_n]]
        )

    def reflect(
        self,
        query: str,
        data: VerifiedData,
        profile: Optional[UserProfile] = None,
        attempt: int = 1,
    ) -> ReflectionResult:
        settings = self.settings
        issues: List[str] = []
        suggestions: List[str] = []
        score = 0

        has_hs = bool(data.high_school_programs)
        has_college = bool(data.college_programs)
        has_careers = bool(data.careers)

        # Completeness
        if has_hs and has_college and has_careers:
            score += settings.completeness
        elif has_hs and has_college:
            score += min(2, settings.completeness)
            suggestions.append("Add career pathways")
        elif has_college:
            score += min(1, settings.completeness)
            suggestions.append("Include high school preparation programs")
        else:
            issues.append("Missing educational pathway data")

        # Quantity
        total = data.total_programs
        if total >= 8:
            score += settings.quantity
        elif total >= 3:
            score += min(1, settings.quantity)
            suggestions.append("Expand search to find more programs")
        elif total == 0:
            issues.append("No programs found")
            suggestions.append("Try broader keywords or related fields")

        # Topical relevance
        interests = list(profile.interests) if profile else []
        keywords = extract_terms(query, self.config.reflection_stop_words)
        top_names = self._top_names(data)
        relevant = _count_matches(top_names, keywords + interests)
        if relevant >= 5:
            score += settings.relevance
        elif relevant >= 3:
            score += min(2, settings.relevance)
        elif relevant >= 1:
            score += min(1, settings.relevance)
            suggestions.append("Search more specifically for related programs")
        else:
            issues.append("Results may not match your interests")
            suggestions.append("Try different keywords or broader categories")

        # Profile alignment
        if interests:
            aligned = _count_matches(top_names, interests)
            alignment = 0
            if aligned >= 3:
                alignment = settings.profile_alignment
            elif aligned >= 1:
                alignment = min(1, settings.profile_alignment)
            score += alignment
            if alignment < settings.profile_alignment:
                suggestions.append("Include profile interests in search")

        score = max(0, min(10, score))
        result = ReflectionResult(
            quality_score=score,
            issues=tuple(issues),
            suggestions=tuple(suggestions),
            is_good_enough=score >= settings.min_quality_score or attempt > settings.max_retries,
            reasoning=f"Fast heuristic: {total} programs, {score}/10 quality",
        )
        logger.info(
            "reflection_completed",
            attempt=attempt,
            quality_score=score,
            total_programs=total,
            is_good_enough=result.is_good_enough,
            issues=list(issues),
        )
        return result


def related_terms(keywords: Sequence[str], config: PipelineConfig) -> List[str]:
    terms: List[str] = []
    for keyword in keywords:
        for term in config.related_terms.get(keyword.lower(), []):
            if term not in terms:
                terms.append(term)
    return terms


def category_terms(keywords: Sequence[str], interests: Sequence[str], config: PipelineConfig) -> List[str]:
    """Category names plus their leading terms for every category the inputs touch."""
    lowered = [k.lower() for k in list(keywords) + list(interests) if k]
    selected: List[str] = []
    for category, terms in config.categories.items():
        # Terms are compared as written: "IT" must not match every "it" substring
        if any(kw in term or term in kw for kw in lowered for term in terms):
            for value in [category] + list(terms[:TERMS_PER_CATEGORY]):
                if value not in selected:
                    selected.append(value)
    if not selected:
        selected = list(dict.fromkeys(keywords))
    return selected[:MAX_CATEGORY_TERMS]


def generate_rerun_context(
    original_query: str,
    base_keywords: KeywordSet,
    reflection: Optional[ReflectionResult],
    profile: Optional[UserProfile],
    attempt: int,
    config: PipelineConfig,
    include_profile: bool = True,
) -> RerunContext:
    """
    Strategy and keywords for the given attempt.

    Attempt 1 reuses the base keywords; attempt 2 adds related terms and a few
    profile interests; attempt 3 and later switch to broad category terms.
    """
    strategy_flags = dict(
        expand_keywords=attempt >= 2,
        use_cip_search=attempt == 3,
        broaden_scope=attempt == 3,
        include_related_fields=attempt >= 2,
    )
    interests: List[str] = []
    if include_profile and profile is not None and base_keywords.mode != KeywordMode.AFFIRMATIVE:
        interests = list(profile.interests)
    base = list(base_keywords.keywords)

    if attempt <= 1:
        return RerunContext(
            attempt=1,
            enhanced_query=original_query,
            strategy=SearchStrategy(**strategy_flags),
            keywords=base_keywords,
        )

    if attempt == 2:
        additional = related_terms(base, config)[:MAX_RELATED_TERMS] + interests[:MAX_PROFILE_TERMS]
        keywords = list(dict.fromkeys(base + additional))
        enhanced_query = " ".join(base + additional)
    else:
        additional = category_terms(base, interests, config)
        keywords = list(additional)
        enhanced_query = " ".join(additional)

    context = RerunContext(
        attempt=attempt,
        enhanced_query=enhanced_query,
        strategy=SearchStrategy(additional_keywords=tuple(additional), **strategy_flags),
        keywords=KeywordSet(
            keywords=tuple(keywords),
            mode=KeywordMode.BROADENED,
            target_cip_codes=base_keywords.target_cip_codes if attempt == 2 else (),
        ),
    )
    logger.info(
        "rerun_context_generated",
        attempt=attempt,
        keywords=keywords,
        previous_quality=reflection.quality_score if reflection else None,
    )
    return context
