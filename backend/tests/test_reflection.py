"""
Unit tests for the heuristic reflector and retry strategy.
"""
import pytest

from pathways.core.config import PipelineConfig, ReflectionSettings
from pathways.services.ai.schema import (
    CareerMapping,
    CollegeCandidate,
    HighSchoolCandidate,
    KeywordMode,
    KeywordSet,
    UserProfile,
    VerifiedData,
    VerifiedProgram,
)
from pathways.services.search.reflection import (
    Reflector,
    category_terms,
    generate_rerun_context,
    related_terms,
)


@pytest.fixture
def config():
    return PipelineConfig()


def data(hs_names=(), college_names=(), careers=True):
    return VerifiedData(
        high_school_programs=[
            VerifiedProgram(candidate=HighSchoolCandidate(name=name), relevance_score=8) for name in hs_names
        ],
        college_programs=[
            VerifiedProgram(
                candidate=CollegeCandidate(cip_code=f"51.38{i:02d}", program_names=[name]),
                relevance_score=8,
            )
            for i, name in enumerate(college_names)
        ],
        careers=[CareerMapping(cip_code="51.3801", soc_codes=["29-1141"])] if careers else [],
    )


NURSING_HS = ["Nursing Services", "Nursing Assistant", "Health Nursing", "Nursing Pathway", "Nursing Basics"]
NURSING_COLLEGE = [
    "Nursing (Bachelor of Science)",
    "Nursing (Associate in Science)",
    "Practical Nursing (Certificate of Achievement)",
    "Nursing (Master of Science)",
]


class TestReflector:
    def test_complete_relevant_results_score_high(self, config):
        result = Reflector(config).reflect("nursing", data(NURSING_HS, NURSING_COLLEGE))

        assert result.quality_score == 8
        assert result.is_good_enough is True
        assert result.issues == ()
        assert result.reasoning == "Fast heuristic: 9 programs, 8/10 quality"

    def test_empty_results(self, config):
        result = Reflector(config).reflect("nursing", data(careers=False))

        assert result.quality_score == 0
        assert result.is_good_enough is False
        assert "No programs found" in result.issues
        assert "Missing educational pathway data" in result.issues

    def test_last_retry_is_always_good_enough(self, config):
        result = Reflector(config).reflect("nursing", data(careers=False), attempt=3)

        assert result.quality_score == 0
        assert result.is_good_enough is True

    def test_college_only_partial_credit(self, config):
        result = Reflector(config).reflect("nursing", data(college_names=NURSING_COLLEGE[:3], careers=False))

        # completeness 1, quantity 1, relevance 2
        assert result.quality_score == 4
        assert "Include high school preparation programs" in result.suggestions

    def test_profile_alignment(self, config):
        profile = UserProfile(interests=["nursing"])

        result = Reflector(config).reflect("health careers", data(NURSING_HS, NURSING_COLLEGE), profile)

        # completeness 3, quantity 2, relevance 3, alignment 2
        assert result.quality_score == 10

    def test_weights_are_configurable(self):
        config = PipelineConfig(reflection=ReflectionSettings(completeness=1, quantity=0, relevance=1))

        result = Reflector(config).reflect("nursing", data(NURSING_HS, NURSING_COLLEGE))

        assert result.quality_score == 2

    def test_reflection_is_deterministic(self, config):
        reflector = Reflector(config)
        verified = data(NURSING_HS[:2], NURSING_COLLEGE[:1])

        assert reflector.reflect("nursing", verified) == reflector.reflect("nursing", verified)


class TestTerms:
    def test_related_terms(self, config):
        assert related_terms(["Nursing", "unknown"], config) == ["health", "medical", "healthcare"]

    def test_category_terms(self, config):
        assert category_terms(["nursing"], [], config) == ["health", "medical", "nursing"]

    def test_category_terms_are_bounded(self, config):
        terms = category_terms(["computer", "music", "nursing", "business"], ["cooking"], config)

        assert len(terms) == 6
        assert terms[:4] == ["technology", "computer", "tech", "IT"]

    def test_uppercase_terms_do_not_match_substrings(self, config):
        assert category_terms(["kitchen"], [], config) == ["kitchen"]


class TestRerunContext:
    def test_first_attempt_reuses_base_keywords(self, config):
        base = KeywordSet(keywords=("computer",))

        context = generate_rerun_context("computer", base, None, None, 1, config)

        assert context.keywords == base
        assert context.enhanced_query == "computer"

    def test_second_attempt_adds_related_terms_and_interests(self, config):
        base = KeywordSet(keywords=("computer",), target_cip_codes=("11.0701",))
        profile = UserProfile(interests=["music", "art", "dance"])

        context = generate_rerun_context("computer", base, None, profile, 2, config)

        assert context.keywords.keywords == ("computer", "technology", "IT", "programming", "music", "art")
        assert context.keywords.mode == KeywordMode.BROADENED
        assert context.keywords.target_cip_codes == ("11.0701",)
        assert context.strategy.include_related_fields is True
        assert context.strategy.use_cip_search is False

    def test_third_attempt_uses_category_terms(self, config):
        base = KeywordSet(keywords=("computer",))
        profile = UserProfile(interests=["music", "art", "dance"])

        context = generate_rerun_context("computer", base, None, profile, 3, config)

        assert context.keywords.keywords == ("technology", "computer", "tech", "IT", "arts", "art")
        assert context.strategy.broaden_scope is True
        assert context.strategy.use_cip_search is True

    def test_third_attempt_drops_career_goal_codes(self, config):
        base = KeywordSet(keywords=("computer",), target_cip_codes=("11.0701",))

        context = generate_rerun_context("computer", base, None, None, 3, config)

        assert context.keywords.target_cip_codes == ()

    def test_affirmative_base_never_uses_interests(self, config):
        base = KeywordSet(keywords=("cybersecurity",), mode=KeywordMode.AFFIRMATIVE)
        profile = UserProfile(interests=["culinary"])

        context = generate_rerun_context("show me more", base, None, profile, 2, config)

        assert "culinary" not in context.keywords.keywords
        assert context.keywords.keywords == ("cybersecurity",)
