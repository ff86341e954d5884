"""
Unit tests for keyword extraction modes.
"""
import pytest

from pathways.core.config import PipelineConfig
from pathways.services.ai.schema import ConversationTurn, KeywordMode, UserProfile
from pathways.services.search.keywords import (
    KeywordExtractor,
    career_goal_cip_codes,
    detect_mode,
    extract_terms,
)


@pytest.fixture
def extractor():
    return KeywordExtractor(PipelineConfig())


@pytest.fixture
def cyber_history():
    return [
        ConversationTurn(role="user", content="Tell me about cybersecurity"),
        ConversationTurn(role="assistant", content="Cybersecurity and networking programs"),
    ]


class TestExtractTerms:
    def test_drops_stop_words_short_words_and_punctuation(self):
        config = PipelineConfig()
        assert extract_terms("What nursing programs are in Hawaii?", config.search_stop_words) == [
            "nursing",
            "hawaii",
        ]

    def test_keeps_first_three(self):
        config = PipelineConfig()
        terms = extract_terms("culinary baking pastry hospitality", config.search_stop_words)
        assert terms == ["culinary", "baking", "pastry"]


class TestDetectMode:
    def test_topic_pivot(self):
        assert detect_mode("What about engineering?", []) == KeywordMode.TOPIC_PIVOT

    def test_affirmative_needs_history(self, cyber_history):
        assert detect_mode("show me more", cyber_history) == KeywordMode.AFFIRMATIVE
        assert detect_mode("show me more", []) == KeywordMode.NORMAL

    def test_normal(self, cyber_history):
        assert detect_mode("nursing programs", cyber_history) == KeywordMode.NORMAL


class TestKeywordExtractor:
    def test_normal_mode_from_message(self, extractor):
        keywords = extractor.extract("nursing programs")

        assert keywords.keywords == ("nursing",)
        assert keywords.mode == KeywordMode.NORMAL
        assert keywords.target_cip_codes == ()

    def test_sparse_message_is_topped_up_with_interests(self, extractor):
        profile = UserProfile(interests=["Music", "Art", "Dance"])

        keywords = extractor.extract("programs for me", profile=profile)

        assert keywords.keywords == ("music", "art")

    def test_affirmative_uses_last_assistant_message(self, extractor, cyber_history):
        profile = UserProfile(interests=["culinary"], career_goals=["chef"])

        keywords = extractor.extract("show me more", cyber_history, profile)

        assert keywords.mode == KeywordMode.AFFIRMATIVE
        assert keywords.keywords == ("cybersecurity", "networking")
        assert keywords.target_cip_codes == ()

    def test_topic_pivot_ignores_history_and_interests(self, extractor, cyber_history):
        profile = UserProfile(interests=["culinary"])

        keywords = extractor.extract("What about nursing?", cyber_history, profile)

        assert keywords.mode == KeywordMode.TOPIC_PIVOT
        assert keywords.keywords == ("nursing",)

    def test_keywords_are_capped(self):
        extractor = KeywordExtractor(PipelineConfig(max_keywords=1))
        profile = UserProfile(interests=["art"])

        keywords = extractor.extract("music", profile=profile)

        assert keywords.keywords == ("music",)

    def test_career_goals_become_target_cip_codes(self, extractor):
        profile = UserProfile(career_goals=["Registered Nurse"])

        keywords = extractor.extract("what should I study", profile=profile)

        assert keywords.target_cip_codes == ("51.3801",)

    def test_topic_pivot_ignores_career_goals(self, extractor):
        profile = UserProfile(career_goals=["software engineer"])

        keywords = extractor.extract("what about nursing", profile=profile)

        assert keywords.mode == KeywordMode.TOPIC_PIVOT
        assert keywords.keywords == ("nursing",)
        assert keywords.target_cip_codes == ()


def test_career_goal_codes_without_profile():
    assert career_goal_cip_codes(None, PipelineConfig()) == []
