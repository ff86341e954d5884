"""
Unit tests for the pathway orchestrator.

Runs the full pipeline against the temporary JSONL index from conftest with
the scripted oracle stub; no HTTP calls.
"""
import pytest

from pathways.core.config import PipelineConfig, ReflectionSettings
from pathways.services.ai.agents.formatter import NO_RESULTS_MESSAGE, fallback_narrative
from pathways.services.ai.orchestration import FAILURE_ROUTES, ROUTES, Node, PathwayOrchestrator
from pathways.services.ai.schema import ConversationTurn, QueryCategory, UserProfile


@pytest.fixture
def orchestrator(config, llm, index):
    return PathwayOrchestrator(config, llm, index)


def test_every_node_has_a_route():
    handled = set(Node) - {Node.DONE}
    assert set(ROUTES) == handled
    assert set(FAILURE_ROUTES) <= handled


@pytest.mark.asyncio
async def test_nursing_search(orchestrator, llm):
    result = await orchestrator.run("nursing programs")

    assert result.category == QueryCategory.SEARCH
    assert result.attempts_used == 1
    assert result.quality_score == 6
    assert result.tools_used == ["trace_pathway"]
    assert [f.cip_code for f in result.program_families] == ["51.3801", "51.3901"]
    assert result.program_families[0].name == "Nursing"
    assert result.program_families[0].campus_count == 3
    assert [f.name for f in result.high_school_programs] == ["Health Services", "Nursing Services"]
    assert result.career_codes == ["29-1141", "29-1151", "29-2061"]
    assert result.summary == {
        "total_high_school_programs": 2,
        "total_high_schools": 2,
        "total_college_programs": 2,
        "total_college_campuses": 3,
        "total_career_paths": 3,
    }
    assert result.narrative == fallback_narrative(result.summary)
    assert result.errors == []


@pytest.mark.asyncio
async def test_verifier_scores_filter_programs(orchestrator, llm):
    llm.scores = {"Practical Nursing (Certificate of Achievement)": 3, "Health Services": 4}

    result = await orchestrator.run("nursing programs")

    assert [f.cip_code for f in result.program_families] == ["51.3801"]
    assert [f.name for f in result.high_school_programs] == ["Nursing Services"]


@pytest.mark.asyncio
async def test_no_results_uses_every_attempt(orchestrator, llm):
    result = await orchestrator.run("zzqxy wvuts")

    assert result.attempts_used == 3
    assert result.quality_score == 0
    assert result.program_families == []
    assert result.high_school_programs == []
    assert result.narrative == NO_RESULTS_MESSAGE
    assert llm.prompts_for("verifier") == []


@pytest.mark.asyncio
async def test_attempts_are_bounded_by_config(index_dir, index, llm):
    config = PipelineConfig(data_dir=str(index_dir), max_attempts=2)

    result = await PathwayOrchestrator(config, llm, index).run("zzqxy wvuts")

    assert result.attempts_used == 2


@pytest.mark.asyncio
async def test_show_me_more_continues_previous_topic(orchestrator, llm):
    history = [
        ConversationTurn(role="user", content="Tell me about cybersecurity"),
        ConversationTurn(role="assistant", content="Cybersecurity and networking programs"),
    ]
    profile = UserProfile(interests=["culinary"])

    result = await orchestrator.run("show me more", history, profile)

    assert 1 <= result.attempts_used <= 3
    assert result.program_families
    assert all(f.cip_code.startswith("11.") for f in result.program_families)
    assert "Culinary Arts" not in [f.name for f in result.high_school_programs]
    for prompt in llm.prompts_for("verifier"):
        assert "User Profile: (No profile information available)" in prompt


@pytest.mark.asyncio
async def test_greeting_short_circuits(orchestrator, llm):
    result = await orchestrator.run("hello")

    assert result.category == QueryCategory.GREETING
    assert result.attempts_used == 0
    assert result.quality_score == 10
    assert result.tools_used == []
    assert result.narrative.startswith("## Aloha!")
    assert llm.prompts_for("verifier") == []


@pytest.mark.asyncio
async def test_classifier_can_skip_tools(orchestrator, llm):
    llm.responses["classifier"] = '{"needsTools": false, "queryType": "reasoning"}'
    llm.responses["conversational"] = "Nursing takes about four years at UH Manoa."

    result = await orchestrator.run("How long does a nursing degree take?")

    assert result.category == QueryCategory.REASONING
    assert result.narrative == "Nursing takes about four years at UH Manoa."
    assert result.attempts_used == 0


@pytest.mark.asyncio
async def test_college_students_get_no_high_school_programs(orchestrator):
    profile = UserProfile(education_level="college")

    result = await orchestrator.run("nursing programs", profile=profile)

    assert result.high_school_programs == []
    assert result.program_families


@pytest.mark.asyncio
async def test_node_failure_still_returns_a_result(orchestrator, monkeypatch):
    async def broken(plan):
        raise RuntimeError("index offline")

    monkeypatch.setattr(orchestrator.executor, "execute", broken)

    result = await orchestrator.run("nursing programs")

    assert result.errors == ["execute: index offline"]
    assert result.program_families == []
    assert result.attempts_used == 1
    assert result.narrative == NO_RESULTS_MESSAGE


@pytest.mark.asyncio
async def test_failure_after_first_attempt_keeps_best_result(orchestrator, monkeypatch):
    original = orchestrator.executor.execute
    calls = []

    async def flaky(plan):
        calls.append(plan)
        if len(calls) > 1:
            raise RuntimeError("index offline")
        return await original(plan)

    monkeypatch.setattr(orchestrator.executor, "execute", flaky)

    result = await orchestrator.run("cybersecurity jobs")

    assert len(calls) == 2
    assert result.attempts_used == 2
    assert result.errors == ["execute: index offline"]
    assert [f.cip_code for f in result.program_families] == ["11.1003"]
    assert result.career_codes == ["15-1212"]


@pytest.mark.asyncio
async def test_verifier_fallback_keeps_candidates(orchestrator, llm):
    llm.responses["verifier"] = "not json"

    result = await orchestrator.run("nursing programs")

    assert [f.best_score for f in result.program_families] == [7, 7]


@pytest.mark.asyncio
async def test_career_goals_add_to_keyword_search(index_dir, index, llm):
    config = PipelineConfig(data_dir=str(index_dir), reflection=ReflectionSettings(min_quality_score=0))
    profile = UserProfile(career_goals=["software engineer"])

    result = await PathwayOrchestrator(config, llm, index).run("nursing programs", profile=profile)

    assert result.attempts_used == 1
    assert result.tools_used == ["get_college_by_cip", "trace_pathway"]
    cip_codes = {f.cip_code for f in result.program_families}
    assert {"51.3801", "11.0701"} <= cip_codes


@pytest.mark.asyncio
async def test_topic_pivot_ignores_career_goals(orchestrator):
    profile = UserProfile(career_goals=["software engineer"])

    result = await orchestrator.run("what about nursing", profile=profile)

    assert "get_college_by_cip" not in result.tools_used
    assert all(f.cip_code.startswith("51.") for f in result.program_families)


@pytest.mark.asyncio
async def test_verifier_intent_is_first_keyword(orchestrator, llm):
    await orchestrator.run("nursing programs")

    prompt = llm.prompts_for("verifier")[0]
    assert 'Extracted Search Intent: "nursing"' in prompt


@pytest.mark.asyncio
async def test_classifier_failure_answers_conversationally(orchestrator, llm, monkeypatch):
    async def broken(message, history=()):
        raise RuntimeError("boom")

    monkeypatch.setattr(orchestrator.classifier, "classify", broken)

    result = await orchestrator.run("nursing programs")

    assert result.category == QueryCategory.CLARIFICATION
    assert result.errors == ["classify: boom"]
    assert result.attempts_used == 0
    assert result.tools_used == []
    assert result.narrative
    assert llm.prompts_for("verifier") == []
