"""
Pathway orchestration.

Responsibilities:
- Run the bounded-retry search pipeline as an explicit state machine
- Route between nodes through a declarative routing table
- Keep the best attempt seen so far, so any node failure still yields a result

NON-responsibilities:
- Does NOT cache (the HTTP route owns the result cache)
- Does NOT shape the HTTP response

States:
    CLASSIFY -> SHORT_CIRCUIT | EXTRACT
    EXTRACT -> PLAN -> EXECUTE -> VERIFY -> FILTER -> REFLECT
    REFLECT -> AGGREGATE | STRATEGY -> EXTRACT
    AGGREGATE -> FORMAT -> DONE
"""
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Union

from pathways.core.config import PipelineConfig
from pathways.core.logging import get_logger, pipeline_context
from pathways.core.metrics import record_node_error, record_pathway_request
from pathways.core.tracing import record_exception, set_span_attribute, start_span
from pathways.services.ai.agents.classifier import FALLBACK_CLASSIFICATION, QueryClassifier
from pathways.services.ai.agents.formatter import ResponseFormatter, fallback_narrative
from pathways.services.ai.agents.verifier import ResultVerifier, should_include_profile
from pathways.services.ai.llm_client import LLMClient
from pathways.services.ai.schema import (
    Classification,
    ConversationTurn,
    HighSchoolFamily,
    KeywordSet,
    PathwayResult,
    ProgramFamily,
    ProgramLevel,
    QueryCategory,
    ReflectionResult,
    RerunContext,
    SearchStrategy,
    ToolPlan,
    UserProfile,
    VerifiedData,
)
from pathways.services.index.reader import LocalSearchIndex
from pathways.services.search.aggregation import (
    aggregate_college_programs,
    aggregate_high_school_programs,
    build_summary,
    career_codes,
    filter_by_education_level,
)
from pathways.services.search.executor import ExecutionResult, ToolExecutor
from pathways.services.search.keywords import KeywordExtractor
from pathways.services.search.planner import plan_tools
from pathways.services.search.reflection import Reflector, generate_rerun_context

logger = get_logger(__name__)


class Node(str, Enum):
    CLASSIFY = "classify"
    SHORT_CIRCUIT = "short_circuit"
    EXTRACT = "extract"
    PLAN = "plan"
    EXECUTE = "execute"
    VERIFY = "verify"
    FILTER = "filter"
    REFLECT = "reflect"
    STRATEGY = "strategy"
    AGGREGATE = "aggregate"
    FORMAT = "format"
    DONE = "done"


@dataclass
class PipelineState:
    """Per-request mutable state; never shared between requests."""

    message: str
    history: List[ConversationTurn]
    profile: Optional[UserProfile]
    attempt: int = 1
    classification: Optional[Classification] = None
    base_keywords: Optional[KeywordSet] = None
    keywords: Optional[KeywordSet] = None
    rerun: Optional[RerunContext] = None
    plan: Optional[ToolPlan] = None
    execution: Optional[ExecutionResult] = None
    verified: Optional[VerifiedData] = None
    reflection: Optional[ReflectionResult] = None
    best_verified: Optional[VerifiedData] = None
    best_quality: int = 0
    high_school: List[HighSchoolFamily] = field(default_factory=list)
    families: List[ProgramFamily] = field(default_factory=list)
    career_codes: List[str] = field(default_factory=list)
    summary: Dict[str, int] = field(default_factory=dict)
    narrative: str = ""
    short_circuited: bool = False
    tools_used: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def category(self) -> QueryCategory:
        return self.classification.category if self.classification else QueryCategory.SEARCH

    @property
    def strategy(self) -> SearchStrategy:
        return self.rerun.strategy if self.rerun else SearchStrategy()


Route = Union[Node, Callable[["PathwayOrchestrator", PipelineState], Node]]


def _after_classify(orchestrator: "PathwayOrchestrator", state: PipelineState) -> Node:
    if state.classification is not None and not state.classification.needs_tools:
        return Node.SHORT_CIRCUIT
    return Node.EXTRACT


def _after_reflect(orchestrator: "PathwayOrchestrator", state: PipelineState) -> Node:
    if state.attempt >= orchestrator.config.max_attempts:
        return Node.AGGREGATE
    if state.reflection is not None and state.reflection.is_good_enough:
        return Node.AGGREGATE
    return Node.STRATEGY


ROUTES: Dict[Node, Route] = {
    Node.CLASSIFY: _after_classify,
    Node.SHORT_CIRCUIT: Node.DONE,
    Node.EXTRACT: Node.PLAN,
    Node.PLAN: Node.EXECUTE,
    Node.EXECUTE: Node.VERIFY,
    Node.VERIFY: Node.FILTER,
    Node.FILTER: Node.REFLECT,
    Node.REFLECT: _after_reflect,
    Node.STRATEGY: Node.EXTRACT,
    Node.AGGREGATE: Node.FORMAT,
    Node.FORMAT: Node.DONE,
}

# Where to continue when a node raises
FAILURE_ROUTES: Dict[Node, Node] = {
    Node.CLASSIFY: Node.SHORT_CIRCUIT,
    Node.SHORT_CIRCUIT: Node.DONE,
    Node.AGGREGATE: Node.FORMAT,
    Node.FORMAT: Node.DONE,
}


class PathwayOrchestrator:
    """Bounded-retry search pipeline over the local index and the oracle."""

    def __init__(self, config: PipelineConfig, llm_client: LLMClient, index: LocalSearchIndex):
        self.config = config
        self.llm_client = llm_client
        self.index = index
        self.classifier = QueryClassifier(llm_client)
        self.extractor = KeywordExtractor(config)
        self.executor = ToolExecutor(index)
        self.verifier = ResultVerifier(llm_client, config.verifier)
        self.reflector = Reflector(config)
        self.formatter = ResponseFormatter(llm_client)
        self._handlers: Dict[Node, Callable[[PipelineState], Awaitable[None]]] = {
            Node.CLASSIFY: self._classify,
            Node.SHORT_CIRCUIT: self._short_circuit,
            Node.EXTRACT: self._extract,
            Node.PLAN: self._plan,
            Node.EXECUTE: self._execute,
            Node.VERIFY: self._verify,
            Node.FILTER: self._filter,
            Node.REFLECT: self._reflect,
            Node.STRATEGY: self._strategy,
            Node.AGGREGATE: self._aggregate,
            Node.FORMAT: self._format,
        }

    async def run(
        self,
        message: str,
        history: Sequence[ConversationTurn] = (),
        profile: Optional[UserProfile] = None,
    ) -> PathwayResult:
        state = PipelineState(message=message, history=list(history), profile=profile)
        node = Node.CLASSIFY

        while node != Node.DONE:
            with pipeline_context(node.value, state.attempt):
                node = await self._step(node, state)

        return self._result(state)

    async def _step(self, node: Node, state: PipelineState) -> Node:
        """Run one node and return the next one."""
        with start_span(f"pathway.{node.value}", attempt=state.attempt) as span:
            try:
                await self._handlers[node](state)
            except Exception as exc:
                record_exception(exc)
                record_node_error(node.value)
                state.errors.append(f"{node.value}: {exc}")
                if node == Node.CLASSIFY:
                    state.classification = FALLBACK_CLASSIFICATION
                logger.error(
                    "orchestrator_node_failed",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return FAILURE_ROUTES.get(node, Node.AGGREGATE)
            span.set_attribute("pathway.attempt", state.attempt)

        route = ROUTES[node]
        return route if isinstance(route, Node) else route(self, state)

    def _result(self, state: PipelineState) -> PathwayResult:
        attempts = 0 if state.short_circuited else state.attempt
        quality = 10 if state.short_circuited else state.best_quality
        careers = state.best_verified.careers if state.best_verified else []
        result = PathwayResult(
            narrative=state.narrative,
            category=state.category,
            high_school_programs=state.high_school,
            program_families=state.families,
            careers=careers,
            career_codes=state.career_codes,
            summary=state.summary,
            quality_score=quality,
            attempts_used=attempts,
            tools_used=list(dict.fromkeys(state.tools_used)),
            errors=state.errors,
        )
        record_pathway_request(state.category.value, attempts, quality)
        logger.info(
            "pathway_completed",
            category=state.category.value,
            attempts=attempts,
            quality_score=quality,
            college_programs=len(result.program_families),
            high_school_programs=len(result.high_school_programs),
            errors=len(state.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def _classify(self, state: PipelineState) -> None:
        state.classification = await self.classifier.classify(state.message, state.history)
        set_span_attribute("pathway.category", state.classification.category.value)

    async def _short_circuit(self, state: PipelineState) -> None:
        state.short_circuited = True
        state.narrative = await self.formatter.conversational_reply(
            state.message,
            state.category,
            state.history,
            state.profile,
        )

    async def _extract(self, state: PipelineState) -> None:
        if state.base_keywords is None:
            state.base_keywords = self.extractor.extract(state.message, state.history, state.profile)
        state.keywords = state.rerun.keywords if state.rerun else state.base_keywords
        logger.info(
            "orchestrator_attempt_started",
            attempt=state.attempt,
            keywords=list(state.keywords.keywords),
            mode=state.keywords.mode.value,
        )

    async def _plan(self, state: PipelineState) -> None:
        state.plan = plan_tools(state.category, state.keywords, state.strategy)

    async def _execute(self, state: PipelineState) -> None:
        state.execution = await self.executor.execute(state.plan)
        state.tools_used.extend(state.plan.tool_names)
        state.errors.extend(state.execution.errors)

    async def _verify(self, state: PipelineState) -> None:
        collected = state.execution.collected
        profile = state.profile
        if not should_include_profile(state.message, state.base_keywords.mode):
            profile = None
        intent = state.keywords.keywords[0] if state.keywords.keywords else state.message

        hs, college = await asyncio.gather(
            self.verifier.verify(
                state.message,
                collected.high_school_programs,
                ProgramLevel.HIGH_SCHOOL,
                state.history,
                intent,
                profile,
            ),
            self.verifier.verify(
                state.message,
                collected.college_programs,
                ProgramLevel.COLLEGE,
                state.history,
                intent,
                profile,
            ),
        )
        state.verified = VerifiedData(
            high_school_programs=hs,
            college_programs=college,
            careers=collected.careers,
            cip_mappings=collected.cip_mappings,
        )

    async def _filter(self, state: PipelineState) -> None:
        state.verified = filter_by_education_level(state.verified, state.profile)

    async def _reflect(self, state: PipelineState) -> None:
        state.reflection = self.reflector.reflect(
            state.message,
            state.verified,
            state.profile,
            state.attempt,
        )
        if state.best_verified is None or state.reflection.quality_score > state.best_quality:
            state.best_verified = state.verified
            state.best_quality = state.reflection.quality_score

    async def _strategy(self, state: PipelineState) -> None:
        state.attempt += 1
        state.rerun = generate_rerun_context(
            state.message,
            state.base_keywords,
            state.reflection,
            state.profile,
            state.attempt,
            self.config,
        )

    async def _aggregate(self, state: PipelineState) -> None:
        verified = state.best_verified or VerifiedData()
        state.high_school = aggregate_high_school_programs(verified.high_school_programs)
        state.families = aggregate_college_programs(verified.college_programs)
        state.career_codes = career_codes(verified.careers, state.families)
        state.summary = build_summary(state.high_school, state.families, state.career_codes)

    async def _format(self, state: PipelineState) -> None:
        state.narrative = fallback_narrative(state.summary)
        state.narrative = await self.formatter.format_results(
            state.message,
            state.high_school,
            state.families,
            state.career_codes,
            state.summary,
            state.history,
            state.profile,
        )
