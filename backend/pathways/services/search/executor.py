"""
Tool plan execution.

Independent calls run concurrently in worker threads (index lookups are
synchronous). get_careers(["all"]) depends on the college CIP codes the other
calls collect, so it runs after them. Results are merged in plan order,
independent of completion order. A failing call is recorded with its error
and contributes nothing; the rest of the plan is unaffected.
"""
import asyncio
from typing import List, Sequence

from pydantic import BaseModel, Field

from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    CollectedData,
    ToolCall,
    ToolName,
    ToolPlan,
    ToolResult,
)
from pathways.services.index.reader import LocalSearchIndex
from pathways.services.search.tools import IndexTools, ToolOutput

logger = get_logger(__name__)

ALL_CAREERS = "all"


class ExecutionResult(BaseModel):
    collected: CollectedData = Field(default_factory=CollectedData)
    results: List[ToolResult] = Field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [f"{r.tool.value}: {r.error}" for r in self.results if r.error]


def merge_collected(parts: Sequence[CollectedData]) -> CollectedData:
    merged = CollectedData()
    schools, campuses = set(), set()
    for part in parts:
        merged.high_school_programs.extend(part.high_school_programs)
        merged.college_programs.extend(part.college_programs)
        merged.careers.extend(part.careers)
        merged.cip_mappings.extend(part.cip_mappings)
        schools.update(part.schools)
        campuses.update(part.campuses)
    merged.schools = sorted(schools)
    merged.campuses = sorted(campuses)
    return merged


def _depends_on_collected(call: ToolCall) -> bool:
    return call.name == ToolName.GET_CAREERS and ALL_CAREERS in call.args


class ToolExecutor:
    """Runs ToolPlans against the local index."""

    def __init__(self, index: LocalSearchIndex):
        self.tools = IndexTools(index)

    async def _run(self, call: ToolCall) -> ToolResult:
        try:
            output: ToolOutput = await asyncio.to_thread(self.tools.run, call)
        except Exception as exc:
            logger.warning(
                "tool_execution_failed",
                tool=call.name.value,
                args=list(call.args),
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return ToolResult(tool=call.name, args=call.args, error=str(exc))
        return ToolResult(tool=call.name, args=call.args, data=output)

    async def execute(self, plan: ToolPlan) -> ExecutionResult:
        independent = [c for c in plan.calls if not _depends_on_collected(c)]
        dependent = [c for c in plan.calls if _depends_on_collected(c)]

        first = await asyncio.gather(*(self._run(call) for call in independent))
        collected = merge_collected([r.data.collected for r in first if r.error is None])

        cip_codes = tuple(dict.fromkeys(p.cip_code for p in collected.college_programs))
        resolved = [
            ToolCall(name=call.name, args=cip_codes or call.args) for call in dependent
        ]
        second = await asyncio.gather(*(self._run(call) for call in resolved))

        by_call = dict(zip(independent, first))
        by_call.update(zip(dependent, second))
        ordered = [by_call[call] for call in plan.calls]

        results = [
            r.model_copy(update={"data": r.data.data}) if r.error is None else r
            for r in ordered
        ]
        collected = merge_collected([r.data.collected for r in ordered if r.error is None])

        logger.info(
            "tool_plan_executed",
            tools=plan.tool_names,
            high_school=len(collected.high_school_programs),
            college=len(collected.college_programs),
            careers=len(collected.careers),
            failed=sum(1 for r in results if r.error),
        )
        return ExecutionResult(collected=collected, results=results)
