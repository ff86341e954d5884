"""
Index tools callable from a tool plan.

Each tool returns a ToolOutput: the raw lookup result plus the slice of
CollectedData it contributes. Tools never raise for "nothing found"; they
return empty results instead.
"""
from typing import Any, Callable, Dict, List, NamedTuple, Sequence

from pathways.core.errors import PathwayError
from pathways.core.logging import get_logger
from pathways.services.ai.schema import CollectedData, ToolCall, ToolName
from pathways.services.index.reader import LocalSearchIndex, Record, as_list
from pathways.services.index.tracer import (
    PathwayTracer,
    to_career_mapping,
    to_college_candidate,
    to_high_school_candidate,
)

logger = get_logger(__name__)

MAX_SEARCH_RESULTS = 10


class UnknownToolError(PathwayError, ValueError):
    """Raised for a tool name the executor cannot dispatch."""


class ToolOutput(NamedTuple):
    data: Any
    collected: CollectedData


def score_match(text: str, terms: Sequence[str]) -> int:
    """Exact text +10, prefix +5, substring +2 per term."""
    text_lower = text.lower()
    score = 0
    for term in terms:
        term_lower = term.lower()
        if text_lower == term_lower:
            score += 10
        elif text_lower.startswith(term_lower):
            score += 5
        elif term_lower in text_lower:
            score += 2
    return score


def rank_results(records: Sequence[Record], terms: Sequence[str]) -> List[Record]:
    """Records with a positive score, best first (stable for ties)."""
    scored = []
    for record in records:
        text = record.get("PROGRAM_OF_STUDY") or " ".join(as_list(record.get("PROGRAM_NAME")))
        score = score_match(text, terms)
        if score > 0:
            scored.append((score, record))
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [record for _, record in scored]


def _with_places(collected: CollectedData) -> CollectedData:
    schools = sorted({s for p in collected.high_school_programs for s in p.schools})
    campuses = sorted({c for p in collected.college_programs for c in p.campuses})
    return collected.model_copy(update={"schools": schools, "campuses": campuses})


class IndexTools:
    """Dispatch table from ToolName to index lookups."""

    def __init__(self, index: LocalSearchIndex):
        self.index = index
        self.tracer = PathwayTracer(index)
        self._handlers: Dict[ToolName, Callable[[Sequence[str]], ToolOutput]] = {
            ToolName.TRACE_PATHWAY: self.trace_pathway,
            ToolName.TRACE_FROM_HS: self.trace_from_hs,
            ToolName.SEARCH_HS_PROGRAMS: self.search_hs_programs,
            ToolName.GET_HS_PROGRAM_DETAILS: self.get_hs_program_details,
            ToolName.GET_HS_COURSES: self.get_hs_courses,
            ToolName.SEARCH_COLLEGE_PROGRAMS: self.search_college_programs,
            ToolName.GET_COLLEGE_BY_CIP: self.get_college_by_cip,
            ToolName.GET_COLLEGE_CAMPUSES: self.get_college_campuses,
            ToolName.EXPAND_CIP: self.expand_cip,
            ToolName.GET_CIP_CATEGORY: self.get_cip_category,
            ToolName.GET_CAREERS: self.get_careers,
        }

    def run(self, call: ToolCall) -> ToolOutput:
        handler = self._handlers.get(call.name)
        if handler is None:
            raise UnknownToolError(f"Unknown tool: {call.name}")
        return handler(call.args)

    def trace_pathway(self, args: Sequence[str]) -> ToolOutput:
        collected = _with_places(self.tracer.trace_from_keywords(list(args)))
        return ToolOutput(collected, collected)

    def trace_from_hs(self, args: Sequence[str]) -> ToolOutput:
        if not args:
            return ToolOutput(None, CollectedData())
        collected = _with_places(self.tracer.trace_from_high_school(args[0]))
        return ToolOutput(collected, collected)

    def search_hs_programs(self, args: Sequence[str]) -> ToolOutput:
        hs = self.index.high_school
        ranked = rank_results(hs.get_all_programs(), args)
        programs = [
            to_high_school_candidate(record, hs.get_schools_for_program(record["PROGRAM_OF_STUDY"]))
            for record in ranked[:MAX_SEARCH_RESULTS]
        ]
        return ToolOutput(ranked, _with_places(CollectedData(high_school_programs=programs)))

    def get_hs_program_details(self, args: Sequence[str]) -> ToolOutput:
        if not args:
            return ToolOutput(None, CollectedData())
        info = self.index.high_school.get_complete_program_info(args[0])
        if info is None:
            return ToolOutput(None, CollectedData())

        details = {
            key: info[key] for key in ("coursesByGrade", "coursesByLevel") if info[key]
        }
        candidate = to_high_school_candidate(info["program"], info["schools"], details or None)
        return ToolOutput(info, _with_places(CollectedData(high_school_programs=[candidate])))

    def get_hs_courses(self, args: Sequence[str]) -> ToolOutput:
        courses = self.index.high_school.get_courses_by_grade(args[0]) if args else None
        return ToolOutput(courses, CollectedData())

    def search_college_programs(self, args: Sequence[str]) -> ToolOutput:
        college = self.index.college
        ranked = rank_results(college.get_all_programs(), args)
        programs = [
            to_college_candidate(record, college.get_campuses_by_cip(record["CIP_CODE"]))
            for record in ranked[:MAX_SEARCH_RESULTS]
        ]
        return ToolOutput(ranked, _with_places(CollectedData(college_programs=programs)))

    def get_college_by_cip(self, args: Sequence[str]) -> ToolOutput:
        codes = set(code for code in args if len(code) != 2)
        broad = [code for code in args if len(code) == 2]
        if broad:
            codes.update(self.index.cip.expand_cip2digits(broad))

        college = self.index.college
        records = college.get_programs_by_cip(codes)
        programs = [
            to_college_candidate(record, college.get_campuses_by_cip(record["CIP_CODE"]))
            for record in records
        ]
        return ToolOutput(records, _with_places(CollectedData(college_programs=programs)))

    def get_college_campuses(self, args: Sequence[str]) -> ToolOutput:
        campuses = self.index.college.get_campuses_by_cip(args[0]) if args else []
        return ToolOutput(campuses, CollectedData(campuses=sorted(set(campuses))))

    def expand_cip(self, args: Sequence[str]) -> ToolOutput:
        expanded = sorted(self.index.cip.expand_cip2digits(args))
        mapping = {"CIP_2DIGIT": ",".join(args), "CIP_CODE": expanded}
        return ToolOutput(expanded, CollectedData(cip_mappings=[mapping]))

    def get_cip_category(self, args: Sequence[str]) -> ToolOutput:
        return ToolOutput(self.index.cip.get_cip_categories(args), CollectedData())

    def get_careers(self, args: Sequence[str]) -> ToolOutput:
        careers = [to_career_mapping(r) for r in self.index.careers.get_soc_codes_by_cip(args)]
        return ToolOutput(careers, CollectedData(careers=careers))
