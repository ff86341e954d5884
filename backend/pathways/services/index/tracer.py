"""
Pathway tracing over the local index.

trace_from_keywords searches college program names directly, follows the CIP
codes of the hits back to high school programs (through their 2-digit
prefixes) and forward to careers. trace_from_high_school starts from one
high school program of study and walks the same chain forward.
"""
import re
from typing import Dict, List, Optional, Sequence, Tuple

from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    CareerMapping,
    CollectedData,
    CollegeCandidate,
    HighSchoolCandidate,
)
from pathways.services.index.reader import LocalSearchIndex, Record, as_list

logger = get_logger(__name__)

WORD_SPLIT_RE = re.compile(r"[\s\-_(),&]+")

PHRASE_MATCH_SCORE = 50
PHRASE_FILTER_SCORE = 40
MAX_HS_RESULTS = 10
MAX_COLLEGE_RESULTS = 30
MAX_CAREER_RESULTS = 30


def to_high_school_candidate(
    record: Record,
    schools: Sequence[str] = (),
    details: Optional[Dict] = None,
) -> HighSchoolCandidate:
    return HighSchoolCandidate(
        name=str(record.get("PROGRAM_OF_STUDY", "")),
        cip_2digit=as_list(record.get("CIP_2DIGIT")),
        schools=list(schools),
        details=details,
    )


def to_college_candidate(record: Record, campuses: Sequence[str] = ()) -> CollegeCandidate:
    return CollegeCandidate(
        cip_code=str(record.get("CIP_CODE", "")),
        program_names=as_list(record.get("PROGRAM_NAME")),
        campuses=list(campuses),
    )


def to_career_mapping(record: Record) -> CareerMapping:
    return CareerMapping(
        cip_code=str(record.get("CIP_CODE", "")),
        soc_codes=as_list(record.get("SOC_CODE")),
    )


def score_name_match(names: Sequence[str], keywords: Sequence[str]) -> int:
    """
    Score program name variants against search keywords.

    Per variant: the whole phrase appearing in the name is worth 50; then each
    keyword adds 10 for an exact name, 3 for a substring, 2 for a whole word
    and 1 for a word prefix (first matching rule only).
    """
    lowered = [k.lower() for k in keywords if k]
    if not lowered:
        return 0
    phrase = " ".join(lowered)

    score = 0
    for name in names:
        name_lower = name.lower()
        words = WORD_SPLIT_RE.split(name_lower)
        if phrase in name_lower:
            score += PHRASE_MATCH_SCORE
        for keyword in lowered:
            if name_lower == keyword:
                score += 10
            elif keyword in name_lower:
                score += 3
            elif keyword in words:
                score += 2
            elif any(word.startswith(keyword) for word in words):
                score += 1
    return score


class PathwayTracer:
    """Keyword and high-school driven pathway traces."""

    def __init__(self, index: LocalSearchIndex):
        self.index = index

    def _rank(self, records: List[Record], name_key: str, keywords: Sequence[str]) -> List[Tuple[Record, int]]:
        scored = []
        for record in records:
            score = score_name_match(as_list(record.get(name_key)), keywords)
            if score > 0:
                scored.append((record, score))
        scored.sort(key=lambda pair: pair[1], reverse=True)
        return scored

    def trace_from_keywords(self, keywords: Sequence[str]) -> CollectedData:
        college_hits = self._rank(self.index.college.get_all_programs(), "PROGRAM_NAME", keywords)
        if any(score >= PHRASE_MATCH_SCORE for _, score in college_hits):
            college_hits = [(r, s) for r, s in college_hits if s >= PHRASE_FILTER_SCORE]

        cip_codes: List[str] = []
        cip_2digits: List[str] = []
        for record, _ in college_hits:
            code = str(record.get("CIP_CODE") or "")
            if code and code not in cip_codes:
                cip_codes.append(code)
                if code[:2] not in cip_2digits:
                    cip_2digits.append(code[:2])

        hs_by_name: Dict[str, HighSchoolCandidate] = {}
        for record, _ in self._rank(self.index.high_school.get_all_programs(), "PROGRAM_OF_STUDY", keywords):
            name = record["PROGRAM_OF_STUDY"]
            hs_by_name[name] = to_high_school_candidate(
                record, self.index.high_school.get_schools_for_program(name)
            )
        for record in self.index.high_school.get_programs_by_cip2digit(cip_2digits):
            name = record.get("PROGRAM_OF_STUDY")
            if name and name not in hs_by_name:
                hs_by_name[name] = to_high_school_candidate(
                    record, self.index.high_school.get_schools_for_program(name)
                )

        all_2digits = list(cip_2digits)
        for candidate in hs_by_name.values():
            for code in candidate.cip_2digit:
                if code not in all_2digits:
                    all_2digits.append(code)

        college = [
            to_college_candidate(record, self.index.college.get_campuses_by_cip(record["CIP_CODE"]))
            for record, _ in college_hits[:MAX_COLLEGE_RESULTS]
        ]
        careers = [to_career_mapping(r) for r in self.index.careers.get_soc_codes_by_cip(cip_codes)]

        logger.info(
            "pathway_traced_from_keywords",
            keywords=list(keywords),
            high_school=len(hs_by_name),
            college=len(college_hits),
            careers=len(careers),
        )
        return CollectedData(
            high_school_programs=list(hs_by_name.values())[:MAX_HS_RESULTS],
            college_programs=college,
            careers=careers[:MAX_CAREER_RESULTS],
            cip_mappings=[{"CIP_2DIGIT": ",".join(all_2digits), "CIP_CODE": cip_codes}],
        )

    def trace_from_high_school(self, program_name: str) -> CollectedData:
        info = self.index.high_school.get_complete_program_info(program_name)
        if info is None:
            logger.info("pathway_trace_hs_not_found", program=program_name)
            return CollectedData()

        program = info["program"]
        cip_2digits = as_list(program.get("CIP_2DIGIT"))
        full_codes = sorted(self.index.cip.expand_cip2digits(cip_2digits))

        college = [
            to_college_candidate(record, self.index.college.get_campuses_by_cip(record["CIP_CODE"]))
            for record in self.index.college.get_programs_by_cip(full_codes)
        ]
        careers = [to_career_mapping(r) for r in self.index.careers.get_soc_codes_by_cip(full_codes)]

        details = {"coursesByGrade": info["coursesByGrade"]} if info["coursesByGrade"] else None
        return CollectedData(
            high_school_programs=[to_high_school_candidate(program, info["schools"], details)],
            college_programs=college,
            careers=careers,
            cip_mappings=[{"CIP_2DIGIT": ",".join(cip_2digits), "CIP_CODE": full_codes}],
        )
