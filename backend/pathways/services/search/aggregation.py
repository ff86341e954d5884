"""
Aggregation of verified candidates into deduplicated program families.

College programs share a CIP code across many degree variants
("Agriculture (Bachelor of Science - Agribusiness)", "Agriculture (Associate
in Science)", ...). They are grouped by CIP code and shown under one
representative name. Aggregation is order-independent and idempotent.
"""
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence

from pathways.core.logging import get_logger
from pathways.services.ai.schema import (
    CareerMapping,
    CollegeCandidate,
    HighSchoolCandidate,
    HighSchoolFamily,
    ProgramFamily,
    UserProfile,
    VerifiedData,
    VerifiedProgram,
)

logger = get_logger(__name__)

MAX_CAREER_CODES = 10
HIGH_SCHOOL_LEVELS = {"high_school", "middle_school"}

CLEAN_BACHELOR_RE = re.compile(r"\(Bachelor of (Science|Arts)\)$", re.IGNORECASE)
BACHELOR_WITH_SPEC_RE = re.compile(r"Bachelor of (Science|Arts)\s*-", re.IGNORECASE)
ASSOCIATE_RE = re.compile(r"Associate (in|of) (Science|Arts|Applied Science)(?!\s*-)", re.IGNORECASE)
CERTIFICATE_RE = re.compile(r"Certificate", re.IGNORECASE)

AMPERSAND_JOIN_RE = re.compile(r"(\w)&(\w)")
PARENTHESES_RE = re.compile(r"\s*\([^)]*\)")
AMPERSAND_RE = re.compile(r"\s*&\s*")
WHITESPACE_RE = re.compile(r"\s+")

# Display order of degree variants inside a family; unmatched names sort last
VARIANT_PRIORITY = [
    re.compile(r"\(Bachelor of Science\)$", re.IGNORECASE),
    re.compile(r"\(Bachelor of Arts\)$", re.IGNORECASE),
    re.compile(r"\(Associate in Science\)$", re.IGNORECASE),
    re.compile(r"Bachelor of Science - ", re.IGNORECASE),
    re.compile(r"Bachelor of Arts - ", re.IGNORECASE),
    re.compile(r"Associate", re.IGNORECASE),
    re.compile(r"Certificate of Achievement", re.IGNORECASE),
    re.compile(r"Master", re.IGNORECASE),
    re.compile(r"Doctor", re.IGNORECASE),
]

COURSE_DETAIL_KEYS = {
    "coursesByGrade": "courses_by_grade",
    "coursesByLevel": "courses_by_level",
}


def extract_base_program_name(full_name: str) -> str:
    """
    "Information&Computer Sciences (Associate in Science)" ->
    "Information and Computer Sciences"
    """
    cleaned = AMPERSAND_JOIN_RE.sub(r"\1 & \2", full_name)
    base = PARENTHESES_RE.sub("", cleaned).strip()
    base = AMPERSAND_RE.sub(" and ", base)
    base = WHITESPACE_RE.sub(" ", base).strip()
    return base or full_name


def find_representative_name(program_names: Sequence[str]) -> str:
    """Most canonical variant name of a family (names are examined sorted)."""
    names = sorted(set(program_names))
    if not names:
        return ""
    if len(names) == 1:
        return names[0]

    for pattern in (CLEAN_BACHELOR_RE, BACHELOR_WITH_SPEC_RE, ASSOCIATE_RE):
        match = next((n for n in names if pattern.search(n)), None)
        if match:
            return match

    counts = Counter(extract_base_program_name(n) for n in names)
    most_common = max(counts, key=lambda base: (counts[base], len(base), base))
    matching = [n for n in names if extract_base_program_name(n) == most_common]
    preferred = [n for n in matching if not CERTIFICATE_RE.search(n)] or matching
    return min(preferred, key=lambda n: (len(n), n))


def aggregate_college_programs(verified: Iterable[VerifiedProgram]) -> List[ProgramFamily]:
    groups: Dict[str, Dict[str, Any]] = {}
    for item in verified:
        candidate = item.candidate
        if not isinstance(candidate, CollegeCandidate):
            continue
        group = groups.setdefault(
            candidate.cip_code,
            {"names": set(), "campuses": set(), "best_score": 0},
        )
        group["names"].update(candidate.program_names)
        group["campuses"].update(candidate.campuses)
        group["best_score"] = max(group["best_score"], item.relevance_score)

    families = []
    for cip_code, group in groups.items():
        names = sorted(group["names"]) or [cip_code]
        representative = find_representative_name(names)
        families.append(ProgramFamily(
            cip_code=cip_code,
            name=extract_base_program_name(representative),
            representative_name=representative,
            program_names=names,
            campuses=sorted(group["campuses"]),
            best_score=group["best_score"],
        ))

    families.sort(key=lambda f: (-f.best_score, -f.campus_count, f.name, f.cip_code))
    logger.debug("college_programs_aggregated", families=len(families))
    return families


def _detail_fields(details: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not details:
        return None
    mapped = {
        COURSE_DETAIL_KEYS.get(key, key): value
        for key, value in details.items()
        if value
    }
    return mapped or None


def aggregate_high_school_programs(verified: Iterable[VerifiedProgram]) -> List[HighSchoolFamily]:
    groups: Dict[str, Dict[str, Any]] = {}
    for item in verified:
        candidate = item.candidate
        if not isinstance(candidate, HighSchoolCandidate):
            continue
        group = groups.setdefault(
            candidate.name,
            {"schools": set(), "best_score": 0, "details": None},
        )
        group["schools"].update(candidate.schools)
        group["best_score"] = max(group["best_score"], item.relevance_score)
        if group["details"] is None:
            group["details"] = _detail_fields(candidate.details)

    families = [
        HighSchoolFamily(
            name=name,
            schools=sorted(group["schools"]),
            best_score=group["best_score"],
            details=group["details"],
        )
        for name, group in groups.items()
    ]
    families.sort(key=lambda f: (-f.best_score, f.name))
    return families


def _variant_rank(name: str) -> int:
    for rank, pattern in enumerate(VARIANT_PRIORITY):
        if pattern.search(name):
            return rank
    return len(VARIANT_PRIORITY)


def format_college_programs(families: Sequence[ProgramFamily]) -> List[Dict[str, Any]]:
    """Response shape for college families, variants in degree-priority order."""
    formatted = []
    for family in families:
        entry: Dict[str, Any] = {
            "name": family.name,
            "cipCode": family.cip_code,
            "campuses": family.campuses,
            "campusCount": family.campus_count,
            "variantCount": family.variant_count,
            "relevanceScore": family.best_score,
        }
        if family.variant_count > 1:
            entry["variants"] = sorted(family.program_names, key=lambda n: (_variant_rank(n), n))
        formatted.append(entry)
    return formatted


def format_high_school_programs(families: Sequence[HighSchoolFamily]) -> List[Dict[str, Any]]:
    formatted = []
    for family in families:
        entry: Dict[str, Any] = {
            "name": family.name,
            "schools": family.schools,
            "schoolCount": len(family.schools),
            "relevanceScore": family.best_score,
        }
        if family.details:
            entry["details"] = family.details
        formatted.append(entry)
    return formatted


def career_codes(careers: Sequence[CareerMapping], families: Sequence[ProgramFamily]) -> List[str]:
    """SOC codes for the families' CIP codes, falling back to the first mappings."""
    cip_codes = {f.cip_code for f in families}
    matched = [c for c in careers if c.cip_code in cip_codes] or list(careers[:MAX_CAREER_CODES])
    codes: List[str] = []
    for mapping in matched:
        for code in mapping.soc_codes:
            if code not in codes:
                codes.append(code)
    return codes[:MAX_CAREER_CODES]


def build_summary(
    high_school: Sequence[HighSchoolFamily],
    families: Sequence[ProgramFamily],
    codes: Sequence[str],
) -> Dict[str, int]:
    return {
        "total_high_school_programs": len(high_school),
        "total_high_schools": len({s for f in high_school for s in f.schools}),
        "total_college_programs": len(families),
        "total_college_campuses": len({c for f in families for c in f.campuses}),
        "total_career_paths": len(codes),
    }


def shows_high_school(profile: Optional[UserProfile]) -> bool:
    if profile is None or not profile.education_level:
        return True
    return profile.education_level.lower().strip() in HIGH_SCHOOL_LEVELS


def filter_by_education_level(data: VerifiedData, profile: Optional[UserProfile]) -> VerifiedData:
    """Drop high-school programs for users past high school."""
    if shows_high_school(profile):
        return data
    logger.info(
        "high_school_programs_filtered",
        education_level=profile.education_level,
        removed=len(data.high_school_programs),
    )
    return data.model_copy(update={"high_school_programs": []})
