"""
Response models for API endpoints.

Field names are camelCase to match what the chat frontend reads.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from pathways.services.ai.schema import PathwayResult
from pathways.services.search.aggregation import (
    format_college_programs,
    format_high_school_programs,
)


class PathwayData(BaseModel):
    """Aggregated programs and careers."""
    highSchoolPrograms: List[Dict[str, Any]] = Field(default_factory=list)
    collegePrograms: List[Dict[str, Any]] = Field(default_factory=list)
    careers: List[Dict[str, Any]] = Field(default_factory=list)
    careerCodes: List[str] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)


class PathwayResponse(BaseModel):
    """POST /api/pathway response."""
    success: bool = True
    message: str
    data: PathwayData
    toolsUsed: List[str] = Field(default_factory=list)
    qualityScore: int
    attempts: int
    category: str
    processingTime: int = 0
    cached: Optional[bool] = None


def _summary(summary: Dict[str, int]) -> Dict[str, int]:
    return {
        "totalHighSchoolPrograms": summary.get("total_high_school_programs", 0),
        "totalHighSchools": summary.get("total_high_schools", 0),
        "totalCollegePrograms": summary.get("total_college_programs", 0),
        "totalCollegeCampuses": summary.get("total_college_campuses", 0),
        "totalCareerPaths": summary.get("total_career_paths", 0),
    }


def build_pathway_response(result: PathwayResult, processing_ms: int = 0) -> PathwayResponse:
    careers = [
        {"cipCode": mapping.cip_code, "socCodes": mapping.soc_codes}
        for mapping in result.careers
        if not result.career_codes or set(mapping.soc_codes) & set(result.career_codes)
    ]
    return PathwayResponse(
        message=result.narrative,
        data=PathwayData(
            highSchoolPrograms=format_high_school_programs(result.high_school_programs),
            collegePrograms=format_college_programs(result.program_families),
            careers=careers,
            careerCodes=result.career_codes,
            summary=_summary(result.summary),
        ),
        toolsUsed=result.tools_used,
        qualityScore=result.quality_score,
        attempts=result.attempts_used,
        category=result.category.value,
        processingTime=processing_ms,
    )
