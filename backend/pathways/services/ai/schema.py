"""
Pydantic models shared by the pathway pipeline.

Models that flow between attempts (KeywordSet, ToolPlan, SearchStrategy,
ReflectionResult) are frozen: a retry builds new instances instead of
mutating the previous attempt's.
"""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from pathways.core.errors import PathwayError


class SchemaValidationError(PathwayError):
    """Raised when oracle output fails schema validation."""

    def __init__(self, agent: str, message: str, raw_output: Optional[str] = None):
        super().__init__(message)
        self.agent = agent
        self.raw_output = raw_output


# ============================================================================
# REQUEST CONTEXT
# ============================================================================

class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, value: Any) -> str:
        # Chat frontends send "bot" / "system" for non-user turns
        return "user" if str(value).lower() == "user" else "assistant"


_PROFILE_KEY_ALIASES = {
    "educationLevel": "education_level",
    "careerGoals": "career_goals",
    "gradeLevel": "grade_level",
    "profileSummary": "summary",
}


class UserProfile(BaseModel):
    """Student profile; every field is optional."""

    education_level: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    career_goals: List[str] = Field(default_factory=list)
    goals: List[str] = Field(default_factory=list)
    grade_level: Optional[str] = None
    location: Optional[str] = None
    summary: Optional[str] = None
    extra: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Optional[Dict[str, Any]]) -> "UserProfile":
        """
        Build a profile from a request body.

        Accepts camelCase or snake_case keys, and a wrapper object whose
        'extracted' key holds the actual profile. Unknown keys land in extra.
        """
        if not isinstance(payload, dict):
            return cls()
        if isinstance(payload.get("extracted"), dict):
            summary = payload.get("profileSummary") or payload.get("summary")
            payload = dict(payload["extracted"])
            if summary and "summary" not in payload and "profileSummary" not in payload:
                payload["summary"] = summary

        known = set(cls.model_fields) - {"extra"}
        data: Dict[str, Any] = {}
        extra: Dict[str, Any] = {}
        for key, value in payload.items():
            name = _PROFILE_KEY_ALIASES.get(key, key)
            if name in known:
                data[name] = value
            else:
                extra[key] = value

        for list_field in ("interests", "career_goals", "goals"):
            value = data.get(list_field)
            if isinstance(value, str):
                data[list_field] = [value]
            elif value is None:
                data.pop(list_field, None)
            else:
                data[list_field] = [str(v) for v in value if v]
        for text_field in ("education_level", "grade_level", "location", "summary"):
            if data.get(text_field) is not None:
                data[text_field] = str(data[text_field])
        return cls(extra=extra, **data)

    @property
    def is_empty(self) -> bool:
        return not (
            self.education_level or self.interests or self.career_goals
            or self.goals or self.grade_level or self.location or self.extra
        )


# ============================================================================
# CLASSIFICATION / KEYWORDS / PLANS
# ============================================================================

class QueryCategory(str, Enum):
    SEARCH = "search"
    CLARIFICATION = "clarification"
    GREETING = "greeting"
    REASONING = "reasoning"
    FOLLOWUP = "followup"


class Classification(BaseModel):
    needs_tools: bool
    category: QueryCategory
    reasoning: str = ""

    @field_validator("category", mode="before")
    @classmethod
    def normalize_category(cls, value: Any) -> Any:
        if isinstance(value, str) and not isinstance(value, QueryCategory):
            return value.lower().strip()
        return value


class KeywordMode(str, Enum):
    TOPIC_PIVOT = "topic_pivot"
    AFFIRMATIVE = "affirmative"
    NORMAL = "normal"
    BROADENED = "broadened"


class KeywordSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    keywords: Tuple[str, ...] = ()
    mode: KeywordMode = KeywordMode.NORMAL
    target_cip_codes: Tuple[str, ...] = ()


class ToolName(str, Enum):
    TRACE_PATHWAY = "trace_pathway"
    TRACE_FROM_HS = "trace_from_hs"
    SEARCH_HS_PROGRAMS = "search_hs_programs"
    GET_HS_PROGRAM_DETAILS = "get_hs_program_details"
    GET_HS_COURSES = "get_hs_courses"
    SEARCH_COLLEGE_PROGRAMS = "search_college_programs"
    GET_COLLEGE_BY_CIP = "get_college_by_cip"
    GET_COLLEGE_CAMPUSES = "get_college_campuses"
    EXPAND_CIP = "expand_cip"
    GET_CIP_CATEGORY = "get_cip_category"
    GET_CAREERS = "get_careers"


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: ToolName
    args: Tuple[str, ...] = ()


class ToolPlan(BaseModel):
    model_config = ConfigDict(frozen=True)

    calls: Tuple[ToolCall, ...] = ()
    reasoning: str = ""

    @property
    def tool_names(self) -> List[str]:
        return [call.name.value for call in self.calls]


# ============================================================================
# CANDIDATES
# ============================================================================

class HighSchoolCandidate(BaseModel):
    name: str
    cip_2digit: List[str] = Field(default_factory=list)
    schools: List[str] = Field(default_factory=list)
    details: Optional[Dict[str, Any]] = None

    @property
    def display_name(self) -> str:
        return self.name


class CollegeCandidate(BaseModel):
    cip_code: str
    program_names: List[str] = Field(default_factory=list)
    campuses: List[str] = Field(default_factory=list)

    @property
    def display_name(self) -> str:
        return self.program_names[0] if self.program_names else self.cip_code


class CareerMapping(BaseModel):
    cip_code: str
    soc_codes: List[str] = Field(default_factory=list)


class ToolResult(BaseModel):
    tool: ToolName
    args: Tuple[str, ...] = ()
    data: Any = None
    error: Optional[str] = None


class CollectedData(BaseModel):
    high_school_programs: List[HighSchoolCandidate] = Field(default_factory=list)
    college_programs: List[CollegeCandidate] = Field(default_factory=list)
    careers: List[CareerMapping] = Field(default_factory=list)
    cip_mappings: List[Dict[str, Any]] = Field(default_factory=list)
    schools: List[str] = Field(default_factory=list)
    campuses: List[str] = Field(default_factory=list)


# ============================================================================
# VERIFICATION
# ============================================================================

class ProgramLevel(str, Enum):
    HIGH_SCHOOL = "high_school"
    COLLEGE = "college"


Candidate = Union[HighSchoolCandidate, CollegeCandidate]


class VerifiedProgram(BaseModel):
    candidate: Candidate
    relevance_score: int = Field(..., ge=0, le=10)
    reasoning: str = ""

    @property
    def name(self) -> str:
        return self.candidate.display_name


class BatchScore(BaseModel):
    """One scored entry of a verifier batch (1-based index into the batch)."""

    index: int
    score: int = Field(..., ge=0, le=10)
    reasoning: str = "No reasoning provided"


class ParsedScores(BaseModel):
    kind: Literal["parsed"] = "parsed"
    scores: List[BatchScore]


class FallbackScores(BaseModel):
    kind: Literal["fallback"] = "fallback"
    reason: str


VerificationOutcome = Union[ParsedScores, FallbackScores]


class QuickVerification(BaseModel):
    is_relevant: bool
    score: int = Field(..., ge=0, le=10)
    reasoning: str = ""


class VerifiedData(BaseModel):
    high_school_programs: List[VerifiedProgram] = Field(default_factory=list)
    college_programs: List[VerifiedProgram] = Field(default_factory=list)
    careers: List[CareerMapping] = Field(default_factory=list)
    cip_mappings: List[Dict[str, Any]] = Field(default_factory=list)

    @property
    def total_programs(self) -> int:
        return len(self.high_school_programs) + len(self.college_programs)


# ============================================================================
# REFLECTION / RETRY
# ============================================================================

class ReflectionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    quality_score: int = Field(..., ge=0, le=10)
    issues: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    is_good_enough: bool
    reasoning: str = ""


class SearchStrategy(BaseModel):
    model_config = ConfigDict(frozen=True)

    expand_keywords: bool = False
    use_cip_search: bool = False
    broaden_scope: bool = False
    include_related_fields: bool = False
    additional_keywords: Tuple[str, ...] = ()


class RerunContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempt: int = Field(..., ge=1)
    enhanced_query: str
    strategy: SearchStrategy
    keywords: KeywordSet


# ============================================================================
# AGGREGATED OUTPUT
# ============================================================================

class HighSchoolFamily(BaseModel):
    name: str
    schools: List[str] = Field(default_factory=list)
    best_score: int = Field(0, ge=0, le=10)
    details: Optional[Dict[str, Any]] = None


class ProgramFamily(BaseModel):
    cip_code: str
    name: str
    representative_name: str
    program_names: List[str] = Field(default_factory=list)
    campuses: List[str] = Field(default_factory=list)
    best_score: int = Field(0, ge=0, le=10)

    @property
    def campus_count(self) -> int:
        return len(self.campuses)

    @property
    def variant_count(self) -> int:
        return len(self.program_names)


class PathwayResult(BaseModel):
    narrative: str = ""
    category: QueryCategory = QueryCategory.SEARCH
    high_school_programs: List[HighSchoolFamily] = Field(default_factory=list)
    program_families: List[ProgramFamily] = Field(default_factory=list)
    careers: List[CareerMapping] = Field(default_factory=list)
    career_codes: List[str] = Field(default_factory=list)
    summary: Dict[str, int] = Field(default_factory=dict)
    quality_score: int = Field(0, ge=0, le=10)
    attempts_used: int = Field(0, ge=0)
    tools_used: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


def validate_classification_payload(payload: Dict[str, Any]) -> Classification:
    """
    Validate a classifier JSON object (camelCase keys from the oracle).

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return Classification.model_validate({
            "needs_tools": payload.get("needsTools", payload.get("needs_tools")),
            "category": payload.get("queryType", payload.get("category")),
            "reasoning": payload.get("reasoning") or "",
        })
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="classifier",
            message=f"Invalid classification payload: {exc}",
        ) from exc


def validate_quick_verification_payload(payload: Dict[str, Any]) -> QuickVerification:
    """
    Validate a single-program verification object.

    Raises:
        SchemaValidationError if validation fails.
    """
    try:
        return QuickVerification.model_validate({
            "is_relevant": payload.get("isRelevant", payload.get("is_relevant")),
            "score": payload.get("score"),
            "reasoning": payload.get("reasoning") or "",
        })
    except ValidationError as exc:
        raise SchemaValidationError(
            agent="quick_verify",
            message=f"Invalid verification payload: {exc}",
        ) from exc
