"""
Pipeline configuration.

Every tunable of the orchestration pipeline lives here: verifier thresholds,
batch sizes, candidate caps, reflection weights, retry bounds and the fixed
synonym / category tables used to broaden a search.

Environment configuration (read by PipelineConfig.from_env):
- LLM_API_BASE: Base URL for the OpenAI-compatible API (default: https://api.openai.com/v1)
- LLM_API_KEY: API key / bearer token (unset disables the oracle)
- LLM_MODEL: Model name (default: gpt-4o-mini)
- LLM_TIMEOUT_SECONDS: Request timeout in seconds (default: 20)
- LLM_COST_PER_1K_TOKENS: Optional cost hint for metrics (USD, float)
- REDIS_URL: Redis URL for the result cache (default: redis://localhost:6379)
- CACHE_ENABLED: Enable the result cache (default: true)
- PATHWAYS_DATA_DIR: Directory holding the JSONL index files (default: data/jsonl)
- PATHWAYS_MAX_ATTEMPTS: Maximum search attempts per request (default: 3)
"""
import os
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Tuple

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .logging import get_logger

logger = get_logger(__name__)

# .env in the repository root
ENV_PATH = Path(__file__).parent.parent.parent.parent / ".env"


SEARCH_STOP_WORDS: FrozenSet[str] = frozenset(
    """
    the a an and or but in on at to for of with by from about what which where
    how is are was were been be have has had do does did will would could
    should may might must can programs program course courses want need like
    find show tell give list just see job jobs career careers data me my more
    that this these those some any all
    """.split()
)

REFLECTION_STOP_WORDS: FrozenSet[str] = frozenset(
    """
    the a an and or but in on at to for of with by from about what which where
    how is are was were been be have has had do does did will would could
    should may might i me my we you it that this these those not no yes can
    cant always never thought amazing sure look like enough still exploring
    options want need show tell find
    """.split()
)

RELATED_TERMS: Dict[str, List[str]] = {
    "computer": ["technology", "IT", "programming", "software"],
    "technology": ["computer", "IT", "digital", "tech"],
    "programming": ["coding", "software", "computer science"],
    "cyber": ["security", "networking", "information technology"],
    "arts": ["creative", "design", "visual", "performing"],
    "music": ["audio", "performance", "arts"],
    "dance": ["performance", "arts", "theatre"],
    "design": ["creative", "art", "graphic", "visual"],
    "health": ["medical", "nursing", "healthcare"],
    "medical": ["health", "nursing", "healthcare"],
    "nursing": ["health", "medical", "healthcare"],
    "business": ["management", "finance", "entrepreneurship"],
    "management": ["business", "leadership", "administration"],
    "engineering": ["technical", "mechanical", "electrical"],
    "construction": ["building", "trades", "carpentry"],
    "automotive": ["mechanic", "repair", "transportation"],
    "education": ["teaching", "learning", "school"],
    "teaching": ["education", "instruction", "learning"],
    "culinary": ["cooking", "food", "chef", "hospitality"],
    "cooking": ["culinary", "food service", "chef"],
    "hospitality": ["tourism", "hotel", "culinary"],
}

CATEGORY_TERMS: Dict[str, List[str]] = {
    "technology": ["computer", "tech", "IT", "software", "programming", "cyber", "network", "data"],
    "arts": ["art", "music", "dance", "theatre", "theater", "creative", "design", "visual", "media", "film"],
    "health": ["health", "medical", "nursing", "dental", "pharmacy", "therapy"],
    "business": ["business", "management", "marketing", "finance", "accounting", "entrepreneurship"],
    "engineering": ["engineering", "mechanical", "electrical", "civil", "construction"],
    "education": ["education", "teaching", "learning", "school"],
    "culinary": ["culinary", "cooking", "food", "chef", "hospitality", "restaurant"],
    "science": ["science", "biology", "chemistry", "physics", "environmental"],
    "trades": ["automotive", "welding", "carpentry", "plumbing", "HVAC"],
    "social": ["psychology", "sociology", "social work", "counseling"],
}

# Lowercase career phrase -> 6-digit CIP codes
CAREER_CIP_CODES: Dict[str, List[str]] = {
    "software engineer": ["11.0701", "11.0101"],
    "software developer": ["11.0701", "11.0101"],
    "data scientist": ["11.0701", "27.0501"],
    "cybersecurity analyst": ["11.1003"],
    "nurse": ["51.3801"],
    "registered nurse": ["51.3801"],
    "doctor": ["51.1201"],
    "teacher": ["13.1202", "13.1205"],
    "chef": ["12.0503"],
    "accountant": ["52.0301"],
    "electrician": ["46.0302"],
    "mechanical engineer": ["14.1901"],
}


class LLMSettings(BaseModel):
    """Connection settings for the OpenAI-compatible oracle."""

    api_base: str = "https://api.openai.com/v1"
    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    timeout_seconds: float = 20.0
    cost_per_1k_tokens: float = 0.0


class VerifierSettings(BaseModel):
    """Relevance verification knobs."""

    model_config = ConfigDict(frozen=True)

    batch_size: int = Field(5, ge=1)
    max_hs_candidates: int = Field(20, ge=0)
    max_college_candidates: int = Field(30, ge=0)
    strong_match_score: int = Field(8, ge=0, le=10)
    # (strong bar, weak bar) applied when a strong match is / is not present
    hs_thresholds: Tuple[int, int] = (7, 5)
    college_thresholds: Tuple[int, int] = (6, 5)
    fallback_score: int = Field(7, ge=0, le=10)
    quick_verify_fallback_score: int = Field(5, ge=0, le=10)
    temperature: float = 0.1
    max_concurrency: int = Field(1, ge=1)


class ReflectionSettings(BaseModel):
    """Points per reflection dimension and the acceptance bar."""

    model_config = ConfigDict(frozen=True)

    completeness: int = 3
    quantity: int = 2
    relevance: int = 3
    profile_alignment: int = 2
    min_quality_score: int = Field(6, ge=0, le=10)
    max_retries: int = Field(2, ge=0)
    top_n: int = Field(5, ge=1)


class CacheSettings(BaseModel):
    """Result cache settings."""

    redis_url: str = "redis://localhost:6379"
    enabled: bool = True
    ttl_seconds: int = 3600
    tags: Tuple[str, ...] = ("pathway", "search")
    version: str = "v1"


class PipelineConfig(BaseModel):
    """Top-level configuration injected into the orchestrator."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = Field(3, ge=1)
    max_keywords: int = Field(5, ge=1)
    data_dir: str = "data/jsonl"
    llm: LLMSettings = Field(default_factory=LLMSettings)
    verifier: VerifierSettings = Field(default_factory=VerifierSettings)
    reflection: ReflectionSettings = Field(default_factory=ReflectionSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    related_terms: Dict[str, List[str]] = Field(default_factory=lambda: dict(RELATED_TERMS))
    categories: Dict[str, List[str]] = Field(default_factory=lambda: dict(CATEGORY_TERMS))
    career_cip_codes: Dict[str, List[str]] = Field(default_factory=lambda: dict(CAREER_CIP_CODES))
    search_stop_words: FrozenSet[str] = SEARCH_STOP_WORDS
    reflection_stop_words: FrozenSet[str] = REFLECTION_STOP_WORDS

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, value: int) -> int:
        if value > 10:
            raise ValueError("max_attempts must be at most 10")
        return value

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Build a configuration from environment variables."""
        if ENV_PATH.exists():
            load_dotenv(ENV_PATH)
            logger.info("env_loaded", env_path=str(ENV_PATH))

        llm = LLMSettings(
            api_base=os.getenv("LLM_API_BASE", "https://api.openai.com/v1"),
            api_key=os.getenv("LLM_API_KEY") or None,
            model=os.getenv("LLM_MODEL", "gpt-4o-mini"),
            timeout_seconds=float(os.getenv("LLM_TIMEOUT_SECONDS", "20") or "20"),
            cost_per_1k_tokens=float(os.getenv("LLM_COST_PER_1K_TOKENS", "0.0") or "0.0"),
        )
        cache = CacheSettings(
            redis_url=os.getenv("REDIS_URL", "redis://localhost:6379"),
            enabled=os.getenv("CACHE_ENABLED", "true").lower() == "true",
        )
        return cls(
            max_attempts=int(os.getenv("PATHWAYS_MAX_ATTEMPTS", "3") or "3"),
            data_dir=os.getenv("PATHWAYS_DATA_DIR", "data/jsonl"),
            llm=llm,
            cache=cache,
        )
