"""
Shared fixtures: a small JSONL index on disk and a scripted oracle stub.

Nothing here performs network calls; the stub answers per agent name.
"""
import json
import re
from pathlib import Path
from typing import Any, Dict, List

import pytest

from pathways.core.config import CacheSettings, PipelineConfig
from pathways.services.ai.llm_client import LLMUnavailableError
from pathways.services.index.reader import (
    CAREERS_FILE,
    CIP_EXPANSION_FILE,
    COLLEGE_CAMPUSES_FILE,
    COLLEGE_PROGRAMS_FILE,
    HS_CIP_FILE,
    HS_COURSES_BY_GRADE_FILE,
    HS_COURSES_BY_LEVEL_FILE,
    HS_SCHOOLS_FILE,
    LocalSearchIndex,
)

PROGRAM_LINE_RE = re.compile(r"^(\d+)\. (.+)$", re.MULTILINE)

INDEX_TABLES: Dict[str, List[Dict[str, Any]]] = {
    HS_CIP_FILE: [
        {"PROGRAM_OF_STUDY": "Health Services", "CIP_2DIGIT": ["51"]},
        {"PROGRAM_OF_STUDY": "Nursing Services", "CIP_2DIGIT": ["51"]},
        {"PROGRAM_OF_STUDY": "Cybersecurity", "CIP_2DIGIT": ["11"]},
        {"PROGRAM_OF_STUDY": "Culinary Arts", "CIP_2DIGIT": ["12"]},
    ],
    HS_SCHOOLS_FILE: [
        {"PROGRAM_OF_STUDY": "Health Services", "HIGH_SCHOOL": ["Kaiser High School", "Waipahu High School"]},
        {"PROGRAM_OF_STUDY": "Nursing Services", "HIGH_SCHOOL": ["Waipahu High School"]},
        {"PROGRAM_OF_STUDY": "Cybersecurity", "HIGH_SCHOOL": ["Kapolei High School", "Waipahu High School"]},
        {"PROGRAM_OF_STUDY": "Culinary Arts", "HIGH_SCHOOL": "Kaimuki High School"},
    ],
    HS_COURSES_BY_GRADE_FILE: [
        {
            "PROGRAM_OF_STUDY": "Cybersecurity",
            "9TH_GRADE_COURSES": ["Computer Science Principles"],
            "10TH_GRADE_COURSES": ["Cyber Foundations"],
        },
    ],
    HS_COURSES_BY_LEVEL_FILE: [
        {
            "PROGRAM_OF_STUDY": "Cybersecurity",
            "LEVEL_1_POS_COURSES": ["Cyber Foundations"],
            "RECOMMENDED_COURSES": ["Algebra II"],
        },
    ],
    COLLEGE_PROGRAMS_FILE: [
        {
            "CIP_CODE": "51.3801",
            "PROGRAM_NAME": [
                "Nursing (Bachelor of Science)",
                "Nursing (Associate in Science)",
                "Nursing (Master of Science)",
            ],
        },
        {"CIP_CODE": "51.3901", "PROGRAM_NAME": "Practical Nursing (Certificate of Achievement)"},
        {
            "CIP_CODE": "11.1003",
            "PROGRAM_NAME": [
                "Cybersecurity (Bachelor of Applied Science)",
                "Cybersecurity (Certificate of Competence)",
            ],
        },
        {"CIP_CODE": "11.0701", "PROGRAM_NAME": "Computer Science (Bachelor of Science)"},
        {"CIP_CODE": "12.0503", "PROGRAM_NAME": "Culinary Arts (Associate in Science)"},
    ],
    COLLEGE_CAMPUSES_FILE: [
        {"CIP_CODE": "51.3801", "CAMPUS": ["UH Manoa", "UH Hilo", "Kapiolani CC"]},
        {"CIP_CODE": "51.3901", "CAMPUS": ["Kapiolani CC"]},
        {"CIP_CODE": "11.1003", "CAMPUS": ["UH West Oahu", "Honolulu CC"]},
        {"CIP_CODE": "11.0701", "CAMPUS": ["UH Manoa"]},
        {"CIP_CODE": "12.0503", "CAMPUS": "Kapiolani CC"},
    ],
    CIP_EXPANSION_FILE: [
        {"CIP_2DIGIT": "51", "CIP_CODE": ["51.3801", "51.3901"], "CATEGORY_NAME": "Health Professions"},
        {"CIP_2DIGIT": "11", "CIP_CODE": ["11.0701", "11.1003"], "CATEGORY_NAME": "Computer and Information Sciences"},
        {"CIP_2DIGIT": "12", "CIP_CODE": ["12.0503"], "CATEGORY_NAME": "Culinary Services"},
    ],
    CAREERS_FILE: [
        {"CIP_CODE": "51.3801", "SOC_CODE": ["29-1141", "29-1151"]},
        {"CIP_CODE": "51.3901", "SOC_CODE": ["29-2061"]},
        {"CIP_CODE": "11.1003", "SOC_CODE": ["15-1212"]},
        {"CIP_CODE": "11.0701", "SOC_CODE": ["15-1252"]},
        {"CIP_CODE": "12.0503", "SOC_CODE": ["35-1011"]},
    ],
}

# Lines the loader must skip
MALFORMED_CAREER_LINES = ["{not json", "[1, 2]", ""]


def write_index(data_dir: Path) -> Path:
    data_dir.mkdir(parents=True, exist_ok=True)
    for filename, records in INDEX_TABLES.items():
        lines = [json.dumps(record) for record in records]
        if filename == CAREERS_FILE:
            lines.extend(MALFORMED_CAREER_LINES)
        (data_dir / filename).write_text("\n".join(lines) + "\n", encoding="utf-8")
    return data_dir


class StubLLMClient:
    """
    Scripted stand-in for LLMClient.

    responses maps an agent name to a string, an exception to raise, or a
    callable taking the user prompt. Without an entry the classifier answers
    "search", the verifier scores every listed program (scores by name,
    default_score otherwise) and any other agent raises LLMUnavailableError,
    which sends it down its deterministic fallback.
    """

    def __init__(self, default_score: int = 8):
        self.responses: Dict[str, Any] = {}
        self.scores: Dict[str, int] = {}
        self.default_score = default_score
        self.calls: List[Dict[str, Any]] = []

    def prompts_for(self, agent: str) -> List[str]:
        return [call["prompt"] for call in self.calls if call["agent"] == agent]

    def _answer(self, agent: str, prompt: str) -> str:
        response = self.responses.get(agent)
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(prompt)
        if response is not None:
            return response
        if agent == "classifier":
            return '{"needsTools": true, "queryType": "search", "reasoning": "test"}'
        if agent == "verifier":
            entries = [
                {"index": int(index), "score": self.scores.get(name, self.default_score), "reasoning": "stub"}
                for index, name in PROGRAM_LINE_RE.findall(prompt)
            ]
            return json.dumps(entries)
        raise LLMUnavailableError(f"no scripted response for {agent}")

    async def complete(
        self,
        agent: str,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.0,
        max_tokens: int = 512,
        json_mode: bool = False,
    ) -> str:
        self.calls.append({"agent": agent, "prompt": user_prompt, "temperature": temperature})
        return self._answer(agent, user_prompt)

    async def chat(self, agent: str, messages, max_tokens: int = 512, temperature: float = 0.0, response_format=None):
        prompt = messages[-1]["content"] if messages else ""
        self.calls.append({"agent": agent, "prompt": prompt, "messages": messages, "temperature": temperature})
        return {
            "choices": [{"message": {"content": self._answer(agent, prompt)}}],
            "usage": {"prompt_tokens": 10, "completion_tokens": 20},
        }


@pytest.fixture
def index_dir(tmp_path):
    return write_index(tmp_path / "jsonl")


@pytest.fixture
def index(index_dir):
    return LocalSearchIndex(index_dir)


@pytest.fixture
def config(index_dir):
    return PipelineConfig(data_dir=str(index_dir), cache=CacheSettings(enabled=False))


@pytest.fixture
def llm():
    return StubLLMClient()
