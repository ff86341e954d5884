"""
Read-only JSONL reference index.

Each table is a JSON Lines file under the data directory. A table is read the
first time it is asked for and kept in memory for the life of the process;
after loading, nothing mutates it, so one LocalSearchIndex can be shared by
concurrent requests.

Tables:
- highschool_pos_to_cip2digit_mapping.jsonl: PROGRAM_OF_STUDY, CIP_2DIGIT[]
- pos_to_highschool_mapping.jsonl: PROGRAM_OF_STUDY, HIGH_SCHOOL[]
- pos_to_courses_by_grade.jsonl: PROGRAM_OF_STUDY, 9TH..12TH_GRADE_COURSES
- pos_to_courses_by_level.jsonl: PROGRAM_OF_STUDY, LEVEL_1..4_POS_COURSES, RECOMMENDED_COURSES
- cip_to_program_mapping.jsonl: CIP_CODE, PROGRAM_NAME (string or list)
- cip_to_campus_mapping.jsonl: CIP_CODE, CAMPUS (string or list)
- cip2digit_to_cip_mapping.jsonl: CIP_2DIGIT, CIP_CODE[], CATEGORY_NAME
- cip_to_soc_mapping.jsonl: CIP_CODE, SOC_CODE[]
"""
import json
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Set, Union

from pathways.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent.parent.parent.parent / "data" / "jsonl"

HS_CIP_FILE = "highschool_pos_to_cip2digit_mapping.jsonl"
HS_SCHOOLS_FILE = "pos_to_highschool_mapping.jsonl"
HS_COURSES_BY_GRADE_FILE = "pos_to_courses_by_grade.jsonl"
HS_COURSES_BY_LEVEL_FILE = "pos_to_courses_by_level.jsonl"
COLLEGE_PROGRAMS_FILE = "cip_to_program_mapping.jsonl"
COLLEGE_CAMPUSES_FILE = "cip_to_campus_mapping.jsonl"
CIP_EXPANSION_FILE = "cip2digit_to_cip_mapping.jsonl"
CAREERS_FILE = "cip_to_soc_mapping.jsonl"

INDEX_FILES = (
    HS_CIP_FILE,
    HS_SCHOOLS_FILE,
    HS_COURSES_BY_GRADE_FILE,
    HS_COURSES_BY_LEVEL_FILE,
    COLLEGE_PROGRAMS_FILE,
    COLLEGE_CAMPUSES_FILE,
    CIP_EXPANSION_FILE,
    CAREERS_FILE,
)

Record = Dict[str, Any]


def as_list(value: Any) -> List[str]:
    """PROGRAM_NAME / CAMPUS columns hold either a string or a list."""
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) for v in value]
    return [str(value)]


class JsonlStore:
    """Lazy, cached loader for the JSONL tables."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.data_dir = Path(data_dir) if data_dir else DEFAULT_DATA_DIR
        self._tables: Dict[str, List[Record]] = {}
        self._lock = Lock()

    def load(self, filename: str) -> List[Record]:
        """
        Return every record of a table.

        A missing file yields an empty table; lines that are not JSON objects
        are skipped.
        """
        cached = self._tables.get(filename)
        if cached is not None:
            return cached

        with self._lock:
            if filename not in self._tables:
                self._tables[filename] = self._read(filename)
            return self._tables[filename]

    def _read(self, filename: str) -> List[Record]:
        path = self.data_dir / filename
        if not path.exists():
            logger.warning("index_file_not_found", path=str(path))
            return []

        records: List[Record] = []
        skipped = 0
        with open(path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError:
                    skipped += 1
                    continue
                if isinstance(record, dict):
                    records.append(record)
                else:
                    skipped += 1

        logger.info("index_file_loaded", file=filename, records=len(records), skipped_lines=skipped)
        return records

    def stats(self) -> Dict[str, Optional[int]]:
        """Row count per known table, None for tables whose file is absent."""
        return {
            name: (len(self.load(name)) if (self.data_dir / name).exists() else None)
            for name in INDEX_FILES
        }


class HighSchoolIndex:
    """High school programs of study."""

    def __init__(self, store: JsonlStore):
        self.store = store

    def get_all_programs(self) -> List[Record]:
        return self.store.load(HS_CIP_FILE)

    def get_program_by_name(self, name: str) -> Optional[Record]:
        wanted = name.lower()
        for record in self.get_all_programs():
            if str(record.get("PROGRAM_OF_STUDY", "")).lower() == wanted:
                return record
        return None

    def get_programs_by_cip2digit(self, cip_2digit_codes: Iterable[str]) -> List[Record]:
        wanted = set(cip_2digit_codes)
        return [
            record for record in self.get_all_programs()
            if wanted.intersection(record.get("CIP_2DIGIT") or [])
        ]

    def get_schools_for_program(self, name: str) -> List[str]:
        for record in self.store.load(HS_SCHOOLS_FILE):
            if record.get("PROGRAM_OF_STUDY") == name:
                return as_list(record.get("HIGH_SCHOOL"))
        return []

    def get_courses_by_grade(self, name: str) -> Optional[Record]:
        return self._find(HS_COURSES_BY_GRADE_FILE, name)

    def get_courses_by_level(self, name: str) -> Optional[Record]:
        return self._find(HS_COURSES_BY_LEVEL_FILE, name)

    def get_complete_program_info(self, name: str) -> Optional[Record]:
        """Program record joined with its schools and course tables."""
        program = self.get_program_by_name(name)
        if program is None:
            return None
        canonical = program["PROGRAM_OF_STUDY"]
        return {
            "program": program,
            "schools": self.get_schools_for_program(canonical),
            "coursesByGrade": self.get_courses_by_grade(canonical),
            "coursesByLevel": self.get_courses_by_level(canonical),
        }

    def _find(self, filename: str, name: str) -> Optional[Record]:
        for record in self.store.load(filename):
            if record.get("PROGRAM_OF_STUDY") == name:
                return record
        return None


class CollegeIndex:
    """College programs and campuses keyed by 6-digit CIP code."""

    def __init__(self, store: JsonlStore):
        self.store = store

    def get_all_programs(self) -> List[Record]:
        return self.store.load(COLLEGE_PROGRAMS_FILE)

    def get_programs_by_cip(self, cip_codes: Iterable[str]) -> List[Record]:
        wanted = set(cip_codes)
        return [record for record in self.get_all_programs() if record.get("CIP_CODE") in wanted]

    def get_campuses_by_cip(self, cip_code: str) -> List[str]:
        for record in self.store.load(COLLEGE_CAMPUSES_FILE):
            if record.get("CIP_CODE") == cip_code:
                return as_list(record.get("CAMPUS"))
        return []


class CipIndex:
    """Broad (2-digit) to detailed (6-digit) CIP code expansion."""

    def __init__(self, store: JsonlStore):
        self.store = store

    def expand_cip2digits(self, cip_2digit_codes: Iterable[str]) -> Set[str]:
        wanted = set(cip_2digit_codes)
        expanded: Set[str] = set()
        for record in self.store.load(CIP_EXPANSION_FILE):
            if record.get("CIP_2DIGIT") in wanted:
                expanded.update(as_list(record.get("CIP_CODE")))
        return expanded

    def get_cip_categories(self, cip_2digit_codes: Iterable[str]) -> List[str]:
        wanted = set(cip_2digit_codes)
        return [
            str(record["CATEGORY_NAME"])
            for record in self.store.load(CIP_EXPANSION_FILE)
            if record.get("CIP_2DIGIT") in wanted and record.get("CATEGORY_NAME")
        ]


class CareerIndex:
    """CIP code to SOC occupation codes."""

    def __init__(self, store: JsonlStore):
        self.store = store

    def get_soc_codes_by_cip(self, cip_codes: Iterable[str]) -> List[Record]:
        wanted = set(cip_codes)
        return [record for record in self.store.load(CAREERS_FILE) if record.get("CIP_CODE") in wanted]


class LocalSearchIndex:
    """Facade over the four indexes sharing one store."""

    def __init__(self, data_dir: Optional[Union[str, Path]] = None):
        self.store = JsonlStore(data_dir)
        self.high_school = HighSchoolIndex(self.store)
        self.college = CollegeIndex(self.store)
        self.cip = CipIndex(self.store)
        self.careers = CareerIndex(self.store)

    def warm(self) -> None:
        """Load every table eagerly (called once at startup)."""
        for filename in INDEX_FILES:
            self.store.load(filename)
