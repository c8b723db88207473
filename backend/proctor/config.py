from dataclasses import dataclass, field
from typing import Dict
from dotenv import load_dotenv
import os

load_dotenv()

SECRET = os.getenv("SECRET", "change-me")
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./proctor.db")
SCHEMA_SEARCH_PATH = os.getenv("SCHEMA_SEARCH_PATH")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("1", "true", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

EXAM_TIME_LIMIT_MINUTES = int(os.getenv("EXAM_TIME_LIMIT_MINUTES", "30"))
EXAM_QUESTION_COUNT = int(os.getenv("EXAM_QUESTION_COUNT", "20"))
# e.g. "easy:5,medium:8,hard:7"; empty means plain sampling of EXAM_QUESTION_COUNT
EXAM_QUESTION_MIX = os.getenv("EXAM_QUESTION_MIX", "")
MAX_VIOLATIONS = int(os.getenv("MAX_VIOLATIONS", "3"))
REQUIRE_ALLOWLIST = os.getenv("REQUIRE_ALLOWLIST", "false").lower() in ("1", "true", "yes")
CAS_MAX_RETRIES = int(os.getenv("CAS_MAX_RETRIES", "8"))

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")


def parse_question_mix(raw: str) -> Dict[str, int]:
    """Parse "easy:5,medium:8" into {"easy": 5, "medium": 8}. Blank input gives {}."""
    mix: Dict[str, int] = {}
    for part in (raw or "").split(","):
        part = part.strip()
        if not part:
            continue
        difficulty, _, count = part.partition(":")
        if not count.strip().isdigit():
            raise ValueError(f"invalid EXAM_QUESTION_MIX entry: {part!r}")
        mix[difficulty.strip().lower()] = int(count)
    return mix


@dataclass(frozen=True)
class ExamSettings:
    time_limit_minutes: int = 30
    question_count: int = 20
    question_mix: Dict[str, int] = field(default_factory=dict)
    max_violations: int = 3
    require_allowlist: bool = False
    cas_max_retries: int = 8


def load_exam_settings() -> ExamSettings:
    return ExamSettings(
        time_limit_minutes=EXAM_TIME_LIMIT_MINUTES,
        question_count=EXAM_QUESTION_COUNT,
        question_mix=parse_question_mix(EXAM_QUESTION_MIX),
        max_violations=MAX_VIOLATIONS,
        require_allowlist=REQUIRE_ALLOWLIST,
        cas_max_retries=CAS_MAX_RETRIES,
    )
