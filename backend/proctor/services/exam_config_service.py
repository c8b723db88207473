import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..exceptions import ExamWindowClosed
from ..models.system_config_model import SystemConfig, ExamAllowlist
from .timer_service import to_naive_utc

logger = logging.getLogger(__name__)

EXAM_WINDOW_KEY = "exam_window"


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class ExamConfigStore:
    """Exam window, candidate allowlist and one-shot flags, kept apart from the session table."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def get_value(self, key: str) -> Any:
        async with self._session_maker() as session:
            row = await session.get(SystemConfig, key)
            return row.value if row is not None else None

    async def set_value(self, key: str, value: Any) -> None:
        async with self._session_maker() as session:
            row = await session.get(SystemConfig, key)
            if row is None:
                session.add(SystemConfig(key=key, value=value))
            else:
                row.value = value
            await session.commit()

    async def claim_flag(self, key: str) -> bool:
        """Insert-once flag. True only for the single caller whose insert succeeds."""
        async with self._session_maker() as session:
            session.add(SystemConfig(key=key, value=True))
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                return False
        return True

    # ----- exam window -----

    async def get_window(self) -> Dict[str, Optional[datetime]]:
        raw = await self.get_value(EXAM_WINDOW_KEY) or {}
        return {"start_time": _parse_dt(raw.get("start_time")), "end_time": _parse_dt(raw.get("end_time"))}

    async def set_window(self, start_time: Optional[datetime], end_time: Optional[datetime]) -> None:
        current = await self.get_window()
        start_time = to_naive_utc(start_time) or current["start_time"]
        end_time = to_naive_utc(end_time) or current["end_time"]
        await self.set_value(
            EXAM_WINDOW_KEY,
            {
                "start_time": start_time.isoformat() if start_time else None,
                "end_time": end_time.isoformat() if end_time else None,
            },
        )
        logger.info("Exam window set to %s - %s", start_time, end_time)

    async def ensure_window_open(self, now: datetime) -> None:
        window = await self.get_window()
        if window["start_time"] and now < window["start_time"]:
            raise ExamWindowClosed("Exam has not started yet")
        if window["end_time"] and now > window["end_time"]:
            raise ExamWindowClosed("Exam has ended")

    # ----- allowlist -----

    async def add_to_allowlist(self, email: str, name: str, roll_no: str, can_take_exam: bool = True) -> ExamAllowlist:
        async with self._session_maker() as session:
            entry = ExamAllowlist(email=email.strip().lower(), name=name.strip(), roll_no=roll_no.strip(), can_take_exam=can_take_exam)
            session.add(entry)
            await session.commit()
            await session.refresh(entry)
            return entry

    async def list_allowlist(self, only_eligible: bool = False) -> List[ExamAllowlist]:
        stmt = select(ExamAllowlist).order_by(ExamAllowlist.created_at.desc())
        if only_eligible:
            stmt = stmt.where(ExamAllowlist.can_take_exam.is_(True))
        async with self._session_maker() as session:
            res = await session.execute(stmt)
            return list(res.scalars().all())

    async def is_allowed(self, email: str, roll_no: str) -> bool:
        async with self._session_maker() as session:
            res = await session.execute(
                select(ExamAllowlist).where(
                    or_(ExamAllowlist.email == email, ExamAllowlist.roll_no == roll_no),
                    ExamAllowlist.can_take_exam.is_(True),
                )
            )
            return res.first() is not None
