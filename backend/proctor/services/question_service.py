import logging
import random
import re
import uuid
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy import select, func, delete
from sqlalchemy.ext.asyncio import async_sessionmaker

from ..exceptions import QuestionValidationError, AmbiguousAnswerKey
from ..models.question_model import ExamQuestion

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard")
TEXT_TYPES = ("text", "input", "free_text", "free-text")

_PROMPT_KEYS = ("prompt", "question", "title")
_CHOICE_KEYS = ("choices", "options")
_KEY_KEYS = ("answer_key", "correctAnswer", "correct_answer", "correct_answers", "answer")

# "B", "b)", "C.", "Option D"
_LETTER_RE = re.compile(r"^\s*(?:option\s+)?([a-z])\s*[\).:]?\s*$", re.IGNORECASE)


def _first(raw: Mapping[str, Any], keys: Sequence[str]) -> Any:
    for k in keys:
        if k in raw and raw[k] is not None:
            return raw[k]
    return None


def _match_choice_text(needle: str, choices: List[str]) -> int:
    """Best-effort recovery of a key given as literal text. Lossy: only unique matches are accepted."""
    folded = needle.strip().casefold()
    if not folded:
        raise QuestionValidationError("Answer key is empty")

    exact = [i for i, c in enumerate(choices) if c.casefold() == folded]
    if len(exact) == 1:
        return exact[0]
    if len(exact) > 1:
        raise AmbiguousAnswerKey(f"Answer key {needle!r} matches choices {exact}")

    partial = [i for i, c in enumerate(choices) if folded in c.casefold() or c.casefold() in folded]
    if len(partial) == 1:
        return partial[0]
    if len(partial) > 1:
        raise AmbiguousAnswerKey(f"Answer key {needle!r} matches choices {partial}")
    raise QuestionValidationError(f"Answer key {needle!r} does not match any choice")


def _resolve_choice_key(key: Any, choices: List[str], index_base: int = 0) -> int:
    n = len(choices)
    if isinstance(key, (list, tuple)):
        if len(key) != 1:
            raise QuestionValidationError("Choice question needs exactly one answer key")
        key = key[0]
    if key is None or isinstance(key, bool):
        raise QuestionValidationError("Choice question is missing its answer key")
    # spreadsheets hand integers back as floats
    if isinstance(key, float) and key.is_integer():
        key = int(key)

    if isinstance(key, int):
        idx = key - index_base
        if 0 <= idx < n:
            return idx
        if index_base == 0 and key == n:
            # only 1-based input can name the slot one past the end
            return n - 1
        return _match_choice_text(str(key), choices)

    if isinstance(key, str):
        text = key.strip()
        exact = [i for i, c in enumerate(choices) if c.casefold() == text.casefold()]
        if len(exact) == 1:
            return exact[0]
        if text.isdigit():
            return _resolve_choice_key(int(text), choices, index_base)
        m = _LETTER_RE.match(text)
        if m:
            idx = ord(m.group(1).lower()) - ord("a")
            if idx < n:
                return idx
        return _match_choice_text(text, choices)

    raise QuestionValidationError(f"Unsupported answer key type: {type(key).__name__}")


def normalize_question(raw: Mapping[str, Any], index_base: int = 0) -> Dict[str, Any]:
    """
    Validate and normalize a raw question item from any source (admin form, spreadsheet, LLM).

    A question with no choices becomes a free-text question. A choice question's key is
    normalized to a zero-based index; 1-based and letter keys are recognised, anything else
    is matched against the choice text. Raises QuestionValidationError (or AmbiguousAnswerKey)
    when the key cannot be recovered with confidence.
    """
    prompt = _first(raw, _PROMPT_KEYS)
    if not isinstance(prompt, str) or not prompt.strip():
        raise QuestionValidationError("Question prompt is required")

    raw_choices = _first(raw, _CHOICE_KEYS) or []
    if not isinstance(raw_choices, (list, tuple)):
        raise QuestionValidationError("Choices must be a list")
    choices = [str(c).strip() for c in raw_choices if c is not None and str(c).strip()]

    declared = str(raw.get("type") or "").strip().lower()
    key = _first(raw, _KEY_KEYS)

    if declared in TEXT_TYPES or not choices:
        if isinstance(key, (list, tuple)):
            key = key[0] if key else None
        if key is None or not str(key).strip():
            raise QuestionValidationError("Free-text question is missing its answer key")
        q_type, q_choices, answer_key = "text", None, str(key).strip()
    else:
        q_type, q_choices = "choice", choices
        answer_key = _resolve_choice_key(key, choices, index_base)

    difficulty = str(raw.get("difficulty") or "medium").strip().lower()
    if difficulty not in DIFFICULTIES:
        difficulty = "medium"

    return {
        "prompt": prompt.strip(),
        "type": q_type,
        "choices": q_choices,
        "answer_key": answer_key,
        "difficulty": difficulty,
        "category": str(raw.get("category") or "aptitude").strip(),
    }


def sample(questions: Iterable[Any], desired_count: int, rng: Optional[random.Random] = None) -> List[Any]:
    """Pick up to desired_count active questions in random order. Fewer available means all of them."""
    rng = rng or random.Random()
    active = [q for q in questions if getattr(q, "is_active", True)]
    if desired_count >= len(active):
        picked = list(active)
        rng.shuffle(picked)
        return picked
    return rng.sample(active, max(desired_count, 0))


def sample_mix(questions: Iterable[Any], mix: Mapping[str, int], rng: Optional[random.Random] = None) -> List[Any]:
    """Sample each difficulty bucket independently, then shuffle the union."""
    rng = rng or random.Random()
    pool = list(questions)
    picked: List[Any] = []
    for difficulty, count in mix.items():
        bucket = [q for q in pool if getattr(q, "difficulty", "medium") == difficulty]
        picked.extend(sample(bucket, count, rng))
    rng.shuffle(picked)
    return picked


def to_snapshot_item(q: ExamQuestion) -> Dict[str, Any]:
    return {
        "question_id": str(q.id),
        "prompt": q.prompt,
        "type": q.type,
        "choices": list(q.choices) if q.choices is not None else None,
        "answer_key": q.answer_key,
    }


def candidate_view(snapshot: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
    # remove answer_key to prevent leaking
    return [
        {
            "question_id": item["question_id"],
            "prompt": item["prompt"],
            "type": item["type"],
            "choices": item.get("choices"),
        }
        for item in snapshot
    ]


class QuestionBank:
    """Persistence and sampling for exam questions. Sampling is a plain read, no locking."""

    def __init__(self, session_maker: async_sessionmaker):
        self._session_maker = session_maker

    async def add_question(self, raw: Mapping[str, Any], source: str = "manual", index_base: int = 0) -> ExamQuestion:
        data = normalize_question(raw, index_base=index_base)
        async with self._session_maker() as session:
            question = ExamQuestion(source=source, is_active=bool(raw.get("is_active", True)), **data)
            session.add(question)
            await session.commit()
            await session.refresh(question)
            return question

    async def add_many(
        self, raws: Iterable[Mapping[str, Any]], source: str = "manual", index_base: int = 0
    ) -> Tuple[List[ExamQuestion], List[Dict[str, Any]]]:
        """Normalize and store a batch. Invalid items and duplicate prompts are skipped and reported."""
        saved: List[ExamQuestion] = []
        skipped: List[Dict[str, Any]] = []

        async with self._session_maker() as session:
            res = await session.execute(select(ExamQuestion.prompt))
            known = {p.casefold() for p in res.scalars().all()}

            for idx, raw in enumerate(raws):
                try:
                    data = normalize_question(raw, index_base=index_base)
                except QuestionValidationError as e:
                    logger.warning("Skipping question #%d from %s source: %s", idx, source, e.detail)
                    skipped.append({"index": idx, "reason": e.detail})
                    continue

                if data["prompt"].casefold() in known:
                    logger.info("Question #%d already exists in bank, skipped", idx)
                    skipped.append({"index": idx, "reason": "duplicate"})
                    continue

                known.add(data["prompt"].casefold())
                question = ExamQuestion(source=source, is_active=True, **data)
                session.add(question)
                saved.append(question)

            await session.commit()
            for q in saved:
                await session.refresh(q)

        return saved, skipped

    async def list_questions(
        self,
        search: str = "",
        difficulty: str = "",
        active_only: bool = False,
        page: int = 1,
        per_page: int = 20,
    ) -> Tuple[List[ExamQuestion], int]:
        stmt = select(ExamQuestion)
        count_stmt = select(func.count()).select_from(ExamQuestion)

        if search:
            cond = func.lower(ExamQuestion.prompt).like(f"%{search.lower().strip()}%")
            stmt, count_stmt = stmt.where(cond), count_stmt.where(cond)
        if difficulty:
            cond = ExamQuestion.difficulty == difficulty.lower().strip()
            stmt, count_stmt = stmt.where(cond), count_stmt.where(cond)
        if active_only:
            stmt, count_stmt = stmt.where(ExamQuestion.is_active.is_(True)), count_stmt.where(ExamQuestion.is_active.is_(True))

        page = max(page, 1)
        per_page = per_page if per_page >= 1 else 20
        stmt = stmt.order_by(ExamQuestion.created_at.desc()).offset((page - 1) * per_page).limit(per_page)

        async with self._session_maker() as session:
            total = (await session.execute(count_stmt)).scalar_one() or 0
            items = (await session.execute(stmt)).scalars().all()
        return list(items), int(total)

    async def set_active(self, question_id: uuid.UUID, active: bool) -> Optional[ExamQuestion]:
        async with self._session_maker() as session:
            question = await session.get(ExamQuestion, question_id)
            if question is None:
                return None
            question.is_active = active
            await session.commit()
            await session.refresh(question)
            return question

    async def update_question(
        self, question_id: uuid.UUID, raw: Mapping[str, Any], index_base: int = 0
    ) -> Optional[ExamQuestion]:
        """Replace a question's content. Snapshots already drawn keep the old copy."""
        data = normalize_question(raw, index_base=index_base)
        async with self._session_maker() as session:
            question = await session.get(ExamQuestion, question_id)
            if question is None:
                return None
            for column, value in data.items():
                setattr(question, column, value)
            if "is_active" in raw:
                question.is_active = bool(raw["is_active"])
            await session.commit()
            await session.refresh(question)
            logger.info("Question %s updated", question.id)
            return question

    async def delete(self, question_id: uuid.UUID) -> bool:
        # sessions keep their own snapshot, so deleting a bank entry never affects graded attempts
        async with self._session_maker() as session:
            res = await session.execute(delete(ExamQuestion).where(ExamQuestion.id == question_id))
            await session.commit()
            return res.rowcount > 0

    async def active_questions(self) -> List[ExamQuestion]:
        async with self._session_maker() as session:
            res = await session.execute(select(ExamQuestion).where(ExamQuestion.is_active.is_(True)))
            return list(res.scalars().all())

    async def draw_snapshot(
        self, desired_count: int, mix: Optional[Mapping[str, int]] = None, rng: Optional[random.Random] = None
    ) -> List[Dict[str, Any]]:
        questions = await self.active_questions()
        picked = sample_mix(questions, mix, rng) if mix else sample(questions, desired_count, rng)
        return [to_snapshot_item(q) for q in picked]
