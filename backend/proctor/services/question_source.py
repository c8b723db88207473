import json
import logging
from typing import Any, Dict, List, Protocol, Sequence, Union

from ..exceptions import QuestionValidationError

logger = logging.getLogger(__name__)


class QuestionSource(Protocol):
    """
    Provider of raw question items (LLM-backed or otherwise). Items are normalized by the bank.
    A source may return the reply text as-is; it is then read with parse_generated_payload().
    """

    async def generate(self, topic: str, count: int) -> Union[List[Dict[str, Any]], str]:
        ...


def parse_generated_payload(content: str) -> List[Dict[str, Any]]:
    """
    Extract the list of question items from a generator reply.

    Accepts a bare JSON array, or an object wrapping it under "questions" or "data",
    optionally inside a ```json fenced block.
    """
    text = (content or "").replace("```json", "").replace("```", "").strip()
    if not text:
        return []
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise QuestionValidationError(f"Generator returned invalid JSON: {e.msg}")

    if isinstance(parsed, dict):
        parsed = parsed.get("questions") or parsed.get("data") or []
    if not isinstance(parsed, list):
        raise QuestionValidationError("Generator payload is not a list of questions")

    items = [item for item in parsed if isinstance(item, dict)]
    if len(items) != len(parsed):
        logger.warning("Dropped %d non-object items from generator payload", len(parsed) - len(items))
    return items


class StaticQuestionSource:
    """Serves a fixed list of raw items. Used when no generator service is configured."""

    def __init__(self, items: Sequence[Dict[str, Any]] = ()):
        self._items = list(items)

    async def generate(self, topic: str, count: int) -> List[Dict[str, Any]]:
        return [dict(item) for item in self._items[:count]]
