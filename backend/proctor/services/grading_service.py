from dataclasses import dataclass, field
from typing import Dict, Any, List, Mapping


@dataclass(frozen=True)
class GradeResult:
    score: int
    total: int
    question_scores: Dict[str, int] = field(default_factory=dict)


def _is_correct(question: Mapping[str, Any], answer: Any) -> bool:
    key = question.get("answer_key")
    if answer is None or key is None:
        return False
    if question.get("type") == "choice":
        # bool is an int subclass; True must not match index 1
        if isinstance(answer, bool) or not isinstance(answer, int):
            return False
        return answer == key
    return str(answer).strip().casefold() == str(key).strip().casefold()


def grade(snapshot: List[Mapping[str, Any]], answers: Mapping[str, Any]) -> GradeResult:
    """
    Grade an answer set against the frozen question snapshot.
    - snapshot: ordered snapshot items (question_id, type, answer_key, ...)
    - answers: mapping question_id (str) -> submitted value

    Choice questions compare the zero-based index exactly, text questions compare
    trimmed case-insensitive strings. Unanswered questions count as wrong.
    """
    question_scores: Dict[str, int] = {}
    score = 0

    for q in snapshot:
        qid = str(q["question_id"])
        point = 1 if _is_correct(q, answers.get(qid)) else 0
        question_scores[qid] = point
        score += point

    return GradeResult(score=score, total=len(snapshot), question_scores=question_scores)
