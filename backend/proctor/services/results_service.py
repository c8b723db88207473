from typing import Any, Dict, List

import pandas as pd

from ..models.exam_session_model import ExamSession

EXPORT_COLUMNS = ["Rank", "Name", "Email", "Roll No", "Score", "Total", "Status", "Reason", "Violations", "Submitted At"]


def ranked_rows(sessions: List[ExamSession]) -> List[Dict[str, Any]]:
    """Leaderboard rows; sessions must already be ordered by score desc, submitted_at asc."""
    rows = []
    for rank, s in enumerate(sessions, start=1):
        rows.append({
            "rank": rank,
            "session_id": s.id,
            "name": s.name,
            "email": s.email,
            "roll_no": s.roll_no,
            "score": s.score,
            "total": s.total_questions,
            "state": s.state,
            "reason": s.finalize_reason,
            "violation_count": s.violation_count,
            "submitted_at": s.submitted_at,
        })
    return rows


async def list_finalized_ranked(lifecycle, claim) -> List[Dict[str, Any]]:
    lifecycle.require_admin(claim)
    return ranked_rows(await lifecycle.store.list_finalized_ranked())


def results_to_csv(rows: List[Dict[str, Any]]) -> str:
    df = pd.DataFrame(
        [
            [
                r["rank"],
                r["name"],
                r["email"],
                r["roll_no"],
                r["score"],
                r["total"],
                r["state"].value,
                r["reason"].value if r["reason"] else "",
                r["violation_count"],
                r["submitted_at"].isoformat(sep=" ", timespec="seconds") if r["submitted_at"] else "N/A",
            ]
            for r in rows
        ],
        columns=EXPORT_COLUMNS,
    )
    return df.to_csv(index=False)
