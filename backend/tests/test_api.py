from types import SimpleNamespace

import httpx
import pytest
import pytest_asyncio

from proctor.app import app
from proctor.dependencies import (
    admin_claim,
    current_admin,
    get_config_store,
    get_exam_service,
    get_mailer,
    get_question_source,
)
from proctor.services.question_source import StaticQuestionSource

CANDIDATE = {"name": "Asha Rao", "email": "asha@example.com", "roll_no": "R1"}


class RecordingMailer:
    def __init__(self):
        self.sent = []

    async def send(self, to, subject, html):
        self.sent.append((to, subject, html))


@pytest_asyncio.fixture
async def api(service, config_store, admin):
    state = SimpleNamespace(claim=admin, mailer=RecordingMailer())
    generated = [
        {"question": "Largest planet?", "options": ["Mars", "Jupiter"], "correctAnswer": "B"},
        {"question": "Chemical symbol for gold?", "correctAnswer": "Au"},
        {"question": "Unrecoverable", "options": ["a", "b"], "correctAnswer": "zzz"},
    ]
    app.dependency_overrides[get_exam_service] = lambda: service
    app.dependency_overrides[get_config_store] = lambda: config_store
    app.dependency_overrides[admin_claim] = lambda: state.claim
    app.dependency_overrides[current_admin] = lambda: SimpleNamespace(email="admin@example.com")
    app.dependency_overrides[get_question_source] = lambda: StaticQuestionSource(generated)
    app.dependency_overrides[get_mailer] = lambda: state.mailer

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        client.state = state
        yield client
    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_candidate_flow(api, keys_for):
    res = await api.post("/api/exam/start", json=CANDIDATE)
    assert res.status_code == 200
    body = res.json()
    session_id = body["session_id"]
    assert body["remaining_seconds"] == 1800
    assert all("answer_key" not in q for q in body["questions"])

    keys = await keys_for(session_id)
    qids = [q["question_id"] for q in body["questions"]]

    res = await api.put(f"/api/exam/sessions/{session_id}/answers", json={"answers": {qids[0]: keys[qids[0]]}})
    assert res.status_code == 200
    res = await api.put(f"/api/exam/sessions/{session_id}/answers/{qids[1]}", json={"value": str(keys[qids[1]])})
    assert res.json()["answers"] == {qids[0]: keys[qids[0]], qids[1]: keys[qids[1]]}

    resumed = (await api.post("/api/exam/start", json=CANDIDATE)).json()
    assert resumed["resumed"] is True and resumed["session_id"] == session_id

    res = await api.post(f"/api/exam/sessions/{session_id}/submit", json={"reason": "manual"})
    assert res.status_code == 200
    result = res.json()
    assert (result["state"], result["reason"], result["score"], result["total"]) == ("submitted", "manual", 2, 3)

    again = (await api.post(f"/api/exam/sessions/{session_id}/submit", json={})).json()
    assert again["already_finalized"] is True
    assert again["submitted_at"] == result["submitted_at"]

    assert (await api.post("/api/exam/start", json=CANDIDATE)).status_code == 409
    res = await api.put(f"/api/exam/sessions/{session_id}/answers", json={"answers": {}})
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_candidate_errors(api, clock):
    assert (await api.get("/api/exam/sessions/not-a-session/status")).status_code == 404
    assert (await api.post("/api/exam/start", json={**CANDIDATE, "email": "nope"})).status_code == 422

    session_id = (await api.post("/api/exam/start", json=CANDIDATE)).json()["session_id"]
    res = await api.put(f"/api/exam/sessions/{session_id}/answers/ghost", json={"value": 1})
    assert res.status_code == 400

    clock.advance(minutes=10)
    res = await api.post(f"/api/exam/sessions/{session_id}/submit", json={"reason": "timeout"})
    assert res.status_code == 409
    res = await api.post(f"/api/exam/sessions/{session_id}/submit", json={"reason": "admin_forced"})
    assert res.status_code == 422


@pytest.mark.asyncio
async def test_violations_close_session(api):
    session_id = (await api.post("/api/exam/start", json=CANDIDATE)).json()["session_id"]

    for expected in (1, 2):
        res = await api.post(f"/api/exam/sessions/{session_id}/violations", json={"kind": "tab-switch"})
        assert res.json() == {"violation_count": expected, "auto_submitted": False}

    res = await api.post(f"/api/admin/exam/sessions/{session_id}/violations", json={"kind": "phone-detected"})
    assert res.json() == {"violation_count": 3, "auto_submitted": True}

    status = (await api.get(f"/api/exam/sessions/{session_id}/status")).json()
    assert (status["state"], status["reason"], status["remaining_seconds"]) == ("auto_submitted", "violation_threshold", 0)

    res = await api.post(f"/api/exam/sessions/{session_id}/violations", json={"kind": "tab-switch"})
    assert res.status_code == 409


@pytest.mark.asyncio
async def test_admin_monitoring(api, clock, proctor_claim):
    first = (await api.post("/api/exam/start", json=CANDIDATE)).json()["session_id"]
    second = (await api.post("/api/exam/start", json={**CANDIDATE, "roll_no": "R2", "email": "b@example.com"})).json()["session_id"]
    clock.advance(minutes=10)

    active = (await api.get("/api/admin/exam/active")).json()
    assert {s["id"] for s in active} == {first, second}

    res = await api.post(f"/api/admin/exam/sessions/{first}/extend", json={"minutes": 5})
    assert res.json()["remaining_seconds"] == 25 * 60
    assert (await api.post(f"/api/admin/exam/sessions/{first}/extend", json={"minutes": 0})).status_code == 400
    assert (await api.post("/api/admin/exam/extend-all", json={"minutes": 2})).json() == {"extended": 2, "minutes": 2}

    res = await api.post(f"/api/admin/exam/sessions/{second}/warnings", json={"message": "Eyes on screen"})
    assert [m["message"] for m in res.json()] == ["Eyes on screen"]
    status = (await api.get(f"/api/exam/sessions/{second}/status")).json()
    assert status["admin_messages"][0]["message"] == "Eyes on screen"
    assert status["granted_extension_minutes"] == 2

    res = await api.post(f"/api/admin/exam/sessions/{second}/force-submit")
    assert (res.json()["state"], res.json()["reason"]) == ("auto_submitted", "admin_forced")

    results = (await api.get("/api/admin/exam/results")).json()
    assert [r["session_id"] for r in results] == [second]
    export = await api.get("/api/admin/exam/results/export")
    assert export.headers["content-type"].startswith("text/csv")
    assert export.text.splitlines()[0].startswith("Rank,Name,Email,Roll No")

    api.state.claim = proctor_claim
    assert (await api.get("/api/admin/exam/active")).status_code == 403
    assert (await api.post(f"/api/admin/exam/sessions/{first}/force-submit")).status_code == 403
    assert (await api.post(f"/api/admin/exam/sessions/{first}/extend", json={"minutes": 5})).status_code == 403


@pytest.mark.asyncio
async def test_window_allowlist_and_reminders(api, clock):
    start = clock().replace(hour=10, minute=2)
    res = await api.post("/api/admin/exam/config", json={"start_time": start.isoformat(), "end_time": start.replace(hour=12).isoformat()})
    assert res.status_code == 200
    assert (await api.get("/api/exam/config")).json()["start_time"].startswith("2026-03-01T10:02")

    res = await api.post("/api/exam/start", json=CANDIDATE)
    assert res.status_code == 400
    assert res.json()["detail"] == "Exam has not started yet"

    bad = {"start_time": start.isoformat(), "end_time": start.replace(hour=9).isoformat()}
    assert (await api.post("/api/admin/exam/config", json=bad)).status_code == 422

    res = await api.post("/api/admin/exam/allowlist", json=CANDIDATE)
    assert res.status_code == 201
    assert (await api.post("/api/admin/exam/allowlist", json=CANDIDATE)).status_code == 409
    assert [e["email"] for e in (await api.get("/api/admin/exam/allowlist")).json()] == ["asha@example.com"]

    assert (await api.post("/api/admin/exam/reminders/sweep")).json() == {"sent": 1}
    assert (await api.post("/api/admin/exam/reminders/sweep")).json() == {"sent": 0}
    assert [to for to, _, _ in api.state.mailer.sent] == ["asha@example.com"]


@pytest.mark.asyncio
async def test_question_bank_routes(api):
    res = await api.post("/api/questionbank/questions", json={
        "prompt": "Capital of France?", "choices": ["London", "Paris"], "answer_key": "B", "difficulty": "easy",
    })
    assert res.status_code == 201
    created = res.json()
    assert (created["type"], created["answer_key"], created["source"]) == ("choice", 1, "manual")

    bad = await api.post("/api/questionbank/questions", json={"prompt": "Capital?", "choices": ["a", "b"], "answer_key": "zzz"})
    assert bad.status_code == 422

    res = await api.post("/api/questionbank/generate", json={"topic": "science", "count": 3})
    assert res.json()["saved"] == 2
    assert res.json()["skipped"][0]["index"] == 2

    res = await api.post("/api/questionbank/confirm-import", json={
        "questions": [{"prompt": "Pick the second", "choices": ["a", "b", "c"], "answer_key": 2}],
        "index_base": 1,
    })
    assert res.json() == {"saved": 1, "skipped": []}

    listing = (await api.get("/api/questionbank/list", params={"search": "capital"})).json()
    assert listing["total"] == 1

    res = await api.post(f"/api/questionbank/{created['id']}/active", json={"is_active": False})
    assert res.json()["is_active"] is False
    assert (await api.delete(f"/api/questionbank/{created['id']}")).status_code == 204
    assert (await api.delete(f"/api/questionbank/{created['id']}")).status_code == 404


class ReplySource:
    """Generator that hands back the model's reply text untouched."""

    async def generate(self, topic, count):
        return '```json\n{"questions": [{"question": "Speed of light unit?", "options": ["m/s", "kg"], "correctAnswer": "A"}]}\n```'


@pytest.mark.asyncio
async def test_question_edit_and_generator_replies(api):
    created = (await api.post("/api/questionbank/questions", json={
        "prompt": "Capital of France?", "choices": ["London", "Paris"], "answer_key": "B",
    })).json()

    res = await api.put(f"/api/questionbank/{created['id']}", json={
        "prompt": "Capital of Germany?", "choices": ["Berlin", "Paris"], "answer_key": "Berlin", "difficulty": "hard",
    })
    assert res.status_code == 200
    assert (res.json()["prompt"], res.json()["answer_key"], res.json()["difficulty"]) == ("Capital of Germany?", 0, "hard")
    missing = "00000000-0000-0000-0000-000000000000"
    assert (await api.put(f"/api/questionbank/{missing}", json={"prompt": "Q", "answer_key": "a"})).status_code == 404
    bad = await api.put(f"/api/questionbank/{created['id']}", json={"prompt": "Q", "choices": ["a", "b"], "answer_key": "zzz"})
    assert bad.status_code == 422

    reply = '```json\n[{"question": "2+2?", "options": ["3", "4"], "correctAnswer": "4"}, {"question": "Broken"}]\n```'
    res = await api.post("/api/questionbank/import-reply", json={"content": reply})
    assert res.json()["saved"] == 1
    assert res.json()["skipped"][0]["index"] == 1
    assert (await api.post("/api/questionbank/import-reply", json={"content": "not json"})).status_code == 422

    app.dependency_overrides[get_question_source] = lambda: ReplySource()
    res = await api.post("/api/questionbank/generate", json={"topic": "physics", "count": 1})
    assert res.json() == {"saved": 1, "skipped": []}

    listing = (await api.get("/api/questionbank/list", params={"search": "speed of light"})).json()
    assert listing["items"][0]["answer_key"] == 0
