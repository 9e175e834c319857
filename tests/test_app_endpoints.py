import asyncio
import json
from typing import Optional
from urllib.parse import urlencode

import pytest

import app


async def _call_app(
    method: str,
    path: str,
    *,
    payload: Optional[dict] = None,
    query: Optional[dict] = None,
    user: Optional[str] = None,
) -> tuple[int, dict]:
    body = json.dumps(payload).encode("utf-8") if payload is not None else b""
    headers = [(b"host", b"testserver")]
    if user is not None:
        headers.append((b"x-user-id", user.encode("utf-8")))
    if body:
        headers.extend([(b"content-type", b"application/json"), (b"content-length", str(len(body)).encode())])
    scope = {
        "type": "http",
        "http_version": "1.1",
        "method": method.upper(),
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "scheme": "http",
        "query_string": urlencode(query or {}, doseq=True).encode(),
        "headers": headers,
        "client": ("testclient", 12345),
        "server": ("testserver", 80),
        "state": {},
    }
    messages = []

    async def receive():
        nonlocal body
        if body:
            chunk, body = body, b""
            return {"type": "http.request", "body": chunk, "more_body": False}
        return {"type": "http.request", "body": b"", "more_body": False}

    async def send(message):
        messages.append(message)

    await app.app(scope, receive, send)
    status = 500
    body_bytes = b""
    for message in messages:
        if message["type"] == "http.response.start":
            status = message["status"]
        elif message["type"] == "http.response.body":
            body_bytes += message.get("body", b"")
    return status, json.loads(body_bytes.decode("utf-8") or "{}")


def _post(path: str, payload: Optional[dict] = None, user: Optional[str] = "ana") -> tuple[int, dict]:
    return asyncio.run(_call_app("POST", path, payload=payload, user=user))


def _get(path: str, query: Optional[dict] = None, user: Optional[str] = "ana") -> tuple[int, dict]:
    return asyncio.run(_call_app("GET", path, query=query, user=user))


def test_health_is_public(temp_db):
    status, payload = _get("/health", user=None)
    assert status == 200
    assert payload == {"ok": True}


def test_missing_identity_is_rejected(temp_db):
    status, payload = _get("/gamification/stats", user=None)
    assert status == 401
    assert payload["detail"] == "missing user identity"

    status, _ = _post("/quiz/start", {"topic_id": "needs-wants"}, user="  ")
    assert status == 401


def test_register_then_read_stats(temp_db):
    status, payload = _post("/users/register", {"full_name": "Ana", "grade": 4})
    assert status == 200
    assert payload["user"]["id"] == "ana"
    assert payload["stats"]["total_xp"] == 0

    status, payload = _get("/gamification/stats")
    assert status == 200
    assert payload["stats"]["level"] == 1
    assert payload["streaks"]["current"] == 0


def test_stats_for_unregistered_user_is_404(temp_db):
    status, _ = _get("/gamification/stats", user="ghost")
    assert status == 404


def test_unknown_session_is_404(temp_db):
    status, payload = _post("/quiz/complete/does-not-exist")
    assert status == 404
    assert payload["detail"] == "Quiz session not found"


def test_quiz_round_trip_over_http(curriculum):
    _post("/users/register", {"grade": 4})
    status, started = _post("/quiz/start", {"topic_id": "needs-wants", "question_count": 3})
    assert status == 200
    assert started["total_questions"] == 3

    for question in started["questions"]:
        status, result = _post(
            "/quiz/submit",
            {"session_id": started["session_id"], "question_id": question["id"], "user_answer": "A", "time_spent": 8},
        )
        assert status == 200
        assert result["is_correct"] is True

    status, summary = _post(f"/quiz/complete/{started['session_id']}")
    assert status == 200
    assert summary["performance"]["accuracy"] == 100

    status, history = _get("/quiz/history")
    assert [s["id"] for s in history["sessions"]] == [started["session_id"]]

    status, payload = _post(f"/quiz/complete/{started['session_id']}")
    assert status == 400
    assert payload["detail"] == "Quiz session already completed"


@pytest.mark.parametrize("count", [0, 21])
def test_question_count_is_validated(curriculum, count):
    status, _ = _post("/quiz/start", {"topic_id": "needs-wants", "question_count": count})
    assert status == 422


def test_leaderboard_type_is_validated(temp_db):
    status, _ = _get("/gamification/leaderboard/karma")
    assert status == 400
    status, payload = _get("/gamification/leaderboard/xp", {"limit": 5})
    assert status == 200
    assert payload == {"type": "xp", "entries": []}


def test_challenge_and_badges(temp_db):
    _post("/users/register", {"grade": 4})
    status, challenge = _post("/gamification/challenge/daily")
    assert status == 200
    assert challenge["challenge_type"] == "daily"

    status, _ = _post("/gamification/challenge/yearly")
    assert status == 400

    status, badges = _get("/gamification/badges")
    assert status == 200
    assert badges["earned"] == []
    assert "first_quiz" in [b["id"] for b in badges["available"]]

    status, _ = _get("/gamification/badges/unknown/progress")
    assert status == 404


def test_curriculum_listing(curriculum):
    status, payload = _get("/curriculum/topics", {"grade": 4})
    assert status == 200
    assert [t["id"] for t in payload["topics"]] == ["needs-wants"]

    status, payload = _get("/curriculum/topics/needs-wants")
    assert payload["question_count"] == 10

    status, _ = _get("/curriculum/topics/missing")
    assert status == 404


def test_hint_for_missing_question_is_404(temp_db):
    status, _ = _post("/adaptive/hint", {"question_id": "missing"})
    assert status == 404
