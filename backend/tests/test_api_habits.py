from __future__ import annotations

import sys
import uuid
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base, get_db  # noqa: E402
from main import app  # noqa: E402
from services.calendar_service import calendar_cache  # noqa: E402
from services.rate_limit_service import reset_rate_limits  # noqa: E402
from utils.datetime_utils import days_in_month, format_date_key, local_now  # noqa: E402


@pytest.fixture()
def client():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def _get_test_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = _get_test_db
    calendar_cache.clear()
    reset_rate_limits()
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)
        calendar_cache.clear()


def _register(client: TestClient) -> str:
    email = f"user_{uuid.uuid4().hex[:8]}@habits.io"
    resp = client.post(
        "/api/auth/register",
        json={"email": email, "password": "Habit!Pass123", "first_name": "Ada", "last_name": "Lovelace"},
    )
    assert resp.status_code == 201
    return email


def _create_habit(client: TestClient, name: str, frequency: str = "daily", tags: list | None = None) -> dict:
    resp = client.post("/api/habits", json={"name": name, "frequency": frequency, "tags": tags or []})
    assert resp.status_code == 201
    return resp.json()["habit"]


def test_health_response_includes_security_headers(client):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.headers.get("x-content-type-options") == "nosniff"
    assert response.headers.get("x-frame-options") == "DENY"


def test_endpoints_require_a_session(client):
    assert client.get("/api/habits").status_code == 401
    assert client.post("/api/habits/1/progress", json={}).status_code == 401
    assert client.get("/api/profile/stats").status_code == 401


def test_register_login_and_me_flow(client):
    email = _register(client)
    me = client.get("/api/auth/me")
    assert me.status_code == 200
    assert me.json()["email"] == email
    assert me.json()["email_verified"] is False

    dup = client.post(
        "/api/auth/register",
        json={"email": email.upper(), "password": "Habit!Pass123", "first_name": "A", "last_name": "B"},
    )
    assert dup.status_code == 409

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401

    bad = client.post("/api/auth/login", json={"email": email, "password": "wrong"})
    assert bad.status_code == 401
    login = client.post("/api/auth/login", json={"email": email.upper(), "password": "Habit!Pass123"})
    assert login.status_code == 200
    assert client.get("/api/auth/me").status_code == 200


def test_habit_crud_round(client):
    _register(client)
    habit = _create_habit(client, "Read a book", tags=[{"name": "Reading", "emoji": "📖"}])
    assert habit["tags"][0]["name"] == "Reading"

    listed = client.get("/api/habits").json()["habits"]
    assert [h["id"] for h in listed] == [habit["id"]]

    invalid = client.post("/api/habits", json={"name": "no"})
    assert invalid.status_code == 400

    updated = client.put(f"/api/habits/{habit['id']}", json={"frequency": "weekly"})
    assert updated.status_code == 200
    assert updated.json()["habit"]["frequency"] == "weekly"

    assert client.get(f"/api/habits/{habit['id']}").status_code == 200
    assert client.delete(f"/api/habits/{habit['id']}").status_code == 200
    assert client.get(f"/api/habits/{habit['id']}").status_code == 404

    tags = client.get("/api/tags").json()["tags"]
    assert any(t["name"] == "Reading" for t in tags)


def test_toggle_progress_round_trip(client):
    _register(client)
    habit = _create_habit(client, "Stretch")

    marked = client.post(f"/api/habits/{habit['id']}/progress", json={"date": "2024-03-05"})
    assert marked.status_code == 200
    body = marked.json()
    assert body["success"] is True
    assert body["completed"] is True
    assert body["progress"]["date"] == "2024-03-05"

    read = client.get(f"/api/habits/{habit['id']}/progress", params={"date": "2024-03-05"})
    assert read.json()["completed"] is True

    unmarked = client.post(f"/api/habits/{habit['id']}/progress", json={"date": "2024-03-05"})
    assert unmarked.json() == {"success": True, "completed": False, "progress": None}


def test_toggle_without_date_uses_today(client):
    _register(client)
    habit = _create_habit(client, "Walk the dog")

    marked = client.post(f"/api/habits/{habit['id']}/progress", json={})
    assert marked.status_code == 200
    assert marked.json()["completed"] is True
    assert marked.json()["progress"]["date"] == format_date_key(local_now())
    assert client.get(f"/api/habits/{habit['id']}/progress").json()["completed"] is True


def test_toggle_rejects_bad_dates_and_unknown_habits(client):
    _register(client)
    habit = _create_habit(client, "Stretch")

    assert client.post(f"/api/habits/{habit['id']}/progress", json={"date": "next tuesday"}).status_code == 400
    assert client.post("/api/habits/424242/progress", json={}).status_code == 404


def test_weekly_toggle_is_visible_in_calendar(client):
    _register(client)
    habit = _create_habit(client, "Clean kitchen", frequency="weekly")

    # Warm the cache first so the toggle has something to invalidate
    before = client.get("/api/habits/calendar", params={"month": 3, "year": 2024}).json()
    assert all(d["completed_habits"] == 0 for d in before["days"])

    client.post(f"/api/habits/{habit['id']}/progress", json={"date": "2024-03-13"})
    calendar = client.get("/api/habits/calendar", params={"month": 3, "year": 2024})
    assert calendar.status_code == 200
    payload = calendar.json()
    assert payload["month_name"] == "March"
    assert len(payload["days"]) == 31
    done = [d["date"] for d in payload["days"] if d["completed_habits"] == 1]
    assert done == [f"2024-03-{d:02d}" for d in range(11, 18)]


def test_calendar_defaults_and_validation(client):
    _register(client)
    _create_habit(client, "Stretch")
    now = local_now()

    current = client.get("/api/habits/calendar").json()
    assert current["month"] == now.month
    assert len(current["days"]) == days_in_month(now.year, now.month)
    assert sum(1 for d in current["days"] if d["is_today"]) == 1

    assert client.get("/api/habits/calendar", params={"month": 13, "year": 2024}).status_code == 400
    assert client.get("/api/habits/calendar", params={"month": 1, "year": 1999}).status_code == 400


def test_history_and_profile_stats(client):
    _register(client)
    habit = _create_habit(client, "Stretch")
    client.post(f"/api/habits/{habit['id']}/progress", json={})

    history = client.get("/api/habits/history").json()
    assert len(history["dates"]) == 7
    assert len(history["history"]) == 7

    stats = client.get("/api/profile/stats").json()
    assert stats["total_habits"] == 1
    assert stats["total_completions"] == 1
    assert stats["current_streak"] == 1
    assert stats["best_streak"] == 1
    assert len(stats["weekly_stats"]) == 7

    streaks = client.get("/api/profile/streaks").json()
    assert streaks == {"current_streak": 1, "best_streak": 1}
