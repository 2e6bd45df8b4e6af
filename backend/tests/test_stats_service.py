from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker


ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from db.database import Base  # noqa: E402
from db.models import Habit, User  # noqa: E402
from services.progress_store import ProgressEntry, ProgressStore  # noqa: E402
from services.stats_service import build_profile_stats  # noqa: E402
from services.toggle_service import toggle_completion  # noqa: E402
from utils.datetime_utils import parse_date_key  # noqa: E402


def _new_db():
    engine = create_engine("sqlite:///:memory:", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)()


def _new_user(db) -> User:
    user = User(email="stats@habits.io", password_hash="hash", first_name="Stats", last_name="Tester")
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def _new_habit(db, user: User, name: str, frequency: str) -> Habit:
    habit = Habit(user_id=user.id, name=name, frequency=frequency, created_at=datetime(2023, 12, 1))
    db.add(habit)
    db.commit()
    db.refresh(habit)
    return habit


def test_profile_stats_for_empty_account():
    db = _new_db()
    user = _new_user(db)

    stats = build_profile_stats(db, user.id, now=datetime(2024, 1, 3))
    assert stats == {
        "total_habits": 0,
        "daily_habits": 0,
        "weekly_habits": 0,
        "total_completions": 0,
        "current_streak": 0,
        "best_streak": 0,
        "weekly_stats": [],
        "completion_rate": 0,
    }


def test_profile_stats_mixes_daily_and_weekly_habits():
    db = _new_db()
    user = _new_user(db)
    read = _new_habit(db, user, "Read", "daily")
    clean = _new_habit(db, user, "Clean", "weekly")
    ProgressStore(db).create_many(
        ProgressEntry(read.id, parse_date_key(k)) for k in ("2024-01-01", "2024-01-02", "2024-01-03")
    )
    db.commit()
    toggle_completion(db, clean.id, datetime(2024, 1, 1))

    stats = build_profile_stats(db, user.id, now=datetime(2024, 1, 3, 21, 0))

    assert stats["total_habits"] == 2
    assert stats["daily_habits"] == 1
    assert stats["weekly_habits"] == 1
    assert stats["total_completions"] == 10
    assert stats["current_streak"] == 3
    assert stats["best_streak"] == 3
    # 10 records against 1 * 30 + 1 * 4 possible
    assert stats["completion_rate"] == 29

    weekly = stats["weekly_stats"]
    assert [row["date"] for row in weekly] == [
        "2023-12-28",
        "2023-12-29",
        "2023-12-30",
        "2023-12-31",
        "2024-01-01",
        "2024-01-02",
        "2024-01-03",
    ]
    assert weekly[-1] == {
        "date": "2024-01-03",
        "weekday": "Wed",
        "completed": 2,
        "total": 2,
        "percentage": 100,
    }
    assert weekly[0]["completed"] == 0
    assert weekly[0]["percentage"] == 0


def test_profile_completion_rate_is_capped_at_100():
    db = _new_db()
    user = _new_user(db)
    clean = _new_habit(db, user, "Clean", "weekly")
    for day in ("2024-01-01", "2024-01-08"):
        toggle_completion(db, clean.id, parse_date_key(day))

    stats = build_profile_stats(db, user.id, now=datetime(2024, 1, 10))
    assert stats["total_completions"] == 14
    assert stats["completion_rate"] == 100
