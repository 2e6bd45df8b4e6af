from __future__ import annotations

import calendar
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from db.models import HABIT_FREQUENCIES
from services.calendar_service import completion_rate, group_by_date
from services.progress_store import HabitStore, ProgressStore
from services.streak_service import compute_streaks_from_records
from utils.datetime_utils import format_date_key, today_local

ROLLING_WINDOW_DAYS = 30
# Possible completions per habit inside the rolling window
_EXPECTED_PER_WINDOW = {"daily": 30, "weekly": 4}


def _weekly_stats(habit_ids: set[int], done_by_date: dict[str, set[int]], today: datetime) -> list[dict[str, Any]]:
    total = len(habit_ids)
    if total == 0:
        return []
    rows = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        completed = len(done_by_date.get(format_date_key(day), set()) & habit_ids)
        rows.append(
            {
                "date": format_date_key(day),
                "weekday": calendar.day_abbr[day.weekday()],
                "completed": completed,
                "total": total,
                "percentage": completion_rate(completed, total),
            }
        )
    return rows


def build_profile_stats(db: Session, user_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    """
    Profile dashboard numbers: habit counts, streaks, trailing 7 day breakdown
    and the 30 day completion rate.

    The 30 day window covers today and the 29 days before it. Weekly habits
    are expected four times in that window, matching how the profile page
    has always reported them.
    """
    today = today_local(now)
    habits = HabitStore(db).find_all_by_user(user_id)
    tracked = [h for h in habits if h.frequency in HABIT_FREQUENCIES]
    daily_count = sum(1 for h in habits if h.frequency == "daily")
    weekly_count = sum(1 for h in habits if h.frequency == "weekly")

    store = ProgressStore(db)
    all_ids = [h.id for h in habits]
    records = store.find_many([h.id for h in tracked])
    done_by_date = group_by_date(records)

    streaks = compute_streaks_from_records(tracked, records, today)

    window_start = today - timedelta(days=ROLLING_WINDOW_DAYS - 1)
    recent = store.count(all_ids, start=window_start)
    possible = daily_count * _EXPECTED_PER_WINDOW["daily"] + weekly_count * _EXPECTED_PER_WINDOW["weekly"]
    rate = min(completion_rate(recent, possible), 100) if possible > 0 else 0

    return {
        "total_habits": len(habits),
        "daily_habits": daily_count,
        "weekly_habits": weekly_count,
        "total_completions": store.count(all_ids),
        **streaks.to_dict(),
        "weekly_stats": _weekly_stats({int(h.id) for h in tracked}, done_by_date, today),
        "completion_rate": rate,
    }
