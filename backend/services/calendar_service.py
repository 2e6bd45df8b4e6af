from __future__ import annotations

import calendar
import threading
import time
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from sqlalchemy.orm import Session

from config import settings
from db.models import Habit, Progress
from services.progress_store import HabitStore, ProgressStore
from utils.datetime_utils import (
    format_date_key,
    month_bounds,
    today_local,
    week_dates_containing,
)


def completion_rate(completed: int, total: int) -> int:
    """Percentage rounded to the nearest integer, ties rounding up."""
    if total <= 0:
        return 0
    return (200 * completed + total) // (2 * total)


def _tags_payload(habit: Habit) -> list[dict[str, Any]]:
    return [{"id": tag.id, "name": tag.name, "emoji": tag.emoji or None} for tag in (habit.tags or [])]


def group_by_date(records: Iterable[Progress]) -> dict[str, set[int]]:
    """date key -> ids of the habits with a record on that day."""
    grouped: dict[str, set[int]] = defaultdict(set)
    for record in records:
        grouped[format_date_key(record.date)].add(int(record.habit_id))
    return grouped


def build_month(
    db: Session,
    user_id: int,
    year: int,
    month: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    today = today_local(now)
    today_key = format_date_key(today)
    payload: dict[str, Any] = {
        "month": month,
        "year": year,
        "month_name": calendar.month_name[month],
        "days": [],
    }

    habits = HabitStore(db).find_all_by_user(user_id)
    if not habits:
        return payload

    first_day, last_day = month_bounds(year, month)
    records = ProgressStore(db).find_many([h.id for h in habits], first_day, last_day)
    done_by_date = group_by_date(records)
    tags_by_habit = {h.id: _tags_payload(h) for h in habits}

    day = first_day
    while day <= last_day:
        key = format_date_key(day)
        done_ids = done_by_date.get(key, set())
        habits_for_day = [
            {
                "habit_id": habit.id,
                "habit_name": habit.name,
                "status": "done" if habit.id in done_ids else "pending",
                "frequency": habit.frequency,
                "tags": tags_by_habit[habit.id],
            }
            for habit in habits
        ]
        completed = sum(1 for row in habits_for_day if row["status"] == "done")
        total = len(habits_for_day)
        payload["days"].append(
            {
                "date": key,
                "day_number": day.day,
                "is_today": key == today_key,
                "is_future": day > today,
                "is_current_month": True,
                "total_habits": total,
                "completed_habits": completed,
                "completion_rate": completion_rate(completed, total),
                "habits": habits_for_day,
            }
        )
        day += timedelta(days=1)
    return payload


def build_seven_day_history(db: Session, user_id: int, *, now: datetime | None = None) -> dict[str, Any]:
    """Monday..Sunday of the current week, not the trailing seven days."""
    today = today_local(now)
    today_key = format_date_key(today)
    week = week_dates_containing(today)
    date_keys = [format_date_key(day) for day in week]

    habits = HabitStore(db).find_all_by_user(user_id)
    records = ProgressStore(db).find_many([h.id for h in habits], week[0], week[-1])
    done_by_date = group_by_date(records)

    by_habit: dict[int, dict[str, bool]] = {
        habit.id: {key: habit.id in done_by_date.get(key, set()) for key in date_keys}
        for habit in habits
    }

    history = []
    for day, key in zip(week, date_keys):
        habits_for_day = [
            {
                "habit_id": habit.id,
                "habit_name": habit.name,
                "status": "done" if by_habit[habit.id][key] else "pending",
            }
            for habit in habits
        ]
        completed = sum(1 for row in habits_for_day if row["status"] == "done")
        history.append(
            {
                "date": key,
                "weekday": calendar.day_abbr[day.weekday()],
                "is_today": key == today_key,
                "habits": habits_for_day,
                "completion_rate": completion_rate(completed, len(habits_for_day)),
            }
        )

    return {"dates": date_keys, "by_habit": by_habit, "history": history}


class CalendarMonthCache:
    """
    Advisory read-through cache of month views.

    Never a source of truth: entries expire after ``ttl_seconds`` and are
    dropped whenever a write touches one of their days.
    """

    def __init__(self, ttl_seconds: int | None = None) -> None:
        self.ttl_seconds = settings.CALENDAR_CACHE_TTL_SECONDS if ttl_seconds is None else int(ttl_seconds)
        self._entries: dict[tuple[int, int, int, str], tuple[float, dict[str, Any]]] = {}
        self._lock = threading.Lock()

    @property
    def enabled(self) -> bool:
        return self.ttl_seconds > 0

    def get_or_build(
        self,
        user_id: int,
        year: int,
        month: int,
        builder: Callable[[], dict[str, Any]],
        *,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        if not self.enabled:
            return builder()
        # "today" is baked into the payload, so it is part of the key
        key = (int(user_id), int(year), int(month), format_date_key(today_local(now)))
        current = time.monotonic()
        with self._lock:
            hit = self._entries.get(key)
            if hit is not None and current - hit[0] < self.ttl_seconds:
                return hit[1]
        payload = builder()
        with self._lock:
            self._entries[key] = (time.monotonic(), payload)
        return payload

    def invalidate(self, user_id: int, year: int, month: int) -> None:
        with self._lock:
            stale = [k for k in self._entries if k[:3] == (int(user_id), int(year), int(month))]
            for k in stale:
                self._entries.pop(k, None)

    def invalidate_dates(self, user_id: int, dates: Iterable[datetime]) -> None:
        for year, month in {(day.year, day.month) for day in dates}:
            self.invalidate(user_id, year, month)

    def invalidate_user(self, user_id: int) -> None:
        with self._lock:
            stale = [k for k in self._entries if k[0] == int(user_id)]
            for k in stale:
                self._entries.pop(k, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


calendar_cache = CalendarMonthCache()
