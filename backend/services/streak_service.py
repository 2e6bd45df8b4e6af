from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable

from sqlalchemy.orm import Session

from config import settings
from db.models import HABIT_FREQUENCIES, Habit, Progress
from services.progress_store import HabitStore, ProgressStore
from utils.datetime_utils import days_between, format_date_key, normalize_to_midnight, parse_date_key, today_local


@dataclass(frozen=True)
class StreakSummary:
    current: int = 0
    best: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"current_streak": self.current, "best_streak": self.best}


def _required_habits(habits: list[Habit], day: datetime, respect_creation: bool) -> set[int]:
    if not respect_creation:
        return {int(h.id) for h in habits}
    return {
        int(h.id)
        for h in habits
        if h.created_at is None or normalize_to_midnight(h.created_at) <= day
    }


def perfect_days(
    habits: list[Habit],
    records: Iterable[Progress],
    *,
    respect_creation: bool,
) -> list[str]:
    """Date keys on which every required habit has a record, most recent first."""
    completed_by_date: dict[str, set[int]] = {}
    for record in records:
        completed_by_date.setdefault(format_date_key(record.date), set()).add(int(record.habit_id))

    total = len(habits)
    result: list[str] = []
    for key, completed in completed_by_date.items():
        if respect_creation:
            required = _required_habits(habits, parse_date_key(key), True)
            if required and required <= completed:
                result.append(key)
        elif len(completed) >= total:
            result.append(key)
    result.sort(reverse=True)
    return result


def _current_streak(days: list[str], today: datetime) -> int:
    yesterday = today - timedelta(days=1)
    if days[0] not in {format_date_key(today), format_date_key(yesterday)}:
        return 0
    streak = 0
    check = parse_date_key(days[0])
    for key in days:
        if key != format_date_key(check):
            break
        streak += 1
        check -= timedelta(days=1)
    return streak


def _best_streak(days: list[str]) -> int:
    best = 0
    run = 1
    for newer, older in zip(days, days[1:]):
        if days_between(parse_date_key(newer), parse_date_key(older)) == 1:
            run += 1
        else:
            best = max(best, run)
            run = 1
    return max(best, run)


def compute_streaks_from_records(
    habits: list[Habit],
    records: Iterable[Progress],
    today: datetime,
    *,
    respect_creation: bool | None = None,
) -> StreakSummary:
    if not habits:
        return StreakSummary()
    if respect_creation is None:
        respect_creation = settings.STREAK_RESPECT_HABIT_CREATION
    days = perfect_days(habits, records, respect_creation=respect_creation)
    if not days:
        return StreakSummary()
    current = _current_streak(days, normalize_to_midnight(today))
    return StreakSummary(current=current, best=max(_best_streak(days), current))


def compute_streaks(
    db: Session,
    user_id: int,
    *,
    now: datetime | None = None,
    respect_creation: bool | None = None,
) -> StreakSummary:
    """Current and best runs of consecutive perfect days for a user."""
    habits = HabitStore(db).find_all_by_user(user_id, frequencies=HABIT_FREQUENCIES)
    if not habits:
        return StreakSummary()
    records = ProgressStore(db).find_many([h.id for h in habits])
    return compute_streaks_from_records(habits, records, today_local(now), respect_creation=respect_creation)
