from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from db.models import Progress
from services.calendar_service import CalendarMonthCache, calendar_cache
from services.errors import NotFoundError, StoreError, ValidationError
from services.progress_store import HabitStore, ProgressEntry, ProgressStore
from utils.datetime_utils import format_date_key, normalize_to_midnight, today_local, week_dates_containing

logger = logging.getLogger(__name__)


class HabitLockRegistry:
    """One lock per habit id so toggles on the same habit never interleave."""

    def __init__(self) -> None:
        self._locks: dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def lock_for(self, habit_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(habit_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[habit_id] = lock
            return lock

    def forget(self, habit_id: int) -> None:
        with self._guard:
            self._locks.pop(habit_id, None)

    def __contains__(self, habit_id: object) -> bool:
        with self._guard:
            return habit_id in self._locks


_HABIT_LOCKS = HabitLockRegistry()


def forget_habit_lock(habit_id: int) -> None:
    """Drop the lock of a deleted habit."""
    _HABIT_LOCKS.forget(habit_id)


def progress_to_dict(progress: Progress | None) -> dict[str, Any] | None:
    if progress is None:
        return None
    return {
        "id": progress.id,
        "habit_id": progress.habit_id,
        "date": format_date_key(progress.date),
        "status": progress.status,
        "created_at": progress.created_at.isoformat() if progress.created_at else None,
    }


@dataclass(frozen=True)
class ToggleResult:
    completed: bool
    progress: Progress | None
    affected_dates: tuple[datetime, ...] = field(default=(), repr=False)

    def to_dict(self) -> dict[str, Any]:
        return {"completed": self.completed, "progress": progress_to_dict(self.progress)}


class DailyTransition:
    frequency = "daily"

    def span(self, day: datetime) -> list[datetime]:
        return [day]

    def mark(self, store: ProgressStore, habit_id: int, day: datetime) -> Progress | None:
        return store.create_one(habit_id, day)

    def unmark(self, store: ProgressStore, habit_id: int, day: datetime, existing: Progress) -> int:
        store.delete_one(existing.id)
        return 1


class WeeklyTransition:
    """A weekly habit is one decision per Monday..Sunday week, stored as seven daily rows."""

    frequency = "weekly"

    def span(self, day: datetime) -> list[datetime]:
        return week_dates_containing(day)

    def mark(self, store: ProgressStore, habit_id: int, day: datetime) -> Progress | None:
        store.create_many(
            (ProgressEntry(habit_id=habit_id, date=week_day) for week_day in self.span(day)),
            skip_duplicates=True,
        )
        return store.find_one(habit_id, day)

    def unmark(self, store: ProgressStore, habit_id: int, day: datetime, existing: Progress) -> int:
        _ = existing
        return store.delete_many(habit_id, self.span(day))


TRANSITIONS: dict[str, DailyTransition | WeeklyTransition] = {
    "daily": DailyTransition(),
    "weekly": WeeklyTransition(),
}


def transition_for(frequency: str | None) -> DailyTransition | WeeklyTransition:
    key = str(frequency or "").strip().lower()
    transition = TRANSITIONS.get(key)
    if transition is None:
        raise ValidationError(f"Unsupported habit frequency: {frequency!r}")
    return transition


def toggle_completion(
    db: Session,
    habit_id: int,
    day: datetime | None = None,
    *,
    now: datetime | None = None,
    user_id: int | None = None,
    cache: CalendarMonthCache | None = None,
) -> ToggleResult:
    """
    Flip the completion state of a habit on ``day`` (today when omitted).

    The whole toggle is one transaction: on any store failure it is rolled back
    and the ``StoreError`` propagates, so a week is never left half written.
    """
    canonical = normalize_to_midnight(day) if day is not None else today_local(now)
    habits = HabitStore(db)
    store = ProgressStore(db)

    with _HABIT_LOCKS.lock_for(habit_id):
        try:
            habit = habits.find_by_id(habit_id)
            if habit is None or (user_id is not None and habit.user_id != user_id):
                raise NotFoundError("Habit", habit_id)
            owner_id = habit.user_id
            transition = transition_for(habit.frequency)
            affected = tuple(transition.span(canonical))

            existing = store.find_one(habit_id, canonical)
            if existing is not None:
                removed = transition.unmark(store, habit_id, canonical, existing)
                result = ToggleResult(completed=False, progress=None, affected_dates=affected)
                logger.info(
                    "Unmarked %s habit %s on %s (%d records removed)",
                    transition.frequency, habit_id, format_date_key(canonical), removed,
                )
            else:
                progress = transition.mark(store, habit_id, canonical)
                result = ToggleResult(completed=True, progress=progress, affected_dates=affected)
                logger.info(
                    "Marked %s habit %s done on %s",
                    transition.frequency, habit_id, format_date_key(canonical),
                )
            store.commit()
        except StoreError:
            store.rollback()
            logger.warning("Toggle of habit %s on %s rolled back", habit_id, format_date_key(canonical))
            raise

    (cache if cache is not None else calendar_cache).invalidate_dates(owner_id, affected)
    return result


def get_completion(db: Session, habit_id: int, day: datetime | None = None, *, now: datetime | None = None,
                   user_id: int | None = None) -> ToggleResult:
    canonical = normalize_to_midnight(day) if day is not None else today_local(now)
    habit = HabitStore(db).find_by_id(habit_id)
    if habit is None or (user_id is not None and habit.user_id != user_id):
        raise NotFoundError("Habit", habit_id)
    progress = ProgressStore(db).find_one(habit_id, canonical)
    return ToggleResult(completed=progress is not None, progress=progress)
