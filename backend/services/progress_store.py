"""
SQLAlchemy-backed stores for habits and completion records.

Stores only flush. The caller owns the unit of work and decides when to
``commit()`` or ``rollback()``, which is what lets a weekly toggle write its
seven rows atomically.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Iterator

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from db.models import Habit, Progress
from services.errors import StoreError
from utils.datetime_utils import end_of_day, normalize_to_midnight

logger = logging.getLogger(__name__)


@contextmanager
def _store_call(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("Store operation %s failed: %s", operation, exc)
        raise StoreError(operation) from exc


@dataclass(frozen=True)
class ProgressEntry:
    habit_id: int
    date: datetime
    status: str = "done"


class HabitStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_by_id(self, habit_id: int) -> Habit | None:
        with _store_call("habit.find_by_id"):
            return (
                self.db.query(Habit)
                .options(selectinload(Habit.tags))
                .filter(Habit.id == habit_id)
                .first()
            )

    def find_all_by_user(self, user_id: int, frequencies: Iterable[str] | None = None) -> list[Habit]:
        with _store_call("habit.find_all_by_user"):
            query = (
                self.db.query(Habit)
                .options(selectinload(Habit.tags))
                .filter(Habit.user_id == user_id)
            )
            if frequencies is not None:
                query = query.filter(Habit.frequency.in_(list(frequencies)))
            return query.order_by(Habit.created_at.asc(), Habit.id.asc()).all()


class ProgressStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_one(self, habit_id: int, day: datetime) -> Progress | None:
        canonical = normalize_to_midnight(day)
        with _store_call("progress.find_one"):
            return (
                self.db.query(Progress)
                .filter(Progress.habit_id == habit_id, Progress.date == canonical)
                .first()
            )

    def find_many(
        self,
        habit_ids: Iterable[int],
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[Progress]:
        """Records for ``habit_ids`` with ``start <= date <= end`` (either bound optional)."""
        ids = list(habit_ids)
        if not ids:
            return []
        with _store_call("progress.find_many"):
            query = self.db.query(Progress).filter(Progress.habit_id.in_(ids))
            if start is not None:
                query = query.filter(Progress.date >= normalize_to_midnight(start))
            if end is not None:
                query = query.filter(Progress.date <= end_of_day(end))
            return query.order_by(Progress.date.desc(), Progress.habit_id.asc()).all()

    def count(self, habit_ids: Iterable[int], start: datetime | None = None) -> int:
        ids = list(habit_ids)
        if not ids:
            return 0
        with _store_call("progress.count"):
            query = self.db.query(func.count(Progress.id)).filter(Progress.habit_id.in_(ids))
            if start is not None:
                query = query.filter(Progress.date >= start)
            return int(query.scalar() or 0)

    def create_one(self, habit_id: int, day: datetime, status: str = "done") -> Progress:
        row = Progress(habit_id=habit_id, date=normalize_to_midnight(day), status=status)
        with _store_call("progress.create_one"):
            self.db.add(row)
            self.db.flush()
        return row

    def create_many(self, entries: Iterable[ProgressEntry], skip_duplicates: bool = True) -> int:
        """Insert entries; with ``skip_duplicates`` existing (habit, date) pairs are left alone."""
        pending: dict[tuple[int, datetime], ProgressEntry] = {}
        for entry in entries:
            pending.setdefault((entry.habit_id, normalize_to_midnight(entry.date)), entry)
        if not pending:
            return 0

        with _store_call("progress.create_many"):
            if skip_duplicates:
                habit_ids = {habit_id for habit_id, _ in pending}
                dates = {day for _, day in pending}
                existing = (
                    self.db.query(Progress.habit_id, Progress.date)
                    .filter(Progress.habit_id.in_(habit_ids), Progress.date.in_(dates))
                    .all()
                )
                for habit_id, day in existing:
                    pending.pop((habit_id, day), None)
            for (habit_id, day), entry in pending.items():
                self.db.add(Progress(habit_id=habit_id, date=day, status=entry.status))
            self.db.flush()
        return len(pending)

    def delete_one(self, progress_id: int) -> None:
        with _store_call("progress.delete_one"):
            self.db.query(Progress).filter(Progress.id == progress_id).delete(synchronize_session="fetch")
            self.db.flush()

    def delete_many(self, habit_id: int, dates: Iterable[datetime]) -> int:
        """Delete only the records of ``habit_id`` at exactly these canonical days."""
        targets = sorted({normalize_to_midnight(day) for day in dates})
        if not targets:
            return 0
        with _store_call("progress.delete_many"):
            deleted = (
                self.db.query(Progress)
                .filter(Progress.habit_id == habit_id, Progress.date.in_(targets))
                .delete(synchronize_session="fetch")
            )
            self.db.flush()
        return int(deleted or 0)

    def delete_all_for_habit(self, habit_id: int) -> int:
        with _store_call("progress.delete_all_for_habit"):
            deleted = (
                self.db.query(Progress)
                .filter(Progress.habit_id == habit_id)
                .delete(synchronize_session="fetch")
            )
            self.db.flush()
        return int(deleted or 0)

    def commit(self) -> None:
        with _store_call("commit"):
            self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
