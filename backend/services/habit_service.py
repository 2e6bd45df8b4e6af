from __future__ import annotations

import logging
from typing import Any, Iterable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import settings
from db.models import HABIT_FREQUENCIES, Habit, Tag
from services.calendar_service import CalendarMonthCache, calendar_cache
from services.errors import NotFoundError, StoreError, ValidationError
from services.progress_store import HabitStore, ProgressStore
from services.toggle_service import forget_habit_lock

logger = logging.getLogger(__name__)

PRESET_TAGS: list[tuple[str, str]] = [
    ("Sport", "🏃"),
    ("Health", "❤️"),
    ("Work", "💼"),
    ("Study", "📚"),
    ("Meditation", "🧘"),
    ("Nutrition", "🥗"),
    ("Sleep", "😴"),
    ("Creativity", "🎨"),
    ("Social", "👥"),
    ("Finance", "💰"),
    ("Reading", "📖"),
    ("Writing", "✍️"),
    ("Music", "🎵"),
    ("Chores", "🧹"),
    ("Nature", "🌿"),
]


def habit_to_dict(habit: Habit) -> dict[str, Any]:
    return {
        "id": habit.id,
        "user_id": habit.user_id,
        "name": habit.name,
        "description": habit.description or "",
        "frequency": habit.frequency,
        "tags": [tag_to_dict(tag) for tag in (habit.tags or [])],
        "created_at": habit.created_at.isoformat() if habit.created_at else None,
    }


def tag_to_dict(tag: Tag) -> dict[str, Any]:
    return {"id": tag.id, "name": tag.name, "emoji": tag.emoji or None}


def _clean_name(name: str | None) -> str:
    cleaned = " ".join((name or "").strip().split())
    if not settings.HABIT_NAME_MIN_LENGTH <= len(cleaned) <= settings.HABIT_NAME_MAX_LENGTH:
        raise ValidationError(
            f"Name must be between {settings.HABIT_NAME_MIN_LENGTH} "
            f"and {settings.HABIT_NAME_MAX_LENGTH} characters"
        )
    return cleaned


def _clean_frequency(frequency: str | None) -> str:
    value = str(frequency or "daily").strip().lower()
    if value not in HABIT_FREQUENCIES:
        raise ValidationError(f"frequency must be one of {list(HABIT_FREQUENCIES)}")
    return value


def find_or_create_tags(db: Session, tags: Iterable[dict[str, Any]]) -> list[Tag]:
    """Resolve ``{name, emoji}`` pairs to Tag rows, never creating a duplicate pair."""
    resolved: dict[tuple[str, str], Tag] = {}
    for raw in tags:
        name = " ".join(str(raw.get("name") or "").strip().split())
        emoji = str(raw.get("emoji") or "").strip()
        if len(name) < settings.TAG_NAME_MIN_LENGTH:
            raise ValidationError(f"Tag name must be at least {settings.TAG_NAME_MIN_LENGTH} characters")
        key = (name, emoji)
        if key in resolved:
            continue
        tag = db.query(Tag).filter(Tag.name == name, Tag.emoji == emoji).first()
        if tag is None:
            tag = Tag(name=name, emoji=emoji)
            db.add(tag)
            try:
                db.flush()
            except SQLAlchemyError as exc:
                # Lost a race on uq_tag_name_emoji, or the insert failed outright
                db.rollback()
                logger.warning(f"Tag create failed for {name!r}: {exc}")
                raise StoreError("tag.create") from exc
        resolved[key] = tag
    return list(resolved.values())


def seed_preset_tags(db: Session) -> int:
    created = 0
    for name, emoji in PRESET_TAGS:
        if db.query(Tag).filter(Tag.name == name, Tag.emoji == emoji).first() is None:
            db.add(Tag(name=name, emoji=emoji))
            created += 1
    if created:
        db.commit()
    return created


def list_tags(db: Session) -> list[Tag]:
    return db.query(Tag).order_by(Tag.name.asc(), Tag.id.asc()).all()


def list_habits(db: Session, user_id: int) -> list[Habit]:
    return HabitStore(db).find_all_by_user(user_id)


def get_habit(db: Session, habit_id: int, user_id: int) -> Habit:
    habit = HabitStore(db).find_by_id(habit_id)
    if habit is None or habit.user_id != user_id:
        raise NotFoundError("Habit", habit_id)
    return habit


def _commit(db: Session, operation: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning(f"Habit {operation} failed: {exc}")
        raise StoreError(f"habit.{operation}") from exc


def create_habit(
    db: Session,
    user_id: int,
    *,
    name: str,
    description: str | None = None,
    frequency: str | None = None,
    tags: Iterable[dict[str, Any]] = (),
) -> Habit:
    habit = Habit(
        user_id=user_id,
        name=_clean_name(name),
        description=(description or "").strip(),
        frequency=_clean_frequency(frequency),
    )
    habit.tags = find_or_create_tags(db, tags)
    db.add(habit)
    _commit(db, "create")
    db.refresh(habit)
    # A new habit changes every day's totals
    calendar_cache.invalidate_user(user_id)
    return habit


def update_habit(
    db: Session,
    habit_id: int,
    user_id: int,
    *,
    name: str | None = None,
    description: str | None = None,
    frequency: str | None = None,
    tags: Iterable[dict[str, Any]] | None = None,
) -> Habit:
    habit = get_habit(db, habit_id, user_id)
    if name is not None:
        habit.name = _clean_name(name)
    if description is not None:
        habit.description = description.strip()
    if frequency is not None:
        habit.frequency = _clean_frequency(frequency)
    if tags is not None:
        habit.tags = find_or_create_tags(db, tags)
    _commit(db, "update")
    db.refresh(habit)
    calendar_cache.invalidate_user(user_id)
    return habit


def delete_habit(db: Session, habit_id: int, user_id: int, cache: CalendarMonthCache | None = None) -> int:
    """Delete a habit and its completion records; returns the number of records removed."""
    habit = get_habit(db, habit_id, user_id)
    removed = ProgressStore(db).delete_all_for_habit(habit.id)
    db.delete(habit)
    _commit(db, "delete")
    forget_habit_lock(habit_id)
    (cache if cache is not None else calendar_cache).invalidate_user(user_id)
    logger.info("Deleted habit %s with %d progress records", habit_id, removed)
    return removed
