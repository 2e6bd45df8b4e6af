import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from config import settings
from db.database import get_db
from db.models import User
from services.calendar_service import build_month, build_seven_day_history, calendar_cache
from services.errors import HabitTrackerError, NotFoundError, StoreError, ValidationError
from services.habit_service import (
    create_habit,
    delete_habit,
    get_habit,
    habit_to_dict,
    list_habits,
    update_habit,
)
from services.toggle_service import get_completion, toggle_completion
from utils.datetime_utils import local_now, parse_date_param

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/habits", tags=["habits"])


class TagPayload(BaseModel):
    name: str
    emoji: Optional[str] = None


class HabitCreateRequest(BaseModel):
    name: str
    description: Optional[str] = None
    frequency: str = "daily"
    tags: list[TagPayload] = Field(default_factory=list)


class HabitUpdateRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    frequency: Optional[str] = None
    tags: Optional[list[TagPayload]] = None


class ProgressToggleRequest(BaseModel):
    date: Optional[str] = None


def _http_error(exc: HabitTrackerError, *, failure_detail: str) -> HTTPException:
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=400, detail=str(exc))
    # Store failures stay opaque to the client
    return HTTPException(status_code=500, detail=failure_detail)


def _parse_day(raw: Optional[str]):
    if not raw:
        return None
    try:
        return parse_date_param(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="date must be YYYY-MM-DD or an ISO-8601 timestamp")


@router.get("/history")
def seven_day_history(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return build_seven_day_history(db, user.id)
    except StoreError as exc:
        logger.warning(f"History fetch failed for user {user.id}: {exc}")
        raise _http_error(exc, failure_detail="Could not load history")


@router.get("/calendar")
def month_calendar(
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    now = local_now()
    month = month if month is not None else now.month
    year = year if year is not None else now.year
    if not 1 <= month <= 12 or not settings.CALENDAR_MIN_YEAR <= year <= settings.CALENDAR_MAX_YEAR:
        raise HTTPException(status_code=400, detail="Invalid month or year")
    try:
        return calendar_cache.get_or_build(
            user.id, year, month, lambda: build_month(db, user.id, year, month, now=now), now=now
        )
    except StoreError as exc:
        logger.warning(f"Calendar fetch failed for user {user.id} ({year}-{month:02d}): {exc}")
        raise _http_error(exc, failure_detail="Could not load calendar")


@router.get("")
def list_user_habits(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"habits": [habit_to_dict(h) for h in list_habits(db, user.id)]}


@router.post("", status_code=201)
def create_user_habit(
    req: HabitCreateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        habit = create_habit(
            db,
            user.id,
            name=req.name,
            description=req.description,
            frequency=req.frequency,
            tags=[t.model_dump() for t in req.tags],
        )
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not create habit")
    return {"message": "Habit created", "habit": habit_to_dict(habit)}


@router.get("/{habit_id}")
def get_user_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return {"habit": habit_to_dict(get_habit(db, habit_id, user.id))}
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not load habit")


@router.put("/{habit_id}")
def update_user_habit(
    habit_id: int,
    req: HabitUpdateRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        habit = update_habit(
            db,
            habit_id,
            user.id,
            name=req.name,
            description=req.description,
            frequency=req.frequency,
            tags=[t.model_dump() for t in req.tags] if req.tags is not None else None,
        )
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not update habit")
    return {"message": "Habit updated", "habit": habit_to_dict(habit)}


@router.delete("/{habit_id}")
def delete_user_habit(
    habit_id: int,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        removed = delete_habit(db, habit_id, user.id)
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not delete habit")
    return {"status": "deleted", "id": habit_id, "progress_removed": removed}


@router.post("/{habit_id}/progress")
def toggle_habit_progress(
    habit_id: int,
    req: Optional[ProgressToggleRequest] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    day = _parse_day(req.date if req else None)
    try:
        result = toggle_completion(db, habit_id, day, user_id=user.id)
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not update progress")
    return {"success": True, **result.to_dict()}


@router.get("/{habit_id}/progress")
def read_habit_progress(
    habit_id: int,
    date: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    day = _parse_day(date)
    try:
        return get_completion(db, habit_id, day, user_id=user.id).to_dict()
    except HabitTrackerError as exc:
        raise _http_error(exc, failure_detail="Could not load progress")
