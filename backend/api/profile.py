import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth.utils import get_current_user
from db.database import get_db
from db.models import User
from services.errors import StoreError
from services.habit_service import list_tags, tag_to_dict
from services.stats_service import build_profile_stats
from services.streak_service import compute_streaks

logger = logging.getLogger(__name__)

router = APIRouter(tags=["profile"])


@router.get("/profile/stats")
def profile_stats(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return build_profile_stats(db, user.id)
    except StoreError as exc:
        logger.warning(f"Profile stats failed for user {user.id}: {exc}")
        raise HTTPException(status_code=500, detail="Could not load statistics")


@router.get("/profile/streaks")
def profile_streaks(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    try:
        return compute_streaks(db, user.id).to_dict()
    except StoreError as exc:
        logger.warning(f"Streak computation failed for user {user.id}: {exc}")
        raise HTTPException(status_code=500, detail="Could not load streaks")


@router.get("/tags")
def tag_catalogue(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _ = user
    return {"tags": [tag_to_dict(tag) for tag in list_tags(db)]}
