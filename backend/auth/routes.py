import logging
import secrets

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from auth.models import LoginRequest, RegisterRequest, TokenResponse, UserResponse
from auth.utils import create_token, get_current_user, hash_password, normalize_email, verify_password
from config import settings
from db.database import get_db
from db.models import User
from services.rate_limit_service import RateLimitRule, enforce_rate_limit

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _client_ip(request: Request) -> str:
    return (request.client.host if request.client else "") or "unknown"


def _set_session_cookie(response: Response, token: str, *, max_age_seconds: int) -> None:
    samesite = (settings.AUTH_COOKIE_SAMESITE or "lax").strip().lower()
    if samesite not in {"strict", "lax", "none"}:
        samesite = "lax"
    response.set_cookie(
        key=(settings.AUTH_COOKIE_NAME or "habit_session").strip() or "habit_session",
        value=token,
        httponly=bool(settings.AUTH_COOKIE_HTTPONLY),
        secure=bool(settings.AUTH_COOKIE_SECURE),
        samesite=samesite,  # type: ignore[arg-type]
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
        max_age=max(int(max_age_seconds), 1),
    )


def _clear_session_cookie(response: Response) -> None:
    response.delete_cookie(
        key=(settings.AUTH_COOKIE_NAME or "habit_session").strip() or "habit_session",
        domain=settings.AUTH_COOKIE_DOMAIN,
        path=settings.AUTH_COOKIE_PATH or "/",
    )


@router.post("/register", response_model=TokenResponse, status_code=status.HTTP_201_CREATED)
def register(req: RegisterRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    email = normalize_email(req.email)
    allowed, retry_after = enforce_rate_limit(
        rule=RateLimitRule(
            endpoint="/api/auth/register",
            limit=settings.RATE_LIMIT_AUTH_REGISTER_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_REGISTER_WINDOW_SECONDS,
        ),
        scope_key=f"{_client_ip(request)}:{email}",
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many registration attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

    # Verification mail is sent by an external mailer that reads verify_token.
    user = User(
        email=email,
        password_hash=hash_password(req.password),
        first_name=req.first_name.strip(),
        last_name=req.last_name.strip(),
        email_verified=False,
        verify_token=secrets.token_urlsafe(32),
    )
    db.add(user)
    db.commit()
    logger.info("Registered user %s", user.id)
    token = create_token(user.id)
    _set_session_cookie(response, token, max_age_seconds=max(int(settings.JWT_EXPIRY_HOURS), 1) * 3600)
    return TokenResponse(access_token=token)


@router.post("/login", response_model=TokenResponse)
def login(req: LoginRequest, request: Request, response: Response, db: Session = Depends(get_db)):
    email = normalize_email(req.email)
    allowed, retry_after = enforce_rate_limit(
        rule=RateLimitRule(
            endpoint="/api/auth/login",
            limit=settings.RATE_LIMIT_AUTH_LOGIN_ATTEMPTS,
            window_seconds=settings.RATE_LIMIT_AUTH_LOGIN_WINDOW_SECONDS,
        ),
        scope_key=f"{_client_ip(request)}:{email}",
    )
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts. Please try again later.",
            headers={"Retry-After": str(retry_after)},
        )
    user = db.query(User).filter(User.email == email).first()
    if not user or not verify_password(req.password, user.password_hash):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_token(user.id)
    _set_session_cookie(response, token, max_age_seconds=max(int(settings.JWT_EXPIRY_HOURS), 1) * 3600)
    return TokenResponse(access_token=token)


@router.get("/me", response_model=UserResponse)
def me(user: User = Depends(get_current_user)):
    return user


@router.post("/logout")
def logout(response: Response):
    _clear_session_cookie(response)
    return {"status": "ok"}
