import logging
from typing import TypedDict

from fastapi import APIRouter, Cookie, Request, Response, status
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from giftregistry.api.deps import CurrentUserDep, DbSessionDep, OptionalUserDep
from giftregistry.core.audit import (
    AuditAction,
    audit_log,
    audit_login_failed,
    audit_login_success,
    audit_register,
)
from giftregistry.core.config import settings
from giftregistry.core.contributors import profile_display_name
from giftregistry.core.errors import BadRequest, InternalError, Unauthorized
from giftregistry.core.notifications import get_preferences
from giftregistry.core.rate_limit import check_rate_limit
from giftregistry.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    get_password_hash,
    verify_password,
)
from giftregistry.models.models import Profile, default_notification_preferences
from giftregistry.schemas.auth import (
    LoginRequest,
    NotificationPreferences,
    ProfilePublic,
    ProfileUpdate,
    RegisterRequest,
)


router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger("giftregistry.auth")


class CookieOptions(TypedDict, total=False):
    samesite: str
    secure: bool


def _cookie_options() -> CookieOptions:
    """Lax cookies over HTTP locally, cross-site secure cookies elsewhere."""
    environment = (settings.environment or "local").lower()
    if environment in ("local", "test"):
        return {"samesite": "lax", "secure": False}
    return {"samesite": "none", "secure": True}


def _set_session_cookies(response: Response, user_id: int) -> None:
    response.set_cookie(
        "access_token",
        create_access_token(str(user_id)),
        httponly=True,
        max_age=settings.access_token_expire_minutes * 60,
        path="/",
        **_cookie_options(),
    )
    response.set_cookie(
        "refresh_token",
        create_refresh_token(str(user_id)),
        httponly=True,
        max_age=settings.refresh_token_expire_minutes * 60,
        path="/",
        **_cookie_options(),
    )


def serialize_profile(user: Profile) -> ProfilePublic:
    return ProfilePublic(
        id=user.id,
        email=user.email,
        full_name=user.full_name,
        first_name=user.first_name,
        last_name=user.last_name,
        display_name=profile_display_name(user),
        avatar_url=user.avatar_url,
        notification_preferences=NotificationPreferences(**get_preferences(user)),
        created_at=user.created_at,
    )


@router.post("/register", response_model=ProfilePublic, status_code=status.HTTP_201_CREATED)
async def register_user(
    payload: RegisterRequest,
    db: DbSessionDep,
    request: Request,
    response: Response,
) -> ProfilePublic:
    check_rate_limit(request, "register", max_requests=5, window_seconds=300)

    email = payload.email.lower()
    existing = await db.execute(select(Profile).where(Profile.email == email))
    if existing.scalar_one_or_none():
        raise BadRequest("Email already registered", field="email")

    user = Profile(
        email=email,
        hashed_password=get_password_hash(payload.password),
        full_name=payload.full_name,
        first_name=payload.first_name,
        last_name=payload.last_name,
        notification_preferences=default_notification_preferences(),
    )
    try:
        db.add(user)
        await db.commit()
        await db.refresh(user)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Auth register db error email=%s", email)
        raise InternalError("Failed to create account")

    _set_session_cookies(response, user.id)
    audit_register(request, user.id, user.email)
    return serialize_profile(user)


@router.post("/login", response_model=ProfilePublic)
async def login_user(
    payload: LoginRequest,
    response: Response,
    db: DbSessionDep,
    request: Request,
) -> ProfilePublic:
    check_rate_limit(
        request,
        "login",
        max_requests=settings.rate_limit_login_requests,
        window_seconds=60,
    )

    email = payload.email.lower()
    request_id = request.headers.get("X-Request-Id")
    try:
        result = await db.execute(select(Profile).where(Profile.email == email))
        user = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("Auth login db error id=%s email=%s", request_id, email)
        raise InternalError("Database unavailable")

    if not user or not verify_password(payload.password, user.hashed_password):
        reason = "user_not_found" if not user else "invalid_password"
        logger.info("Auth login failed id=%s email=%s reason=%s", request_id, email, reason)
        audit_login_failed(request, email, reason)
        raise Unauthorized("Invalid email or password")

    _set_session_cookies(response, user.id)
    audit_login_success(request, user.id, user.email)
    logger.info("Auth login success id=%s user_id=%s", request_id, user.id)
    return serialize_profile(user)


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout_user(request: Request, response: Response, current_user: OptionalUserDep) -> None:
    response.delete_cookie("access_token", path="/", **_cookie_options())
    response.delete_cookie("refresh_token", path="/", **_cookie_options())
    if current_user is not None:
        audit_log(AuditAction.LOGOUT, request=request, user_id=current_user.id)


@router.post("/refresh", status_code=status.HTTP_204_NO_CONTENT)
async def refresh_session(
    response: Response,
    refresh_token: str | None = Cookie(default=None, alias="refresh_token"),
) -> None:
    if not refresh_token:
        raise Unauthorized("Not authenticated")
    payload = decode_refresh_token(refresh_token)
    subject = payload.get("sub") if payload else None
    if not isinstance(subject, str) or not subject.isdigit():
        response.delete_cookie("refresh_token", path="/", **_cookie_options())
        raise Unauthorized("Invalid token")
    _set_session_cookies(response, int(subject))


@router.get("/me", response_model=ProfilePublic)
async def get_me(current_user: CurrentUserDep) -> ProfilePublic:
    return serialize_profile(current_user)


@router.put("/me", response_model=ProfilePublic)
async def update_me(
    payload: ProfileUpdate,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> ProfilePublic:
    data = payload.model_dump(exclude_unset=True)
    preferences = data.pop("notification_preferences", None)
    for field, value in data.items():
        setattr(current_user, field, value)
    if preferences is not None:
        # Reassign so the JSON column is flagged dirty.
        current_user.notification_preferences = {
            "in_app": bool(preferences["in_app"]),
            "email": bool(preferences["email"]),
        }
    try:
        await db.commit()
        await db.refresh(current_user)
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Profile update failed user_id=%s", current_user.id)
        raise InternalError("Failed to update profile")
    return serialize_profile(current_user)
