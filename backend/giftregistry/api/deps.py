from typing import Annotated
import logging

from fastapi import Cookie, Depends, Request
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftregistry.core.errors import InternalError, Unauthorized
from giftregistry.core.security import decode_access_token
from giftregistry.db.session import get_db
from giftregistry.models.models import Profile


DbSessionDep = Annotated[AsyncSession, Depends(get_db)]
logger = logging.getLogger("giftregistry.auth")


def _extract_token(request: Request, access_token: str | None) -> str | None:
    if access_token:
        return access_token
    auth_header = request.headers.get("Authorization")
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header.removeprefix("Bearer ").strip() or None
    return None


def _token_subject(token: str) -> int | None:
    payload = decode_access_token(token)
    if not payload or "sub" not in payload:
        return None
    try:
        return int(payload["sub"])
    except (TypeError, ValueError):
        return None


async def get_current_user(
    request: Request,
    db: DbSessionDep,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> Profile:
    token = _extract_token(request, access_token)
    if not token:
        logger.info(
            "Auth token missing path=%s ip=%s",
            request.url.path,
            request.client.host if request.client else None,
        )
        raise Unauthorized("Not authenticated")

    user_id = _token_subject(token)
    if user_id is None:
        logger.info("Auth token invalid path=%s", request.url.path)
        raise Unauthorized("Invalid token")

    try:
        result = await db.execute(select(Profile).where(Profile.id == user_id))
        user = result.scalar_one_or_none()
    except SQLAlchemyError:
        logger.exception("get_current_user: DB error when fetching user_id=%s", user_id)
        raise InternalError("Database error")

    if not user:
        logger.info("Auth user missing path=%s user_id=%s", request.url.path, user_id)
        raise Unauthorized("User not found")

    return user


async def get_optional_user(
    request: Request,
    db: DbSessionDep,
    access_token: str | None = Cookie(default=None, alias="access_token"),
) -> Profile | None:
    token = _extract_token(request, access_token)
    if not token:
        return None
    user_id = _token_subject(token)
    if user_id is None:
        return None
    result = await db.execute(select(Profile).where(Profile.id == user_id))
    return result.scalar_one_or_none()


CurrentUserDep = Annotated[Profile, Depends(get_current_user)]
OptionalUserDep = Annotated[Profile | None, Depends(get_optional_user)]
