import logging
from typing import Any

from fastapi import APIRouter, Query, Request, status
from sqlalchemy import func, select, update

from giftregistry.api.deps import CurrentUserDep, DbSessionDep
from giftregistry.core import mailer
from giftregistry.core.errors import InternalError, NotFound
from giftregistry.core.notifications import (
    NotificationContent,
    emit_notification,
    registry_link,
)
from giftregistry.core.permissions import load_registry
from giftregistry.core.rate_limit import check_rate_limit
from giftregistry.models.models import Contribution, GiftItem, Notification, Profile
from giftregistry.schemas.registry import (
    NotificationList,
    NotificationPublic,
    NotifyRequest,
    NotifyResponse,
)

router = APIRouter(prefix="/api", tags=["notifications"])
logger = logging.getLogger("giftregistry.notifications")


def _summary(payload: NotifyRequest, registry_title: str, item_name: str | None) -> str:
    parts = [f"New activity on {registry_title}"]
    if payload.contributor_name:
        parts.append(f"from {payload.contributor_name}")
    if item_name:
        parts.append(f"for {item_name}")
    summary = " ".join(parts) + "."
    if payload.message:
        summary += f" {payload.message}"
    return summary


@router.post("/notify", response_model=NotifyResponse)
async def notify_registry_owner(
    payload: NotifyRequest,
    request: Request,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> NotifyResponse:
    """Send a notification to the owner of a registry the caller can see."""
    check_rate_limit(request, "notify")

    registry, _ = await load_registry(db, payload.registry_id, current_user)
    item_name = None
    if payload.gift_item_id is not None:
        item = await db.get(GiftItem, payload.gift_item_id)
        if item is None or item.registry_id != registry.id:
            raise NotFound("Gift item not found in this registry")
        item_name = item.name
    if payload.contribution_id is not None:
        contribution = await db.get(Contribution, payload.contribution_id)
        if contribution is None or contribution.registry_id != registry.id:
            raise NotFound("Contribution not found in this registry")

    owner = await db.get(Profile, registry.user_id)
    if owner is None:
        raise NotFound("Registry owner not found")

    summary = _summary(payload, registry.title, item_name)
    result = await emit_notification(
        db,
        owner,
        payload.type,
        NotificationContent(
            registry_id=registry.id,
            gift_item_id=payload.gift_item_id,
            contribution_id=payload.contribution_id,
            contributor_name=payload.contributor_name,
            amount=payload.amount,
            message=payload.message,
        ),
        send_email=lambda: mailer.send_registry_update_email(
            owner.email,
            registry.title,
            summary,
            registry_link(registry.id),
        ),
    )
    if not result:
        raise InternalError("Failed to create notification")
    if result.skipped:
        return NotifyResponse(sent=False, message="Notifications disabled")
    return NotifyResponse(
        sent=True,
        notification_id=result.notification_id,
        emailed=result.emailed,
        message="Notification created successfully",
    )


async def _get_own_notification(db: DbSessionDep, notification_id: int, user: Profile) -> Notification:
    notification = (
        await db.execute(
            select(Notification).where(
                Notification.id == notification_id,
                Notification.user_id == user.id,
            )
        )
    ).scalar_one_or_none()
    if notification is None:
        raise NotFound("Notification not found")
    return notification


@router.get("/notifications", response_model=NotificationList)
async def list_notifications(
    db: DbSessionDep,
    current_user: CurrentUserDep,
    unread_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=200),
) -> NotificationList:
    query = select(Notification).where(Notification.user_id == current_user.id)
    if unread_only:
        query = query.where(Notification.read.is_(False))
    result = await db.execute(
        query.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    )
    unread_count = (
        await db.execute(
            select(func.count(Notification.id)).where(
                Notification.user_id == current_user.id,
                Notification.read.is_(False),
            )
        )
    ).scalar_one()
    return NotificationList(
        items=[NotificationPublic.model_validate(n) for n in result.scalars()],
        unread_count=int(unread_count),
    )


@router.post("/notifications/read-all")
async def mark_all_read(db: DbSessionDep, current_user: CurrentUserDep) -> dict[str, Any]:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == current_user.id, Notification.read.is_(False))
        .values(read=True)
    )
    await db.commit()
    return {"updated": result.rowcount or 0}


@router.post("/notifications/{notification_id}/read", response_model=NotificationPublic)
async def mark_read(
    notification_id: int,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> NotificationPublic:
    notification = await _get_own_notification(db, notification_id, current_user)
    notification.read = True
    await db.commit()
    await db.refresh(notification)
    return NotificationPublic.model_validate(notification)


@router.delete("/notifications/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: int,
    db: DbSessionDep,
    current_user: CurrentUserDep,
) -> None:
    notification = await _get_own_notification(db, notification_id, current_user)
    await db.delete(notification)
    await db.commit()
