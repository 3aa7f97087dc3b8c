"""In-app notifications with an optional email side channel.

Emitting is best-effort: the functions here log and report failure but never
raise, so the operation that triggered them (a contribution, a new gift item)
is never undone because a notification could not be written.

The notification row is written inside a savepoint so a failed insert only
discards that row. Callers should still read what they need from their own
objects before notifying; a failed commit rolls back the whole session.
"""
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftregistry.core import mailer
from giftregistry.core.config import settings
from giftregistry.core.contributors import profile_display_name, resolve_display_name
from giftregistry.core.funding import compute_item_funding
from giftregistry.models.models import (
    Contribution,
    GiftItem,
    Notification,
    Profile,
    Registry,
    default_notification_preferences,
)

logger = logging.getLogger("giftregistry.notifications")


class NotificationType(str, Enum):
    CONTRIBUTION_RECEIVED = "contribution_received"
    GIFT_ITEM_ADDED = "gift_item_added"
    REGISTRY_UPDATE = "registry_update"


@dataclass(frozen=True)
class NotificationContent:
    registry_id: int | None = None
    gift_item_id: int | None = None
    contribution_id: int | None = None
    contributor_name: str | None = None
    amount: float | None = None
    message: str | None = None


@dataclass(frozen=True)
class EmitResult:
    ok: bool
    notification_id: int | None = None
    emailed: bool = False
    skipped: bool = False

    def __bool__(self) -> bool:
        return self.ok


def get_preferences(profile: Any) -> dict[str, bool]:
    """Stored preferences merged over defaults; non-boolean values are ignored."""
    prefs = default_notification_preferences()
    stored = getattr(profile, "notification_preferences", None)
    if isinstance(stored, dict):
        for key, value in stored.items():
            if key in prefs and isinstance(value, bool):
                prefs[key] = value
    return prefs


def registry_link(registry_id: int) -> str:
    return f"{settings.frontend_url}/registry/{registry_id}"


async def _safe_rollback(db: AsyncSession) -> None:
    try:
        await db.rollback()
    except SQLAlchemyError:
        logger.warning("Rollback after notification failure also failed", exc_info=True)


async def emit_notification(
    db: AsyncSession,
    recipient: Profile,
    event_type: NotificationType | str,
    content: NotificationContent,
    send_email: Callable[[], bool] | None = None,
) -> EmitResult:
    type_value = event_type.value if isinstance(event_type, NotificationType) else str(event_type)
    recipient_id = recipient.id
    recipient_email = recipient.email
    prefs = get_preferences(recipient)
    if not prefs["in_app"] and not prefs["email"]:
        logger.info("Notifications disabled recipient_id=%s type=%s", recipient_id, type_value)
        return EmitResult(ok=True, skipped=True)

    notification_id = None
    if prefs["in_app"]:
        try:
            async with db.begin_nested():
                notification = Notification(
                    user_id=recipient_id,
                    type=type_value,
                    registry_id=content.registry_id,
                    gift_item_id=content.gift_item_id,
                    contribution_id=content.contribution_id,
                    contributor_name=content.contributor_name,
                    amount=content.amount,
                    message=content.message,
                    read=False,
                )
                db.add(notification)
        except SQLAlchemyError:
            logger.exception(
                "Failed to insert notification recipient_id=%s type=%s",
                recipient_id,
                type_value,
            )
            return EmitResult(ok=False)
        try:
            await db.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to commit notification recipient_id=%s type=%s",
                recipient_id,
                type_value,
            )
            await _safe_rollback(db)
            return EmitResult(ok=False)
        notification_id = notification.id

    emailed = False
    if send_email is not None and prefs["email"] and recipient_email:
        try:
            emailed = send_email()
        except Exception:
            logger.exception("Failed to queue notification email recipient_id=%s", recipient_id)

    logger.info(
        "Notification emitted recipient_id=%s type=%s notification_id=%s emailed=%s",
        recipient_id,
        type_value,
        notification_id,
        emailed,
    )
    return EmitResult(ok=True, notification_id=notification_id, emailed=emailed)


async def notify_contribution_received(
    db: AsyncSession,
    contribution: Contribution,
) -> EmitResult:
    """Notify the registry owner (and thank an authenticated contributor)."""
    contribution_id = contribution.id
    message = contribution.message
    amount = float(contribution.amount)
    try:
        registry = await db.get(Registry, contribution.registry_id)
        gift_item = await db.get(GiftItem, contribution.gift_item_id)
        if registry is None or gift_item is None:
            logger.warning(
                "Contribution notification skipped, registry/item missing contribution_id=%s",
                contribution_id,
            )
            return EmitResult(ok=False)
        owner = await db.get(Profile, registry.user_id)
        contributor = None
        if contribution.user_id is not None:
            contributor = await db.get(Profile, contribution.user_id)
        item_contributions = list(
            (
                await db.execute(
                    select(Contribution).where(Contribution.gift_item_id == gift_item.id)
                )
            ).scalars()
        )
    except SQLAlchemyError:
        logger.exception("Failed to load contribution context contribution_id=%s", contribution_id)
        await _safe_rollback(db)
        return EmitResult(ok=False)

    if owner is None:
        logger.warning("Registry owner missing registry_id=%s", registry.id)
        return EmitResult(ok=False)

    display_name = resolve_display_name(contribution, contributor)
    funding = compute_item_funding(gift_item, item_contributions)
    registry_id = registry.id
    registry_title = registry.title
    currency = registry.currency
    gift_item_id = gift_item.id
    gift_item_name = gift_item.name
    owner_email = owner.email
    link = registry_link(registry_id)

    thank_to = None
    if contributor is not None and contributor.email and get_preferences(contributor)["email"]:
        thank_to = (contributor.email, profile_display_name(contributor))

    def _email_owner() -> bool:
        return mailer.send_contribution_received_email(
            to_email=owner_email,
            registry_title=registry_title,
            gift_item_name=gift_item_name,
            contributor_name=display_name,
            amount=amount,
            currency=currency,
            total_contributed=funding.contributed,
            target=funding.target,
            percent_funded=funding.percent_funded,
            registry_link=link,
            message=message,
        )

    result = await emit_notification(
        db,
        owner,
        NotificationType.CONTRIBUTION_RECEIVED,
        NotificationContent(
            registry_id=registry_id,
            gift_item_id=gift_item_id,
            contribution_id=contribution_id,
            contributor_name=display_name,
            amount=amount,
            message=message,
        ),
        send_email=_email_owner,
    )

    if thank_to is not None:
        to_email, contributor_name = thank_to
        try:
            mailer.send_thank_you_email(
                to_email=to_email,
                contributor_name=contributor_name,
                amount=amount,
                currency=currency,
                registry_title=registry_title,
                registry_link=link,
            )
        except Exception:
            logger.exception("Failed to queue thank-you email contribution_id=%s", contribution_id)

    return result


async def notify_gift_item_added(
    db: AsyncSession,
    registry: Registry,
    gift_item: GiftItem,
    added_by: Profile,
) -> EmitResult | None:
    """Tell the owner when a co-owner adds an item. Owners adding items get nothing."""
    if added_by.id == registry.user_id:
        return None
    registry_id = registry.id
    registry_title = registry.title
    gift_item_id = gift_item.id
    gift_item_name = gift_item.name
    added_by_name = profile_display_name(added_by)
    try:
        owner = await db.get(Profile, registry.user_id)
    except SQLAlchemyError:
        logger.exception("Failed to load registry owner registry_id=%s", registry_id)
        await _safe_rollback(db)
        return EmitResult(ok=False)
    if owner is None:
        return EmitResult(ok=False)
    owner_email = owner.email

    def _email_owner() -> bool:
        return mailer.send_gift_item_added_email(
            to_email=owner_email,
            registry_title=registry_title,
            gift_item_name=gift_item_name,
            added_by=added_by_name,
            registry_link=registry_link(registry_id),
        )

    return await emit_notification(
        db,
        owner,
        NotificationType.GIFT_ITEM_ADDED,
        NotificationContent(
            registry_id=registry_id,
            gift_item_id=gift_item_id,
            contributor_name=added_by_name,
        ),
        send_email=_email_owner,
    )
