"""Gift item reservations.

A guest can hold an item for a fixed window so two people do not buy the same
thing. The hold lives on the item row (``reserved_by`` plus
``reservation_expires_at``); an expired hold counts as no hold at all and is
overwritten by the next reservation.
"""
from datetime import datetime, timedelta, timezone
from typing import Any

from giftregistry.core.config import settings
from giftregistry.core.errors import BadRequest, Forbidden


def _utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def active_holder(item: Any, now: datetime | None = None) -> int | None:
    """Profile id holding ``item`` right now, or None when free or expired."""
    holder = getattr(item, "reserved_by", None)
    expires_at = _utc(getattr(item, "reservation_expires_at", None))
    if holder is None or expires_at is None:
        return None
    now = now or datetime.now(timezone.utc)
    return holder if expires_at > now else None


def reserve(item: Any, profile_id: int, *, is_manager: bool, now: datetime | None = None) -> datetime:
    """Place a hold for ``profile_id`` and return when it expires."""
    if is_manager:
        raise BadRequest("Registry managers cannot reserve their own gift items")
    if item.is_purchased:
        raise BadRequest("Gift item already purchased")
    now = now or datetime.now(timezone.utc)
    if active_holder(item, now) is not None:
        raise BadRequest("Gift item already reserved")
    expires_at = now + timedelta(hours=settings.reservation_hours)
    item.reserved_by = profile_id
    item.reservation_expires_at = expires_at
    return expires_at


def release(item: Any, profile_id: int, now: datetime | None = None) -> None:
    holder = active_holder(item, now)
    if holder is None:
        raise BadRequest("Gift item is not reserved")
    if holder != profile_id:
        raise Forbidden("Only the person who reserved this item can cancel the reservation")
    item.reserved_by = None
    item.reservation_expires_at = None
