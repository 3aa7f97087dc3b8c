"""Contribution recording shared by direct submissions and the payment webhook.

The recorder only validates and persists. Registry policy (privacy, anonymous
contributions) is checked by the interactive entry points before they call
it, and notifications are triggered by the caller after it returns.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
import logging
from typing import Any

from fastapi import status
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from giftregistry.core.contributors import ANONYMOUS_NAME
from giftregistry.core.errors import ApiError, BadRequest, InternalError, NotFound
from giftregistry.core.permissions import RegistryAccess, can_view
from giftregistry.models.models import (
    Contribution,
    ContributionStatusEnum,
    GiftItem,
    Registry,
    RegistryStatusEnum,
)

logger = logging.getLogger("giftregistry.contributions")

_CENT = Decimal("0.01")


class DuplicateTransaction(ApiError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Contribution already recorded for this payment"


@dataclass
class ContributionInput:
    gift_item_id: Any
    registry_id: Any
    amount: Any
    message: str | None = None
    contributor_name: str | None = None
    is_anonymous: bool = False


def parse_amount(value: Any) -> Decimal:
    """Positive amount rounded to cents, or ``BadRequest`` on the amount field."""
    if value is None or isinstance(value, bool):
        raise BadRequest("Amount must be a positive number", field="amount")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise BadRequest("Amount must be a positive number", field="amount")
    if not amount.is_finite():
        raise BadRequest("Amount must be a positive number", field="amount")
    amount = amount.quantize(_CENT, rounding=ROUND_HALF_UP)
    if amount <= 0:
        raise BadRequest("Amount must be a positive number", field="amount")
    return amount


def _parse_id(value: Any, field: str) -> int:
    if value is None or value == "" or isinstance(value, bool):
        raise BadRequest(f"{field} is required", field=field)
    try:
        parsed = int(str(value).strip())
    except ValueError:
        raise BadRequest(f"{field} must be an integer", field=field)
    if parsed <= 0:
        raise BadRequest(f"{field} must be an integer", field=field)
    return parsed


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def resolve_contributor_identity(
    payload: ContributionInput,
    contributor_id: int | None,
) -> tuple[int | None, str | None]:
    """Authenticated, non-anonymous contributors are stored by reference only."""
    if contributor_id is not None and not payload.is_anonymous:
        return contributor_id, None
    return None, _clean_text(payload.contributor_name) or ANONYMOUS_NAME


def is_anonymous_contribution(payload: ContributionInput, contributor_id: int | None) -> bool:
    if payload.is_anonymous:
        return True
    return contributor_id is None and _clean_text(payload.contributor_name) is None


def ensure_contribution_allowed(
    registry: Registry,
    payload: ContributionInput,
    contributor_id: int | None,
    access: RegistryAccess,
) -> None:
    if not can_view(registry, access):
        raise NotFound("Registry not found")
    if registry.status == RegistryStatusEnum.ARCHIVED.value:
        raise BadRequest("This registry is no longer accepting contributions")
    if not registry.allow_anonymous and is_anonymous_contribution(payload, contributor_id):
        raise BadRequest(
            "This registry does not accept anonymous contributions",
            field="contributor_name",
        )


async def load_item_in_registry(
    db: AsyncSession,
    gift_item_id: int,
    registry_id: int,
) -> GiftItem:
    item = (
        await db.execute(select(GiftItem).where(GiftItem.id == gift_item_id))
    ).scalar_one_or_none()
    if item is None or item.registry_id != registry_id:
        raise NotFound("Gift item not found in this registry")
    return item


async def find_by_transaction(db: AsyncSession, transaction_id: str) -> Contribution | None:
    return (
        await db.execute(
            select(Contribution).where(Contribution.payment_intent_id == transaction_id)
        )
    ).scalar_one_or_none()


async def record_contribution(
    db: AsyncSession,
    payload: ContributionInput,
    contributor_id: int | None,
    *,
    transaction_id: str | None = None,
) -> Contribution:
    gift_item_id = _parse_id(payload.gift_item_id, "gift_item_id")
    registry_id = _parse_id(payload.registry_id, "registry_id")
    amount = parse_amount(payload.amount)

    try:
        await load_item_in_registry(db, gift_item_id, registry_id)
    except SQLAlchemyError:
        logger.exception("Failed to load gift item %s", gift_item_id)
        raise InternalError("Failed to record contribution")

    user_id, contributor_name = resolve_contributor_identity(payload, contributor_id)
    contribution = Contribution(
        gift_item_id=gift_item_id,
        registry_id=registry_id,
        user_id=user_id,
        contributor_name=contributor_name,
        is_anonymous=bool(payload.is_anonymous),
        amount=amount,
        message=_clean_text(payload.message),
        payment_intent_id=transaction_id,
        status=ContributionStatusEnum.COMPLETED.value,
    )

    try:
        db.add(contribution)
        await db.commit()
        await db.refresh(contribution)
    except IntegrityError:
        await db.rollback()
        if transaction_id and await find_by_transaction(db, transaction_id) is not None:
            logger.info("Concurrent duplicate for transaction %s", transaction_id)
            raise DuplicateTransaction()
        logger.exception("Integrity error recording contribution for item %s", gift_item_id)
        raise InternalError("Failed to record contribution")
    except SQLAlchemyError:
        await db.rollback()
        logger.exception("Failed to record contribution for item %s", gift_item_id)
        raise InternalError("Failed to record contribution")

    logger.info(
        "Contribution recorded id=%s item=%s registry=%s amount=%s transaction=%s",
        contribution.id,
        gift_item_id,
        registry_id,
        amount,
        transaction_id,
    )
    return contribution
