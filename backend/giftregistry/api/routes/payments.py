"""Paid contributions: payment-intent creation and the processor webhook.

A paid contribution is only recorded when the processor confirms it through
the webhook, never at intent creation, so each payment produces at most one
contribution row.
"""
import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request

from giftregistry.api.deps import DbSessionDep, OptionalUserDep
from giftregistry.core.audit import AuditAction, audit_contribution, audit_log
from giftregistry.core.config import settings
from giftregistry.core.contributions import (
    ContributionInput,
    DuplicateTransaction,
    ensure_contribution_allowed,
    find_by_transaction,
    load_item_in_registry,
    parse_amount,
    record_contribution,
)
from giftregistry.core.errors import BadRequest, NotConfigured, Unauthorized
from giftregistry.core.notifications import notify_contribution_received
from giftregistry.core.payments import (
    SIGNATURE_HEADER,
    PaymentClient,
    from_minor_units,
    get_payment_client,
    verify_webhook_signature,
)
from giftregistry.core.permissions import load_registry
from giftregistry.core.rate_limit import check_rate_limit
from giftregistry.models.models import Profile
from giftregistry.schemas.registry import PaymentIntentCreate, PaymentIntentPublic

router = APIRouter(prefix="/api", tags=["payments"])
logger = logging.getLogger("giftregistry.webhook")

SUCCEEDED_EVENT = "payment_intent.succeeded"
# Processor limit on a single metadata value.
METADATA_VALUE_LIMIT = 500


def _truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in ("1", "true", "yes", "on")


async def _metadata_user_id(db: DbSessionDep, raw: Any) -> int | None:
    """Profile id from metadata; unknown or malformed ids count as guests."""
    if raw in (None, ""):
        return None
    try:
        user_id = int(str(raw))
    except ValueError:
        logger.warning("Webhook metadata has malformed user_id=%r", raw)
        return None
    if await db.get(Profile, user_id) is None:
        logger.warning("Webhook metadata references missing profile user_id=%s", user_id)
        return None
    return user_id


@router.post("/create-payment-intent", response_model=PaymentIntentPublic)
async def create_payment_intent(
    payload: PaymentIntentCreate,
    request: Request,
    db: DbSessionDep,
    current_user: OptionalUserDep,
    client: PaymentClient = Depends(get_payment_client),
) -> PaymentIntentPublic:
    check_rate_limit(request, "payment_intent")

    contributor_id = current_user.id if current_user else None
    data = ContributionInput(
        gift_item_id=payload.gift_item_id,
        registry_id=payload.registry_id,
        amount=payload.amount,
        message=payload.message,
        contributor_name=payload.contributor_name,
        is_anonymous=payload.is_anonymous,
    )
    registry, access = await load_registry(db, payload.registry_id, current_user)
    ensure_contribution_allowed(registry, data, contributor_id, access)
    item = await load_item_in_registry(db, payload.gift_item_id, registry.id)
    amount = parse_amount(payload.amount)

    metadata = {
        "registry_id": registry.id,
        "gift_item_id": item.id,
        "contributor_name": (payload.contributor_name or "").strip()[:METADATA_VALUE_LIMIT] or None,
        "is_anonymous": payload.is_anonymous,
        "user_id": contributor_id,
        "message": (payload.message or "").strip()[:METADATA_VALUE_LIMIT] or None,
    }
    intent = await client.create_payment_intent(amount, registry.currency, metadata)
    audit_log(
        AuditAction.PAYMENT_INTENT_CREATE,
        request=request,
        user_id=contributor_id,
        details={
            "payment_intent_id": intent.id,
            "registry_id": registry.id,
            "gift_item_id": item.id,
            "amount": float(amount),
        },
    )
    return PaymentIntentPublic(
        client_secret=intent.client_secret,
        payment_intent_id=intent.id,
        amount=float(amount),
        currency=registry.currency,
    )


@router.post("/webhook")
async def payment_webhook(request: Request, db: DbSessionDep) -> dict[str, Any]:
    secret = settings.payment_webhook_secret
    if not secret:
        raise NotConfigured("Webhook signing secret is not configured")

    body = await request.body()
    if not verify_webhook_signature(
        body,
        request.headers.get(SIGNATURE_HEADER),
        secret,
        settings.payment_webhook_tolerance_seconds,
    ):
        logger.warning("Webhook signature verification failed")
        audit_log(AuditAction.WEBHOOK_REJECTED, request=request, success=False)
        raise Unauthorized("Invalid signature")

    try:
        event = json.loads(body)
    except ValueError:
        raise BadRequest("Invalid payload")
    if not isinstance(event, dict):
        raise BadRequest("Invalid payload")

    event_type = event.get("type")
    if event_type != SUCCEEDED_EVENT:
        logger.info("Webhook event ignored type=%s id=%s", event_type, event.get("id"))
        return {"received": True, "ignored": True}

    data_obj = event.get("data")
    intent = data_obj.get("object") if isinstance(data_obj, dict) else None
    intent_id = intent.get("id") if isinstance(intent, dict) else None
    if not intent_id or not isinstance(intent_id, str):
        raise BadRequest("Payment intent id missing", field="id")

    existing = await find_by_transaction(db, intent_id)
    if existing is not None:
        logger.info("Webhook duplicate payment_intent=%s contribution_id=%s", intent_id, existing.id)
        return {"received": True, "duplicate": True}

    metadata = intent.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}
    currency = str(intent.get("currency") or settings.default_currency)
    raw_amount = intent.get("amount_received") or intent.get("amount")
    try:
        amount = from_minor_units(int(raw_amount), currency)
    except (TypeError, ValueError):
        raise BadRequest("Amount must be a positive number", field="amount")

    contributor_id = await _metadata_user_id(db, metadata.get("user_id"))
    data = ContributionInput(
        gift_item_id=metadata.get("gift_item_id"),
        registry_id=metadata.get("registry_id"),
        amount=amount,
        message=metadata.get("message"),
        contributor_name=metadata.get("contributor_name"),
        is_anonymous=_truthy(metadata.get("is_anonymous")),
    )

    try:
        contribution = await record_contribution(db, data, contributor_id, transaction_id=intent_id)
    except DuplicateTransaction:
        return {"received": True, "duplicate": True}

    audit_contribution(
        request,
        contributor_id,
        contribution.id,
        contribution.gift_item_id,
        float(contribution.amount),
        payment_intent_id=intent_id,
    )
    audit_log(
        AuditAction.WEBHOOK_PROCESSED,
        request=request,
        details={"payment_intent_id": intent_id, "contribution_id": contribution.id},
    )

    contribution_id = contribution.id
    result = await notify_contribution_received(db, contribution)
    if not result:
        logger.warning("Webhook notification failed contribution_id=%s", contribution_id)

    return {"received": True, "contribution_id": contribution_id}
