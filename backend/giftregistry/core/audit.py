"""Audit logging for critical operations."""

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("giftregistry.audit")

_SENSITIVE_KEYS = ("password", "token", "secret", "key", "authorization", "signature")


class AuditAction(str, Enum):
    """Audit action types."""
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    REGISTER = "register"

    # Registry operations
    REGISTRY_CREATE = "registry_create"
    REGISTRY_UPDATE = "registry_update"
    REGISTRY_DELETE = "registry_delete"
    CO_OWNER_ADD = "co_owner_add"
    CO_OWNER_REMOVE = "co_owner_remove"

    # Gift item operations
    GIFT_ITEM_CREATE = "gift_item_create"
    GIFT_ITEM_UPDATE = "gift_item_update"
    GIFT_ITEM_DELETE = "gift_item_delete"
    GIFT_ITEM_RESERVE = "gift_item_reserve"
    GIFT_ITEM_RESERVATION_CANCEL = "gift_item_reservation_cancel"

    # Contributions and payments
    CONTRIBUTION_CREATE = "contribution_create"
    PAYMENT_INTENT_CREATE = "payment_intent_create"
    WEBHOOK_PROCESSED = "webhook_processed"
    WEBHOOK_REJECTED = "webhook_rejected"


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event as a single JSON line.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        user_id: ID of the user performing the action
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if request:
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()

        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in _SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    line = json.dumps(event, default=str, ensure_ascii=False)
    if success:
        logger.info("AUDIT: %s", line)
    else:
        logger.warning("AUDIT: %s", line)


def audit_login_success(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.LOGIN, request=request, user_id=user_id, details={"email": email})


def audit_login_failed(request: Request, email: str, reason: str) -> None:
    audit_log(
        AuditAction.LOGIN_FAILED,
        request=request,
        details={"email": email, "reason": reason},
        success=False,
    )


def audit_register(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.REGISTER, request=request, user_id=user_id, details={"email": email})


def audit_registry_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    registry_id: int,
    details: dict[str, Any] | None = None,
) -> None:
    """Log registry operation."""
    event_details: dict[str, Any] = {"registry_id": registry_id}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details)


def audit_gift_item_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    gift_item_id: int,
    registry_id: int,
) -> None:
    audit_log(
        action,
        request=request,
        user_id=user_id,
        details={"gift_item_id": gift_item_id, "registry_id": registry_id},
    )


def audit_contribution(
    request: Request | None,
    user_id: int | None,
    contribution_id: int,
    gift_item_id: int,
    amount: float,
    payment_intent_id: str | None = None,
) -> None:
    """Log contribution recording, direct or webhook-driven."""
    details: dict[str, Any] = {
        "contribution_id": contribution_id,
        "gift_item_id": gift_item_id,
        "amount": amount,
    }
    if payment_intent_id:
        details["payment_intent_id"] = payment_intent_id
    audit_log(AuditAction.CONTRIBUTION_CREATE, request=request, user_id=user_id, details=details)
