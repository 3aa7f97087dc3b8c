"""Payment processor client and webhook signature checks.

The processor speaks the Stripe REST dialect: form-encoded requests,
amounts in minor currency units, and webhooks signed with a
``Stripe-Signature: t=<unix>,v1=<hex>`` header.
"""
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
import hashlib
import hmac
import logging
import time
from typing import Any

import httpx

from giftregistry.core.config import settings
from giftregistry.core.errors import NotConfigured, UpstreamError

logger = logging.getLogger("giftregistry.payments")

SIGNATURE_HEADER = "Stripe-Signature"

# Currencies whose smallest unit is the whole unit.
ZERO_DECIMAL_CURRENCIES = frozenset(
    {"bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga", "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf"}
)


def _currency_exponent(currency: str) -> int:
    return 0 if currency.lower() in ZERO_DECIMAL_CURRENCIES else 2


def to_minor_units(amount: float | Decimal, currency: str) -> int:
    scaled = Decimal(str(amount)).scaleb(_currency_exponent(currency))
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: int, currency: str) -> float:
    return float(Decimal(int(amount)).scaleb(-_currency_exponent(currency)))


def compute_signature(payload: bytes, secret: str, timestamp: int) -> str:
    signed_payload = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed_payload, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    payload: bytes,
    header: str | None,
    secret: str,
    tolerance_seconds: int = 300,
    now: int | None = None,
) -> bool:
    """
    Check a ``Stripe-Signature`` header against the raw request body.

    The header carries a timestamp and one or more ``v1`` signatures; any
    matching signature is accepted as long as the timestamp is within
    ``tolerance_seconds`` of ``now``.
    """
    if not header or not secret:
        return False

    timestamp_raw = None
    signatures: list[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep:
            continue
        if key == "t":
            timestamp_raw = value
        elif key == "v1":
            signatures.append(value)

    if timestamp_raw is None or not signatures:
        return False

    # Reject stale or malformed timestamps to prevent replays.
    try:
        timestamp = int(timestamp_raw)
    except ValueError:
        return False
    current = int(time.time()) if now is None else now
    if abs(current - timestamp) > tolerance_seconds:
        return False

    expected = compute_signature(payload, secret, timestamp)
    return any(hmac.compare_digest(expected, sig) for sig in signatures)


@dataclass(frozen=True)
class PaymentIntent:
    id: str
    client_secret: str | None
    amount: int
    currency: str
    status: str | None = None


class PaymentClient:
    """Thin async client for the processor's payment-intent endpoint."""

    def __init__(
        self,
        secret_key: str,
        api_base: str = "https://api.stripe.com",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._secret_key = secret_key
        self._api_base = api_base.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def create_payment_intent(
        self,
        amount: float | Decimal,
        currency: str,
        metadata: dict[str, Any],
    ) -> PaymentIntent:
        minor_amount = to_minor_units(amount, currency)
        form: dict[str, str] = {
            "amount": str(minor_amount),
            "currency": currency.lower(),
            "automatic_payment_methods[enabled]": "true",
        }
        for key, value in metadata.items():
            if value is None:
                continue
            if isinstance(value, bool):
                value = "true" if value else "false"
            form[f"metadata[{key}]"] = str(value)

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                res = await client.post(
                    f"{self._api_base}/v1/payment_intents",
                    data=form,
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                )
                res.raise_for_status()
                data = res.json()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Payment intent request rejected status=%s body=%s",
                exc.response.status_code,
                exc.response.text[:500],
            )
            raise UpstreamError() from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("Payment intent request failed: %s", exc)
            raise UpstreamError() from exc

        intent_id = data.get("id")
        if not intent_id:
            logger.error("Payment intent response missing id: %s", data)
            raise UpstreamError()

        logger.info("Payment intent created id=%s amount=%s currency=%s", intent_id, minor_amount, currency)
        return PaymentIntent(
            id=intent_id,
            client_secret=data.get("client_secret"),
            amount=int(data.get("amount", minor_amount)),
            currency=str(data.get("currency", currency)).upper(),
            status=data.get("status"),
        )


def get_payment_client() -> PaymentClient:
    if not settings.payments_configured:
        raise NotConfigured("Payments are not configured")
    return PaymentClient(
        settings.payment_secret_key,
        api_base=settings.payment_api_base,
        timeout=settings.payment_api_timeout_seconds,
    )
