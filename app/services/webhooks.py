"""Inbound payment notifications.

Each provider signs its callbacks differently and shapes its payload
differently. This module turns a raw request body into a ``PaymentEvent``
after the signature has been checked; nothing here touches the database.
"""
import hashlib
import hmac
import json
import logging
import math
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from app.config import settings
from app.core.errors import PayloadError, SignatureVerificationError
from app.models.all_models import TransactionStatus

logger = logging.getLogger(__name__)

PAYSTACK = "paystack"
MPESA = "mpesa"

SIGNATURE_HEADERS = {
    PAYSTACK: "x-paystack-signature",
    MPESA: "x-callback-signature",
}
_DIGESTS = {
    PAYSTACK: hashlib.sha512,
    MPESA: hashlib.sha256,
}


class PaymentEvent(BaseModel):
    """A provider-agnostic payment outcome keyed by transaction reference."""
    reference: str
    status: TransactionStatus
    amount: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


def normalize_provider(provider: str) -> str:
    name = (provider or "").strip().lower().replace("-", "")
    if name not in SIGNATURE_HEADERS:
        raise PayloadError(f"Unknown payment provider: {provider!r}")
    return name


def signature_header(provider: str) -> Optional[str]:
    return SIGNATURE_HEADERS.get((provider or "").strip().lower().replace("-", ""))


def _secret_for(provider: str) -> str:
    if provider == PAYSTACK:
        return settings.PAYSTACK_SECRET_KEY
    return settings.MPESA_CALLBACK_SECRET


def sign(provider: str, body: bytes, secret: str) -> str:
    """Hex HMAC of ``body`` the way ``provider`` computes it."""
    return hmac.new(secret.encode("utf-8"), body, _DIGESTS[normalize_provider(provider)]).hexdigest()


def verify_signature(provider: str, body: bytes, signature: Optional[str]) -> None:
    """Reject the callback unless its HMAC matches the configured secret.

    Fails closed: a missing secret or header is treated as a bad signature.
    """
    provider = normalize_provider(provider)
    secret = _secret_for(provider)
    if not secret:
        logger.error("Webhook secret for %s is not configured; rejecting callback", provider)
        raise SignatureVerificationError("Webhook signature cannot be verified")
    if not signature:
        raise SignatureVerificationError("Missing webhook signature")

    expected = sign(provider, body, secret)
    if not hmac.compare_digest(expected.encode("utf-8"), signature.strip().lower().encode("utf-8")):
        raise SignatureVerificationError("Invalid webhook signature")


def _load(body: bytes) -> Dict[str, Any]:
    try:
        payload = json.loads(body)
    except (TypeError, ValueError):
        raise PayloadError("Webhook body is not valid JSON")
    if not isinstance(payload, dict):
        raise PayloadError("Webhook body must be a JSON object")
    return payload


def _amount(value, field: str) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise PayloadError(f"Webhook {field} is missing or not a number")
    if not math.isfinite(amount):
        raise PayloadError(f"Webhook {field} is not a finite number")
    return amount


def parse_paystack(payload: Dict[str, Any]) -> Optional[PaymentEvent]:
    event = payload.get("event")
    data = payload.get("data") or {}
    if event not in ("charge.success", "charge.failed"):
        return None
    if not isinstance(data, dict) or not data.get("reference"):
        raise PayloadError("Paystack event has no transaction reference")

    metadata = data.get("metadata")
    if not isinstance(metadata, dict):
        metadata = {}

    if event == "charge.success":
        # kobo/cents on the wire
        return PaymentEvent(
            reference=str(data["reference"]),
            status=TransactionStatus.SUCCESS,
            amount=_amount(data.get("amount"), "amount") / 100,
            metadata=metadata,
        )
    return PaymentEvent(reference=str(data["reference"]), status=TransactionStatus.FAILED, metadata=metadata)


def parse_mpesa(payload: Dict[str, Any]) -> Optional[PaymentEvent]:
    body = payload.get("Body")
    callback = body.get("stkCallback") if isinstance(body, dict) else None
    if not isinstance(callback, dict):
        raise PayloadError("M-Pesa callback has no stkCallback body")
    reference = callback.get("CheckoutRequestID")
    if not reference:
        raise PayloadError("M-Pesa callback has no CheckoutRequestID")

    if str(callback.get("ResultCode")) != "0":
        logger.info("M-Pesa payment %s failed: %s", reference, callback.get("ResultDesc"))
        return PaymentEvent(reference=str(reference), status=TransactionStatus.FAILED)

    callback_metadata = callback.get("CallbackMetadata") or {}
    if not isinstance(callback_metadata, dict):
        raise PayloadError("M-Pesa CallbackMetadata must be an object")
    items = callback_metadata.get("Item") or []
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise PayloadError("M-Pesa CallbackMetadata items must be objects")
    amount = next((item.get("Value") for item in items if item.get("Name") == "Amount"), None)
    receipt = next((item.get("Value") for item in items if item.get("Name") == "MpesaReceiptNumber"), None)
    metadata = {"mpesaReceipt": receipt} if receipt else {}
    return PaymentEvent(
        reference=str(reference),
        status=TransactionStatus.SUCCESS,
        amount=_amount(amount, "Amount"),
        metadata=metadata,
    )


_PARSERS = {
    PAYSTACK: parse_paystack,
    MPESA: parse_mpesa,
}


def parse_event(provider: str, body: bytes) -> Optional[PaymentEvent]:
    """Normalised event, or None for notifications that carry no payment outcome."""
    provider = normalize_provider(provider)
    return _PARSERS[provider](_load(body))
