import json

import pytest

from app.config import settings
from app.core.errors import PayloadError, SignatureVerificationError
from app.models.all_models import TransactionStatus
from app.services import webhooks
from tests.conftest import MPESA_SECRET, PAYSTACK_SECRET


def body(payload):
    return json.dumps(payload).encode("utf-8")


def paystack_charge(reference="txn_123", amount=105000, event="charge.success", metadata=None):
    return body({"event": event, "data": {"reference": reference, "amount": amount, "metadata": metadata or {}}})


def stk_callback(code=0, amount=1050, checkout="ws_CO_001"):
    callback = {"CheckoutRequestID": checkout, "ResultCode": code, "ResultDesc": "done"}
    if code == 0:
        callback["CallbackMetadata"] = {"Item": [
            {"Name": "Amount", "Value": amount},
            {"Name": "MpesaReceiptNumber", "Value": "QAB12CD34"},
        ]}
    return body({"Body": {"stkCallback": callback}})


# ===== SIGNATURES =====

def test_paystack_signature_round_trip():
    raw = paystack_charge()
    webhooks.verify_signature("paystack", raw, webhooks.sign("paystack", raw, PAYSTACK_SECRET))


def test_mpesa_signature_uses_its_own_secret():
    raw = stk_callback()
    webhooks.verify_signature("mpesa", raw, webhooks.sign("mpesa", raw, MPESA_SECRET))
    with pytest.raises(SignatureVerificationError):
        webhooks.verify_signature("mpesa", raw, webhooks.sign("mpesa", raw, PAYSTACK_SECRET))


def test_tampered_body_is_rejected():
    signature = webhooks.sign("paystack", paystack_charge(amount=105000), PAYSTACK_SECRET)
    with pytest.raises(SignatureVerificationError, match="Invalid"):
        webhooks.verify_signature("paystack", paystack_charge(amount=5000), signature)


def test_missing_signature_is_rejected():
    with pytest.raises(SignatureVerificationError, match="Missing"):
        webhooks.verify_signature("paystack", paystack_charge(), None)


def test_unconfigured_secret_fails_closed(monkeypatch):
    monkeypatch.setattr(settings, "PAYSTACK_SECRET_KEY", "")
    raw = paystack_charge()
    with pytest.raises(SignatureVerificationError):
        webhooks.verify_signature("paystack", raw, webhooks.sign("paystack", raw, ""))


def test_non_ascii_signature_does_not_crash():
    with pytest.raises(SignatureVerificationError):
        webhooks.verify_signature("paystack", paystack_charge(), "sïgnature")


def test_unknown_provider():
    with pytest.raises(PayloadError, match="Unknown payment provider"):
        webhooks.verify_signature("stripe", b"{}", "abc")
    assert webhooks.signature_header("stripe") is None
    assert webhooks.signature_header("M-Pesa") == "x-callback-signature"


# ===== NORMALISATION =====

def test_paystack_success_amount_is_converted_from_minor_units():
    event = webhooks.parse_event("paystack", paystack_charge(metadata={"visitId": "v1"}))
    assert event.reference == "txn_123"
    assert event.status == TransactionStatus.SUCCESS
    assert event.amount == 1050.0
    assert event.metadata == {"visitId": "v1"}


def test_paystack_failure():
    event = webhooks.parse_event("paystack", paystack_charge(event="charge.failed"))
    assert event.status == TransactionStatus.FAILED
    assert event.amount is None


def test_paystack_unrelated_event_is_ignored():
    assert webhooks.parse_event("paystack", body({"event": "transfer.success", "data": {}})) is None


def test_paystack_string_metadata_is_dropped():
    event = webhooks.parse_event("paystack", body({"event": "charge.success", "data": {
        "reference": "txn_9", "amount": 1000, "metadata": ""}}))
    assert event.metadata == {}


@pytest.mark.parametrize("raw", [
    b"not json",
    b"[1, 2]",
    body({"event": "charge.success", "data": {"amount": 100}}),
    body({"event": "charge.success", "data": {"reference": "txn_1"}}),
    b'{"event": "charge.success", "data": {"reference": "txn_1", "amount": NaN}}',
    b'{"event": "charge.success", "data": {"reference": "txn_1", "amount": Infinity}}',
])
def test_malformed_paystack_payloads(raw):
    with pytest.raises(PayloadError):
        webhooks.parse_event("paystack", raw)


def test_mpesa_success():
    event = webhooks.parse_event("mpesa", stk_callback(amount=1050))
    assert event.reference == "ws_CO_001"
    assert event.status == TransactionStatus.SUCCESS
    assert event.amount == 1050.0
    assert event.metadata == {"mpesaReceipt": "QAB12CD34"}


def test_mpesa_cancelled_by_user_is_a_failure():
    event = webhooks.parse_event("mpesa", stk_callback(code=1032))
    assert event.status == TransactionStatus.FAILED


def test_mpesa_without_callback_body():
    with pytest.raises(PayloadError):
        webhooks.parse_event("mpesa", body({"Body": {}}))


@pytest.mark.parametrize("payload", [
    {"Body": "oops"},
    {"Body": ["stkCallback"]},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": 0, "CallbackMetadata": "oops"}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": 0,
                              "CallbackMetadata": {"Item": {"Name": "Amount", "Value": 10}}}}},
    {"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": 0,
                              "CallbackMetadata": {"Item": ["Amount", 10]}}}},
])
def test_malformed_mpesa_payloads(payload):
    with pytest.raises(PayloadError):
        webhooks.parse_event("mpesa", body(payload))


def test_mpesa_non_finite_amount():
    raw = (b'{"Body": {"stkCallback": {"CheckoutRequestID": "ws_CO_1", "ResultCode": 0,'
           b' "CallbackMetadata": {"Item": [{"Name": "Amount", "Value": NaN}]}}}}')
    with pytest.raises(PayloadError):
        webhooks.parse_event("mpesa", raw)
