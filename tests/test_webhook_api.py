import json

import pytest

from app.models.all_models import AuditLog, PaymentStatus, Transaction, TransactionStatus, Visit, VisitStage
from app.services import payments
from app.services.webhooks import sign
from tests.conftest import MPESA_SECRET, PAYSTACK_SECRET

WEBHOOK = "/api/v1/payments/webhook"


def post_paystack(client, payload, secret=PAYSTACK_SECRET, signature=None):
    raw = json.dumps(payload).encode()
    return client.post(
        f"{WEBHOOK}/paystack",
        content=raw,
        headers={"x-paystack-signature": signature or sign("paystack", raw, secret)},
    )


def charge(reference, amount_minor, event="charge.success"):
    return {"event": event, "data": {"reference": reference, "amount": amount_minor}}


@pytest.fixture
def billed(make_visit):
    return make_visit(stage=VisitStage.BILLING, labs=[("Malaria RDT", 350.0)])


@pytest.fixture
def pending(db, accountant, billed):
    return payments.initiate_visit_payment(db, accountant, billed.id, reference="txn_api_1")


def test_bad_signature_is_forbidden(client, pending, db, billed):
    response = post_paystack(client, charge("txn_api_1", 85000), secret="not-the-secret")

    assert response.status_code == 403
    db.expire_all()
    assert db.get(Visit, billed.id).payment_status == PaymentStatus.PENDING


def test_missing_signature_is_forbidden(client, pending):
    response = client.post(f"{WEBHOOK}/paystack", content=json.dumps(charge("txn_api_1", 85000)).encode())
    assert response.status_code == 403


def test_unknown_provider_is_rejected(client):
    response = client.post(f"{WEBHOOK}/stripe", content=b"{}", headers={"x-paystack-signature": "abc"})
    assert response.status_code == 400


def test_malformed_body_is_rejected(client):
    raw = b"{not json"
    response = client.post(f"{WEBHOOK}/paystack", content=raw,
                           headers={"x-paystack-signature": sign("paystack", raw, PAYSTACK_SECRET)})
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "invalid_payload"


def test_malformed_mpesa_body_is_rejected(client):
    raw = json.dumps({"Body": "oops"}).encode()
    response = client.post(f"{WEBHOOK}/mpesa", content=raw,
                           headers={"x-callback-signature": sign("mpesa", raw, MPESA_SECRET)})
    assert response.status_code == 400
    assert response.json()["detail"]["kind"] == "invalid_payload"


def test_unrelated_event_is_acknowledged_and_ignored(client):
    response = post_paystack(client, {"event": "subscription.create", "data": {}})
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_confirmation_settles_the_visit(client, db, pending, billed):
    response = post_paystack(client, charge("txn_api_1", 85000))

    assert response.status_code == 200
    assert response.json() == {"received": True, "status": "processed", "reference": "txn_api_1"}
    db.expire_all()
    visit = db.get(Visit, billed.id)
    assert visit.payment_status == PaymentStatus.PAID
    assert visit.stage == VisitStage.CLEARANCE


def test_redelivery_is_a_duplicate(client, pending):
    post_paystack(client, charge("txn_api_1", 85000))
    again = post_paystack(client, charge("txn_api_1", 85000))
    assert again.json()["status"] == "duplicate"


def test_mismatch_is_acknowledged_but_flagged(client, db, pending, billed):
    response = post_paystack(client, charge("txn_api_1", 50000))

    assert response.status_code == 200
    assert response.json()["status"] == "flagged"
    db.expire_all()
    assert db.get(Visit, billed.id).stage == VisitStage.BILLING
    txn = db.query(Transaction).filter_by(reference="txn_api_1").one()
    assert txn.status == TransactionStatus.PENDING
    assert txn.review_reason is not None
    assert db.query(AuditLog).filter_by(action="payment.flagged").count() == 1


def test_failed_charge_marks_transaction_failed(client, db, pending):
    response = post_paystack(client, charge("txn_api_1", 85000, event="charge.failed"))

    assert response.json()["status"] == "processed"
    db.expire_all()
    assert db.query(Transaction).filter_by(reference="txn_api_1").one().status == TransactionStatus.FAILED


def test_mpesa_callback(client, db, accountant, billed):
    payments.initiate_visit_payment(db, accountant, billed.id, provider="mpesa", reference="ws_CO_777")
    raw = json.dumps({"Body": {"stkCallback": {
        "CheckoutRequestID": "ws_CO_777",
        "ResultCode": 0,
        "ResultDesc": "The service request is processed successfully.",
        "CallbackMetadata": {"Item": [
            {"Name": "Amount", "Value": 850},
            {"Name": "MpesaReceiptNumber", "Value": "QKT7XH2P1A"},
        ]},
    }}}).encode()

    response = client.post(f"{WEBHOOK}/m-pesa", content=raw,
                           headers={"x-callback-signature": sign("mpesa", raw, MPESA_SECRET)})

    assert response.json()["status"] == "processed"
    db.expire_all()
    txn = db.query(Transaction).filter_by(reference="ws_CO_777").one()
    assert txn.meta["mpesaReceipt"] == "QKT7XH2P1A"


def test_flagged_transactions_are_listed_for_review(client, headers_for, accountant, pending):
    post_paystack(client, charge("txn_api_1", 50000))

    response = client.get("/api/v1/payments/transactions?flagged=true", headers=headers_for(accountant))
    assert response.status_code == 200
    assert [txn["reference"] for txn in response.json()] == ["txn_api_1"]
