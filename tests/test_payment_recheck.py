"""Bulk payment recheck: gateway mapping, failure isolation and event stream."""

import httpx
import pytest
from sqlalchemy import select

from welfarehub.common.errors import ExternalServiceError
from welfarehub.services.donations.gateway import RazorpayGateway
from welfarehub.services.donations.models import Donation, PaymentRecheck
from welfarehub.services.donations.service import PaymentRecheckService

GATEWAY_STATUSES = {"pay_captured": "captured", "pay_failed": "failed", "pay_created": "created"}


def fake_razorpay(request: httpx.Request) -> httpx.Response:
    payment_id = request.url.path.rsplit("/", 1)[-1]
    if payment_id == "pay_slow":
        raise httpx.ReadTimeout("timed out", request=request)
    if payment_id == "pay_busy":
        return httpx.Response(429, json={"error": {"code": "RATE_LIMITED"}})
    if payment_id not in GATEWAY_STATUSES:
        return httpx.Response(404, json={"error": {"code": "BAD_REQUEST_ERROR"}})
    return httpx.Response(200, json={"id": payment_id, "status": GATEWAY_STATUSES[payment_id]})


@pytest.fixture
def gateway():
    return RazorpayGateway(
        key_id="rzp_test_key",
        key_secret="secret",
        base_url="https://razorpay.test",
        timeout=2.0,
        transport=httpx.MockTransport(fake_razorpay),
    )


@pytest.fixture
def rechecks(session_factory, gateway):
    return PaymentRecheckService(session_factory, gateway=gateway)


@pytest.fixture
def add_donation(session_factory):
    def _add(donation_id, payment_id, status="pending"):
        with session_factory() as db:
            db.add(
                Donation(
                    donation_id=donation_id,
                    amount_paise=50_000,
                    currency="INR",
                    status=status,
                    payment_verified=False,
                    razorpay_payment_id=payment_id,
                )
            )
            db.commit()

    return _add


def test_gateway_classifies_failures(gateway):
    assert gateway.fetch_payment("pay_captured")["status"] == "captured"
    for payment_id, code in [("pay_missing", "NOT_FOUND"), ("pay_slow", "TIMEOUT"), ("pay_busy", "RATE_LIMITED")]:
        with pytest.raises(ExternalServiceError) as excinfo:
            gateway.fetch_payment(payment_id)
        assert excinfo.value.code == code


def test_gateway_without_credentials_fails_fast():
    with pytest.raises(ExternalServiceError) as excinfo:
        RazorpayGateway(key_id="", key_secret="").fetch_payment("pay_captured")
    assert excinfo.value.code == "NOT_CONFIGURED"


def test_captured_payment_completes_and_verifies(rechecks, add_donation, session_factory, admin):
    add_donation("d1", "pay_captured")

    result = rechecks.recheck_one("d1", admin.user_id)

    assert result.recheck_success
    assert (result.previous_status, result.current_status) == ("pending", "completed")
    with session_factory() as db:
        donation = db.get(Donation, "d1")
        assert donation.payment_verified is True
        assert donation.payment_verified_at is not None
        audit = db.execute(select(PaymentRecheck)).scalar_one()
        assert audit.gateway_status == "captured"
        assert audit.performed_by == admin.user_id


def test_bulk_stream_isolates_failures_and_keeps_order(rechecks, add_donation, session_factory, admin):
    """Five donations, two of which cannot be rechecked."""

    add_donation("d1", "pay_captured")
    add_donation("d2", None)
    add_donation("d3", "pay_failed")
    add_donation("d4", "pay_slow")
    add_donation("d5", "pay_created", status="failed")
    ids = ["d1", "d2", "d3", "missing", "d4", "d5"]

    events = list(rechecks.iter_recheck(ids, admin.user_id))

    assert events[0] == {
        "type": "progress",
        "completed": 0,
        "total": 6,
        "message": "Starting bulk payment recheck...",
    }
    progress = [event for event in events if event["type"] == "progress"]
    assert [event["completed"] for event in progress] == [0, 1, 2, 3, 4, 5, 6]

    final = events[-1]
    assert final["type"] == "complete"
    assert final["summary"] == {"total": 6, "successful": 3, "failed": 3}
    results = final["results"]
    assert [result["donationId"] for result in results] == ids
    assert results[1] == {
        "donationId": "d2",
        "paymentId": "",
        "previousStatus": "unknown",
        "currentStatus": "error",
        "recheckSuccess": False,
        "errorMessage": "No Razorpay payment ID found",
    }
    assert results[3]["errorMessage"] == "Donation not found"
    assert results[4]["recheckSuccess"] is False
    assert results[4]["currentStatus"] == "pending"
    assert results[5]["currentStatus"] == "pending"

    with session_factory() as db:
        assert db.get(Donation, "d3").status == "failed"
        audits = db.execute(select(PaymentRecheck).order_by(PaymentRecheck.donation_id)).scalars().all()
        assert [(audit.donation_id, audit.success) for audit in audits] == [
            ("d1", True),
            ("d3", True),
            ("d4", False),
            ("d5", True),
        ]


def test_unexpected_error_becomes_failed_result(rechecks, add_donation, admin, monkeypatch):
    add_donation("d1", "pay_captured")

    def explode(payment_id):
        raise RuntimeError("socket closed")

    monkeypatch.setattr(rechecks.gateway, "fetch_payment", explode)
    events = list(rechecks.iter_recheck(["d1"], admin.user_id))
    assert events[-1]["summary"] == {"total": 1, "successful": 0, "failed": 1}
