"""HTTP surface: access control, error envelope and the NDJSON recheck stream."""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from welfarehub.services.audience import main as audience_main
from welfarehub.services.campaigns import main as campaigns_main
from welfarehub.services.donations import main as donations_main
from welfarehub.services.donations.gateway import RazorpayGateway
from welfarehub.services.donations.models import Donation

AS_ADMIN = {"x-user-id": "admin-1"}
AS_MODERATOR = {"x-user-id": "mod-1"}
AS_USER = {"x-user-id": "citizen-1"}


@pytest.fixture(autouse=True)
def staff(add_user):
    add_user(role="admin", user_id="admin-1")
    add_user(role="moderator", user_id="mod-1")
    add_user(role="user", user_id="citizen-1", location="Gorakhpur", email="citizen@example.org")


@pytest.fixture
def audience_client():
    return TestClient(audience_main.app)


@pytest.fixture
def campaigns_client():
    return TestClient(campaigns_main.app)


@pytest.fixture
def donations_client():
    return TestClient(donations_main.app)


def test_health(audience_client):
    assert audience_client.get("/health").json() == {"ok": True}


def test_missing_identity_is_unauthenticated(audience_client):
    resp = audience_client.post("/admin/notifications/audience/preview", json={"criteria": {"roles": ["user"]}})
    assert resp.status_code == 401
    assert resp.json() == {"success": False, "error": "Unauthorized"}


def test_plain_users_are_forbidden(audience_client):
    resp = audience_client.post(
        "/admin/notifications/audience/preview", json={"criteria": {"roles": ["user"]}}, headers=AS_USER
    )
    assert resp.status_code == 403
    assert resp.json()["success"] is False


def test_unknown_caller_is_forbidden(audience_client):
    resp = audience_client.get("/admin/notifications/audience/segments", headers={"x-user-id": "ghost"})
    assert resp.status_code == 403


def test_preview_counts_matching_users(audience_client):
    resp = audience_client.post(
        "/admin/notifications/audience/preview",
        json={"criteria": {"roles": ["user"], "locations": ["Gorakhpur"]}, "channels": ["email", "sms"]},
        headers=AS_MODERATOR,
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["totalUsers"] == 1
    assert data["channelBreakdown"] == {"email": 1, "sms": 0}
    assert data["effectiveAudience"] == 1


def test_preview_rejects_empty_roles(audience_client):
    resp = audience_client.post(
        "/admin/notifications/audience/preview", json={"criteria": {"roles": []}}, headers=AS_ADMIN
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["success"] is False
    assert body["error"] == "Invalid request data"
    assert body["details"]


def test_start_with_missing_content_then_force(campaigns_client):
    created = campaigns_client.post(
        "/admin/notifications/campaigns",
        json={
            "name": "Flood relief camp",
            "channels": ["email", "sms"],
            "content": {"email": {"subject": "Relief camp", "message": "Camp opens Monday"}},
            "targeting": {"roles": ["user"]},
            "scheduling": {"type": "immediate"},
        },
        headers=AS_ADMIN,
    )
    assert created.status_code == 201
    campaign_id = created.json()["data"]["id"]
    start_url = f"/admin/notifications/campaigns/{campaign_id}/start"

    refused = campaigns_client.post(start_url, headers=AS_ADMIN)
    assert refused.status_code == 400
    assert refused.json() == {
        "success": False,
        "error": "Missing content for channel: sms",
        "issues": ["Missing content for channel: sms"],
        "canForce": True,
    }

    forced = campaigns_client.post(start_url, json={"force": True}, headers=AS_ADMIN)
    assert forced.status_code == 200
    body = forced.json()
    assert body["data"]["status"] == "running"
    assert body["validationWarnings"] == ["Missing content for channel: sms"]

    again = campaigns_client.post(start_url, headers=AS_ADMIN)
    assert again.status_code == 409


def test_unknown_campaign_is_not_found(campaigns_client):
    resp = campaigns_client.get("/admin/notifications/campaigns/nope", headers=AS_ADMIN)
    assert resp.status_code == 404


def test_bulk_recheck_requires_admin(donations_client):
    resp = donations_client.post(
        "/admin/donations/bulk-recheck-payment", json={"donationIds": ["d1"]}, headers=AS_MODERATOR
    )
    assert resp.status_code == 403


def test_bulk_recheck_rejects_empty_batch(donations_client):
    resp = donations_client.post("/admin/donations/bulk-recheck-payment", json={"donationIds": []}, headers=AS_ADMIN)
    assert resp.status_code == 400


def test_bulk_recheck_streams_ndjson(donations_client, session_factory, monkeypatch):
    with session_factory() as db:
        for donation_id, payment_id in [("d1", "pay_1"), ("d2", "pay_2")]:
            db.add(
                Donation(
                    donation_id=donation_id,
                    amount_paise=10_000,
                    currency="INR",
                    status="pending",
                    razorpay_payment_id=payment_id,
                )
            )
        db.commit()

    def razorpay(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("pay_1"):
            return httpx.Response(200, json={"id": "pay_1", "status": "captured"})
        return httpx.Response(500, json={"error": {"code": "SERVER_ERROR"}})

    gateway = RazorpayGateway(key_id="k", key_secret="s", transport=httpx.MockTransport(razorpay))
    monkeypatch.setattr(donations_main.service, "gateway", gateway)

    resp = donations_client.post(
        "/admin/donations/bulk-recheck-payment", json={"donationIds": ["d1", "d2"]}, headers=AS_ADMIN
    )

    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/x-ndjson")
    events = [json.loads(line) for line in resp.text.splitlines() if line]
    assert [event["type"] for event in events] == ["progress", "progress", "progress", "complete"]
    assert events[2]["message"] == "Rechecked 2 of 2 donations"
    complete = events[-1]
    assert complete["summary"] == {"total": 2, "successful": 1, "failed": 1}
    assert complete["results"][0]["currentStatus"] == "completed"
    assert complete["results"][1]["errorMessage"] == "Payment gateway returned HTTP 500"
