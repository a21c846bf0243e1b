"""Delivery counters, progress reports and worker delivery reports."""

import asyncio
from datetime import datetime, timedelta

import pytest

from welfarehub.common.errors import ValidationError
from welfarehub.common.events import EventEnvelope
from welfarehub.services.campaigns.models import NotificationCampaign
from welfarehub.services.campaigns.progress import build_progress_report, channel_progress, recent_activity
from welfarehub.services.campaigns.schemas import CampaignCreateRequest
from welfarehub.services.campaigns.service import DELIVERY_REPORTED, CampaignService


@pytest.fixture
def campaigns(session_factory):
    return CampaignService(session_factory)


@pytest.fixture
def running(campaigns, admin, now):
    req = CampaignCreateRequest(
        name="Ration kit alert",
        targeting={"roles": ["user"]},
        channels=["email", "sms"],
        content={"email": {"message": "Kits ready"}, "sms": {"message": "Kits ready"}},
    )
    campaign = campaigns.create_campaign(req, admin, now=now)
    campaigns.start_campaign(campaign["id"], admin, now=now)
    return campaign["id"]


def test_progress_counters_and_percentages(campaigns, admin, running, now):
    """100 total, 40 sent, 10 failed -> 40% complete, 80% success."""

    result = campaigns.update_progress(running, sent=40, failed=10, total=100, now=now)
    assert result == {"progress": {"total": 100, "sent": 40, "failed": 10, "inProgress": 50}, "status": "running"}

    report = campaigns.get_progress(running, now=now)
    assert report["completionPercentage"] == 40
    assert report["successRate"] == 80
    assert report["channelProgress"]["sms"] == {
        "total": 50,
        "sent": 20,
        "failed": 5,
        "inProgress": 25,
        "successRate": 80,
    }

    campaigns.pause_campaign(running, admin, now=now)
    ignored = campaigns.update_progress(running, sent=45, failed=10, status="completed", now=now)
    assert ignored["status"] == "paused"
    assert ignored["progress"]["sent"] == 45


def test_in_progress_never_negative(campaigns, running, now):
    result = campaigns.update_progress(running, sent=8, failed=5, total=10, now=now)
    assert result["progress"]["inProgress"] == 0


def test_negative_counters_rejected(campaigns, running, now):
    with pytest.raises(ValidationError) as excinfo:
        campaigns.update_progress(running, sent=-1, failed=0, now=now)
    assert excinfo.value.message == "Invalid progress data"


def test_allowed_status_change_applies(campaigns, running, now):
    result = campaigns.update_progress(running, sent=800, failed=0, status="completed", now=now)
    assert result["status"] == "completed"


def test_completion_estimate_only_while_running(campaigns, admin, running, now):
    campaigns.update_progress(running, sent=40, failed=10, total=100, now=now)

    report = campaigns.get_progress(running, now=now + timedelta(seconds=100))
    # 50 processed in 100s leaves 50 more at the same rate.
    assert report["estimatedCompletionTime"] == (now + timedelta(seconds=200)).isoformat()

    campaigns.pause_campaign(running, admin, now=now + timedelta(seconds=100))
    assert campaigns.get_progress(running, now=now + timedelta(seconds=150))["estimatedCompletionTime"] is None


def test_no_estimate_before_anything_is_processed(campaigns, running, now):
    report = campaigns.get_progress(running, now=now + timedelta(seconds=10))
    assert report["estimatedCompletionTime"] is None
    assert report["completionPercentage"] == 0
    assert report["successRate"] == 0


def _campaign(now, **overrides):
    fields = dict(
        campaign_id="c1",
        name="c",
        status="running",
        channels=["email", "sms"],
        total=101,
        sent=5,
        failed=3,
        in_progress=93,
        pause_history=[],
        resume_history=[],
        updated_at=now,
        created_at=now,
    )
    fields.update(overrides)
    return NotificationCampaign(**fields)


def test_channel_progress_is_an_even_floor_split(now):
    split = channel_progress(_campaign(now))
    assert split["email"] == {"total": 50, "sent": 2, "failed": 1, "inProgress": 46, "successRate": 63}
    assert split["sms"] == split["email"]


def test_recent_activity_newest_first_and_capped(now):
    pauses = [
        {"pausedAt": (now - timedelta(hours=i)).isoformat(), "pauseReason": None} for i in range(1, 8)
    ]
    resumes = [
        {"resumedAt": (now - timedelta(hours=i, minutes=30)).isoformat(), "resumeReason": "back"} for i in range(1, 8)
    ]
    activity = recent_activity(_campaign(now, pause_history=pauses, resume_history=resumes))

    assert len(activity) == 10
    assert activity[0]["event"] == "Campaign status: running"
    assert activity[0]["details"] == "5 sent, 3 failed, 93 in progress"
    assert activity[1] == {
        "timestamp": (now - timedelta(hours=1)).isoformat(),
        "event": "Campaign paused",
        "details": "No reason provided",
    }
    assert activity[2]["event"] == "Campaign resumed"
    timestamps = [datetime.fromisoformat(entry["timestamp"]) for entry in activity]
    assert timestamps == sorted(timestamps, reverse=True)


def test_report_shape(now):
    report = build_progress_report(_campaign(now), now)
    assert report["progress"] == {"total": 101, "sent": 5, "failed": 3, "inProgress": 93}
    assert report["completionPercentage"] == 5
    assert report["successRate"] == 63
    assert set(report["channelProgress"]) == {"email", "sms"}


def test_record_delivery_increments_and_completes(campaigns, running, now):
    campaigns.update_progress(running, sent=0, failed=0, total=10, now=now)

    partial = campaigns.record_delivery(running, sent_delta=6, failed_delta=1, now=now)
    assert partial == {"progress": {"total": 10, "sent": 6, "failed": 1, "inProgress": 3}, "status": "running"}

    done = campaigns.record_delivery(running, sent_delta=3, failed_delta=0, now=now)
    assert done["status"] == "completed"
    assert done["progress"]["inProgress"] == 0


def test_delivery_reports_are_deduplicated(campaigns, running, now):
    campaigns.update_progress(running, sent=0, failed=0, total=10, now=now)
    event = EventEnvelope(event_type=DELIVERY_REPORTED, aggregate_id=running, payload={"sent": 2, "failed": 1})

    asyncio.run(campaigns.handle_delivery_report(event))
    asyncio.run(campaigns.handle_delivery_report(event))

    progress = campaigns.get_progress(running, now=now)["progress"]
    assert progress == {"total": 10, "sent": 2, "failed": 1, "inProgress": 7}
