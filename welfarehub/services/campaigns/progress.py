"""Delivery progress reporting for a single campaign."""

import math
from datetime import datetime, timedelta

from welfarehub.common.timeutils import as_utc, isoformat
from welfarehub.services.campaigns.models import NotificationCampaign

RECENT_ACTIVITY_LIMIT = 10


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def completion_percentage(total: int, sent: int) -> int:
    """Share of the audience already reached; failures do not count as complete."""

    if total <= 0:
        return 0
    return _round_half_up(sent / total * 100)


def success_rate(sent: int, failed: int) -> int:
    processed = sent + failed
    if processed <= 0:
        return 0
    return _round_half_up(sent / processed * 100)


def progress_counters(campaign: NotificationCampaign) -> dict:
    return {
        "total": campaign.total,
        "sent": campaign.sent,
        "failed": campaign.failed,
        "inProgress": campaign.in_progress,
    }


def estimate_completion(campaign: NotificationCampaign, now: datetime) -> datetime | None:
    """Linear projection from the rate observed since the last progress write."""

    processed = campaign.sent + campaign.failed
    if campaign.status != "running" or campaign.in_progress <= 0 or processed <= 0:
        return None
    elapsed = (now - as_utc(campaign.updated_at)).total_seconds()
    if elapsed <= 0:
        return None
    rate = processed / elapsed
    return now + timedelta(seconds=campaign.in_progress / rate)


def recent_activity(campaign: NotificationCampaign) -> list[dict]:
    """Current status plus pause/resume history, newest first."""

    entries = [
        {
            "timestamp": as_utc(campaign.updated_at),
            "event": f"Campaign status: {campaign.status}",
            "details": f"{campaign.sent} sent, {campaign.failed} failed, {campaign.in_progress} in progress",
        }
    ]
    for pause in campaign.pause_history or []:
        entries.append(
            {
                "timestamp": as_utc(datetime.fromisoformat(pause["pausedAt"])),
                "event": "Campaign paused",
                "details": pause.get("pauseReason") or "No reason provided",
            }
        )
    for resume in campaign.resume_history or []:
        entries.append(
            {
                "timestamp": as_utc(datetime.fromisoformat(resume["resumedAt"])),
                "event": "Campaign resumed",
                "details": resume.get("resumeReason") or "No reason provided",
            }
        )
    entries.sort(key=lambda entry: entry["timestamp"], reverse=True)
    return [
        {**entry, "timestamp": isoformat(entry["timestamp"])} for entry in entries[:RECENT_ACTIVITY_LIMIT]
    ]


def channel_progress(campaign: NotificationCampaign) -> dict:
    """Aggregate counters split evenly across channels.

    Delivery is not tracked per channel, so this is an approximation.
    """

    channels = campaign.channels or []
    if not channels:
        return {}
    share = len(channels)
    rate = success_rate(campaign.sent, campaign.failed)
    return {
        channel: {
            "total": campaign.total // share,
            "sent": campaign.sent // share,
            "failed": campaign.failed // share,
            "inProgress": campaign.in_progress // share,
            "successRate": rate,
        }
        for channel in channels
    }


def build_progress_report(campaign: NotificationCampaign, now: datetime) -> dict:
    eta = estimate_completion(campaign, now)
    return {
        "campaignId": campaign.campaign_id,
        "name": campaign.name,
        "status": campaign.status,
        "progress": progress_counters(campaign),
        "completionPercentage": completion_percentage(campaign.total, campaign.sent),
        "successRate": success_rate(campaign.sent, campaign.failed),
        "estimatedCompletionTime": isoformat(eta),
        "channels": campaign.channels,
        "channelProgress": channel_progress(campaign),
        "recentActivity": recent_activity(campaign),
        "lastUpdated": isoformat(campaign.updated_at),
        "createdAt": isoformat(campaign.created_at),
    }
