"""Campaign lifecycle and delivery progress.

Owns the campaign state machine, hands delivery jobs to the send workers via
the outbox, and folds their progress reports back into aggregate counters.
"""

import asyncio
from datetime import datetime

from sqlalchemy import Integer, case, func, literal, select, update

from welfarehub.common.auth import Actor
from welfarehub.common.config import settings
from welfarehub.common.errors import ConcurrencyConflict, InvalidTransition, NotFound, ValidationError
from welfarehub.common.events import EventEnvelope, consume_forever
from welfarehub.common.logging import bind_log_context, logger
from welfarehub.common.metrics import (
    campaign_progress_updates_total,
    campaign_transitions_total,
    duplicate_events_skipped_total,
)
from welfarehub.common.outbox import OutboxRelay, enqueue_event
from welfarehub.common.pagination import page_meta, page_offset
from welfarehub.common.state_machine import can_transition, validate_transition
from welfarehub.common.timeutils import as_utc, isoformat, utcnow
from welfarehub.common.tracing import span
from welfarehub.services.campaigns.estimator import AudienceEstimator, build_estimator
from welfarehub.services.campaigns.models import (
    CampaignTimeline,
    InboxEvent,
    NotificationCampaign,
    OutboxEvent,
)
from welfarehub.services.campaigns.progress import (
    build_progress_report,
    completion_percentage,
    progress_counters,
    success_rate,
)
from welfarehub.services.campaigns.schemas import (
    CampaignCreateRequest,
    CampaignListQuery,
    CampaignUpdateRequest,
    Scheduling,
)

DELIVERY_REQUESTED = "campaigns.delivery.requested"
DELIVERY_PAUSED = "campaigns.delivery.paused"
DELIVERY_REPORTED = "campaigns.delivery.reported"

STARTABLE_STATES = ("draft", "scheduled")
EDITABLE_STATES = ("draft", "scheduled")
DELETABLE_STATES = ("draft", "completed", "failed", "cancelled")

CAMPAIGN_SORT_COLUMNS = {
    "createdAt": NotificationCampaign.created_at,
    "updatedAt": NotificationCampaign.updated_at,
    "name": NotificationCampaign.name,
    "status": NotificationCampaign.status,
}


def campaign_view(campaign: NotificationCampaign) -> dict:
    """API representation of a campaign."""

    return {
        "id": campaign.campaign_id,
        "name": campaign.name,
        "description": campaign.description,
        "status": campaign.status,
        "channels": campaign.channels,
        "content": campaign.content,
        "targeting": campaign.targeting,
        "scheduling": {
            "type": campaign.schedule_type,
            "scheduledFor": isoformat(campaign.scheduled_for),
            "timezone": campaign.timezone,
            "recurring": campaign.recurring,
        },
        "progress": progress_counters(campaign),
        "completionPercentage": completion_percentage(campaign.total, campaign.sent),
        "successRate": success_rate(campaign.sent, campaign.failed),
        "metadata": {
            "pauseHistory": campaign.pause_history or [],
            "resumeHistory": campaign.resume_history or [],
        },
        "createdBy": campaign.created_by,
        "createdAt": isoformat(campaign.created_at),
        "updatedAt": isoformat(campaign.updated_at),
    }


def _dump(model) -> dict:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True)


class CampaignService:
    """Owns campaign state progression and delivery bookkeeping."""

    def __init__(
        self,
        session_factory,
        estimator: AudienceEstimator | None = None,
        service_name: str = "campaigns",
    ) -> None:
        self.session_factory = session_factory
        self.estimator = estimator or build_estimator(settings.audience_estimate_mode, session_factory)
        self.service_name = service_name
        self.relay = OutboxRelay(session_factory, OutboxEvent, service_name)
        self.kafka = self.relay.bus

    def _load(self, db, campaign_id: str) -> NotificationCampaign:
        campaign = db.get(NotificationCampaign, campaign_id)
        if campaign is None:
            raise NotFound("Campaign not found")
        return campaign

    def _transition(
        self,
        db,
        campaign: NotificationCampaign,
        new_status: str,
        reason: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> None:
        """Apply one validated state transition with optimistic concurrency.

        Transition writes are guarded by `(campaign_id, status, state_version)`
        so a stale concurrent writer fails instead of overwriting.
        """

        validate_transition(campaign.status, new_status)
        from_status = campaign.status
        current_version = campaign.state_version
        now = now or utcnow()

        result = db.execute(
            update(NotificationCampaign)
            .where(
                NotificationCampaign.campaign_id == campaign.campaign_id,
                NotificationCampaign.status == from_status,
                NotificationCampaign.state_version == current_version,
            )
            .values(status=new_status, state_version=current_version + 1, updated_at=now)
        )
        if result.rowcount != 1:
            raise ConcurrencyConflict(
                f"Campaign {campaign.campaign_id} was modified concurrently; retry the request"
            )

        campaign.status = new_status
        campaign.state_version = current_version + 1
        campaign.updated_at = now
        db.add(
            CampaignTimeline(
                campaign_id=campaign.campaign_id,
                from_state=from_status,
                to_state=new_status,
                reason=reason,
                actor_id=actor_id,
                created_at=now,
            )
        )
        campaign_transitions_total.labels(
            service=self.service_name, from_state=from_status, to_state=new_status
        ).inc()
        logger.info(
            "campaign_transition campaign_id=%s from=%s to=%s reason=%s",
            campaign.campaign_id,
            from_status,
            new_status,
            reason,
        )

    def _enqueue_delivery(self, db, campaign: NotificationCampaign, remaining: int) -> None:
        enqueue_event(
            db,
            OutboxEvent,
            aggregate_type="campaign",
            aggregate_id=campaign.campaign_id,
            topic=DELIVERY_REQUESTED,
            payload={
                "channels": campaign.channels,
                "content": campaign.content,
                "targeting": campaign.targeting,
                "total": campaign.total,
                "remaining": remaining,
            },
        )

    @staticmethod
    def _apply_scheduling(campaign: NotificationCampaign, scheduling: Scheduling) -> None:
        campaign.schedule_type = scheduling.type
        campaign.scheduled_for = as_utc(scheduling.scheduled_for)
        campaign.timezone = scheduling.timezone
        campaign.recurring = _dump(scheduling.recurring) if scheduling.recurring else None

    def create_campaign(self, req: CampaignCreateRequest, actor: Actor, now: datetime | None = None) -> dict:
        """Persist a new draft campaign with zeroed progress."""

        now = now or utcnow()
        with self.session_factory() as db:
            campaign = NotificationCampaign(
                name=req.name,
                description=req.description,
                status="draft",
                state_version=0,
                channels=list(req.channels),
                content={channel: _dump(block) for channel, block in req.content.items()},
                targeting=_dump(req.targeting),
                total=0,
                sent=0,
                failed=0,
                in_progress=0,
                pause_history=[],
                resume_history=[],
                created_by=actor.user_id,
                created_at=now,
                updated_at=now,
            )
            self._apply_scheduling(campaign, req.scheduling)
            db.add(campaign)
            db.flush()
            db.add(
                CampaignTimeline(
                    campaign_id=campaign.campaign_id,
                    from_state=None,
                    to_state="draft",
                    reason="campaign_created",
                    actor_id=actor.user_id,
                    created_at=now,
                )
            )
            db.commit()
            logger.info("campaign_created campaign_id=%s created_by=%s", campaign.campaign_id, actor.user_id)
            return campaign_view(campaign)

    def get_campaign(self, campaign_id: str) -> dict:
        with self.session_factory() as db:
            return campaign_view(self._load(db, campaign_id))

    def list_campaigns(self, query: CampaignListQuery) -> dict:
        stmt = select(NotificationCampaign)
        if query.status:
            stmt = stmt.where(NotificationCampaign.status == query.status)
        if query.created_by:
            stmt = stmt.where(NotificationCampaign.created_by == query.created_by)
        if query.date_from:
            stmt = stmt.where(NotificationCampaign.created_at >= as_utc(query.date_from))
        if query.date_to:
            stmt = stmt.where(NotificationCampaign.created_at <= as_utc(query.date_to))
        sort_column = CAMPAIGN_SORT_COLUMNS[query.sort_by]
        ordering = sort_column.asc() if query.sort_order == "asc" else sort_column.desc()
        stmt = stmt.order_by(ordering, NotificationCampaign.campaign_id)

        with self.session_factory() as db:
            if query.channels or query.roles:
                # Channels and roles live in JSON documents; filter those in memory.
                campaigns = [
                    campaign
                    for campaign in db.execute(stmt).scalars()
                    if (not query.channels or set(query.channels) & set(campaign.channels))
                    and (not query.roles or set(query.roles) & set(campaign.targeting.get("roles", [])))
                ]
                total_count = len(campaigns)
                offset = page_offset(query.page, query.limit)
                campaigns = campaigns[offset : offset + query.limit]
            else:
                total_count = db.execute(select(func.count()).select_from(stmt.order_by(None).subquery())).scalar_one()
                campaigns = list(
                    db.execute(stmt.offset(page_offset(query.page, query.limit)).limit(query.limit)).scalars()
                )
            views = [campaign_view(campaign) for campaign in campaigns]
        return {"campaigns": views, "pagination": page_meta(query.page, query.limit, total_count)}

    def update_campaign(
        self, campaign_id: str, req: CampaignUpdateRequest, actor: Actor, now: datetime | None = None
    ) -> dict:
        """Edit a draft or scheduled campaign.

        Launching goes through `start_campaign`, so a status change here may only
        move to a state that needs no launch checks.
        """

        now = now or utcnow()
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            if campaign.status not in EDITABLE_STATES:
                raise ValidationError(f"Cannot update campaign with status: {campaign.status}")
            if req.status is not None and req.status != campaign.status:
                if req.status in ("scheduled", "running"):
                    validate_transition(campaign.status, req.status)
                    raise ValidationError("Use the start endpoint to launch a campaign")
                self._transition(db, campaign, req.status, reason="campaign_updated", actor_id=actor.user_id, now=now)
            if req.name is not None:
                campaign.name = req.name
            if "description" in req.model_fields_set:
                campaign.description = req.description
            if req.targeting is not None:
                campaign.targeting = _dump(req.targeting)
            if req.channels is not None:
                campaign.channels = list(req.channels)
            if req.content is not None:
                campaign.content = {channel: _dump(block) for channel, block in req.content.items()}
            if req.scheduling is not None:
                self._apply_scheduling(campaign, req.scheduling)
            campaign.updated_at = now
            db.commit()
            logger.info("campaign_updated campaign_id=%s by=%s", campaign_id, actor.user_id)
            return campaign_view(campaign)

    def delete_campaign(self, campaign_id: str, actor: Actor) -> None:
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            if campaign.status not in DELETABLE_STATES:
                raise ValidationError(f"Cannot delete campaign with status: {campaign.status}")
            for entry in db.execute(
                select(CampaignTimeline).where(CampaignTimeline.campaign_id == campaign_id)
            ).scalars():
                db.delete(entry)
            db.delete(campaign)
            db.commit()
        logger.info("campaign_deleted campaign_id=%s by=%s", campaign_id, actor.user_id)

    def _launch_issues(self, campaign: NotificationCampaign, runs_now: bool, now: datetime) -> list[str]:
        issues = []
        for channel in campaign.channels:
            block = (campaign.content or {}).get(channel) or {}
            if not str(block.get("message") or "").strip():
                issues.append(f"Missing content for channel: {channel}")
        if not campaign.targeting.get("roles"):
            issues.append("No target roles specified")
        if not runs_now and campaign.schedule_type == "scheduled" and as_utc(campaign.scheduled_for) <= now:
            issues.append("Scheduled time is in the past")
        return issues

    def start_campaign(self, campaign_id: str, actor: Actor, force: bool = False, now: datetime | None = None) -> dict:
        """Validate and launch a campaign.

        Immediate campaigns go straight to `running` with a delivery job queued;
        scheduled and recurring ones wait in `scheduled`. With `force`, launch
        issues are returned as warnings instead of failing the request.
        """

        now = now or utcnow()
        with (
            bind_log_context(campaign_id=campaign_id),
            span("campaign.start", campaign_id=campaign_id, forced=force),
            self.session_factory() as db,
        ):
            campaign = self._load(db, campaign_id)
            if campaign.status not in STARTABLE_STATES or not can_transition(campaign.status, "running"):
                raise InvalidTransition(
                    campaign.status, "running", f"Cannot start campaign with status: {campaign.status}"
                )
            if campaign.schedule_type == "scheduled" and campaign.scheduled_for is None:
                raise ValidationError("Scheduled campaigns must have a scheduled date")

            # Starting an already scheduled campaign sends it now.
            runs_now = campaign.schedule_type == "immediate" or campaign.status == "scheduled"
            issues = self._launch_issues(campaign, runs_now, now)
            if issues and not force:
                message = issues[0] if len(issues) == 1 else "Campaign is not ready to start"
                raise ValidationError(message, issues=issues, canForce=True)

            target = "running" if runs_now else "scheduled"
            if target == "scheduled" and campaign.scheduled_for is None:
                campaign.scheduled_for = now

            estimated = self.estimator.estimate(campaign.targeting, campaign.channels)
            self._transition(db, campaign, target, reason="campaign_started", actor_id=actor.user_id, now=now)
            campaign.total = estimated
            campaign.sent = 0
            campaign.failed = 0
            campaign.in_progress = estimated if runs_now else 0
            if runs_now:
                self._enqueue_delivery(db, campaign, estimated)
            db.commit()
            logger.info(
                "campaign_started campaign_id=%s status=%s estimated=%s forced_warnings=%s",
                campaign_id,
                campaign.status,
                estimated,
                len(issues),
            )
            result = {
                "campaign": campaign_view(campaign),
                "estimatedAudience": estimated,
                "message": "Campaign started successfully" if runs_now else "Campaign scheduled successfully",
            }
            if issues:
                result["validationWarnings"] = issues
            return result

    def pause_campaign(
        self, campaign_id: str, actor: Actor, reason: str | None = None, now: datetime | None = None
    ) -> dict:
        now = now or utcnow()
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            if not can_transition(campaign.status, "paused"):
                raise InvalidTransition(
                    campaign.status, "paused", f"Cannot pause campaign with status: {campaign.status}"
                )
            snapshot = {
                **progress_counters(campaign),
                "pausedAt": isoformat(now),
                "pausedBy": actor.user_id,
                "pauseReason": reason,
            }
            self._transition(db, campaign, "paused", reason=reason or "campaign_paused", actor_id=actor.user_id, now=now)
            campaign.pause_history = [*(campaign.pause_history or []), snapshot]
            enqueue_event(
                db,
                OutboxEvent,
                aggregate_type="campaign",
                aggregate_id=campaign.campaign_id,
                topic=DELIVERY_PAUSED,
                payload={"reason": reason},
            )
            db.commit()
            return {"campaign": campaign_view(campaign), "pauseInfo": snapshot}

    def resume_campaign(
        self, campaign_id: str, actor: Actor, reason: str | None = None, now: datetime | None = None
    ) -> dict:
        """Resume a paused campaign; only the undelivered remainder is re-queued."""

        now = now or utcnow()
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            if campaign.status != "paused" or not can_transition(campaign.status, "running"):
                raise InvalidTransition(
                    campaign.status, "running", f"Cannot resume campaign with status: {campaign.status}"
                )
            remaining = campaign.total - campaign.sent - campaign.failed
            if remaining <= 0:
                raise ValidationError("Campaign has no remaining notifications to send")
            last_pause = (campaign.pause_history or [{}])[-1]
            paused_ms = None
            if last_pause.get("pausedAt"):
                paused_at = as_utc(datetime.fromisoformat(last_pause["pausedAt"]))
                paused_ms = int((now - paused_at).total_seconds() * 1000)
            snapshot = {
                "resumedAt": isoformat(now),
                "resumedBy": actor.user_id,
                "resumeReason": reason,
                "remainingToSend": remaining,
                "pausedDurationMs": paused_ms,
            }
            self._transition(db, campaign, "running", reason=reason or "campaign_resumed", actor_id=actor.user_id, now=now)
            campaign.in_progress = remaining
            campaign.resume_history = [*(campaign.resume_history or []), snapshot]
            self._enqueue_delivery(db, campaign, remaining)
            db.commit()
            return {"campaign": campaign_view(campaign), "resumeInfo": snapshot}

    def cancel_campaign(self, campaign_id: str, actor: Actor, now: datetime | None = None) -> dict:
        now = now or utcnow()
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            if not can_transition(campaign.status, "cancelled"):
                raise InvalidTransition(
                    campaign.status, "cancelled", f"Cannot cancel campaign with status: {campaign.status}"
                )
            self._transition(db, campaign, "cancelled", reason="campaign_cancelled", actor_id=actor.user_id, now=now)
            db.commit()
            return campaign_view(campaign)

    def activate_due(self, now: datetime | None = None) -> list[str]:
        """Move scheduled campaigns whose time has come into `running`."""

        now = now or utcnow()
        activated = []
        with self.session_factory() as db:
            due = db.execute(
                select(NotificationCampaign)
                .where(
                    NotificationCampaign.status == "scheduled",
                    NotificationCampaign.scheduled_for.is_not(None),
                    NotificationCampaign.scheduled_for <= now,
                )
                .order_by(NotificationCampaign.scheduled_for)
            ).scalars().all()
            for campaign in due:
                remaining = max(0, campaign.total - campaign.sent - campaign.failed)
                self._transition(db, campaign, "running", reason="schedule_due", now=now)
                campaign.in_progress = remaining
                self._enqueue_delivery(db, campaign, remaining)
                activated.append(campaign.campaign_id)
            db.commit()
        if activated:
            logger.info("scheduled_campaigns_activated count=%s ids=%s", len(activated), ",".join(activated))
        return activated

    def get_progress(self, campaign_id: str, now: datetime | None = None) -> dict:
        with self.session_factory() as db:
            return build_progress_report(self._load(db, campaign_id), now or utcnow())

    def update_progress(
        self,
        campaign_id: str,
        sent: int,
        failed: int,
        total: int | None = None,
        status: str | None = None,
        now: datetime | None = None,
    ) -> dict:
        """Overwrite delivery counters in one statement.

        `inProgress` is recomputed in SQL as `max(0, total - sent - failed)`. A
        requested status is applied only when the state machine allows it;
        otherwise it is ignored and the current status is echoed back.
        """

        if sent < 0 or failed < 0 or (total is not None and total < 0):
            raise ValidationError("Invalid progress data")
        now = now or utcnow()
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            new_total = NotificationCampaign.total if total is None else literal(total, Integer)
            remaining = new_total - sent - failed
            db.execute(
                update(NotificationCampaign)
                .where(NotificationCampaign.campaign_id == campaign_id)
                .values(
                    total=new_total,
                    sent=sent,
                    failed=failed,
                    in_progress=case((remaining < 0, 0), else_=remaining),
                    updated_at=now,
                )
            )
            db.refresh(campaign)
            if status and status != campaign.status:
                if can_transition(campaign.status, status):
                    self._transition(db, campaign, status, reason="progress_report", now=now)
                else:
                    logger.info(
                        "progress_status_ignored campaign_id=%s current=%s requested=%s",
                        campaign_id,
                        campaign.status,
                        status,
                    )
            db.commit()
            campaign_progress_updates_total.labels(service=self.service_name, source="api").inc()
            return {"progress": progress_counters(campaign), "status": campaign.status}

    def _apply_delivery(self, db, campaign: NotificationCampaign, sent_delta: int, failed_delta: int, now: datetime) -> None:
        remaining = (
            NotificationCampaign.total
            - (NotificationCampaign.sent + sent_delta)
            - (NotificationCampaign.failed + failed_delta)
        )
        db.execute(
            update(NotificationCampaign)
            .where(NotificationCampaign.campaign_id == campaign.campaign_id)
            .values(
                sent=NotificationCampaign.sent + sent_delta,
                failed=NotificationCampaign.failed + failed_delta,
                in_progress=case((remaining < 0, 0), else_=remaining),
                updated_at=now,
            )
        )
        db.refresh(campaign)
        if campaign.status == "running" and campaign.in_progress == 0:
            terminal = "failed" if campaign.sent == 0 and campaign.failed > 0 else "completed"
            self._transition(db, campaign, terminal, reason="delivery_finished", now=now)

    def record_delivery(
        self, campaign_id: str, sent_delta: int, failed_delta: int, now: datetime | None = None
    ) -> dict:
        """Add worker-reported deltas to the counters atomically."""

        if sent_delta < 0 or failed_delta < 0:
            raise ValidationError("Invalid progress data")
        with self.session_factory() as db:
            campaign = self._load(db, campaign_id)
            self._apply_delivery(db, campaign, sent_delta, failed_delta, now or utcnow())
            db.commit()
            campaign_progress_updates_total.labels(service=self.service_name, source="direct").inc()
            return {"progress": progress_counters(campaign), "status": campaign.status}

    def _inbox_seen(self, db, event_id: str) -> bool:
        existing = db.execute(
            select(InboxEvent).where(
                InboxEvent.event_id == event_id,
                InboxEvent.consumed_by_service == self.service_name,
            )
        ).scalar_one_or_none()
        return existing is not None

    def _mark_inbox(self, db, event_id: str) -> None:
        db.add(InboxEvent(event_id=event_id, consumed_by_service=self.service_name))

    async def handle_delivery_report(self, event: EventEnvelope) -> None:
        """Fold one worker report (`{sent, failed}` deltas) into the campaign."""

        with self.session_factory() as db:
            if self._inbox_seen(db, event.event_id):
                logger.info("duplicate event skipped topic=%s event_id=%s", DELIVERY_REPORTED, event.event_id)
                duplicate_events_skipped_total.labels(service=self.service_name, topic=DELIVERY_REPORTED).inc()
                return
            campaign = db.get(NotificationCampaign, event.aggregate_id)
            if campaign is not None:
                sent_delta = int(event.payload.get("sent", 0))
                failed_delta = int(event.payload.get("failed", 0))
                if sent_delta < 0 or failed_delta < 0:
                    logger.warning("delivery_report_rejected event_id=%s reason=negative_delta", event.event_id)
                else:
                    self._apply_delivery(db, campaign, sent_delta, failed_delta, utcnow())
                    campaign_progress_updates_total.labels(service=self.service_name, source="kafka").inc()
            self._mark_inbox(db, event.event_id)
            db.commit()

    async def scheduler(self) -> None:
        """Periodically activate scheduled campaigns that are due."""

        while True:
            try:
                self.activate_due()
            except Exception as exc:
                logger.exception("scheduler_tick_failed error=%s", exc)
            await asyncio.sleep(settings.scheduler_interval_seconds)

    async def outbox_publisher(self) -> None:
        await self.relay.run_forever()

    async def start_consumers(self) -> None:
        await consume_forever(DELIVERY_REPORTED, "campaigns-delivery-reported", self.handle_delivery_report)

