"""Transactional outbox for services that hand work to Kafka consumers.

Rows are written in the same transaction as the state change that caused them
and shipped later by `OutboxRelay`, so a committed campaign start always
produces its delivery job exactly once from the database's point of view.
"""

import asyncio
from datetime import timedelta

from sqlalchemy import func, or_, select, update

from welfarehub.common.config import settings
from welfarehub.common.events import EventEnvelope, KafkaBus
from welfarehub.common.logging import logger
from welfarehub.common.metrics import outbox_oldest_pending_age_seconds, outbox_pending_total
from welfarehub.common.timeutils import as_utc, utcnow


def enqueue_event(
    db,
    outbox_model,
    *,
    aggregate_type: str,
    aggregate_id: str,
    topic: str,
    payload: dict,
    trace_id: str | None = None,
) -> None:
    """Stage one envelope for publishing inside the caller's transaction."""

    envelope = EventEnvelope(event_type=topic, aggregate_id=aggregate_id, payload=payload)
    if trace_id:
        envelope.trace_id = trace_id
    db.add(
        outbox_model(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=topic,
            topic=topic,
            payload=envelope.model_dump(),
        )
    )


class OutboxRelay:
    """Claims pending outbox rows and publishes them to Kafka."""

    def __init__(self, session_factory, outbox_model, service_name: str, bus: KafkaBus | None = None) -> None:
        self.session_factory = session_factory
        self.outbox_model = outbox_model
        self.service_name = service_name
        self.bus = bus or KafkaBus()

    def claim_batch(self, db, limit: int, processing_timeout_seconds: int = 30) -> list[dict]:
        """Atomically claim pending rows plus rows stuck in PROCESSING."""

        table = self.outbox_model.__table__
        now = utcnow()
        stale_before = now - timedelta(seconds=processing_timeout_seconds)
        claim_ids = (
            select(table.c.id)
            .where(
                or_(
                    table.c.status == "PENDING",
                    (table.c.status == "PROCESSING") & (table.c.sent_at.is_not(None)) & (table.c.sent_at < stale_before),
                )
            )
            .order_by(table.c.created_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
            .cte("claim_ids")
        )
        rows = db.execute(
            update(table)
            .where(table.c.id.in_(select(claim_ids.c.id)))
            .values(status="PROCESSING", sent_at=now)
            .returning(table.c.id, table.c.topic, table.c.payload)
        ).all()
        return [{"id": row.id, "topic": row.topic, "payload": row.payload} for row in rows]

    def _set_status(self, db, event_id: str, status: str) -> None:
        table = self.outbox_model.__table__
        db.execute(
            update(table)
            .where(table.c.id == event_id, table.c.status == "PROCESSING")
            .values(status=status, sent_at=utcnow() if status == "SENT" else None)
        )

    def update_backlog_metrics(self, db) -> None:
        """Refresh gauges for pending outbox depth and oldest age."""

        table = self.outbox_model.__table__
        pending = table.c.status.in_(("PENDING", "PROCESSING"))
        pending_count = db.execute(select(func.count()).select_from(table).where(pending)).scalar_one()
        oldest = as_utc(db.execute(select(func.min(table.c.created_at)).where(pending)).scalar_one())
        age_seconds = max(0.0, (utcnow() - oldest).total_seconds()) if oldest else 0.0
        outbox_pending_total.labels(service=self.service_name).set(float(pending_count))
        outbox_oldest_pending_age_seconds.labels(service=self.service_name).set(age_seconds)

    async def publish_pending(self) -> int:
        """Publish one claimed batch; failed rows go back to PENDING."""

        with self.session_factory() as db:
            rows = self.claim_batch(db, limit=settings.outbox_batch_size)
            self.update_backlog_metrics(db)
            db.commit()
        for row in rows:
            try:
                await self.bus.publish(row["topic"], EventEnvelope(**row["payload"]))
                status = "SENT"
            except Exception as exc:
                logger.exception("outbox publish failed id=%s topic=%s error=%s", row["id"], row["topic"], exc)
                status = "PENDING"
            with self.session_factory() as db:
                self._set_status(db, row["id"], status)
                self.update_backlog_metrics(db)
                db.commit()
        return len(rows)

    async def run_forever(self, interval_seconds: float = 0.5) -> None:
        """Publish pending outbox rows until cancelled."""

        while True:
            await self.publish_pending()
            await asyncio.sleep(interval_seconds)
