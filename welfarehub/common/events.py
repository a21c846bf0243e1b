"""Kafka envelope + producer/consumer helpers.

Every topic carries an `EventEnvelope`. Campaign delivery jobs leave through
the outbox relay; delivery reports from the send workers come back through
`consume_forever`.
"""

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable
from uuid import uuid4

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer
from pydantic import BaseModel, Field

from welfarehub.common.config import settings
from welfarehub.common.logging import bind_log_context, logger
from welfarehub.common.metrics import event_queue_delay_seconds


class EventEnvelope(BaseModel):
    """Canonical event shape sent across Kafka topics."""

    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str = Field(default_factory=lambda: str(uuid4()))
    payload: dict[str, Any]


EventHandler = Callable[[EventEnvelope], Awaitable[None]]


def encode_envelope(event: EventEnvelope) -> bytes:
    return json.dumps(event.model_dump(), separators=(",", ":")).encode("utf-8")


def decode_envelope(raw: bytes) -> EventEnvelope:
    """Parse one Kafka message value into an envelope."""

    return EventEnvelope(**json.loads(raw.decode("utf-8")))


def queue_delay_seconds(event: EventEnvelope, now: datetime | None = None) -> float:
    """Seconds between the producer stamping the event and now."""

    now = now or datetime.now(timezone.utc)
    occurred_at = datetime.fromisoformat(event.occurred_at.replace("Z", "+00:00"))
    if occurred_at.tzinfo is None:
        occurred_at = occurred_at.replace(tzinfo=timezone.utc)
    return max(0.0, (now - occurred_at).total_seconds())


class KafkaBus:
    """Producer for campaign delivery topics, opened on first publish.

    Messages are keyed by campaign id so every job, pause and report for one
    campaign lands on the same partition in order.
    """

    def __init__(self, client_id: str | None = None) -> None:
        self.client_id = client_id or settings.service_name
        self._producer: AIOKafkaProducer | None = None

    async def _started(self) -> AIOKafkaProducer:
        if self._producer is None:
            producer = AIOKafkaProducer(
                bootstrap_servers=settings.kafka_bootstrap_servers,
                client_id=self.client_id,
                acks="all",
                enable_idempotence=True,
            )
            await producer.start()
            self._producer = producer
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        """Send `event` and wait for the broker acknowledgement."""

        producer = await self._started()
        await producer.send_and_wait(topic, encode_envelope(event), key=event.aggregate_id.encode("utf-8"))

    async def close(self) -> None:
        if self._producer is not None:
            producer, self._producer = self._producer, None
            await producer.stop()


async def make_consumer(topic: str, group_id: str) -> AIOKafkaConsumer:
    """Create a configured Kafka consumer for one topic/group."""

    consumer = AIOKafkaConsumer(
        topic,
        bootstrap_servers=settings.kafka_bootstrap_servers,
        group_id=group_id,
        auto_offset_reset="earliest",
        enable_auto_commit=False,
    )
    await consumer.start()
    return consumer


async def dispatch_message(topic: str, group_id: str, raw: bytes, handler: EventHandler) -> None:
    """Decode one message and run `handler` with correlation context bound."""

    event = decode_envelope(raw)
    event_queue_delay_seconds.labels(service=settings.service_name, topic=topic).observe(queue_delay_seconds(event))
    with bind_log_context(trace_id=event.trace_id, event_id=event.event_id, campaign_id=event.aggregate_id):
        logger.info(
            "event_received topic=%s group=%s event_type=%s aggregate_id=%s",
            topic,
            group_id,
            event.event_type,
            event.aggregate_id,
        )
        await handler(event)


async def consume_forever(topic: str, group_id: str, handler: EventHandler) -> None:
    """Continuously consume one topic and pass parsed envelopes to `handler`.

    A failing message is logged and skipped; offsets are committed per batch.
    Broker errors restart the consumer after a short pause.
    """

    while True:
        consumer = None
        try:
            consumer = await make_consumer(topic, group_id)
            while True:
                batches = await consumer.getmany(timeout_ms=500, max_records=50)
                for messages in batches.values():
                    for msg in messages:
                        try:
                            await dispatch_message(topic, group_id, msg.value, handler)
                        except Exception as exc:
                            logger.error(
                                "handler_error topic=%s group=%s offset=%s error=%s",
                                topic,
                                group_id,
                                msg.offset,
                                exc,
                            )
                await consumer.commit()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("consumer_loop_error topic=%s group=%s error=%s", topic, group_id, exc)
            await asyncio.sleep(2)
        finally:
            if consumer is not None:
                await consumer.stop()
            await asyncio.sleep(0)
