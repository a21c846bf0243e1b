import asyncio
from datetime import datetime, timezone

from welfarehub.common import events
from welfarehub.common.events import EventEnvelope, KafkaBus, decode_envelope, queue_delay_seconds


class RecordingProducer:
    instances = []

    def __init__(self, **options):
        self.options = options
        self.sent = []
        self.started = False
        self.stopped = False
        RecordingProducer.instances.append(self)

    async def start(self):
        self.started = True

    async def stop(self):
        self.stopped = True

    async def send_and_wait(self, topic, value, key=None):
        self.sent.append((topic, value, key))


def test_publish_keys_by_campaign_and_reuses_producer(monkeypatch):
    RecordingProducer.instances = []
    monkeypatch.setattr(events, "AIOKafkaProducer", RecordingProducer)
    bus = KafkaBus(client_id="campaigns")
    job = EventEnvelope(event_type="campaigns.delivery.requested", aggregate_id="camp-7", payload={"total": 400})

    async def scenario():
        await bus.publish("campaigns.delivery.requested", job)
        await bus.publish("campaigns.delivery.paused", job)
        await bus.close()

    asyncio.run(scenario())

    [producer] = RecordingProducer.instances
    assert producer.options["client_id"] == "campaigns"
    assert producer.options["acks"] == "all"
    assert [topic for topic, _, _ in producer.sent] == ["campaigns.delivery.requested", "campaigns.delivery.paused"]
    topic, value, key = producer.sent[0]
    assert key == b"camp-7"
    assert decode_envelope(value) == job
    assert producer.stopped


def test_queue_delay_accepts_zulu_timestamps():
    event = EventEnvelope(
        event_type="campaigns.delivery.reported",
        aggregate_id="camp-7",
        occurred_at="2026-10-18T11:59:30Z",
        payload={},
    )
    now = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)
    assert queue_delay_seconds(event, now) == 30.0
    assert queue_delay_seconds(event, datetime(2026, 10, 18, 11, 0, tzinfo=timezone.utc)) == 0.0
