"""Publish a delivery report for a campaign, as a send worker would.

Useful for exercising the campaign service's progress consumer and its
duplicate-event handling without running real senders.
"""

import argparse
import asyncio
import json
from datetime import datetime, timezone
from uuid import uuid4

from aiokafka import AIOKafkaProducer

TOPIC = "campaigns.delivery.reported"


def build_report(campaign_id: str, sent: int, failed: int, event_id: str | None = None) -> dict:
    """Envelope matching what the campaign service consumes."""

    return {
        "event_id": event_id or str(uuid4()),
        "event_type": TOPIC,
        "aggregate_id": campaign_id,
        "occurred_at": datetime.now(timezone.utc).isoformat(),
        "trace_id": str(uuid4()),
        "payload": {"sent": sent, "failed": failed},
    }


async def publish(bootstrap_servers: str, payload: dict, repeat: int) -> None:
    """Open producer, publish the report `repeat` times, close producer."""

    producer = AIOKafkaProducer(bootstrap_servers=bootstrap_servers)
    await producer.start()
    try:
        for _ in range(repeat):
            await producer.send_and_wait(
                TOPIC,
                json.dumps(payload).encode("utf-8"),
                key=payload["aggregate_id"].encode("utf-8"),
            )
    finally:
        await producer.stop()


def main() -> None:
    """Parse CLI args and publish one delivery report."""

    parser = argparse.ArgumentParser(description="Publish a campaign delivery report to Kafka.")
    parser.add_argument("--bootstrap-servers", default="localhost:9092")
    parser.add_argument("--campaign-id", required=True)
    parser.add_argument("--sent", type=int, default=0)
    parser.add_argument("--failed", type=int, default=0)
    parser.add_argument("--event-id", default=None, help="Reuse an event id to test de-duplication")
    parser.add_argument("--repeat", type=int, default=1)
    args = parser.parse_args()

    if args.sent < 0 or args.failed < 0:
        raise SystemExit("--sent and --failed must be non-negative")

    report = build_report(args.campaign_id, args.sent, args.failed, args.event_id)
    asyncio.run(publish(args.bootstrap_servers, report, args.repeat))
    print(f"Published {args.repeat} report(s) to topic={TOPIC} event_id={report['event_id']}")


if __name__ == "__main__":
    main()
