"""JSON logs carrying the campaign, donation and event being worked on.

Correlation ids live in context variables so that the HTTP middleware, the
Kafka dispatcher and the recheck loop can bind them once and every log line
underneath picks them up.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar

from pythonjsonlogger.json import JsonFormatter

from welfarehub.common.config import settings

trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
event_id_ctx: ContextVar[str] = ContextVar("event_id", default="")
campaign_id_ctx: ContextVar[str] = ContextVar("campaign_id", default="")
donation_id_ctx: ContextVar[str] = ContextVar("donation_id", default="")

CONTEXT_FIELDS: dict[str, ContextVar[str]] = {
    "trace_id": trace_id_ctx,
    "event_id": event_id_ctx,
    "campaign_id": campaign_id_ctx,
    "donation_id": donation_id_ctx,
}

# Client libraries that log every request or heartbeat at INFO.
NOISY_LOGGERS = ("aiokafka", "httpx", "httpcore")


class ContextFilter(logging.Filter):
    """Copy the bound correlation ids onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = settings.service_name
        for field, var in CONTEXT_FIELDS.items():
            setattr(record, field, var.get())
        return True


@contextmanager
def bind_log_context(**values: str | None):
    """Bind correlation ids (`campaign_id=...`, `trace_id=...`) for the block."""

    tokens = []
    for field, value in values.items():
        if value is None:
            continue
        tokens.append((CONTEXT_FIELDS[field], CONTEXT_FIELDS[field].set(value)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def configure_logging() -> None:
    """Install the JSON handler on the root logger; safe to call repeatedly."""

    context_filter = ContextFilter()
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(context_filter)
    fields = " ".join(f"%({field})s" for field in CONTEXT_FIELDS)
    handler.setFormatter(
        JsonFormatter(
            f"%(asctime)s %(levelname)s %(name)s %(service_name)s {fields} %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))


logger = logging.getLogger("welfarehub")
