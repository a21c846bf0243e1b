"""One structured log line describing how a service was configured."""

import os

from sqlalchemy.engine import make_url
from sqlalchemy.exc import ArgumentError

from welfarehub.common.config import settings
from welfarehub.common.logging import logger

SECRET_MARKERS = ("KEY", "SECRET", "PASSWORD", "TOKEN")


def _safe_env(name: str) -> str:
    """Read `name` from the environment with credentials masked."""

    value = os.getenv(name)
    if value is None:
        return "<unset>"
    if name.endswith("_DSN"):
        try:
            return make_url(value).render_as_string(hide_password=True)
        except ArgumentError:
            return "<unparseable>"
    if any(marker in name for marker in SECRET_MARKERS):
        return "<redacted>" if value else "<empty>"
    return value


def log_startup_config(service_name: str, keys: list[str]) -> None:
    """Log the selected environment keys plus derived runtime flags."""

    config = {"service": service_name, "environment": settings.environment}
    for key in keys:
        config[key] = _safe_env(key)
    config["tracing"] = settings.tracing_enabled
    logger.info("startup_config=%s", config)
