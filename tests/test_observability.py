import logging

from welfarehub.common.logging import ContextFilter, bind_log_context, campaign_id_ctx, donation_id_ctx
from welfarehub.common.startup import _safe_env


def test_bound_ids_reach_log_records_and_reset():
    record = logging.LogRecord("welfarehub", logging.INFO, __file__, 1, "msg", None, None)

    with bind_log_context(campaign_id="c-1", donation_id=None):
        ContextFilter().filter(record)
        assert campaign_id_ctx.get() == "c-1"

    assert record.campaign_id == "c-1"
    assert record.donation_id == ""
    assert record.service_name == "test"
    assert campaign_id_ctx.get() == ""
    assert donation_id_ctx.get() == ""


def test_startup_config_masks_credentials(monkeypatch):
    monkeypatch.setenv("POSTGRES_DSN", "postgresql+psycopg://notify:hunter2@db:5432/welfarehub")
    monkeypatch.setenv("RAZORPAY_KEY_SECRET", "s3cr3t")
    monkeypatch.setenv("RAZORPAY_KEY_ID", "")

    assert _safe_env("POSTGRES_DSN") == "postgresql+psycopg://notify:***@db:5432/welfarehub"
    assert _safe_env("RAZORPAY_KEY_SECRET") == "<redacted>"
    assert _safe_env("RAZORPAY_KEY_ID") == "<empty>"
    assert _safe_env("WELFAREHUB_NOT_SET") == "<unset>"
