"""HTTP surface for donation payment maintenance."""

import json

from fastapi import Depends, FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.responses import StreamingResponse

from welfarehub.common.auth import Actor, require_recheck
from welfarehub.common.config import settings
from welfarehub.common.db import SessionLocal
from welfarehub.common.http import install_common_routes
from welfarehub.common.logging import configure_logging, logger
from welfarehub.common.startup import log_startup_config
from welfarehub.common.tracing import instrument_app, setup_tracing
from welfarehub.services.donations.schemas import BulkRecheckRequest
from welfarehub.services.donations.service import PaymentRecheckService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "RAZORPAY_BASE_URL", "RAZORPAY_KEY_ID", "GATEWAY_TIMEOUT_SECONDS"],
)
service = PaymentRecheckService(SessionLocal)

app = FastAPI(title="WelfareHub Donation Service")
instrument_app(app)
install_common_routes(app)


def ndjson_stream(events):
    """Serialize events as newline-delimited JSON, ending in an error event on failure."""

    try:
        for event in events:
            yield json.dumps(jsonable_encoder(event)) + "\n"
    except Exception as exc:
        logger.exception("bulk_recheck_stream_failed error=%s", exc)
        yield json.dumps({"type": "error", "error": "Bulk payment recheck failed"}) + "\n"


@app.post("/admin/donations/bulk-recheck-payment")
def bulk_recheck_payment(req: BulkRecheckRequest, actor: Actor = Depends(require_recheck)):
    """Recheck many donations, streaming progress as NDJSON."""

    events = service.iter_recheck(req.donation_ids, actor.user_id)
    return StreamingResponse(
        ndjson_stream(events),
        media_type="application/x-ndjson",
        headers={"Cache-Control": "no-cache"},
    )
