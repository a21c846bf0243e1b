"""HTTP surface for notification campaigns and their lifecycle workers."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime

from fastapi import Depends, FastAPI, Query, status
from pydantic import ValidationError as SchemaValidationError

from welfarehub.common.auth import Actor, require_admin_panel
from welfarehub.common.config import settings
from welfarehub.common.db import SessionLocal
from welfarehub.common.errors import ValidationError
from welfarehub.common.http import install_common_routes, ok
from welfarehub.common.logging import configure_logging
from welfarehub.common.startup import log_startup_config
from welfarehub.common.tracing import instrument_app, setup_tracing
from welfarehub.services.campaigns.schemas import (
    CampaignCreateRequest,
    CampaignListQuery,
    CampaignUpdateRequest,
    LifecycleReasonRequest,
    ProgressUpdateRequest,
    StartCampaignRequest,
)
from welfarehub.services.campaigns.service import CampaignService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    [
        "SERVICE_NAME",
        "POSTGRES_DSN",
        "KAFKA_BOOTSTRAP_SERVERS",
        "AUDIENCE_ESTIMATE_MODE",
        "SCHEDULER_INTERVAL_SECONDS",
    ],
)
service = CampaignService(SessionLocal)


@asynccontextmanager
async def lifespan(_: FastAPI):
    """Run outbox publisher, delivery-report consumer and scheduler with the app."""

    tasks = [
        asyncio.create_task(service.outbox_publisher()),
        asyncio.create_task(service.start_consumers()),
        asyncio.create_task(service.scheduler()),
    ]
    yield
    for task in tasks:
        task.cancel()
    await service.kafka.close()


app = FastAPI(title="WelfareHub Campaign Service", lifespan=lifespan)
instrument_app(app)
install_common_routes(app)

PREFIX = "/admin/notifications/campaigns"


@app.get(PREFIX)
def list_campaigns(
    status_filter: str | None = Query(default=None, alias="status"),
    created_by: str | None = Query(default=None, alias="createdBy"),
    channels: list[str] = Query(default=[]),
    roles: list[str] = Query(default=[]),
    date_from: datetime | None = Query(default=None, alias="dateFrom"),
    date_to: datetime | None = Query(default=None, alias="dateTo"),
    page: int = 1,
    limit: int = 20,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    actor: Actor = Depends(require_admin_panel),
):
    """List campaigns with filters and pagination."""

    try:
        query = CampaignListQuery(
            status=status_filter,
            created_by=created_by,
            channels=channels,
            roles=roles,
            date_from=date_from,
            date_to=date_to,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except SchemaValidationError as exc:
        raise ValidationError.from_pydantic("Invalid query parameters", exc) from exc
    result = service.list_campaigns(query)
    return ok(result["campaigns"], pagination=result["pagination"])


@app.post(PREFIX, status_code=status.HTTP_201_CREATED)
def create_campaign(req: CampaignCreateRequest, actor: Actor = Depends(require_admin_panel)):
    """Create a draft campaign."""

    return ok(service.create_campaign(req, actor), message="Campaign created successfully")


@app.get(f"{PREFIX}/{{campaign_id}}")
def get_campaign(campaign_id: str, actor: Actor = Depends(require_admin_panel)):
    return ok(service.get_campaign(campaign_id))


@app.put(f"{PREFIX}/{{campaign_id}}")
def update_campaign(campaign_id: str, req: CampaignUpdateRequest, actor: Actor = Depends(require_admin_panel)):
    """Edit a draft or scheduled campaign."""

    return ok(service.update_campaign(campaign_id, req, actor), message="Campaign updated successfully")


@app.delete(f"{PREFIX}/{{campaign_id}}")
def delete_campaign(campaign_id: str, actor: Actor = Depends(require_admin_panel)):
    service.delete_campaign(campaign_id, actor)
    return ok(message="Campaign deleted successfully")


@app.post(f"{PREFIX}/{{campaign_id}}/start")
def start_campaign(
    campaign_id: str,
    req: StartCampaignRequest | None = None,
    actor: Actor = Depends(require_admin_panel),
):
    """Validate and launch (or schedule) a campaign."""

    result = service.start_campaign(campaign_id, actor, force=bool(req and req.force))
    campaign = result.pop("campaign")
    return ok(campaign, **result)


@app.post(f"{PREFIX}/{{campaign_id}}/pause")
def pause_campaign(
    campaign_id: str,
    req: LifecycleReasonRequest | None = None,
    actor: Actor = Depends(require_admin_panel),
):
    """Pause a running campaign and snapshot its counters."""

    result = service.pause_campaign(campaign_id, actor, reason=req.reason if req else None)
    return ok(result["campaign"], pauseInfo=result["pauseInfo"], message="Campaign paused successfully")


@app.post(f"{PREFIX}/{{campaign_id}}/resume")
def resume_campaign(
    campaign_id: str,
    req: LifecycleReasonRequest | None = None,
    actor: Actor = Depends(require_admin_panel),
):
    """Resume a paused campaign for its remaining recipients."""

    result = service.resume_campaign(campaign_id, actor, reason=req.reason if req else None)
    return ok(result["campaign"], resumeInfo=result["resumeInfo"], message="Campaign resumed successfully")


@app.post(f"{PREFIX}/{{campaign_id}}/cancel")
def cancel_campaign(campaign_id: str, actor: Actor = Depends(require_admin_panel)):
    return ok(service.cancel_campaign(campaign_id, actor), message="Campaign cancelled successfully")


@app.get(f"{PREFIX}/{{campaign_id}}/progress")
def get_progress(campaign_id: str, actor: Actor = Depends(require_admin_panel)):
    """Delivery progress report with completion estimate and recent activity."""

    return ok(service.get_progress(campaign_id))


@app.post(f"{PREFIX}/{{campaign_id}}/progress")
def update_progress(campaign_id: str, req: ProgressUpdateRequest, actor: Actor = Depends(require_admin_panel)):
    """Overwrite delivery counters reported by the send worker."""

    result = service.update_progress(campaign_id, req.sent, req.failed, total=req.total, status=req.status)
    return ok(result, message="Progress updated successfully")
