"""HTTP surface for audience preview and saved segments."""

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
from welfarehub.services.audience.schemas import (
    AudiencePreviewRequest,
    SegmentCreateRequest,
    SegmentListQuery,
    SegmentUpdateRequest,
)
from welfarehub.services.audience.service import AudienceService

configure_logging()
setup_tracing(settings.service_name)
log_startup_config(
    settings.service_name,
    ["SERVICE_NAME", "POSTGRES_DSN", "SEGMENT_STALE_AFTER_SECONDS", "ADMIN_ROLES"],
)
service = AudienceService(SessionLocal)

app = FastAPI(title="WelfareHub Audience Service")
instrument_app(app)
install_common_routes(app)

PREFIX = "/admin/notifications/audience"


@app.post(f"{PREFIX}/preview")
def preview_audience(req: AudiencePreviewRequest, actor: Actor = Depends(require_admin_panel)):
    """Size an audience and break it down per channel."""

    return ok(service.preview(req.criteria, req.channels, req.exclude_opted_out))


@app.get(f"{PREFIX}/segments")
def list_segments(
    created_by: str | None = Query(default=None, alias="createdBy"),
    is_shared: bool | None = Query(default=None, alias="isShared"),
    roles: list[str] = Query(default=[]),
    locations: list[str] = Query(default=[]),
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
    sort_by: str = Query(default="createdAt", alias="sortBy"),
    sort_order: str = Query(default="desc", alias="sortOrder"),
    actor: Actor = Depends(require_admin_panel),
):
    """List segments visible to the caller."""

    try:
        query = SegmentListQuery(
            created_by=created_by,
            is_shared=is_shared,
            roles=roles,
            locations=locations,
            search=search,
            page=page,
            limit=limit,
            sort_by=sort_by,
            sort_order=sort_order,
        )
    except SchemaValidationError as exc:
        raise ValidationError.from_pydantic("Invalid query parameters", exc) from exc
    result = service.list_segments(query, actor)
    return ok(result["segments"], pagination=result["pagination"])


@app.post(f"{PREFIX}/segments", status_code=status.HTTP_201_CREATED)
def create_segment(req: SegmentCreateRequest, actor: Actor = Depends(require_admin_panel)):
    """Save a new segment owned by the caller."""

    return ok(service.create_segment(req, actor), message="Segment created successfully")


@app.get(f"{PREFIX}/segments/{{segment_id}}")
def get_segment(
    segment_id: str,
    include_users: bool = Query(default=False, alias="includeUsers"),
    refresh_count: bool = Query(default=False, alias="refreshCount"),
    actor: Actor = Depends(require_admin_panel),
):
    """Fetch one segment, optionally with masked sample users."""

    return ok(service.get_segment(segment_id, actor, include_users=include_users, refresh_count=refresh_count))


@app.put(f"{PREFIX}/segments/{{segment_id}}")
def update_segment(segment_id: str, req: SegmentUpdateRequest, actor: Actor = Depends(require_admin_panel)):
    """Edit a segment; only its creator or an admin may do so."""

    return ok(service.update_segment(segment_id, req, actor), message="Segment updated successfully")


@app.delete(f"{PREFIX}/segments/{{segment_id}}")
def delete_segment(segment_id: str, actor: Actor = Depends(require_admin_panel)):
    """Delete a segment; only its creator or an admin may do so."""

    service.delete_segment(segment_id, actor)
    return ok(message="Segment deleted successfully")


@app.get(f"{PREFIX}/segments/{{segment_id}}/users")
def list_segment_users(
    segment_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=50, ge=1, le=100),
    actor: Actor = Depends(require_admin_panel),
):
    """Page through the users a segment matches, contact details masked."""

    return ok(service.list_segment_users(segment_id, actor, page=page, limit=limit))
