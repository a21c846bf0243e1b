"""API request schemas for audience preview and segment endpoints."""

from typing import Literal

from pydantic import Field, field_validator

from welfarehub.services.audience.criteria import CamelModel, Channel, Role, TargetingCriteria


class AudiencePreviewRequest(CamelModel):
    """Body of `POST /admin/notifications/audience/preview`."""

    criteria: TargetingCriteria
    channels: list[Channel] = Field(default_factory=list)
    exclude_opted_out: bool = True


class SegmentCreateRequest(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    criteria: TargetingCriteria
    is_shared: bool = False

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name is required")
        return value


class SegmentUpdateRequest(CamelModel):
    """Partial update; omitted fields are left untouched."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    criteria: TargetingCriteria | None = None
    is_shared: bool | None = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str | None) -> str | None:
        if value is None:
            return value
        value = value.strip()
        if not value:
            raise ValueError("name must not be blank")
        return value


class SegmentListQuery(CamelModel):
    """Query-string filters for the segment list."""

    created_by: str | None = None
    is_shared: bool | None = None
    roles: list[Role] = Field(default_factory=list)
    locations: list[str] = Field(default_factory=list)
    search: str | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["createdAt", "updatedAt", "name", "userCount", "lastUpdated"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"
