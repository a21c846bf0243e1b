"""API request schemas for campaign endpoints."""

from datetime import datetime
from typing import Annotated, Literal

from pydantic import AfterValidator, Field, StrictInt, model_validator

from welfarehub.services.audience.criteria import CamelModel, Channel, Role, TargetingCriteria

CampaignStatus = Literal["draft", "scheduled", "running", "paused", "completed", "failed", "cancelled"]


class CampaignTargeting(TargetingCriteria):
    """Audience criteria plus campaign-only delivery options."""

    exclude_opted_out: bool = True
    custom_segments: list[str] = Field(default_factory=list)


class ChannelContent(CamelModel):
    message: str = Field(default="", max_length=1000)
    subject: str | None = Field(default=None, max_length=200)
    attachments: list[str] = Field(default_factory=list)


class RecurringSchedule(CamelModel):
    frequency: Literal["daily", "weekly", "monthly"]
    interval: int = Field(default=1, ge=1, le=365)
    end_date: datetime | None = None


class Scheduling(CamelModel):
    type: Literal["immediate", "scheduled", "recurring"] = "immediate"
    scheduled_for: datetime | None = None
    timezone: str = "UTC"
    recurring: RecurringSchedule | None = None

    @model_validator(mode="after")
    def _type_specific_fields(self) -> "Scheduling":
        if self.type == "scheduled" and self.scheduled_for is None:
            raise ValueError("scheduledFor is required for scheduled campaigns")
        if self.type == "recurring" and self.recurring is None:
            raise ValueError("recurring settings are required for recurring campaigns")
        return self


def _unique_channels(value: list[str]) -> list[str]:
    if len(set(value)) != len(value):
        raise ValueError("channels must be unique")
    return value


ChannelList = Annotated[list[Channel], Field(min_length=1), AfterValidator(_unique_channels)]


class CampaignCreateRequest(CamelModel):
    """Body of `POST /admin/notifications/campaigns`.

    Content may be incomplete while the campaign is a draft; starting it checks
    that every channel has a message.
    """

    name: str = Field(min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    targeting: CampaignTargeting
    channels: ChannelList
    content: dict[Channel, ChannelContent] = Field(default_factory=dict)
    scheduling: Scheduling = Field(default_factory=Scheduling)


class CampaignUpdateRequest(CamelModel):
    """Partial update for draft or scheduled campaigns."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    targeting: CampaignTargeting | None = None
    channels: ChannelList | None = None
    content: dict[Channel, ChannelContent] | None = None
    scheduling: Scheduling | None = None
    status: CampaignStatus | None = None


class CampaignListQuery(CamelModel):
    status: CampaignStatus | None = None
    created_by: str | None = None
    channels: list[Channel] = Field(default_factory=list)
    roles: list[Role] = Field(default_factory=list)
    date_from: datetime | None = None
    date_to: datetime | None = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=20, ge=1, le=100)
    sort_by: Literal["createdAt", "updatedAt", "name", "status"] = "createdAt"
    sort_order: Literal["asc", "desc"] = "desc"


class StartCampaignRequest(CamelModel):
    force: bool = False


class LifecycleReasonRequest(CamelModel):
    """Optional operator note for pause/resume."""

    reason: str | None = Field(default=None, max_length=200)


class ProgressUpdateRequest(CamelModel):
    """Counters reported by the delivery worker; negatives are rejected by the service."""

    sent: StrictInt
    failed: StrictInt
    total: StrictInt | None = None
    status: CampaignStatus | None = None
