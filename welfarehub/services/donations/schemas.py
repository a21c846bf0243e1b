"""API request schemas for donation admin endpoints."""

from pydantic import Field

from welfarehub.services.audience.criteria import CamelModel


class BulkRecheckRequest(CamelModel):
    """Body of `POST /admin/donations/bulk-recheck-payment`."""

    donation_ids: list[str] = Field(min_length=1)
