"""Audience service database models."""

from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from welfarehub.common.db import Base, JSONDocument
from welfarehub.common.timeutils import as_utc


class AudienceSegment(Base):
    """Named, reusable targeting criteria with a cached population count."""

    __tablename__ = "audience_segments"
    __table_args__ = (UniqueConstraint("created_by", "name", name="uq_segment_creator_name"),)

    segment_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String(100))
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    criteria: Mapped[dict] = mapped_column(JSONDocument)
    user_count: Mapped[int] = mapped_column(Integer, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    is_shared: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    created_by: Mapped[str] = mapped_column(String, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    def needs_count_update(self, now: datetime, stale_after_seconds: int = 3600) -> bool:
        """True once the cached count is strictly older than the staleness window."""

        return now - as_utc(self.last_updated) > timedelta(seconds=stale_after_seconds)

    def editable_by(self, user_id: str, role: str) -> bool:
        return self.created_by == user_id or role == "admin"

    def visible_to(self, user_id: str) -> bool:
        return self.created_by == user_id or self.is_shared
