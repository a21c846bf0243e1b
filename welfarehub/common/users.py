"""Read-side mirror of platform users and their notification preferences.

The identity provider owns these records; services only read them to resolve
caller roles and to evaluate audiences.
"""

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column

from welfarehub.common.db import Base

ROLES = ("admin", "moderator", "scrapper", "field_executive", "user")

# Channel name -> preference column.
CHANNEL_PREFERENCE_FIELDS = {
    "web_push": "web_push_enabled",
    "email": "email_enabled",
    "whatsapp": "whatsapp_enabled",
    "sms": "sms_enabled",
}


class User(Base):
    """One platform account."""

    __tablename__ = "users"

    user_id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, default="")
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str] = mapped_column(String, index=True, default="user")
    location: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    last_login_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)


class UserPreferences(Base):
    """Per-channel notification opt-ins; NULL means the user never chose."""

    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(ForeignKey("users.user_id"), primary_key=True)
    web_push_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    email_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    whatsapp_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    sms_enabled: Mapped[bool | None] = mapped_column(Boolean, nullable=True)

    def opted_out(self, channel: str) -> bool:
        """Only an explicit `False` counts as opting out."""

        field = CHANNEL_PREFERENCE_FIELDS.get(channel)
        return field is not None and getattr(self, field) is False
