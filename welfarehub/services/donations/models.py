"""Donation service database models."""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from welfarehub.common.db import Base


class Donation(Base):
    """A donation and the payment state last confirmed for it."""

    __tablename__ = "donations"

    donation_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    amount_paise: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3), default="INR")
    donor_email: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, index=True, default="pending")
    payment_verified: Mapped[bool] = mapped_column(Boolean, default=False)
    payment_verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    razorpay_payment_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PaymentRecheck(Base):
    """Audit row for every gateway recheck attempt, successful or not."""

    __tablename__ = "payment_rechecks"

    recheck_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    donation_id: Mapped[str] = mapped_column(ForeignKey("donations.donation_id"), index=True)
    razorpay_payment_id: Mapped[str] = mapped_column(String)
    performed_by: Mapped[str] = mapped_column(String)
    previous_status: Mapped[str] = mapped_column(String)
    new_status: Mapped[str] = mapped_column(String)
    gateway_status: Mapped[str | None] = mapped_column(String, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean)
    error_code: Mapped[str | None] = mapped_column(String, nullable=True)
    error_message: Mapped[str | None] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
