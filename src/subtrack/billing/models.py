"""
Subscriber and payment tables.

A payment's covered billing periods are first-class rows in
``payment_periods`` rather than text embedded in the payment notes.
"""

from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from subtrack.db import Base, TimestampMixin


class SubscriptionFrequency(str, Enum):
    """Billing unit of a subscriber."""

    MONTHLY = "monthly"
    ANNUAL = "annual"


class SubscriberStatus(str, Enum):
    """Persisted subscriber status.

    ``EXPIRED`` is never written by the core; it is derived on read.
    """

    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class PaymentMode(str, Enum):
    ONLINE_TRANSFER = "online_transfer"
    PHYSICAL_TRANSFER = "physical_transfer"


def _new_id() -> str:
    return str(uuid4())


class Subscriber(Base, TimestampMixin):
    """Subscriber table."""

    __tablename__ = "subscribers"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)

    # Identity & contact
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)

    # Billing terms
    frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionFrequency.MONTHLY.value
    )
    rate: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reminder_days_before: Mapped[int] = mapped_column(Integer, nullable=False, default=7)

    # Lifecycle
    subscription_end_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, index=True
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriberStatus.ACTIVE.value, index=True
    )
    status_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    payments: Mapped[list["Payment"]] = relationship(
        back_populates="subscriber",
        cascade="all, delete-orphan",
        order_by=lambda: Payment.payment_date.desc(),
    )

    __table_args__ = (Index("ix_subscribers_status_end_date", "status", "subscription_end_date"),)

    def __repr__(self) -> str:
        return f"<Subscriber(id={self.id}, name={self.full_name}, status={self.status})>"


class Payment(Base, TimestampMixin):
    """Payment table."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscriber_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("subscribers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_paid: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payment_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    # Pass-through metadata
    receipt_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    payment_mode: Mapped[str | None] = mapped_column(String(30), nullable=True)
    proof_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    subscriber: Mapped[Subscriber] = relationship(back_populates="payments")
    periods: Mapped[list["PaymentPeriod"]] = relationship(
        back_populates="payment",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by=lambda: [PaymentPeriod.year, PaymentPeriod.month],
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, subscriber_id={self.subscriber_id}, amount={self.amount_paid})>"


class PaymentPeriod(Base):
    """One display-calendar (year, month) pair covered by a payment."""

    __tablename__ = "payment_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("payments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    # 0-indexed display month
    month: Mapped[int] = mapped_column(Integer, nullable=False)

    payment: Mapped[Payment] = relationship(back_populates="periods")

    __table_args__ = (UniqueConstraint("payment_id", "year", "month", name="uq_payment_period"),)
