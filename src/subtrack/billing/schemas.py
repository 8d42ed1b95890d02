"""
Pydantic schemas for subscriber and payment operations.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from subtrack.billing.models import (
    PaymentMode,
    Subscriber,
    SubscriberStatus,
    SubscriptionFrequency,
)
from subtrack.billing.periods import BillingPeriod
from subtrack.billing.status import display_status


class SubscriberCreate(BaseModel):
    """Schema for creating a subscriber."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(min_length=1, max_length=255, description="Subscriber name")
    email: EmailStr = Field(description="Contact e-mail")
    phone: str | None = Field(None, max_length=50, description="Contact phone for SMS")
    frequency: SubscriptionFrequency = Field(
        SubscriptionFrequency.MONTHLY, description="Billing unit"
    )
    rate: Decimal = Field(gt=0, description="Amount per billing unit")
    reminder_days_before: int = Field(7, gt=0, description="Reminder lead time in days")


class SubscriberUpdate(BaseModel):
    """Schema for editing subscriber details. Unset fields are left alone."""

    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str | None = Field(None, min_length=1, max_length=255)
    email: EmailStr | None = None
    phone: str | None = Field(None, max_length=50)
    frequency: SubscriptionFrequency | None = None
    rate: Decimal | None = Field(None, gt=0)
    reminder_days_before: int | None = Field(None, gt=0)


class PaymentInput(BaseModel):
    """Schema for recording a payment against display-calendar periods."""

    model_config = ConfigDict(str_strip_whitespace=True)

    periods: list[BillingPeriod] = Field(min_length=1, description="Covered (year, month) pairs")
    payment_date: datetime | None = Field(None, description="Defaults to now")
    amount_paid: Decimal | None = Field(
        None, gt=0, description="Overrides the resolved amount due"
    )
    receipt_number: str | None = Field(None, max_length=100)
    payment_mode: PaymentMode | None = None
    proof_url: str | None = Field(None, max_length=500)
    notes: str | None = None

    @field_validator("periods", mode="before")
    @classmethod
    def coerce_periods(cls, v):
        """Accept ``{"year": .., "month": ..}`` mappings as well as pairs."""
        if isinstance(v, list):
            return [BillingPeriod(**p) if isinstance(p, dict) else BillingPeriod(*p) for p in v]
        return v


class PaymentUpdate(BaseModel):
    """Schema for editing a recorded payment. The resolver is not re-run."""

    model_config = ConfigDict(str_strip_whitespace=True)

    amount_paid: Decimal | None = Field(None, gt=0)
    payment_date: datetime | None = None
    receipt_number: str | None = Field(None, max_length=100)
    payment_mode: PaymentMode | None = None
    notes: str | None = None


class SubscriberResponse(BaseModel):
    """Subscriber as shown to collaborators, with the derived status."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    email: str
    phone: str | None
    frequency: SubscriptionFrequency
    rate: Decimal
    reminder_days_before: int
    subscription_end_date: datetime
    status: SubscriberStatus
    display_status: SubscriberStatus
    status_notes: str | None

    @classmethod
    def from_subscriber(cls, subscriber: Subscriber, now: datetime) -> "SubscriberResponse":
        return cls(
            id=subscriber.id,
            full_name=subscriber.full_name,
            email=subscriber.email,
            phone=subscriber.phone,
            frequency=SubscriptionFrequency(subscriber.frequency),
            rate=subscriber.rate,
            reminder_days_before=subscriber.reminder_days_before,
            subscription_end_date=subscriber.subscription_end_date,
            status=SubscriberStatus(subscriber.status),
            display_status=display_status(
                subscriber.status, subscriber.subscription_end_date, now
            ),
            status_notes=subscriber.status_notes,
        )


__all__ = [
    "SubscriberCreate",
    "SubscriberUpdate",
    "PaymentInput",
    "PaymentUpdate",
    "SubscriberResponse",
]
