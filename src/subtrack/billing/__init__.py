"""Subscribers, payments and the billing period resolver."""

from subtrack.billing.models import (
    Payment,
    PaymentMode,
    PaymentPeriod,
    Subscriber,
    SubscriberStatus,
    SubscriptionFrequency,
)
from subtrack.billing.periods import BillingPeriod, PeriodResolution, resolve_payment
from subtrack.billing.results import OperationResult, run_action
from subtrack.billing.service import SubscriptionService

__all__ = [
    "BillingPeriod",
    "OperationResult",
    "Payment",
    "PaymentMode",
    "PaymentPeriod",
    "PeriodResolution",
    "Subscriber",
    "SubscriberStatus",
    "SubscriptionFrequency",
    "SubscriptionService",
    "resolve_payment",
    "run_action",
]
