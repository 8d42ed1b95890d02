"""
SubTrack exceptions.

Every error raised by the core carries a machine-readable code, an HTTP-style
status code, a context payload and an optional recovery hint.
"""

from typing import Any


class SubTrackError(Exception):
    """
    Base error with enhanced context.

    Attributes:
        message: Human-readable error message
        error_code: Machine-readable error code for API responses
        status_code: HTTP status code for this error type
        context: Additional context data about the error
        recovery_hint: Suggested action to resolve the error
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        status_code: int = 400,
        context: dict[str, Any] | None = None,
        recovery_hint: str | None = None,
    ):
        self.message = message
        self.error_code = error_code or "SUBTRACK_ERROR"
        self.status_code = status_code
        self.context = context or {}
        self.recovery_hint = recovery_hint
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for API responses."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
            "recovery_hint": self.recovery_hint,
        }


class InvalidCalendarDate(SubTrackError):
    """Day, month or year outside the display calendar's table."""

    def __init__(self, year: int, month: int, day: int, max_day: int | None = None) -> None:
        context: dict[str, Any] = {"year": year, "month": month, "day": day}
        if max_day is not None:
            context["max_day"] = max_day
            message = f"Day {day} is out of range for month {month} of {year} (1-{max_day})"
        else:
            message = f"Month {month} of {year} is outside the supported calendar range"
        super().__init__(
            message,
            "INVALID_CALENDAR_DATE",
            status_code=400,
            context=context,
            recovery_hint="Pick a day within the month's length",
        )


class Unauthorized(SubTrackError):
    """Caller lacks the permission or minimum role for an operation."""

    def __init__(
        self,
        message: str,
        permission: str | None = None,
        required_role: str | None = None,
        actor_role: str | None = None,
    ) -> None:
        context = {}
        if permission:
            context["permission"] = permission
        if required_role:
            context["required_role"] = required_role
        if actor_role:
            context["actor_role"] = actor_role
        super().__init__(
            message,
            "UNAUTHORIZED",
            status_code=403,
            context=context,
            recovery_hint="Ask an administrator with the required role to perform this action",
        )


class NotFound(SubTrackError):
    """Requested entity does not exist."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, "NOT_FOUND", status_code=404, context=context)


class SubscriberNotFound(NotFound):
    def __init__(self, subscriber_id: str) -> None:
        super().__init__(
            f"Subscriber {subscriber_id} not found", context={"subscriber_id": subscriber_id}
        )
        self.error_code = "SUBSCRIBER_NOT_FOUND"


class PaymentNotFound(NotFound):
    def __init__(self, payment_id: str) -> None:
        super().__init__(f"Payment {payment_id} not found", context={"payment_id": payment_id})
        self.error_code = "PAYMENT_NOT_FOUND"


class UserNotFound(NotFound):
    def __init__(self, user_id: str) -> None:
        super().__init__(f"User {user_id} not found", context={"user_id": user_id})
        self.error_code = "USER_NOT_FOUND"


class InconsistentState(SubTrackError):
    """Transition is not legal from the subscriber's current status."""

    def __init__(
        self,
        message: str,
        current_status: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        context = dict(context or {})
        if current_status:
            context["current_status"] = current_status
        super().__init__(
            message,
            "INCONSISTENT_STATE",
            status_code=409,
            context=context,
            recovery_hint="Reload the subscriber and retry against its current status",
        )


class ValidationError(SubTrackError):
    """Input rejected before any state was touched."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message, "VALIDATION_ERROR", status_code=422, context=context)


class DispatchFailure(SubTrackError):
    """Notification channel failed. Never fatal to state transitions."""

    def __init__(self, channel: str, message: str) -> None:
        super().__init__(
            message,
            "DISPATCH_FAILURE",
            status_code=502,
            context={"channel": channel},
            recovery_hint="Check the channel configuration and provider status",
        )
        self.channel = channel


class PersistenceFailure(SubTrackError):
    """Storage write failed."""

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(
            message,
            "PERSISTENCE_FAILURE",
            status_code=500,
            context=context,
            recovery_hint="Retry the operation; no partial changes were saved",
        )


__all__ = [
    "SubTrackError",
    "InvalidCalendarDate",
    "Unauthorized",
    "NotFound",
    "SubscriberNotFound",
    "PaymentNotFound",
    "UserNotFound",
    "InconsistentState",
    "ValidationError",
    "DispatchFailure",
    "PersistenceFailure",
]
