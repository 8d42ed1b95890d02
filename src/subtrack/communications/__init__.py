"""Admin notifications over e-mail and SMS."""

from subtrack.communications.dispatcher import ChannelDispatcher, NotificationDispatcher
from subtrack.communications.email import EmailSender
from subtrack.communications.models import (
    BatchKind,
    DispatchResult,
    EmailMessage,
    NotificationBatch,
    NotificationChannel,
    NotificationEntry,
    SMSMessage,
)
from subtrack.communications.sms import SmsSender
from subtrack.communications.templates import TemplateRenderer

__all__ = [
    "BatchKind",
    "ChannelDispatcher",
    "DispatchResult",
    "EmailMessage",
    "EmailSender",
    "NotificationBatch",
    "NotificationChannel",
    "NotificationDispatcher",
    "NotificationEntry",
    "SMSMessage",
    "SmsSender",
    "TemplateRenderer",
]
