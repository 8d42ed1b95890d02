"""
Notification dispatch.

Routes a rendered batch to the admin recipient of each channel and records
every attempt in the activity log. A failed channel is reported through its
``DispatchResult``; nothing here raises into the scheduler.
"""

from typing import Protocol, runtime_checkable

import structlog
from pydantic import ValidationError as PydanticValidationError

from subtrack.audit.service import AuditService
from subtrack.auth.context import ActorContext
from subtrack.auth.permissions import Permission, require_permission
from subtrack.communications.email import EmailSender
from subtrack.communications.models import (
    BatchKind,
    DispatchResult,
    EmailMessage,
    NotificationBatch,
    NotificationChannel,
    SMSMessage,
)
from subtrack.communications.sms import SmsSender
from subtrack.communications.templates import TemplateRenderer
from subtrack.exceptions import SubTrackError
from subtrack.settings import Settings, get_settings

logger = structlog.get_logger(__name__)


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Anything that can deliver one batch over one channel."""

    async def send(self, channel: NotificationChannel, batch: NotificationBatch) -> DispatchResult: ...


class ChannelDispatcher:
    """Default dispatcher: SMTP for e-mail, HTTP gateway for SMS."""

    def __init__(
        self,
        email_sender: EmailSender | None = None,
        sms_sender: SmsSender | None = None,
        renderer: TemplateRenderer | None = None,
        audit: AuditService | None = None,
        config: Settings.NotificationSettings | None = None,
    ) -> None:
        self.config = config or get_settings().notifications
        self.email_sender = email_sender or EmailSender(self.config)
        self.sms_sender = sms_sender or SmsSender(self.config)
        self.renderer = renderer or TemplateRenderer()
        self.audit = audit or AuditService()

    def _recipient(self, channel: NotificationChannel) -> str:
        if channel is NotificationChannel.EMAIL:
            return self.config.admin_email
        return self.config.admin_phone

    async def send(self, channel: NotificationChannel, batch: NotificationBatch) -> DispatchResult:
        return await self._deliver(channel, batch, self._recipient(channel))

    async def send_test(
        self, actor: ActorContext, channel: NotificationChannel, recipient: str
    ) -> DispatchResult:
        """Send a configuration test message to an arbitrary recipient."""
        permission = (
            Permission.TEST_EMAIL if channel is NotificationChannel.EMAIL else Permission.TEST_SMS
        )
        require_permission(actor, permission)
        return await self._deliver(
            channel, NotificationBatch(kind=BatchKind.TEST), recipient, actor=actor
        )

    async def _deliver(
        self,
        channel: NotificationChannel,
        batch: NotificationBatch,
        recipient: str,
        actor: ActorContext | None = None,
    ) -> DispatchResult:
        if not recipient:
            result = DispatchResult(
                channel=channel, success=False, error=f"No {channel.value} recipient configured"
            )
            logger.warning("dispatch.no_recipient", channel=channel.value, kind=batch.kind.value)
            await self._record(result, recipient, None, actor)
            return result

        rendered = self.renderer.render(batch, channel)
        try:
            if channel is NotificationChannel.EMAIL:
                result = await self.email_sender.send(
                    EmailMessage(
                        to=recipient,
                        subject=rendered.subject,
                        text_body=rendered.text_body,
                        html_body=rendered.html_body,
                    )
                )
            else:
                result = await self.sms_sender.send(SMSMessage(to=recipient, body=rendered.text_body))
        except PydanticValidationError as e:
            result = DispatchResult(
                channel=channel, success=False, recipient=recipient, error=str(e)
            )

        logger.info(
            "dispatch.completed",
            channel=channel.value,
            kind=batch.kind.value,
            entries=len(batch.entries),
            success=result.success,
            error=result.error,
        )
        await self._record(result, recipient, rendered.subject or None, actor)
        return result

    async def _record(
        self,
        result: DispatchResult,
        recipient: str,
        subject: str | None,
        actor: ActorContext | None,
    ) -> None:
        try:
            await self.audit.log_communication(
                result.channel.value,
                recipient or "(unset)",
                result.success,
                subject=subject,
                error=result.error,
                user_id=actor.user_id if actor else None,
            )
        except SubTrackError as e:
            logger.error("dispatch.audit_failed", channel=result.channel.value, error=e.message)


__all__ = ["NotificationDispatcher", "ChannelDispatcher"]
