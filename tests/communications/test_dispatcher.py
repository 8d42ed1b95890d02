"""Tests for the channel dispatcher."""

from unittest.mock import AsyncMock

import pytest

from subtrack.audit.models import ActivityType, AuditFilterParams
from subtrack.calendar import from_display
from subtrack.communications.dispatcher import ChannelDispatcher, NotificationDispatcher
from subtrack.communications.models import (
    BatchKind,
    DispatchResult,
    NotificationBatch,
    NotificationChannel,
    NotificationEntry,
)
from subtrack.exceptions import Unauthorized
from subtrack.settings import Settings

pytestmark = pytest.mark.integration


def _ok(channel: NotificationChannel) -> DispatchResult:
    return DispatchResult(channel=channel, success=True, recipient="admin")


@pytest.fixture
def email_sender():
    sender = AsyncMock()
    sender.send.return_value = _ok(NotificationChannel.EMAIL)
    return sender


@pytest.fixture
def sms_sender():
    sender = AsyncMock()
    sender.send.return_value = _ok(NotificationChannel.SMS)
    return sender


@pytest.fixture
def config():
    return Settings.NotificationSettings(
        admin_email="owner@example.com", admin_phone="+9779800000000"
    )


@pytest.fixture
def channel_dispatcher(email_sender, sms_sender, audit, config):
    return ChannelDispatcher(
        email_sender=email_sender, sms_sender=sms_sender, audit=audit, config=config
    )


@pytest.fixture
def batch():
    return NotificationBatch(
        kind=BatchKind.REMINDER,
        entries=[
            NotificationEntry(
                subscriber_id="s1",
                name="Alice",
                contact="alice@example.com",
                days=7,
                end_date=from_display(2082, 3, 1),
            )
        ],
    )


class TestSend:
    def test_satisfies_protocol(self, channel_dispatcher):
        assert isinstance(channel_dispatcher, NotificationDispatcher)

    @pytest.mark.asyncio
    async def test_email_goes_to_admin(self, channel_dispatcher, email_sender, batch):
        result = await channel_dispatcher.send(NotificationChannel.EMAIL, batch)

        assert result.success
        message = email_sender.send.call_args.args[0]
        assert message.to == ["owner@example.com"]
        assert message.subject == "Subscription Expiry Alert: 1 subscriber expiring soon"

    @pytest.mark.asyncio
    async def test_sms_goes_to_admin_phone(self, channel_dispatcher, sms_sender, batch):
        await channel_dispatcher.send(NotificationChannel.SMS, batch)
        message = sms_sender.send.call_args.args[0]
        assert message.to == "+9779800000000"
        assert message.body.startswith("SubTrack Alert: 1 subscription expiring soon.")

    @pytest.mark.asyncio
    async def test_attempts_are_logged(self, channel_dispatcher, audit, actors, batch):
        await channel_dispatcher.send(NotificationChannel.EMAIL, batch)
        page = await audit.get_activities(
            actors["super_admin"], AuditFilterParams(activity_type=ActivityType.EMAIL_SENT)
        )
        assert page.activities[0].description == "EMAIL sent to owner@example.com"
        assert page.activities[0].details["subject"] == (
            "Subscription Expiry Alert: 1 subscriber expiring soon"
        )

    @pytest.mark.asyncio
    async def test_missing_recipient_is_a_failure(
        self, email_sender, sms_sender, audit, batch
    ):
        dispatcher = ChannelDispatcher(
            email_sender=email_sender,
            sms_sender=sms_sender,
            audit=audit,
            config=Settings.NotificationSettings(admin_phone=""),
        )
        result = await dispatcher.send(NotificationChannel.SMS, batch)
        assert result.success is False
        assert result.error == "No sms recipient configured"
        sms_sender.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_invalid_phone_is_a_failure_not_an_exception(
        self, email_sender, sms_sender, audit, batch
    ):
        dispatcher = ChannelDispatcher(
            email_sender=email_sender,
            sms_sender=sms_sender,
            audit=audit,
            config=Settings.NotificationSettings(admin_phone="12"),
        )
        result = await dispatcher.send(NotificationChannel.SMS, batch)
        assert result.success is False
        sms_sender.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_audit_failure_does_not_fail_the_send(self, channel_dispatcher, batch, monkeypatch):
        from subtrack.exceptions import PersistenceFailure

        async def broken(*args, **kwargs):
            raise PersistenceFailure("log table locked")

        monkeypatch.setattr(channel_dispatcher.audit, "log_communication", broken)
        result = await channel_dispatcher.send(NotificationChannel.EMAIL, batch)
        assert result.success


class TestSendTest:
    @pytest.mark.asyncio
    async def test_requires_permission(self, channel_dispatcher, actors):
        with pytest.raises(Unauthorized):
            await channel_dispatcher.send_test(
                actors["admin"], NotificationChannel.EMAIL, "someone@example.com"
            )

    @pytest.mark.asyncio
    async def test_super_admin_sends_to_any_recipient(
        self, channel_dispatcher, email_sender, audit, actors
    ):
        result = await channel_dispatcher.send_test(
            actors["super_admin"], NotificationChannel.EMAIL, "someone@example.com"
        )
        assert result.success
        message = email_sender.send.call_args.args[0]
        assert message.to == ["someone@example.com"]
        assert message.subject == "Test Email from SubTrack"

        page = await audit.get_activities(
            actors["super_admin"], AuditFilterParams(activity_type=ActivityType.EMAIL_SENT)
        )
        assert page.activities[0].user_id == actors["super_admin"].user_id
