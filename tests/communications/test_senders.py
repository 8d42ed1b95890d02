"""Tests for the SMTP and HTTP gateway senders."""

import base64
import json
import smtplib
from unittest.mock import MagicMock

import httpx
import pytest

from subtrack.communications.email import EmailSender
from subtrack.communications.models import EmailMessage, NotificationChannel, SMSMessage
from subtrack.communications.sms import SmsSender
from subtrack.settings import Settings

pytestmark = pytest.mark.unit


def _config(**overrides) -> Settings.NotificationSettings:
    values = {
        "smtp_host": "smtp.example.com",
        "smtp_port": 587,
        "smtp_username": "mailer",
        "smtp_password": "secret",
        "from_address": "noreply@example.com",
        "from_name": "SubTrack",
        "sms_gateway_url": "https://sms.example.com/send",
        "sms_gateway_auth_type": "bearer",
        "sms_gateway_auth_value": "token-123",
    }
    values.update(overrides)
    return Settings.NotificationSettings(**values)


class TestMessages:
    def test_single_recipient_becomes_list(self):
        assert EmailMessage(to="a@example.com", subject="s", text_body="b").to == ["a@example.com"]

    def test_phone_is_normalized(self):
        assert SMSMessage(to="+977 980-000-0000", body="hi").to == "+9779800000000"

    def test_short_phone_is_rejected(self):
        with pytest.raises(ValueError):
            SMSMessage(to="123", body="hi")


class TestEmailSender:
    @pytest.fixture
    def smtp(self, monkeypatch):
        smtp_class = MagicMock()
        monkeypatch.setattr(smtplib, "SMTP", smtp_class)
        return smtp_class

    @pytest.fixture
    def message(self):
        return EmailMessage(
            to="owner@example.com", subject="Hello", text_body="Plain", html_body="<p>Rich</p>"
        )

    @pytest.mark.asyncio
    async def test_send_uses_starttls_and_login(self, smtp, message):
        result = await EmailSender(_config()).send(message)

        assert result.success is True
        assert result.channel is NotificationChannel.EMAIL
        smtp.assert_called_once_with("smtp.example.com", 587, timeout=30.0)
        server = smtp.return_value.__enter__.return_value
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("mailer", "secret")
        sent = server.send_message.call_args.args[0]
        assert sent["Subject"] == "Hello"
        assert sent["From"] == "SubTrack <noreply@example.com>"
        assert server.send_message.call_args.kwargs["to_addrs"] == ["owner@example.com"]

    @pytest.mark.asyncio
    async def test_smtp_errors_are_reported_not_raised(self, smtp, message):
        server = smtp.return_value.__enter__.return_value
        server.send_message.side_effect = smtplib.SMTPException("relay denied")

        result = await EmailSender(_config()).send(message)

        assert result.success is False
        assert "relay denied" in result.error

    @pytest.mark.asyncio
    async def test_disabled_channel(self, smtp, message):
        result = await EmailSender(_config(email_enabled=False)).send(message)
        assert result.success is False
        assert result.error == "Email service not configured"
        smtp.assert_not_called()


class TestSmsSender:
    @pytest.fixture
    def gateway(self, monkeypatch):
        """Route the sender's AsyncClient through a MockTransport."""
        requests: list[httpx.Request] = []
        state = {"status": 200, "error": None}

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            if state["error"]:
                raise state["error"]
            return httpx.Response(state["status"], json={"ok": True})

        real_client = httpx.AsyncClient

        def client_factory(**kwargs):
            return real_client(transport=httpx.MockTransport(handler), **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", client_factory)
        return requests, state

    @pytest.mark.asyncio
    async def test_post_with_bearer_auth(self, gateway):
        requests, _ = gateway
        result = await SmsSender(_config()).send(SMSMessage(to="9800000000", body="Hi"))

        assert result.success is True
        request = requests[0]
        assert request.method == "POST"
        assert request.headers["Authorization"] == "Bearer token-123"
        assert json.loads(request.content) == {"to": "9800000000", "message": "Hi"}

    @pytest.mark.asyncio
    async def test_get_sends_query_params(self, gateway):
        requests, _ = gateway
        sender = SmsSender(_config(sms_gateway_method="GET", sms_gateway_auth_type="api_key"))
        await sender.send(SMSMessage(to="9800000000", body="Hi"))

        request = requests[0]
        assert request.method == "GET"
        assert request.url.params["to"] == "9800000000"
        assert request.headers["X-API-Key"] == "token-123"

    @pytest.mark.asyncio
    async def test_basic_auth_header(self, gateway):
        requests, _ = gateway
        sender = SmsSender(
            _config(sms_gateway_auth_type="basic", sms_gateway_auth_value="user:pass")
        )
        await sender.send(SMSMessage(to="9800000000", body="Hi"))
        expected = base64.b64encode(b"user:pass").decode()
        assert requests[0].headers["Authorization"] == f"Basic {expected}"

    @pytest.mark.asyncio
    async def test_non_2xx_is_a_failure(self, gateway):
        _, state = gateway
        state["status"] = 503
        result = await SmsSender(_config()).send(SMSMessage(to="9800000000", body="Hi"))
        assert result.success is False
        assert result.error == "Gateway returned HTTP 503"

    @pytest.mark.asyncio
    async def test_transport_errors_are_reported(self, gateway):
        _, state = gateway
        state["error"] = httpx.ConnectError("connection refused")
        result = await SmsSender(_config()).send(SMSMessage(to="9800000000", body="Hi"))
        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_gateway(self, gateway):
        requests, _ = gateway
        result = await SmsSender(_config(sms_gateway_url=None)).send(
            SMSMessage(to="9800000000", body="Hi")
        )
        assert result.error == "SMS service not configured"
        assert requests == []
