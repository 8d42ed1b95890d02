"""
Message templates for notification batches.

Rendered with a sandboxed Jinja2 environment. Subjects and SMS bodies are
plain text; e-mail bodies come in text and HTML.
"""

from dataclasses import dataclass

from jinja2 import StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from subtrack.calendar.adapter import format_display
from subtrack.calendar.constants import DisplayStyle
from subtrack.communications.models import BatchKind, NotificationBatch, NotificationChannel


@dataclass(frozen=True)
class MessageTemplate:
    subject: str
    text_body: str
    html_body: str | None = None


@dataclass(frozen=True)
class RenderedMessage:
    subject: str
    text_body: str
    html_body: str | None = None


_REMINDER_EMAIL = MessageTemplate(
    subject=(
        "Subscription Expiry Alert: {{ count }} subscriber{{ plural }} expiring soon"
    ),
    text_body=(
        "The following subscriptions are about to expire:\n"
        "{% for e in entries %}"
        "- {{ e.name }} <{{ e.contact }}>: {{ e.days }} day{{ 's' if e.days != 1 else '' }} left "
        "(ends {{ e.end_date | bs_date }})\n"
        "{% endfor %}"
    ),
    html_body=(
        "<h2>Subscriptions expiring soon</h2><ul>"
        "{% for e in entries %}"
        "<li><strong>{{ e.name }}</strong> ({{ e.contact }}): {{ e.days }} day"
        "{{ 's' if e.days != 1 else '' }} left, ends {{ e.end_date | bs_date }}</li>"
        "{% endfor %}</ul>"
    ),
)

_DEACTIVATION_EMAIL = MessageTemplate(
    subject="Status Change Alert: {{ count }} subscriber{{ plural }} marked inactive",
    text_body=(
        "The following subscribers were marked inactive after the grace period:\n"
        "{% for e in entries %}"
        "- {{ e.name }} <{{ e.contact }}>: {{ e.days }} day{{ 's' if e.days != 1 else '' }} overdue "
        "(ended {{ e.end_date | bs_date }})\n"
        "{% endfor %}"
    ),
    html_body=(
        "<h2>Subscribers marked inactive</h2><ul>"
        "{% for e in entries %}"
        "<li><strong>{{ e.name }}</strong> ({{ e.contact }}): {{ e.days }} day"
        "{{ 's' if e.days != 1 else '' }} overdue, ended {{ e.end_date | bs_date }}</li>"
        "{% endfor %}</ul>"
    ),
)

_TEST_EMAIL = MessageTemplate(
    subject="Test Email from SubTrack",
    text_body="Your SubTrack e-mail configuration is working correctly.",
)

_REMINDER_SMS = MessageTemplate(
    subject="",
    text_body=(
        "SubTrack Alert: {{ count }} subscription{{ plural }} expiring soon. "
        "{% for e in entries %}{{ e.name }}: {{ e.days }}d left"
        "{{ ', ' if not loop.last else '' }}{% endfor %}. Check your email for details."
    ),
)

_DEACTIVATION_SMS = MessageTemplate(
    subject="",
    text_body=(
        "SubTrack Alert: {{ count }} subscriber{{ plural }} marked INACTIVE due to non-payment. "
        "{% for e in entries %}{{ e.name }}: {{ e.days }}d overdue"
        "{{ ', ' if not loop.last else '' }}{% endfor %}. Check email for details."
    ),
)

_TEST_SMS = MessageTemplate(
    subject="",
    text_body="SubTrack Test SMS: Your SMS configuration is working correctly!",
)

TEMPLATES: dict[tuple[BatchKind, NotificationChannel], MessageTemplate] = {
    (BatchKind.REMINDER, NotificationChannel.EMAIL): _REMINDER_EMAIL,
    (BatchKind.DEACTIVATION, NotificationChannel.EMAIL): _DEACTIVATION_EMAIL,
    (BatchKind.TEST, NotificationChannel.EMAIL): _TEST_EMAIL,
    (BatchKind.REMINDER, NotificationChannel.SMS): _REMINDER_SMS,
    (BatchKind.DEACTIVATION, NotificationChannel.SMS): _DEACTIVATION_SMS,
    (BatchKind.TEST, NotificationChannel.SMS): _TEST_SMS,
}


class TemplateRenderer:
    """Render registered templates for a batch."""

    def __init__(self, templates: dict | None = None) -> None:
        self.templates = templates or TEMPLATES
        self.jinja_env = SandboxedEnvironment(
            autoescape=False,
            trim_blocks=True,
            lstrip_blocks=True,
            undefined=StrictUndefined,
        )
        self.jinja_env.filters["bs_date"] = lambda value: format_display(value, DisplayStyle.LONG)
        self._html_env = SandboxedEnvironment(autoescape=True, undefined=StrictUndefined)
        self._html_env.filters.update(self.jinja_env.filters)

    def render(self, batch: NotificationBatch, channel: NotificationChannel) -> RenderedMessage:
        template = self.templates[(batch.kind, channel)]
        count = len(batch.entries)
        context = {
            "entries": batch.entries,
            "count": count,
            "plural": "" if count == 1 else "s",
        }
        return RenderedMessage(
            subject=self.jinja_env.from_string(template.subject).render(context),
            text_body=self.jinja_env.from_string(template.text_body).render(context),
            html_body=(
                self._html_env.from_string(template.html_body).render(context)
                if template.html_body
                else None
            ),
        )


__all__ = ["MessageTemplate", "RenderedMessage", "TEMPLATES", "TemplateRenderer"]
