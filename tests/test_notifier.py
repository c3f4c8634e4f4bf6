"""Unit tests for email notifications."""

import smtplib
import sys
from datetime import datetime
from pathlib import Path

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from appointment_tracker.config import EmailSettings, Settings
from appointment_tracker.models import Target
from appointment_tracker.notifier import EmailNotifier, NotificationError, SmtpTransport
from appointment_tracker.retry import RetryPolicy
from appointment_tracker.templates import HTML_TEMPLATE, load_html_template, render

SITE = Settings().site(Target.REGULAR)
RECIPIENTS = ("me@example.com", "5551234567@vtext.com")
EMAIL = EmailSettings(sender="tracker@example.com", recipients=RECIPIENTS, password="app-password")
FIXED_NOW = datetime(2024, 3, 1, 9, 30, 0)


class FakeTransport:
    """Collects messages; fails the first `failures` sends."""

    def __init__(self, failures=0, error=NotificationError("smtp down")):
        self.failures = failures
        self.error = error
        self.attempts = 0
        self.sent = []

    def send(self, message):
        self.attempts += 1
        if self.attempts <= self.failures:
            raise self.error
        self.sent.append(message)


class FakeSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def make_notifier(transport, email=EMAIL, max_retries=3):
    return EmailNotifier(
        email,
        policy=RetryPolicy(max_retries=max_retries, jitter=0),
        transport=transport,
        sleep=FakeSleep(),
        clock=lambda: FIXED_NOW,
    )


def plain_body(message):
    return message.get_body(preferencelist=("plain",)).get_content()


def html_body(message):
    return message.get_body(preferencelist=("html",)).get_content()


class TestConfiguration:
    """Unconfigured notifiers never attempt delivery."""

    @pytest.mark.asyncio
    async def test_missing_credentials_returns_false(self):
        transport = FakeTransport()
        notifier = make_notifier(transport, email=EmailSettings(sender="a@b.com", recipients=RECIPIENTS))
        assert not notifier.is_configured
        assert await notifier.send(SITE, 4) is False
        assert transport.attempts == 0

    @pytest.mark.asyncio
    async def test_missing_notification_url_returns_false(self):
        transport = FakeTransport()
        notifier = make_notifier(transport)
        site = Settings(regular_notification_url=None).site(Target.REGULAR)
        assert await notifier.send(site, 4) is False
        assert transport.attempts == 0

    def test_smtp_transport_built_when_configured(self):
        notifier = EmailNotifier(EMAIL)
        assert isinstance(notifier.transport, SmtpTransport)
        assert notifier.transport.host == "smtp.gmail.com"
        assert notifier.transport.username == "tracker@example.com"

    def test_no_transport_without_credentials(self):
        notifier = EmailNotifier(EmailSettings())
        assert notifier.transport is None
        assert not notifier.is_configured


class TestMessage:
    """Tests for message content."""

    def test_message_addresses_all_recipients(self):
        message = make_notifier(FakeTransport()).build_message(SITE, 4)
        assert message["To"] == "me@example.com, 5551234567@vtext.com"
        assert message["From"] == "tracker@example.com"
        assert message["Subject"] == "REAL ID Appointment Available!"

    def test_text_part_is_sms_friendly(self):
        message = make_notifier(FakeTransport()).build_message(SITE, 4)
        text = plain_body(message).strip()
        assert text.startswith(SITE.notification_url)
        assert "4 REAL ID appointment(s) available at Regular DMV" in text
        assert "2024-03-01 09:30:00" in text

    def test_html_part_has_link_and_count(self):
        html = html_body(make_notifier(FakeTransport()).build_message(SITE, 4))
        assert f'href="{SITE.notification_url}"' in html
        assert ">4</span>" in html
        assert "Regular DMV" in html

    def test_custom_template(self, tmp_path):
        template = tmp_path / "alert.html"
        template.write_text("<p>{{count}} at {{location}}: {{booking_url}}</p>")
        email = EmailSettings(
            sender=EMAIL.sender, recipients=RECIPIENTS, password="x", template_file=template
        )
        html = html_body(make_notifier(FakeTransport(), email=email).build_message(SITE, 2))
        assert f"<p>2 at Regular DMV: {SITE.notification_url}</p>" in html

    def test_missing_template_falls_back(self, tmp_path):
        assert load_html_template(tmp_path / "nope.html") == HTML_TEMPLATE

    def test_render_escapes_and_keeps_unknown(self):
        assert render("{{a}} {{b}}", escape=True, a="<x>") == "&lt;x&gt; {{b}}"


class TestDelivery:
    """Tests for send() and send_test()."""

    @pytest.mark.asyncio
    async def test_send_success(self):
        transport = FakeTransport()
        notifier = make_notifier(transport)
        assert await notifier.send(SITE, 4) is True
        assert len(transport.sent) == 1
        assert "4 REAL ID appointment(s)" in plain_body(transport.sent[0])

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        transport = FakeTransport(failures=2)
        notifier = make_notifier(transport)
        assert await notifier.send(SITE, 4) is True
        assert transport.attempts == 3
        assert notifier._sleep.delays == [2, 4]

    @pytest.mark.asyncio
    async def test_smtp_exceptions_are_retried(self):
        transport = FakeTransport(failures=1, error=smtplib.SMTPServerDisconnected("bye"))
        assert await make_notifier(transport).send(SITE, 1) is True
        assert transport.attempts == 2

    @pytest.mark.asyncio
    async def test_persistent_failure_returns_false(self, caplog):
        transport = FakeTransport(failures=100)
        notifier = make_notifier(transport, max_retries=2)
        assert await notifier.send(SITE, 4) is False
        assert transport.attempts == 3
        assert "Error sending notification for regular site" in caplog.text

    @pytest.mark.asyncio
    async def test_unexpected_error_returns_false(self):
        transport = FakeTransport(failures=1, error=RuntimeError("bug"))
        notifier = make_notifier(transport)
        assert await notifier.send(SITE, 4) is False
        assert transport.attempts == 1

    @pytest.mark.asyncio
    async def test_send_test(self):
        transport = FakeTransport()
        notifier = make_notifier(transport)
        assert await notifier.send_test() is True
        message = transport.sent[0]
        assert message["Subject"] == "REAL ID Tracker - Test Notification"
        assert message["To"] == ", ".join(RECIPIENTS)
        assert "2024-03-01 09:30:00" in plain_body(message)

    @pytest.mark.asyncio
    async def test_send_test_unconfigured(self):
        notifier = make_notifier(FakeTransport(), email=EmailSettings())
        assert await notifier.send_test() is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
