"""Email notifications (SMS gateway addresses included) with retry."""

import asyncio
import logging
import smtplib
import ssl
from datetime import datetime
from email.message import EmailMessage
from typing import Optional, Protocol

from .config import EmailSettings
from .models import TargetSite
from .retry import RetryPolicy, SleepFunc, retry_async
from .templates import (
    TEST_HTML,
    TEST_SUBJECT,
    TEST_TEXT,
    TEXT_TEMPLATE,
    load_html_template,
    render,
)

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30


class NotificationError(Exception):
    """A transport failed to deliver a message."""


class Transport(Protocol):
    def send(self, message: EmailMessage) -> None: ...


class SmtpTransport:
    """Blocking SMTP delivery; the notifier runs it in a worker thread."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_ssl: bool = False,
        timeout: float = SMTP_TIMEOUT_SECONDS,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_ssl = use_ssl
        self.timeout = timeout

    @classmethod
    def from_settings(cls, email: EmailSettings) -> "SmtpTransport":
        return cls(
            host=email.smtp_host,
            port=email.smtp_port,
            username=email.sender,
            password=email.password,
            use_ssl=email.smtp_ssl,
        )

    def send(self, message: EmailMessage) -> None:
        context = ssl.create_default_context()
        try:
            if self.use_ssl:
                server = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout, context=context)
            else:
                server = smtplib.SMTP(self.host, self.port, timeout=self.timeout)
            with server:
                if not self.use_ssl:
                    server.starttls(context=context)
                server.login(self.username, self.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationError(f"SMTP delivery via {self.host}:{self.port} failed: {e}") from e


class EmailNotifier:
    """
    Sends "appointments available" messages to every configured recipient.

    send() and send_test() never raise: a failed notification must not break
    the check cycle, so errors are logged and reported as False.
    """

    def __init__(
        self,
        email: EmailSettings,
        policy: RetryPolicy = RetryPolicy(),
        transport: Optional[Transport] = None,
        sleep: SleepFunc = asyncio.sleep,
        clock=datetime.now,
    ):
        self.email = email
        self.policy = policy
        self.transport = transport
        if self.transport is None and email.is_configured:
            self.transport = SmtpTransport.from_settings(email)
        self._sleep = sleep
        self._clock = clock
        self.html_template = load_html_template(email.template_file)

        if not email.is_configured:
            logger.warning("Email settings incomplete. Notifications disabled.")

    @property
    def is_configured(self) -> bool:
        return self.email.is_configured and self.transport is not None

    def build_message(self, site: TargetSite, count: int) -> EmailMessage:
        values = {
            "location": site.label,
            "count": count,
            "booking_url": site.notification_url or site.url,
            "timestamp": self._clock().strftime("%Y-%m-%d %H:%M:%S"),
        }
        message = EmailMessage()
        message["From"] = self.email.sender
        message["To"] = ", ".join(self.email.recipients)
        message["Subject"] = self.email.subject
        message.set_content(render(TEXT_TEMPLATE, **values))
        message.add_alternative(render(self.html_template, escape=True, **values), subtype="html")
        return message

    def build_test_message(self) -> EmailMessage:
        timestamp = self._clock().strftime("%Y-%m-%d %H:%M:%S")
        message = EmailMessage()
        message["From"] = self.email.sender
        message["To"] = ", ".join(self.email.recipients)
        message["Subject"] = TEST_SUBJECT
        message.set_content(render(TEST_TEXT, timestamp=timestamp))
        message.add_alternative(render(TEST_HTML, escape=True, timestamp=timestamp), subtype="html")
        return message

    async def _deliver(self, message: EmailMessage, description: str) -> bool:
        async def attempt() -> None:
            logger.info(f"Sending {description} to {message['To']}")
            await asyncio.to_thread(self.transport.send, message)

        try:
            await retry_async(
                attempt,
                self.policy,
                retry_on=(NotificationError, smtplib.SMTPException, OSError),
                description=description,
                sleep=self._sleep,
            )
        except Exception as e:
            logger.error(f"Error sending {description}: {e}")
            return False
        return True

    async def send(self, site: TargetSite, count: int) -> bool:
        """
        Send an availability notification for site.

        Args:
            site: The site whose appointments became available
            count: Number of appointments available

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.is_configured:
            logger.warning("Cannot send notification: Email transporter not configured")
            return False
        if not site.notification_url:
            logger.warning(f"Cannot send notification: Missing notification URL for {site.target.value} site")
            return False

        try:
            message = self.build_message(site, count)
        except Exception as e:
            logger.error(f"Error building notification for {site.target.value}: {e}")
            return False

        sent = await self._deliver(message, f"notification for {site.target.value} site")
        if sent:
            logger.info(f"Notification sent for {site.target.value} site ({count} appointments)")
        return sent

    async def send_test(self) -> bool:
        """Send a test message to every recipient to verify delivery end to end."""
        if not self.is_configured:
            logger.warning("Cannot send test notification: Email transporter not configured")
            return False
        sent = await self._deliver(self.build_test_message(), "test notification")
        if sent:
            logger.info("Test notification sent successfully")
        return sent
