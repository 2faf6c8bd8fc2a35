from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import logging
import smtplib
import ssl
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError

from flatwatch.common.formatting import digest_subject, render_digest_html, render_digest_text
from flatwatch.common.types import Listing, NotificationSettings


logger = logging.getLogger("notifier")


@dataclass(slots=True)
class MailMessage:
    sender: str
    recipients: list[str]
    subject: str
    html: str
    text: str = ""


class EmailTransport(ABC):
    @property
    def configured(self) -> bool:
        return True

    @abstractmethod
    async def send(self, message: MailMessage) -> None:
        raise NotImplementedError

    async def verify(self) -> bool:
        return self.configured


class SmtpTransport(EmailTransport):
    def __init__(
        self,
        host: str,
        port: int,
        user: str | None,
        password: str | None,
        use_tls: bool = True,
        timeout_sec: int = 30,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout_sec = timeout_sec

    @classmethod
    def from_settings(cls, app_settings) -> SmtpTransport:
        return cls(
            host=app_settings.smtp_host,
            port=app_settings.smtp_port,
            user=app_settings.smtp_user,
            password=app_settings.smtp_password,
            use_tls=app_settings.smtp_use_tls,
            timeout_sec=app_settings.smtp_timeout_sec,
        )

    @property
    def configured(self) -> bool:
        return bool(self.user and self.password)

    async def send(self, message: MailMessage) -> None:
        await asyncio.to_thread(self._send_sync, message)

    async def verify(self) -> bool:
        if not self.configured:
            return False
        try:
            await asyncio.to_thread(self._verify_sync)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("SMTP verification failed: %s", exc)
            return False
        logger.info("SMTP configuration is valid: host=%s", self.host)
        return True

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.use_tls and self.port == 465:
            server: smtplib.SMTP = smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_sec, context=context)
        else:
            server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_sec)
            if self.use_tls:
                server.starttls(context=context)
        if self.user and self.password:
            server.login(self.user, self.password)
        return server

    def _send_sync(self, message: MailMessage) -> None:
        mime = MIMEMultipart("alternative")
        mime["From"] = message.sender
        mime["To"] = ", ".join(message.recipients)
        mime["Subject"] = message.subject
        if message.text:
            mime.attach(MIMEText(message.text, "plain", "utf-8"))
        mime.attach(MIMEText(message.html, "html", "utf-8"))
        server = self._connect()
        try:
            server.sendmail(message.sender, message.recipients, mime.as_string())
        finally:
            server.quit()

    def _verify_sync(self) -> None:
        server = self._connect()
        server.quit()


class EmailNotifier:
    """Sends the digest of new listings; never raises for delivery problems."""

    def __init__(
        self,
        gateway,
        transport: EmailTransport,
        sender: str | None = None,
        send_override: bool | None = None,
        recipients_override: str | None = None,
    ) -> None:
        self.gateway = gateway
        self.transport = transport
        self.sender = sender
        self.send_override = send_override
        self.recipients_override = recipients_override

    @classmethod
    def from_settings(cls, gateway, app_settings, transport: EmailTransport | None = None) -> EmailNotifier:
        return cls(
            gateway,
            transport or SmtpTransport.from_settings(app_settings),
            sender=app_settings.email_from or app_settings.smtp_user,
            send_override=app_settings.send_emails,
            recipients_override=app_settings.email_recipients,
        )

    async def effective_settings(self) -> NotificationSettings:
        stored = await self.gateway.get_notification_settings()
        send_emails = stored.send_emails if self.send_override is None else self.send_override
        recipients = stored.email_recipients
        if self.recipients_override:
            recipients = self.recipients_override
        return NotificationSettings(send_emails=send_emails, email_recipients=recipients)

    async def notify(self, listings: Sequence[Listing]) -> bool:
        if not listings:
            logger.info("No new listings to notify about")
            return False
        try:
            current = await self.effective_settings()
        except (SQLAlchemyError, OSError) as exc:
            logger.error("Reading notification settings failed, digest skipped: %s", exc)
            return False
        if not current.send_emails:
            logger.info("Email sending disabled: would have sent %s listings", len(listings))
            return False
        recipients = current.recipients
        if not recipients:
            logger.info("No email recipients configured: %s listings not sent", len(listings))
            return False
        if not self.transport.configured or not self.sender:
            logger.error("Email transport missing credentials: set SMTP_USER and SMTP_PASSWORD")
            return False

        message = MailMessage(
            sender=self.sender,
            recipients=recipients,
            subject=digest_subject(len(listings)),
            html=render_digest_html(listings),
            text=render_digest_text(listings),
        )
        try:
            await self.transport.send(message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Sending digest failed: recipients=%s error=%s", len(recipients), exc)
            return False
        logger.info("Digest sent: listings=%s recipients=%s", len(listings), len(recipients))
        return True
