"""Email provider implementations used by the application."""
from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, Optional

from .config import EmailConfig

logger = logging.getLogger(__name__)


class EmailProvider:
    """Base provider for outbound email delivery."""

    name = "base"

    def __init__(self, *, from_email: str) -> None:
        self.from_email = from_email

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        reply_to: Optional[str] = None,
    ) -> None:
        raise NotImplementedError

    def describe(self) -> Dict[str, str]:
        return {"email_provider": self.name, "email_sender": self.from_email}


class DevPrintProvider(EmailProvider):
    """Development provider that logs messages instead of sending them."""

    name = "dev"

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        reply_to: Optional[str] = None,
    ) -> None:
        logger.info(
            "Dev email dispatch",
            extra={
                "email_recipient": to,
                "email_subject": subject,
                "email_sender": self.from_email,
                "email_reply_to": reply_to,
            },
        )


class SMTPProvider(EmailProvider):
    """SMTP provider with optional STARTTLS and login."""

    name = "smtp"

    def __init__(
        self,
        *,
        from_email: str,
        host: str,
        port: int,
        username: Optional[str],
        password: Optional[str],
        use_tls: bool,
        timeout: float = 30.0,
    ) -> None:
        super().__init__(from_email=from_email)
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def build_message(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        reply_to: Optional[str] = None,
    ) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["From"] = self.from_email
        message["To"] = to
        message["Subject"] = subject
        if reply_to:
            message["Reply-To"] = reply_to
        message.attach(MIMEText(text_body, "plain", "utf-8"))
        message.attach(MIMEText(html_body, "html", "utf-8"))
        return message

    def send_email(
        self,
        to: str,
        subject: str,
        html_body: str,
        text_body: str,
        *,
        reply_to: Optional[str] = None,
    ) -> None:
        payload = self.build_message(to, subject, html_body, text_body, reply_to=reply_to).as_string()
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as client:
            if self.use_tls:
                client.starttls()
            if self.username and self.password:
                client.login(self.username, self.password)
            client.sendmail(self.from_email, [to], payload)


def create_email_provider(config: EmailConfig) -> EmailProvider:
    if config.uses_smtp:
        smtp = config.smtp
        return SMTPProvider(
            from_email=config.from_email,
            host=smtp.host,
            port=smtp.port,
            username=smtp.username,
            password=smtp.password,
            use_tls=smtp.use_tls,
            timeout=smtp.timeout,
        )
    return DevPrintProvider(from_email=config.from_email)


__all__ = [
    "EmailProvider",
    "DevPrintProvider",
    "SMTPProvider",
    "create_email_provider",
]
