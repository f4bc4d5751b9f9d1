"""Outbound mail configuration and providers."""

from .config import EmailConfig, SmtpSettings, load_email_config
from .providers import (
    DevPrintProvider,
    EmailProvider,
    SMTPProvider,
    create_email_provider,
)

__all__ = [
    "DevPrintProvider",
    "EmailConfig",
    "EmailProvider",
    "SMTPProvider",
    "SmtpSettings",
    "create_email_provider",
    "load_email_config",
]
