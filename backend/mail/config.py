"""Settings for outbound mail: which provider to use and where contact mail lands."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off"})


@dataclass(frozen=True)
class SmtpSettings:
    host: str = "localhost"
    port: int = 587
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = True
    timeout: float = 30.0

    @property
    def authenticated(self) -> bool:
        return bool(self.username and self.password)


@dataclass(frozen=True)
class EmailConfig:
    """Mail delivery settings shared by the contact form and provider factory."""

    provider_name: str
    from_email: str
    contact_recipient: str
    smtp: SmtpSettings

    @property
    def uses_smtp(self) -> bool:
        return self.provider_name == "smtp"


class _EnvReader:
    def __init__(self, env: Mapping[str, str]) -> None:
        self._env = env

    def text(self, key: str) -> Optional[str]:
        value = self._env.get(key)
        if value is None:
            return None
        value = value.strip()
        return value or None

    def flag(self, key: str, default: bool) -> bool:
        value = (self.text(key) or "").lower()
        if value in _TRUTHY:
            return True
        if value in _FALSY:
            return False
        return default

    def number(self, key: str, default: float, cast=float):
        value = self.text(key)
        if value is None:
            return default
        try:
            return cast(value)
        except ValueError as exc:
            raise ValueError(f"{key} must be a number, got {value!r}") from exc


def load_email_config(env: Optional[Mapping[str, str]] = None) -> EmailConfig:
    """Build :class:`EmailConfig` from ``EMAIL_PROVIDER``, ``FROM_EMAIL``,
    ``CONTACT_RECIPIENT`` and the ``SMTP_*`` variables."""

    reader = _EnvReader(os.environ if env is None else env)

    smtp = SmtpSettings(
        host=reader.text("SMTP_HOST") or "localhost",
        port=reader.number("SMTP_PORT", 587, int),
        username=reader.text("SMTP_USER"),
        password=reader.text("SMTP_PASS"),
        use_tls=reader.flag("SMTP_USE_TLS", True),
        timeout=max(1.0, reader.number("SMTP_TIMEOUT", 30.0)),
    )
    from_email = reader.text("FROM_EMAIL") or "noreply@example.com"

    return EmailConfig(
        provider_name=(reader.text("EMAIL_PROVIDER") or "dev").lower(),
        from_email=from_email,
        contact_recipient=reader.text("CONTACT_RECIPIENT") or smtp.username or from_email,
        smtp=smtp,
    )


__all__ = ["EmailConfig", "SmtpSettings", "load_email_config"]
