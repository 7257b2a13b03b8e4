"""
SMTP delivery.

`send_email` never raises for delivery problems; it returns a `SendResult`
so the queue processor can record the error and retry later.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import make_msgid

from . import settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: str | None = None
    message_id: str | None = None


@dataclass(frozen=True)
class SmtpConfig:
    host: str
    port: int
    user: str
    password: str
    use_tls: bool
    use_ssl: bool
    from_address: str
    from_name: str
    timeout_s: int


def smtp_config() -> SmtpConfig:
    return SmtpConfig(
        host=settings.env_str("SMTP_HOST"),
        port=settings.env_int("SMTP_PORT", 587),
        user=settings.env_str("SMTP_USER"),
        password=settings.env_str("SMTP_PASS"),
        use_tls=settings.env_bool("SMTP_USE_TLS", True),
        use_ssl=settings.env_bool("SMTP_USE_SSL", False),
        from_address=settings.env_str("SMTP_FROM", "noreply@todoria.app"),
        from_name=settings.env_str("SMTP_FROM_NAME", "Todoria"),
        timeout_s=settings.env_int("SMTP_TIMEOUT_S", 10),
    )


def smtp_is_configured(config: SmtpConfig | None = None) -> bool:
    config = config or smtp_config()
    return bool(config.host)


def build_message(
    *,
    to_email: str,
    subject: str,
    html: str,
    text: str | None,
    config: SmtpConfig,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = f"{config.from_name} <{config.from_address}>"
    msg["To"] = to_email
    msg["Message-ID"] = make_msgid(domain=config.from_address.split("@")[-1] or None)
    msg.set_content(text or "")
    msg.add_alternative(html, subtype="html")
    return msg


def _open(config: SmtpConfig) -> smtplib.SMTP:
    if config.use_ssl:
        return smtplib.SMTP_SSL(config.host, config.port, timeout=config.timeout_s)
    return smtplib.SMTP(config.host, config.port, timeout=config.timeout_s)


def _send_sync(msg: EmailMessage, config: SmtpConfig) -> None:
    with _open(config) as smtp:
        if config.use_tls and not config.use_ssl:
            smtp.starttls()
        if config.user:
            smtp.login(config.user, config.password)
        smtp.send_message(msg)


async def send_email(
    *,
    to_email: str,
    subject: str,
    html: str,
    text: str | None = None,
    config: SmtpConfig | None = None,
) -> SendResult:
    config = config or smtp_config()
    if not smtp_is_configured(config):
        return SendResult(success=False, error="SMTP not configured")

    msg = build_message(to_email=to_email, subject=subject, html=html, text=text, config=config)
    try:
        await asyncio.to_thread(_send_sync, msg, config)
    except (smtplib.SMTPException, OSError) as exc:
        logger.warning("smtp_send_failed to=%s error=%s", to_email, exc)
        return SendResult(success=False, error=str(exc)[:400])

    logger.info("smtp_sent to=%s subject=%s", to_email, subject)
    return SendResult(success=True, message_id=str(msg["Message-ID"]))


def _verify_sync(config: SmtpConfig) -> None:
    with _open(config) as smtp:
        if config.use_tls and not config.use_ssl:
            smtp.starttls()
        if config.user:
            smtp.login(config.user, config.password)
        smtp.noop()


async def verify_connection(config: SmtpConfig | None = None) -> bool:
    config = config or smtp_config()
    if not smtp_is_configured(config):
        return False
    try:
        await asyncio.to_thread(_verify_sync, config)
    except (smtplib.SMTPException, OSError):
        logger.exception("smtp_verify_failed host=%s port=%s", config.host, config.port)
        return False
    return True
