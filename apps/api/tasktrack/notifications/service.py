from __future__ import annotations

import asyncio
import smtplib
from dataclasses import dataclass
from email.message import EmailMessage as MimeMessage
from typing import Any, Protocol

import structlog

from tasktrack.config import settings

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EmailMessage:
  to: str
  subject: str
  body: str


class EmailProvider(Protocol):
  async def send(self, msg: EmailMessage) -> dict[str, Any]: ...


class LocalEmailProvider:
  async def send(self, msg: EmailMessage) -> dict[str, Any]:
    log.info("email.local_delivery", to=msg.to, subject=msg.subject)
    return {"provider": "local", "status": "sent", "detail": {"to": msg.to, "subject": msg.subject}}


class SmtpEmailProvider:
  async def send(self, msg: EmailMessage) -> dict[str, Any]:
    host = (settings.smtp_host or "").strip()
    port = int(settings.smtp_port or 587)
    username = (settings.smtp_username or "").strip()
    password = (settings.smtp_password or "").strip()
    from_addr = settings.email_from.strip()
    if not host or not from_addr or not msg.to:
      raise ValueError("SMTP delivery missing host/from/to")

    def _send_sync() -> None:
      m = MimeMessage()
      m["Subject"] = msg.subject
      m["From"] = from_addr
      m["To"] = msg.to
      m.set_content(msg.body)
      with smtplib.SMTP(host=host, port=port, timeout=15) as s:
        s.ehlo()
        if settings.smtp_starttls:
          s.starttls()
          s.ehlo()
        if username and password:
          s.login(username, password)
        s.send_message(m)

    await asyncio.to_thread(_send_sync)
    return {"provider": "smtp", "status": "sent", "detail": {"to": msg.to, "host": host, "port": port}}


def provider_for(provider: str) -> EmailProvider:
  if provider == "smtp":
    return SmtpEmailProvider()
  return LocalEmailProvider()
