"""
mailer/mailer.py -- Outbound transactional mail over SMTP.

send_email(options, template, context) is the only entry point the auth
flows use:

  options  = {"subject": str, "to": {"name": str | None, "address": str}}
  template = key known to TemplateRenderer, e.g. "forgot-password"
  context  = template variables

Settings.default_email, when set, redirects every message to that address
(local and staging environments). With no Settings.smtp_host the mailer
runs in dev mode: the rendered message is logged instead of sent.

Send failures propagate. Callers decide how to surface them; the password
reset flow turns them into a 504.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from typing import Any

from core.config import Settings
from mailer.templates import TemplateRenderer

logger = logging.getLogger("appy.mailer")


def _redact_email(email: str) -> str:
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


# Context values that grant access (the signed reset token) never reach the log.
_SECRET_CONTEXT_KEYS = ("key",)


def _redact_secrets(body: str, context: dict[str, Any]) -> str:
    for name in _SECRET_CONTEXT_KEYS:
        value = context.get(name)
        if value:
            body = body.replace(str(value), "[redacted]")
    return body


class Mailer:
    def __init__(self, settings: Settings, renderer: TemplateRenderer | None = None) -> None:
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()

    @property
    def is_configured(self) -> bool:
        return bool(self.settings.smtp_host and self.settings.from_address)

    def build_message(self, options: dict[str, Any], template: str, context: dict[str, Any]) -> MIMEMultipart:
        text_body, html_body = self.renderer.render(template, context)
        to = options["to"]
        address = self.settings.default_email or to["address"]

        msg = MIMEMultipart("alternative")
        msg["Subject"] = options["subject"]
        msg["From"] = formataddr((self.settings.from_name, self.settings.from_address))
        msg["To"] = formataddr((to.get("name") or "", address))
        msg.attach(MIMEText(text_body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
        return msg

    def send_email(self, options: dict[str, Any], template: str, context: dict[str, Any]) -> None:
        msg = self.build_message(options, template, context)
        recipient = self.settings.default_email or options["to"]["address"]

        if not self.is_configured:
            logger.info(
                "Mail not configured; would send '%s' to %s:\n%s",
                msg["Subject"],
                _redact_email(recipient),
                _redact_secrets(msg.get_payload(0).get_payload(decode=True).decode("utf-8"), context),
            )
            return

        s = self.settings
        context_ssl = ssl.create_default_context()
        if s.smtp_use_ssl:
            server = smtplib.SMTP_SSL(s.smtp_host, s.smtp_port, context=context_ssl, timeout=30)
        else:
            server = smtplib.SMTP(s.smtp_host, s.smtp_port, timeout=30)
        with server:
            if not s.smtp_use_ssl:
                server.starttls(context=context_ssl)
            if s.smtp_user and s.smtp_password:
                server.login(s.smtp_user, s.smtp_password)
            server.sendmail(s.from_address, [recipient], msg.as_string())
        logger.info("Sent '%s' to %s", msg["Subject"], _redact_email(recipient))
