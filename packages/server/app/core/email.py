"""
Outbound email over SMTP.

Delivery is fire-and-forget: ``send_in_background`` schedules the send on
the running loop and returns immediately. Failures are logged and never
affect the request that triggered them.
"""

from __future__ import annotations

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from functools import lru_cache
from typing import Any

import structlog

from app.core.config import get_settings

log = structlog.get_logger()

TEMPLATES = {
    "welcome": {
        "subject": "Welcome to TaskHub!",
        "text": (
            "Hi {username},\n\n"
            "Welcome to TaskHub. Your account and your first organization are ready.\n\n"
            "Sign in at {app_url}/signin\n"
        ),
        "html": (
            "<h1>Welcome to TaskHub, {username}!</h1>"
            "<p>Your account and your first organization are ready.</p>"
            '<p><a href="{app_url}/signin">Sign in</a></p>'
        ),
    },
    "password_reset": {
        "subject": "Reset your password - TaskHub",
        "text": (
            "Hi {username},\n\n"
            "Use the link below to choose a new password:\n{reset_url}\n\n"
            "The link expires in {expiry_hours} hour(s). If you did not ask for "
            "a reset you can ignore this email.\n"
        ),
        "html": (
            "<p>Hi {username},</p>"
            '<p><a href="{reset_url}">Choose a new password</a></p>'
            "<p>The link expires in {expiry_hours} hour(s). If you did not ask for "
            "a reset you can ignore this email.</p>"
        ),
    },
    "invitation": {
        "subject": "You've been invited to join {organization_name}",
        "text": (
            "Hi,\n\n"
            "{inviter_name} has invited you to join {organization_name} on TaskHub "
            "as {role}.\n\n"
            "Accept the invitation: {invite_url}\n\n"
            "This invitation expires in 7 days.\n"
        ),
        "html": (
            "<p>{inviter_name} has invited you to join <strong>{organization_name}</strong> "
            "on TaskHub as {role}.</p>"
            '<p><a href="{invite_url}">Accept the invitation</a></p>'
            "<p>This invitation expires in 7 days.</p>"
        ),
    },
    "invitation_accepted": {
        "subject": "{new_member_name} has joined {organization_name}",
        "text": (
            "Hi,\n\n"
            "{new_member_name} accepted your invitation and is now a member of "
            "{organization_name}.\n"
        ),
        "html": (
            "<p>{new_member_name} accepted your invitation and is now a member of "
            "<strong>{organization_name}</strong>.</p>"
        ),
    },
}


def render_template(name: str, **params: Any) -> tuple[str, str, str]:
    """Return ``(subject, text, html)`` for a named template."""
    template = TEMPLATES[name]
    params.setdefault("app_url", get_settings().app_url)
    return (
        template["subject"].format(**params),
        template["text"].format(**params),
        template["html"].format(**params),
    )


class EmailSender:
    """Blocking SMTP delivery run in the default executor."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        user: str = "",
        password: str = "",
    ):
        self.host = host
        self.port = port
        self.sender = sender
        self.user = user
        self.password = password

    async def send(self, to: str, subject: str, text: str, html: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg.attach(MIMEText(text, "plain"))
        msg.attach(MIMEText(html, "html"))

        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._send_sync, msg)

    def _send_sync(self, msg: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=10) as server:
            if self.user and self.password:
                server.starttls()
                server.login(self.user, self.password)
            server.send_message(msg)


@lru_cache
def get_email_sender() -> EmailSender:
    settings = get_settings()
    return EmailSender(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.smtp_from,
        user=settings.smtp_user,
        password=settings.smtp_password,
    )


# strong references so pending sends are not garbage collected
_pending: set[asyncio.Task] = set()


async def _deliver(to: str, template: str, params: dict[str, Any]) -> None:
    try:
        subject, text, html = render_template(template, **params)
        await get_email_sender().send(to, subject, text, html)
        log.info("email.sent", template=template)
    except Exception as exc:
        log.error("email.failed", template=template, error=str(exc))


def send_in_background(to: str, template: str, **params: Any) -> asyncio.Task:
    """Render ``template`` and deliver it without waiting for the result."""
    task = asyncio.get_running_loop().create_task(_deliver(to, template, params))
    _pending.add(task)
    task.add_done_callback(_pending.discard)
    return task
