"""Email notification service using SMTP with a simulated logging fallback."""

import asyncio
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from studieo.config import settings
from studieo.services.email_templates import NotificationTemplate, render

logger = logging.getLogger(__name__)

Transport = Callable[[str, str, str], Awaitable[None]]


@dataclass
class NotificationResult:
    success: bool
    error: Optional[str] = None


def _send_email_sync(recipient_email: str, subject: str, html_body: str):
    """Synchronous function to actually send or simulate the email."""
    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        # Fallback Simulation
        logger.info(f"Simulated email to {recipient_email}: {subject}")
        logger.debug(html_body)
        return

    # Real SMTP Dispatch
    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = settings.EMAIL_FROM
    msg["To"] = recipient_email
    msg.attach(MIMEText(html_body, "html"))

    with smtplib.SMTP(settings.SMTP_SERVER, settings.SMTP_PORT) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.send_message(msg)
    logger.info(f"Email sent to {recipient_email}: {subject}")


async def send_email(recipient_email: str, subject: str, html_body: str) -> None:
    # Run synchronous SMTP in a threadpool to avoid blocking the event loop
    await asyncio.to_thread(_send_email_sync, recipient_email, subject, html_body)


class NotificationDispatcher:
    """Renders lifecycle templates and hands them to a transport.

    ``send`` never raises: failures are logged and reported in the result.
    ``dispatch`` schedules ``send`` as a task the caller does not await.
    """

    def __init__(self, transport: Optional[Transport] = None):
        self._transport = transport or send_email
        self._pending: Set[asyncio.Task] = set()

    async def send(self, template: NotificationTemplate, params: Dict[str, Any]) -> NotificationResult:
        recipient = params.get("to_email")
        try:
            if not recipient:
                raise ValueError("Notification has no recipient email")
            subject, html = render(template, params)
            await self._transport(recipient, subject, html)
        except Exception as e:
            logger.error(f"Failed to send {getattr(template, 'value', template)} email to {recipient}: {e}")
            return NotificationResult(success=False, error=str(e))
        return NotificationResult(success=True)

    def dispatch(self, template: NotificationTemplate, params: Dict[str, Any]) -> asyncio.Task:
        """Fire-and-forget ``send``; the task reference is held until it finishes."""
        task = asyncio.create_task(self.send(template, params))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def drain(self) -> None:
        """Wait for every dispatched notification (shutdown and tests)."""
        while self._pending:
            await asyncio.gather(*list(self._pending))


notifier = NotificationDispatcher()
