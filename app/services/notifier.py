"""
Outbound account notifications.

Delivery is fire-and-forget: enqueue() hands the message to a worker thread
and returns immediately. A failed delivery is logged and never propagates to
the moderation action that triggered it.
"""
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from email.message import EmailMessage
from functools import lru_cache
from typing import Any, Callable, Dict, Optional

from app.config import Settings, load_settings
from app.logging_utils import get_logger
from app.models.enums import NotificationEvent

logger = get_logger(__name__)

SUBJECTS = {
    NotificationEvent.APPROVAL_RESULT: "Your account has been approved",
    NotificationEvent.REJECTION: "Your registration was not approved",
    NotificationEvent.SUSPENSION: "Your account has been suspended",
    NotificationEvent.UNSUSPENSION: "Your account access has been restored",
    NotificationEvent.DELETION: "Your account has been deleted",
    NotificationEvent.PASSWORD_RESET: "A temporary password has been issued",
}


class Notifier:
    """Interface consumed by ModerationService."""

    def enqueue(
        self,
        event: NotificationEvent,
        email: str,
        name: str,
        detail: Optional[Dict[str, Any]] = None
    ) -> None:
        raise NotImplementedError


class NullNotifier(Notifier):
    """Drops every event. Used when notifications are disabled."""

    def enqueue(self, event, email, name, detail=None) -> None:
        logger.debug("Notifications disabled; dropping %s for %s", event.value, email)


def _fmt(value) -> str:
    if isinstance(value, datetime):
        return value.strftime("%Y-%m-%d %H:%M UTC")
    return str(value)


def render_body(event: NotificationEvent, name: str, detail: Dict[str, Any]) -> str:
    lines = [f"Hello {name},", ""]
    if event == NotificationEvent.APPROVAL_RESULT:
        lines.append("Your registration has been approved. You can now sign in and use the service.")
    elif event == NotificationEvent.REJECTION:
        lines.append("We reviewed your registration and could not approve it.")
        lines.append(f"Reason: {detail.get('reason')}")
    elif event == NotificationEvent.SUSPENSION:
        lines.append("Access to your account has been temporarily restricted.")
        lines.append(f"Reason: {detail.get('reason')}")
        ends_at = detail.get("ends_at")
        period_end = _fmt(ends_at) if ends_at else "indefinite"
        lines.append(f"Period: {_fmt(detail.get('started_at'))} - {period_end}")
    elif event == NotificationEvent.UNSUSPENSION:
        lines.append("The restriction on your account has been lifted. You can use the service again.")
    elif event == NotificationEvent.DELETION:
        lines.append("Your account has been deleted.")
        lines.append(f"Reason: {detail.get('reason')}")
        mode = detail.get("deletion_mode")
        lines.append(f"Type: {'permanent' if mode == 'hard' else 'soft (recoverable)'}")
        if detail.get("permanent_purge_at"):
            lines.append(f"Scheduled for permanent removal on: {_fmt(detail['permanent_purge_at'])}")
    elif event == NotificationEvent.PASSWORD_RESET:
        lines.append("An administrator issued a temporary password for your account.")
        lines.append(f"Temporary password: {detail.get('temporary_password')}")
        lines.append("Please change it after signing in.")
    return "\n".join(lines) + "\n"


class MailSession(object):
    """An open session with an SMTP service."""

    def __init__(self, host: str, port: int) -> None:
        self._host = host
        self._port = port

    def send_message(self, message: EmailMessage) -> None:
        with smtplib.SMTP(host=self._host, port=self._port, timeout=30) as conn:
            conn.send_message(message)


class MailNotifier(Notifier):
    """Renders account notifications as email and delivers them on a worker pool."""

    def __init__(
        self,
        sender: str,
        send: Optional[Callable[[EmailMessage], None]] = None,
        max_workers: int = 2
    ):
        self.sender = sender
        self._send = send
        self._executor = ThreadPoolExecutor(max_workers=max(1, max_workers), thread_name_prefix="notifier")

    def build_message(self, event: NotificationEvent, email: str, name: str, detail: Dict[str, Any]) -> EmailMessage:
        message = EmailMessage()
        message["From"] = self.sender
        message["To"] = email
        message["Subject"] = SUBJECTS[event]
        message.set_content(render_body(event, name, detail))
        return message

    def enqueue(self, event, email, name, detail=None) -> Future:
        message = self.build_message(event, email, name, detail or {})
        future = self._executor.submit(self._deliver, event, message)

        def _done_callback(done_future: Future) -> None:
            exc = done_future.exception()
            if exc is not None:
                logger.error("Failed to deliver %s notification to %s: %s", event.value, email, exc)

        future.add_done_callback(_done_callback)
        return future

    def _deliver(self, event: NotificationEvent, message: EmailMessage) -> None:
        if self._send is None:
            # No mail transport configured: record what would have been sent.
            logger.info(
                "Notification %s to %s (mail transport not configured): %s",
                event.value, message["To"], message["Subject"]
            )
            return
        self._send(message)
        logger.info("Sent %s notification to %s", event.value, message["To"])

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def build_notifier(settings: Settings) -> Notifier:
    if not settings.notifications_enabled:
        return NullNotifier()
    send = None
    if settings.smtp_host:
        send = MailSession(settings.smtp_host, settings.smtp_port).send_message
    return MailNotifier(sender=settings.smtp_from, send=send, max_workers=settings.notifier_workers)


@lru_cache(maxsize=1)
def get_notifier() -> Notifier:
    """Dependency for FastAPI endpoints: the process-wide notifier."""
    return build_notifier(load_settings())


def shutdown_notifier() -> None:
    """Drain and stop the process-wide notifier; the next get_notifier() builds a fresh one."""
    if not get_notifier.cache_info().currsize:
        return
    notifier = get_notifier()
    if isinstance(notifier, MailNotifier):
        notifier.shutdown(wait=True)
    get_notifier.cache_clear()
