import logging
import smtplib
from email.message import EmailMessage
from app.core.config import settings

logger = logging.getLogger(__name__)


def _send_email_smtp(msg: EmailMessage) -> None:
    """
    Send an email message over SMTP.
    This is intended to be called from Celery workers, not request handlers.
    """
    if settings.SMTP_PORT == 465:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)
    else:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30)

    with server:
        if settings.SMTP_PORT != 465:
            server.ehlo()
            server.starttls()
            server.ehlo()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


def queue_welcome_email(to_email: str, name: str) -> None:
    """Queue the welcome email on the Celery ``emails`` queue."""
    from app.tasks.email_tasks import send_welcome_email

    result = send_welcome_email.delay(to_email, name)
    logger.info("Welcome email queued", extra={"to": to_email, "task_id": result.id})


def queue_password_reset_email(to_email: str, reset_token: str) -> None:
    """Queue the password reset email. The token travels only inside the task."""
    from app.tasks.email_tasks import send_password_reset

    result = send_password_reset.delay(to_email, reset_token)
    logger.info("Password reset email queued", extra={"to": to_email, "task_id": result.id})
