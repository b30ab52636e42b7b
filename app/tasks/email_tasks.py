from celery import Task
from celery.utils.log import get_task_logger
from email.message import EmailMessage
from typing import Optional

from app.core.celery_app import celery_app
from app.core.config import settings
from app.utils.email import _send_email_smtp
from app.utils.email_templates import (
    password_reset_template,
    welcome_template,
)

logger = get_task_logger(__name__)


# -------------------------------
# Base Task (Retry-safe)
# -------------------------------
class EmailTask(Task):
    """
    Base email task with retries and backoff.
    Prevents email loss on temporary SMTP failures.
    """
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    acks_late = True  # retry if worker crashes


# -------------------------------
# Helper: Build Email
# -------------------------------
def build_email(
    *,
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
    from_email: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_email or f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL or settings.SMTP_USER}>"
    msg["To"] = to
    msg.set_content(text)

    if html:
        msg.add_alternative(html, subtype="html")

    return msg


# -------------------------------
# Welcome
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_welcome_email(self, user_email: str, name: str):
    try:
        msg = build_email(
            to=user_email,
            subject=f"Welcome to {settings.APP_NAME}",
            text=f"Hi {name}, your {settings.APP_NAME} account is ready.",
            html=welcome_template(name),
        )

        _send_email_smtp(msg)
        logger.info("welcome_email_sent to=%s", user_email)

    except Exception as exc:
        logger.exception("welcome_email_error to=%s", user_email)
        raise self.retry(exc=exc)


# -------------------------------
# Password Reset
# -------------------------------
@celery_app.task(base=EmailTask, bind=True)
def send_password_reset(self, user_email: str, reset_token: str):
    try:
        expires_minutes = settings.PASSWORD_RESET_EXPIRE_MINUTES
        reset_link = f"{settings.FRONTEND_URL}/reset-password?token={reset_token}"

        msg = build_email(
            to=user_email,
            subject=f"Reset Your {settings.APP_NAME} Password",
            text=(
                f"We received a request to reset your {settings.APP_NAME} password.\n\n"
                f"Visit {reset_link} within {expires_minutes} minutes to choose a new one.\n\n"
                "If you did not request this, you can ignore this email."
            ),
            html=password_reset_template(reset_token, expires_minutes),
        )

        _send_email_smtp(msg)
        logger.info("password_reset_sent to=%s", user_email)

    except Exception as exc:
        logger.exception("password_reset_error to=%s", user_email)
        raise self.retry(exc=exc)
