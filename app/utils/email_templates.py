from html import escape
from urllib.parse import quote

from app.core.config import settings
from app.utils.time import utcnow


def welcome_template(name: str):
    """HTML email template sent after registration."""
    current_year = utcnow().year
    return f"""
    <!DOCTYPE html>
    <html>
    <head>
        <style>
            body {{ font-family: Arial, sans-serif; line-height: 1.6; }}
            .container {{ max-width: 600px; margin: 0 auto; padding: 20px; }}
            .header {{ background: #2563EB; color: white; padding: 20px; text-align: center; }}
        </style>
    </head>
    <body>
        <div class="container">
            <div class="header">
                <h1>{escape(settings.APP_NAME)}</h1>
                <p>Welcome aboard</p>
            </div>

            <p>Hi {escape(name)},</p>
            <p>Your account is ready. Start by adding your categories and monthly budgets,
            then log your first transactions to see where your money goes.</p>
            <p><a href="{settings.FRONTEND_URL}">Open {escape(settings.APP_NAME)}</a></p>

            <p>&copy; {current_year} {escape(settings.APP_NAME)}</p>
        </div>
    </body>
    </html>
    """


def password_reset_template(reset_token: str, expires_minutes: int):
    """HTML email template for password reset."""
    reset_link = f"{settings.FRONTEND_URL}/reset-password?token={quote(reset_token)}"
    current_year = utcnow().year
    return f"""
    <!DOCTYPE html>
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6;">
        <h2>Password Reset Request</h2>
        <p>We received a request to reset the password for your {escape(settings.APP_NAME)} account.</p>
        <p>
            <a href="{reset_link}" style="background:#2563EB;color:#fff;padding:10px 16px;text-decoration:none;border-radius:4px;">
                Reset Password
            </a>
        </p>
        <p>If the button does not work, paste this link into your browser:<br>{reset_link}</p>
        <p>This link expires in {expires_minutes} minutes and can only be used once.</p>
        <p>If you did not request this, you can ignore this email. Your password will not change.</p>
        <p>&copy; {current_year} {escape(settings.APP_NAME)}</p>
    </body>
    </html>
    """
