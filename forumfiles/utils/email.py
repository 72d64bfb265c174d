import html
import logging
from datetime import datetime
from typing import Optional

from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from starlette.concurrency import run_in_threadpool

from forumfiles.core.config import settings

logger = logging.getLogger("forumfiles")


def _send(to_email: str, subject: str, body: str) -> bool:
    message = Mail(
        from_email=(settings.EMAIL_FROM, settings.EMAIL_FROM_NAME),
        to_emails=to_email,
        subject=subject,
        html_content=body,
    )
    sg = SendGridAPIClient(settings.SENDGRID_API_KEY)
    response = sg.send(message)
    if response.status_code == 202:
        return True
    logger.error("SendGrid API error: %s, %s", response.status_code, response.body)
    return False


async def send_email(to_email: str, subject: str, body: str) -> bool:
    """Send an HTML email through SendGrid; returns False on any failure."""
    if not settings.SENDGRID_API_KEY:
        logger.warning("SENDGRID_API_KEY is not set, email to %s not sent", to_email)
        return False
    try:
        return await run_in_threadpool(_send, to_email, subject, body)
    except Exception as e:
        logger.exception("SendGrid delivery failed for %s: %s", to_email, e)
        return False


async def send_verification_code(email: str, code: str, ttl_minutes: int) -> bool:
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2>Your Verification Code</h2>
        <p>Your verification code for ForumFiles is:</p>
        <p style="font-size: 32px; font-weight: bold; letter-spacing: 5px;">{code}</p>
        <p>This code will expire in {ttl_minutes} minutes.</p>
        <p>If you didn't request this code, please ignore this email.</p>
      </div>
    """
    return await send_email(email, "ForumFiles - Verification Code", body)


async def send_file_share(
    recipient_email: str,
    filename: str,
    download_url: str,
    message: Optional[str] = None,
    expires_at: Optional[datetime] = None,
) -> bool:
    note = f"<blockquote>{html.escape(message)}</blockquote>" if message else ""
    validity = (
        f"This link expires on {expires_at:%Y-%m-%d %H:%M} UTC."
        if expires_at else "This link stays valid until it is deactivated."
    )
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2>A file has been shared with you</h2>
        <p>Someone has shared a file with you on ForumFiles.</p>
        <p><strong>{html.escape(filename)}</strong></p>
        {note}
        <p><a href="{html.escape(download_url)}">Download File</a></p>
        <p>The download password arrives in a separate email. {validity}</p>
      </div>
    """
    return await send_email(recipient_email, f"File shared with you: {filename}", body)


async def send_link_password(recipient_email: str, filename: str, password: str) -> bool:
    body = f"""
      <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
        <h2>Download password</h2>
        <p>The password for <strong>{html.escape(filename)}</strong> is:</p>
        <p style="font-size: 32px; font-weight: bold; letter-spacing: 5px;">{html.escape(password)}</p>
      </div>
    """
    return await send_email(recipient_email, f"Password for {filename}", body)
