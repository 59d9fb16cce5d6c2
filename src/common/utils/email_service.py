# src/common/utils/email_service.py

import asyncio
import logging
from email.message import EmailMessage
from typing import List, Optional

import aiosmtplib

from src.common.config import settings

logger = logging.getLogger(__name__)

_transport: Optional[aiosmtplib.SMTP] = None
_transport_lock = asyncio.Lock()


class EmailDeliveryError(Exception):
    """The SMTP server could not be reached or refused the message."""


def _build_transport() -> aiosmtplib.SMTP:
    host, port = settings.smtp_endpoint
    return aiosmtplib.SMTP(
        hostname=host,
        port=port,
        username=settings.EMAIL_USER,
        password=settings.EMAIL_PASS,
        use_tls=port == 465,
        start_tls=port == 587,
        timeout=settings.EMAIL_SEND_TIMEOUT_SECONDS,
    )


async def clear_transport_cache() -> None:
    """Drop the cached SMTP connection so the next send picks up new settings."""
    global _transport
    async with _transport_lock:
        if _transport is not None and _transport.is_connected:
            try:
                await _transport.quit()
            except aiosmtplib.SMTPException:
                _transport.close()
        _transport = None


async def send_email(subject: str, body: str, recipients: List[str], html_body: Optional[str] = None) -> None:
    """
    Sends an email asynchronously using aiosmtplib over a cached connection.

    Args:
        subject (str): The subject of the email.
        body (str): The plain text content of the email.
        recipients (List[str]): List of recipient email addresses.
        html_body (str, optional): HTML alternative content.

    Raises:
        EmailDeliveryError: If the message could not be delivered in time.
    """
    global _transport

    message = EmailMessage()
    message["From"] = settings.email_sender
    message["To"] = ", ".join(recipients)
    message["Subject"] = subject
    message.set_content(body)

    # If HTML content is provided, add it as an alternative.
    if html_body:
        message.add_alternative(html_body, subtype="html")

    async with _transport_lock:
        try:
            if _transport is None:
                _transport = _build_transport()
            if not _transport.is_connected:
                await _transport.connect()
            await asyncio.wait_for(
                _transport.send_message(message),
                timeout=settings.EMAIL_SEND_TIMEOUT_SECONDS,
            )
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            if _transport is not None:
                _transport.close()
            _transport = None
            logger.error("Failed to send email '%s': %s", subject, e)
            raise EmailDeliveryError(str(e)) from e


async def send_otp_email(
    recipient_email: str,
    display_name: str,
    code: str,
    purpose: str,
    expires_minutes: int,
) -> None:
    """
    Sends a one-time login code.

    Args:
        recipient_email (str): The email address of the recipient.
        display_name (str): Name used in the greeting.
        code (str): The six digit code.
        purpose (str): OTP purpose, used in the copy.
        expires_minutes (int): Validity window shown to the user.
    """
    action = "complete your login" if purpose == "login" else "verify your email address"

    email_content = f"""
Dear {display_name},

Use the following code to {action}:

{code}

This code expires in {expires_minutes} minutes and can only be used once.
If you did not request this code, please ignore this email or contact support at {settings.SUPPORT_URL}.

Best regards,
Clinic Management System
"""

    html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #0f766e; padding: 30px; text-align: center; border-radius: 12px 12px 0 0;">
        <h1 style="color: white; margin: 0; font-size: 24px;">Your verification code</h1>
    </div>
    <div style="background: #ffffff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 12px 12px;">
        <p style="font-size: 16px;">Dear <strong>{display_name}</strong>,</p>
        <p style="font-size: 16px;">Use the following code to {action}:</p>
        <div style="background: #f3f4f6; padding: 16px; border-radius: 8px; text-align: center; margin: 16px 0;">
            <code style="font-size: 28px; font-weight: bold; letter-spacing: 6px; color: #0f766e;">{code}</code>
        </div>
        <p style="font-size: 12px; color: #9ca3af; text-align: center;">
            This code expires in {expires_minutes} minutes and can only be used once.<br>
            If you did not request this code, please ignore this email.
        </p>
    </div>
</body>
</html>
"""

    await send_email("Your verification code", email_content, [recipient_email], html_body=html_content)


async def send_password_reset_otp(
    recipient_email: str,
    display_name: str,
    code: str,
    expires_minutes: int,
) -> None:
    """Sends a password reset code."""
    email_content = f"""
Dear {display_name},

We received a request to reset your password. Enter this code to choose a new password:

{code}

This code expires in {expires_minutes} minutes. If you did not request a password reset,
you can safely ignore this email; your password will not change.

Best regards,
Clinic Management System
"""

    html_content = f"""
<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
</head>
<body style="font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <div style="background: #b45309; padding: 30px; text-align: center; border-radius: 12px 12px 0 0;">
        <h1 style="color: white; margin: 0; font-size: 24px;">Password reset</h1>
    </div>
    <div style="background: #ffffff; padding: 30px; border: 1px solid #e5e7eb; border-top: none; border-radius: 0 0 12px 12px;">
        <p style="font-size: 16px;">Dear <strong>{display_name}</strong>,</p>
        <p style="font-size: 16px;">Enter this code to choose a new password:</p>
        <div style="background: #f3f4f6; padding: 16px; border-radius: 8px; text-align: center; margin: 16px 0;">
            <code style="font-size: 28px; font-weight: bold; letter-spacing: 6px; color: #b45309;">{code}</code>
        </div>
        <p style="font-size: 12px; color: #9ca3af; text-align: center;">
            This code expires in {expires_minutes} minutes.<br>
            If you did not request a password reset, you can ignore this email.
        </p>
    </div>
</body>
</html>
"""

    await send_email("Password reset code", email_content, [recipient_email], html_body=html_content)
