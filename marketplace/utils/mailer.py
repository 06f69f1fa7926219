import logging
import smtplib
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape

from marketplace.config import settings

logger = logging.getLogger("marketplace.mailer")


def _layout(title: str, body: str) -> str:
    return f"""
        <!DOCTYPE html>
        <html>
        <head><meta charset="utf-8"></head>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
          <div style="background: #667eea; padding: 30px; text-align: center; border-radius: 10px 10px 0 0;">
            <h1 style="color: white; margin: 0;">{settings.MAIL_FROM_NAME}</h1>
            <p style="color: white; margin: 10px 0 0;">{title}</p>
          </div>
          <div style="background: #f9f9f9; padding: 30px; border-radius: 0 0 10px 10px;">
            {body}
            <hr style="border: none; border-top: 1px solid #ddd; margin: 20px 0;">
            <p style="font-size: 12px; color: #999; text-align: center;">
              &copy; {datetime.utcnow().year} {settings.MAIL_FROM_NAME}. All rights reserved.
            </p>
          </div>
        </body>
        </html>
    """


def _deliver(msg: MIMEMultipart):
    if settings.SMTP_USE_TLS:
        server = smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
    else:
        server = smtplib.SMTP_SSL(settings.SMTP_HOST, settings.SMTP_PORT, timeout=10)
    with server:
        if settings.SMTP_USE_TLS:
            server.starttls()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


def send_email(to: str, subject: str, html: str) -> bool:
    """Send an HTML email. Failures are logged and reported as False, never raised."""
    if not settings.SMTP_HOST:
        logger.warning("SMTP not configured, dropping email to %s (%s)", to, subject)
        return False

    msg = MIMEMultipart("alternative")
    msg["From"] = formataddr((settings.MAIL_FROM_NAME, settings.MAIL_FROM))
    msg["To"] = to
    msg["Subject"] = subject
    msg.attach(MIMEText(html, "html", "utf-8"))

    try:
        _deliver(msg)
    except (smtplib.SMTPException, OSError) as e:
        logger.error("Failed to send email to %s: %s", to, e)
        return False

    logger.info("Email sent to %s: %s", to, subject)
    return True


def send_verification_email(email: str, code: str, expires_minutes: int = None) -> bool:
    expires_minutes = expires_minutes or settings.OTP_EXPIRE_MINUTES
    body = f"""
        <p style="font-size: 16px;">Hi there,</p>
        <p style="font-size: 16px;">Please use the verification code below to verify your email address:</p>
        <div style="background: white; padding: 20px; text-align: center; border-radius: 8px; margin: 20px 0; border: 2px solid #667eea;">
          <p style="font-size: 32px; font-weight: bold; color: #667eea; margin: 0; letter-spacing: 8px;">{code}</p>
        </div>
        <p style="font-size: 14px; color: #666;">This code will expire in <strong>{expires_minutes} minutes</strong>.</p>
        <p style="font-size: 14px; color: #666;">If you didn't create an account, please ignore this email.</p>
    """
    return send_email(
        email,
        f"Verify your email - {settings.MAIL_FROM_NAME}",
        _layout("Verify Your Email", body),
    )


def send_password_reset_email(email: str, reset_url: str, expires_minutes: int = None) -> bool:
    expires_minutes = expires_minutes or settings.RESET_TOKEN_EXPIRE_MINUTES
    body = f"""
        <p style="font-size: 16px;">We received a request to reset your password.</p>
        <p style="text-align: center; margin: 30px 0;">
          <a href="{reset_url}" style="background: #667eea; color: white; padding: 12px 30px; text-decoration: none; border-radius: 5px;">Reset Password</a>
        </p>
        <p style="font-size: 14px; color: #666;">This link will expire in <strong>{expires_minutes} minutes</strong>.</p>
        <p style="font-size: 14px; color: #666;">If you didn't request a password reset, you can ignore this email.</p>
    """
    return send_email(
        email,
        f"Reset your password - {settings.MAIL_FROM_NAME}",
        _layout("Password Reset", body),
    )


def send_password_change_confirmation_email(email: str, first_name: str) -> bool:
    body = f"""
        <p style="font-size: 16px;">Hi {escape(first_name)},</p>
        <p style="font-size: 16px;">Your password has been changed successfully.</p>
        <p style="font-size: 14px; color: #666;">If you didn't make this change, please contact support immediately.</p>
    """
    return send_email(
        email,
        f"Password changed - {settings.MAIL_FROM_NAME}",
        _layout("Password Changed", body),
    )
