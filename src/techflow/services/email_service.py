"""Email notifications for contact submissions.

Learn: Two messages per submission:
- a confirmation to the person who filled in the form
- a notification to the admin address (skipped if none is configured)

Both run as FastAPI BackgroundTasks after the 201 response is sent, so a
slow or broken SMTP server never delays or fails the submission. With no
TECHFLOW_SMTP_HOST set, every send is a logged no-op.
"""

import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr
from html import escape
from typing import Optional

import structlog

from techflow.config import settings

logger = structlog.get_logger()


def _from_address() -> str:
    return settings.smtp_user or f"no-reply@{settings.smtp_host or 'localhost'}"


def _send(to: str, subject: str, html_body: str) -> bool:
    """Deliver one HTML message. Returns False when disabled or on failure."""
    if not settings.email_enabled:
        logger.debug("email.disabled", to=to, subject=subject)
        return False

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((settings.email_from_name, _from_address()))
    msg["To"] = to
    msg.attach(MIMEText(html_body, "html"))

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=15) as server:
            if settings.smtp_use_tls:
                server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(_from_address(), [to], msg.as_string())
    except (smtplib.SMTPException, OSError) as e:
        logger.warning("email.send_failed", to=to, subject=subject, error=str(e))
        return False

    logger.info("email.sent", to=to, subject=subject)
    return True


def send_contact_confirmation(name: str, email: str, message: str) -> bool:
    html_body = f"""
    <h2>Thanks for reaching out, {escape(name)}!</h2>
    <p>We received your message and will get back to you shortly.</p>
    <hr/>
    <p>{escape(message)}</p>
    """
    return _send(email, "We received your message", html_body)


def send_new_contact_notification(
    name: str, email: str, message: str, ip_address: Optional[str] = None
) -> bool:
    if not settings.admin_email:
        return False
    html_body = f"""
    <h2>New contact submission</h2>
    <p><strong>Name:</strong> {escape(name)}</p>
    <p><strong>Email:</strong> {escape(email)}</p>
    <p><strong>IP:</strong> {escape(ip_address or '-')}</p>
    <hr/>
    <p>{escape(message)}</p>
    """
    return _send(settings.admin_email, f"New contact from {name}", html_body)
