"""
Email delivery over SMTP

send_email is synchronous; call it from a Celery task, never from a request.
"""
import smtplib
import logging
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

from jinja2 import Template

from greenloop.config import get_settings
from greenloop.tasks.email_tasks import send_email_task

settings = get_settings()
logger = logging.getLogger(__name__)


POINTS_EXPIRY_TEMPLATE = Template("""
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <h2 style="color: #2f6f3e;">Your GreenLoop points are expiring</h2>
    <p>You have <strong>{{ points }}</strong> sustainability points that expire within the next {{ days }} day{{ "s" if days != 1 }}.</p>
    <div style="background: #eef7ee; padding: 20px; text-align: center; font-size: 24px; font-weight: bold; margin: 20px 0;">
        {{ points }} points
    </div>
    <p>Redeem them for a discount on your next pre-loved purchase before they are gone.</p>
    <p style="color: #999; font-size: 12px;">You are receiving this because you have a GreenLoop account.</p>
</div>
""")


def _sanitize_log_input(email: str) -> str:
    """Strip control characters from an address before logging it"""
    if not email:
        return "(empty)"
    return ''.join(char for char in email if char.isprintable())[:100]


def is_email_configured() -> bool:
    return bool(settings.smtp_user and settings.smtp_password)


def send_email(
    to_email: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
) -> bool:
    """
    Send one email

    Returns:
        False when SMTP is not configured or delivery failed
    """
    if not is_email_configured():
        logger.warning("Email service not configured, skipping send")
        return False

    try:
        msg = MIMEMultipart('alternative')
        msg['Subject'] = subject
        msg['From'] = f"{settings.email_from_name} <{settings.smtp_user}>"
        msg['To'] = to_email

        if settings.email_reply_to:
            msg['Reply-To'] = settings.email_reply_to

        if text_content:
            msg.attach(MIMEText(text_content, 'plain', 'utf-8'))
        msg.attach(MIMEText(html_content, 'html', 'utf-8'))

        if settings.smtp_port == 465:
            server = smtplib.SMTP_SSL(settings.smtp_host, settings.smtp_port, timeout=20)
        else:
            server = smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=20)
            server.ehlo()
            server.starttls()
            server.ehlo()

        with server:
            server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(settings.smtp_user, [to_email], msg.as_string())

        logger.info("Email sent successfully to %s", _sanitize_log_input(to_email))
        return True
    except (smtplib.SMTPException, OSError) as e:
        # exception text can carry SMTP credentials
        logger.error("Failed to send email to %s: %s", _sanitize_log_input(to_email), type(e).__name__)
        return False


def render_points_expiry_email(points: int, days: int) -> str:
    return POINTS_EXPIRY_TEMPLATE.render(points=points, days=days)


def send_points_expiry_notification(to_email: str, points: int, days: int) -> None:
    """Queue the expiring-points email"""
    send_email_task.delay(
        to_email=to_email,
        subject="Your GreenLoop points are expiring soon",
        html_content=render_points_expiry_email(points, days),
        text_content=f"{points} GreenLoop points expire within {days} days.",
        category="points_expiry",
    )
