"""
Email tasks
"""
import logging
from datetime import datetime
from typing import Optional, Dict, Any

from greenloop.celery_app import celery_app
from greenloop.tasks.base import record_task_result

logger = logging.getLogger(__name__)


@celery_app.task(
    name="greenloop.tasks.email_tasks.send_email_task",
    bind=True,
    max_retries=3,
    default_retry_delay=60,
)
def send_email_task(
    self,
    to_email: str,
    subject: str,
    html_content: str,
    text_content: Optional[str] = None,
    category: str = "notification",
) -> Dict[str, Any]:
    """
    Deliver one email, retrying when SMTP rejects it

    Args:
        to_email: recipient
        subject: subject line
        html_content: HTML body
        text_content: plain-text alternative
        category: label for logs
    """
    task_id = self.request.id
    start_time = datetime.now()

    logger.info("[%s] Sending %s email: %s", task_id, category, subject)

    from greenloop.services.email_service import send_email, is_email_configured

    if not is_email_configured():
        return record_task_result(
            task_id=task_id,
            task_name="send_email",
            status="skipped",
            result={"category": category},
        )

    sent = send_email(
        to_email=to_email,
        subject=subject,
        html_content=html_content,
        text_content=text_content,
    )
    duration = (datetime.now() - start_time).total_seconds()

    if not sent:
        record_task_result(
            task_id=task_id,
            task_name="send_email",
            status="failed",
            error="delivery failed",
            duration=duration,
        )
        raise self.retry(exc=RuntimeError(f"Email delivery failed for {category}"))

    return record_task_result(
        task_id=task_id,
        task_name="send_email",
        status="success",
        result={"category": category},
        duration=duration,
    )
