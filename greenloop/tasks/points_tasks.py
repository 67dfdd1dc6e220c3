"""
Point ledger maintenance tasks

- expire_points_task: daily expiry sweep
- notify_expiring_points_task: daily warning about points about to expire
"""
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from greenloop.celery_app import celery_app
from greenloop.config import get_settings
from greenloop.services import point_expiry
from greenloop.tasks.base import run_async, record_task_result

logger = logging.getLogger(__name__)


@celery_app.task(
    name="greenloop.tasks.points_tasks.expire_points_task",
    bind=True,
)
def expire_points_task(self) -> Dict[str, Any]:
    """
    Expire every grant past its expiry date (scheduled)

    Returns:
        task result with the number of expired grants
    """
    task_id = self.request.id
    start_time = datetime.now()

    logger.info("[%s] Starting point expiry sweep", task_id)

    try:
        expired = run_async(point_expiry.expire_points)
    except Exception as e:
        logger.error("[%s] Point expiry sweep failed: %s", task_id, e)
        record_task_result(
            task_id=task_id,
            task_name="expire_points",
            status="failed",
            error=str(e),
            duration=(datetime.now() - start_time).total_seconds(),
        )
        raise

    return record_task_result(
        task_id=task_id,
        task_name="expire_points",
        status="success",
        result={"expired_count": expired},
        duration=(datetime.now() - start_time).total_seconds(),
    )


@celery_app.task(
    name="greenloop.tasks.points_tasks.notify_expiring_points_task",
    bind=True,
)
def notify_expiring_points_task(self, days: Optional[int] = None) -> Dict[str, Any]:
    """Queue expiry notices for users with points expiring within ``days``"""
    task_id = self.request.id
    start_time = datetime.now()
    days = get_settings().points_expiry_notice_days if days is None else days

    try:
        notified = run_async(point_expiry.notify_users_with_expiring_points, days=days)
    except Exception as e:
        logger.error("[%s] Expiry notification run failed: %s", task_id, e)
        record_task_result(
            task_id=task_id,
            task_name="notify_expiring_points",
            status="failed",
            error=str(e),
            duration=(datetime.now() - start_time).total_seconds(),
        )
        raise

    return record_task_result(
        task_id=task_id,
        task_name="notify_expiring_points",
        status="success",
        result={"notified_users": notified, "days": days},
        duration=(datetime.now() - start_time).total_seconds(),
    )
