"""
Shared helpers for Celery tasks
"""
import logging
from datetime import datetime
from typing import Dict, Any, Optional

from asgiref.sync import async_to_sync

logger = logging.getLogger(__name__)


def run_async(func, *args, **kwargs):
    """
    Run an async callable from a synchronous worker

    async_to_sync takes the coroutine function, not a coroutine object.
    """
    return async_to_sync(func)(*args, **kwargs)


def record_task_result(
    task_id: str,
    task_name: str,
    status: str,
    result: Optional[Any] = None,
    error: Optional[str] = None,
    duration: float = 0,
) -> Dict[str, Any]:
    """
    Log a task outcome and return it as the task result

    Args:
        task_id: Celery task id
        task_name: short name used in logs
        status: success / failed
        result: payload on success
        error: message on failure
        duration: seconds spent

    Returns:
        the logged dict
    """
    log_data = {
        "task_id": task_id,
        "task_name": task_name,
        "status": status,
        "duration": f"{duration:.2f}s",
        "timestamp": datetime.now().isoformat(),
    }

    if error:
        log_data["error"] = error
        logger.error("Task failed: %s", log_data)
    else:
        log_data["result"] = result
        logger.info("Task completed: %s", log_data)

    return log_data
