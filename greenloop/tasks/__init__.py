"""
Celery tasks

- email_tasks: outgoing mail
- points_tasks: point expiry sweep and expiry notices
"""
from greenloop.celery_app import celery_app

__all__ = ["celery_app"]
