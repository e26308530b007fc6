"""
Celery tasks package for RidePay.

Import order matters: the Celery app must exist before task modules
register against it.
"""

from ridepay.tasks.celery_app import BaseTask, celery_app
from ridepay.tasks.payment_tasks import release_orphaned_authorizations, run_capture_batch

__all__ = [
    "BaseTask",
    "celery_app",
    "release_orphaned_authorizations",
    "run_capture_batch",
]
