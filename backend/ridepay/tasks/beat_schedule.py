# backend/ridepay/tasks/beat_schedule.py
"""
Celery Beat schedule configuration for RidePay.

Capture runs on a short fixed interval so completed rides are charged
within minutes; the orphaned authorization sweep runs hourly.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    # ==================== PAYMENT PROCESSING TASKS ====================
    "capture-queued-ride-payments": {
        "task": "ridepay.tasks.payment_tasks.run_capture_batch",
        "schedule": crontab(minute="*/5"),
        "options": {
            "queue": "payments",
            "priority": 9,
        },
    },
    "release-orphaned-authorizations": {
        "task": "ridepay.tasks.payment_tasks.release_orphaned_authorizations",
        "schedule": crontab(minute=15),
        "options": {
            "queue": "payments",
            "priority": 5,
        },
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "production": CELERYBEAT_SCHEDULE,
    "testing": {
        "capture-queued-ride-payments": {
            "task": "ridepay.tasks.payment_tasks.run_capture_batch",
            "schedule": timedelta(seconds=30),
            "options": {"queue": "payments", "priority": 9},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
