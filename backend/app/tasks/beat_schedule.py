# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule for payment jobs.

Scheduled coach payouts run twice a week (Monday and Thursday, 09:00 UTC).
Session mirror reconciliation runs hourly.
"""

from typing import Any

from celery.schedules import crontab

CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "process-scheduled-payouts": {
        "task": "app.tasks.payment_tasks.process_scheduled_payouts",
        "schedule": crontab(hour=9, minute=0, day_of_week="mon,thu"),
        "options": {"queue": "payments", "priority": 8},
    },
    "reconcile-session-mirrors": {
        "task": "app.tasks.payment_tasks.reconcile_session_mirrors",
        "schedule": crontab(minute=15),
        "options": {"queue": "payments", "priority": 5},
    },
}

# Environment-specific overrides
SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "development": {
        "reconcile-session-mirrors": {
            "task": "app.tasks.payment_tasks.reconcile_session_mirrors",
            "schedule": crontab(minute="*/10"),
            "options": {"queue": "payments", "priority": 5},
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
