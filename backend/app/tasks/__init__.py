# backend/app/tasks/__init__.py
"""
Celery tasks package for the payments backend.

- Scheduled coach payouts
- Session mirror reconciliation
"""

from app.tasks.celery_app import BaseTask, celery_app
from app.tasks.payment_tasks import process_scheduled_payouts, reconcile_session_mirrors

__all__ = [
    "celery_app",
    "BaseTask",
    "process_scheduled_payouts",
    "reconcile_session_mirrors",
]

# This allows running celery with: celery -A app.tasks worker
