"""
Celery tasks for payment processing.

Runs the scheduled coach payout batch and the session mirror reconciliation
job. Each task opens its own database session.
"""

from decimal import Decimal
import logging
from typing import Any, Callable, Dict, List, ParamSpec, Protocol, TypedDict, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from app.database import SessionLocal
from app.services.payout_service import PayoutService
from app.services.session_payment_service import SessionPaymentService
from app.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R", covariant=True)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


class PayoutJobResults(TypedDict):
    processed_coach_count: int
    total_amount: str
    failures: List[Dict[str, Any]]


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


@typed_task(bind=True, max_retries=3, name="app.tasks.payment_tasks.process_scheduled_payouts")
def process_scheduled_payouts(self: Any) -> PayoutJobResults:
    """
    Pay out every coach's completed, unpaid sessions.

    Per-coach failures are part of the result, not task failures; only an
    error that stops the whole run triggers a retry.
    """
    db: Session = SessionLocal()
    try:
        result = PayoutService(db).process_scheduled_payouts()
        summary: PayoutJobResults = {
            "processed_coach_count": result.processed_coach_count,
            "total_amount": _money(result.total_amount),
            "failures": [
                {"coach_id": f.coach_id, "amount": _money(f.amount), "error": f.error}
                for f in result.failures
            ],
        }
        logger.info(f"Scheduled payouts completed: {summary}")
        return summary
    except Exception as exc:
        logger.error(f"Scheduled payout run failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()


@typed_task(name="app.tasks.payment_tasks.reconcile_session_mirrors")
def reconcile_session_mirrors() -> Dict[str, int]:
    """Rewrite session payment mirrors that diverged from their transactions."""
    db: Session = SessionLocal()
    try:
        repaired = SessionPaymentService(db).reconcile_session_mirrors()
        return {"repaired": repaired}
    finally:
        db.close()
