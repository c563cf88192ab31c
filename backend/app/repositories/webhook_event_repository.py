"""Repository helpers for the processed-webhook ledger."""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from sqlalchemy.orm import Session

from app.models.webhook_event import ProcessedWebhookEvent
from app.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class WebhookEventRepository(BaseRepository[ProcessedWebhookEvent]):
    """Repository for processed webhook event ids."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, ProcessedWebhookEvent)

    def is_processed(self, event_id: str) -> bool:
        return self.exists(event_id=event_id)

    def record_processed(self, event_id: str, event_type: str) -> ProcessedWebhookEvent:
        """Insert the idempotency row.

        Raises RepositoryException caused by IntegrityError when another
        delivery recorded the same event id first.
        """
        return self.create(event_id=event_id, event_type=event_type, processed_at=_now_utc())

    def count_by_type(self, event_type: str) -> int:
        return self.count(event_type=event_type)
