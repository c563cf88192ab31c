"""Processed webhook event ledger model."""

from __future__ import annotations

from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class ProcessedWebhookEvent(Base):
    """Append-only record of Stripe event ids that have been handled."""

    __tablename__ = "processed_webhook_events"

    __table_args__ = (
        sa.UniqueConstraint("event_id", name="uq_processed_webhook_events_event_id"),
        sa.Index("ix_processed_webhook_events_event_type", "event_type"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    event_id: Mapped[str] = mapped_column(String(255), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_now_utc,
        server_default=func.now(),
    )
