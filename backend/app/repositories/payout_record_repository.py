"""Repository for Stripe payout records."""

from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from app.models.payout_record import PayoutRecord
from app.repositories.base_repository import BaseRepository


class PayoutRecordRepository(BaseRepository[PayoutRecord]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, PayoutRecord)

    def upsert(self, stripe_payout_id: str, **fields: Any) -> PayoutRecord:
        """Create the record for ``stripe_payout_id`` or update it in place."""
        record = self.find_one_by(stripe_payout_id=stripe_payout_id)
        if record is None:
            return self.create(stripe_payout_id=stripe_payout_id, **fields)
        for key, value in fields.items():
            setattr(record, key, value)
        self.flush()
        return record
