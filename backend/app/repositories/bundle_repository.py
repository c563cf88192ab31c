"""Repository for prepaid session bundles."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from app.constants.payment_status import BundleStatus
from app.models.bundle import Bundle
from app.repositories.base_repository import BaseRepository


class BundleRepository(BaseRepository[Bundle]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, Bundle)

    def activate(self, bundle_id: str) -> Optional[Bundle]:
        return self.update(
            bundle_id,
            status=BundleStatus.ACTIVE.value,
            activated_at=datetime.now(timezone.utc),
        )

    def mark_payment_failed(self, bundle_id: str) -> Optional[Bundle]:
        return self.update(bundle_id, status=BundleStatus.PAYMENT_FAILED.value)
