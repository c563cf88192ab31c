"""Repository for Stripe Connect payout accounts."""

from __future__ import annotations

from typing import Optional

from sqlalchemy.orm import Session

from app.models.connected_account import ConnectedPayoutAccount
from app.repositories.base_repository import BaseRepository


class ConnectedAccountRepository(BaseRepository[ConnectedPayoutAccount]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, ConnectedPayoutAccount)

    def get_by_stripe_account_id(self, stripe_account_id: str) -> Optional[ConnectedPayoutAccount]:
        return self.find_one_by(stripe_account_id=stripe_account_id)

    def get_by_user_id(self, user_id: str) -> Optional[ConnectedPayoutAccount]:
        query = (
            self._build_query()
            .filter(ConnectedPayoutAccount.user_id == user_id)
            .filter(ConnectedPayoutAccount.deauthorized_at.is_(None))
        )
        return self._execute_first(query)
