"""Repository for marketplace users."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.models.user import User
from app.repositories.base_repository import BaseRepository


class UserRepository(BaseRepository[User]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, User)

    def get_by_email(self, email: str) -> Optional[User]:
        return self.find_one_by(email=email.lower())

    def get_by_connect_account_id(self, stripe_account_id: str) -> Optional[User]:
        return self.find_one_by(stripe_connect_account_id=stripe_account_id)

    def increment_earnings(self, user_id: str, amount: Decimal) -> Optional[User]:
        user = self.get_by_id(user_id)
        if user is None:
            self.logger.warning(f"Cannot credit earnings, user {user_id} not found")
            return None
        user.total_earnings = Decimal(user.total_earnings or 0) + amount
        self.flush()
        return user
