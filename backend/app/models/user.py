# backend/app/models/user.py
"""
User model for the coaching marketplace.

Coaches and clients share the ``users`` table and are told apart by ``role``.
Coaches additionally carry a Stripe Connect account id and a running
``total_earnings`` figure that is bumped when a session payment settles.
"""

import logging

from sqlalchemy import Column, DateTime, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..constants.payment_status import UserRole
from ..database import Base

logger = logging.getLogger(__name__)


class User(Base):
    """
    Marketplace participant (coach, client or operator).

    Attributes:
        id: ULID primary key
        email: Unique email address used for notifications
        first_name / last_name: Display names used in email templates
        role: One of UserRole
        stripe_connect_account_id: Destination account for coach payouts
        total_earnings: Running total of settled coach payouts
    """

    __tablename__ = "users"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    role = Column(String(20), nullable=False, default=UserRole.CLIENT.value)
    stripe_connect_account_id = Column(String(255), nullable=True)
    total_earnings = Column(Numeric(10, 2), nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_coach(self) -> bool:
        return bool(self.role == UserRole.COACH.value)

    def __repr__(self) -> str:
        return f"<User {self.email} ({self.role})>"
