# backend/app/models/coaching_session.py
"""
Coaching session model.

Only the payment-facing columns are modelled here. The ``price_amount`` ..
``payout_status`` columns are denormalized copies of the owning
Transaction row; the Transaction is authoritative and the reconciliation job
rewrites these columns from it.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String
from sqlalchemy.sql import func
import ulid

from ..constants.payment_status import SessionStatus
from ..database import Base


class CoachingSession(Base):
    """A booked session between a coach and a client."""

    __tablename__ = "coaching_sessions"

    id = Column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    coach_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    client_id = Column(String(26), ForeignKey("users.id"), nullable=False, index=True)
    start_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(String(20), nullable=False, default=SessionStatus.SCHEDULED.value, index=True)

    # Mirrored payment fields
    price_amount = Column(Numeric(10, 2), nullable=True)
    currency = Column(String(3), nullable=True)
    platform_fee_amount = Column(Numeric(10, 2), nullable=True)
    coach_payout_amount = Column(Numeric(10, 2), nullable=True)
    stripe_payment_intent_id = Column(String(255), nullable=True, index=True)
    payment_status = Column(String(20), nullable=True)
    payout_status = Column(String(20), nullable=True)
    # Portion of coach_payout_amount already sent by early payouts
    payout_drawn_amount = Column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("price_amount IS NULL OR price_amount >= 0", name="check_session_price_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<CoachingSession {self.id} coach={self.coach_id} "
            f"payment={self.payment_status} payout={self.payout_status}>"
        )
