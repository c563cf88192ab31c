"""
Transaction ledger model.

One row per monetary movement: session or bundle charges, coach payouts and
refunds. ``stripe_payment_intent_id`` is the external reference webhooks are
matched on.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.constants.payment_status import TransactionStatus
from app.database import Base


class Transaction(Base):
    """A record of one monetary movement."""

    __tablename__ = "transactions"

    __table_args__ = (
        Index("ix_transactions_payer_id", "payer_id"),
        Index("ix_transactions_coach_id", "coach_id"),
        Index("ix_transactions_session_id", "session_id"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    kind: Mapped[str] = mapped_column(String(30), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TransactionStatus.PENDING.value)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    coach_payout: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    stripe_transfer_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("coaching_sessions.id", ondelete="SET NULL"), nullable=True
    )
    bundle_id: Mapped[Optional[str]] = mapped_column(
        String(26), ForeignKey("bundles.id", ondelete="SET NULL"), nullable=True
    )
    payer_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    coach_id: Mapped[Optional[str]] = mapped_column(String(26), ForeignKey("users.id"), nullable=True)
    # "metadata" is reserved on declarative classes
    metadata_json: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<Transaction {self.id} {self.kind} {self.status} {self.amount} {self.currency}>"
