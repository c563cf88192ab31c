"""Stripe Connect payout account model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, func
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base


class ConnectedPayoutAccount(Base):
    """Coach Stripe Connect account for receiving transfers.

    The capability flags mirror the latest ``account.updated`` event.
    """

    __tablename__ = "connected_payout_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    default_currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    payouts_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requires_onboarding: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    deauthorized_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def fully_enabled(self) -> bool:
        return bool(self.payouts_enabled and self.charges_enabled)

    def __repr__(self) -> str:
        return (
            f"<ConnectedPayoutAccount(user_id={self.user_id}, account={self.stripe_account_id}, "
            f"payouts={self.payouts_enabled})>"
        )
