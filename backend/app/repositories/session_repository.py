"""Repository for coaching sessions and their mirrored payment columns."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.constants.payment_status import PayoutStatus, SessionStatus, TransactionStatus
from app.core.exceptions import RepositoryException
from app.models.coaching_session import CoachingSession
from app.repositories.base_repository import BaseRepository


class SessionRepository(BaseRepository[CoachingSession]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, CoachingSession)

    def mirror_payment(
        self,
        session_id: str,
        *,
        price_amount: Decimal,
        currency: str,
        platform_fee_amount: Decimal,
        coach_payout_amount: Decimal,
        stripe_payment_intent_id: str,
        payment_status: str,
    ) -> Optional[CoachingSession]:
        """Copy the authoritative transaction fields onto the session row."""
        return self.update(
            session_id,
            price_amount=price_amount,
            currency=currency,
            platform_fee_amount=platform_fee_amount,
            coach_payout_amount=coach_payout_amount,
            stripe_payment_intent_id=stripe_payment_intent_id,
            payment_status=payment_status,
        )

    def update_payment_status(self, session_id: str, payment_status: str) -> Optional[CoachingSession]:
        return self.update(session_id, payment_status=payment_status)

    def get_eligible_for_payout(self, coach_id: Optional[str] = None) -> list[CoachingSession]:
        """Completed, paid sessions that have not been paid out yet, oldest first per coach."""
        query = (
            self._build_query()
            .filter(CoachingSession.status == SessionStatus.COMPLETED.value)
            .filter(CoachingSession.payment_status == TransactionStatus.COMPLETED.value)
            .filter(CoachingSession.payout_status.is_(None))
        )
        if coach_id is not None:
            query = query.filter(CoachingSession.coach_id == coach_id)
        query = query.order_by(CoachingSession.coach_id, CoachingSession.start_time, CoachingSession.id)
        return self._execute_query(query)

    @staticmethod
    def remaining_payout(session: CoachingSession) -> Decimal:
        """What the coach is still owed for ``session`` after early draws."""
        owed = Decimal(session.coach_payout_amount or 0) - Decimal(session.payout_drawn_amount or 0)
        return max(owed, Decimal("0"))

    def get_available_balance(self, coach_id: str) -> Decimal:
        """Sum of unpaid coach payouts across eligible sessions for one coach."""
        total = Decimal("0")
        for session in self.get_eligible_for_payout(coach_id):
            total += self.remaining_payout(session)
        return total

    def draw_down(self, coach_id: str, amount: Decimal) -> list[dict]:
        """
        Settle ``amount`` against the coach's eligible sessions, oldest first.

        Sessions covered in full are marked paid out; the last one may be
        drawn partially and stays eligible for its remainder. Returns one
        ``{"sessionId", "drawn", "settled"}`` entry per session touched.
        Does not commit.
        """
        left = amount
        draws: list[dict] = []
        for session in self.get_eligible_for_payout(coach_id):
            if left <= 0:
                break
            owed = self.remaining_payout(session)
            if owed <= 0:
                continue
            drawn = min(owed, left)
            session.payout_drawn_amount = Decimal(session.payout_drawn_amount or 0) + drawn
            settled = drawn == owed
            if settled:
                session.payout_status = PayoutStatus.COMPLETED.value
            draws.append({"sessionId": session.id, "drawn": str(drawn), "settled": settled})
            left -= drawn
        self.flush()
        return draws

    def mark_payout_completed(self, session_ids: Sequence[str]) -> int:
        if not session_ids:
            return 0
        try:
            updated = (
                self.db.query(CoachingSession)
                .filter(CoachingSession.id.in_(list(session_ids)))
                .update(
                    {
                        CoachingSession.payout_status: PayoutStatus.COMPLETED.value,
                        CoachingSession.payout_drawn_amount: func.coalesce(CoachingSession.coach_payout_amount, 0),
                    },
                    synchronize_session="fetch",
                )
            )
            self.db.flush()
            return int(updated)
        except SQLAlchemyError as e:
            self.logger.error(f"Error marking payouts completed: {str(e)}")
            raise RepositoryException(f"Failed to mark payouts completed: {str(e)}") from e
