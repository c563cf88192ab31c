# backend/app/services/payout_service.py
"""
Coach payouts.

The scheduled run groups completed, paid, not-yet-paid-out sessions by coach
and sends one Stripe transfer per coach. Coaches are handled one at a time
and a failure for one coach is logged and reported without stopping the run.

Early payouts let a coach draw down their available balance ahead of the
schedule for a fixed percentage fee, a limited number of times per window.

Every transfer carries an idempotency key built from the coach and the
session balances it settles. If the ledger write fails after Stripe accepted
the transfer, the sessions stay eligible and the next attempt gets the
original transfer back from Stripe instead of paying twice.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import hashlib
from typing import Any, Callable, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..constants.payment_status import TransactionKind, TransactionStatus
from ..core.config import Settings, settings as default_settings
from ..core.constants import PLATFORM_METADATA_TAG
from ..core.exceptions import (
    BusinessRuleException,
    NotFoundException,
    RepositoryException,
    ServiceException,
)
from ..integrations.stripe_client import StripeClient
from ..models.coaching_session import CoachingSession
from ..models.transaction import Transaction
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..repositories.session_repository import SessionRepository
from .base import BaseService
from .fee_calculator import round2, to_minor_units
from .session_payment_service import validate_amount, validate_identifier


@dataclass
class PayoutFailure:
    coach_id: str
    amount: Decimal
    error: str


@dataclass
class PayoutRunResult:
    processed_coach_count: int = 0
    total_amount: Decimal = Decimal("0.00")
    failures: List[PayoutFailure] = field(default_factory=list)


@dataclass(frozen=True)
class EarlyPayoutResult:
    transfer_id: str
    original_amount: Decimal
    fee_amount: Decimal
    payout_amount: Decimal
    currency: str
    transaction: Transaction


def transfer_idempotency_key(
    payout_type: str, coach_id: str, sessions: Sequence[CoachingSession], amount: Decimal
) -> str:
    """Stable key for a transfer settling ``amount`` against ``sessions`` as they stand now."""
    state = "|".join(
        f"{s.id}:{round2(SessionRepository.remaining_payout(s))}" for s in sorted(sessions, key=lambda s: s.id)
    )
    digest = hashlib.sha256(f"{state}|{round2(amount)}".encode()).hexdigest()[:32]
    return f"payout:{payout_type}:{coach_id}:{digest}"


class PayoutService(BaseService):
    """Scheduled and early coach payouts."""

    def __init__(
        self,
        db: Session,
        stripe_client: Optional[StripeClient] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.stripe_client = stripe_client or StripeClient(config=self.config)
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.account_repository = RepositoryFactory.create_connected_account_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)

    def _destination_for(self, coach_id: str) -> Optional[str]:
        account = self.account_repository.get_by_user_id(coach_id)
        if account is not None:
            return account.stripe_account_id
        user = self.user_repository.get_by_id(coach_id)
        return user.stripe_connect_account_id if user else None

    def _persist_after_transfer(self, transfer_id: str, coach_id: str, persist: Callable[[], Transaction]) -> Transaction:
        """Run the ledger writes for a transfer Stripe already accepted.

        A failure here leaves an orphaned transfer, so it is logged at ERROR
        with the transfer id and re-raised.
        """
        try:
            with self.transaction():
                return persist()
        except (ServiceException, RepositoryException) as exc:
            self.logger.error(
                f"Transfer {transfer_id} to coach {coach_id} was sent but could not be recorded: {exc}",
                extra={"transfer_id": transfer_id, "coach_id": coach_id},
            )
            raise ServiceException(
                "Transfer sent but recording the payout failed",
                code="payout_persistence_failed",
                details={"transfer_id": transfer_id, "coach_id": coach_id},
            ) from exc

    # ------------------------------------------------------------------
    # Scheduled payouts
    # ------------------------------------------------------------------

    @BaseService.measure_operation("process_scheduled_payouts")
    def process_scheduled_payouts(self) -> PayoutRunResult:
        """
        Pay every coach what is still owed on their eligible sessions.

        Returns a PayoutRunResult counting only the coaches that were paid;
        per-coach errors are collected in ``failures``.
        """
        sessions = self.session_repository.get_eligible_for_payout()
        grouped: "OrderedDict[str, List[CoachingSession]]" = OrderedDict()
        for session in sessions:
            grouped.setdefault(session.coach_id, []).append(session)

        result = PayoutRunResult()
        self.logger.info(
            f"Scheduled payout run: {len(sessions)} eligible sessions across {len(grouped)} coaches"
        )
        run_date = datetime.now(timezone.utc).strftime("%Y%m%d")

        for coach_id, coach_sessions in grouped.items():
            amount = round2(
                sum((SessionRepository.remaining_payout(s) for s in coach_sessions), Decimal("0"))
            )
            if amount <= 0:
                self.logger.info(f"Coach {coach_id} has nothing to pay out, skipping")
                continue

            destination = self._destination_for(coach_id)
            if not destination:
                self.logger.warning(f"Coach {coach_id} has no connected account, skipping payout")
                prometheus_metrics.inc_payout_transfer("scheduled", "skipped")
                continue

            currency = coach_sessions[0].currency or self.config.stripe_currency
            try:
                self._pay_coach(
                    coach_id=coach_id,
                    amount=amount,
                    currency=currency,
                    destination=destination,
                    sessions=coach_sessions,
                    transfer_group=f"payout_{coach_id}_{run_date}",
                )
            except Exception as exc:
                # One coach's failure must not block the others
                self.logger.error(f"Payout to coach {coach_id} failed: {exc}")
                prometheus_metrics.inc_payout_transfer("scheduled", "failed")
                result.failures.append(PayoutFailure(coach_id=coach_id, amount=amount, error=str(exc)))
                continue

            prometheus_metrics.inc_payout_transfer("scheduled", "success")
            result.processed_coach_count += 1
            result.total_amount = round2(result.total_amount + amount)

        self.logger.info(
            f"Scheduled payout run finished: {result.processed_coach_count} coaches paid "
            f"{result.total_amount}, {len(result.failures)} failures"
        )
        return result

    def _pay_coach(
        self,
        *,
        coach_id: str,
        amount: Decimal,
        currency: str,
        destination: str,
        sessions: List[CoachingSession],
        transfer_group: str,
    ) -> Transaction:
        session_ids = [s.id for s in sessions]
        transfer = self.stripe_client.create_transfer(
            amount=to_minor_units(amount),
            currency=currency,
            destination=destination,
            transfer_group=transfer_group,
            metadata={
                "platform": PLATFORM_METADATA_TAG,
                "coachId": coach_id,
                "payoutType": "scheduled",
                "sessionCount": str(len(session_ids)),
            },
            idempotency_key=transfer_idempotency_key("scheduled", coach_id, sessions, amount),
        )

        def persist() -> Transaction:
            transaction = self.transaction_repository.create_transaction(
                kind=TransactionKind.PAYOUT.value,
                status=TransactionStatus.COMPLETED.value,
                amount=amount,
                currency=currency,
                coach_payout=amount,
                stripe_transfer_id=transfer["id"],
                coach_id=coach_id,
                metadata={
                    "payoutType": "scheduled",
                    "transferGroup": transfer_group,
                    "sessionIds": session_ids,
                },
            )
            self.session_repository.mark_payout_completed(session_ids)
            return transaction

        transaction = self._persist_after_transfer(transfer["id"], coach_id, persist)
        self.logger.info(
            f"Transferred {amount} {currency} to coach {coach_id} ({transfer['id']}) "
            f"for {len(session_ids)} sessions"
        )
        return transaction

    # ------------------------------------------------------------------
    # Early payouts
    # ------------------------------------------------------------------

    def get_available_balance(self, coach_id: str) -> Decimal:
        return round2(self.session_repository.get_available_balance(coach_id))

    def _check_early_payout_limit(self, coach_id: str) -> None:
        window_days = self.config.early_payout_window_days
        since = datetime.now(timezone.utc) - timedelta(days=window_days)
        recent = self.transaction_repository.count_early_payouts_since(coach_id, since)
        if recent >= self.config.early_payout_max_per_window:
            raise BusinessRuleException(
                f"Coach {coach_id} already requested {recent} early payouts in the last {window_days} days",
                code="LIMIT_EXCEEDED",
                details={"limit": self.config.early_payout_max_per_window, "window_days": window_days},
            )

    @BaseService.measure_operation("request_early_payout")
    def request_early_payout(self, coach_id: str, amount: Any, currency: Optional[str] = None) -> EarlyPayoutResult:
        """
        Transfer ``amount`` less the early payout fee to the coach now.

        The requested amount is drawn down against the coach's eligible
        sessions oldest first. Sessions covered in full are marked paid out;
        the last one may be drawn partially, and the scheduled run then pays
        only what is left on it.

        Raises:
            InvalidAmountException: amount is not a positive number
            BusinessRuleException: amount exceeds the available balance
                (INSUFFICIENT_BALANCE), or the coach is over the early payout
                limit (LIMIT_EXCEEDED)
            NotFoundException: the coach has no connected account
            PaymentProcessorException: Stripe rejected the transfer
            ServiceException: the transfer was sent but could not be recorded
        """
        coach_id = validate_identifier(coach_id, "coach_id")
        requested_amount = round2(validate_amount(amount))
        currency = (currency or self.config.stripe_currency).lower()

        self._check_early_payout_limit(coach_id)

        available = self.get_available_balance(coach_id)
        if requested_amount > available:
            raise BusinessRuleException(
                f"Requested {requested_amount} exceeds available balance {available}",
                code="INSUFFICIENT_BALANCE",
                details={"requested": str(requested_amount), "available": str(available)},
            )

        destination = self._destination_for(coach_id)
        if not destination:
            raise NotFoundException(
                f"Coach {coach_id} has no connected payout account",
                code="connected_account_not_found",
            )

        fee_percentage = Decimal(self.config.early_payout_fee_percentage)
        fee_amount = round2(requested_amount * fee_percentage / Decimal("100"))
        payout_amount = round2(requested_amount - fee_amount)

        sessions = self.session_repository.get_eligible_for_payout(coach_id)
        try:
            transfer = self.stripe_client.create_transfer(
                amount=to_minor_units(payout_amount),
                currency=currency,
                destination=destination,
                metadata={
                    "platform": PLATFORM_METADATA_TAG,
                    "coachId": coach_id,
                    "payoutType": "early",
                    "originalAmount": str(requested_amount),
                    "feeAmount": str(fee_amount),
                },
                idempotency_key=transfer_idempotency_key("early", coach_id, sessions, requested_amount),
            )
        except Exception:
            prometheus_metrics.inc_payout_transfer("early", "failed")
            raise

        def persist() -> Transaction:
            draws = self.session_repository.draw_down(coach_id, requested_amount)
            return self.transaction_repository.create_transaction(
                kind=TransactionKind.PAYOUT.value,
                status=TransactionStatus.COMPLETED.value,
                amount=requested_amount,
                currency=currency,
                platform_fee=fee_amount,
                coach_payout=payout_amount,
                stripe_transfer_id=transfer["id"],
                coach_id=coach_id,
                metadata={
                    "payoutType": "early",
                    "originalAmount": str(requested_amount),
                    "feeAmount": str(fee_amount),
                    "feePercentage": str(fee_percentage),
                    "sessionIds": [d["sessionId"] for d in draws if d["settled"]],
                    "draws": draws,
                },
            )

        transaction = self._persist_after_transfer(transfer["id"], coach_id, persist)

        prometheus_metrics.inc_payout_transfer("early", "success")
        self.logger.info(
            f"Early payout to coach {coach_id}: {payout_amount} {currency} "
            f"(requested {requested_amount}, fee {fee_amount})"
        )
        return EarlyPayoutResult(
            transfer_id=transfer["id"],
            original_amount=requested_amount,
            fee_amount=fee_amount,
            payout_amount=payout_amount,
            currency=currency,
            transaction=transaction,
        )
