# backend/app/services/session_payment_service.py
"""
Session and bundle payment orchestration.

Creates Stripe destination charges for coaching sessions and bundles with the
platform's application fee attached, records a pending ledger transaction and
mirrors the payment fields onto the session row. Also issues refunds and
repairs session mirrors from the ledger, which is the source of truth.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
import math
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from ..constants.payment_status import TransactionKind, TransactionStatus
from ..core.config import Settings, settings as default_settings
from ..core.constants import MAX_QUERY_LIMIT, PLATFORM_METADATA_TAG
from ..core.exceptions import (
    InvalidAmountException,
    InvalidIdentifierException,
    NotFoundException,
    RepositoryException,
    ServiceException,
)
from ..integrations.stripe_client import StripeClient
from ..models.transaction import Transaction
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .fee_calculator import FeeCalculation, FeeCalculator, FeeConfig, round2, to_minor_units

CARD = "card"
BANK_DEBIT = "us_bank_account"

# Bank debit needs Financial Connections to verify the account instantly
BANK_DEBIT_OPTIONS: Dict[str, Any] = {
    BANK_DEBIT: {"financial_connections": {"permissions": ["payment_method"]}}
}


@dataclass(frozen=True)
class PaymentMethodRequirements:
    allowed_types: List[str]
    preferred_type: str
    days_until_session: int


@dataclass(frozen=True)
class PaymentIntentResult:
    payment_intent_id: str
    client_secret: Optional[str]
    transaction: Transaction
    payment_methods: PaymentMethodRequirements


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def determine_payment_method_requirements(
    session_start: datetime,
    now: Optional[datetime] = None,
    *,
    bank_debit_min_days: int = 7,
) -> PaymentMethodRequirements:
    """
    Payment instruments offered for a session starting at ``session_start``.

    Bank debit takes days to settle, so it is only offered (and preferred,
    for its lower processing fee) when the session is at least
    ``bank_debit_min_days`` away. Days are rounded up.
    """
    current = _as_utc(now or datetime.now(timezone.utc))
    seconds = (_as_utc(session_start) - current).total_seconds()
    days_until_session = math.ceil(seconds / 86400)

    if days_until_session >= bank_debit_min_days:
        return PaymentMethodRequirements(
            allowed_types=[CARD, BANK_DEBIT],
            preferred_type=BANK_DEBIT,
            days_until_session=days_until_session,
        )
    return PaymentMethodRequirements(
        allowed_types=[CARD],
        preferred_type=CARD,
        days_until_session=days_until_session,
    )


def validate_amount(amount: Any) -> Decimal:
    """Return ``amount`` as a Decimal, rejecting non-numeric, non-finite and non-positive values."""
    if isinstance(amount, bool):
        raise InvalidAmountException(amount)
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount))
    except (InvalidOperation, ValueError, TypeError):
        raise InvalidAmountException(amount)
    if not value.is_finite() or value <= 0:
        raise InvalidAmountException(amount)
    return value


def validate_identifier(value: Optional[str], field: str) -> str:
    if value is None or not str(value).strip():
        raise InvalidIdentifierException(field)
    return str(value)


class SessionPaymentService(BaseService):
    """
    Payment intents, refunds and ledger-to-session reconciliation.

    Collaborators are injected; the fee configuration is fixed when the
    service is built.
    """

    def __init__(
        self,
        db: Session,
        stripe_client: Optional[StripeClient] = None,
        fee_calculator: Optional[FeeCalculator] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.stripe_client = stripe_client or StripeClient(config=self.config)
        self.fee_calculator = fee_calculator or FeeCalculator(FeeConfig.from_settings(self.config))
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.bundle_repository = RepositoryFactory.create_bundle_repository(db)

    # ------------------------------------------------------------------
    # Payment intents
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_session_payment_intent")
    def create_session_payment_intent(
        self,
        amount: Any,
        currency: str,
        session_id: str,
        coach_id: str,
        payer_id: str,
        destination_account_id: str,
        session_start_time: datetime,
        now: Optional[datetime] = None,
    ) -> PaymentIntentResult:
        """
        Authorize a session charge and record it as a pending transaction.

        Raises:
            InvalidAmountException / InvalidIdentifierException: bad input, nothing called
            NotFoundException: unknown session
            PaymentProcessorException: Stripe rejected the intent, nothing written
            ServiceException: the intent exists at Stripe but could not be recorded
        """
        gross = validate_amount(amount)
        session_id = validate_identifier(session_id, "session_id")
        coach_id = validate_identifier(coach_id, "coach_id")
        payer_id = validate_identifier(payer_id, "payer_id")
        destination_account_id = validate_identifier(destination_account_id, "destination_account_id")
        currency = (currency or self.config.stripe_currency).lower()

        if self.session_repository.get_by_id(session_id) is None:
            raise NotFoundException(f"Session {session_id} not found", code="session_not_found")

        fees = self.fee_calculator.calculate_fees(gross)
        payment_methods = determine_payment_method_requirements(
            session_start_time, now, bank_debit_min_days=self.config.bank_debit_min_days
        )

        intent = self._authorize(
            fees=fees,
            currency=currency,
            destination_account_id=destination_account_id,
            payment_methods=payment_methods,
            metadata={
                "sessionId": session_id,
                "coachId": coach_id,
                "clientId": payer_id,
                "type": TransactionKind.SESSION_PAYMENT.value,
            },
        )
        payment_intent_id = intent["id"]

        def persist() -> Transaction:
            transaction = self.transaction_repository.create_transaction(
                kind=TransactionKind.SESSION_PAYMENT.value,
                amount=fees.amount,
                currency=currency,
                platform_fee=fees.total_platform_fee,
                coach_payout=fees.coach_payout,
                stripe_payment_intent_id=payment_intent_id,
                session_id=session_id,
                payer_id=payer_id,
                coach_id=coach_id,
                metadata=self._transaction_metadata(fees, payment_methods),
            )
            self.session_repository.mirror_payment(
                session_id,
                price_amount=fees.amount,
                currency=currency,
                platform_fee_amount=fees.total_platform_fee,
                coach_payout_amount=fees.coach_payout,
                stripe_payment_intent_id=payment_intent_id,
                payment_status=TransactionStatus.PENDING.value,
            )
            return transaction

        transaction = self._persist_after_authorization(payment_intent_id, persist)
        self.logger.info(
            f"Created payment intent {payment_intent_id} for session {session_id} "
            f"({fees.amount} {currency}, fee {fees.total_platform_fee})"
        )
        return PaymentIntentResult(
            payment_intent_id=payment_intent_id,
            client_secret=intent.get("client_secret"),
            transaction=transaction,
            payment_methods=payment_methods,
        )

    @BaseService.measure_operation("create_bundle_payment_intent")
    def create_bundle_payment_intent(
        self,
        amount: Any,
        currency: str,
        bundle_id: str,
        coach_id: str,
        payer_id: str,
        destination_account_id: str,
    ) -> PaymentIntentResult:
        """Authorize a bundle purchase. Bundles have no start date, so card only."""
        gross = validate_amount(amount)
        bundle_id = validate_identifier(bundle_id, "bundle_id")
        coach_id = validate_identifier(coach_id, "coach_id")
        payer_id = validate_identifier(payer_id, "payer_id")
        destination_account_id = validate_identifier(destination_account_id, "destination_account_id")
        currency = (currency or self.config.stripe_currency).lower()

        bundle = self.bundle_repository.get_by_id(bundle_id)
        if bundle is None:
            raise NotFoundException(f"Bundle {bundle_id} not found", code="bundle_not_found")

        fees = self.fee_calculator.calculate_fees(gross)
        payment_methods = PaymentMethodRequirements(
            allowed_types=[CARD], preferred_type=CARD, days_until_session=0
        )
        intent = self._authorize(
            fees=fees,
            currency=currency,
            destination_account_id=destination_account_id,
            payment_methods=payment_methods,
            metadata={
                "bundleId": bundle_id,
                "coachId": coach_id,
                "clientId": payer_id,
                "type": TransactionKind.BUNDLE_PAYMENT.value,
            },
        )
        payment_intent_id = intent["id"]

        def persist() -> Transaction:
            return self.transaction_repository.create_transaction(
                kind=TransactionKind.BUNDLE_PAYMENT.value,
                amount=fees.amount,
                currency=currency,
                platform_fee=fees.total_platform_fee,
                coach_payout=fees.coach_payout,
                stripe_payment_intent_id=payment_intent_id,
                bundle_id=bundle_id,
                payer_id=payer_id,
                coach_id=coach_id,
                metadata=self._transaction_metadata(fees, payment_methods),
            )

        transaction = self._persist_after_authorization(payment_intent_id, persist)
        return PaymentIntentResult(
            payment_intent_id=payment_intent_id,
            client_secret=intent.get("client_secret"),
            transaction=transaction,
            payment_methods=payment_methods,
        )

    def _authorize(
        self,
        *,
        fees: FeeCalculation,
        currency: str,
        destination_account_id: str,
        payment_methods: PaymentMethodRequirements,
        metadata: Dict[str, str],
    ) -> Any:
        stripe_metadata = dict(metadata)
        stripe_metadata.update(
            {
                "platform": PLATFORM_METADATA_TAG,
                "coachFeeAmount": str(fees.coach_fee_amount),
                "agentFeeAmount": str(fees.agent_fee_amount),
                "stripeFee": str(fees.processor_fee),
                "coachPayout": str(fees.coach_payout),
            }
        )
        options = BANK_DEBIT_OPTIONS if BANK_DEBIT in payment_methods.allowed_types else None
        return self.stripe_client.create_payment_intent(
            amount=to_minor_units(fees.amount),
            currency=currency,
            application_fee_amount=to_minor_units(fees.total_platform_fee),
            destination=destination_account_id,
            payment_method_types=payment_methods.allowed_types,
            payment_method_options=options,
            metadata=stripe_metadata,
        )

    def _transaction_metadata(
        self, fees: FeeCalculation, payment_methods: PaymentMethodRequirements
    ) -> Dict[str, Any]:
        return {
            "coachFeeAmount": str(fees.coach_fee_amount),
            "agentFeeAmount": str(fees.agent_fee_amount),
            "stripeFee": str(fees.processor_fee),
            "coachPayout": str(fees.coach_payout),
            "feeBreakdown": self.fee_calculator.get_fee_breakdown(fees.amount),
            "paymentMethodTypes": list(payment_methods.allowed_types),
            "preferredType": payment_methods.preferred_type,
        }

    def _persist_after_authorization(self, payment_intent_id: str, persist: Any) -> Transaction:
        """Run the ledger writes for an intent that already exists at Stripe.

        A failure here leaves an orphaned authorization, so it is logged at
        ERROR with the intent id and re-raised.
        """
        try:
            with self.transaction():
                return persist()
        except (ServiceException, RepositoryException) as exc:
            self.logger.error(
                f"Payment intent {payment_intent_id} was authorized but could not be recorded: {exc}",
                extra={"payment_intent_id": payment_intent_id},
            )
            raise ServiceException(
                "Payment authorized but recording the transaction failed",
                code="payment_persistence_failed",
                details={"payment_intent_id": payment_intent_id},
            ) from exc

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    @BaseService.measure_operation("create_refund")
    def create_refund(
        self,
        payment_intent_id: str,
        amount: Optional[Any] = None,
        reason: Optional[str] = None,
    ) -> Any:
        """
        Refund a charge in full, or partially when ``amount`` is given.

        When Stripe reports the refund as succeeded right away the ledger moves
        to ``refunded`` now; otherwise the refund webhooks finish the job.
        """
        payment_intent_id = validate_identifier(payment_intent_id, "payment_intent_id")
        refund_amount = validate_amount(amount) if amount is not None else None

        transaction = self.transaction_repository.get_by_payment_intent_id(payment_intent_id)
        if transaction is None:
            raise NotFoundException(
                f"No transaction for payment intent {payment_intent_id}",
                code="transaction_not_found",
            )

        refund = self.stripe_client.create_refund(
            payment_intent=payment_intent_id,
            amount=to_minor_units(refund_amount) if refund_amount is not None else None,
            reason=reason,
            metadata={"transactionId": transaction.id, "platform": PLATFORM_METADATA_TAG},
        )

        if refund.get("status") == "succeeded":
            with self.transaction():
                updated, changed = self.transaction_repository.update_status_by_payment_intent_id(
                    payment_intent_id,
                    TransactionStatus.REFUNDED.value,
                    metadata_updates={
                        "refundId": refund.get("id"),
                        "refundAmount": str(
                            round2(refund_amount) if refund_amount is not None else transaction.amount
                        ),
                        "refundReason": reason,
                    },
                )
                if changed and updated is not None and updated.session_id:
                    self.session_repository.update_payment_status(
                        updated.session_id, TransactionStatus.REFUNDED.value
                    )
        return refund

    # ------------------------------------------------------------------
    # Reconciliation and history
    # ------------------------------------------------------------------

    def reconcile_session_mirror(self, transaction: Transaction) -> bool:
        """
        Rewrite the session's mirrored payment fields from ``transaction``.

        Returns True when the session had diverged and was updated. Does not
        commit.
        """
        if not transaction.session_id:
            return False
        session = self.session_repository.get_by_id(transaction.session_id)
        if session is None:
            self.logger.warning(
                f"Transaction {transaction.id} references missing session {transaction.session_id}"
            )
            return False

        expected = {
            "price_amount": round2(Decimal(transaction.amount)),
            "currency": transaction.currency,
            "platform_fee_amount": round2(Decimal(transaction.platform_fee)),
            "coach_payout_amount": round2(Decimal(transaction.coach_payout)),
            "stripe_payment_intent_id": transaction.stripe_payment_intent_id,
            "payment_status": transaction.status,
        }
        diverged = {}
        for field, value in expected.items():
            current = getattr(session, field)
            if isinstance(value, Decimal) and current is not None:
                current = round2(Decimal(current))
            if current != value:
                diverged[field] = value

        if not diverged:
            return False

        self.logger.warning(
            f"Session {session.id} mirror diverged from transaction {transaction.id}: "
            f"{sorted(diverged)}"
        )
        for field, value in diverged.items():
            setattr(session, field, value)
        self.session_repository.flush()
        return True

    @BaseService.measure_operation("reconcile_session_mirrors")
    def reconcile_session_mirrors(self, transactions: Optional[Sequence[Transaction]] = None) -> int:
        """Repair every diverged session mirror; returns the number repaired."""
        repaired = 0
        with self.transaction():
            candidates = (
                transactions
                if transactions is not None
                else self.transaction_repository.list_mirror_candidates()
            )
            for transaction in candidates:
                if self.reconcile_session_mirror(transaction):
                    repaired += 1
        if repaired:
            self.logger.info(f"Reconciled {repaired} session payment mirrors")
        return repaired

    @BaseService.measure_operation("get_user_transaction_history")
    def get_user_transaction_history(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> List[Transaction]:
        user_id = validate_identifier(user_id, "user_id")
        limit = max(1, min(limit, MAX_QUERY_LIMIT))
        offset = max(0, offset)
        return self.transaction_repository.get_user_transaction_history(user_id, limit, offset)
