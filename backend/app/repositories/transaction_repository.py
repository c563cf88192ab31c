"""
Transaction ledger repository.

Inserts and updates ``transactions`` rows keyed by the Stripe payment intent
id, and serves per-user transaction history. Status changes go through
``update_status_by_payment_intent_id`` so the transition table in
``app.constants.payment_status`` is enforced in exactly one place.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Mapping, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from app.constants.payment_status import TransactionKind, TransactionStatus, can_transition
from app.models.transaction import Transaction
from app.repositories.base_repository import BaseRepository

logger = logging.getLogger(__name__)


class TransactionRepository(BaseRepository[Transaction]):
    """Data access for the transaction ledger."""

    def __init__(self, db: Session) -> None:
        super().__init__(db, Transaction)

    def create_transaction(
        self,
        *,
        kind: str,
        amount: Decimal,
        currency: str,
        status: str = TransactionStatus.PENDING.value,
        platform_fee: Decimal = Decimal("0"),
        coach_payout: Decimal = Decimal("0"),
        stripe_payment_intent_id: Optional[str] = None,
        stripe_transfer_id: Optional[str] = None,
        session_id: Optional[str] = None,
        bundle_id: Optional[str] = None,
        payer_id: Optional[str] = None,
        coach_id: Optional[str] = None,
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> Transaction:
        return self.create(
            kind=kind,
            status=status,
            amount=amount,
            currency=currency.lower(),
            platform_fee=platform_fee,
            coach_payout=coach_payout,
            stripe_payment_intent_id=stripe_payment_intent_id,
            stripe_transfer_id=stripe_transfer_id,
            session_id=session_id,
            bundle_id=bundle_id,
            payer_id=payer_id,
            coach_id=coach_id,
            metadata_json=dict(metadata or {}),
        )

    def get_by_payment_intent_id(self, payment_intent_id: str) -> Optional[Transaction]:
        query = self._build_query().filter(
            Transaction.stripe_payment_intent_id == payment_intent_id
        )
        return self._execute_first(query)

    def merge_metadata(self, transaction: Transaction, updates: Mapping[str, Any]) -> Transaction:
        """Merge ``updates`` into the stored metadata, keeping existing keys."""
        merged = dict(transaction.metadata_json or {})
        merged.update(updates)
        transaction.metadata_json = merged
        flag_modified(transaction, "metadata_json")
        self.flush()
        return transaction

    def update_status_by_payment_intent_id(
        self,
        payment_intent_id: str,
        status: str,
        metadata_updates: Optional[Mapping[str, Any]] = None,
    ) -> tuple[Optional[Transaction], bool]:
        """
        Move the transaction for ``payment_intent_id`` to ``status``.

        Returns ``(transaction, changed)``. ``transaction`` is None when no row
        matches. ``changed`` is False when the row already has ``status`` or the
        transition is not allowed (a stale or out-of-order event); in both cases
        nothing is written, metadata included.
        """
        transaction = self.get_by_payment_intent_id(payment_intent_id)
        if transaction is None:
            self.logger.warning(f"No transaction found for payment intent {payment_intent_id}")
            return None, False

        if transaction.status == status:
            return transaction, False

        if not can_transition(transaction.status, status):
            self.logger.warning(
                "Skipping disallowed transaction transition",
                extra={
                    "transaction_id": transaction.id,
                    "payment_intent_id": payment_intent_id,
                    "from_status": transaction.status,
                    "to_status": status,
                },
            )
            return transaction, False

        previous = transaction.status
        transaction.status = status
        if metadata_updates:
            self.merge_metadata(transaction, metadata_updates)
        else:
            self.flush()
        self.logger.info(
            f"Transaction {transaction.id} moved {previous} -> {status} "
            f"(payment intent {payment_intent_id})"
        )
        return transaction, True

    def get_user_transaction_history(
        self, user_id: str, limit: int = 50, offset: int = 0
    ) -> list[Transaction]:
        """Transactions where the user paid or was paid, newest first."""
        query = (
            self._build_query()
            .filter(or_(Transaction.payer_id == user_id, Transaction.coach_id == user_id))
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self._execute_query(query)

    def list_mirror_candidates(self, limit: int = 500) -> list[Transaction]:
        """Session-linked charge transactions whose mirror may need rewriting."""
        query = (
            self._build_query()
            .filter(Transaction.session_id.isnot(None))
            .filter(Transaction.stripe_payment_intent_id.isnot(None))
            .order_by(Transaction.created_at.desc())
            .limit(limit)
        )
        return self._execute_query(query)

    def count_early_payouts_since(self, coach_id: str, since: datetime) -> int:
        """Early payouts sent to ``coach_id`` at or after ``since``."""
        query = (
            self._build_query()
            .filter(Transaction.coach_id == coach_id)
            .filter(Transaction.kind == TransactionKind.PAYOUT.value)
            .filter(Transaction.created_at >= since)
        )
        return sum(
            1
            for transaction in self._execute_query(query)
            if (transaction.metadata_json or {}).get("payoutType") == "early"
        )
