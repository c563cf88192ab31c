# backend/app/services/webhook_processor.py
"""
Stripe webhook event processing.

Flow for one delivery:

1. ``decode_event`` validates the envelope and returns a typed event
   (MalformedEventException is a permanent rejection, never retried).
2. An already-recorded event id short-circuits as a duplicate.
3. Each attempt runs in one DB transaction: insert the processed-event row
   (a unique-constraint hit means a concurrent delivery won), then run the
   handler. A failing attempt rolls everything back, so an event is only
   marked processed together with its effects.
4. Attempts are bounded by a RetryPolicy; exhaustion raises
   WebhookProcessingException so the HTTP layer answers non-2xx and Stripe
   redelivers later.
5. Notifications collected by the successful attempt are sent after commit.
   They never affect the outcome.

Status changes go through the ledger's transition table, so a stale event
delivered after a newer one is skipped instead of regressing the status.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..constants.payment_status import TransactionKind, TransactionStatus
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import RepositoryException, WebhookProcessingException
from ..models.transaction import Transaction
from ..models.user import User
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.stripe_events import (
    ACCOUNT_DEAUTHORIZED,
    ACCOUNT_UPDATED,
    CHARGE_REFUNDED,
    DISPUTE_CLOSED,
    DISPUTE_CREATED,
    PAYMENT_INTENT_CANCELED,
    PAYMENT_INTENT_FAILED,
    PAYMENT_INTENT_SUCCEEDED,
    PAYOUT_FAILED,
    PAYOUT_PAID,
    REFUND_UPDATED,
    AccountDeauthorizedEvent,
    AccountUpdatedEvent,
    ChargeRefundedEvent,
    DisputeEvent,
    PaymentIntentEvent,
    PayoutEvent,
    RefundUpdatedEvent,
    StripeEvent,
    decode_event,
)
from .base import BaseService
from .fee_calculator import from_minor_units
from .notification_service import EmailNotification, NotificationService
from .retry_policy import RetryPolicy


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


@dataclass(frozen=True)
class WebhookResult:
    event_id: str
    event_type: str
    status: WebhookOutcome


class _DuplicateDelivery(Exception):
    """Another delivery of the same event id committed first."""


Outbox = List[EmailNotification]


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Any) -> str:
    return f"{Decimal(value):.2f}"


class WebhookEventProcessor(BaseService):
    """Consumes verified Stripe events and applies them to the ledger."""

    def __init__(
        self,
        db: Session,
        notification_service: Optional[NotificationService] = None,
        retry_policy: Optional[RetryPolicy] = None,
        config: Optional[Settings] = None,
    ):
        super().__init__(db)
        self.config = config or default_settings
        self.notification_service = notification_service or NotificationService()
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=self.config.webhook_max_attempts,
            base_delay=self.config.webhook_retry_base_delay_seconds,
        )
        self.transaction_repository = RepositoryFactory.create_transaction_repository(db)
        self.session_repository = RepositoryFactory.create_session_repository(db)
        self.bundle_repository = RepositoryFactory.create_bundle_repository(db)
        self.user_repository = RepositoryFactory.create_user_repository(db)
        self.account_repository = RepositoryFactory.create_connected_account_repository(db)
        self.payout_record_repository = RepositoryFactory.create_payout_record_repository(db)
        self.webhook_event_repository = RepositoryFactory.create_webhook_event_repository(db)

        self._handlers: Dict[str, Callable[[Any, Outbox], None]] = {
            PAYMENT_INTENT_SUCCEEDED: self._handle_payment_succeeded,
            PAYMENT_INTENT_FAILED: self._handle_payment_failed,
            PAYMENT_INTENT_CANCELED: self._handle_payment_canceled,
            ACCOUNT_UPDATED: self._handle_account_updated,
            ACCOUNT_DEAUTHORIZED: self._handle_account_deauthorized,
            PAYOUT_PAID: self._handle_payout_paid,
            PAYOUT_FAILED: self._handle_payout_failed,
            DISPUTE_CREATED: self._handle_dispute_created,
            DISPUTE_CLOSED: self._handle_dispute_closed,
            CHARGE_REFUNDED: self._handle_charge_refunded,
            REFUND_UPDATED: self._handle_refund_updated,
        }

    @BaseService.measure_operation("process_webhook_event")
    def process_event(self, raw_event: Any) -> WebhookResult:
        """
        Process one verified Stripe event.

        Raises:
            MalformedEventException: the event is structurally invalid
            WebhookProcessingException: every handler attempt failed
        """
        event = decode_event(raw_event)

        if self.webhook_event_repository.is_processed(event.event_id):
            self.logger.info(f"Skipping duplicate webhook {event.event_id} ({event.event_type})")
            return self._finish(event, WebhookOutcome.DUPLICATE)

        handler = self._handlers.get(event.event_type)
        if handler is None:
            self.logger.info(f"Unhandled Stripe event type: {event.event_type}")
        outbox: Outbox = []

        def attempt() -> WebhookOutcome:
            outbox.clear()
            try:
                with self.transaction():
                    self._record_processed(event)
                    if handler is not None:
                        handler(event, outbox)
            except _DuplicateDelivery:
                outbox.clear()
                return WebhookOutcome.DUPLICATE
            return WebhookOutcome.PROCESSED if handler is not None else WebhookOutcome.IGNORED

        try:
            outcome = self.retry_policy.run(
                f"webhook:{event.event_type}",
                attempt,
                on_retry=lambda _attempt, _exc: prometheus_metrics.inc_webhook_retry(
                    event.event_type
                ),
            )
        except Exception as exc:
            outbox.clear()
            prometheus_metrics.record_webhook_event(event.event_type, "failed")
            self.logger.error(
                f"Webhook {event.event_id} ({event.event_type}) failed after "
                f"{self.retry_policy.max_attempts} attempts: {exc}"
            )
            raise WebhookProcessingException(
                event.event_id, event.event_type, self.retry_policy.max_attempts, str(exc)
            ) from exc

        for notification in outbox:
            self.notification_service.send(notification)
        return self._finish(event, outcome)

    def _finish(self, event: StripeEvent, outcome: WebhookOutcome) -> WebhookResult:
        prometheus_metrics.record_webhook_event(event.event_type, outcome.value)
        return WebhookResult(event_id=event.event_id, event_type=event.event_type, status=outcome)

    def _record_processed(self, event: StripeEvent) -> None:
        try:
            self.webhook_event_repository.record_processed(event.event_id, event.event_type)
        except RepositoryException as exc:
            # Race-safe: the unique constraint on event_id decides the winner
            if isinstance(exc.__cause__, IntegrityError):
                self.logger.info(f"Webhook {event.event_id} already recorded by another delivery")
                raise _DuplicateDelivery(event.event_id) from exc
            raise

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _user(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return self.user_repository.get_by_id(user_id)

    def _notify(
        self,
        outbox: Outbox,
        to: Optional[str],
        subject: str,
        template: str,
        data: Dict[str, Any],
    ) -> None:
        if not to:
            self.logger.warning(f"No recipient for {template} notification")
            return
        outbox.append(EmailNotification(to=to, subject=subject, template=template, data=data))

    def _mirror_session_status(self, transaction: Transaction) -> None:
        if transaction.session_id:
            self.session_repository.update_payment_status(transaction.session_id, transaction.status)

    def _apply_status(
        self,
        payment_intent_id: Optional[str],
        status: TransactionStatus,
        metadata_updates: Optional[Dict[str, Any]] = None,
    ) -> tuple[Optional[Transaction], bool]:
        if not payment_intent_id:
            self.logger.warning(f"Event carries no payment intent; cannot move to {status.value}")
            return None, False
        transaction, changed = self.transaction_repository.update_status_by_payment_intent_id(
            payment_intent_id, status.value, metadata_updates
        )
        if changed and transaction is not None:
            self._mirror_session_status(transaction)
        return transaction, changed

    # ------------------------------------------------------------------
    # Payment intent handlers
    # ------------------------------------------------------------------

    def _handle_payment_succeeded(self, event: PaymentIntentEvent, outbox: Outbox) -> None:
        transaction, changed = self._apply_status(
            event.payment_intent_id,
            TransactionStatus.COMPLETED,
            {"paidAt": _now_utc().isoformat()},
        )
        if transaction is None or not changed:
            return

        coach_payout = Decimal(transaction.coach_payout or 0)
        if transaction.coach_id and coach_payout > 0:
            self.user_repository.increment_earnings(transaction.coach_id, coach_payout)

        payer = self._user(transaction.payer_id)
        coach = self._user(transaction.coach_id)
        data = {
            "amount": _money(transaction.amount),
            "coach_payout": _money(transaction.coach_payout),
            "currency": transaction.currency,
            "coach_name": coach.full_name if coach else "your coach",
            "client_name": payer.full_name if payer else "a client",
        }

        if transaction.kind == TransactionKind.BUNDLE_PAYMENT.value and transaction.bundle_id:
            bundle = self.bundle_repository.activate(transaction.bundle_id)
            data["bundle_name"] = bundle.name if bundle else ""
            self._notify(
                outbox, payer.email if payer else None,
                "Bundle Purchase Confirmation", "bundle-confirmation-client", data,
            )
            self._notify(
                outbox, coach.email if coach else None,
                "New Bundle Purchase", "bundle-confirmation-coach", data,
            )
            return

        if transaction.session_id:
            session = self.session_repository.get_by_id(transaction.session_id)
            if session is not None and session.start_time is not None:
                data["session_start"] = session.start_time.isoformat()
        self._notify(
            outbox, payer.email if payer else None,
            "Payment Confirmation", "payment-confirmation-client", data,
        )
        self._notify(
            outbox, coach.email if coach else None,
            "New Session Payment Received", "payment-confirmation-coach", data,
        )

    def _handle_payment_failed(self, event: PaymentIntentEvent, outbox: Outbox) -> None:
        reason = event.last_payment_error_message or "Unknown error"
        transaction, changed = self._apply_status(
            event.payment_intent_id,
            TransactionStatus.FAILED,
            {"failureMessage": reason, "failureCode": event.last_payment_error_code},
        )
        if transaction is None or not changed:
            return
        if transaction.bundle_id:
            self.bundle_repository.mark_payment_failed(transaction.bundle_id)
        self._notify_payment_failure(transaction, reason, outbox)

    def _handle_payment_canceled(self, event: PaymentIntentEvent, outbox: Outbox) -> None:
        transaction, changed = self._apply_status(
            event.payment_intent_id, TransactionStatus.CANCELED
        )
        if transaction is None or not changed:
            return
        if transaction.bundle_id:
            self.bundle_repository.mark_payment_failed(transaction.bundle_id)
        self._notify_payment_failure(transaction, "The payment was canceled.", outbox)

    def _notify_payment_failure(self, transaction: Transaction, reason: str, outbox: Outbox) -> None:
        payer = self._user(transaction.payer_id)
        self._notify(
            outbox,
            payer.email if payer else None,
            "Payment Failed",
            "payment-failed",
            {
                "amount": _money(transaction.amount),
                "currency": transaction.currency,
                "client_name": payer.full_name if payer else "",
                "failure_reason": reason,
            },
        )

    # ------------------------------------------------------------------
    # Connected account handlers
    # ------------------------------------------------------------------

    def _handle_account_updated(self, event: AccountUpdatedEvent, outbox: Outbox) -> None:
        account = self.account_repository.get_by_stripe_account_id(event.account_id)
        if account is None:
            self.logger.warning(f"account.updated for unknown account {event.account_id}")
            return

        # Capture the prior state before overwriting so "ready" is sent once
        was_enabled = account.fully_enabled

        account.payouts_enabled = event.payouts_enabled
        account.charges_enabled = event.charges_enabled
        account.details_submitted = event.details_submitted
        account.requires_onboarding = not event.details_submitted
        if event.country:
            account.country = event.country
        if event.default_currency:
            account.default_currency = event.default_currency
        self.account_repository.flush()

        if account.fully_enabled and not was_enabled:
            self.logger.info(f"Connected account {event.account_id} is now fully enabled")
            owner = self._user(account.user_id)
            self._notify(
                outbox,
                owner.email if owner else event.email,
                "Your Coaching Account is Ready",
                "account-enabled",
                {"coach_name": owner.full_name if owner else "", "account_id": event.account_id},
            )

    def _handle_account_deauthorized(self, event: AccountDeauthorizedEvent, outbox: Outbox) -> None:
        account = self.account_repository.get_by_stripe_account_id(event.account_id)
        owner_email = None
        if account is not None:
            account.payouts_enabled = False
            account.charges_enabled = False
            account.requires_onboarding = True
            account.deauthorized_at = _now_utc()
            self.account_repository.flush()
            owner = self._user(account.user_id)
            owner_email = owner.email if owner else None
        else:
            self.logger.warning(f"Deauthorization for unknown account {event.account_id}")

        self._notify(
            outbox,
            self.config.admin_email,
            "Stripe Account Deauthorized",
            "account-deauthorized",
            {"account_id": event.account_id, "coach_email": owner_email},
        )

    # ------------------------------------------------------------------
    # Payout handlers
    # ------------------------------------------------------------------

    def _payout_owner(self, event: PayoutEvent) -> Optional[User]:
        if not event.account:
            return None
        account = self.account_repository.get_by_stripe_account_id(event.account)
        if account is not None:
            return self._user(account.user_id)
        return self.user_repository.get_by_connect_account_id(event.account)

    def _handle_payout_paid(self, event: PayoutEvent, outbox: Outbox) -> None:
        self.payout_record_repository.upsert(
            event.payout_id,
            stripe_account_id=event.account,
            amount=from_minor_units(event.amount),
            currency=event.currency,
            status="completed",
            arrival_date=event.arrival_date,
            completed_at=_now_utc(),
        )
        owner = self._payout_owner(event)
        self._notify(
            outbox,
            owner.email if owner else None,
            "Payout Completed",
            "payout-completed",
            {
                "coach_name": owner.full_name if owner else "",
                "amount": _money(from_minor_units(event.amount)),
                "currency": event.currency,
                "arrival_date": event.arrival_date.date().isoformat() if event.arrival_date else None,
            },
        )

    def _handle_payout_failed(self, event: PayoutEvent, outbox: Outbox) -> None:
        self.payout_record_repository.upsert(
            event.payout_id,
            stripe_account_id=event.account,
            amount=from_minor_units(event.amount),
            currency=event.currency,
            status="failed",
            failure_code=event.failure_code,
            failure_message=event.failure_message,
        )
        owner = self._payout_owner(event)
        self._notify(
            outbox,
            owner.email if owner else None,
            "Payout Failed",
            "payout-failed",
            {
                "coach_name": owner.full_name if owner else "",
                "amount": _money(from_minor_units(event.amount)),
                "currency": event.currency,
                "failure_code": event.failure_code,
                "failure_message": event.failure_message,
            },
        )

    # ------------------------------------------------------------------
    # Dispute and refund handlers
    # ------------------------------------------------------------------

    def _handle_dispute_created(self, event: DisputeEvent, outbox: Outbox) -> None:
        transaction, changed = self._apply_status(
            event.payment_intent_id,
            TransactionStatus.DISPUTED,
            {
                "disputeId": event.dispute_id,
                "disputeReason": event.reason,
                "disputeAmount": _money(from_minor_units(event.amount)),
                "disputeStatus": event.status,
            },
        )
        if transaction is None or not changed:
            return

        coach = self._user(transaction.coach_id)
        data = {
            "dispute_id": event.dispute_id,
            "payment_intent_id": event.payment_intent_id,
            "amount": _money(from_minor_units(event.amount)),
            "currency": event.currency,
            "reason": event.reason or "unspecified",
            "coach_name": coach.full_name if coach else "",
        }
        self._notify(
            outbox, coach.email if coach else None,
            "Payment Dispute Opened", "dispute-opened-coach", data,
        )
        self._notify(
            outbox, self.config.admin_email, "New Payment Dispute", "dispute-opened-admin", data
        )

    def _handle_dispute_closed(self, event: DisputeEvent, outbox: Outbox) -> None:
        won = event.status == "won"
        transaction, changed = self._apply_status(
            event.payment_intent_id,
            TransactionStatus.COMPLETED if won else TransactionStatus.REFUNDED,
            {
                "disputeId": event.dispute_id,
                "disputeStatus": event.status,
                "disputeClosedAt": _now_utc().isoformat(),
            },
        )
        if transaction is None or not changed:
            return

        outcome = "won" if won else "lost"
        coach = self._user(transaction.coach_id)
        payer = self._user(transaction.payer_id)
        data = {
            "dispute_id": event.dispute_id,
            "amount": _money(from_minor_units(event.amount)),
            "currency": event.currency,
            "coach_name": coach.full_name if coach else "",
            "client_name": payer.full_name if payer else "",
        }
        self._notify(
            outbox, coach.email if coach else None,
            f"Dispute {outcome.capitalize()}", f"dispute-{outcome}-coach", data,
        )
        self._notify(
            outbox, payer.email if payer else None,
            "Dispute Resolution", f"dispute-{outcome}-client", data,
        )

    def _handle_charge_refunded(self, event: ChargeRefundedEvent, outbox: Outbox) -> None:
        refund_amount = from_minor_units(event.amount_refunded)
        transaction, changed = self._apply_status(
            event.payment_intent_id,
            TransactionStatus.REFUNDED,
            {
                "refundId": event.refund_id,
                "refundAmount": _money(refund_amount),
                "refundReason": event.refund_reason,
            },
        )
        if transaction is None:
            return
        # A refund created through the API may already have moved the ledger;
        # the payer still hears about each refund exactly once.
        notified_key = event.refund_id or event.charge_id or event.event_id
        if not changed and (
            transaction.status != TransactionStatus.REFUNDED.value
            or (transaction.metadata_json or {}).get("refundNotifiedId") == notified_key
        ):
            return
        self.transaction_repository.merge_metadata(transaction, {"refundNotifiedId": notified_key})

        payer = self._user(transaction.payer_id)
        self._notify(
            outbox,
            payer.email if payer else None,
            "Payment Refunded",
            "refund-processed",
            {
                "client_name": payer.full_name if payer else "",
                "amount": _money(refund_amount),
                "currency": transaction.currency,
                "reason": event.refund_reason or "No reason provided",
            },
        )

    def _handle_refund_updated(self, event: RefundUpdatedEvent, outbox: Outbox) -> None:
        if event.status != "failed":
            return
        if not event.payment_intent_id:
            self.logger.warning(f"Failed refund {event.refund_id} has no payment intent")
            return
        transaction = self.transaction_repository.get_by_payment_intent_id(event.payment_intent_id)
        if transaction is None:
            self.logger.warning(f"Failed refund {event.refund_id} for unknown payment intent")
            return

        self.transaction_repository.merge_metadata(
            transaction,
            {"refundId": event.refund_id, "refundStatus": "failed", "refundFailureReason": event.failure_reason},
        )
        payer = self._user(transaction.payer_id)
        self._notify(
            outbox,
            payer.email if payer else None,
            "Refund Failed",
            "refund-failed",
            {
                "client_name": payer.full_name if payer else "",
                "amount": _money(from_minor_units(event.amount)),
                "currency": event.currency,
                "failure_reason": event.failure_reason or "Unknown error",
            },
        )
