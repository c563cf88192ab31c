# backend/tests/services/test_webhook_processor.py
"""
WebhookEventProcessor: idempotency, retries, status monotonicity and the
per-event side effects.
"""

from decimal import Decimal
from unittest.mock import patch

import pytest

from app.constants.payment_status import BundleStatus, TransactionKind, TransactionStatus
from app.core.exceptions import MalformedEventException, WebhookProcessingException
from app.models.payout_record import PayoutRecord
from app.models.transaction import Transaction
from app.models.webhook_event import ProcessedWebhookEvent
from app.repositories.transaction_repository import TransactionRepository
from app.services.notification_service import NotificationService
from app.services.retry_policy import RetryPolicy
from app.services.session_payment_service import SessionPaymentService
from app.services.template_service import TemplateService
from app.services.webhook_processor import WebhookEventProcessor, WebhookOutcome


@pytest.fixture
def make_transaction(db, coach, client_user):
    def _make(
        payment_intent_id: str = "pi_1",
        status: str = TransactionStatus.PENDING.value,
        session=None,
        bundle=None,
    ) -> Transaction:
        txn = TransactionRepository(db).create_transaction(
            kind=(
                TransactionKind.BUNDLE_PAYMENT.value if bundle else TransactionKind.SESSION_PAYMENT.value
            ),
            status=status,
            amount=Decimal("1000.00"),
            currency="usd",
            platform_fee=Decimal("120.00"),
            coach_payout=Decimal("915.00"),
            stripe_payment_intent_id=payment_intent_id,
            session_id=session.id if session else None,
            bundle_id=bundle.id if bundle else None,
            payer_id=client_user.id,
            coach_id=coach.id,
        )
        db.commit()
        return txn

    return _make


@pytest.fixture
def session_txn(make_session, make_transaction, coach, client_user):
    session = make_session(coach, client_user, payment_status=TransactionStatus.PENDING.value)
    return make_transaction(session=session), session


def _subjects(email_backend):
    return [m["subject"] for m in email_backend.sent]


class TestIdempotency:
    def test_success_then_duplicate(self, processor, db, session_txn, stripe_event, payment_intent_obj, coach):
        txn, _ = session_txn
        event = stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1"))

        first = processor.process_event(event)
        second = processor.process_event(event)

        assert first.status == WebhookOutcome.PROCESSED
        assert second.status == WebhookOutcome.DUPLICATE
        db.refresh(coach)
        # Earnings credited exactly once
        assert coach.total_earnings == Decimal("915.00")
        assert db.query(ProcessedWebhookEvent).filter_by(event_id="evt_test_1").count() == 1

    def test_concurrent_delivery_loses_on_unique_constraint(
        self, processor, db, session_txn, stripe_event, payment_intent_obj, coach
    ):
        event = stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1"))
        # Another worker recorded the event between our check and our insert
        db.add(ProcessedWebhookEvent(event_id="evt_test_1", event_type="payment_intent.succeeded"))
        db.commit()

        with patch.object(processor.webhook_event_repository, "is_processed", return_value=False):
            result = processor.process_event(event)

        assert result.status == WebhookOutcome.DUPLICATE
        txn, _ = session_txn
        db.refresh(txn)
        assert txn.status == TransactionStatus.PENDING.value
        db.refresh(coach)
        assert coach.total_earnings == Decimal("0.00")

    def test_unknown_event_type_is_recorded_and_ignored(self, processor, db, stripe_event):
        result = processor.process_event(stripe_event("customer.created", {"id": "cus_1"}, event_id="evt_u"))

        assert result.status == WebhookOutcome.IGNORED
        assert processor.webhook_event_repository.is_processed("evt_u")

    def test_malformed_event_is_rejected_and_not_recorded(self, processor, db):
        with pytest.raises(MalformedEventException):
            processor.process_event({"id": "evt_bad", "type": "payment_intent.succeeded"})

        assert db.query(ProcessedWebhookEvent).count() == 0


class TestRetries:
    def test_transient_failures_are_retried(self, processor, db, session_txn, sleeps, stripe_event, payment_intent_obj):
        calls = {"n": 0}
        real_handler = processor._handlers["payment_intent.succeeded"]

        def flaky(event, outbox):
            calls["n"] += 1
            if calls["n"] < 3:
                raise RuntimeError("deadlock detected")
            real_handler(event, outbox)

        processor._handlers["payment_intent.succeeded"] = flaky

        result = processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1")))

        assert result.status == WebhookOutcome.PROCESSED
        assert calls["n"] == 3
        assert sleeps == [1.0, 2.0]
        txn, _ = session_txn
        db.refresh(txn)
        assert txn.status == TransactionStatus.COMPLETED.value

    def test_exhausted_retries_fail_loudly_and_leave_event_unrecorded(
        self, processor, db, session_txn, sleeps, stripe_event, payment_intent_obj, email_backend
    ):
        def broken(event, outbox):
            raise RuntimeError("database unavailable")

        processor._handlers["payment_intent.succeeded"] = broken

        with pytest.raises(WebhookProcessingException) as exc_info:
            processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1")))

        assert exc_info.value.details["attempts"] == 3
        assert exc_info.value.details["last_error"] == "database unavailable"
        assert sleeps == [1.0, 2.0]
        assert not processor.webhook_event_repository.is_processed("evt_test_1")
        assert email_backend.sent == []

    def test_partial_handler_writes_are_rolled_back(
        self, processor, db, session_txn, stripe_event, payment_intent_obj, coach
    ):
        real_handler = processor._handlers["payment_intent.succeeded"]

        def fails_after_writing(event, outbox):
            real_handler(event, outbox)
            raise RuntimeError("crash after writes")

        processor._handlers["payment_intent.succeeded"] = fails_after_writing

        with pytest.raises(WebhookProcessingException):
            processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1")))

        txn, session = session_txn
        db.refresh(txn)
        db.refresh(coach)
        assert txn.status == TransactionStatus.PENDING.value
        assert coach.total_earnings == Decimal("0.00")

    def test_redelivery_after_failure_succeeds(self, db, session_txn, stripe_event, payment_intent_obj, notification_service):
        failing = WebhookEventProcessor(
            db,
            notification_service=notification_service,
            retry_policy=RetryPolicy(max_attempts=1, sleeper=lambda _: None),
        )
        def broken(event, outbox):
            raise RuntimeError("lock timeout")

        failing._handlers["payment_intent.succeeded"] = broken
        event = stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1"))
        with pytest.raises(WebhookProcessingException):
            failing.process_event(event)

        healthy = WebhookEventProcessor(
            db,
            notification_service=notification_service,
            retry_policy=RetryPolicy(max_attempts=1, sleeper=lambda _: None),
        )
        assert healthy.process_event(event).status == WebhookOutcome.PROCESSED


class TestPaymentIntentEvents:
    def test_succeeded_settles_session_payment(
        self, processor, db, session_txn, stripe_event, payment_intent_obj, coach, email_backend
    ):
        txn, session = session_txn

        processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1")))

        db.refresh(txn)
        db.refresh(session)
        db.refresh(coach)
        assert txn.status == TransactionStatus.COMPLETED.value
        assert session.payment_status == TransactionStatus.COMPLETED.value
        assert coach.total_earnings == Decimal("915.00")
        sent = {(m["to"], m["subject"]) for m in email_backend.sent}
        assert ("client@example.com", "Payment Confirmation") in sent
        assert ("coach@example.com", "New Session Payment Received") in sent

    def test_succeeded_activates_bundle(
        self, processor, db, make_bundle, make_transaction, coach, client_user, stripe_event, payment_intent_obj, email_backend
    ):
        bundle = make_bundle(coach, client_user)
        make_transaction(payment_intent_id="pi_b", bundle=bundle)

        processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_b")))

        db.refresh(bundle)
        assert bundle.status == BundleStatus.ACTIVE.value
        assert bundle.activated_at is not None
        assert set(_subjects(email_backend)) == {"Bundle Purchase Confirmation", "New Bundle Purchase"}

    def test_failed_marks_failure_and_notifies_payer(
        self, processor, db, session_txn, stripe_event, payment_intent_obj, email_backend
    ):
        txn, session = session_txn
        obj = payment_intent_obj(
            "pi_1", last_payment_error={"message": "Your card was declined.", "code": "card_declined"}
        )

        processor.process_event(stripe_event("payment_intent.payment_failed", obj))

        db.refresh(txn)
        db.refresh(session)
        assert txn.status == TransactionStatus.FAILED.value
        assert txn.metadata_json["failureMessage"] == "Your card was declined."
        assert txn.metadata_json["failureCode"] == "card_declined"
        assert session.payment_status == TransactionStatus.FAILED.value
        assert email_backend.sent[0]["to"] == "client@example.com"
        assert email_backend.sent[0]["subject"] == "Payment Failed"
        assert "Your card was declined." in email_backend.sent[0]["html"]

    def test_canceled(self, processor, db, session_txn, stripe_event, payment_intent_obj, email_backend):
        txn, session = session_txn

        processor.process_event(stripe_event("payment_intent.canceled", payment_intent_obj("pi_1")))

        db.refresh(txn)
        db.refresh(session)
        assert txn.status == TransactionStatus.CANCELED.value
        assert session.payment_status == TransactionStatus.CANCELED.value
        assert _subjects(email_backend) == ["Payment Failed"]

    def test_stale_failure_after_success_does_not_regress(
        self, processor, db, session_txn, stripe_event, payment_intent_obj, email_backend
    ):
        txn, session = session_txn
        processor.process_event(
            stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1"), event_id="evt_ok")
        )
        sent_before = len(email_backend.sent)

        result = processor.process_event(
            stripe_event("payment_intent.payment_failed", payment_intent_obj("pi_1"), event_id="evt_late")
        )

        assert result.status == WebhookOutcome.PROCESSED
        db.refresh(txn)
        db.refresh(session)
        assert txn.status == TransactionStatus.COMPLETED.value
        assert session.payment_status == TransactionStatus.COMPLETED.value
        assert "failureMessage" not in txn.metadata_json
        assert len(email_backend.sent) == sent_before

    def test_unknown_payment_intent_is_processed_without_effects(
        self, processor, db, stripe_event, payment_intent_obj, email_backend
    ):
        result = processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_other")))

        assert result.status == WebhookOutcome.PROCESSED
        assert email_backend.sent == []


class TestNotifications:
    def test_notification_failure_does_not_fail_transition(
        self, db, session_txn, retry_policy, stripe_event, payment_intent_obj, failing_email_backend
    ):
        backend = failing_email_backend
        processor = WebhookEventProcessor(
            db,
            notification_service=NotificationService(email_service=backend, template_service=TemplateService()),
            retry_policy=retry_policy,
        )

        result = processor.process_event(stripe_event("payment_intent.succeeded", payment_intent_obj("pi_1")))

        assert result.status == WebhookOutcome.PROCESSED
        assert backend.calls == 2
        txn, _ = session_txn
        db.refresh(txn)
        assert txn.status == TransactionStatus.COMPLETED.value


class TestAccountEvents:
    def _updated(self, stripe_event, event_id, enabled=True):
        return stripe_event(
            "account.updated",
            {
                "id": "acct_coach",
                "payouts_enabled": enabled,
                "charges_enabled": enabled,
                "details_submitted": True,
                "country": "US",
                "default_currency": "usd",
            },
            event_id=event_id,
        )

    def test_ready_email_sent_only_on_first_enablement(
        self, processor, db, make_account, coach, stripe_event, email_backend
    ):
        account = make_account(coach, "acct_coach", enabled=False)

        processor.process_event(self._updated(stripe_event, "evt_a1"))
        processor.process_event(self._updated(stripe_event, "evt_a2"))

        db.refresh(account)
        assert account.payouts_enabled and account.charges_enabled
        assert account.requires_onboarding is False
        assert account.country == "US"
        ready = [m for m in email_backend.sent if m["subject"] == "Your Coaching Account is Ready"]
        assert len(ready) == 1
        assert ready[0]["to"] == "coach@example.com"

    def test_unknown_account_is_ignored(self, processor, stripe_event, email_backend):
        result = processor.process_event(self._updated(stripe_event, "evt_a1"))

        assert result.status == WebhookOutcome.PROCESSED
        assert email_backend.sent == []

    def test_deauthorized_disables_account_and_alerts_operator(
        self, processor, db, make_account, coach, stripe_event, email_backend
    ):
        account = make_account(coach, "acct_coach", enabled=True)

        processor.process_event(
            stripe_event("account.application.deauthorized", {"id": "ca_1"}, account="acct_coach")
        )

        db.refresh(account)
        assert account.payouts_enabled is False
        assert account.charges_enabled is False
        assert account.requires_onboarding is True
        assert account.deauthorized_at is not None
        assert email_backend.sent[0]["to"] == "ops@example.com"
        assert email_backend.sent[0]["subject"] == "Stripe Account Deauthorized"


class TestPayoutEvents:
    def test_payout_paid_upserts_record_and_notifies_coach(
        self, processor, db, make_account, coach, stripe_event, email_backend
    ):
        make_account(coach, "acct_coach")

        processor.process_event(
            stripe_event(
                "payout.paid",
                {"id": "po_1", "amount": 8000, "currency": "usd", "status": "paid", "arrival_date": 1767225600},
                account="acct_coach",
            )
        )

        record = db.query(PayoutRecord).filter_by(stripe_payout_id="po_1").one()
        assert record.status == "completed"
        assert record.amount == Decimal("80.00")
        assert record.stripe_account_id == "acct_coach"
        assert record.completed_at is not None
        assert email_backend.sent[0]["to"] == "coach@example.com"
        assert email_backend.sent[0]["subject"] == "Payout Completed"

    def test_payout_failed_updates_existing_record(
        self, processor, db, make_account, coach, stripe_event, email_backend
    ):
        make_account(coach, "acct_coach")
        db.add(PayoutRecord(stripe_payout_id="po_1", amount=Decimal("80.00"), currency="usd", status="pending"))
        db.commit()

        processor.process_event(
            stripe_event(
                "payout.failed",
                {
                    "id": "po_1",
                    "amount": 8000,
                    "currency": "usd",
                    "status": "failed",
                    "failure_code": "account_closed",
                    "failure_message": "The bank account has been closed",
                },
                account="acct_coach",
            )
        )

        records = db.query(PayoutRecord).filter_by(stripe_payout_id="po_1").all()
        assert len(records) == 1
        assert records[0].status == "failed"
        assert records[0].failure_code == "account_closed"
        assert _subjects(email_backend) == ["Payout Failed"]


class TestDisputeAndRefundEvents:
    def _dispute(self, stripe_event, event_type, status, event_id):
        return stripe_event(
            event_type,
            {
                "id": "dp_1",
                "payment_intent": "pi_1",
                "charge": "ch_1",
                "amount": 100000,
                "currency": "usd",
                "reason": "fraudulent",
                "status": status,
            },
            event_id=event_id,
        )

    def test_dispute_created_then_won(self, processor, db, make_transaction, stripe_event, email_backend):
        txn = make_transaction(status=TransactionStatus.COMPLETED.value)

        processor.process_event(self._dispute(stripe_event, "charge.dispute.created", "needs_response", "evt_d1"))
        db.refresh(txn)
        assert txn.status == TransactionStatus.DISPUTED.value
        assert txn.metadata_json["disputeId"] == "dp_1"
        assert txn.metadata_json["disputeReason"] == "fraudulent"
        assert txn.metadata_json["disputeAmount"] == "1000.00"
        opened = {(m["to"], m["subject"]) for m in email_backend.sent}
        assert ("coach@example.com", "Payment Dispute Opened") in opened
        assert ("ops@example.com", "New Payment Dispute") in opened

        processor.process_event(self._dispute(stripe_event, "charge.dispute.closed", "won", "evt_d2"))
        db.refresh(txn)
        assert txn.status == TransactionStatus.COMPLETED.value
        assert txn.metadata_json["disputeStatus"] == "won"
        assert "Dispute Won" in _subjects(email_backend)

    def test_dispute_lost_refunds(self, processor, db, make_transaction, stripe_event, email_backend):
        txn = make_transaction(status=TransactionStatus.DISPUTED.value)

        processor.process_event(self._dispute(stripe_event, "charge.dispute.closed", "lost", "evt_d3"))

        db.refresh(txn)
        assert txn.status == TransactionStatus.REFUNDED.value
        assert set(_subjects(email_backend)) == {"Dispute Lost", "Dispute Resolution"}

    def test_charge_refunded(self, processor, db, make_session, make_transaction, coach, client_user, stripe_event, email_backend):
        session = make_session(coach, client_user, payment_status=TransactionStatus.COMPLETED.value)
        txn = make_transaction(status=TransactionStatus.COMPLETED.value, session=session)

        processor.process_event(
            stripe_event(
                "charge.refunded",
                {
                    "id": "ch_1",
                    "payment_intent": "pi_1",
                    "amount_refunded": 100000,
                    "currency": "usd",
                    "refunds": {"data": [{"id": "re_1", "reason": "requested_by_customer"}]},
                },
            )
        )

        db.refresh(txn)
        db.refresh(session)
        assert txn.status == TransactionStatus.REFUNDED.value
        assert txn.metadata_json["refundId"] == "re_1"
        assert txn.metadata_json["refundAmount"] == "1000.00"
        assert session.payment_status == TransactionStatus.REFUNDED.value
        assert email_backend.sent[0]["subject"] == "Payment Refunded"

    @staticmethod
    def _charge_refunded(stripe_event, refund_id, event_id):
        return stripe_event(
            "charge.refunded",
            {
                "id": "ch_1",
                "payment_intent": "pi_1",
                "amount_refunded": 100000,
                "currency": "usd",
                "refunds": {"data": [{"id": refund_id, "reason": "requested_by_customer"}]},
            },
            event_id=event_id,
        )

    def test_refund_issued_through_api_still_notifies_payer(
        self, processor, db, make_transaction, fake_stripe, stripe_event, email_backend
    ):
        txn = make_transaction(status=TransactionStatus.COMPLETED.value)
        SessionPaymentService(db, stripe_client=fake_stripe).create_refund("pi_1")
        db.refresh(txn)
        assert txn.status == TransactionStatus.REFUNDED.value

        processor.process_event(self._charge_refunded(stripe_event, "re_test_1", "evt_r1"))

        assert _subjects(email_backend) == ["Payment Refunded"]
        assert email_backend.sent[0]["to"] == "client@example.com"
        db.refresh(txn)
        assert txn.metadata_json["refundNotifiedId"] == "re_test_1"

    def test_same_refund_under_new_event_id_is_notified_once(
        self, processor, make_transaction, stripe_event, email_backend
    ):
        make_transaction(status=TransactionStatus.COMPLETED.value)

        processor.process_event(self._charge_refunded(stripe_event, "re_1", "evt_r1"))
        processor.process_event(self._charge_refunded(stripe_event, "re_1", "evt_r2"))
        processor.process_event(self._charge_refunded(stripe_event, "re_2", "evt_r3"))

        assert _subjects(email_backend) == ["Payment Refunded", "Payment Refunded"]

    def test_refund_event_for_pending_payment_sends_nothing(
        self, processor, make_transaction, stripe_event, email_backend
    ):
        make_transaction(status=TransactionStatus.PENDING.value)

        processor.process_event(self._charge_refunded(stripe_event, "re_1", "evt_r1"))

        assert email_backend.sent == []

    def test_failed_refund_notifies_payer(self, processor, db, make_transaction, stripe_event, email_backend):
        txn = make_transaction(status=TransactionStatus.COMPLETED.value)

        processor.process_event(
            stripe_event(
                "charge.refund.updated",
                {"id": "re_1", "payment_intent": "pi_1", "status": "failed", "amount": 5000, "failure_reason": "expired_or_canceled_card"},
            )
        )

        db.refresh(txn)
        assert txn.status == TransactionStatus.COMPLETED.value
        assert txn.metadata_json["refundStatus"] == "failed"
        assert email_backend.sent[0]["to"] == "client@example.com"
        assert email_backend.sent[0]["subject"] == "Refund Failed"

    def test_succeeded_refund_update_is_a_no_op(self, processor, make_transaction, stripe_event, email_backend):
        make_transaction(status=TransactionStatus.COMPLETED.value)

        processor.process_event(
            stripe_event("charge.refund.updated", {"id": "re_1", "payment_intent": "pi_1", "status": "succeeded"})
        )

        assert email_backend.sent == []
