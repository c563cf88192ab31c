# backend/tests/conftest.py
"""
Pytest configuration for the payments backend.

Every test gets its own in-memory SQLite database so commits and rollbacks
made by the services behave as they do in production. Stripe is replaced by
``FakeStripeClient`` and email goes to the console backend.
"""

import os
import sys

# Set the environment BEFORE any app imports
os.environ["CI"] = "1"  # skip .env loading
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_dummy"
os.environ["EMAIL_PROVIDER"] = "console"
os.environ["ADMIN_EMAIL"] = "ops@example.com"

# Never send real email from a test run
import unittest.mock

global_resend_mock = unittest.mock.patch("resend.Emails.send")
mocked_send = global_resend_mock.start()
mocked_send.return_value = {"id": "test-email-id"}

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401  registers every table on Base.metadata
from app.constants.payment_status import SessionStatus, TransactionStatus, UserRole
from app.core.exceptions import PaymentProcessorException
from app.database import Base
from app.models.bundle import Bundle
from app.models.coaching_session import CoachingSession
from app.models.connected_account import ConnectedPayoutAccount
from app.models.user import User
from app.services.email_console import ConsoleEmailService
from app.services.notification_service import NotificationService
from app.services.retry_policy import RetryPolicy
from app.services.template_service import TemplateService
from app.services.webhook_processor import WebhookEventProcessor

# ============================================================================
# Database
# ============================================================================


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db(db_engine) -> Session:
    TestingSession = sessionmaker(
        bind=db_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
    session = TestingSession()
    yield session
    session.close()


# ============================================================================
# Test doubles
# ============================================================================


class FakeStripeClient:
    """
    Records every call; ``failing_destinations`` makes transfers to those accounts fail.

    Transfers with a repeated idempotency key return the original transfer.
    """

    def __init__(self) -> None:
        self.payment_intents: List[Dict[str, Any]] = []
        self.transfers: List[Dict[str, Any]] = []
        self.transfers_by_key: Dict[str, Dict[str, Any]] = {}
        self.refunds: List[Dict[str, Any]] = []
        self.failing_destinations: set[str] = set()
        self.fail_payment_intents = False
        self.refund_status = "succeeded"

    def create_payment_intent(self, **params: Any) -> Dict[str, Any]:
        if self.fail_payment_intents:
            raise PaymentProcessorException(
                "Your card was declined.", processor_code="card_declined", error_type="card_error"
            )
        self.payment_intents.append(params)
        n = len(self.payment_intents)
        return {"id": f"pi_test_{n}", "client_secret": f"pi_test_{n}_secret", "status": "requires_payment_method"}

    def create_transfer(self, **params: Any) -> Dict[str, Any]:
        if params["destination"] in self.failing_destinations:
            raise PaymentProcessorException(
                "Insufficient funds in platform balance", processor_code="balance_insufficient"
            )
        key = params.get("idempotency_key")
        if key and key in self.transfers_by_key:
            return self.transfers_by_key[key]
        self.transfers.append(params)
        transfer = {"id": f"tr_test_{len(self.transfers)}", "amount": params["amount"]}
        if key:
            self.transfers_by_key[key] = transfer
        return transfer

    def create_refund(self, **params: Any) -> Dict[str, Any]:
        self.refunds.append(params)
        return {"id": f"re_test_{len(self.refunds)}", "status": self.refund_status}


class FailingEmailBackend:
    def __init__(self) -> None:
        self.calls = 0

    def send_email(self, to_email: str, subject: str, html_content: str, text_content: Optional[str] = None):
        self.calls += 1
        raise RuntimeError("email provider unavailable")


@pytest.fixture
def fake_stripe() -> FakeStripeClient:
    return FakeStripeClient()


@pytest.fixture
def email_backend() -> ConsoleEmailService:
    return ConsoleEmailService()


@pytest.fixture
def notification_service(email_backend) -> NotificationService:
    return NotificationService(email_service=email_backend, template_service=TemplateService())


@pytest.fixture
def sleeps() -> List[float]:
    return []


@pytest.fixture
def retry_policy(sleeps) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, base_delay=1.0, sleeper=sleeps.append)


@pytest.fixture
def processor(db, notification_service, retry_policy) -> WebhookEventProcessor:
    return WebhookEventProcessor(db, notification_service=notification_service, retry_policy=retry_policy)


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(
        role: str = UserRole.CLIENT.value,
        first_name: str = "Test",
        last_name: str = "User",
        email: Optional[str] = None,
        stripe_connect_account_id: Optional[str] = None,
    ) -> User:
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            first_name=first_name,
            last_name=last_name,
            role=role,
            stripe_connect_account_id=stripe_connect_account_id,
            total_earnings=Decimal("0"),
        )
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def coach(make_user) -> User:
    return make_user(role=UserRole.COACH.value, first_name="Casey", last_name="Coach", email="coach@example.com")


@pytest.fixture
def client_user(make_user) -> User:
    return make_user(role=UserRole.CLIENT.value, first_name="Riley", last_name="Client", email="client@example.com")


@pytest.fixture
def make_account(db):
    def _make(user: User, stripe_account_id: str, *, enabled: bool = True) -> ConnectedPayoutAccount:
        account = ConnectedPayoutAccount(
            user_id=user.id,
            stripe_account_id=stripe_account_id,
            payouts_enabled=enabled,
            charges_enabled=enabled,
            details_submitted=enabled,
            requires_onboarding=not enabled,
        )
        db.add(account)
        db.commit()
        return account

    return _make


@pytest.fixture
def make_session(db):
    def _make(
        coach: User,
        client: User,
        *,
        start_time: Optional[datetime] = None,
        status: str = SessionStatus.SCHEDULED.value,
        payment_status: Optional[str] = None,
        coach_payout_amount: Optional[Decimal] = None,
        payout_status: Optional[str] = None,
        currency: Optional[str] = None,
    ) -> CoachingSession:
        session = CoachingSession(
            coach_id=coach.id,
            client_id=client.id,
            start_time=start_time or datetime.now(timezone.utc) + timedelta(days=10),
            status=status,
            payment_status=payment_status,
            coach_payout_amount=coach_payout_amount,
            payout_status=payout_status,
            currency=currency,
        )
        db.add(session)
        db.commit()
        return session

    return _make


@pytest.fixture
def make_paid_session(make_session):
    """A completed, paid, not-yet-paid-out session worth ``payout`` to the coach."""

    def _make(coach: User, client: User, payout: str) -> CoachingSession:
        return make_session(
            coach,
            client,
            start_time=datetime.now(timezone.utc) - timedelta(days=2),
            status=SessionStatus.COMPLETED.value,
            payment_status=TransactionStatus.COMPLETED.value,
            coach_payout_amount=Decimal(payout),
            currency="usd",
        )

    return _make


@pytest.fixture
def make_bundle(db):
    def _make(coach: User, client: User, name: str = "Five Session Pack") -> Bundle:
        bundle = Bundle(coach_id=coach.id, client_id=client.id, name=name, session_count=5)
        db.add(bundle)
        db.commit()
        return bundle

    return _make


# ============================================================================
# Stripe event payloads
# ============================================================================


def _stripe_event(
    event_type: str,
    obj: Dict[str, Any],
    *,
    event_id: str = "evt_test_1",
    account: Optional[str] = None,
) -> Dict[str, Any]:
    event: Dict[str, Any] = {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": 1760000000,
        "data": {"object": obj},
    }
    if account:
        event["account"] = account
    return event


def _payment_intent_obj(payment_intent_id: str, **extra: Any) -> Dict[str, Any]:
    obj = {"id": payment_intent_id, "object": "payment_intent", "amount": 100000, "currency": "usd"}
    obj.update(extra)
    return obj


@pytest.fixture
def stripe_event():
    return _stripe_event


@pytest.fixture
def payment_intent_obj():
    return _payment_intent_obj


@pytest.fixture
def failing_email_backend() -> FailingEmailBackend:
    return FailingEmailBackend()
