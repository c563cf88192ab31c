from __future__ import annotations

from decimal import Decimal

from app.constants.payment_status import BundleStatus
from app.repositories.bundle_repository import BundleRepository
from app.repositories.connected_account_repository import ConnectedAccountRepository
from app.repositories.payout_record_repository import PayoutRecordRepository
from app.repositories.user_repository import UserRepository


def test_user_lookups_and_earnings(db, coach):
    users = UserRepository(db)
    coach.stripe_connect_account_id = "acct_lookup"
    db.commit()

    assert users.get_by_email("Coach@Example.com").id == coach.id
    assert users.get_by_connect_account_id("acct_lookup").id == coach.id

    users.increment_earnings(coach.id, Decimal("91.50"))
    users.increment_earnings(coach.id, Decimal("8.50"))
    db.commit()
    db.refresh(coach)

    assert coach.total_earnings == Decimal("100.00")
    assert users.increment_earnings("missing", Decimal("1")) is None


def test_connected_account_lookups(db, coach, make_account):
    account = make_account(coach, "acct_repo")
    accounts = ConnectedAccountRepository(db)

    assert accounts.get_by_stripe_account_id("acct_repo").id == account.id
    assert accounts.get_by_user_id(coach.id).id == account.id
    assert accounts.get_by_stripe_account_id("acct_other") is None


def test_bundle_status_changes(db, coach, client_user, make_bundle):
    bundle = make_bundle(coach, client_user)
    bundles = BundleRepository(db)

    bundles.activate(bundle.id)
    db.commit()
    db.refresh(bundle)
    assert bundle.status == BundleStatus.ACTIVE.value
    assert bundle.activated_at is not None

    bundles.mark_payment_failed(bundle.id)
    db.commit()
    db.refresh(bundle)
    assert bundle.status == BundleStatus.PAYMENT_FAILED.value


def test_payout_record_upsert_updates_in_place(db):
    records = PayoutRecordRepository(db)

    first = records.upsert("po_1", stripe_account_id="acct_1", amount=Decimal("80.00"), currency="usd", status="pending")
    db.commit()
    second = records.upsert("po_1", status="failed", failure_code="account_closed")
    db.commit()

    assert second.id == first.id
    assert second.status == "failed"
    assert second.failure_code == "account_closed"
    assert second.amount == Decimal("80.00")
    assert records.count() == 1
