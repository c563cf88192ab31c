"""Shared payment status values and the transaction status transition table."""

from __future__ import annotations

from enum import Enum
from typing import Optional


class TransactionKind(str, Enum):
    SESSION_PAYMENT = "session_payment"
    BUNDLE_PAYMENT = "bundle_payment"
    PAYOUT = "payout"
    REFUND = "refund"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELED = "canceled"
    REFUNDED = "refunded"
    DISPUTED = "disputed"


# Statuses reachable from each status; terminal statuses map to an empty set.
ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.FAILED, TransactionStatus.CANCELED}
    ),
    TransactionStatus.COMPLETED: frozenset(
        {TransactionStatus.DISPUTED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.DISPUTED: frozenset(
        {TransactionStatus.COMPLETED, TransactionStatus.REFUNDED}
    ),
    TransactionStatus.FAILED: frozenset(),
    TransactionStatus.CANCELED: frozenset(),
    TransactionStatus.REFUNDED: frozenset(),
}


def can_transition(current: Optional[str], target: str) -> bool:
    """Return True when moving from ``current`` to ``target`` is permitted.

    Unknown current values (legacy rows) are allowed to move anywhere.
    """
    target_status = TransactionStatus(target)
    if current is None:
        return True
    try:
        current_status = TransactionStatus(current)
    except ValueError:
        return True
    return target_status in ALLOWED_TRANSITIONS[current_status]


class PayoutStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class SessionStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"


class BundleStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    PAYMENT_FAILED = "payment_failed"


class UserRole(str, Enum):
    COACH = "coach"
    CLIENT = "client"
    ADMIN = "admin"
