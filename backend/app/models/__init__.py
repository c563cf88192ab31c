"""
Database models for the coaching marketplace payments backend.

This module exports all SQLAlchemy models used in the application:
- Users (coaches, clients, operators)
- Coaching sessions and bundles
- Transaction ledger and payout records
- Stripe Connect accounts and the processed-webhook ledger
"""

from .bundle import Bundle
from .coaching_session import CoachingSession
from .connected_account import ConnectedPayoutAccount
from .payout_record import PayoutRecord
from .transaction import Transaction
from .user import User
from .webhook_event import ProcessedWebhookEvent

__all__ = [
    "Bundle",
    "CoachingSession",
    "ConnectedPayoutAccount",
    "PayoutRecord",
    "ProcessedWebhookEvent",
    "Transaction",
    "User",
]
