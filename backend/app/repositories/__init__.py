# backend/app/repositories/__init__.py
"""
Repository Pattern Implementation for the payments backend

This package provides the repository layer for data access,
separating business logic from database queries.

Key Components:
- BaseRepository: Foundation for all repositories with generic CRUD operations
- RepositoryFactory: Factory for creating repository instances
- TransactionRepository: The transaction ledger (status transitions, history)
- SessionRepository: Session payment mirror and payout eligibility
- WebhookEventRepository: Processed-event idempotency ledger

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    repository = RepositoryFactory.create_transaction_repository(db)
    transaction = repository.get_by_payment_intent_id("pi_123")
"""

from .base_repository import BaseRepository
from .bundle_repository import BundleRepository
from .connected_account_repository import ConnectedAccountRepository
from .factory import RepositoryFactory
from .payout_record_repository import PayoutRecordRepository
from .session_repository import SessionRepository
from .transaction_repository import TransactionRepository
from .user_repository import UserRepository
from .webhook_event_repository import WebhookEventRepository

__all__ = [
    "BaseRepository",
    "RepositoryFactory",
    "BundleRepository",
    "ConnectedAccountRepository",
    "PayoutRecordRepository",
    "SessionRepository",
    "TransactionRepository",
    "UserRepository",
    "WebhookEventRepository",
]
