# backend/app/repositories/factory.py
"""
Repository Factory for the payments backend

Provides centralized creation of repository instances,
ensuring consistent initialization and dependency injection.
"""

from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

# Avoid circular imports
if TYPE_CHECKING:
    from .bundle_repository import BundleRepository
    from .connected_account_repository import ConnectedAccountRepository
    from .payout_record_repository import PayoutRecordRepository
    from .session_repository import SessionRepository
    from .transaction_repository import TransactionRepository
    from .user_repository import UserRepository
    from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """
    Factory class for creating repository instances.

    Centralizes repository creation to ensure consistent initialization
    and makes it easy to swap implementations if needed.
    """

    @staticmethod
    def create_transaction_repository(db: Session) -> "TransactionRepository":
        """Create repository for the transaction ledger."""
        from .transaction_repository import TransactionRepository

        return TransactionRepository(db)

    @staticmethod
    def create_session_repository(db: Session) -> "SessionRepository":
        """Create repository for coaching sessions."""
        from .session_repository import SessionRepository

        return SessionRepository(db)

    @staticmethod
    def create_connected_account_repository(db: Session) -> "ConnectedAccountRepository":
        """Create repository for Stripe Connect accounts."""
        from .connected_account_repository import ConnectedAccountRepository

        return ConnectedAccountRepository(db)

    @staticmethod
    def create_user_repository(db: Session) -> "UserRepository":
        """Create repository for users."""
        from .user_repository import UserRepository

        return UserRepository(db)

    @staticmethod
    def create_bundle_repository(db: Session) -> "BundleRepository":
        """Create repository for session bundles."""
        from .bundle_repository import BundleRepository

        return BundleRepository(db)

    @staticmethod
    def create_payout_record_repository(db: Session) -> "PayoutRecordRepository":
        """Create repository for Stripe payout records."""
        from .payout_record_repository import PayoutRecordRepository

        return PayoutRecordRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> "WebhookEventRepository":
        """Create repository for the processed-webhook ledger."""
        from .webhook_event_repository import WebhookEventRepository

        return WebhookEventRepository(db)
