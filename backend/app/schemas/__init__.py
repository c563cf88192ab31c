# backend/app/schemas/__init__.py
"""
Pydantic schemas for the payments backend.
"""

from .payment_schemas import (
    EarlyPayoutRequest,
    EarlyPayoutResponse,
    TransactionHistoryResponse,
    TransactionResponse,
    WebhookResponse,
)
from .stripe_events import StripeEvent, decode_event

__all__ = [
    "EarlyPayoutRequest",
    "EarlyPayoutResponse",
    "StripeEvent",
    "TransactionHistoryResponse",
    "TransactionResponse",
    "WebhookResponse",
    "decode_event",
]
