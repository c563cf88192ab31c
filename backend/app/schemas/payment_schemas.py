"""
Payment-related Pydantic schemas for the payments backend.

Defines request and response models for the webhook endpoint, transaction
history and early payout requests.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import ConfigDict, Field

from ._strict_base import StrictModel, StrictRequestModel

# ========== Request Models ==========


class EarlyPayoutRequest(StrictRequestModel):
    """Coach request to be paid out ahead of the scheduled run."""

    amount: Decimal = Field(..., gt=0, description="Requested amount before the early payout fee")
    currency: str = Field(default="usd", min_length=3, max_length=3)


# ========== Response Models ==========


class WebhookResponse(StrictModel):
    """Response for webhook processing."""

    status: str = Field(..., description="Processing status (processed, duplicate, ignored)")
    event_type: str = Field(..., description="Stripe event type")
    event_id: Optional[str] = Field(None, description="Stripe event id")
    message: Optional[str] = Field(None, description="Additional information")


class TransactionResponse(StrictModel):
    model_config = ConfigDict(extra="forbid", from_attributes=True)

    id: str
    kind: str
    status: str
    amount: Decimal
    currency: str
    platform_fee: Decimal
    coach_payout: Decimal
    stripe_payment_intent_id: Optional[str] = None
    stripe_transfer_id: Optional[str] = None
    session_id: Optional[str] = None
    bundle_id: Optional[str] = None
    payer_id: Optional[str] = None
    coach_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_json")
    created_at: Optional[datetime] = None


class TransactionHistoryResponse(StrictModel):
    items: List[TransactionResponse]
    limit: int
    offset: int


class EarlyPayoutResponse(StrictModel):
    transfer_id: str
    original_amount: Decimal
    fee_amount: Decimal
    payout_amount: Decimal
    currency: str
    transaction_id: str
