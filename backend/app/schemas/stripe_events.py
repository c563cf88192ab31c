"""
Typed Stripe webhook events.

``decode_event`` turns a verified Stripe event (a ``stripe.Event`` or the
equivalent dict) into exactly one variant of ``StripeEvent``. Event types the
platform does not handle decode to ``UnknownEvent`` so new Stripe event types
never fail delivery. Structural problems raise ``MalformedEventException``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.exceptions import MalformedEventException

PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
PAYMENT_INTENT_CANCELED = "payment_intent.canceled"
ACCOUNT_UPDATED = "account.updated"
ACCOUNT_DEAUTHORIZED = "account.application.deauthorized"
PAYOUT_PAID = "payout.paid"
PAYOUT_FAILED = "payout.failed"
DISPUTE_CREATED = "charge.dispute.created"
DISPUTE_CLOSED = "charge.dispute.closed"
CHARGE_REFUNDED = "charge.refunded"
REFUND_UPDATED = "charge.refund.updated"


class StripeEventBase(BaseModel):
    model_config = ConfigDict(frozen=True, extra="ignore")

    event_id: str = Field(..., min_length=1)
    event_type: str = Field(..., min_length=1)
    created: Optional[int] = None
    # Connected account the event originated from (Connect events only)
    account: Optional[str] = None


class PaymentIntentEvent(StripeEventBase):
    kind: Literal["payment_intent"] = "payment_intent"
    payment_intent_id: str = Field(..., min_length=1)
    amount: int = 0
    currency: str = "usd"
    status: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    last_payment_error_message: Optional[str] = None
    last_payment_error_code: Optional[str] = None


class AccountUpdatedEvent(StripeEventBase):
    kind: Literal["account_updated"] = "account_updated"
    account_id: str = Field(..., min_length=1)
    payouts_enabled: bool = False
    charges_enabled: bool = False
    details_submitted: bool = False
    country: Optional[str] = None
    default_currency: Optional[str] = None
    email: Optional[str] = None


class AccountDeauthorizedEvent(StripeEventBase):
    kind: Literal["account_deauthorized"] = "account_deauthorized"
    account_id: str = Field(..., min_length=1)


class PayoutEvent(StripeEventBase):
    kind: Literal["payout"] = "payout"
    payout_id: str = Field(..., min_length=1)
    amount: int = 0
    currency: str = "usd"
    status: str = ""
    arrival_date: Optional[datetime] = None
    failure_code: Optional[str] = None
    failure_message: Optional[str] = None


class DisputeEvent(StripeEventBase):
    kind: Literal["dispute"] = "dispute"
    dispute_id: str = Field(..., min_length=1)
    payment_intent_id: Optional[str] = None
    charge_id: Optional[str] = None
    amount: int = 0
    currency: str = "usd"
    reason: Optional[str] = None
    status: Optional[str] = None


class ChargeRefundedEvent(StripeEventBase):
    kind: Literal["charge_refunded"] = "charge_refunded"
    charge_id: str = Field(..., min_length=1)
    payment_intent_id: Optional[str] = None
    amount_refunded: int = 0
    currency: str = "usd"
    refund_id: Optional[str] = None
    refund_reason: Optional[str] = None


class RefundUpdatedEvent(StripeEventBase):
    kind: Literal["refund_updated"] = "refund_updated"
    refund_id: str = Field(..., min_length=1)
    payment_intent_id: Optional[str] = None
    status: Optional[str] = None
    amount: int = 0
    currency: str = "usd"
    failure_reason: Optional[str] = None


class UnknownEvent(StripeEventBase):
    kind: Literal["unknown"] = "unknown"
    payload: Dict[str, Any] = Field(default_factory=dict)


StripeEvent = Union[
    PaymentIntentEvent,
    AccountUpdatedEvent,
    AccountDeauthorizedEvent,
    PayoutEvent,
    DisputeEvent,
    ChargeRefundedEvent,
    RefundUpdatedEvent,
    UnknownEvent,
]


def _ref_id(value: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if isinstance(value, str):
        return value or None
    if isinstance(value, Mapping):
        ref = value.get("id")
        return str(ref) if ref else None
    return None


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _payment_intent(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    error = obj.get("last_payment_error") or {}
    return PaymentIntentEvent(
        **base,
        payment_intent_id=obj.get("id") or "",
        amount=obj.get("amount") or 0,
        currency=obj.get("currency") or "usd",
        status=obj.get("status"),
        metadata={str(k): str(v) for k, v in (obj.get("metadata") or {}).items()},
        last_payment_error_message=error.get("message"),
        last_payment_error_code=error.get("code"),
    )


def _account_updated(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    return AccountUpdatedEvent(
        **base,
        account_id=obj.get("id") or "",
        payouts_enabled=bool(obj.get("payouts_enabled")),
        charges_enabled=bool(obj.get("charges_enabled")),
        details_submitted=bool(obj.get("details_submitted")),
        country=obj.get("country"),
        default_currency=obj.get("default_currency"),
        email=obj.get("email"),
    )


def _account_deauthorized(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    # data.object is the Connect application; the account is on the envelope
    return AccountDeauthorizedEvent(**base, account_id=base.get("account") or "")


def _payout(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    return PayoutEvent(
        **base,
        payout_id=obj.get("id") or "",
        amount=obj.get("amount") or 0,
        currency=obj.get("currency") or "usd",
        status=obj.get("status") or "",
        arrival_date=_timestamp(obj.get("arrival_date")),
        failure_code=obj.get("failure_code"),
        failure_message=obj.get("failure_message"),
    )


def _dispute(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    return DisputeEvent(
        **base,
        dispute_id=obj.get("id") or "",
        payment_intent_id=_ref_id(obj.get("payment_intent")),
        charge_id=_ref_id(obj.get("charge")),
        amount=obj.get("amount") or 0,
        currency=obj.get("currency") or "usd",
        reason=obj.get("reason"),
        status=obj.get("status"),
    )


def _charge_refunded(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    refunds = (obj.get("refunds") or {}).get("data") or []
    latest = refunds[0] if refunds else {}
    return ChargeRefundedEvent(
        **base,
        charge_id=obj.get("id") or "",
        payment_intent_id=_ref_id(obj.get("payment_intent")),
        amount_refunded=obj.get("amount_refunded") or 0,
        currency=obj.get("currency") or "usd",
        refund_id=latest.get("id"),
        refund_reason=latest.get("reason"),
    )


def _refund_updated(base: Dict[str, Any], obj: Mapping[str, Any]) -> StripeEventBase:
    return RefundUpdatedEvent(
        **base,
        refund_id=obj.get("id") or "",
        payment_intent_id=_ref_id(obj.get("payment_intent")),
        status=obj.get("status"),
        amount=obj.get("amount") or 0,
        currency=obj.get("currency") or "usd",
        failure_reason=obj.get("failure_reason"),
    )


_DECODERS: Dict[str, Callable[[Dict[str, Any], Mapping[str, Any]], StripeEventBase]] = {
    PAYMENT_INTENT_SUCCEEDED: _payment_intent,
    PAYMENT_INTENT_FAILED: _payment_intent,
    PAYMENT_INTENT_CANCELED: _payment_intent,
    ACCOUNT_UPDATED: _account_updated,
    ACCOUNT_DEAUTHORIZED: _account_deauthorized,
    PAYOUT_PAID: _payout,
    PAYOUT_FAILED: _payout,
    DISPUTE_CREATED: _dispute,
    DISPUTE_CLOSED: _dispute,
    CHARGE_REFUNDED: _charge_refunded,
    REFUND_UPDATED: _refund_updated,
}

HANDLED_EVENT_TYPES = frozenset(_DECODERS)


def decode_event(raw: Any) -> StripeEvent:
    """
    Decode a verified Stripe event into a typed variant.

    Raises:
        MalformedEventException: when the id, the type or ``data.object`` is
            missing, or a handled type lacks the fields its handler needs
    """
    if hasattr(raw, "to_dict"):
        raw = raw.to_dict()
    if not isinstance(raw, Mapping):
        raise MalformedEventException("event is not an object")

    event_id = raw.get("id")
    event_type = raw.get("type")
    if not isinstance(event_id, str) or not event_id:
        raise MalformedEventException("missing event id")
    if not isinstance(event_type, str) or not event_type:
        raise MalformedEventException("missing event type", event_id=event_id)

    data = raw.get("data")
    obj = data.get("object") if isinstance(data, Mapping) else None
    if not isinstance(obj, Mapping):
        raise MalformedEventException("missing data.object", event_id=event_id)

    base: Dict[str, Any] = {
        "event_id": event_id,
        "event_type": event_type,
        "created": raw.get("created"),
        "account": raw.get("account"),
    }
    decoder = _DECODERS.get(event_type)
    try:
        if decoder is None:
            return UnknownEvent(**base, payload=dict(obj))
        return decoder(base, obj)  # type: ignore[return-value]
    except ValidationError as exc:
        raise MalformedEventException(
            f"invalid {event_type} payload: {exc.errors()[0].get('msg', 'invalid')}",
            event_id=event_id,
        ) from exc
    except (TypeError, ValueError, OverflowError) as exc:
        raise MalformedEventException(
            f"invalid {event_type} payload: {exc}",
            event_id=event_id,
        ) from exc
