"""Thin Stripe SDK wrapper used by the payment services.

Services depend on this class instead of calling ``stripe`` directly so the
processor can be swapped for a fake in tests. Every Stripe error is
re-raised as PaymentProcessorException carrying Stripe's code, type and HTTP
status.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Sequence

from pydantic import SecretStr
import stripe

from app.core.config import Settings, settings as default_settings
from app.core.exceptions import PaymentProcessorException, ServiceException

logger = logging.getLogger(__name__)


def _processor_error(action: str, exc: stripe.StripeError) -> PaymentProcessorException:
    error_obj = getattr(exc, "error", None)
    error_type = getattr(error_obj, "type", None) if error_obj is not None else None
    message = getattr(exc, "user_message", None) or str(exc) or f"Stripe {action} failed"
    return PaymentProcessorException(
        message,
        processor_code=getattr(exc, "code", None),
        error_type=error_type or type(exc).__name__,
        http_status=getattr(exc, "http_status", None),
    )


class StripeClient:
    """Stripe calls needed by payments: intents, transfers and refunds."""

    def __init__(
        self,
        *,
        api_key: str | SecretStr | None = None,
        config: Optional[Settings] = None,
    ) -> None:
        config = config or default_settings
        key = api_key if api_key is not None else config.stripe_secret_key
        secret_value = key.get_secret_value() if isinstance(key, SecretStr) else key
        self._api_key = secret_value or ""
        self.configured = bool(self._api_key)

        if self.configured:
            stripe.api_key = self._api_key
            # Bounded timeout and a single SDK-level retry for transient failures
            stripe.default_http_client = stripe.http_client.RequestsClient(
                timeout=config.stripe_api_timeout_seconds
            )
            stripe.max_network_retries = config.stripe_max_network_retries
        else:
            logger.warning("Stripe secret key not configured - processor calls will be refused")

    def _check_configured(self) -> None:
        if not self.configured:
            raise ServiceException("Stripe is not configured", code="stripe_not_configured")

    def create_payment_intent(
        self,
        *,
        amount: int,
        currency: str,
        application_fee_amount: int,
        destination: str,
        payment_method_types: Sequence[str],
        metadata: Dict[str, str],
        payment_method_options: Optional[Dict[str, Any]] = None,
        transfer_group: Optional[str] = None,
    ) -> Any:
        """Create a destination charge; amounts are in minor units."""
        self._check_configured()
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "application_fee_amount": application_fee_amount,
            "transfer_data": {"destination": destination},
            "payment_method_types": list(payment_method_types),
            "metadata": metadata,
        }
        if payment_method_options:
            params["payment_method_options"] = payment_method_options
        if transfer_group:
            params["transfer_group"] = transfer_group
        try:
            return stripe.PaymentIntent.create(**params)
        except stripe.StripeError as exc:
            logger.error(f"Stripe error creating payment intent: {str(exc)}")
            raise _processor_error("payment intent", exc) from exc

    def create_transfer(
        self,
        *,
        amount: int,
        currency: str,
        destination: str,
        metadata: Dict[str, str],
        transfer_group: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        """Create a transfer; a repeated ``idempotency_key`` returns the original transfer."""
        self._check_configured()
        params: Dict[str, Any] = {
            "amount": amount,
            "currency": currency,
            "destination": destination,
            "metadata": metadata,
        }
        if transfer_group:
            params["transfer_group"] = transfer_group
        if idempotency_key:
            params["idempotency_key"] = idempotency_key
        try:
            return stripe.Transfer.create(**params)
        except stripe.StripeError as exc:
            logger.error(f"Stripe error creating transfer to {destination}: {str(exc)}")
            raise _processor_error("transfer", exc) from exc

    def create_refund(
        self,
        *,
        payment_intent: str,
        amount: Optional[int] = None,
        reason: Optional[str] = None,
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        self._check_configured()
        params: Dict[str, Any] = {"payment_intent": payment_intent}
        if amount is not None:
            params["amount"] = amount
        if reason:
            params["reason"] = reason
        if metadata:
            params["metadata"] = metadata
        try:
            return stripe.Refund.create(**params)
        except stripe.StripeError as exc:
            logger.error(f"Stripe error refunding {payment_intent}: {str(exc)}")
            raise _processor_error("refund", exc) from exc
