"""External service integrations for the payments backend."""

from .stripe_client import StripeClient

__all__ = ["StripeClient"]
