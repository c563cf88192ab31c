# backend/app/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment")

    database_url: str = Field(
        default="sqlite+pysqlite:///./payments.db",
        description="SQLAlchemy database URL",
    )
    redis_url: str = Field(default="redis://localhost:6379", description="Celery broker URL")

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the Stripe webhook endpoint",
    )
    stripe_api_timeout_seconds: int = Field(
        default=8, description="Per-request timeout for Stripe API calls"
    )
    stripe_max_network_retries: int = Field(
        default=1, description="Network retries performed by the Stripe SDK"
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")

    # Fee configuration (percentages: 8.5 means 8.5%)
    coach_fee_percentage: Decimal = Field(
        default=Decimal("8.5"), description="Platform fee charged against the coach's take"
    )
    agent_fee_percentage: Decimal = Field(
        default=Decimal("3.5"), description="Agent/referral fee funded by the platform"
    )
    processor_fee_percentage: Decimal = Field(
        default=Decimal("2.9"), description="Stripe percentage fee (informational)"
    )
    processor_fixed_fee: Decimal = Field(
        default=Decimal("0.30"), description="Stripe fixed fee per charge (informational)"
    )
    early_payout_fee_percentage: Decimal = Field(
        default=Decimal("1.5"), description="Deduction applied to early payout requests"
    )
    early_payout_max_per_window: int = Field(
        default=2, description="Early payouts a coach may request per rolling window"
    )
    early_payout_window_days: int = Field(default=30, description="Rolling window for the early payout limit")
    bank_debit_min_days: int = Field(
        default=7,
        description="Minimum days before a session for bank debit to be offered",
    )

    # Webhook processing
    webhook_max_attempts: int = Field(default=3, description="Handler attempts per webhook event")
    webhook_retry_base_delay_seconds: float = Field(
        default=1.0, description="Linear backoff base delay between handler attempts"
    )

    # Email
    email_provider: Literal["console", "resend"] = Field(
        default="console",
        description="Email delivery backend (console logs only, resend sends)",
    )
    resend_api_key: str | None = Field(default=None, description="Resend API key")
    from_email: str = f"{BRAND_NAME} <payments@coachmarket.app>"
    admin_email: str = Field(default="ops@coachmarket.app", alias="ADMIN_EMAIL")
    email_enabled: bool = Field(default=True, description="Flag to enable/disable email sending")

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator(
        "coach_fee_percentage",
        "agent_fee_percentage",
        "processor_fee_percentage",
        "early_payout_fee_percentage",
    )
    @classmethod
    def validate_percentage(cls, value: Decimal) -> Decimal:
        if value < 0 or value >= 100:
            raise ValueError("Fee percentages must be within [0, 100)")
        return value

    @field_validator("webhook_max_attempts")
    @classmethod
    def validate_attempts(cls, value: int) -> int:
        if value < 1:
            raise ValueError("webhook_max_attempts must be at least 1")
        return value

    def get_database_url(self) -> str:
        return self.database_url


settings = Settings()
