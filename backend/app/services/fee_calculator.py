# backend/app/services/fee_calculator.py
"""
Fee arithmetic for session and bundle charges.

Given a gross amount, compute the platform fee split (coach fee plus
agent/referral fee), the coach's payout and an informational estimate of
Stripe's own processing fee. Every derived quantity is rounded to cents as
it is produced, not only at the end, so totals line up with what is stored
on the transaction row.

Only the coach fee reduces the coach's payout. The agent fee is part of the
platform's application fee but is funded by the platform, so
``coach_payout = amount - coach_fee_amount``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, Optional, Union

from ..core.config import Settings, settings as default_settings

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
HUNDRED = Decimal("100")


def round2(value: Decimal) -> Decimal:
    """Round to currency minor units, half away from zero."""
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as Decimal("0.1") instead of its binary expansion
    return Decimal(str(value))


def to_minor_units(amount: Number) -> int:
    """Convert a major-unit amount (dollars) to Stripe's integer minor units (cents)."""
    return int(round2(to_decimal(amount) * HUNDRED))


def from_minor_units(amount: Optional[int]) -> Decimal:
    if amount is None:
        return Decimal("0.00")
    return round2(Decimal(int(amount)) / HUNDRED)


@dataclass(frozen=True)
class FeeConfig:
    """Fee percentages (8.5 means 8.5%) and the processor's fixed fee."""

    coach_fee_percentage: Decimal = Decimal("8.5")
    agent_fee_percentage: Decimal = Decimal("3.5")
    processor_fee_percentage: Decimal = Decimal("2.9")
    processor_fixed_fee: Decimal = Decimal("0.30")

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> "FeeConfig":
        config = config or default_settings
        return cls(
            coach_fee_percentage=to_decimal(config.coach_fee_percentage),
            agent_fee_percentage=to_decimal(config.agent_fee_percentage),
            processor_fee_percentage=to_decimal(config.processor_fee_percentage),
            processor_fixed_fee=to_decimal(config.processor_fixed_fee),
        )


@dataclass(frozen=True)
class FeeCalculation:
    amount: Decimal
    coach_fee_amount: Decimal
    agent_fee_amount: Decimal
    total_platform_fee: Decimal
    processor_fee: Decimal
    coach_payout: Decimal


class FeeCalculator:
    """Pure fee arithmetic bound to one FeeConfig.

    The config is fixed at construction; nothing here reads settings later.
    """

    def __init__(self, config: Optional[FeeConfig] = None):
        self.config = config or FeeConfig()

    def calculate_fees(self, amount: Number) -> FeeCalculation:
        """Forward calculation from the gross amount the payer is charged."""
        gross = to_decimal(amount)
        coach_fee_amount = round2(gross * self.config.coach_fee_percentage / HUNDRED)
        agent_fee_amount = round2(gross * self.config.agent_fee_percentage / HUNDRED)
        total_platform_fee = round2(coach_fee_amount + agent_fee_amount)
        processor_fee = round2(
            gross * self.config.processor_fee_percentage / HUNDRED + self.config.processor_fixed_fee
        )
        coach_payout = round2(gross - coach_fee_amount)

        return FeeCalculation(
            amount=round2(gross),
            coach_fee_amount=coach_fee_amount,
            agent_fee_amount=agent_fee_amount,
            total_platform_fee=total_platform_fee,
            processor_fee=processor_fee,
            coach_payout=coach_payout,
        )

    def amount_from_desired_payout(self, payout: Number) -> FeeCalculation:
        """
        Gross amount that leaves the coach ``payout`` after the coach fee.

        Solves ``amount * (1 - coach_fee% / 100) = payout`` and re-runs the
        forward calculation. Only the coach-fee term is inverted exactly; the
        agent and processor fees are whatever the forward pass yields for that
        gross amount, and the forward rounding can move the payout by a cent.
        """
        desired = to_decimal(payout)
        keep_ratio = (HUNDRED - self.config.coach_fee_percentage) / HUNDRED
        return self.calculate_fees(round2(desired / keep_ratio))

    def get_fee_breakdown(self, amount: Number) -> Dict[str, Any]:
        """Fee snapshot stored in transaction metadata and Stripe metadata."""
        fees = self.calculate_fees(amount)
        return {
            "amount": str(fees.amount),
            "coachFee": {
                "percentage": str(self.config.coach_fee_percentage),
                "amount": str(fees.coach_fee_amount),
            },
            "agentFee": {
                "percentage": str(self.config.agent_fee_percentage),
                "amount": str(fees.agent_fee_amount),
            },
            "processorFee": {
                "percentage": str(self.config.processor_fee_percentage),
                "fixed": str(self.config.processor_fixed_fee),
                "amount": str(fees.processor_fee),
            },
            "totalPlatformFee": str(fees.total_platform_fee),
            "coachPayout": str(fees.coach_payout),
        }
