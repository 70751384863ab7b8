"""
Processor Fee Math and Plan Pricing

Card processing costs 2.9% + 30 cents per charge. In standard mode the
organization absorbs the fee; in gross-up mode the charge is raised so the
organization nets the full base amount.
"""

import math
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Optional, Union

from .billing_cycle import MONTHS_PER_FREQUENCY
from .models import BillingFrequency, FeeBreakdown, Plan

STRIPE_PERCENT = Decimal("0.029")
STRIPE_FIXED_CENTS = 30

# Mismatch above this fraction of the expected amount produces a warning
AMOUNT_VARIANCE_TOLERANCE = Decimal("0.01")

_CENT = Decimal("0.01")


def _round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def dollars_to_cents(amount: Union[Decimal, float, int, str]) -> int:
    return _round_half_up(Decimal(str(amount)) * 100)


def cents_to_dollars(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(_CENT)


def stripe_fee_for(charge_cents: int) -> int:
    return _round_half_up(Decimal(charge_cents) * STRIPE_PERCENT) + STRIPE_FIXED_CENTS


def calculate_fees(
    base_cents: int,
    platform_fee_dollars: Union[Decimal, float, int] = 0,
    pass_fees_to_member: bool = False,
) -> FeeBreakdown:
    """
    Fee breakdown for a charge.

    Args:
        base_cents: Dues amount the organization is owed, in cents
        platform_fee_dollars: Platform fee in dollars
        pass_fees_to_member: Gross up the charge so fees are paid by the member

    Returns:
        FeeBreakdown in cents
    """
    platform_cents = dollars_to_cents(platform_fee_dollars)

    if pass_fees_to_member:
        gross = Decimal(base_cents + platform_cents + STRIPE_FIXED_CENTS) / (1 - STRIPE_PERCENT)
        charge = math.ceil(gross)
        stripe_fee = stripe_fee_for(charge)
        net = base_cents
    else:
        charge = base_cents + platform_cents
        stripe_fee = stripe_fee_for(charge)
        net = base_cents - stripe_fee

    return FeeBreakdown(
        base_amount=base_cents,
        platform_fee=platform_cents,
        stripe_fee=stripe_fee,
        charge_amount=charge,
        net_amount=net,
        application_fee=platform_cents + stripe_fee,
        fees_passed_to_member=pass_fees_to_member,
    )


def reverse_calculate_base_amount(
    charge_cents: int,
    platform_fee_dollars: Union[Decimal, float, int] = 0,
    pass_fees_to_member: bool = True,
) -> int:
    """Recover the base amount from a charged amount; never negative."""
    platform_cents = dollars_to_cents(platform_fee_dollars)
    if pass_fees_to_member:
        base = math.floor(
            Decimal(charge_cents) * (1 - STRIPE_PERCENT) - platform_cents - STRIPE_FIXED_CENTS
        )
    else:
        base = charge_cents - platform_cents
    return max(0, base)


def platform_fee_for(
    platform_fees: Optional[Dict[str, Decimal]],
    frequency: Union[BillingFrequency, str],
) -> Decimal:
    if not platform_fees:
        return Decimal("0")
    value = platform_fees.get(BillingFrequency(frequency).value)
    return Decimal(str(value)) if value is not None else Decimal("0")


def plan_price_for(plan: Plan, frequency: Union[BillingFrequency, str]) -> Decimal:
    """Price of one billing period at the given frequency."""
    return Decimal(getattr(plan.pricing, BillingFrequency(frequency).value))


def expected_amount_for(plan: Plan, months: int) -> Optional[Decimal]:
    """
    Expected dues for a number of months.

    Uses the exact frequency price when months matches a billing period,
    otherwise the monthly price times months.
    """
    if months <= 0:
        return None
    for frequency, period_months in MONTHS_PER_FREQUENCY.items():
        if period_months == months:
            price = plan_price_for(plan, frequency)
            if price > 0:
                return price.quantize(_CENT)
    monthly = plan.pricing.monthly
    if monthly <= 0:
        return None
    return (monthly * months).quantize(_CENT)


def amount_variance_warning(
    amount: Decimal,
    expected: Optional[Decimal],
) -> Optional[str]:
    if expected is None or expected <= 0:
        return None
    variance = abs(Decimal(amount) - expected) / expected
    if variance > AMOUNT_VARIANCE_TOLERANCE:
        return (
            f"Amount ${Decimal(amount).quantize(_CENT)} differs from expected "
            f"${expected.quantize(_CENT)} for the credited months"
        )
    return None


def dues_amount_cents(plan: Plan, frequency: Union[BillingFrequency, str]) -> int:
    return dollars_to_cents(plan_price_for(plan, frequency))
