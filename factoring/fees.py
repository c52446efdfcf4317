"""
fees.py - Fee and Interest Engine for Factored Receivables

PURE FUNCTIONS ONLY. No LedgerView, no hidden state: every input is explicit.

Amounts are whole base units of the asset held as Decimal. Every component is
floored on its own with integer division; remainders are never carried from
one component into another, so a few base units of dust can be lost but never
double-counted.

Key Formulas:
    gross_funded    = floor(V * upfront_bps / 10000)
    annualized(bps) = floor(gross_funded * bps * days / (10000 * 365))
    interest        = annualized(target_yield_bps)
    spread          = annualized(spread_bps)
    admin_fee       = annualized(admin_fee_bps)
    protocol_fee    = floor(gross_funded * protocol_fee_bps / 10000)    (flat, upfront)
    net_funded      = gross_funded - interest - spread - admin_fee - protocol_fee
    capital_at_risk = net_funded + protocol_fee

At settlement the interest, spread and admin fee are recomputed with the
whole days actually elapsed since funding (never fewer than the minimum), and
capped so that their sum never exceeds V - capital_at_risk. Whatever the
payer sent beyond capital_at_risk plus those fees is the kickback.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from .core import (
    BPS_DENOMINATOR, DAYS_PER_YEAR, SECONDS_PER_DAY,
    InvalidPercentage,
)


ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class FeeParams:
    """Rates agreed at approval time. All bps values are in [0, 10000]."""
    target_yield_bps: int
    spread_bps: int
    upfront_bps: int
    protocol_fee_bps: int
    admin_fee_bps: int
    min_days_interest_applied: int = 0

    def __post_init__(self):
        validate_bps(self.target_yield_bps, "target_yield_bps")
        validate_bps(self.spread_bps, "spread_bps")
        validate_bps(self.upfront_bps, "upfront_bps")
        validate_bps(self.protocol_fee_bps, "protocol_fee_bps")
        validate_bps(self.admin_fee_bps, "admin_fee_bps")
        if self.min_days_interest_applied < 0:
            raise ValueError(
                f"min_days_interest_applied must be non-negative, got {self.min_days_interest_applied}"
            )


@dataclass(frozen=True, slots=True)
class TargetFees:
    """Fees quoted at approval or funding time."""
    funded_amount_gross: Decimal
    admin_fee: Decimal
    target_interest: Decimal
    target_spread: Decimal
    protocol_fee: Decimal
    funded_amount_net: Decimal

    @property
    def capital_at_risk(self) -> Decimal:
        return self.funded_amount_net + self.protocol_fee

    def as_tuple(self) -> Tuple[Decimal, Decimal, Decimal, Decimal, Decimal, Decimal]:
        """(gross, admin_fee, interest, spread, protocol_fee, net)"""
        return (self.funded_amount_gross, self.admin_fee, self.target_interest,
                self.target_spread, self.protocol_fee, self.funded_amount_net)


@dataclass(frozen=True, slots=True)
class AccruedFees:
    interest: Decimal
    spread: Decimal
    admin_fee: Decimal

    @property
    def total(self) -> Decimal:
        return self.interest + self.spread + self.admin_fee


@dataclass(frozen=True, slots=True)
class KickbackResult:
    """Actual fees at settlement and the rebate owed to the original creditor."""
    kickback_amount: Decimal
    true_interest: Decimal
    true_spread: Decimal
    true_admin_fee: Decimal

    @property
    def total_fees(self) -> Decimal:
        return self.true_interest + self.true_spread + self.true_admin_fee

    def as_tuple(self) -> Tuple[Decimal, Decimal, Decimal, Decimal]:
        """(kickback, true_interest, true_spread, true_admin_fee)"""
        return (self.kickback_amount, self.true_interest, self.true_spread, self.true_admin_fee)


# ============================================================================
# VALIDATION
# ============================================================================

def validate_bps(value: int, name: str, low: int = 0, high: int = BPS_DENOMINATOR) -> int:
    """
    Check a basis-point value lies in [low, high].

    Raises:
        InvalidPercentage: If value is not an integer in range
    """
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidPercentage(f"{name} must be an integer number of bps, got {value!r}")
    if value < low or value > high:
        raise InvalidPercentage(f"{name} must be between {low} and {high}, got {value}")
    return value


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def whole_days_between(start: datetime, end: datetime) -> int:
    """
    Whole days elapsed from start to end, floored; 0 if end is before start.

    Accrual advances in whole-day steps only: 23 hours accrue nothing.
    """
    seconds = (end - start).total_seconds()
    if seconds <= 0:
        return 0
    return int(seconds // SECONDS_PER_DAY)


def bps_of(amount: Decimal, bps: int) -> Decimal:
    """floor(amount * bps / 10000)"""
    return (amount * bps) // BPS_DENOMINATOR


def annualized_fee(principal: Decimal, bps: int, days: int) -> Decimal:
    """floor(principal * bps * days / (10000 * 365))"""
    return (principal * bps * days) // (BPS_DENOMINATOR * DAYS_PER_YEAR)


def calculate_gross_funded(initial_invoice_value: Decimal, upfront_bps: int) -> Decimal:
    return bps_of(initial_invoice_value, upfront_bps)


def charged_days(days: int, min_days_interest_applied: int) -> int:
    """Days actually charged: never fewer than the agreed minimum."""
    return max(days, min_days_interest_applied)


def calculate_target_fees(
    initial_invoice_value: Decimal,
    upfront_bps: int,
    params: FeeParams,
    days_until_due: int,
) -> TargetFees:
    """
    Quote the fees for funding a receivable now.

    Args:
        initial_invoice_value: Face value still unpaid at approval
        upfront_bps: Fraction advanced (may be below params.upfront_bps)
        params: Rates agreed at approval
        days_until_due: Whole days from now to the due date

    Returns:
        TargetFees; funded_amount_net may be zero or negative when the fees
        exceed the advance, which callers must refuse.
    """
    validate_bps(upfront_bps, "upfront_bps")
    days = charged_days(days_until_due, params.min_days_interest_applied)
    gross = calculate_gross_funded(initial_invoice_value, upfront_bps)

    interest = annualized_fee(gross, params.target_yield_bps, days)
    spread = annualized_fee(gross, params.spread_bps, days)
    admin_fee = annualized_fee(gross, params.admin_fee_bps, days)
    protocol_fee = bps_of(gross, params.protocol_fee_bps)
    net = gross - interest - spread - admin_fee - protocol_fee

    return TargetFees(
        funded_amount_gross=gross,
        admin_fee=admin_fee,
        target_interest=interest,
        target_spread=spread,
        protocol_fee=protocol_fee,
        funded_amount_net=net,
    )


def calculate_fee_cap(initial_invoice_value: Decimal, capital_at_risk: Decimal) -> Decimal:
    """Most the pool can ever earn on a receivable: V - capital_at_risk."""
    return max(initial_invoice_value - capital_at_risk, ZERO)


def calculate_accrued_fees(
    funded_amount_gross: Decimal,
    params: FeeParams,
    days: int,
    cap: Optional[Decimal] = None,
) -> AccruedFees:
    """
    Interest, spread and admin fee for a number of whole days.

    When a cap is given the three are filled in that order (interest, then
    spread, then admin fee) until the cap is reached.
    """
    interest = annualized_fee(funded_amount_gross, params.target_yield_bps, days)
    spread = annualized_fee(funded_amount_gross, params.spread_bps, days)
    admin_fee = annualized_fee(funded_amount_gross, params.admin_fee_bps, days)

    if cap is not None:
        remaining = max(cap, ZERO)
        interest = min(interest, remaining)
        remaining -= interest
        spread = min(spread, remaining)
        remaining -= spread
        admin_fee = min(admin_fee, remaining)

    return AccruedFees(interest=interest, spread=spread, admin_fee=admin_fee)


def calculate_kickback(
    initial_invoice_value: Decimal,
    funded_amount_gross: Decimal,
    capital_at_risk: Decimal,
    params: FeeParams,
    days_since_funding: int,
    paid_since_funding: Decimal,
) -> KickbackResult:
    """
    Actual fees and kickback at settlement.

    Example:
        # V = 100_000000, 80% upfront, 10% yield, paid in full after 30 days
        result = calculate_kickback(V, Decimal("80000000"), Decimal("79342466"),
                                    params, 30, V)
        # result.true_interest == 657534, result.kickback_amount == 20000000
    """
    days = charged_days(days_since_funding, params.min_days_interest_applied)
    cap = calculate_fee_cap(initial_invoice_value, capital_at_risk)
    fees = calculate_accrued_fees(funded_amount_gross, params, days, cap)
    kickback = max(paid_since_funding - capital_at_risk - fees.total, ZERO)
    return KickbackResult(
        kickback_amount=kickback,
        true_interest=fees.interest,
        true_spread=fees.spread,
        true_admin_fee=fees.admin_fee,
    )
