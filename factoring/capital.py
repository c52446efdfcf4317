"""
capital.py - Capital Account, Realized Gain/Loss and Price per Share

The capital account is derived, never stored:

    capital = liquidAssets + deployedCapital + unrealizedGain
              - unrealizedLoss - feesOwed

    liquidAssets    = poolBalance - impairReserve - sum(P_i)
    deployedCapital = sum over active receivables of capitalAtRisk_i
    unrealizedGain  = sum over active, not overdue of accruedInterest_i
                      + sum over impaired of min(capitalAtRisk_i, P_i)
    unrealizedLoss  = sum over active, overdue of capitalAtRisk_i - min(capitalAtRisk_i, P_i)

P_i is what the debtor has paid since funding. Those payments already sit in
the pool wallet but belong to their receivable until reconciliation, so they
are taken out of liquidAssets and counted through the receivable instead.

Accrued interest here uses the whole days actually elapsed (no minimum) and
the same cap as settlement. Overdue means past due date plus grace period.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from .core import LedgerView
from .fees import whole_days_between, calculate_fee_cap, calculate_accrued_fees
from .state import FundState, InvoiceApproval, load_fund
from .shares import outstanding_shares
from .units.invoice import InvoiceDetails, InvoiceProviderAdapter


ZERO = Decimal("0")


@dataclass(frozen=True, slots=True)
class CapitalAccount:
    pool_balance: Decimal
    parked_receipts: Decimal
    liquid_assets: Decimal
    deployed_capital: Decimal
    unrealized_gain: Decimal
    unrealized_loss: Decimal
    fees_owed: Decimal

    @property
    def capital(self) -> Decimal:
        return (self.liquid_assets + self.deployed_capital + self.unrealized_gain
                - self.unrealized_loss - self.fees_owed)

    @property
    def available_assets(self) -> Decimal:
        """Liquidity usable for funding and redemptions."""
        return max(self.liquid_assets - self.fees_owed, ZERO)


@dataclass(frozen=True, slots=True)
class CapitalSnapshot:
    """
    Capital, share supply and available liquidity at one moment.

    The queue drain updates it after each payout instead of re-reading the
    ledger; a redemption lowers all three by what it takes out.
    """
    capital: Decimal
    supply: Decimal
    available: Decimal

    def after_redemption(self, assets: Decimal, shares: Decimal) -> CapitalSnapshot:
        return CapitalSnapshot(
            capital=self.capital - assets,
            supply=self.supply - shares,
            available=self.available - assets,
        )


@dataclass(frozen=True, slots=True)
class FundInfo:
    name: str
    creation_timestamp: datetime
    fund_balance: Decimal
    deployed_capital: Decimal
    capital_account: Decimal
    price: Decimal
    tokens_available_for_redemption: Decimal
    admin_fee_bps: int
    protocol_fee_bps: int
    target_yield_bps: int
    impair_reserve: Decimal
    realized_gain_loss: Decimal
    queue_length: int


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def paid_since_funding(approval: InvoiceApproval, details: InvoiceDetails) -> Decimal:
    return max(details.paid_amount - approval.initial_paid_amount, ZERO)


def is_overdue(due_date: datetime, now: datetime, grace_period_days: int) -> bool:
    return now > due_date + timedelta(days=grace_period_days)


def calculate_accrued_interest(approval: InvoiceApproval, now: datetime) -> Decimal:
    """Interest earned so far on a funded receivable, capped like at settlement."""
    days = whole_days_between(approval.funded_timestamp, now)
    cap = calculate_fee_cap(approval.initial_invoice_value, approval.capital_at_risk)
    return calculate_accrued_fees(approval.funded_amount_gross, approval.fee_params, days, cap).interest


def calculate_realized_gain_loss(state: FundState) -> Decimal:
    """
    Gains and losses already booked:
    settled interest, plus impairment results, plus capital recovered on
    receivables that settled after being impaired.
    """
    total = ZERO
    for settlement in state.settlements.values():
        total += settlement.true_interest
        if settlement.after_impairment:
            total += settlement.capital_at_risk
    for impairment in state.impairments.values():
        total += impairment.gain_amount - impairment.loss_amount
    return total


def price_per_share(capital: Decimal, supply: Decimal, scaling_factor: Decimal) -> Decimal:
    """capital * scaling_factor / supply, floored; scaling_factor when supply is zero."""
    if supply == ZERO:
        return scaling_factor
    if capital <= ZERO:
        return ZERO
    return (capital * scaling_factor) // supply


# ============================================================================
# VIEW FUNCTIONS
# ============================================================================

def calculate_capital_account(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    state: Optional[FundState] = None,
) -> CapitalAccount:
    """
    Derive the capital account of the fund from the ledger.

    Example:
        account = calculate_capital_account(ledger, "BFT", provider)
        account.capital, account.available_assets
    """
    if state is None:
        state = load_fund(view, symbol)
    config = state.config
    now = view.current_time
    pool_balance = view.get_balance(config.pool_wallet, config.asset)

    parked = ZERO
    deployed = ZERO
    gain = ZERO
    loss = ZERO

    for invoice_id in state.active_invoices:
        approval = state.approvals[invoice_id]
        received = paid_since_funding(approval, provider.get_invoice_details(invoice_id))
        parked += received
        deployed += approval.capital_at_risk
        if is_overdue(approval.due_date, now, config.grace_period_days):
            loss += approval.capital_at_risk - min(approval.capital_at_risk, received)
        else:
            gain += calculate_accrued_interest(approval, now)

    for invoice_id in state.impaired_invoices:
        approval = state.approvals[invoice_id]
        received = paid_since_funding(approval, provider.get_invoice_details(invoice_id))
        parked += received
        gain += min(approval.capital_at_risk, received)

    return CapitalAccount(
        pool_balance=pool_balance,
        parked_receipts=parked,
        liquid_assets=pool_balance - state.impair_reserve - parked,
        deployed_capital=deployed,
        unrealized_gain=gain,
        unrealized_loss=loss,
        fees_owed=state.fees_owed,
    )


def capital_snapshot(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    state: Optional[FundState] = None,
) -> CapitalSnapshot:
    account = calculate_capital_account(view, symbol, provider, state)
    return CapitalSnapshot(
        capital=account.capital,
        supply=outstanding_shares(view, symbol),
        available=account.available_assets,
    )


def get_fund_info(view: LedgerView, symbol: str, provider: InvoiceProviderAdapter) -> FundInfo:
    state = load_fund(view, symbol)
    config = state.config
    account = calculate_capital_account(view, symbol, provider, state)
    supply = outstanding_shares(view, symbol)
    return FundInfo(
        name=config.name,
        creation_timestamp=state.created_at,
        fund_balance=account.pool_balance,
        deployed_capital=account.deployed_capital,
        capital_account=account.capital,
        price=price_per_share(account.capital, supply, config.scaling_factor),
        tokens_available_for_redemption=account.available_assets,
        admin_fee_bps=config.admin_fee_bps,
        protocol_fee_bps=config.protocol_fee_bps,
        target_yield_bps=config.target_yield_bps,
        impair_reserve=state.impair_reserve,
        realized_gain_loss=calculate_realized_gain_loss(state),
        queue_length=state.queue().get_queue_length(),
    )
