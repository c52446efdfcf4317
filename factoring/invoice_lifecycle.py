"""
invoice_lifecycle.py - Approval, Funding and Unfactoring of Receivables

State machine (per receivable, stored in the fund's InvoiceApproval):

    UNAPPROVED --approve--> APPROVED --fund--> FUNDED --reconcile--> PAID
                               |  ^                |--impair----> IMPAIRED
                               +--+ re-approve     +--unfactor--> UNFACTORED

    IMPAIRED --reconcile--> PAID,  IMPAIRED --unfactor--> UNFACTORED

Funding:
    Move(1, invoice, creditor -> pool)          receivable changes hands
    Move(net, asset, pool -> receiver)          the advance
    protocol_fee_balance += protocol_fee        collected upfront, never refunded

Unfactoring (original creditor buys the receivable back):
    owed = capitalAtRisk + trueInterest + trueSpread + trueAdminFee - paidSinceFunding
    Move(owed, asset, creditor -> pool)  or  Move(-owed, asset, pool -> creditor)
    Move(1, invoice, pool -> creditor)

All functions are pure: they read a LedgerView and the invoice provider and
return a PendingTransaction. The fund facade executes it and then runs the
liquidity gate.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .core import (
    LedgerView, Move, PendingTransaction,
    NotAuthorized, InvalidAmount, InvalidReceiver, InvoiceTokenMismatch,
    InvoiceNotApproved, InvoiceAlreadyFunded, ApprovalExpired, InvoiceCanceled,
    InvoiceAlreadyPaid, InvoiceCreditorChanged, InvoiceAmountChanged,
    InvoiceNotFunded, InvoiceNotFound,
    InsufficientLiquidity, FeesExceedFundedAmount,
    build_transaction,
)
from .fees import (
    TargetFees, KickbackResult,
    validate_bps, whole_days_between, calculate_target_fees, calculate_kickback,
)
from .state import (
    InvoiceApproval, InvoiceStatus, Settlement, SETTLEMENT_UNFACTORED,
    load_fund, fund_state_change, fund_origin,
)
from .capital import calculate_capital_account, paid_since_funding
from .access import ROLE_UNDERWRITER, require_role, require_address
from .units.invoice import InvoiceDetails, InvoiceProviderAdapter
from . import events


ZERO = Decimal("0")

_SETTLED_OR_FUNDED = (
    InvoiceStatus.FUNDED, InvoiceStatus.IMPAIRED,
    InvoiceStatus.PAID, InvoiceStatus.UNFACTORED,
)


# ============================================================================
# PURE HELPERS
# ============================================================================

def calculate_settlement_fees(
    approval: InvoiceApproval,
    details: InvoiceDetails,
    now: datetime,
) -> KickbackResult:
    """Actual fees and kickback if the receivable settled at `now`."""
    return calculate_kickback(
        initial_invoice_value=approval.initial_invoice_value,
        funded_amount_gross=approval.funded_amount_gross,
        capital_at_risk=approval.capital_at_risk,
        params=approval.fee_params,
        days_since_funding=whole_days_between(approval.funded_timestamp, now),
        paid_since_funding=paid_since_funding(approval, details),
    )


def _check_upfront(config, upfront_bps: int, name: str = "upfront_bps") -> None:
    validate_bps(upfront_bps, name, config.min_upfront_bps, config.max_upfront_bps)


# ============================================================================
# VIEW FUNCTIONS
# ============================================================================

def get_invoice_status(view: LedgerView, symbol: str, invoice_id: str) -> InvoiceStatus:
    return load_fund(view, symbol).status_of(invoice_id)


def preview_target_fees(
    view: LedgerView,
    symbol: str,
    invoice_id: str,
    upfront_bps: Optional[int] = None,
) -> TargetFees:
    """
    Fees the receivable would be funded with now.

    Args:
        upfront_bps: Advance to quote (defaults to the approved upfront)

    Raises:
        InvoiceNotApproved: If the receivable has no approval
        InvalidPercentage: If upfront_bps is outside the configured bounds
    """
    state = load_fund(view, symbol)
    approval = state.approval(invoice_id)
    if approval is None:
        raise InvoiceNotApproved(f"Invoice {invoice_id} is not approved")
    if approval.is_funded:
        return TargetFees(
            funded_amount_gross=approval.funded_amount_gross,
            admin_fee=approval.target_admin_fee,
            target_interest=approval.target_interest,
            target_spread=approval.target_spread,
            protocol_fee=approval.protocol_fee,
            funded_amount_net=approval.funded_amount_net,
        )
    if upfront_bps is None:
        upfront_bps = approval.upfront_bps
    _check_upfront(state.config, upfront_bps)
    days = whole_days_between(view.current_time, approval.due_date)
    return calculate_target_fees(approval.initial_invoice_value, upfront_bps, approval.fee_params, days)


# ============================================================================
# APPROVAL
# ============================================================================

def compute_approve_invoice(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    invoice_id: str,
    target_yield_bps: Optional[int],
    spread_bps: int,
    upfront_bps: int,
    min_days_interest_applied: int = 0,
) -> PendingTransaction:
    """
    Underwriter approves a receivable for funding.

    target_yield_bps None means the fund's configured target yield.

    The current protocol and admin fee rates, the creditor and the invoice
    amounts are snapshotted; funding later fails if any of them moved.
    Approving again before funding replaces the approval.

    Raises:
        NotAuthorized: caller is not the underwriter
        InvoiceNotFound / InvoiceCanceled / InvoiceAlreadyPaid / InvoiceAlreadyFunded
        InvoiceTokenMismatch: receivable not denominated in the pool asset
        InvalidPercentage: a bps argument out of range
    """
    state = load_fund(view, symbol)
    config = state.config
    require_role(config, ROLE_UNDERWRITER, caller)

    details = provider.get_invoice_details(invoice_id)
    if details.is_canceled:
        raise InvoiceCanceled(f"Invoice {invoice_id} is canceled")
    if details.is_paid:
        raise InvoiceAlreadyPaid(f"Invoice {invoice_id} is already paid")
    if state.status_of(invoice_id) in _SETTLED_OR_FUNDED:
        raise InvoiceAlreadyFunded(f"Invoice {invoice_id} was already funded")
    if details.token != config.asset:
        raise InvoiceTokenMismatch(
            f"Invoice {invoice_id} is in {details.token}, pool asset is {config.asset}"
        )
    if details.creditor is None:
        raise InvoiceNotFound(f"Invoice {invoice_id} has no creditor")

    if target_yield_bps is None:
        target_yield_bps = config.target_yield_bps
    validate_bps(target_yield_bps, "target_yield_bps")
    validate_bps(spread_bps, "spread_bps")
    _check_upfront(config, upfront_bps)
    if isinstance(min_days_interest_applied, bool) or not isinstance(min_days_interest_applied, int) \
            or min_days_interest_applied < 0:
        raise InvalidAmount(
            f"min_days_interest_applied must be a non-negative integer, got {min_days_interest_applied!r}"
        )

    now = view.current_time
    approval = InvoiceApproval(
        invoice_id=invoice_id,
        status=InvoiceStatus.APPROVED,
        valid_until=now + config.approval_duration,
        creditor=details.creditor,
        invoice_amount=details.invoice_amount,
        approved_paid_amount=details.paid_amount,
        initial_invoice_value=details.invoice_amount - details.paid_amount,
        due_date=details.due_date,
        target_yield_bps=target_yield_bps,
        spread_bps=spread_bps,
        upfront_bps=upfront_bps,
        protocol_fee_bps=config.protocol_fee_bps,
        admin_fee_bps=config.admin_fee_bps,
        min_days_interest_applied=min_days_interest_applied,
    )
    new_state = state.with_approval(approval)

    event = events.audit_event(
        events.INVOICE_APPROVED,
        invoice_id=invoice_id,
        creditor=details.creditor,
        valid_until=approval.valid_until,
        target_yield_bps=target_yield_bps,
        spread_bps=spread_bps,
        upfront_bps=upfront_bps,
        protocol_fee_bps=approval.protocol_fee_bps,
        admin_fee_bps=approval.admin_fee_bps,
        min_days_interest_applied=min_days_interest_applied,
        initial_invoice_value=approval.initial_invoice_value,
    )
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "APPROVE_INVOICE"),
        events=[event],
    )


# ============================================================================
# FUNDING
# ============================================================================

def compute_fund_invoice(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    invoice_id: str,
    factorer_upfront_bps: int,
    receiver: Optional[str] = None,
) -> PendingTransaction:
    """
    The creditor sells an approved receivable to the pool.

    Args:
        caller: Current creditor (must also be the creditor at approval)
        factorer_upfront_bps: Advance requested, at most the approved upfront
        receiver: Wallet receiving the net advance (default: caller)

    Raises:
        InvoiceNotApproved / InvoiceAlreadyFunded / ApprovalExpired
        InvoiceCanceled / InvoiceAlreadyPaid
        NotAuthorized: caller does not hold the receivable
        InvoiceCreditorChanged / InvoiceAmountChanged: receivable moved since approval
        InvalidPercentage: factorer_upfront_bps outside 1..approved upfront
        FeesExceedFundedAmount: the fees eat the whole advance
        InsufficientLiquidity: the pool cannot cover the advance
    """
    state = load_fund(view, symbol)
    config = state.config
    now = view.current_time
    receiver = receiver or caller
    require_address(receiver, "receiver", InvalidReceiver)
    if receiver == config.pool_wallet:
        raise InvalidReceiver("the pool cannot receive its own advance")

    approval = state.approval(invoice_id)
    if approval is None or approval.status == InvoiceStatus.UNAPPROVED:
        raise InvoiceNotApproved(f"Invoice {invoice_id} is not approved")
    if approval.status != InvoiceStatus.APPROVED:
        raise InvoiceAlreadyFunded(f"Invoice {invoice_id} was already funded")
    if now > approval.valid_until:
        raise ApprovalExpired(f"Approval of {invoice_id} expired at {approval.valid_until}")

    details = provider.get_invoice_details(invoice_id)
    if details.is_canceled:
        raise InvoiceCanceled(f"Invoice {invoice_id} is canceled")
    if details.is_paid:
        raise InvoiceAlreadyPaid(f"Invoice {invoice_id} is already paid")
    if caller != details.creditor:
        raise NotAuthorized(f"{caller} is not the creditor of {invoice_id}")
    if details.creditor != approval.creditor:
        raise InvoiceCreditorChanged(
            f"Invoice {invoice_id} creditor changed from {approval.creditor} to {details.creditor}"
        )
    if (details.invoice_amount != approval.invoice_amount
            or details.paid_amount != approval.approved_paid_amount):
        raise InvoiceAmountChanged(f"Invoice {invoice_id} amounts changed since approval")

    validate_bps(factorer_upfront_bps, "factorer_upfront_bps", 1, approval.upfront_bps)

    days = whole_days_between(now, approval.due_date)
    fees = calculate_target_fees(approval.initial_invoice_value, factorer_upfront_bps, approval.fee_params, days)
    if fees.funded_amount_net <= ZERO:
        raise FeesExceedFundedAmount(
            f"fees exceed the advance on {invoice_id}: gross {fees.funded_amount_gross}, "
            f"net {fees.funded_amount_net}"
        )
    available = calculate_capital_account(view, symbol, provider, state).available_assets
    if fees.capital_at_risk > available:
        raise InsufficientLiquidity(
            f"funding {invoice_id} needs {fees.capital_at_risk}, available {available}"
        )

    funded = replace(
        approval,
        status=InvoiceStatus.FUNDED,
        funded_amount_gross=fees.funded_amount_gross,
        funded_amount_net=fees.funded_amount_net,
        protocol_fee=fees.protocol_fee,
        target_interest=fees.target_interest,
        target_spread=fees.target_spread,
        target_admin_fee=fees.admin_fee,
        factorer_upfront_bps=factorer_upfront_bps,
        original_creditor=caller,
        receiver=receiver,
        initial_paid_amount=details.paid_amount,
        funded_timestamp=now,
    )
    new_state = replace(
        state.with_approval(funded),
        protocol_fee_balance=state.protocol_fee_balance + fees.protocol_fee,
        active_invoices=state.active_invoices + (invoice_id,),
    )

    moves = [
        provider.transfer_move(invoice_id, caller, config.pool_wallet),
        Move(fees.funded_amount_net, config.asset, config.pool_wallet, receiver, f"fund_{invoice_id}"),
    ]
    event = events.audit_event(
        events.INVOICE_FUNDED,
        invoice_id=invoice_id,
        creditor=caller,
        receiver=receiver,
        factorer_upfront_bps=factorer_upfront_bps,
        funded_amount_gross=fees.funded_amount_gross,
        funded_amount_net=fees.funded_amount_net,
        protocol_fee=fees.protocol_fee,
        target_interest=fees.target_interest,
        target_spread=fees.target_spread,
        target_admin_fee=fees.admin_fee,
        due_date=approval.due_date,
    )
    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "FUND_INVOICE"),
        events=[event],
    )


# ============================================================================
# UNFACTORING
# ============================================================================

def compute_unfactor_invoice(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    invoice_id: str,
) -> PendingTransaction:
    """
    The original creditor buys a funded (or impaired) receivable back.

    The creditor pays capital at risk plus the fees accrued so far, less what
    the debtor already paid to the pool; a negative amount is refunded.

    Raises:
        InvoiceNotFunded: receivable is not FUNDED or IMPAIRED
        NotAuthorized: caller is not the original creditor
        InvoiceAlreadyPaid: the debtor has paid in full (reconcile instead)
    """
    state = load_fund(view, symbol)
    config = state.config
    now = view.current_time

    approval = state.approval(invoice_id)
    if approval is None or approval.status not in (InvoiceStatus.FUNDED, InvoiceStatus.IMPAIRED):
        raise InvoiceNotFunded(f"Invoice {invoice_id} is not funded")
    if caller != approval.original_creditor:
        raise NotAuthorized(f"{caller} is not the original creditor of {invoice_id}")

    details = provider.get_invoice_details(invoice_id)
    if details.is_paid:
        raise InvoiceAlreadyPaid(f"Invoice {invoice_id} is already paid")

    result = calculate_settlement_fees(approval, details, now)
    owed = approval.capital_at_risk + result.total_fees - paid_since_funding(approval, details)
    was_impaired = approval.status == InvoiceStatus.IMPAIRED

    moves = []
    if owed > ZERO:
        moves.append(Move(owed, config.asset, caller, config.pool_wallet, f"unfactor_{invoice_id}"))
    elif owed < ZERO:
        moves.append(Move(-owed, config.asset, config.pool_wallet, caller, f"unfactor_{invoice_id}"))
    moves.append(provider.transfer_move(invoice_id, config.pool_wallet, caller))

    settlement = Settlement(
        kind=SETTLEMENT_UNFACTORED,
        true_interest=result.true_interest,
        true_spread=result.true_spread,
        true_admin_fee=result.true_admin_fee,
        amount=owed,
        after_impairment=was_impaired,
        capital_at_risk=approval.capital_at_risk,
        settled_at=now,
    )
    new_state = replace(
        state.with_approval(replace(approval, status=InvoiceStatus.UNFACTORED)),
        admin_fee_balance=state.admin_fee_balance + result.true_admin_fee,
        spread_gains_balance=state.spread_gains_balance + result.true_spread,
        settlements={**state.settlements, invoice_id: settlement},
        active_invoices=tuple(i for i in state.active_invoices if i != invoice_id),
        impaired_invoices=tuple(i for i in state.impaired_invoices if i != invoice_id),
    )

    event = events.audit_event(
        events.INVOICE_UNFACTORED,
        invoice_id=invoice_id,
        original_creditor=caller,
        total_refund_or_payment_amount=owed,
        interest=result.true_interest,
        spread=result.true_spread,
        admin_fee=result.true_admin_fee,
    )
    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "UNFACTOR_INVOICE"),
        events=[event],
    )
