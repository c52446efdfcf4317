"""
reconciliation.py - Settlement of Paid Receivables

A debtor pays the holder of the receivable, which for a funded receivable is
the pool wallet. Nothing in the fund changes at payment time: the money sits
in the pool as a parked receipt until reconciliation settles it.

Per paid receivable (active set first, then impaired set, insertion order):
    Move(kickback, asset, pool -> original creditor)     if kickback > 0
    admin_fee_balance    += trueAdminFee
    spread_gains_balance += trueSpread
    trueInterest stays in the pool (the depositors' gain)
    status -> PAID, receivable leaves its set, Settlement recorded

Reconciling again immediately is a no-op: settled receivables are no longer in
either set.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import List, Optional

from .core import (
    LedgerView, Move, PendingTransaction, OriginType,
    InvoiceNotFunded,
    build_transaction, empty_pending_transaction,
)
from .fees import KickbackResult
from .state import (
    FundState, InvoiceStatus, Settlement, SETTLEMENT_PAID,
    load_fund, fund_state_change, fund_origin,
)
from .invoice_lifecycle import calculate_settlement_fees
from .units.invoice import InvoiceProviderAdapter
from . import events


ZERO = Decimal("0")


def paid_invoices(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    state: Optional[FundState] = None,
) -> List[str]:
    """Receivables in the active or impaired set that the provider reports paid."""
    if state is None:
        state = load_fund(view, symbol)
    return [
        invoice_id
        for invoice_id in state.active_invoices + state.impaired_invoices
        if provider.get_invoice_details(invoice_id).is_paid
    ]


def check_upkeep(view: LedgerView, symbol: str, provider: InvoiceProviderAdapter) -> bool:
    """True when reconcile_active_paid_invoices would settle something."""
    return bool(paid_invoices(view, symbol, provider))


def calculate_kickback_for_invoice(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    invoice_id: str,
) -> KickbackResult:
    """
    Actual fees and kickback for a funded receivable as of now.

    Raises:
        InvoiceNotFunded: If the receivable was never funded
    """
    approval = load_fund(view, symbol).approval(invoice_id)
    if approval is None or not approval.is_funded:
        raise InvoiceNotFunded(f"Invoice {invoice_id} is not funded")
    details = provider.get_invoice_details(invoice_id)
    return calculate_settlement_fees(approval, details, view.current_time)


def compute_reconcile_active_paid_invoices(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str = "keeper",
) -> PendingTransaction:
    """
    Settle every funded receivable that has been paid in full.

    Returns:
        PendingTransaction with kickback moves, updated books and one
        InvoicePaid event per receivable; empty when nothing is paid.
    """
    state = load_fund(view, symbol)
    config = state.config
    now = view.current_time
    paid = paid_invoices(view, symbol, provider, state)
    if not paid:
        return empty_pending_transaction(view)

    moves: List[Move] = []
    emitted = []
    approvals = dict(state.approvals)
    settlements = dict(state.settlements)
    admin_fees = state.admin_fee_balance
    spread_gains = state.spread_gains_balance

    for invoice_id in paid:
        approval = approvals[invoice_id]
        details = provider.get_invoice_details(invoice_id)
        result = calculate_settlement_fees(approval, details, now)
        was_impaired = approval.status == InvoiceStatus.IMPAIRED

        if result.kickback_amount > ZERO:
            moves.append(Move(
                result.kickback_amount, config.asset, config.pool_wallet,
                approval.original_creditor, f"kickback_{invoice_id}",
            ))

        admin_fees += result.true_admin_fee
        spread_gains += result.true_spread
        approvals[invoice_id] = replace(approval, status=InvoiceStatus.PAID)
        settlements[invoice_id] = Settlement(
            kind=SETTLEMENT_PAID,
            true_interest=result.true_interest,
            true_spread=result.true_spread,
            true_admin_fee=result.true_admin_fee,
            amount=result.kickback_amount,
            after_impairment=was_impaired,
            capital_at_risk=approval.capital_at_risk,
            settled_at=now,
        )

        emitted.append(events.audit_event(
            events.INVOICE_PAID,
            invoice_id=invoice_id,
            true_interest=result.true_interest,
            true_spread=result.true_spread,
            true_admin_fee=result.true_admin_fee,
            kickback_amount=result.kickback_amount,
            original_creditor=approval.original_creditor,
        ))
        if result.kickback_amount > ZERO:
            emitted.append(events.audit_event(
                events.INVOICE_KICKBACK_AMOUNT_SENT,
                invoice_id=invoice_id,
                kickback_amount=result.kickback_amount,
                original_creditor=approval.original_creditor,
            ))

    emitted.append(events.audit_event(
        events.ACTIVE_PAID_INVOICES_RECONCILED,
        paid_invoice_ids=tuple(paid),
    ))

    settled = set(paid)
    new_state = replace(
        state,
        approvals=approvals,
        settlements=settlements,
        admin_fee_balance=admin_fees,
        spread_gains_balance=spread_gains,
        active_invoices=tuple(i for i in state.active_invoices if i not in settled),
        impaired_invoices=tuple(i for i in state.impaired_invoices if i not in settled),
    )
    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "RECONCILE", OriginType.LIFECYCLE),
        events=emitted,
    )
