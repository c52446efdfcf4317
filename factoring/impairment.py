"""
impairment.py - Impairment of Overdue Receivables and the Impair Reserve

A funded receivable still unpaid after due date + grace period can be written
off by the pool owner:

    gain = floor(impairReserve / 2)     released from the reserve into capital
    loss = capitalAtRisk                realized against the pool

No asset moves: releasing the reserve only changes which part of the pool
balance counts as capital. The receivable moves from the active set to the
impaired set, where later payments are still recovered by reconciliation.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import List

from .core import (
    LedgerView, Move, PendingTransaction,
    InvalidAmount, InvoiceNotFunded, InvoiceAlreadyImpaired, InvoiceAlreadyPaid,
    InvoiceNotImpairable,
    build_transaction,
)
from .state import (
    InvoiceStatus, ImpairmentDetails,
    load_fund, fund_state_change, fund_origin,
)
from .capital import is_overdue
from .access import ROLE_OWNER, require_role
from .units.invoice import InvoiceProviderAdapter
from . import events


ZERO = Decimal("0")


def impairable_invoices(view: LedgerView, symbol: str) -> List[str]:
    """Active receivables past due date plus grace period, in funding order."""
    state = load_fund(view, symbol)
    now = view.current_time
    return [
        invoice_id for invoice_id in state.active_invoices
        if is_overdue(state.approvals[invoice_id].due_date, now, state.config.grace_period_days)
    ]


def compute_impair_invoice(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    invoice_id: str,
) -> PendingTransaction:
    """
    Write off an overdue receivable.

    Raises:
        NotAuthorized: caller is not the pool owner
        InvoiceAlreadyImpaired / InvoiceNotFunded: wrong status
        InvoiceAlreadyPaid: the debtor paid in full (reconcile instead)
        InvoiceNotImpairable: not yet past due date plus grace period
    """
    state = load_fund(view, symbol)
    config = state.config
    now = view.current_time
    require_role(config, ROLE_OWNER, caller)

    approval = state.approval(invoice_id)
    if approval is not None and approval.status == InvoiceStatus.IMPAIRED:
        raise InvoiceAlreadyImpaired(f"Invoice {invoice_id} is already impaired")
    if approval is None or approval.status != InvoiceStatus.FUNDED:
        raise InvoiceNotFunded(f"Invoice {invoice_id} is not funded")
    if provider.get_invoice_details(invoice_id).is_paid:
        raise InvoiceAlreadyPaid(f"Invoice {invoice_id} is already paid")
    if not is_overdue(approval.due_date, now, config.grace_period_days):
        raise InvoiceNotImpairable(
            f"Invoice {invoice_id} is not past due date plus {config.grace_period_days} days"
        )

    gain = state.impair_reserve // 2
    loss = approval.capital_at_risk
    impairment = ImpairmentDetails(gain_amount=gain, loss_amount=loss, impaired_at=now)

    new_state = replace(
        state.with_approval(replace(approval, status=InvoiceStatus.IMPAIRED)),
        impair_reserve=state.impair_reserve - gain,
        impairments={**state.impairments, invoice_id: impairment},
        active_invoices=tuple(i for i in state.active_invoices if i != invoice_id),
        impaired_invoices=state.impaired_invoices + (invoice_id,),
    )
    event = events.audit_event(
        events.INVOICE_IMPAIRED,
        invoice_id=invoice_id,
        loss_amount=loss,
        gain_amount=gain,
    )
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "IMPAIR_INVOICE"),
        events=[event],
    )


def compute_set_impair_reserve(
    view: LedgerView,
    symbol: str,
    caller: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Raise the impair reserve to `amount`; the owner pays in the difference.

    Raises:
        NotAuthorized: caller is not the pool owner
        InvalidAmount: amount below the current reserve or not whole base units
    """
    state = load_fund(view, symbol)
    config = state.config
    require_role(config, ROLE_OWNER, caller)

    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount != amount.to_integral_value():
        raise InvalidAmount(f"reserve must be whole base units, got {amount}")
    if amount < state.impair_reserve:
        raise InvalidAmount(
            f"impair reserve can only grow: {amount} < {state.impair_reserve}"
        )

    difference = amount - state.impair_reserve
    moves = []
    if difference > ZERO:
        moves.append(Move(difference, config.asset, caller, config.pool_wallet, "impair_reserve"))

    new_state = replace(state, impair_reserve=amount)
    event = events.audit_event(
        events.IMPAIR_RESERVE_CHANGED,
        old_reserve=state.impair_reserve,
        new_reserve=amount,
    )
    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "SET_IMPAIR_RESERVE"),
        events=[event],
    )
