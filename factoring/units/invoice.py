"""
invoice.py - Receivable (Invoice) Units and the Invoice Provider Adapter

A receivable is a first-class Unit with quantity 1, held by its current
creditor. Its state records what the debtor owes and how much has been paid.

Pattern:
    Issuance:
        Move(source="system", dest=creditor, unit="INV-001", quantity=1)

    Debtor payment (the asset goes to whoever holds the receivable):
        Move(source=debtor, dest=holder, unit="USDC", quantity=amount)
        state: paid_amount += amount

    Factoring (performed by the fund through the adapter):
        Move(source=creditor, dest=pool, unit="INV-001", quantity=1)

The fund never edits receivable state. It reads InvoiceDetails through an
InvoiceProviderAdapter and moves ownership with adapter-built moves.
"""

from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Protocol, Optional, runtime_checkable

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    SYSTEM_WALLET, UNIT_TYPE_INVOICE, QUANTITY_EPSILON,
    InvoiceNotFound, UnitNotRegistered,
    build_transaction, _freeze_state,
)


@dataclass(frozen=True, slots=True)
class InvoiceDetails:
    """Snapshot of a receivable as reported by the invoice provider."""
    invoice_id: str
    creditor: Optional[str]
    debtor: str
    token: str
    invoice_amount: Decimal
    paid_amount: Decimal
    due_date: datetime
    is_paid: bool
    is_canceled: bool

    @property
    def outstanding(self) -> Decimal:
        return self.invoice_amount - self.paid_amount


@runtime_checkable
class InvoiceProviderAdapter(Protocol):
    """Read-side interface to the invoice/claim provider."""

    def get_invoice_details(self, invoice_id: str) -> InvoiceDetails:
        """Raise InvoiceNotFound if the receivable does not exist."""
        ...

    def transfer_move(self, invoice_id: str, source: str, dest: str) -> Move:
        """Move that hands ownership of the receivable from source to dest."""
        ...


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def get_invoice_details(view: LedgerView, invoice_id: str) -> InvoiceDetails:
    """
    Load a receivable unit as InvoiceDetails.

    The creditor is the wallet currently holding the unit (None once the
    unit has been burned).

    Raises:
        InvoiceNotFound: If no receivable unit with this id is registered
    """
    try:
        unit = view.get_unit(invoice_id)
    except UnitNotRegistered:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found") from None
    if getattr(unit, 'unit_type', UNIT_TYPE_INVOICE) != UNIT_TYPE_INVOICE:
        raise InvoiceNotFound(f"{invoice_id} is not an invoice")

    state = view.get_unit_state(invoice_id)
    holders = [
        wallet for wallet, qty in view.get_positions(invoice_id).items()
        if wallet != SYSTEM_WALLET and qty > QUANTITY_EPSILON
    ]
    invoice_amount = Decimal(state['invoice_amount'])
    paid_amount = Decimal(state.get('paid_amount', Decimal("0")))
    return InvoiceDetails(
        invoice_id=invoice_id,
        creditor=holders[0] if holders else None,
        debtor=state['debtor'],
        token=state['token'],
        invoice_amount=invoice_amount,
        paid_amount=paid_amount,
        due_date=state['due_date'],
        is_paid=paid_amount >= invoice_amount,
        is_canceled=state.get('canceled', False),
    )


class LedgerInvoiceProvider:
    """InvoiceProviderAdapter backed by receivable units on a ledger."""

    def __init__(self, view: LedgerView):
        self.view = view

    def get_invoice_details(self, invoice_id: str) -> InvoiceDetails:
        return get_invoice_details(self.view, invoice_id)

    def transfer_move(self, invoice_id: str, source: str, dest: str) -> Move:
        return Move(Decimal("1"), invoice_id, source, dest, f"invoice_transfer_{invoice_id}")


# ============================================================================
# UNIT FACTORY
# ============================================================================

def create_invoice_unit(
    invoice_id: str,
    debtor: str,
    token: str,
    invoice_amount: Decimal,
    due_date: datetime,
    description: str = "",
) -> Unit:
    """
    Create a receivable unit.

    Args:
        invoice_id: Unique symbol (e.g. "INV-001")
        debtor: Wallet that owes the amount
        token: Asset symbol the receivable is denominated in
        invoice_amount: Face value in asset base units
        due_date: When payment is due
        description: Free text

    Returns:
        Unit with quantity always 0 or 1 per wallet.

    Example:
        unit = create_invoice_unit("INV-001", "acme", "USDC",
                                   Decimal("100000000"), datetime(2025, 3, 1))
        ledger.execute(compute_invoice_issuance(ledger, unit, "supplier"))
    """
    if not invoice_id or not invoice_id.strip():
        raise ValueError("invoice_id cannot be empty")
    if not debtor or not debtor.strip():
        raise ValueError("debtor cannot be empty")
    if not token or not token.strip():
        raise ValueError("token cannot be empty")
    if not isinstance(invoice_amount, Decimal):
        invoice_amount = Decimal(str(invoice_amount))
    if invoice_amount <= 0:
        raise ValueError(f"invoice_amount must be positive, got {invoice_amount}")
    if invoice_amount != invoice_amount.to_integral_value():
        raise ValueError(f"invoice_amount must be whole base units, got {invoice_amount}")

    return Unit(
        symbol=invoice_id,
        name=f"Invoice {invoice_id}: {invoice_amount} {token}",
        unit_type=UNIT_TYPE_INVOICE,
        min_balance=Decimal("0"),
        max_balance=Decimal("1"),
        decimal_places=0,
        _frozen_state=_freeze_state({
            'debtor': debtor,
            'token': token,
            'invoice_amount': invoice_amount,
            'paid_amount': Decimal("0"),
            'due_date': due_date,
            'canceled': False,
            'description': description,
        }),
    )


# ============================================================================
# PROVIDER ACTIONS
# ============================================================================

def _provider_origin(invoice_id: str, event_type: str, source_id: str) -> TransactionOrigin:
    return TransactionOrigin(OriginType.EXTERNAL, source_id, invoice_id, event_type)


def compute_invoice_issuance(view: LedgerView, unit: Unit, creditor: str) -> PendingTransaction:
    """Register the receivable and deliver it to its creditor."""
    if creditor == unit.state['debtor']:
        raise ValueError("creditor and debtor must be different")
    move = Move(Decimal("1"), unit.symbol, SYSTEM_WALLET, creditor, f"issue_{unit.symbol}")
    return build_transaction(
        view, [move],
        origin=_provider_origin(unit.symbol, "ISSUE", creditor),
        units_to_create=(unit,),
    )


def compute_invoice_payment(
    view: LedgerView,
    invoice_id: str,
    payer: str,
    amount: Decimal,
) -> PendingTransaction:
    """
    Pay part or all of a receivable.

    The asset goes to the current holder of the receivable. Overpayment and
    payment of a canceled receivable are refused.

    Raises:
        ValueError: If amount is not positive, exceeds the outstanding amount,
            or the receivable is canceled or has no holder
    """
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount <= 0:
        raise ValueError(f"payment amount must be positive, got {amount}")

    details = get_invoice_details(view, invoice_id)
    if details.is_canceled:
        raise ValueError(f"Invoice {invoice_id} is canceled")
    if amount > details.outstanding:
        raise ValueError(
            f"payment {amount} exceeds outstanding {details.outstanding} on {invoice_id}"
        )
    if details.creditor is None:
        raise ValueError(f"Invoice {invoice_id} has no holder")

    state = view.get_unit_state(invoice_id)
    new_state = {**state, 'paid_amount': details.paid_amount + amount}
    move = Move(amount, details.token, payer, details.creditor, f"pay_{invoice_id}")
    return build_transaction(
        view, [move],
        [UnitStateChange(invoice_id, state, new_state)],
        origin=_provider_origin(invoice_id, "PAYMENT", payer),
    )


def compute_invoice_cancellation(view: LedgerView, invoice_id: str, caller: str) -> PendingTransaction:
    """The holder (rescind) or the debtor (reject) cancels an unpaid receivable."""
    details = get_invoice_details(view, invoice_id)
    if caller not in (details.creditor, details.debtor):
        raise ValueError(f"{caller} cannot cancel {invoice_id}")
    if details.is_paid:
        raise ValueError(f"Invoice {invoice_id} is already paid")
    if details.is_canceled:
        raise ValueError(f"Invoice {invoice_id} is already canceled")

    state = view.get_unit_state(invoice_id)
    new_state = {**state, 'canceled': True}
    return build_transaction(
        view, [],
        [UnitStateChange(invoice_id, state, new_state)],
        origin=_provider_origin(invoice_id, "CANCEL", caller),
    )


def compute_invoice_transfer(view: LedgerView, invoice_id: str, source: str, dest: str) -> PendingTransaction:
    """The holder sells or assigns the receivable to another wallet."""
    details = get_invoice_details(view, invoice_id)
    if details.creditor != source:
        raise ValueError(f"{source} does not hold {invoice_id}")
    move = LedgerInvoiceProvider(view).transfer_move(invoice_id, source, dest)
    return build_transaction(
        view, [move],
        origin=_provider_origin(invoice_id, "TRANSFER", source),
    )
