"""
fund_builders.py - Test Helpers for Fund Ledgers

Builds ledgers with the reference asset, participant wallets, a fund and
receivables, so tests can start from a realistic state in one call.

Amounts are asset base units: usdc(100) == Decimal("100000000").
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from factoring import (
    Ledger, FactoringFund, FundConfig, Move, ExecuteResult,
    asset, build_transaction, create_invoice_unit,
    compute_invoice_issuance, compute_invoice_payment,
    get_invoice_details,
    SYSTEM_WALLET,
)


START = datetime(2025, 1, 1)
ASSET = "USDC"
SHARES = "BFT"
POOL = "pool"
OWNER = "owner"
UNDERWRITER = "underwriter"
TREASURY = "treasury"
SUPPLIER = "supplier"
DEBTOR = "acme"

PARTICIPANTS = ("alice", "bob", "carol", "dave", SUPPLIER, DEBTOR)


def usdc(amount) -> Decimal:
    """Whole tokens to base units (6 decimals)."""
    return Decimal(str(amount)) * Decimal(1_000_000)


def make_ledger(start: datetime = START) -> Ledger:
    ledger = Ledger("test", start, verbose=False, test_mode=True)
    ledger.register_unit(asset(ASSET, "USD Coin"))
    for wallet in PARTICIPANTS:
        ledger.register_wallet(wallet)
    return ledger


def make_config(**overrides) -> FundConfig:
    params = dict(
        name="Test Factoring Fund",
        asset=ASSET,
        pool_wallet=POOL,
        owner=OWNER,
        underwriter=UNDERWRITER,
        protocol_fee_receiver=TREASURY,
    )
    params.update(overrides)
    return FundConfig(**params)


def make_fund(ledger: Ledger, access=None, **overrides) -> FactoringFund:
    return FactoringFund.create(ledger, make_config(**overrides), SHARES, access=access)


def faucet(ledger: Ledger, wallet: str, amount: Decimal) -> None:
    """Issue asset to a wallet from the system wallet."""
    tx = build_transaction(ledger, [
        Move(Decimal(amount), ASSET, SYSTEM_WALLET, wallet, f"faucet_{len(ledger.transaction_log)}")
    ])
    assert ledger.execute(tx) == ExecuteResult.APPLIED


def issue_invoice(
    ledger: Ledger,
    invoice_id: str = "INV-1",
    amount: Decimal = usdc(100),
    due_date: Optional[datetime] = None,
    creditor: str = SUPPLIER,
    debtor: str = DEBTOR,
    token: str = ASSET,
) -> None:
    if due_date is None:
        due_date = ledger.current_time + timedelta(days=30)
    unit = create_invoice_unit(invoice_id, debtor, token, amount, due_date)
    assert ledger.execute(compute_invoice_issuance(ledger, unit, creditor)) == ExecuteResult.APPLIED


def pay_invoice(
    ledger: Ledger,
    invoice_id: str = "INV-1",
    amount: Optional[Decimal] = None,
    payer: str = DEBTOR,
) -> None:
    """Top up the payer and pay (by default the whole outstanding amount)."""
    if amount is None:
        amount = get_invoice_details(ledger, invoice_id).outstanding
    faucet(ledger, payer, amount)
    assert ledger.execute(compute_invoice_payment(ledger, invoice_id, payer, amount)) == ExecuteResult.APPLIED


def fund_receivable(
    ledger: Ledger,
    fund: FactoringFund,
    invoice_id: str = "INV-1",
    amount: Decimal = usdc(100),
    days: int = 30,
    target_yield_bps: int = 1000,
    spread_bps: int = 0,
    upfront_bps: int = 8000,
    min_days: int = 30,
    creditor: str = SUPPLIER,
) -> Decimal:
    """Issue, approve and fund a receivable; returns the net advance."""
    issue_invoice(ledger, invoice_id, amount, ledger.current_time + timedelta(days=days), creditor)
    fund.approve_invoice(UNDERWRITER, invoice_id, target_yield_bps, spread_bps, upfront_bps, min_days)
    return fund.fund_invoice(creditor, invoice_id, upfront_bps)


def deposit(ledger: Ledger, fund: FactoringFund, wallet: str, amount: Decimal) -> Decimal:
    """Top up the wallet and deposit; returns the shares minted."""
    faucet(ledger, wallet, amount)
    return fund.deposit(wallet, amount)
