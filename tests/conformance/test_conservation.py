"""
Conservation Law Conformance Tests

INVARIANT: For all units u, at all times t:
    Σ_{w ∈ wallets} balance(w, u, t) = constant

For a fund this also means the pool can always cover what it owes:
    pool_balance ≥ fees_owed + impair_reserve
    Σ_{w ≠ system} shares(w) = total_supply

These tests drive a fund through arbitrary operation sequences and check
the books after every step, refused operations included.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from factoring import LedgerError, SYSTEM_WALLET, get_invoice_details

from tests.fund_builders import (
    make_ledger, make_fund, deposit, fund_receivable, pay_invoice, faucet, usdc,
    START, ASSET, SHARES, POOL, OWNER, TREASURY, SUPPLIER,
)


INVESTORS = ["alice", "bob", "carol", "dave"]

ACTIONS = [
    "deposit", "fund", "pay", "partial_pay", "redeem", "queue",
    "time", "reconcile", "impair", "buy_back", "fees",
]


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

@st.composite
def fund_operation(draw):
    """An action name, an investor and a size in [1, 200]."""
    return (
        draw(st.sampled_from(ACTIONS)),
        draw(st.sampled_from(INVESTORS)),
        draw(st.integers(min_value=1, max_value=200)),
    )


def apply_operation(ledger, fund, operation, counter):
    action, investor, size = operation
    if action == "deposit":
        deposit(ledger, fund, investor, usdc(size))
    elif action == "fund":
        counter["invoices"] += 1
        fund_receivable(
            ledger, fund, f"INV-{counter['invoices']}", usdc(size),
            days=size % 90 + 1, spread_bps=size % 3 * 100, min_days=size % 31,
        )
    elif action in ("pay", "partial_pay"):
        unpaid = [i for i in fund.state.active_invoices if not get_invoice_details(ledger, i).is_paid]
        if unpaid:
            invoice_id = unpaid[size % len(unpaid)]
            outstanding = get_invoice_details(ledger, invoice_id).outstanding
            amount = outstanding if action == "pay" else max(outstanding // 2, Decimal(1))
            pay_invoice(ledger, invoice_id, amount)
    elif action == "redeem":
        shares = fund.max_redeem(investor)
        if shares > 0:
            fund.redeem(investor, shares)
    elif action == "queue":
        if fund.balance_of(investor) > 0:
            fund.redeem_and_or_queue(investor, fund.balance_of(investor))
    elif action == "time":
        counter["day"] += size // 4 + 1
        ledger.advance_time(START + timedelta(days=counter["day"]))
    elif action == "reconcile":
        fund.reconcile_active_paid_invoices()
    elif action == "impair":
        for invoice_id in fund.view_pool_status():
            fund.impair_invoice(OWNER, invoice_id)
    elif action == "buy_back":
        if fund.state.active_invoices:
            invoice_id = fund.state.active_invoices[0]
            faucet(ledger, SUPPLIER, usdc(200))
            fund.unfactor_invoice(SUPPLIER, invoice_id)
    elif action == "fees":
        if fund.state.protocol_fee_balance > 0:
            fund.withdraw_protocol_fees(TREASURY)
        if fund.state.admin_fee_balance > 0:
            fund.withdraw_admin_fees(OWNER)


def check_books(ledger, fund):
    result = ledger.verify_double_entry({ASSET: Decimal("0"), SHARES: Decimal("0")})
    assert result['valid'], result['discrepancies']

    holders = ledger.get_positions(SHARES)
    assert fund.total_supply() == sum(
        (q for w, q in holders.items() if w != SYSTEM_WALLET), Decimal("0")
    )
    account = fund.capital_account()
    assert account.pool_balance == ledger.get_balance(POOL, ASSET)
    assert account.pool_balance >= account.fees_owed + fund.state.impair_reserve
    assert account.liquid_assets >= Decimal("0")


# =============================================================================
# PROPERTIES
# =============================================================================

class TestConservationProperties:
    """Property-based conservation tests."""

    @given(st.lists(fund_operation(), min_size=1, max_size=30))
    @settings(max_examples=40, deadline=None)
    def test_books_balance_after_any_sequence(self, operations):
        """
        PROPERTY: No sequence of fund operations creates or destroys value.
        """
        ledger = make_ledger()
        fund = make_fund(ledger)
        counter = {"invoices": 0, "day": 0}

        for operation in operations:
            note(f"operation: {operation}")
            try:
                apply_operation(ledger, fund, operation, counter)
            except LedgerError:
                pass
            check_books(ledger, fund)

    @given(st.lists(st.integers(min_value=1, max_value=10**9), min_size=1, max_size=8))
    @settings(max_examples=50, deadline=None)
    def test_shares_track_deposits_without_activity(self, amounts):
        """
        PROPERTY: With no receivables, every share is backed 1:1 by the pool.
        """
        ledger = make_ledger()
        fund = make_fund(ledger)
        for i, amount in enumerate(amounts):
            deposit(ledger, fund, INVESTORS[i % len(INVESTORS)], Decimal(amount))
        assert fund.total_supply() == Decimal(sum(amounts))
        assert ledger.get_balance(POOL, ASSET) == Decimal(sum(amounts))
        assert fund.calculate_capital_account() == Decimal(sum(amounts))
