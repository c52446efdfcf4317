"""
Idempotency Conformance Tests

INVARIANT: Duplicate execution is detected and prevented.

    ∀ transaction T:
        execute(T) = APPLIED ⟹ execute(T) again = ALREADY_APPLIED
        state after second execute = state after first execute

Fund operations are computed as pending transactions first, so a retried
submission of the same intent can never pay, mint or fund twice.
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from factoring import ExecuteResult, compute_deposit
from factoring.config import compute_withdraw_protocol_fees

from tests.fund_builders import (
    make_ledger, make_fund, deposit, fund_receivable, faucet, usdc,
    ASSET, SHARES, POOL, TREASURY,
)


class TestIdempotencyProperties:
    """Property-based idempotency tests."""

    @given(st.integers(min_value=1, max_value=10**9), st.integers(min_value=1, max_value=5))
    @settings(max_examples=50, deadline=None)
    def test_deposit_intent_applies_once(self, amount, num_repeats):
        """
        PROPERTY: Re-submitting a deposit intent N times mints shares once.
        """
        ledger = make_ledger()
        fund = make_fund(ledger)
        faucet(ledger, "alice", Decimal(amount) * 2)

        tx = compute_deposit(ledger, SHARES, fund.provider, "alice", Decimal(amount))
        results = [ledger.execute(tx) for _ in range(num_repeats + 1)]

        assert results[0] == ExecuteResult.APPLIED
        assert all(r == ExecuteResult.ALREADY_APPLIED for r in results[1:])
        assert fund.balance_of("alice") == Decimal(amount)
        assert ledger.get_balance(POOL, ASSET) == Decimal(amount)

    @given(st.integers(min_value=1, max_value=5))
    @settings(max_examples=10, deadline=None)
    def test_fee_withdrawal_intent_applies_once(self, num_repeats):
        """
        PROPERTY: A fee withdrawal intent pays the receiver once.
        """
        ledger = make_ledger()
        fund = make_fund(ledger)
        deposit(ledger, fund, "alice", usdc(100))
        fund_receivable(ledger, fund)

        tx = compute_withdraw_protocol_fees(ledger, SHARES, TREASURY)
        results = [ledger.execute(tx) for _ in range(num_repeats + 1)]

        assert results[0] == ExecuteResult.APPLIED
        assert all(r == ExecuteResult.ALREADY_APPLIED for r in results[1:])
        assert ledger.get_balance(TREASURY, ASSET) == Decimal(200000)
        assert fund.state.protocol_fee_balance == Decimal(0)


class TestRepeatedOperations:

    def test_same_deposit_twice_is_two_intents(self, ledger, fund):
        """Two deposits of the same size are different intents: fund state moves on."""
        faucet(ledger, "alice", usdc(20))
        first = compute_deposit(ledger, SHARES, fund.provider, "alice", usdc(10))
        assert ledger.execute(first) == ExecuteResult.APPLIED
        second = compute_deposit(ledger, SHARES, fund.provider, "alice", usdc(10))
        assert second.intent_id != first.intent_id
        assert ledger.execute(second) == ExecuteResult.APPLIED
        assert fund.balance_of("alice") == usdc(20)

