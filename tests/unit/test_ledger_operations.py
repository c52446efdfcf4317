"""
Tests for ledger.py - Ledger Operations

Tests:
- Registration of wallets and units
- execute(): application, typed rejections, idempotency
- Audit event log
- clone() independence
- atomic(): all-or-nothing units of work, nesting
- Time management and test-mode balance setting
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    Ledger, Move, AuditEvent, ExecuteResult, TransactionOrigin, OriginType,
    PendingTransaction, asset, build_transaction,
    LedgerError, InsufficientFunds, BalanceConstraintViolation,
    UnitNotRegistered, WalletNotRegistered,
    SYSTEM_WALLET,
)

from tests.fund_builders import make_ledger, faucet, usdc, ASSET, START


def transfer(ledger, qty, source, dest, contract_id="transfer", events=None):
    return build_transaction(
        ledger, [Move(Decimal(qty), ASSET, source, dest, contract_id)], events=events,
    )


# ============================================================================
# Registration
# ============================================================================

class TestRegistration:

    def test_system_wallet_is_preregistered(self):
        ledger = Ledger("t", verbose=False)
        assert ledger.is_registered(SYSTEM_WALLET)

    def test_register_wallet_twice_fails(self, ledger):
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_wallet("alice")

    def test_register_unit_twice_fails(self, ledger):
        with pytest.raises(ValueError, match="already registered"):
            ledger.register_unit(asset(ASSET, "USD Coin"))

    def test_get_balance_unknown_wallet(self, ledger):
        with pytest.raises(WalletNotRegistered):
            ledger.get_balance("mallory", ASSET)

    def test_get_balance_unknown_unit(self, ledger):
        with pytest.raises(UnitNotRegistered):
            ledger.get_balance("alice", "EURC")

    def test_list_units_and_wallet_balances(self, ledger):
        assert ledger.list_units() == [ASSET]
        faucet(ledger, "alice", usdc(3))
        assert ledger.get_wallet_balances("alice") == {ASSET: usdc(3)}

    def test_new_wallet_has_zero_balance(self, ledger):
        assert ledger.get_balance("alice", ASSET) == Decimal("0")


# ============================================================================
# Execution
# ============================================================================

class TestExecute:

    def test_applies_move(self, ledger):
        faucet(ledger, "alice", usdc(10))
        assert ledger.execute(transfer(ledger, usdc(4), "alice", "bob")) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice", ASSET) == usdc(6)
        assert ledger.get_balance("bob", ASSET) == usdc(4)

    def test_overdraft_rejected_with_typed_reason(self, ledger):
        result = ledger.execute(transfer(ledger, usdc(1), "alice", "bob"))
        assert result == ExecuteResult.REJECTED
        assert isinstance(ledger.last_rejection, InsufficientFunds)
        assert ledger.get_balance("bob", ASSET) == Decimal("0")

    def test_system_wallet_may_go_negative(self, ledger):
        faucet(ledger, "alice", usdc(1))
        assert ledger.get_balance(SYSTEM_WALLET, ASSET) == -usdc(1)

    def test_unregistered_wallet_rejected(self, ledger):
        faucet(ledger, "alice", usdc(1))
        result = ledger.execute(transfer(ledger, usdc(1), "alice", "mallory"))
        assert result == ExecuteResult.REJECTED
        assert isinstance(ledger.last_rejection, WalletNotRegistered)

    def test_max_balance_enforced(self, ledger):
        from factoring import create_invoice_unit, compute_invoice_issuance
        unit = create_invoice_unit("INV-1", "acme", ASSET, usdc(1), START + timedelta(days=30))
        ledger.execute(compute_invoice_issuance(ledger, unit, "supplier"))
        tx = build_transaction(ledger, [Move(Decimal("1"), "INV-1", SYSTEM_WALLET, "supplier", "dup")])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(ledger.last_rejection, BalanceConstraintViolation)

    def test_idempotent_on_intent_id(self, ledger):
        faucet(ledger, "alice", usdc(10))
        tx = transfer(ledger, usdc(1), "alice", "bob")
        assert ledger.execute(tx) == ExecuteResult.APPLIED
        assert ledger.execute(tx) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob", ASSET) == usdc(1)

    def test_future_timestamp_rejected(self, ledger):
        faucet(ledger, "alice", usdc(1))
        tx = PendingTransaction(
            moves=(Move(usdc(1), ASSET, "alice", "bob", "t"),),
            state_changes=(),
            origin=TransactionOrigin(OriginType.USER_ACTION, "alice"),
            timestamp=START + timedelta(days=1),
        )
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert isinstance(ledger.last_rejection, LedgerError)

    def test_empty_transaction_is_noop(self, ledger):
        from factoring import empty_pending_transaction
        before = len(ledger.transaction_log)
        assert ledger.execute(empty_pending_transaction(ledger)) == ExecuteResult.APPLIED
        assert len(ledger.transaction_log) == before

    def test_positions_include_system_wallet(self, ledger):
        faucet(ledger, "alice", usdc(5))
        positions = ledger.get_positions(ASSET)
        assert positions["alice"] == usdc(5)
        assert positions[SYSTEM_WALLET] == -usdc(5)

    def test_total_supply_is_conserved(self, ledger):
        faucet(ledger, "alice", usdc(5))
        ledger.execute(transfer(ledger, usdc(2), "alice", "bob"))
        assert ledger.total_supply(ASSET) == Decimal("0")
        assert ledger.verify_double_entry({ASSET: Decimal("0")})['valid']


# ============================================================================
# Audit log
# ============================================================================

class TestAuditLog:

    def test_events_recorded_with_transaction(self, ledger):
        faucet(ledger, "alice", usdc(1))
        ev = AuditEvent("Transferred", (("amount", usdc(1)),))
        ledger.execute(transfer(ledger, usdc(1), "alice", "bob", events=[ev]))
        assert list(ledger.iter_events("Transferred")) == [ev]

    def test_rejected_transaction_records_no_events(self, ledger):
        ev = AuditEvent("Transferred")
        ledger.execute(transfer(ledger, usdc(1), "alice", "bob", events=[ev]))
        assert list(ledger.iter_events("Transferred")) == []


# ============================================================================
# clone() and atomic()
# ============================================================================

class TestCloneAndAtomic:

    def test_clone_is_independent(self, ledger):
        faucet(ledger, "alice", usdc(10))
        copy = ledger.clone()
        ledger.execute(transfer(ledger, usdc(3), "alice", "bob"))
        assert copy.get_balance("alice", ASSET) == usdc(10)
        assert copy.get_balance("bob", ASSET) == Decimal("0")
        assert len(copy.transaction_log) == len(ledger.transaction_log) - 1

    def test_atomic_commits_on_success(self, ledger):
        faucet(ledger, "alice", usdc(10))
        with ledger.atomic():
            ledger.execute(transfer(ledger, usdc(3), "alice", "bob"))
            ledger.execute(transfer(ledger, usdc(1), "bob", "carol"))
        assert ledger.get_balance("bob", ASSET) == usdc(2)
        assert ledger.get_balance("carol", ASSET) == usdc(1)

    def test_atomic_rolls_back_on_exception(self, ledger):
        faucet(ledger, "alice", usdc(10))
        log_length = len(ledger.transaction_log)
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.execute(transfer(ledger, usdc(3), "alice", "bob"))
                raise RuntimeError("second step failed")
        assert ledger.get_balance("alice", ASSET) == usdc(10)
        assert ledger.get_balance("bob", ASSET) == Decimal("0")
        assert len(ledger.transaction_log) == log_length

    def test_rolled_back_intent_can_be_retried(self, ledger):
        faucet(ledger, "alice", usdc(10))
        tx = transfer(ledger, usdc(3), "alice", "bob")
        with pytest.raises(RuntimeError):
            with ledger.atomic():
                ledger.execute(tx)
                raise RuntimeError("abort")
        assert ledger.execute(tx) == ExecuteResult.APPLIED

    def test_nested_inner_failure_only_undoes_inner(self, ledger):
        faucet(ledger, "alice", usdc(10))
        with ledger.atomic():
            ledger.execute(transfer(ledger, usdc(1), "alice", "bob"))
            with pytest.raises(RuntimeError):
                with ledger.atomic():
                    ledger.execute(transfer(ledger, usdc(2), "alice", "carol"))
                    raise RuntimeError("inner")
        assert ledger.get_balance("bob", ASSET) == usdc(1)
        assert ledger.get_balance("carol", ASSET) == Decimal("0")


# ============================================================================
# Time and test mode
# ============================================================================

class TestTimeAndTestMode:

    def test_time_cannot_go_backwards(self, ledger):
        with pytest.raises(ValueError, match="backwards"):
            ledger.advance_time(START - timedelta(seconds=1))

    def test_advance_time(self, ledger):
        ledger.advance_time(START + timedelta(days=3))
        assert ledger.current_time == datetime(2025, 1, 4)

    def test_set_balance_requires_test_mode(self):
        ledger = Ledger("prod", START, verbose=False)
        ledger.register_unit(asset(ASSET, "USD Coin"))
        ledger.register_wallet("alice")
        with pytest.raises(LedgerError, match="disabled in production"):
            ledger.set_balance("alice", ASSET, Decimal("1"))

    def test_set_balance_in_test_mode(self, ledger):
        ledger.set_balance("alice", ASSET, usdc(7))
        assert ledger.get_balance("alice", ASSET) == usdc(7)
        assert ledger.get_positions(ASSET)["alice"] == usdc(7)
