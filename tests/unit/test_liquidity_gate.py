"""
Tests for liquidity.py - Deposits, Redemptions and the Redemption Queue

Tests:
- deposit / redeem / withdraw against available liquidity
- max_redeem / max_withdraw, including the queue-waiting rule
- redeem_and_or_queue / withdraw_and_or_queue splits
- FIFO queue drain triggered by liquidity-changing operations
- Cancellation, compaction and clearing through the fund
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from factoring import (
    AccessControl, AllowList, Move, ExecuteResult, QueuedRedemption, build_transaction,
    NotAuthorized, InvalidAmount, InvalidReceiver, InsufficientFunds, InsufficientLiquidity,
    InvalidQueueIndex,
)

from tests.fund_builders import (
    make_fund, deposit, fund_receivable, pay_invoice, faucet, usdc,
    START, ASSET, SHARES, POOL, OWNER, SUPPLIER,
)


D = Decimal


def tie_up(ledger, fund, value=D(1_000_000)):
    """Fund a zero-yield receivable that consumes 80% of value."""
    return fund_receivable(ledger, fund, amount=value, target_yield_bps=0, min_days=0)


@pytest.fixture
def locked(ledger, zero_fee_fund):
    """alice 500_000 and bob 300_000 deposited, all of it lent out."""
    deposit(ledger, zero_fee_fund, "alice", D(500_000))
    deposit(ledger, zero_fee_fund, "bob", D(300_000))
    tie_up(ledger, zero_fee_fund)
    assert zero_fee_fund.available_assets() == D(0)
    return zero_fee_fund


@pytest.fixture
def settled(ledger, zero_fee_fund):
    """The worked example after the debtor paid and the fund reconciled."""
    deposit(ledger, zero_fee_fund, "alice", usdc(100))
    fund_receivable(ledger, zero_fee_fund)
    ledger.advance_time(START + timedelta(days=30))
    pay_invoice(ledger)
    zero_fee_fund.reconcile_active_paid_invoices()
    return zero_fee_fund


# ============================================================================
# Deposit
# ============================================================================

class TestDeposit:

    def test_first_deposit_one_to_one(self, ledger, zero_fee_fund):
        assert deposit(ledger, zero_fee_fund, "alice", usdc(100)) == usdc(100)
        assert zero_fee_fund.balance_of("alice") == usdc(100)
        assert zero_fee_fund.total_supply() == usdc(100)
        assert ledger.get_balance(POOL, ASSET) == usdc(100)
        (event,) = zero_fee_fund.events("Deposit")
        assert event.get("sender") == "alice"
        assert event.get("shares") == usdc(100)

    def test_receiver_gets_shares(self, ledger, zero_fee_fund):
        faucet(ledger, "alice", usdc(5))
        zero_fee_fund.deposit("alice", usdc(5), receiver="bob")
        assert zero_fee_fund.balance_of("bob") == usdc(5)
        assert zero_fee_fund.balance_of("alice") == D(0)

    def test_pool_cannot_receive_shares(self, ledger, zero_fee_fund):
        faucet(ledger, "alice", usdc(5))
        with pytest.raises(InvalidReceiver, match="pool"):
            zero_fee_fund.deposit("alice", usdc(5), receiver=POOL)
        assert zero_fee_fund.total_supply() == D(0)
        assert ledger.get_balance("alice", ASSET) == usdc(5)

    def test_later_deposit_at_current_price(self, ledger, settled):
        assert settled.preview_deposit(usdc(10)) == D(9934676)
        assert deposit(ledger, settled, "bob", usdc(10)) == D(9934676)

    @pytest.mark.parametrize("amount", [D(0), D(-5), D("1.5")])
    def test_invalid_amount(self, zero_fee_fund, amount):
        with pytest.raises(InvalidAmount):
            zero_fee_fund.deposit("alice", amount)

    def test_without_funds(self, ledger, zero_fee_fund):
        with pytest.raises(InsufficientFunds):
            zero_fee_fund.deposit("alice", usdc(1))
        assert zero_fee_fund.total_supply() == D(0)

    def test_deposit_permission(self, ledger):
        fund = make_fund(ledger, access=AccessControl(deposit=AllowList(["alice"])))
        deposit(ledger, fund, "alice", usdc(1))
        with pytest.raises(NotAuthorized, match="may not deposit"):
            deposit(ledger, fund, "bob", usdc(1))


# ============================================================================
# Direct redemption
# ============================================================================

class TestRedeemAndWithdraw:

    def test_limits_after_settlement(self, settled):
        assert settled.max_redeem("alice") == usdc(100)
        assert settled.max_withdraw("alice") == D(100657534)
        assert settled.preview_redeem(usdc(100)) == D(100657534)

    def test_redeem_everything(self, ledger, settled):
        assert settled.redeem("alice", usdc(100)) == D(100657534)
        assert ledger.get_balance("alice", ASSET) == D(100657534)
        assert ledger.get_balance(POOL, ASSET) == D(0)
        assert settled.total_supply() == D(0)
        (event,) = settled.events("Withdraw")
        assert event.get("owner") == "alice"
        assert event.get("assets") == D(100657534)

    def test_withdraw_burns_rounded_up(self, ledger, settled):
        assert settled.preview_withdraw(usdc(1)) == D(993468)
        assert settled.withdraw("alice", usdc(1)) == D(993468)
        assert ledger.get_balance("alice", ASSET) == usdc(1)
        assert settled.balance_of("alice") == usdc(100) - D(993468)

    def test_limited_by_liquidity(self, ledger, zero_fee_fund):
        deposit(ledger, zero_fee_fund, "alice", usdc(100))
        fund_receivable(ledger, zero_fee_fund)
        assert zero_fee_fund.max_redeem("alice") == D(20657534)
        assert zero_fee_fund.max_withdraw("alice") == D(20657534)
        with pytest.raises(InsufficientLiquidity):
            zero_fee_fund.redeem("alice", D(20657535))
        with pytest.raises(InsufficientLiquidity):
            zero_fee_fund.withdraw("alice", D(20657535))
        assert zero_fee_fund.redeem("alice", D(20657534)) == D(20657534)

    def test_only_owner_redeems(self, settled):
        with pytest.raises(NotAuthorized):
            settled.redeem("bob", usdc(1), owner="alice")

    def test_receiver_cannot_be_pool(self, settled):
        with pytest.raises(InvalidReceiver):
            settled.redeem("alice", usdc(1), receiver=POOL)

    def test_more_than_held(self, settled):
        with pytest.raises(InsufficientFunds):
            settled.redeem("alice", usdc(101))

    def test_redeem_to_receiver(self, ledger, settled):
        settled.withdraw("alice", usdc(1), receiver="carol")
        assert ledger.get_balance("carol", ASSET) == usdc(1)

    def test_redeem_permission(self, ledger):
        fund = make_fund(ledger, access=AccessControl(redeem=AllowList(["bob"])))
        deposit(ledger, fund, "alice", usdc(1))
        with pytest.raises(NotAuthorized, match="may not redeem"):
            fund.redeem("alice", usdc(1))


# ============================================================================
# Redeem / withdraw with queueing
# ============================================================================

class TestQueueing:

    def test_partial_direct_rest_queued(self, ledger, zero_fee_fund):
        deposit(ledger, zero_fee_fund, "alice", usdc(100))
        fund_receivable(ledger, zero_fee_fund)
        direct, queued = zero_fee_fund.redeem_and_or_queue("alice", usdc(50))
        assert direct == D(20657534)
        assert queued == usdc(50) - D(20657534)
        assert ledger.get_balance("alice", ASSET) == D(20657534)
        assert zero_fee_fund.get_total_queued_for_owner("alice") == (queued, D(0))

    def test_everything_queued_without_liquidity(self, locked):
        assert locked.redeem_and_or_queue("alice", D(500_000)) == (D(0), D(500_000))
        assert locked.redeem_and_or_queue("bob", D(300_000)) == (D(0), D(300_000))
        assert locked.get_queue_length() == 2
        assert locked.get_next_redemption() == QueuedRedemption("alice", "alice", D(500_000), D(0))
        (first, second) = locked.events("RedemptionQueued")
        assert (first.get("index"), second.get("index")) == (0, 1)

    def test_deposit_drains_queue_in_order(self, ledger, locked):
        locked.redeem_and_or_queue("alice", D(500_000))
        locked.redeem_and_or_queue("bob", D(300_000))
        assert deposit(ledger, locked, "carol", D(500_000)) == D(500_000)
        assert ledger.get_balance("alice", ASSET) == D(500_000)
        assert locked.balance_of("alice") == D(0)
        assert locked.get_next_redemption().owner == "bob"
        assert locked.get_total_queued_for_owner("bob") == (D(300_000), D(0))
        (processed,) = locked.events("RedemptionProcessed")
        assert processed.get("remaining_shares") == D(0)

    def test_partial_payout_keeps_head(self, ledger, locked):
        locked.redeem_and_or_queue("alice", D(500_000))
        locked.redeem_and_or_queue("bob", D(300_000))
        deposit(ledger, locked, "carol", D(200_000))
        assert ledger.get_balance("alice", ASSET) == D(200_000)
        head = locked.get_next_redemption()
        assert (head.owner, head.shares) == ("alice", D(300_000))
        assert locked.get_queue_length() == 2

    def test_direct_limits_zero_while_queue_waits(self, ledger, locked):
        locked.redeem_and_or_queue("alice", D(500_000))
        locked.redeem_and_or_queue("bob", D(300_000))
        deposit(ledger, locked, "carol", D(200_000))
        assert locked.max_redeem("carol") == D(0)
        assert locked.max_withdraw("carol") == D(0)
        with pytest.raises(InsufficientLiquidity):
            locked.redeem("carol", D(1))

    def test_withdraw_and_or_queue(self, ledger, zero_fee_fund):
        deposit(ledger, zero_fee_fund, "alice", D(1_000_000))
        tie_up(ledger, zero_fee_fund)
        direct, queued = zero_fee_fund.withdraw_and_or_queue("alice", D(500_000))
        assert (direct, queued) == (D(200_000), D(300_000))
        assert zero_fee_fund.get_total_queued_for_owner("alice") == (D(0), D(300_000))

        pay_invoice(ledger)
        assert zero_fee_fund.reconcile_active_paid_invoices() == ("INV-1",)
        assert ledger.get_balance(SUPPLIER, ASSET) == D(800_000) + D(200_000)
        assert ledger.get_balance("alice", ASSET) == D(500_000)
        assert zero_fee_fund.is_queue_empty()
        assert zero_fee_fund.balance_of("alice") == D(500_000)

    @pytest.mark.parametrize("alice_assets, bob_assets", [
        (usdc(100), usdc(7)),
        (D(682128), D(311)),
        (D(1_234_567), D(98_765)),
    ])
    def test_withdrawing_everything_is_paid_in_full(self, ledger, fund, alice_assets, bob_assets):
        deposit(ledger, fund, "alice", alice_assets)
        deposit(ledger, fund, "bob", bob_assets)
        fund_receivable(ledger, fund, amount=alice_assets + bob_assets)
        ledger.advance_time(START + timedelta(days=10))

        shares = fund.balance_of("alice")
        everything = fund.convert_to_assets(shares)
        direct, queued = fund.withdraw_and_or_queue("alice", everything)
        assert direct > D(0)
        assert direct + queued == everything

        # the remainder takes every share left, so it waits as a share amount
        (withdrawn,) = fund.events("Withdraw")
        left = shares - withdrawn.get("shares")
        assert fund.get_total_queued_for_owner("alice") == (left, D(0))

        ledger.advance_time(START + timedelta(days=30))
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()

        assert fund.events("RedemptionCancelled") == []
        assert fund.is_queue_empty()
        assert fund.balance_of("alice") == D(0)
        assert ledger.get_balance("alice", ASSET) > direct

    def test_requeue_replaces_entry(self, locked):
        locked.redeem_and_or_queue("alice", D(100_000))
        locked.redeem_and_or_queue("bob", D(300_000))
        locked.redeem_and_or_queue("alice", D(400_000))
        assert locked.get_next_redemption().owner == "bob"
        assert locked.get_queued_redemptions_for_owner("alice") == [2]
        assert locked.get_total_queued_for_owner("alice") == (D(400_000), D(0))
        (replaced,) = locked.events("RedemptionCancelled")
        assert replaced.get("reason") == "replaced"
        assert replaced.get("shares") == D(100_000)

    def test_owner_must_hold_whole_request(self, locked):
        with pytest.raises(InsufficientFunds):
            locked.redeem_and_or_queue("bob", D(300_001))
        with pytest.raises(InsufficientFunds):
            locked.withdraw_and_or_queue("bob", D(300_001))

    def test_owner_without_shares_is_cancelled_by_drain(self, ledger, locked):
        locked.redeem_and_or_queue("alice", D(500_000))
        tx = build_transaction(ledger, [Move(D(500_000), SHARES, "alice", "dave", "gift")])
        assert ledger.execute(tx) == ExecuteResult.APPLIED

        deposit(ledger, locked, "carol", D(100_000))
        (cancelled,) = locked.events("RedemptionCancelled")
        assert cancelled.get("owner") == "alice"
        assert cancelled.get("reason") == "insufficient_balance"
        assert locked.is_queue_empty()
        assert locked.available_assets() == D(100_000)


# ============================================================================
# Queue administration through the fund
# ============================================================================

class TestQueueAdministration:

    @pytest.fixture
    def waiting(self, locked):
        locked.redeem_and_or_queue("alice", D(500_000))
        locked.redeem_and_or_queue("bob", D(300_000))
        return locked

    def test_owner_cancels_own(self, waiting):
        entry = waiting.cancel_queued_redemption("alice", 0)
        assert entry.shares == D(500_000)
        assert waiting.get_next_redemption().owner == "bob"
        (event,) = waiting.events("RedemptionCancelled")
        assert event.get("reason") == "cancelled"

    def test_fund_owner_cancels_any(self, waiting):
        waiting.cancel_queued_redemption(OWNER, 1)
        assert waiting.get_queued_redemptions_for_owner("bob") == []

    def test_stranger_cannot_cancel(self, waiting):
        with pytest.raises(NotAuthorized):
            waiting.cancel_queued_redemption("carol", 0)

    def test_bad_index(self, waiting):
        with pytest.raises(InvalidQueueIndex):
            waiting.cancel_queued_redemption(OWNER, 7)

    def test_compact(self, waiting):
        waiting.cancel_queued_redemption("alice", 0)
        assert waiting.compact_queue(OWNER) == 1
        assert waiting.get_queued_redemptions_for_owner("bob") == [0]

    def test_clear(self, waiting):
        assert waiting.clear_queue(OWNER) == 2
        assert waiting.is_queue_empty()
        assert waiting.max_redeem("alice") == D(0)

    def test_admin_is_owner_only(self, waiting):
        with pytest.raises(NotAuthorized):
            waiting.compact_queue("alice")
        with pytest.raises(NotAuthorized):
            waiting.clear_queue("alice")

    def test_stats(self, waiting):
        stats = waiting.get_queue_stats()
        assert (stats.length, stats.total_shares, stats.total_assets) == (2, D(800_000), D(0))

    def test_manual_drain_without_liquidity(self, waiting):
        assert waiting.process_redemption_queue() == ()
