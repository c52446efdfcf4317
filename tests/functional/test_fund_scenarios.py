"""
test_fund_scenarios.py - End-to-end fund scenarios

Each test drives a fund through a full story, the way an operator would:
deposits, approvals, fundings, payments, reconciliation, redemptions.

Scenarios:
- Single receivable paid on time; depositor exits with the interest
- Two depositors stuck behind a fully deployed pool, paid FIFO
- Withdraw-and-queue released by reconciliation
- Write-off followed by full recovery
- Buy-back before the due date
- Several investors and receivables under the keeper, fees paid out
- Capital calls on committed investors releasing a queued exit
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from factoring import FundKeeper, FundManager, InsufficientFunds, InvoiceStatus, OriginType

from tests.fund_builders import (
    deposit, fund_receivable, pay_invoice, faucet, usdc,
    START, ASSET, POOL, OWNER, TREASURY, SUPPLIER,
)


D = Decimal


class TestOnTimePayment:

    def test_depositor_earns_the_interest(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        assert deposit(ledger, fund, "alice", usdc(100)) == usdc(100)

        net = fund_receivable(ledger, fund)
        assert net == D(79342466)
        assert ledger.get_balance(POOL, ASSET) == D(20657534)
        assert fund.price_per_share() == D(1000000)

        ledger.advance_time(START + timedelta(days=30))
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()

        # interest / supply = 657534 / 100_000000 per share
        assert fund.price_per_share() == D(1006575)
        assert fund.max_redeem("alice") == usdc(100)
        assert fund.max_withdraw("alice") == D(100657534)

        assert fund.redeem("alice", usdc(100)) == D(100657534)
        assert ledger.get_balance("alice", ASSET) == D(100657534)
        assert ledger.get_balance(SUPPLIER, ASSET) == D(79342466) + usdc(20)
        assert ledger.get_balance(POOL, ASSET) == D(0)

    def test_price_grows_daily_while_outstanding(self, ledger, zero_fee_fund):
        deposit(ledger, zero_fee_fund, "alice", usdc(100))
        fund_receivable(ledger, zero_fee_fund)
        prices = []
        for day in (0, 10, 20, 30):
            ledger.advance_time(START + timedelta(days=day))
            prices.append(zero_fee_fund.price_per_share())
        assert prices == sorted(prices)
        assert prices[0] < prices[-1]


class TestQueuedExit:

    def test_fifo_payout_when_liquidity_arrives(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", D(500_000))
        deposit(ledger, fund, "bob", D(300_000))
        fund_receivable(ledger, fund, amount=D(1_000_000), target_yield_bps=0, min_days=0)
        assert fund.available_assets() == D(0)

        assert fund.redeem_and_or_queue("alice", D(500_000)) == (D(0), D(500_000))
        assert fund.redeem_and_or_queue("bob", D(300_000)) == (D(0), D(300_000))

        deposit(ledger, fund, "carol", D(500_000))

        assert ledger.get_balance("alice", ASSET) == D(500_000)
        assert ledger.get_balance("bob", ASSET) == D(0)
        head = fund.get_next_redemption()
        assert (head.owner, head.shares) == ("bob", D(300_000))

        # the receivable pays and bob is released by reconciliation
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()
        assert ledger.get_balance("bob", ASSET) == D(300_000)
        assert fund.is_queue_empty()
        assert fund.balance_of("carol") == D(500_000)

    def test_withdraw_and_queue_released_by_payment(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", D(1_000_000))
        fund_receivable(ledger, fund, amount=D(1_000_000), target_yield_bps=0, min_days=0)

        assert fund.withdraw_and_or_queue("alice", D(500_000)) == (D(200_000), D(300_000))

        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()

        (kickback,) = fund.events("InvoiceKickbackAmountSent")
        assert kickback.get("kickback_amount") == D(200_000)
        (processed,) = fund.events("RedemptionProcessed")
        assert processed.get("assets") == D(300_000)
        assert ledger.get_balance("alice", ASSET) == D(500_000)

    def test_every_origin_kind_is_recorded(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", D(1_000_000))
        fund_receivable(ledger, fund, amount=D(1_000_000), target_yield_bps=0, min_days=0)
        fund.redeem_and_or_queue("alice", D(500_000))
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()

        origins = {tx.origin.origin_type for tx in ledger.transaction_log}
        assert origins == set(OriginType)


class TestWriteOffAndRecovery:

    def test_impairment_then_full_payment(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", usdc(100))
        faucet(ledger, OWNER, usdc(2))
        fund.set_impair_reserve(OWNER, usdc(2))
        fund_receivable(ledger, fund)

        ledger.advance_time(START + timedelta(days=91))
        assert fund.view_pool_status() == ["INV-1"]
        assert fund.calculate_capital_account() == D(20657534)

        details = fund.impair_invoice(OWNER, "INV-1")
        assert (details.gain_amount, details.loss_amount) == (usdc(1), D(79342466))
        assert fund.calculate_capital_account() == D(21657534)

        ledger.advance_time(START + timedelta(days=92))
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()

        assert ledger.get_balance(POOL, ASSET) == D(104016438)
        capital = fund.calculate_capital_account()
        realized = fund.calculate_realized_gain_loss()
        assert capital == D(103016438)
        assert realized == D(3016438)
        assert capital == usdc(100) + realized

    def test_depositor_redeems_after_recovery(self, ledger, zero_fee_fund):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", usdc(100))
        fund_receivable(ledger, fund)
        ledger.advance_time(START + timedelta(days=91))
        fund.impair_invoice(OWNER, "INV-1")
        pay_invoice(ledger)
        fund.reconcile_active_paid_invoices()
        paid = fund.redeem("alice", fund.max_redeem("alice"))
        assert paid == fund.calculate_realized_gain_loss() + usdc(100)


class TestBuyBack:

    @pytest.mark.parametrize("paid_first, owed", [
        (D(0), usdc(80)),
        (usdc(30), usdc(50)),
        (usdc(90), -usdc(10)),
    ])
    def test_pool_made_whole(self, ledger, zero_fee_fund, paid_first, owed):
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", usdc(100))
        fund_receivable(ledger, fund)
        ledger.advance_time(START + timedelta(days=10))
        if paid_first:
            pay_invoice(ledger, amount=paid_first)
        faucet(ledger, SUPPLIER, D(657534))

        assert fund.unfactor_invoice(SUPPLIER, "INV-1") == owed
        assert ledger.get_balance(POOL, ASSET) == D(100657534)
        assert fund.calculate_capital_account() == D(100657534)
        assert ledger.get_balance(SUPPLIER, "INV-1") == D(1)
        assert fund.invoice_status("INV-1") == InvoiceStatus.UNFACTORED


class TestFundUnderKeeper:

    def test_many_investors_and_receivables(self, ledger, fund):
        deposit(ledger, fund, "alice", usdc(300))
        deposit(ledger, fund, "bob", usdc(200))
        fund_receivable(ledger, fund, "INV-1", usdc(100), days=30, spread_bps=50)
        fund_receivable(ledger, fund, "INV-2", usdc(150), days=45, target_yield_bps=1200)
        fund_receivable(ledger, fund, "INV-3", usdc(80), days=20, upfront_bps=7000)

        keeper = FundKeeper(fund, auto_impair=True)
        keeper.step(START + timedelta(days=20))
        pay_invoice(ledger, "INV-3")
        keeper.step(START + timedelta(days=30))
        pay_invoice(ledger, "INV-1")
        keeper.step(START + timedelta(days=46))
        assert fund.state.active_invoices == ("INV-2",)

        keeper.run([START + timedelta(days=d) for d in (60, 90, 106)])
        assert fund.invoice_status("INV-2") == InvoiceStatus.IMPAIRED

        fund.withdraw_protocol_fees(TREASURY)
        fund.withdraw_admin_fees(OWNER)
        fund.withdraw_spread_gains(OWNER)
        assert fund.capital_account().fees_owed == D(0)

        for investor in ("alice", "bob"):
            fund.redeem_and_or_queue(investor, fund.balance_of(investor))
        assert fund.total_supply() == D(0)
        assert fund.is_queue_empty()
        # rounding dust may stay in the pool, never more than one unit per redemption
        assert D(0) <= ledger.get_balance(POOL, ASSET) <= D(2)
        assert ledger.verify_double_entry({ASSET: D(0)})['valid']


class TestCommittedCapital:

    @pytest.fixture
    def queued_exit(self, ledger, zero_fee_fund):
        """alice holds 1_000_000, 800_000 is lent out and 300_000 of her exit waits."""
        fund = zero_fee_fund
        deposit(ledger, fund, "alice", D(1_000_000))
        fund_receivable(ledger, fund, amount=D(1_000_000), target_yield_bps=0, min_days=0)
        assert fund.redeem_and_or_queue("alice", D(500_000)) == (D(200_000), D(300_000))
        manager = FundManager(fund, min_investment=D(100_000), capital_caller="dave")
        manager.commit("bob", D(2_000_000))
        manager.commit("carol", D(1_000_000))
        return manager

    def test_capital_call_releases_the_queue(self, ledger, queued_exit):
        manager, fund = queued_exit, queued_exit.fund
        faucet(ledger, "bob", D(400_000))
        faucet(ledger, "carol", D(200_000))

        assert manager.capital_call("dave", D(600_000)) == {"bob": D(400_000), "carol": D(200_000)}

        assert fund.is_queue_empty()
        assert ledger.get_balance("alice", ASSET) == D(500_000)
        assert fund.balance_of("alice") == D(500_000)
        assert fund.available_assets() == D(300_000)
        assert manager.total_outstanding() == D(2_400_000)

    def test_failed_call_keeps_the_queue(self, ledger, queued_exit):
        manager, fund = queued_exit, queued_exit.fund
        faucet(ledger, "bob", D(400_000))

        with pytest.raises(InsufficientFunds):
            manager.capital_call("dave", D(600_000))

        # bob's deposit and the payout it triggered are undone with carol's failure
        assert ledger.get_balance("bob", ASSET) == D(400_000)
        assert ledger.get_balance("alice", ASSET) == D(200_000)
        assert fund.get_total_queued_for_owner("alice") == (D(300_000), D(0))
        assert manager.total_called() == D(0)
