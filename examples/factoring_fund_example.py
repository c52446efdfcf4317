"""
Example: One receivable through a factoring fund.

Two investors deposit USDC, the fund advances cash against a 100 USDC
receivable, the debtor pays after 30 days and the keeper reconciles.
The second investor's exit is queued while the pool is deployed and paid
out as soon as the receivable settles.
"""

from datetime import datetime, timedelta
from decimal import Decimal

from factoring import (
    Ledger, Move, FactoringFund, FundConfig, FundKeeper, SYSTEM_WALLET,
    asset, build_transaction, create_invoice_unit,
    compute_invoice_issuance, compute_invoice_payment,
)


USDC = Decimal(1_000_000)


def faucet(ledger, wallet, amount):
    ledger.execute(build_transaction(ledger, [
        Move(amount, "USDC", SYSTEM_WALLET, wallet, f"faucet_{wallet}_{len(ledger.transaction_log)}")
    ]))


def show(fund):
    info = fund.get_fund_info()
    print(f"  fund balance      : {info.fund_balance / USDC:,.6f} USDC")
    print(f"  deployed capital  : {info.deployed_capital / USDC:,.6f} USDC")
    print(f"  capital account   : {info.capital_account / USDC:,.6f} USDC")
    print(f"  price per share   : {info.price / USDC:,.6f}")
    print(f"  available         : {info.tokens_available_for_redemption / USDC:,.6f} USDC")
    print(f"  queue length      : {info.queue_length}")
    print()


def main():
    print("=" * 80)
    print("FACTORING FUND - Deposit, Fund, Settle, Redeem")
    print("=" * 80)
    print()

    start = datetime(2025, 1, 1)
    ledger = Ledger("demo", initial_time=start, verbose=False)
    ledger.register_unit(asset("USDC", "USD Coin"))
    for wallet in ("alice", "bob", "supplier", "acme"):
        ledger.register_wallet(wallet)

    config = FundConfig(
        name="Demo Factoring Fund",
        asset="USDC",
        pool_wallet="pool",
        owner="owner",
        underwriter="underwriter",
        protocol_fee_receiver="treasury",
    )
    fund = FactoringFund.create(ledger, config, "BFT")

    print("Step 1: Deposits")
    print("-" * 80)
    faucet(ledger, "alice", 60 * USDC)
    faucet(ledger, "bob", 40 * USDC)
    fund.deposit("alice", 60 * USDC)
    fund.deposit("bob", 40 * USDC)
    show(fund)

    print("Step 2: Approve and fund a 100 USDC receivable due in 30 days")
    print("-" * 80)
    unit = create_invoice_unit("INV-001", "acme", "USDC", 100 * USDC, start + timedelta(days=30))
    ledger.execute(compute_invoice_issuance(ledger, unit, "supplier"))
    fund.approve_invoice("underwriter", "INV-001", 1000, 0, 8000, 30)
    fees = fund.calculate_target_fees("INV-001", 8000)
    gross, admin_fee, interest, spread, protocol_fee, net = fees.as_tuple()
    print(f"  gross {gross / USDC}, interest {interest / USDC}, admin {admin_fee / USDC}, "
          f"protocol {protocol_fee / USDC}, net {net / USDC}")
    fund.fund_invoice("supplier", "INV-001", 8000)
    show(fund)

    print("Step 3: Bob asks for everything back; the shortfall is queued")
    print("-" * 80)
    direct, queued = fund.redeem_and_or_queue("bob", fund.balance_of("bob"))
    print(f"  redeemed now {direct}, queued {queued} shares")
    show(fund)

    print("Step 4: The debtor pays on the due date; the keeper reconciles")
    print("-" * 80)
    faucet(ledger, "acme", 100 * USDC)
    ledger.execute(compute_invoice_payment(ledger, "INV-001", "acme", 100 * USDC))
    FundKeeper(fund).step(start + timedelta(days=30))
    for event in fund.events():
        if event.name in ("InvoicePaid", "InvoiceKickbackAmountSent", "RedemptionProcessed"):
            print(f"  {event!r}")
    print()
    show(fund)

    print("Step 5: Alice redeems with her share of the interest")
    print("-" * 80)
    paid = fund.redeem("alice", fund.max_redeem("alice"))
    print(f"  alice received {paid / USDC:,.6f} USDC")
    print(f"  bob holds      {ledger.get_balance('bob', 'USDC') / USDC:,.6f} USDC")
    print(f"  supplier holds {ledger.get_balance('supplier', 'USDC') / USDC:,.6f} USDC")
    print()

    result = ledger.verify_double_entry({"USDC": Decimal(0)})
    print(f"Double entry valid: {result['valid']}")


if __name__ == "__main__":
    main()
