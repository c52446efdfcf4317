"""
keeper.py - Fund Keeper

Automation for a FactoringFund. Each step():
1. Advance ledger time
2. Reconcile if check_upkeep() reports paid receivables
3. Optionally impair receivables past due date plus grace period

Work is recorded in the ledger's transaction log like any other operation;
step() returns the transactions it caused.
"""

from __future__ import annotations
from datetime import datetime
from typing import List

from .core import Transaction
from .fund import FactoringFund


class FundKeeper:
    """
    Time-stepping keeper for one fund.

    Example:
        keeper = FundKeeper(fund)
        keeper.run([datetime(2025, 1, d) for d in range(2, 32)])
    """

    def __init__(self, fund: FactoringFund, auto_impair: bool = False):
        """
        Args:
            fund: The fund to keep
            auto_impair: Also impair overdue receivables, acting as the pool owner
        """
        self.fund = fund
        self.auto_impair = auto_impair
        self.verbose = fund.ledger.verbose

    def step(self, timestamp: datetime) -> List[Transaction]:
        ledger = self.fund.ledger
        ledger.advance_time(timestamp)
        start = len(ledger.transaction_log)

        if self.fund.check_upkeep():
            if self.verbose:
                print(f"[KEEPER] Reconciling paid invoices at {timestamp}")
            self.fund.reconcile_active_paid_invoices()

        if self.auto_impair:
            owner = self.fund.config.owner
            for invoice_id in self.fund.view_pool_status():
                if self.verbose:
                    print(f"[KEEPER] Impairing {invoice_id} at {timestamp}")
                self.fund.impair_invoice(owner, invoice_id)

        return ledger.transaction_log[start:]

    def run(self, timestamps: List[datetime]) -> List[Transaction]:
        all_transactions: List[Transaction] = []
        for timestamp in timestamps:
            all_transactions.extend(self.step(timestamp))
        return all_transactions
