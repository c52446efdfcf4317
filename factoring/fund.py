"""
fund.py - FactoringFund: the Invoice-Factoring Fund Facade

Composes the engines into one object bound to a ledger and a share symbol:

    ShareAccounting      share supply and balances            (shares.py)
    AccessControl        deposit / redeem / factoring lists   (access.py)
    FeeConfiguration     setters and fee withdrawals          (config.py)
    invoice provider     receivable details and transfers     (units/invoice.py)

Every mutating method follows the same path:

    1. non-reentrancy guard and permission check
    2. compute_*(ledger, ...) builds a PendingTransaction (pure)
    3. inside ledger.atomic(): execute it, then execute the queue drain
    4. a rejected execution raises the ledger's typed rejection and the
       whole operation is rolled back

Return values are read back from the audit events of the committed
transactions.
"""

from __future__ import annotations
from datetime import timedelta
from decimal import Decimal
from functools import wraps
from typing import List, Optional, Tuple

from .core import (
    AuditEvent, ExecuteResult, LedgerError, PendingTransaction,
    ReentrancyError,
)
from .ledger import Ledger
from .fees import TargetFees, KickbackResult
from .state import (
    FundConfig, FundState, InvoiceApproval, InvoiceStatus, ImpairmentDetails,
    create_fund_unit, load_fund,
)
from .redemption_queue import QueuedRedemption, QueueStats
from .capital import (
    CapitalAccount, FundInfo,
    calculate_capital_account, calculate_realized_gain_loss, capital_snapshot,
    get_fund_info, price_per_share,
)
from .shares import ShareAccounting, convert_to_shares, convert_to_assets, preview_withdraw
from .access import AccessControl
from .config import FeeConfiguration
from .units.invoice import InvoiceProviderAdapter, LedgerInvoiceProvider
from .invoice_lifecycle import (
    compute_approve_invoice, compute_fund_invoice, compute_unfactor_invoice,
    preview_target_fees,
)
from .reconciliation import (
    compute_reconcile_active_paid_invoices, calculate_kickback_for_invoice, check_upkeep,
)
from .impairment import compute_impair_invoice, compute_set_impair_reserve, impairable_invoices
from .liquidity import (
    compute_deposit, compute_redeem, compute_withdraw,
    compute_redeem_and_or_queue, compute_withdraw_and_or_queue,
    compute_process_redemption_queue, compute_cancel_queued_redemption,
    compute_compact_queue, compute_clear_queue,
    max_redeem, max_withdraw,
)
from . import events


ZERO = Decimal("0")


def non_reentrant(method):
    """Refuse to enter a mutating fund method while another one is running."""
    @wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._entered:
            raise ReentrancyError(f"{method.__name__} called while another fund operation is running")
        self._entered = True
        try:
            return method(self, *args, **kwargs)
        finally:
            self._entered = False
    return wrapper


def _events_named(emitted: Tuple[AuditEvent, ...], name: str) -> List[AuditEvent]:
    return [ev for ev in emitted if ev.name == name]


def _sum_param(emitted: Tuple[AuditEvent, ...], name: str, key: str) -> Decimal:
    return sum((ev.get(key) for ev in _events_named(emitted, name)), ZERO)


class FactoringFund:
    """
    An invoice-factoring fund on a Ledger.

    Example:
        ledger = Ledger("fund", datetime(2025, 1, 1))
        ledger.register_unit(asset("USDC", "USD Coin"))
        config = FundConfig("Invoice Fund", "USDC", "pool", "owner", "uw", "treasury")
        fund = FactoringFund.create(ledger, config, "BFT")

        fund.deposit("alice", Decimal("100000000"))
        fund.approve_invoice("uw", "INV-001", 1000, 0, 8000, 30)
        fund.fund_invoice("supplier", "INV-001", 8000)
    """

    def __init__(
        self,
        ledger: Ledger,
        symbol: str,
        provider: Optional[InvoiceProviderAdapter] = None,
        access: Optional[AccessControl] = None,
    ):
        self.ledger = ledger
        self.symbol = symbol
        self.provider = provider or LedgerInvoiceProvider(ledger)
        self.access = access or AccessControl()
        self.shares = ShareAccounting(ledger, symbol)
        self.fee_configuration = FeeConfiguration(ledger, symbol)
        self._entered = False

    @classmethod
    def create(
        cls,
        ledger: Ledger,
        config: FundConfig,
        symbol: str,
        name: Optional[str] = None,
        provider: Optional[InvoiceProviderAdapter] = None,
        access: Optional[AccessControl] = None,
    ) -> FactoringFund:
        """
        Register the share unit (with empty books) and the pool wallet.

        Raises:
            UnitNotRegistered: If the asset unit is not on the ledger
        """
        ledger.get_unit(config.asset)
        for wallet in (config.pool_wallet, config.owner, config.underwriter, config.protocol_fee_receiver):
            if not ledger.is_registered(wallet):
                ledger.register_wallet(wallet)
        ledger.register_unit(create_fund_unit(symbol, name or config.name, config, ledger.current_time))
        return cls(ledger, symbol, provider, access)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _execute(self, pending: PendingTransaction) -> Tuple[AuditEvent, ...]:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            raise self.ledger.last_rejection
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(f"transaction {pending.intent_id} was already applied")
        if self.ledger.verbose:
            for ev in pending.events:
                print(f"📣 {self.symbol}: {ev!r}")
        return pending.events

    def _commit(self, pending: PendingTransaction, drain: bool = True) -> Tuple[AuditEvent, ...]:
        """Execute pending, then the queue drain, all or nothing."""
        with self.ledger.atomic():
            emitted = self._execute(pending)
            if drain:
                emitted += self._execute(
                    compute_process_redemption_queue(self.ledger, self.symbol, self.provider)
                )
        return emitted

    # ========================================================================
    # RECEIVABLES
    # ========================================================================

    @non_reentrant
    def approve_invoice(
        self,
        caller: str,
        invoice_id: str,
        target_yield_bps: Optional[int],
        spread_bps: int,
        upfront_bps: int,
        min_days_interest_applied: int = 0,
    ) -> InvoiceApproval:
        pending = compute_approve_invoice(
            self.ledger, self.symbol, self.provider, caller, invoice_id,
            target_yield_bps, spread_bps, upfront_bps, min_days_interest_applied,
        )
        self._commit(pending, drain=False)
        return self.state.approval(invoice_id)

    @non_reentrant
    def fund_invoice(
        self,
        caller: str,
        invoice_id: str,
        factorer_upfront_bps: int,
        receiver: Optional[str] = None,
    ) -> Decimal:
        """Returns the net amount advanced."""
        self.access.require_factoring(caller)
        pending = compute_fund_invoice(
            self.ledger, self.symbol, self.provider, caller, invoice_id,
            factorer_upfront_bps, receiver,
        )
        emitted = self._commit(pending)
        return _events_named(emitted, events.INVOICE_FUNDED)[0].get('funded_amount_net')

    @non_reentrant
    def unfactor_invoice(self, caller: str, invoice_id: str) -> Decimal:
        """Returns what the creditor paid (negative: what the pool refunded)."""
        pending = compute_unfactor_invoice(self.ledger, self.symbol, self.provider, caller, invoice_id)
        emitted = self._commit(pending)
        return _events_named(emitted, events.INVOICE_UNFACTORED)[0].get('total_refund_or_payment_amount')

    @non_reentrant
    def impair_invoice(self, caller: str, invoice_id: str) -> ImpairmentDetails:
        pending = compute_impair_invoice(self.ledger, self.symbol, self.provider, caller, invoice_id)
        self._commit(pending)
        return self.state.impairments[invoice_id]

    @non_reentrant
    def reconcile_active_paid_invoices(self, caller: str = "keeper") -> Tuple[str, ...]:
        """Returns the ids settled, in settlement order."""
        pending = compute_reconcile_active_paid_invoices(self.ledger, self.symbol, self.provider, caller)
        emitted = self._commit(pending)
        return tuple(ev.get('invoice_id') for ev in _events_named(emitted, events.INVOICE_PAID))

    @non_reentrant
    def set_impair_reserve(self, caller: str, amount: Decimal) -> None:
        self._commit(compute_set_impair_reserve(self.ledger, self.symbol, caller, amount), drain=False)

    # ========================================================================
    # VAULT
    # ========================================================================

    @non_reentrant
    def deposit(self, caller: str, assets: Decimal, receiver: Optional[str] = None) -> Decimal:
        """Returns the shares minted."""
        self.access.require_deposit(caller)
        pending = compute_deposit(self.ledger, self.symbol, self.provider, caller, assets, receiver)
        emitted = self._commit(pending)
        return _events_named(emitted, events.DEPOSIT)[0].get('shares')

    @non_reentrant
    def redeem(
        self,
        caller: str,
        shares: Decimal,
        receiver: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Decimal:
        """Returns the assets paid."""
        self.access.require_redeem(caller)
        pending = compute_redeem(
            self.ledger, self.symbol, self.provider, caller, shares,
            receiver or caller, owner or caller,
        )
        emitted = self._commit(pending)
        return _events_named(emitted, events.WITHDRAW)[0].get('assets')

    @non_reentrant
    def withdraw(
        self,
        caller: str,
        assets: Decimal,
        receiver: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Decimal:
        """Returns the shares burned."""
        self.access.require_redeem(caller)
        pending = compute_withdraw(
            self.ledger, self.symbol, self.provider, caller, assets,
            receiver or caller, owner or caller,
        )
        emitted = self._commit(pending)
        return _events_named(emitted, events.WITHDRAW)[0].get('shares')

    @non_reentrant
    def redeem_and_or_queue(
        self,
        caller: str,
        shares: Decimal,
        receiver: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Tuple[Decimal, Decimal]:
        """Returns (shares redeemed now, shares queued)."""
        self.access.require_redeem(caller)
        pending = compute_redeem_and_or_queue(
            self.ledger, self.symbol, self.provider, caller, shares,
            receiver or caller, owner or caller,
        )
        direct = _sum_param(pending.events, events.WITHDRAW, 'shares')
        queued = _sum_param(pending.events, events.REDEMPTION_QUEUED, 'shares')
        self._commit(pending)
        return direct, queued

    @non_reentrant
    def withdraw_and_or_queue(
        self,
        caller: str,
        assets: Decimal,
        receiver: Optional[str] = None,
        owner: Optional[str] = None,
    ) -> Tuple[Decimal, Decimal]:
        """Returns (assets withdrawn now, assets queued)."""
        self.access.require_redeem(caller)
        pending = compute_withdraw_and_or_queue(
            self.ledger, self.symbol, self.provider, caller, assets,
            receiver or caller, owner or caller,
        )
        direct = _sum_param(pending.events, events.WITHDRAW, 'assets')
        queued = ZERO
        if _events_named(pending.events, events.REDEMPTION_QUEUED):
            queued = Decimal(assets) - direct
        self._commit(pending)
        return direct, queued

    # ========================================================================
    # REDEMPTION QUEUE
    # ========================================================================

    @non_reentrant
    def process_redemption_queue(self) -> Tuple[AuditEvent, ...]:
        pending = compute_process_redemption_queue(self.ledger, self.symbol, self.provider)
        return self._commit(pending, drain=False)

    @non_reentrant
    def cancel_queued_redemption(self, caller: str, index: int) -> QueuedRedemption:
        """Returns the cancelled entry."""
        entry = self._queue().get_queued_redemption(index)
        self._commit(compute_cancel_queued_redemption(self.ledger, self.symbol, caller, index))
        return entry

    @non_reentrant
    def compact_queue(self, caller: str) -> int:
        emitted = self._commit(compute_compact_queue(self.ledger, self.symbol, caller), drain=False)
        return _events_named(emitted, events.QUEUE_COMPACTED)[0].get('removed')

    @non_reentrant
    def clear_queue(self, caller: str) -> int:
        emitted = self._commit(compute_clear_queue(self.ledger, self.symbol, caller), drain=False)
        return _events_named(emitted, events.QUEUE_CLEARED)[0].get('dropped')

    def _queue(self):
        return self.state.queue()

    def is_queue_empty(self) -> bool:
        return self._queue().is_queue_empty()

    def get_queue_length(self) -> int:
        return self._queue().get_queue_length()

    def get_queued_redemption(self, index: int) -> QueuedRedemption:
        return self._queue().get_queued_redemption(index)

    def get_queued_redemptions_for_owner(self, owner: str) -> List[int]:
        return self._queue().get_queued_redemptions_for_owner(owner)

    def get_total_queued_for_owner(self, owner: str) -> Tuple[Decimal, Decimal]:
        return self._queue().get_total_queued_for_owner(owner)

    def get_next_redemption(self) -> QueuedRedemption:
        return self._queue().get_next_redemption()

    def get_queue_stats(self) -> QueueStats:
        return self._queue().get_queue_stats()

    # ========================================================================
    # CONFIGURATION
    # ========================================================================

    @non_reentrant
    def set_protocol_fee_bps(self, caller: str, bps: int) -> None:
        self._commit(self.fee_configuration.set_protocol_fee_bps(caller, bps), drain=False)

    @non_reentrant
    def set_protocol_fee_receiver(self, caller: str, receiver: str) -> None:
        self._commit(self.fee_configuration.set_protocol_fee_receiver(caller, receiver), drain=False)

    @non_reentrant
    def set_admin_fee_bps(self, caller: str, bps: int) -> None:
        self._commit(self.fee_configuration.set_admin_fee_bps(caller, bps), drain=False)

    @non_reentrant
    def set_target_yield(self, caller: str, bps: int) -> None:
        self._commit(self.fee_configuration.set_target_yield(caller, bps), drain=False)

    @non_reentrant
    def set_grace_period_days(self, caller: str, days: int) -> None:
        self._commit(self.fee_configuration.set_grace_period_days(caller, days), drain=False)

    @non_reentrant
    def set_approval_duration(self, caller: str, duration: timedelta) -> None:
        self._commit(self.fee_configuration.set_approval_duration(caller, duration), drain=False)

    @non_reentrant
    def set_underwriter(self, caller: str, underwriter: str) -> None:
        self._commit(self.fee_configuration.set_underwriter(caller, underwriter), drain=False)

    @non_reentrant
    def withdraw_protocol_fees(self, caller: str) -> Decimal:
        emitted = self._commit(self.fee_configuration.withdraw_protocol_fees(caller), drain=False)
        return emitted[0].get('amount')

    @non_reentrant
    def withdraw_admin_fees(self, caller: str) -> Decimal:
        emitted = self._commit(self.fee_configuration.withdraw_admin_fees(caller), drain=False)
        return emitted[0].get('amount')

    @non_reentrant
    def withdraw_spread_gains(self, caller: str) -> Decimal:
        emitted = self._commit(self.fee_configuration.withdraw_spread_gains(caller), drain=False)
        return emitted[0].get('amount')

    # ========================================================================
    # READ API
    # ========================================================================

    @property
    def state(self) -> FundState:
        return load_fund(self.ledger, self.symbol)

    @property
    def config(self) -> FundConfig:
        return self.state.config

    def approval(self, invoice_id: str) -> Optional[InvoiceApproval]:
        return self.state.approval(invoice_id)

    def invoice_status(self, invoice_id: str) -> InvoiceStatus:
        return self.state.status_of(invoice_id)

    def calculate_target_fees(self, invoice_id: str, upfront_bps: Optional[int] = None) -> TargetFees:
        return preview_target_fees(self.ledger, self.symbol, invoice_id, upfront_bps)

    def calculate_kickback_amount(self, invoice_id: str) -> KickbackResult:
        return calculate_kickback_for_invoice(self.ledger, self.symbol, self.provider, invoice_id)

    def capital_account(self) -> CapitalAccount:
        """The capital account with its components."""
        return calculate_capital_account(self.ledger, self.symbol, self.provider)

    def calculate_capital_account(self) -> Decimal:
        return self.capital_account().capital

    def calculate_realized_gain_loss(self) -> Decimal:
        return calculate_realized_gain_loss(self.state)

    def total_assets(self) -> Decimal:
        return self.calculate_capital_account()

    def available_assets(self) -> Decimal:
        return self.capital_account().available_assets

    def total_supply(self) -> Decimal:
        return self.shares.total_supply()

    def balance_of(self, owner: str) -> Decimal:
        return self.shares.balance_of(owner)

    def price_per_share(self) -> Decimal:
        account = self.capital_account()
        return price_per_share(account.capital, self.total_supply(), self.config.scaling_factor)

    def convert_to_shares(self, assets: Decimal) -> Decimal:
        snap = capital_snapshot(self.ledger, self.symbol, self.provider)
        return convert_to_shares(assets, snap.capital, snap.supply)

    def convert_to_assets(self, shares: Decimal) -> Decimal:
        snap = capital_snapshot(self.ledger, self.symbol, self.provider)
        return convert_to_assets(shares, snap.capital, snap.supply)

    def preview_deposit(self, assets: Decimal) -> Decimal:
        return self.convert_to_shares(assets)

    def preview_redeem(self, shares: Decimal) -> Decimal:
        return self.convert_to_assets(shares)

    def preview_withdraw(self, assets: Decimal) -> Decimal:
        snap = capital_snapshot(self.ledger, self.symbol, self.provider)
        return preview_withdraw(assets, snap.capital, snap.supply)

    def max_redeem(self, owner: str) -> Decimal:
        return max_redeem(self.ledger, self.symbol, self.provider, owner)

    def max_withdraw(self, owner: str) -> Decimal:
        return max_withdraw(self.ledger, self.symbol, self.provider, owner)

    def get_fund_info(self) -> FundInfo:
        return get_fund_info(self.ledger, self.symbol, self.provider)

    def view_pool_status(self) -> List[str]:
        """Active receivables that can be impaired now."""
        return impairable_invoices(self.ledger, self.symbol)

    def check_upkeep(self) -> bool:
        return check_upkeep(self.ledger, self.symbol, self.provider)

    def events(self, name: Optional[str] = None) -> List[AuditEvent]:
        """Audit events of this fund in commit order, optionally filtered by name."""
        return [
            ev
            for tx in self.ledger.transaction_log
            if tx.origin.unit_symbol == self.symbol
            for ev in tx.events
            if name is None or ev.name == name
        ]
