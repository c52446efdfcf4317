"""
state.py - Fund Configuration and Books

The whole fund lives in the state of its share unit: configuration, fee
balances, impair reserve, per-receivable approvals, impairments and
settlements, the active and impaired sets and the redemption queue.

As with every unit on the ledger, the state is read through an adapter
(load_fund) into frozen dataclasses, updated by value, and written back by a
UnitStateChange (fund_state_change). Each write bumps a nonce, so two
otherwise identical operations never produce the same intent_id.
"""

from __future__ import annotations
from dataclasses import dataclass, field, asdict, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple

from .core import (
    LedgerView, Unit, UnitStateChange, TransactionOrigin, OriginType,
    UNIT_TYPE_FUND_SHARE, BPS_DENOMINATOR,
    _freeze_state,
)
from .fees import FeeParams
from .redemption_queue import QueuedRedemption, RedemptionQueue


ZERO = Decimal("0")

DEFAULT_ASSET_DECIMALS = 6
DEFAULT_PROTOCOL_FEE_BPS = 25
DEFAULT_ADMIN_FEE_BPS = 50
DEFAULT_TARGET_YIELD_BPS = 730
DEFAULT_APPROVAL_DURATION = timedelta(hours=1)
DEFAULT_GRACE_PERIOD_DAYS = 60
DEFAULT_MIN_UPFRONT_BPS = 1
DEFAULT_MAX_UPFRONT_BPS = 9999

SETTLEMENT_PAID = "PAID"
SETTLEMENT_UNFACTORED = "UNFACTORED"


class InvoiceStatus(Enum):
    """
    Receivable lifecycle as seen by the fund.

    UNAPPROVED -> APPROVED -> FUNDED -> PAID | IMPAIRED | UNFACTORED
    IMPAIRED -> PAID | UNFACTORED
    """
    UNAPPROVED = "unapproved"
    APPROVED = "approved"
    FUNDED = "funded"
    PAID = "paid"
    IMPAIRED = "impaired"
    UNFACTORED = "unfactored"


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class FundConfig:
    """
    Deployment parameters and roles.

    Setters never mutate a config: they build a new one with
    dataclasses.replace and store it in the fund state.
    """
    name: str
    asset: str
    pool_wallet: str
    owner: str
    underwriter: str
    protocol_fee_receiver: str
    asset_decimals: int = DEFAULT_ASSET_DECIMALS
    protocol_fee_bps: int = DEFAULT_PROTOCOL_FEE_BPS
    admin_fee_bps: int = DEFAULT_ADMIN_FEE_BPS
    target_yield_bps: int = DEFAULT_TARGET_YIELD_BPS
    approval_duration: timedelta = DEFAULT_APPROVAL_DURATION
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    min_upfront_bps: int = DEFAULT_MIN_UPFRONT_BPS
    max_upfront_bps: int = DEFAULT_MAX_UPFRONT_BPS

    def __post_init__(self):
        for attr in ('name', 'asset', 'pool_wallet', 'owner', 'underwriter', 'protocol_fee_receiver'):
            value = getattr(self, attr)
            if not value or not value.strip():
                raise ValueError(f"{attr} cannot be empty")
        if self.asset_decimals < 0:
            raise ValueError(f"asset_decimals must be non-negative, got {self.asset_decimals}")
        for attr in ('protocol_fee_bps', 'admin_fee_bps', 'target_yield_bps'):
            value = getattr(self, attr)
            if value < 0 or value > BPS_DENOMINATOR:
                raise ValueError(f"{attr} must be between 0 and {BPS_DENOMINATOR}, got {value}")
        if not 0 < self.min_upfront_bps <= self.max_upfront_bps <= BPS_DENOMINATOR:
            raise ValueError(
                f"upfront bounds must satisfy 0 < min <= max <= {BPS_DENOMINATOR}, "
                f"got {self.min_upfront_bps}..{self.max_upfront_bps}"
            )
        if self.approval_duration <= timedelta(0):
            raise ValueError(f"approval_duration must be positive, got {self.approval_duration}")
        if self.grace_period_days < 0:
            raise ValueError(f"grace_period_days must be non-negative, got {self.grace_period_days}")

    @property
    def scaling_factor(self) -> Decimal:
        """Price of one share when supply is zero: 10 ** asset_decimals."""
        return Decimal(10) ** self.asset_decimals


# ============================================================================
# PER-RECEIVABLE RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class InvoiceApproval:
    """
    Underwriting decision for one receivable.

    The first block is set at approval and describes what was approved; the
    second is filled in at funding. After funding only the status changes.
    """
    invoice_id: str
    status: InvoiceStatus
    valid_until: datetime
    creditor: str
    invoice_amount: Decimal
    approved_paid_amount: Decimal
    initial_invoice_value: Decimal
    due_date: datetime
    target_yield_bps: int
    spread_bps: int
    upfront_bps: int
    protocol_fee_bps: int
    admin_fee_bps: int
    min_days_interest_applied: int
    # funding
    funded_amount_gross: Decimal = ZERO
    funded_amount_net: Decimal = ZERO
    protocol_fee: Decimal = ZERO
    target_interest: Decimal = ZERO
    target_spread: Decimal = ZERO
    target_admin_fee: Decimal = ZERO
    factorer_upfront_bps: int = 0
    original_creditor: Optional[str] = None
    receiver: Optional[str] = None
    initial_paid_amount: Decimal = ZERO
    funded_timestamp: Optional[datetime] = None

    @property
    def approved(self) -> bool:
        return self.status == InvoiceStatus.APPROVED

    @property
    def is_funded(self) -> bool:
        return self.funded_timestamp is not None

    @property
    def capital_at_risk(self) -> Decimal:
        return self.funded_amount_net + self.protocol_fee

    @property
    def fee_params(self) -> FeeParams:
        return FeeParams(
            target_yield_bps=self.target_yield_bps,
            spread_bps=self.spread_bps,
            upfront_bps=self.factorer_upfront_bps or self.upfront_bps,
            protocol_fee_bps=self.protocol_fee_bps,
            admin_fee_bps=self.admin_fee_bps,
            min_days_interest_applied=self.min_days_interest_applied,
        )


@dataclass(frozen=True, slots=True)
class ImpairmentDetails:
    gain_amount: Decimal
    loss_amount: Decimal
    is_impaired: bool = True
    impaired_at: Optional[datetime] = None


@dataclass(frozen=True, slots=True)
class Settlement:
    """
    How a funded receivable left the pool.

    amount is the kickback for PAID and the creditor's buy-back payment
    (negative when the pool refunded) for UNFACTORED.
    """
    kind: str
    true_interest: Decimal
    true_spread: Decimal
    true_admin_fee: Decimal
    amount: Decimal
    after_impairment: bool
    capital_at_risk: Decimal
    settled_at: datetime


# ============================================================================
# FUND STATE
# ============================================================================

@dataclass(frozen=True, slots=True)
class FundState:
    """
    Immutable snapshot of the fund books.

    Mappings and tuples are replaced, never mutated: build the next state with
    dataclasses.replace.
    """
    config: FundConfig
    created_at: datetime
    nonce: int = 0
    protocol_fee_balance: Decimal = ZERO
    admin_fee_balance: Decimal = ZERO
    spread_gains_balance: Decimal = ZERO
    impair_reserve: Decimal = ZERO
    approvals: Mapping[str, InvoiceApproval] = field(default_factory=dict)
    impairments: Mapping[str, ImpairmentDetails] = field(default_factory=dict)
    settlements: Mapping[str, Settlement] = field(default_factory=dict)
    active_invoices: Tuple[str, ...] = ()
    impaired_invoices: Tuple[str, ...] = ()
    queue_entries: Tuple[QueuedRedemption, ...] = ()
    queue_head: int = 0

    @property
    def fees_owed(self) -> Decimal:
        return self.protocol_fee_balance + self.admin_fee_balance + self.spread_gains_balance

    def approval(self, invoice_id: str) -> Optional[InvoiceApproval]:
        return self.approvals.get(invoice_id)

    def status_of(self, invoice_id: str) -> InvoiceStatus:
        approval = self.approvals.get(invoice_id)
        return approval.status if approval else InvoiceStatus.UNAPPROVED

    def queue(self) -> RedemptionQueue:
        """Working copy of the redemption queue; the pool wallet is its authority."""
        return RedemptionQueue(self.config.pool_wallet, self.queue_entries, self.queue_head)

    def with_queue(self, queue: RedemptionQueue) -> FundState:
        return replace(self, queue_entries=queue.entries, queue_head=queue.head)

    def with_approval(self, approval: InvoiceApproval) -> FundState:
        return replace(self, approvals={**self.approvals, approval.invoice_id: approval})


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def load_fund(view: LedgerView, symbol: str) -> FundState:
    """
    Load the fund books from the share unit's state.

    Example:
        state = load_fund(view, "BFT")
        state.config.pool_wallet   # "pool"
    """
    raw = view.get_unit_state(symbol)
    return FundState(
        config=FundConfig(**raw['config']),
        created_at=raw['created_at'],
        nonce=raw.get('nonce', 0),
        protocol_fee_balance=Decimal(raw.get('protocol_fee_balance', ZERO)),
        admin_fee_balance=Decimal(raw.get('admin_fee_balance', ZERO)),
        spread_gains_balance=Decimal(raw.get('spread_gains_balance', ZERO)),
        impair_reserve=Decimal(raw.get('impair_reserve', ZERO)),
        approvals={k: InvoiceApproval(**v) for k, v in raw.get('approvals', {}).items()},
        impairments={k: ImpairmentDetails(**v) for k, v in raw.get('impairments', {}).items()},
        settlements={k: Settlement(**v) for k, v in raw.get('settlements', {}).items()},
        active_invoices=tuple(raw.get('active_invoices', ())),
        impaired_invoices=tuple(raw.get('impaired_invoices', ())),
        queue_entries=tuple(QueuedRedemption(**e) for e in raw.get('queue_entries', ())),
        queue_head=raw.get('queue_head', 0),
    )


def to_state_dict(state: FundState) -> Dict[str, Any]:
    """Inverse of load_fund()."""
    return {
        'config': asdict(state.config),
        'created_at': state.created_at,
        'nonce': state.nonce,
        'protocol_fee_balance': state.protocol_fee_balance,
        'admin_fee_balance': state.admin_fee_balance,
        'spread_gains_balance': state.spread_gains_balance,
        'impair_reserve': state.impair_reserve,
        'approvals': {k: asdict(v) for k, v in state.approvals.items()},
        'impairments': {k: asdict(v) for k, v in state.impairments.items()},
        'settlements': {k: asdict(v) for k, v in state.settlements.items()},
        'active_invoices': list(state.active_invoices),
        'impaired_invoices': list(state.impaired_invoices),
        'queue_entries': [asdict(e) for e in state.queue_entries],
        'queue_head': state.queue_head,
    }


def fund_state_change(view: LedgerView, symbol: str, new_state: FundState) -> UnitStateChange:
    """
    UnitStateChange writing new_state with the nonce advanced past the
    stored one.
    """
    old = view.get_unit_state(symbol)
    bumped = replace(new_state, nonce=old.get('nonce', 0) + 1)
    return UnitStateChange(symbol, old, to_state_dict(bumped))


def fund_origin(
    symbol: str,
    source_id: str,
    event_type: str,
    origin_type: OriginType = OriginType.USER_ACTION,
) -> TransactionOrigin:
    return TransactionOrigin(origin_type, source_id, symbol, event_type)


def create_fund_unit(
    symbol: str,
    name: str,
    config: FundConfig,
    created_at: datetime,
) -> Unit:
    """
    Create the fund's share unit, carrying the empty fund books.

    Shares are whole units and cannot go negative outside the system wallet,
    which issues and retires them.

    Example:
        config = FundConfig("Invoice Fund", "USDC", "pool", "owner", "uw", "treasury")
        ledger.register_unit(create_fund_unit("BFT", "Invoice Fund Token", config, ledger.current_time))
    """
    if not symbol or not symbol.strip():
        raise ValueError("fund symbol cannot be empty")
    if symbol == config.asset:
        raise ValueError("fund symbol must differ from the asset symbol")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_FUND_SHARE,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(FundState(config=config, created_at=created_at))),
    )
