"""
Core types and pure functions for the factoring fund ledger.

This module provides the foundational data structures shared by every engine:
1. Protocols: LedgerView for read-only ledger access
2. Immutable data structures: Move, AuditEvent, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, the ledger rejection types and the fund error taxonomy
4. Type aliases: Positions, BalanceMap, UnitState
5. Unit factories: the reference asset unit

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, ROUND_DOWN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Set, Optional, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Fund accounting requires deterministic Decimal arithmetic. Amounts are whole
# base units of the asset, so every product in the fee math stays exact at
# this precision and every division is an explicit floor.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance and burning (asset supply, share mint/burn,
# receivable issuance). Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_ASSET = "ASSET"
UNIT_TYPE_FUND_SHARE = "FUND_SHARE"
UNIT_TYPE_INVOICE = "INVOICE"

# Quantities with absolute value below this threshold are treated as zero.
QUANTITY_EPSILON = Decimal("1e-12")

BPS_DENOMINATOR = 10000
DAYS_PER_YEAR = 365
SECONDS_PER_DAY = 86400

DECIMAL_ROUNDING = {
    UNIT_TYPE_ASSET: ROUND_DOWN,
    UNIT_TYPE_FUND_SHARE: ROUND_DOWN,
    UNIT_TYPE_INVOICE: ROUND_DOWN,
}


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Mapping from wallet ID to quantity held by that wallet for a specific unit.
Positions = Dict[str, Decimal]

# Mapping from unit symbol to quantity held in a single wallet.
BalanceMap = Dict[str, Decimal]

# Internal state for a unit (receivable terms, fund books, ...).
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Every engine function takes a LedgerView and returns a PendingTransaction;
    none of them can change balances or unit state on its own. The Ledger
    implements this protocol, and tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit in a wallet."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_positions(self, unit_symbol: str) -> Positions:
        """Return all non-zero positions for a unit across all wallets."""
        ...

    def list_wallets(self) -> Set[str]:
        """Return the set of all registered wallet IDs."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: validated and applied.
    ALREADY_APPLIED: the intent_id was processed before (idempotent no-op).
    REJECTED: validation failed; see Ledger.last_rejection.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"           # Depositor, creditor or debtor action
    CONTRACT = "contract"                 # Fund engine (funding, settlement, drain)
    LIFECYCLE = "lifecycle"               # Keeper-driven reconciliation
    EXTERNAL = "external"                 # Invoice provider actions


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet balance below the unit's minimum."""
    pass


class BalanceConstraintViolation(LedgerError):
    """Raised when a move would take a wallet balance above the unit's maximum."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that is not registered with the ledger."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that is not registered with the ledger."""
    pass


# ----------------------------------------------------------------------------
# Fund error taxonomy
# ----------------------------------------------------------------------------

class FundError(LedgerError):
    """Base exception for factoring fund failures. Every one aborts the operation."""
    pass


class AuthorizationError(FundError):
    """Wrong caller role."""
    pass


class ValidationError(FundError, ValueError):
    """Malformed request: empty address, bps out of range, bad amount."""
    pass


class StateError(FundError):
    """Receivable or fund is in the wrong state for the request."""
    pass


class ResourceError(FundError):
    """Not enough liquidity or queued balance to satisfy the request."""
    pass


class BoundsError(FundError):
    """Queue index outside the live range."""
    pass


class NotAuthorized(AuthorizationError):
    pass


class InvalidAddress(ValidationError):
    pass


class InvalidOwner(ValidationError):
    pass


class InvalidReceiver(ValidationError):
    pass


class InvalidPercentage(ValidationError):
    pass


class InvalidRedemptionType(ValidationError):
    pass


class InvalidAmount(ValidationError):
    pass


class InvoiceTokenMismatch(ValidationError):
    pass


class BelowMinInvestment(ValidationError):
    """Raised when a commitment is smaller than the fund manager's minimum."""
    pass


class InvoiceNotFound(StateError):
    pass


class InvoiceNotApproved(StateError):
    pass


class InvoiceAlreadyFunded(StateError):
    pass


class ApprovalExpired(StateError):
    pass


class InvoiceCanceled(StateError):
    pass


class InvoiceAlreadyPaid(StateError):
    pass


class InvoiceCreditorChanged(StateError):
    pass


class InvoiceAmountChanged(StateError):
    pass


class InvoiceNotFunded(StateError):
    pass


class InvoiceAlreadyImpaired(StateError):
    pass


class InvoiceNotImpairable(StateError):
    """Raised when the receivable is not yet past its due date plus grace period."""
    pass


class ReentrancyError(StateError):
    """Raised when a fund operation is entered while another one is running."""
    pass


class InsufficientLiquidity(ResourceError):
    pass


class FeesExceedFundedAmount(ResourceError):
    pass


class QueueEmpty(ResourceError):
    pass


class AmountExceedsQueuedShares(ResourceError):
    pass


class AmountExceedsQueuedAssets(ResourceError):
    pass


class InsufficientCommitment(ResourceError):
    """Raised when a capital call asks for more than investors have committed."""
    pass


class InvalidQueueIndex(BoundsError):
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the caller or engine
        unit_symbol: Unit the transaction concerns (fund share or receivable)
        event_type: Operation name (e.g. "FUND_INVOICE", "RECONCILE")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Complete before/after snapshot of one unit's state.

    Attributes:
        unit: Symbol of the unit whose state changed
        old_state: State before the change (dict or None)
        new_state: State after the change (dict)
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Map each field that differs to its (old, new) pair."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            old_val = old.get(key)
            new_val = new.get(key)
            if old_val != new_val:
                changes[key] = (old_val, new_val)
        return changes


# ============================================================================
# AUDIT EVENTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class AuditEvent:
    """
    One append-only audit record consumed by external indexers.

    The name and parameter keys are a stable wire contract; see events.py for
    the catalogue.

    Attributes:
        name: Event name (e.g. "InvoiceFunded")
        params: Tuple of (key, value) pairs in emission order
    """
    name: str
    params: Tuple[Tuple[str, Any], ...] = ()

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("AuditEvent name cannot be empty")

    @property
    def params_dict(self) -> Dict[str, Any]:
        return dict(self.params)

    def get(self, key: str, default: Any = None) -> Any:
        return self.params_dict.get(key, default)

    def to_dict(self) -> Dict[str, Any]:
        """Wire form: {'event': name, **params}."""
        return {'event': self.name, **self.params_dict}

    def __repr__(self) -> str:
        args = ", ".join(f"{k}={v}" for k, v in self.params)
        return f"{self.name}({args})"


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: Amount to transfer (finite, non-zero Decimal).
        unit_symbol: Unit being transferred (asset, share or receivable).
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
        metadata: Optional additional information about the move.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    metadata: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if abs(self.quantity) < QUANTITY_EPSILON:
            raise ValueError("Move quantity is effectively zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.00") and Decimal("1") agree."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Independent of dict insertion order and Decimal representation, so that
    semantically identical intents hash identically.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, Enum):
        return f"E:{value.value}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        serialized = ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items)
        return f"{{{serialized}}}"
    if isinstance(value, (list, tuple)):
        serialized = ",".join(_canonicalize(item) for item in value)
        return f"[{serialized}]"
    if isinstance(value, (set, frozenset)):
        serialized = ",".join(_canonicalize(item) for item in sorted(value, key=str))
        return f"<{serialized}>"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
    units_to_create: Tuple['Unit', ...] = (),
    events: Tuple[AuditEvent, ...] = (),
) -> str:
    """
    Deterministic content hash of a transaction's intent, used for idempotency.

    Based only on semantic content (moves, state changes, origin, created units
    and audit events), never on timestamps or ledger-specific data.
    """
    sorted_moves = tuple(sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    ))

    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    for unit in sorted(units_to_create, key=lambda u: u.symbol):
        content_parts.append(f"unit_create:{unit.symbol}|{unit.unit_type}")

    for m in sorted_moves:
        qty = _normalize_decimal(m.quantity)
        content_parts.append(f"move:{qty}|{m.unit_symbol}|{m.source}|{m.dest}|{m.contract_id}")

    for sc in sorted(state_changes, key=lambda s: s.unit):
        old_canonical = _canonicalize(sc.old_state)
        new_canonical = _canonicalize(sc.new_state)
        content_parts.append(f"state_change:{sc.unit}|{old_canonical}|{new_canonical}")

    # Emission order is part of the audit contract, so events are not sorted
    for ev in events:
        content_parts.append(f"audit:{ev.name}|{_canonicalize(list(ev.params))}")

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Created by the engine functions and submitted to Ledger.execute(), which
    applies moves, state changes and audit events together or not at all.

    Attributes:
        moves: Tuple of value transfers between wallets
        state_changes: Tuple of unit state changes
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        units_to_create: Units registered before the moves execute
        events: Audit events recorded when the transaction applies
        intent_id: Content-addressable hash of the intent (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[AuditEvent, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            computed_id = _compute_intent_id(
                self.moves, self.state_changes, self.origin, self.units_to_create, self.events
            )
            object.__setattr__(self, 'intent_id', computed_id)

    def is_empty(self) -> bool:
        """True when there is nothing to apply (no moves, state changes, units or events)."""
        return (not self.moves and not self.state_changes
                and not self.units_to_create and not self.events)

    def __repr__(self) -> str:
        return (f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, "
                f"{len(self.events)} events, {self.origin})")


def build_transaction(
    view: LedgerView,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    units_to_create: Optional[Tuple['Unit', ...]] = None,
    events: Optional[List[AuditEvent]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    State changes are deep-copied so later mutation of the caller's dicts
    cannot leak into the pending intent.

    Example:
        def compute_fee_withdrawal(view, symbol, caller):
            moves = [Move(Decimal("50"), "USDC", "pool", caller, "withdraw_admin_fees")]
            ...
            return build_transaction(view, moves, changes, origin, events=[event])
    """
    if origin is None:
        origin = TransactionOrigin(
            origin_type=OriginType.CONTRACT,
            source_id="contract",
        )

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=view.current_time,
        units_to_create=units_to_create or (),
        events=tuple(events or ()),
    )


def empty_pending_transaction(view: LedgerView) -> PendingTransaction:
    """An empty PendingTransaction, for engine functions with nothing to do."""
    return PendingTransaction(
        moves=(),
        state_changes=(),
        origin=TransactionOrigin(OriginType.CONTRACT, "noop"),
        timestamp=view.current_time,
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (with old_state and new_state)
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger
        units_to_create: Units registered by this transaction
        events: Audit events recorded by this transaction
        contract_ids: Set of contract IDs from moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    units_to_create: Tuple['Unit', ...] = ()
    events: Tuple[AuditEvent, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if (not self.moves and not self.state_changes
                and not self.units_to_create and not self.events):
            raise ValueError("Transaction must have moves, state_changes, units_to_create or events")
        if self.contract_ids is None:
            object.__setattr__(
                self, 'contract_ids',
                frozenset(m.contract_id for m in self.moves)
            )

    def __repr__(self) -> str:
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
        ]
        if self.units_to_create:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Units Created (' + str(len(self.units_to_create)) + '):')}│")
            for unit in self.units_to_create:
                lines.append(f"│{pad('   ' + unit.symbol + ' (' + unit.name + ')')}│")
        lines.append(f"├{bar}┤")
        lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
        for i, move in enumerate(self.moves):
            move_str = f"   [{i}] {move.quantity} {move.unit_symbol}: {move.source} → {move.dest}"
            lines.append(f"│{pad(move_str)}│")
        if self.events:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Events (' + str(len(self.events)) + '):')}│")
            for ev in self.events:
                lines.append(f"│{pad('   ' + repr(ev))}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state representation back to a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of a unit held in ledger wallets.

    Attributes:
        symbol: Short identifier (e.g. "USDC", "BFT", "INV-001").
        name: Human-readable name.
        unit_type: Category (ASSET, FUND_SHARE, INVOICE).
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any non-system wallet.
        decimal_places: Number of decimal places for rounding (None = no rounding).
        _frozen_state: Internal frozen state representation.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a new dict on each access."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Round a value to this unit's precision (unchanged if decimal_places is None)."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def asset(symbol: str, name: str, decimals: int = 6) -> Unit:
    """
    Create the fund's reference asset unit.

    Amounts are held in whole base units (1 token = 10 ** decimals base units),
    so the unit itself has no fractional places. Wallets cannot overdraw:
    a transfer from an insufficient balance is rejected by the ledger.

    Args:
        symbol: Asset code (e.g. "USDC").
        name: Full name (e.g. "USD Coin").
        decimals: Token decimals, recorded in state for price scaling.
    """
    if not symbol or not symbol.strip():
        raise ValueError("asset symbol cannot be empty")
    if decimals < 0:
        raise ValueError(f"decimals must be non-negative, got {decimals}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_ASSET,
        min_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state({'decimals': decimals}),
    )
