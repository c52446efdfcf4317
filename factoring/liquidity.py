"""
liquidity.py - Liquidity Gate: Deposits, Redemptions and the Queue Drain

Vault operations against the pool:

    deposit:   Move(assets, asset, depositor -> pool)
               Move(shares, share, system -> receiver)
    redeem:    Move(shares, share, owner -> system)
               Move(assets, asset, pool -> receiver)

Direct redemptions are limited by available liquidity (max_redeem /
max_withdraw), and both limits are zero while anyone is waiting in the
redemption queue. The *_and_or_queue variants redeem what they can now and
queue the rest.

process_redemption_queue() pays the queue in strict FIFO order with whatever
liquidity is available. The fund runs it after every operation that can free
liquidity or change the queue.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Optional, Tuple

from .core import (
    LedgerView, Move, PendingTransaction, AuditEvent, OriginType, SYSTEM_WALLET,
    NotAuthorized, InvalidAmount, InvalidReceiver, InvalidOwner,
    InsufficientFunds, InsufficientLiquidity,
    build_transaction, empty_pending_transaction,
)
from .state import FundState, load_fund, fund_state_change, fund_origin
from .capital import CapitalSnapshot, capital_snapshot
from .shares import (
    ShareAccounting, convert_to_shares, convert_to_assets, preview_withdraw,
)
from .redemption_queue import RedemptionQueue
from .access import ROLE_OWNER, require_role, require_address
from .units.invoice import InvoiceProviderAdapter
from . import events


ZERO = Decimal("0")


# ============================================================================
# HELPERS
# ============================================================================

def _whole_amount(amount, name: str) -> Decimal:
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount <= ZERO:
        raise InvalidAmount(f"{name} must be positive, got {amount}")
    if amount != amount.to_integral_value():
        raise InvalidAmount(f"{name} must be whole units, got {amount}")
    return amount


def _check_receiver(state: FundState, receiver: str) -> None:
    require_address(receiver, "receiver", InvalidReceiver)
    if receiver == state.config.pool_wallet:
        raise InvalidReceiver("the pool cannot receive redemptions")


def _redemption_moves(
    state: FundState,
    symbol: str,
    owner: str,
    receiver: str,
    shares: Decimal,
    assets: Decimal,
    contract_id: str,
) -> List[Move]:
    return [
        Move(shares, symbol, owner, SYSTEM_WALLET, contract_id),
        Move(assets, state.config.asset, state.config.pool_wallet, receiver, contract_id),
    ]


def _withdraw_event(caller, receiver, owner, assets, shares) -> AuditEvent:
    return events.audit_event(
        events.WITHDRAW,
        sender=caller,
        receiver=receiver,
        owner=owner,
        assets=assets,
        shares=shares,
    )


def _queue_request(
    queue: RedemptionQueue,
    authority: str,
    owner: str,
    receiver: str,
    shares: Decimal,
    assets: Decimal,
) -> List[AuditEvent]:
    """Queue a request, reporting the entry it replaces if the owner had one."""
    emitted = []
    for index in queue.get_queued_redemptions_for_owner(owner):
        old = queue.get_queued_redemption(index)
        emitted.append(events.audit_event(
            events.REDEMPTION_CANCELLED,
            owner=owner,
            index=index,
            shares=old.shares,
            assets=old.assets,
            reason="replaced",
        ))
    index = queue.queue_redemption(authority, owner, receiver, shares, assets)
    emitted.append(events.audit_event(
        events.REDEMPTION_QUEUED,
        owner=owner,
        receiver=receiver,
        index=index,
        shares=shares,
        assets=assets,
    ))
    return emitted


# ============================================================================
# LIMITS
# ============================================================================

def max_redeem(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    owner: str,
    state: Optional[FundState] = None,
) -> Decimal:
    """Shares owner can redeem directly right now."""
    if state is None:
        state = load_fund(view, symbol)
    if not state.queue().is_queue_empty():
        return ZERO
    snap = capital_snapshot(view, symbol, provider, state)
    balance = ShareAccounting(view, symbol).balance_of(owner)
    return min(balance, convert_to_shares(snap.available, snap.capital, snap.supply))


def max_withdraw(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    owner: str,
    state: Optional[FundState] = None,
) -> Decimal:
    """Assets owner can withdraw directly right now."""
    if state is None:
        state = load_fund(view, symbol)
    if not state.queue().is_queue_empty():
        return ZERO
    snap = capital_snapshot(view, symbol, provider, state)
    balance = ShareAccounting(view, symbol).balance_of(owner)
    return min(convert_to_assets(balance, snap.capital, snap.supply), snap.available)


# ============================================================================
# DEPOSIT AND DIRECT REDEMPTION
# ============================================================================

def compute_deposit(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    assets: Decimal,
    receiver: Optional[str] = None,
) -> PendingTransaction:
    """
    Deposit assets and mint shares at the current price.

    Raises:
        InvalidAmount: assets not positive whole units, or would mint 0 shares
        InvalidReceiver: receiver missing or the pool itself
    """
    state = load_fund(view, symbol)
    config = state.config
    assets = _whole_amount(assets, "assets")
    receiver = receiver or caller
    require_address(receiver, "receiver", InvalidReceiver)
    if receiver == config.pool_wallet:
        raise InvalidReceiver("the pool cannot hold shares")

    snap = capital_snapshot(view, symbol, provider, state)
    shares = convert_to_shares(assets, snap.capital, snap.supply)
    if shares <= ZERO:
        raise InvalidAmount(f"deposit of {assets} would mint no shares")

    moves = [
        Move(assets, config.asset, caller, config.pool_wallet, "deposit"),
        ShareAccounting(view, symbol).mint_move(receiver, shares, "deposit"),
    ]
    event = events.audit_event(
        events.DEPOSIT,
        sender=caller,
        owner=receiver,
        assets=assets,
        shares=shares,
    )
    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, state)],
        origin=fund_origin(symbol, caller, "DEPOSIT"),
        events=[event],
    )


def _check_owner(caller: str, owner: str) -> None:
    require_address(owner, "owner", InvalidOwner)
    if caller != owner:
        raise NotAuthorized(f"{caller} cannot redeem for {owner}")


def _check_share_balance(view: LedgerView, symbol: str, owner: str, shares: Decimal) -> None:
    balance = ShareAccounting(view, symbol).balance_of(owner)
    if balance < shares:
        raise InsufficientFunds(f"{owner} holds {balance} shares, needs {shares}")


def compute_redeem(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    shares: Decimal,
    receiver: str,
    owner: str,
) -> PendingTransaction:
    """
    Burn shares for assets, entirely from available liquidity.

    Raises:
        NotAuthorized: caller is not the owner
        InsufficientFunds: owner holds fewer shares
        InsufficientLiquidity: shares exceed max_redeem
    """
    state = load_fund(view, symbol)
    shares = _whole_amount(shares, "shares")
    _check_owner(caller, owner)
    _check_receiver(state, receiver)
    _check_share_balance(view, symbol, owner, shares)

    limit = max_redeem(view, symbol, provider, owner, state)
    if shares > limit:
        raise InsufficientLiquidity(f"redeem of {shares} shares exceeds max_redeem {limit}")
    snap = capital_snapshot(view, symbol, provider, state)
    assets = convert_to_assets(shares, snap.capital, snap.supply)
    if assets <= ZERO:
        raise InvalidAmount(f"redeeming {shares} shares would pay nothing")

    return build_transaction(
        view,
        _redemption_moves(state, symbol, owner, receiver, shares, assets, "redeem"),
        [fund_state_change(view, symbol, state)],
        origin=fund_origin(symbol, caller, "REDEEM"),
        events=[_withdraw_event(caller, receiver, owner, assets, shares)],
    )


def compute_withdraw(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    assets: Decimal,
    receiver: str,
    owner: str,
) -> PendingTransaction:
    """
    Withdraw exactly `assets`, burning the shares that costs (rounded up).

    Raises:
        NotAuthorized: caller is not the owner
        InsufficientLiquidity: assets exceed max_withdraw
    """
    state = load_fund(view, symbol)
    assets = _whole_amount(assets, "assets")
    _check_owner(caller, owner)
    _check_receiver(state, receiver)

    limit = max_withdraw(view, symbol, provider, owner, state)
    if assets > limit:
        raise InsufficientLiquidity(f"withdrawal of {assets} exceeds max_withdraw {limit}")
    snap = capital_snapshot(view, symbol, provider, state)
    shares = preview_withdraw(assets, snap.capital, snap.supply)
    _check_share_balance(view, symbol, owner, shares)

    return build_transaction(
        view,
        _redemption_moves(state, symbol, owner, receiver, shares, assets, "withdraw"),
        [fund_state_change(view, symbol, state)],
        origin=fund_origin(symbol, caller, "WITHDRAW"),
        events=[_withdraw_event(caller, receiver, owner, assets, shares)],
    )


# ============================================================================
# REDEEM / WITHDRAW WITH QUEUEING
# ============================================================================

def split_redeem(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    owner: str,
    shares: Decimal,
    state: Optional[FundState] = None,
) -> Tuple[Decimal, Decimal]:
    """(direct, queued) shares for a redeem_and_or_queue request."""
    if state is None:
        state = load_fund(view, symbol)
    direct = min(shares, max_redeem(view, symbol, provider, owner, state))
    if direct > ZERO:
        snap = capital_snapshot(view, symbol, provider, state)
        if convert_to_assets(direct, snap.capital, snap.supply) <= ZERO:
            direct = ZERO
    return direct, shares - direct


def compute_redeem_and_or_queue(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    shares: Decimal,
    receiver: str,
    owner: str,
) -> PendingTransaction:
    """
    Redeem as many shares as liquidity allows and queue the rest.

    The owner must hold the whole amount. Queuing replaces any entry the
    owner already has in the queue.

    Returns:
        PendingTransaction whose Withdraw / RedemptionQueued events carry the
        direct and queued share amounts (direct + queued == shares)
    """
    state = load_fund(view, symbol)
    config = state.config
    shares = _whole_amount(shares, "shares")
    _check_owner(caller, owner)
    _check_receiver(state, receiver)
    _check_share_balance(view, symbol, owner, shares)

    direct, queued = split_redeem(view, symbol, provider, owner, shares, state)

    moves: List[Move] = []
    emitted: List[AuditEvent] = []
    if direct > ZERO:
        snap = capital_snapshot(view, symbol, provider, state)
        assets = convert_to_assets(direct, snap.capital, snap.supply)
        moves.extend(_redemption_moves(state, symbol, owner, receiver, direct, assets, "redeem"))
        emitted.append(_withdraw_event(caller, receiver, owner, assets, direct))

    new_state = state
    if queued > ZERO:
        queue = state.queue()
        emitted.extend(_queue_request(queue, config.pool_wallet, owner, receiver, queued, ZERO))
        new_state = state.with_queue(queue)

    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "REDEEM_AND_OR_QUEUE"),
        events=emitted,
    )


def compute_withdraw_and_or_queue(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str,
    assets: Decimal,
    receiver: str,
    owner: str,
) -> PendingTransaction:
    """
    Withdraw as many assets as liquidity allows and queue the rest.

    The owner must hold enough shares to withdraw the whole amount at the
    current price.
    When the remainder would take every share the owner has left, it is
    queued as that share amount instead of an asset amount.
    """
    state = load_fund(view, symbol)
    config = state.config
    assets = _whole_amount(assets, "assets")
    _check_owner(caller, owner)
    _check_receiver(state, receiver)

    snap = capital_snapshot(view, symbol, provider, state)
    _check_share_balance(view, symbol, owner, preview_withdraw(assets, snap.capital, snap.supply))

    direct = min(assets, max_withdraw(view, symbol, provider, owner, state))
    queued = assets - direct

    moves: List[Move] = []
    emitted: List[AuditEvent] = []
    shares = ZERO
    if direct > ZERO:
        shares = preview_withdraw(direct, snap.capital, snap.supply)
        moves.extend(_redemption_moves(state, symbol, owner, receiver, shares, direct, "withdraw"))
        emitted.append(_withdraw_event(caller, receiver, owner, direct, shares))
        snap = snap.after_redemption(direct, shares)

    new_state = state
    remaining_shares = ShareAccounting(view, symbol).balance_of(owner) - shares
    if queued > ZERO and remaining_shares > ZERO:
        # a remainder that needs every share left is queued in shares, so the
        # drain does not round it up past the owner's balance
        queued_shares = ZERO
        if preview_withdraw(queued, snap.capital, snap.supply) >= remaining_shares:
            queued_shares, queued = remaining_shares, ZERO
        queue = state.queue()
        emitted.extend(_queue_request(queue, config.pool_wallet, owner, receiver, queued_shares, queued))
        new_state = state.with_queue(queue)

    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, "WITHDRAW_AND_OR_QUEUE"),
        events=emitted,
    )


# ============================================================================
# QUEUE DRAIN
# ============================================================================

def compute_process_redemption_queue(
    view: LedgerView,
    symbol: str,
    provider: InvoiceProviderAdapter,
    caller: str = "liquidity_gate",
) -> PendingTransaction:
    """
    Pay queued redemptions in strict FIFO order from available liquidity.

    For the head entry:
        - owner no longer holds the queued shares: cancel it, continue
        - otherwise pay as much as liquidity allows; a partial payment
          leaves the rest at the head and stops the drain

    Capital, supply and liquidity are tracked in a CapitalSnapshot updated
    after each payout, so one transaction pays many entries consistently.

    Returns:
        PendingTransaction, empty when nothing was paid or cancelled
    """
    state = load_fund(view, symbol)
    config = state.config
    queue = state.queue()
    if queue.is_queue_empty():
        return empty_pending_transaction(view)

    shares_book = ShareAccounting(view, symbol)
    snap: CapitalSnapshot = capital_snapshot(view, symbol, provider, state)
    balances = {}
    moves: List[Move] = []
    emitted: List[AuditEvent] = []

    while not queue.is_queue_empty() and snap.available > ZERO and snap.capital > ZERO:
        index = queue.head
        entry = queue.get_next_redemption()
        owner = entry.owner
        balance = balances.get(owner, shares_book.balance_of(owner))

        if entry.is_share_denominated:
            needed = entry.shares
        else:
            needed = preview_withdraw(entry.assets, snap.capital, snap.supply)
        if balance < needed:
            queue.cancel_queued_redemption(config.pool_wallet, index)
            emitted.append(events.audit_event(
                events.REDEMPTION_CANCELLED,
                owner=owner,
                index=index,
                shares=entry.shares,
                assets=entry.assets,
                reason="insufficient_balance",
            ))
            continue

        if entry.is_share_denominated:
            shares = min(entry.shares, convert_to_shares(snap.available, snap.capital, snap.supply))
            assets = convert_to_assets(shares, snap.capital, snap.supply)
            drawn = shares
        else:
            assets = min(entry.assets, snap.available)
            shares = preview_withdraw(assets, snap.capital, snap.supply)
            drawn = assets
        if shares <= ZERO or assets <= ZERO:
            break

        remaining = queue.remove_amount_from_first_owner(config.pool_wallet, drawn)
        moves.extend(_redemption_moves(
            state, symbol, owner, entry.receiver, shares, assets, f"queued_redemption_{index}",
        ))
        balances[owner] = balance - shares
        snap = snap.after_redemption(assets, shares)
        emitted.append(events.audit_event(
            events.REDEMPTION_PROCESSED,
            owner=owner,
            receiver=entry.receiver,
            index=index,
            shares=shares,
            assets=assets,
            remaining_shares=remaining.shares,
            remaining_assets=remaining.assets,
        ))

    if not emitted:
        return empty_pending_transaction(view)

    return build_transaction(
        view, moves,
        [fund_state_change(view, symbol, state.with_queue(queue))],
        origin=fund_origin(symbol, caller, "PROCESS_REDEMPTION_QUEUE", OriginType.CONTRACT),
        events=emitted,
    )


# ============================================================================
# QUEUE ADMINISTRATION
# ============================================================================

def compute_cancel_queued_redemption(
    view: LedgerView,
    symbol: str,
    caller: str,
    index: int,
) -> PendingTransaction:
    """
    Cancel a queued redemption. Allowed for the entry's owner and the pool
    owner.
    """
    state = load_fund(view, symbol)
    config = state.config
    queue = state.queue()
    acting_as = config.pool_wallet if caller == config.owner else caller
    entry = queue.cancel_queued_redemption(acting_as, index)
    event = events.audit_event(
        events.REDEMPTION_CANCELLED,
        owner=entry.owner,
        index=index,
        shares=entry.shares,
        assets=entry.assets,
        reason="cancelled",
    )
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, state.with_queue(queue))],
        origin=fund_origin(symbol, caller, "CANCEL_QUEUED_REDEMPTION"),
        events=[event],
    )


def compute_compact_queue(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """Drop cancelled slots; every queue index changes. Pool owner only."""
    state = load_fund(view, symbol)
    config = state.config
    require_role(config, ROLE_OWNER, caller)
    queue = state.queue()
    removed = queue.compact_queue(config.pool_wallet)
    event = events.audit_event(
        events.QUEUE_COMPACTED,
        removed=removed,
        length=queue.get_queue_length(),
    )
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, state.with_queue(queue))],
        origin=fund_origin(symbol, caller, "COMPACT_QUEUE"),
        events=[event],
    )


def compute_clear_queue(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    """Drop every queued redemption. Pool owner only."""
    state = load_fund(view, symbol)
    config = state.config
    require_role(config, ROLE_OWNER, caller)
    queue = state.queue()
    dropped = queue.clear_queue(config.pool_wallet)
    event = events.audit_event(events.QUEUE_CLEARED, dropped=dropped)
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, state.with_queue(queue))],
        origin=fund_origin(symbol, caller, "CLEAR_QUEUE"),
        events=[event],
    )
