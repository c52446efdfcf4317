"""
config.py - Fee Configuration: Parameter Setters and Fee Withdrawals

Setters replace the FundConfig stored in the fund state. Rate changes only
affect approvals made afterwards; existing approvals keep the rates they
snapshotted.

    protocol fee receiver: set_protocol_fee_bps, set_protocol_fee_receiver,
                           withdraw_protocol_fees
    pool owner:            set_admin_fee_bps, set_target_yield,
                           set_grace_period_days, set_approval_duration,
                           set_underwriter, withdraw_admin_fees,
                           withdraw_spread_gains

A withdrawal pays the whole balance from the pool to the caller and zeroes it.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from .core import (
    LedgerView, Move, PendingTransaction,
    InvalidAmount, WalletNotRegistered,
    build_transaction,
)
from .fees import validate_bps
from .state import load_fund, fund_state_change, fund_origin
from .access import (
    ROLE_OWNER, ROLE_PROTOCOL_FEE_RECEIVER,
    require_role, require_address,
)
from . import events


ZERO = Decimal("0")


def _require_wallet(view: LedgerView, address: str, name: str) -> None:
    require_address(address, name)
    if address not in view.list_wallets():
        raise WalletNotRegistered(f"{name} {address} is not a registered wallet")


def _compute_config_update(
    view: LedgerView,
    symbol: str,
    caller: str,
    role: str,
    event_name: str,
    field_name: str,
    value,
) -> PendingTransaction:
    state = load_fund(view, symbol)
    require_role(state.config, role, caller)
    old_value = getattr(state.config, field_name)
    new_state = replace(state, config=replace(state.config, **{field_name: value}))
    event = events.audit_event(event_name, old_value=old_value, new_value=value)
    return build_transaction(
        view, [],
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, f"SET_{field_name.upper()}"),
        events=[event],
    )


# ============================================================================
# SETTERS
# ============================================================================

def compute_set_protocol_fee_bps(view: LedgerView, symbol: str, caller: str, bps: int) -> PendingTransaction:
    validate_bps(bps, "protocol_fee_bps")
    return _compute_config_update(view, symbol, caller, ROLE_PROTOCOL_FEE_RECEIVER,
                                  events.PROTOCOL_FEE_BPS_CHANGED, 'protocol_fee_bps', bps)


def compute_set_protocol_fee_receiver(view: LedgerView, symbol: str, caller: str, receiver: str) -> PendingTransaction:
    _require_wallet(view, receiver, "protocol_fee_receiver")
    return _compute_config_update(view, symbol, caller, ROLE_PROTOCOL_FEE_RECEIVER,
                                  events.PROTOCOL_FEE_RECEIVER_CHANGED, 'protocol_fee_receiver', receiver)


def compute_set_admin_fee_bps(view: LedgerView, symbol: str, caller: str, bps: int) -> PendingTransaction:
    validate_bps(bps, "admin_fee_bps")
    return _compute_config_update(view, symbol, caller, ROLE_OWNER,
                                  events.ADMIN_FEE_BPS_CHANGED, 'admin_fee_bps', bps)


def compute_set_target_yield(view: LedgerView, symbol: str, caller: str, bps: int) -> PendingTransaction:
    validate_bps(bps, "target_yield_bps")
    return _compute_config_update(view, symbol, caller, ROLE_OWNER,
                                  events.TARGET_YIELD_CHANGED, 'target_yield_bps', bps)


def compute_set_grace_period_days(view: LedgerView, symbol: str, caller: str, days: int) -> PendingTransaction:
    if isinstance(days, bool) or not isinstance(days, int) or days < 0:
        raise InvalidAmount(f"grace_period_days must be a non-negative integer, got {days!r}")
    return _compute_config_update(view, symbol, caller, ROLE_OWNER,
                                  events.GRACE_PERIOD_DAYS_CHANGED, 'grace_period_days', days)


def compute_set_approval_duration(
    view: LedgerView,
    symbol: str,
    caller: str,
    duration: timedelta,
) -> PendingTransaction:
    if not isinstance(duration, timedelta) or duration <= timedelta(0):
        raise InvalidAmount(f"approval_duration must be a positive timedelta, got {duration!r}")
    return _compute_config_update(view, symbol, caller, ROLE_OWNER,
                                  events.APPROVAL_DURATION_CHANGED, 'approval_duration', duration)


def compute_set_underwriter(view: LedgerView, symbol: str, caller: str, underwriter: str) -> PendingTransaction:
    _require_wallet(view, underwriter, "underwriter")
    return _compute_config_update(view, symbol, caller, ROLE_OWNER,
                                  events.UNDERWRITER_CHANGED, 'underwriter', underwriter)


# ============================================================================
# FEE WITHDRAWALS
# ============================================================================

def _compute_fee_withdrawal(
    view: LedgerView,
    symbol: str,
    caller: str,
    role: str,
    balance_field: str,
    event_name: str,
) -> PendingTransaction:
    state = load_fund(view, symbol)
    config = state.config
    require_role(config, role, caller)
    amount = getattr(state, balance_field)
    if amount <= ZERO:
        raise InvalidAmount(f"no {balance_field.replace('_', ' ')} to withdraw")

    new_state = replace(state, **{balance_field: ZERO})
    move = Move(amount, config.asset, config.pool_wallet, caller, f"withdraw_{balance_field}")
    event = events.audit_event(event_name, receiver=caller, amount=amount)
    return build_transaction(
        view, [move],
        [fund_state_change(view, symbol, new_state)],
        origin=fund_origin(symbol, caller, event_name),
        events=[event],
    )


def compute_withdraw_protocol_fees(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    return _compute_fee_withdrawal(view, symbol, caller, ROLE_PROTOCOL_FEE_RECEIVER,
                                   'protocol_fee_balance', events.PROTOCOL_FEES_WITHDRAWN)


def compute_withdraw_admin_fees(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    return _compute_fee_withdrawal(view, symbol, caller, ROLE_OWNER,
                                   'admin_fee_balance', events.ADMIN_FEES_WITHDRAWN)


def compute_withdraw_spread_gains(view: LedgerView, symbol: str, caller: str) -> PendingTransaction:
    return _compute_fee_withdrawal(view, symbol, caller, ROLE_OWNER,
                                   'spread_gains_balance', events.SPREAD_GAINS_WITHDRAWN)


class FeeConfiguration:
    """The setters and withdrawals above, bound to one fund."""

    def __init__(self, view: LedgerView, symbol: str):
        self.view = view
        self.symbol = symbol

    def set_protocol_fee_bps(self, caller: str, bps: int) -> PendingTransaction:
        return compute_set_protocol_fee_bps(self.view, self.symbol, caller, bps)

    def set_protocol_fee_receiver(self, caller: str, receiver: str) -> PendingTransaction:
        return compute_set_protocol_fee_receiver(self.view, self.symbol, caller, receiver)

    def set_admin_fee_bps(self, caller: str, bps: int) -> PendingTransaction:
        return compute_set_admin_fee_bps(self.view, self.symbol, caller, bps)

    def set_target_yield(self, caller: str, bps: int) -> PendingTransaction:
        return compute_set_target_yield(self.view, self.symbol, caller, bps)

    def set_grace_period_days(self, caller: str, days: int) -> PendingTransaction:
        return compute_set_grace_period_days(self.view, self.symbol, caller, days)

    def set_approval_duration(self, caller: str, duration: timedelta) -> PendingTransaction:
        return compute_set_approval_duration(self.view, self.symbol, caller, duration)

    def set_underwriter(self, caller: str, underwriter: str) -> PendingTransaction:
        return compute_set_underwriter(self.view, self.symbol, caller, underwriter)

    def withdraw_protocol_fees(self, caller: str) -> PendingTransaction:
        return compute_withdraw_protocol_fees(self.view, self.symbol, caller)

    def withdraw_admin_fees(self, caller: str) -> PendingTransaction:
        return compute_withdraw_admin_fees(self.view, self.symbol, caller)

    def withdraw_spread_gains(self, caller: str) -> PendingTransaction:
        return compute_withdraw_spread_gains(self.view, self.symbol, caller)
