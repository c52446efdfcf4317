"""
shares.py - Share Token Bookkeeping and Conversions

Shares are a FUND_SHARE unit on the ledger. Minting is a move out of the
system wallet, burning a move back into it, so the outstanding supply is the
sum of all non-system positions.

Conversions round in the fund's favour: everything floors except
preview_withdraw, which rounds the shares a withdrawal burns up.
"""

from __future__ import annotations
from decimal import Decimal

from .core import (
    LedgerView, Move, SYSTEM_WALLET,
    InsufficientLiquidity,
)


ZERO = Decimal("0")


def outstanding_shares(view: LedgerView, share_symbol: str) -> Decimal:
    return sum(
        (qty for wallet, qty in view.get_positions(share_symbol).items() if wallet != SYSTEM_WALLET),
        ZERO,
    )


def ceil_div(numerator: Decimal, denominator: Decimal) -> Decimal:
    """Ceiling division for non-negative numerator and positive denominator."""
    quotient, remainder = divmod(numerator, denominator)
    return quotient + 1 if remainder else quotient


def convert_to_shares(assets: Decimal, capital: Decimal, supply: Decimal) -> Decimal:
    """
    Shares worth `assets`, floored.

    With zero supply shares and assets are 1:1. With no positive capital
    behind existing shares nothing can be minted.
    """
    if supply == ZERO:
        return assets
    if capital <= ZERO:
        return ZERO
    return (assets * supply) // capital


def convert_to_assets(shares: Decimal, capital: Decimal, supply: Decimal) -> Decimal:
    """Assets worth `shares`, floored."""
    if supply == ZERO:
        return shares
    if capital <= ZERO:
        return ZERO
    return (shares * capital) // supply


def preview_withdraw(assets: Decimal, capital: Decimal, supply: Decimal) -> Decimal:
    """
    Shares burned to withdraw exactly `assets`, rounded up.

    Raises:
        InsufficientLiquidity: If shares exist but the fund has no capital
    """
    if supply == ZERO:
        return assets
    if capital <= ZERO:
        raise InsufficientLiquidity("fund has no capital to withdraw from")
    return ceil_div(assets * supply, capital)


class ShareAccounting:
    """Share token reads and minting for one fund."""

    def __init__(self, view: LedgerView, share_symbol: str):
        self.view = view
        self.share_symbol = share_symbol

    def total_supply(self) -> Decimal:
        return outstanding_shares(self.view, self.share_symbol)

    def balance_of(self, owner: str) -> Decimal:
        return self.view.get_positions(self.share_symbol).get(owner, ZERO)

    def mint_move(self, receiver: str, shares: Decimal, contract_id: str = "mint") -> Move:
        return Move(shares, self.share_symbol, SYSTEM_WALLET, receiver, contract_id)
