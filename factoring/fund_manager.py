"""
fund_manager.py - Committed Capital for a Factoring Fund

Investors commit capital up front; the capital caller draws it into the fund
when the pool needs liquidity. A capital call is split across the open
commitments in proportion to their size and each share is deposited through
the fund on the investor's behalf, so the investor receives the shares.

    commit          investor pledges at least min_investment (in total)
    cancel          investor withdraws what has not been called yet
    capital_call    capital caller draws an amount, all deposits or none

Commitments live on the manager, not on the ledger. A failed call leaves them
unchanged, and the ledger rolls back every deposit it made.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_FLOOR
from typing import Dict, List, Tuple

from .core import (
    NotAuthorized, InvalidAmount, InvalidOwner, BelowMinInvestment, InsufficientCommitment,
)
from .access import require_address
from .fund import FactoringFund


ZERO = Decimal("0")


def _whole(amount, name: str, allow_zero: bool = False) -> Decimal:
    if not isinstance(amount, Decimal):
        amount = Decimal(str(amount))
    if amount < ZERO or (amount == ZERO and not allow_zero):
        raise InvalidAmount(f"{name} must be positive, got {amount}")
    if amount != amount.to_integral_value():
        raise InvalidAmount(f"{name} must be whole units, got {amount}")
    return amount


@dataclass(frozen=True, slots=True)
class Commitment:
    """
    One investor's pledge.

    Attributes:
        investor: Wallet that pays the calls and receives the shares
        outstanding: Committed but not yet called
        called: Deposited into the fund by capital calls so far
    """
    investor: str
    outstanding: Decimal
    called: Decimal = ZERO


def allocate_call(commitments: List[Commitment], amount: Decimal) -> List[Tuple[str, Decimal]]:
    """
    Split amount across commitments pro rata to their outstanding balance.

    Each part is rounded down; the units left over go one each, in commitment
    order, to the investors whose exact part had a fraction. No part exceeds
    the investor's outstanding commitment.
    """
    total = sum((c.outstanding for c in commitments), ZERO)
    parts = []
    fractional = []
    for c in commitments:
        exact = amount * c.outstanding / total
        part = exact.to_integral_value(rounding=ROUND_FLOOR)
        parts.append(part)
        fractional.append(exact != part)

    leftover = amount - sum(parts, ZERO)
    for i, has_fraction in enumerate(fractional):
        if leftover <= ZERO:
            break
        if has_fraction:
            parts[i] += 1
            leftover -= 1

    return [(c.investor, part) for c, part in zip(commitments, parts) if part > ZERO]


class FundManager:
    """
    Commitment book and capital calls for one fund.

    Example:
        manager = FundManager(fund, min_investment=Decimal(1_000_000), capital_caller="gp")
        manager.commit("alice", Decimal(5_000_000))
        manager.commit("bob", Decimal(3_000_000))
        manager.capital_call("gp", Decimal(4_000_000))   # alice 2.5M, bob 1.5M
    """

    def __init__(self, fund: FactoringFund, min_investment: Decimal, capital_caller: str):
        """
        Args:
            fund: The fund calls deposit into
            min_investment: Smallest total commitment an investor may hold
            capital_caller: The only address allowed to call capital

        Raises:
            InvalidAmount: min_investment negative or fractional
            InvalidAddress: capital_caller empty
        """
        self.fund = fund
        self.min_investment = _whole(min_investment, "min_investment", allow_zero=True)
        self.capital_caller = require_address(capital_caller, "capital_caller")
        self.verbose = fund.ledger.verbose
        self._commitments: Dict[str, Commitment] = {}

    # ========================================================================
    # INVESTORS
    # ========================================================================

    def commit(self, investor: str, amount: Decimal) -> Commitment:
        """
        Add amount to the investor's outstanding commitment.

        Raises:
            InvalidOwner: investor empty
            InvalidAmount: amount not positive whole units
            NotAuthorized: investor may not deposit into the fund
            BelowMinInvestment: the resulting commitment is under min_investment
        """
        require_address(investor, "investor", InvalidOwner)
        amount = _whole(amount, "amount")
        self.fund.access.require_deposit(investor)

        current = self._commitments.get(investor, Commitment(investor, ZERO))
        outstanding = current.outstanding + amount
        if outstanding < self.min_investment:
            raise BelowMinInvestment(
                f"commitment of {outstanding} is below the minimum of {self.min_investment}"
            )
        commitment = replace(current, outstanding=outstanding)
        self._commitments[investor] = commitment
        if self.verbose:
            print(f"[MANAGER] {investor} committed {amount} (outstanding {outstanding})")
        return commitment

    def cancel(self, investor: str) -> Decimal:
        """Drop the uncalled part of a commitment; returns it."""
        current = self._commitments.get(investor)
        if current is None or current.outstanding == ZERO:
            return ZERO
        self._commitments[investor] = replace(current, outstanding=ZERO)
        if self.verbose:
            print(f"[MANAGER] {investor} cancelled {current.outstanding}")
        return current.outstanding

    # ========================================================================
    # CAPITAL CALLS
    # ========================================================================

    def capital_call(self, caller: str, amount: Decimal) -> Dict[str, Decimal]:
        """
        Deposit amount into the fund out of the open commitments.

        Returns:
            Shares minted per investor

        Raises:
            NotAuthorized: caller is not the capital caller
            InvalidAmount: amount not positive whole units
            InsufficientCommitment: amount exceeds the total outstanding
        """
        if caller != self.capital_caller:
            raise NotAuthorized(f"{caller} is not the capital caller")
        amount = _whole(amount, "amount")
        open_commitments = [c for c in self._commitments.values() if c.outstanding > ZERO]
        available = sum((c.outstanding for c in open_commitments), ZERO)
        if amount > available:
            raise InsufficientCommitment(f"capital call of {amount} exceeds commitments of {available}")

        allocation = allocate_call(open_commitments, amount)
        minted: Dict[str, Decimal] = {}
        with self.fund.ledger.atomic():
            for investor, part in allocation:
                minted[investor] = self.fund.deposit(investor, part)

        for investor, part in allocation:
            current = self._commitments[investor]
            self._commitments[investor] = replace(
                current, outstanding=current.outstanding - part, called=current.called + part,
            )
        if self.verbose:
            print(f"[MANAGER] Called {amount} from {len(allocation)} investor(s)")
        return minted

    # ========================================================================
    # VIEWS
    # ========================================================================

    def commitment_of(self, investor: str) -> Commitment:
        return self._commitments.get(investor, Commitment(investor, ZERO))

    def commitments(self) -> List[Commitment]:
        """Commitments in the order investors first committed."""
        return list(self._commitments.values())

    def total_outstanding(self) -> Decimal:
        return sum((c.outstanding for c in self._commitments.values()), ZERO)

    def total_called(self) -> Decimal:
        return sum((c.called for c in self._commitments.values()), ZERO)
