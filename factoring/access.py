"""
access.py - Roles and Permission Lists

Roles (owner, underwriter, protocol fee receiver) are single addresses held in
FundConfig. Permission lists gate who may deposit, redeem and factor; they are
external collaborators consumed only through Permissions.is_allowed().
"""

from __future__ import annotations
from dataclasses import dataclass, field
from typing import Iterable, Protocol, Set, Type, runtime_checkable

from .core import NotAuthorized, InvalidAddress, ValidationError


ROLE_OWNER = "owner"
ROLE_UNDERWRITER = "underwriter"
ROLE_PROTOCOL_FEE_RECEIVER = "protocol_fee_receiver"

ROLES = (ROLE_OWNER, ROLE_UNDERWRITER, ROLE_PROTOCOL_FEE_RECEIVER)


def role_holder(config, role: str) -> str:
    if role not in ROLES:
        raise ValueError(f"unknown role {role!r}")
    return getattr(config, role)


def require_role(config, role: str, caller: str) -> None:
    """
    Raises:
        NotAuthorized: If caller does not hold role
    """
    if caller != role_holder(config, role):
        raise NotAuthorized(f"{caller} is not the {role}")


def require_address(
    address: str,
    name: str = "address",
    error: Type[ValidationError] = InvalidAddress,
) -> str:
    if not address or not address.strip():
        raise error(f"{name} cannot be empty")
    return address


@runtime_checkable
class Permissions(Protocol):
    def is_allowed(self, address: str) -> bool:
        ...


class AllowList:
    """Explicit set of allowed addresses."""

    def __init__(self, addresses: Iterable[str] = ()):
        self._allowed: Set[str] = set(addresses)

    def add(self, address: str) -> None:
        self._allowed.add(require_address(address))

    def remove(self, address: str) -> None:
        self._allowed.discard(address)

    def is_allowed(self, address: str) -> bool:
        return address in self._allowed

    def __repr__(self) -> str:
        return f"AllowList({sorted(self._allowed)})"


class OpenPermissions:
    """Everyone is allowed."""

    def is_allowed(self, address: str) -> bool:
        return True


@dataclass
class AccessControl:
    """The three permission lists of a fund. Defaults let everyone in."""
    deposit: Permissions = field(default_factory=OpenPermissions)
    redeem: Permissions = field(default_factory=OpenPermissions)
    factoring: Permissions = field(default_factory=OpenPermissions)

    def require_deposit(self, address: str) -> None:
        if not self.deposit.is_allowed(address):
            raise NotAuthorized(f"{address} may not deposit")

    def require_redeem(self, address: str) -> None:
        if not self.redeem.is_allowed(address):
            raise NotAuthorized(f"{address} may not redeem")

    def require_factoring(self, address: str) -> None:
        if not self.factoring.is_allowed(address):
            raise NotAuthorized(f"{address} may not factor invoices")
