"""
conftest.py - Shared pytest fixtures for fund tests

Provides common fixtures used across unit, functional and conformance tests:
- A ledger with the reference asset and participant wallets
- A fund with the default fee schedule
- A fund without protocol or admin fees, for exact-number scenarios
"""

import pytest

from factoring import Ledger, FactoringFund

from tests.fund_builders import make_ledger, make_fund


@pytest.fixture
def ledger() -> Ledger:
    """Ledger at 2025-01-01 with USDC and the participant wallets."""
    return make_ledger()


@pytest.fixture
def fund(ledger) -> FactoringFund:
    """Fund with the default fees (protocol 25 bps, admin 50 bps)."""
    return make_fund(ledger)


@pytest.fixture
def zero_fee_fund(ledger) -> FactoringFund:
    """Fund with protocol and admin fees set to zero."""
    return make_fund(ledger, protocol_fee_bps=0, admin_fee_bps=0)
