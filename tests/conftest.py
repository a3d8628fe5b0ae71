"""
conftest.py - Shared pytest fixtures for lending core tests

Provides common fixtures used across unit, conformance and functional tests:
- Access control, audit log and pool ledger collaborators
- Initialized configuration stores with registered assets
- Position ledgers and market orchestrators wired together
"""

import pytest

from lending import (
    AdminAccessControl, MemoryAuditLog, AccountPositionLedger,
    MarketOrchestrator, ProtocolFees,
)

from tests.fakes import FlakyPoolLedger
from tests.support import ADMIN, WETH_SHADOW, USDC_SHADOW, build_store


# =============================================================================
# BASIC FIXTURES
# =============================================================================

@pytest.fixture
def access():
    return AdminAccessControl(ADMIN)


@pytest.fixture
def audit():
    return MemoryAuditLog()


@pytest.fixture
def store(access, audit):
    """Initialized store, default fees, WETH and USDC registered."""
    return build_store(access, audit)


@pytest.fixture
def fee_free_store(access, audit):
    """Initialized store with all fees at zero."""
    return build_store(access, audit, fees=ProtocolFees(0, 0, 0))


@pytest.fixture
def ledger(store):
    return AccountPositionLedger(store, verbose=False)


# =============================================================================
# MARKET FIXTURES
# =============================================================================

@pytest.fixture
def pool_ledger():
    """Pool ledger with deep shadow liquidity for WETH and USDC."""
    pools = FlakyPoolLedger()
    pools.supply_liquidity(WETH_SHADOW, 1_000_000)
    pools.supply_liquidity(USDC_SHADOW, 1_000_000)
    return pools


@pytest.fixture
def market(store, pool_ledger, audit):
    ledger = AccountPositionLedger(store, verbose=False)
    return MarketOrchestrator(store, ledger, pool_ledger, audit)


@pytest.fixture
def fee_free_market(fee_free_store, pool_ledger, audit):
    ledger = AccountPositionLedger(fee_free_store, verbose=False)
    return MarketOrchestrator(fee_free_store, ledger, pool_ledger, audit)
