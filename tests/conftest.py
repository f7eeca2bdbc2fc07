"""
conftest.py - Shared pytest fixtures for lending engine tests

Provides common fixtures used across unit, conformance and functional tests:
- Clock, oracle and parameter store
- Funded in-memory asset ledgers (lender, liquidator, alice, bob)
- Engines at increasing stages: empty, supplied, with an open borrow
"""

import pytest
from decimal import Decimal

from lendpool import (
    InMemoryAssetLedger,
    LendingEngine,
    LogicalClock,
    ProtocolParameters,
    StaticParameterStore,
    StaticPriceOracle,
)

from tests.fakes import T0, fund


# =============================================================================
# COLLABORATORS
# =============================================================================

@pytest.fixture
def clock():
    """Logical clock starting at 2025-01-01."""
    return LogicalClock(T0)


@pytest.fixture
def oracle(clock):
    """Static feed: one collateral unit is worth 2 loan units."""
    return StaticPriceOracle(Decimal("2"), clock)


@pytest.fixture
def params():
    """75% LTV, 5% liquidation bonus, no interest."""
    return StaticParameterStore(ProtocolParameters(
        collateralization_ratio_bps=7500,
        liquidation_bonus_bps=500,
        rate_per_second=Decimal("0"),
    ))


@pytest.fixture
def loan_asset():
    return InMemoryAssetLedger("USDC")


@pytest.fixture
def collateral_asset():
    return InMemoryAssetLedger("WETH")


# =============================================================================
# ENGINES
# =============================================================================

@pytest.fixture
def engine(loan_asset, collateral_asset, oracle, params, clock):
    """Engine over funded wallets with an empty pool."""
    fund(loan_asset, collateral_asset)
    return LendingEngine(
        loan_asset=loan_asset,
        collateral_asset=collateral_asset,
        oracle=oracle,
        params=params,
        clock=clock,
    )


@pytest.fixture
def supplied_engine(engine):
    """Engine whose pool holds 100,000 loan units from the lender."""
    engine.deposit("lender", 100_000)
    return engine


@pytest.fixture
def borrowed_engine(supplied_engine):
    """Alice posted 100 collateral at price 2 and borrowed the full 150."""
    supplied_engine.deposit_collateral("alice", 100)
    supplied_engine.borrow("alice", 150)
    return supplied_engine
