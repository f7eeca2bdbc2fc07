"""
lendpool - Collateralized Lending Engine

A single-pool lending engine: users supply a loan asset, post a collateral
asset and borrow against it. Interest accrues through a global index, every
debt-affecting operation is checked against a live price, and unsafe
positions can be liquidated by third parties.

Usage:
    from decimal import Decimal
    from lendpool import (
        LendingEngine, InMemoryAssetLedger, StaticPriceOracle,
        StaticParameterStore, ProtocolParameters, LogicalClock,
    )

    clock = LogicalClock()
    usdc = InMemoryAssetLedger("USDC")
    weth = InMemoryAssetLedger("WETH")
    usdc.mint("lender", 10_000)
    weth.mint("alice", 100)

    engine = LendingEngine(
        loan_asset=usdc,
        collateral_asset=weth,
        oracle=StaticPriceOracle(Decimal("2"), clock),
        params=StaticParameterStore(ProtocolParameters(collateralization_ratio_bps=7500)),
        clock=clock,
    )
    engine.deposit("lender", 10_000)
    engine.deposit_collateral("alice", 100)
    engine.borrow("alice", 150)           # max borrowable is 100 * 2 * 75% = 150
    engine.health_score("alice")          # Decimal('100')
"""

# Core types
from .core import (
    LogicalClock,
    LendingError,
    InvalidAmount,
    InsufficientBalance,
    UndercollateralizedBorrow,
    WithdrawalWouldUnderwater,
    PositionHealthy,
    ReentrantCall,
    ProtocolPaused,
    OracleUnavailable,
    ArithmeticOverflow,
    TransferFailed,
    BPS_SCALE,
    LIQUIDATION_THRESHOLD,
    MAX_UINT256,
)

# Accrual and health
from .accrual import GlobalAccrualState, accrue, current_debt, capitalize
from .health import (
    HealthReport,
    collateral_value,
    max_borrowable,
    health_score,
    is_liquidatable,
    health_report,
)

# State
from .positions import (
    Position,
    PositionStatus,
    PositionLedger,
    PoolTotals,
    Action,
    Receipt,
    LiquidationReceipt,
)

# Collaborators
from .oracle import PriceOracle, PriceQuote, StaticPriceOracle, TimeSeriesPriceOracle
from .assets import AssetLedger, InMemoryAssetLedger, POOL_CUSTODY
from .params import ProtocolParameters, ParameterStore, StaticParameterStore
from .config import LendingSettings, get_settings, configure_logging

# Engine
from .engine import LendingEngine

# Simulation
from .simulation import simulate_price_path, run_liquidation_stress, StressResult

__all__ = [
    # Core
    'LogicalClock', 'BPS_SCALE', 'LIQUIDATION_THRESHOLD', 'MAX_UINT256',
    # Errors
    'LendingError', 'InvalidAmount', 'InsufficientBalance', 'UndercollateralizedBorrow',
    'WithdrawalWouldUnderwater', 'PositionHealthy', 'ReentrantCall', 'ProtocolPaused',
    'OracleUnavailable', 'ArithmeticOverflow', 'TransferFailed',
    # Accrual
    'GlobalAccrualState', 'accrue', 'current_debt', 'capitalize',
    # Health
    'HealthReport', 'collateral_value', 'max_borrowable', 'health_score',
    'is_liquidatable', 'health_report',
    # State
    'Position', 'PositionStatus', 'PositionLedger', 'PoolTotals',
    'Action', 'Receipt', 'LiquidationReceipt',
    # Collaborators
    'PriceOracle', 'PriceQuote', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'AssetLedger', 'InMemoryAssetLedger', 'POOL_CUSTODY',
    'ProtocolParameters', 'ParameterStore', 'StaticParameterStore',
    'LendingSettings', 'get_settings', 'configure_logging',
    # Engine
    'LendingEngine',
    # Simulation
    'simulate_price_path', 'run_liquidation_stress', 'StressResult',
]

__version__ = '1.0.0'
