"""
simulation.py - Price Path Stress Testing

Drives a LendingEngine through a random collateral price path and
liquidates every position that becomes unsafe along the way.

Key Formulas (geometric Brownian motion):
    dt = step_seconds / SECONDS_PER_YEAR
    S(t+dt) = S(t) * exp((mu - sigma^2 / 2) * dt + sigma * sqrt(dt) * Z),  Z ~ N(0, 1)

The path is generated with numpy from an explicit seed, so a stress run is
reproducible. Prices are converted to Decimal before they reach the engine.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Tuple
import logging

import numpy as np

from .core import DEFAULT_EPOCH, LendingError, LogicalClock, fixed_point, to_decimal
from .engine import LendingEngine
from .health import INFINITE_SCORE
from .oracle import StaticPriceOracle
from .positions import LiquidationReceipt

logger = logging.getLogger(__name__)

SECONDS_PER_YEAR = 365 * 24 * 3600
PRICE_QUANTUM = Decimal("1e-8")


@dataclass
class StressResult:
    """
    Outcome of a stress run.

    Attributes:
        steps: Number of price observations walked
        liquidations: Receipts of every successful liquidation, in order
        failed_liquidations: Liquidations attempted but rejected (e.g. liquidator short of funds)
        total_bad_debt: Bad debt booked during the run
        min_health_score: Lowest score seen on any indebted position
        final_price: Last price on the path
    """
    steps: int = 0
    liquidations: List[LiquidationReceipt] = field(default_factory=list)
    failed_liquidations: int = 0
    total_bad_debt: int = 0
    min_health_score: Decimal = INFINITE_SCORE
    final_price: Optional[Decimal] = None


@fixed_point
def simulate_price_path(
    initial_price: Decimal,
    steps: int,
    volatility: float,
    step_seconds: int = 86400,
    drift: float = 0.0,
    seed: Optional[int] = None,
    start: Optional[datetime] = None,
) -> List[Tuple[datetime, Decimal]]:
    """
    Generate a geometric Brownian motion price path.

    Args:
        initial_price: Price at the start of the path
        steps: Number of moves after the initial observation
        volatility: Annualized volatility (e.g. 0.8 for 80%)
        step_seconds: Time between observations
        drift: Annualized drift
        seed: Seed for numpy's default_rng
        start: Timestamp of the first observation (default: epoch)

    Returns:
        steps + 1 (timestamp, price) pairs, prices quantized to 8 decimals.
    """
    if steps < 0:
        raise ValueError(f"steps cannot be negative, got {steps}")
    if volatility < 0:
        raise ValueError(f"volatility cannot be negative, got {volatility}")
    if step_seconds <= 0:
        raise ValueError(f"step_seconds must be positive, got {step_seconds}")

    initial = to_decimal(initial_price)
    if initial <= 0:
        raise ValueError(f"initial_price must be positive, got {initial}")

    rng = np.random.default_rng(seed)
    dt = step_seconds / SECONDS_PER_YEAR
    shocks = rng.standard_normal(steps)
    log_returns = (drift - 0.5 * volatility ** 2) * dt + volatility * np.sqrt(dt) * shocks
    factors = np.exp(np.cumsum(log_returns))

    t0 = start or DEFAULT_EPOCH
    path = [(t0, initial)]
    for i, factor in enumerate(factors, start=1):
        price = (initial * Decimal(repr(float(factor)))).quantize(PRICE_QUANTUM)
        # Quantization can round a deep crash to zero.
        price = max(price, PRICE_QUANTUM)
        path.append((t0 + timedelta(seconds=step_seconds * i), price))
    return path


def run_liquidation_stress(
    engine: LendingEngine,
    oracle: StaticPriceOracle,
    clock: LogicalClock,
    path: List[Tuple[datetime, Decimal]],
    liquidator: str = "liquidator",
) -> StressResult:
    """
    Walk a price path, liquidating every unsafe position at each step.

    At each observation the clock moves to its timestamp (never backwards),
    the oracle price is set, and every indebted account whose health score
    is below the threshold is liquidated by liquidator.

    Returns:
        StressResult summarizing the run.
    """
    result = StressResult()
    bad_debt_before = engine.totals.total_bad_debt

    for timestamp, price in path:
        if timestamp > clock.current_time:
            clock.advance_time(timestamp)
        oracle.set_price(price)
        result.steps += 1
        result.final_price = to_decimal(price)

        for account in engine.accounts():
            if engine.get_position(account).principal == 0:
                continue
            score = engine.health_score(account)
            result.min_health_score = min(result.min_health_score, score)
            if score >= engine.params.get_parameters().liquidation_threshold:
                continue
            try:
                receipt = engine.liquidate(liquidator, account)
            except LendingError as exc:
                result.failed_liquidations += 1
                logger.warning(
                    "stress liquidation of %s at %s failed: %s", account, timestamp, exc,
                )
                continue
            result.liquidations.append(receipt)

    result.total_bad_debt = engine.totals.total_bad_debt - bad_debt_before
    logger.info(
        "stress run: %d steps, %d liquidations, %d failed, bad debt %d",
        result.steps, len(result.liquidations), result.failed_liquidations, result.total_bad_debt,
    )
    return result
