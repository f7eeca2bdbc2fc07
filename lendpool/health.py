"""
health.py - Collateral Valuation and Health Scoring

Pure functions that decide how much a position may borrow and whether it
can be liquidated. Nothing here is cached: callers pass the freshest price
and the already-accrued debt on every call.

Key Formulas:
    collateral_value = floor(collateral * price)
    max_borrowable   = floor(collateral * price * ratio_bps / 10000)
    health_score     = max_borrowable * 100 / debt      (Infinity when debt == 0)
    liquidatable     = health_score < 100
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal

from .core import (
    BPS_SCALE, LIQUIDATION_THRESHOLD,
    fixed_point, mul_div, to_amount, to_decimal,
)


INFINITE_SCORE = Decimal("Infinity")


@dataclass(frozen=True, slots=True)
class HealthReport:
    """
    Snapshot of a position's health at one price.

    Attributes:
        price: Collateral price used (loan-asset units per collateral unit)
        collateral_value: floor(collateral * price)
        debt: Current debt including accrued interest
        max_borrowable: Debt ceiling at the configured ratio
        score: Health score (Infinity when debt is zero)
        liquidatable: True if score is below the liquidation threshold
    """
    price: Decimal
    collateral_value: int
    debt: int
    max_borrowable: int
    score: Decimal
    liquidatable: bool

    @property
    def headroom(self) -> int:
        """Additional debt the position could take on at this price (0 if underwater)."""
        return max(0, self.max_borrowable - self.debt)


@fixed_point
def collateral_value(collateral: int, price: Decimal) -> int:
    """Value of collateral in loan-asset units, rounded down."""
    return to_amount(Decimal(collateral) * to_decimal(price))


@fixed_point
def max_borrowable(collateral: int, price: Decimal, ratio_bps: int) -> int:
    """
    Maximum debt a collateral amount supports.

    The full product is formed before the single floor so that
    collateral=100, price=2, ratio=7500 yields exactly 150.
    """
    if collateral == 0 or ratio_bps == 0:
        return 0
    return mul_div(Decimal(collateral) * to_decimal(price), ratio_bps, BPS_SCALE)


@fixed_point
def health_score(collateral: int, price: Decimal, debt: int, ratio_bps: int) -> Decimal:
    """
    Compute the health score of a position.

    Args:
        collateral: Collateral balance
        price: Current collateral price
        debt: Current debt (already accrued)
        ratio_bps: Collateralization ratio in basis points

    Returns:
        Decimal("Infinity") if debt is zero, else max_borrowable * 100 / debt.
    """
    if debt == 0:
        return INFINITE_SCORE
    if debt < 0:
        raise ValueError(f"debt cannot be negative, got {debt}")
    return Decimal(max_borrowable(collateral, price, ratio_bps) * 100) / Decimal(debt)


def is_liquidatable(score: Decimal, threshold: int = LIQUIDATION_THRESHOLD) -> bool:
    """True if the score is strictly below the threshold."""
    return score < threshold


@fixed_point
def health_report(collateral: int, price: Decimal, debt: int, ratio_bps: int) -> HealthReport:
    """Build a HealthReport from raw position figures."""
    price = to_decimal(price)
    score = health_score(collateral, price, debt, ratio_bps)
    return HealthReport(
        price=price,
        collateral_value=collateral_value(collateral, price),
        debt=debt,
        max_borrowable=max_borrowable(collateral, price, ratio_bps),
        score=score,
        liquidatable=is_liquidatable(score),
    )
