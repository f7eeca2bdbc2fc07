"""
accrual.py - Interest Accrual via a Global Checkpoint Index

Debt grows through a single global index instead of per-position timers.
Each position remembers the index value at its last debt interaction
(its checkpoint); its current debt is principal scaled by how far the
index has moved since.

Key Formulas:
    index' = index * (1 + rate_per_second * elapsed_seconds)
    current_debt = ceil(principal * index / checkpoint)
    capitalize: principal' = current_debt + delta, checkpoint' = index

All functions are pure: they take frozen dataclasses and return new ones.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal, ROUND_UP
import logging
from typing import TYPE_CHECKING

from .core import (
    INITIAL_INDEX, DEFAULT_EPOCH,
    checked, checked_index, fixed_point, quantize_index, to_amount, to_decimal,
)

if TYPE_CHECKING:
    from .positions import Position

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GlobalAccrualState:
    """
    Singleton accrual record shared by every position.

    Attributes:
        index: Cumulative interest factor since inception (starts at 1, never decreases)
        last_update_time: When the index was last advanced
    """
    index: Decimal = INITIAL_INDEX
    last_update_time: datetime = DEFAULT_EPOCH

    def __post_init__(self):
        if not isinstance(self.index, Decimal):
            object.__setattr__(self, 'index', to_decimal(self.index))
        if self.index < INITIAL_INDEX:
            raise ValueError(f"index cannot be below {INITIAL_INDEX}, got {self.index}")


@fixed_point
def accrue(
    state: GlobalAccrualState,
    now: datetime,
    rate_per_second: Decimal,
) -> GlobalAccrualState:
    """
    Advance the global index to now using simple linear accrual.

    Compounding happens across calls: each call multiplies the index by the
    growth of its own window, so frequent calls approach continuous
    compounding.

    Args:
        state: Current global accrual state
        now: Current time (must not precede state.last_update_time)
        rate_per_second: Non-negative per-second interest rate

    Returns:
        The same state if no time elapsed, otherwise a new state.

    Raises:
        ValueError: If now is before last_update_time or the rate is negative
        ArithmeticOverflow: If the index leaves the fixed-point range
    """
    rate = to_decimal(rate_per_second)
    if rate < 0:
        raise ValueError(f"rate_per_second cannot be negative, got {rate}")

    if now < state.last_update_time:
        raise ValueError(
            f"Cannot accrue backwards: {now} < {state.last_update_time}"
        )

    elapsed = Decimal(str((now - state.last_update_time).total_seconds()))
    if elapsed == 0:
        return state

    growth = Decimal("1") + rate * elapsed
    new_index = checked_index(quantize_index(state.index * growth))

    logger.debug(
        "accrued index %s -> %s over %ss at rate %s",
        state.index, new_index, elapsed, rate,
    )
    return GlobalAccrualState(index=new_index, last_update_time=now)


@fixed_point
def current_debt(position: Position, state: GlobalAccrualState) -> int:
    """
    Debt owed by a position at the state's index.

    Rounded up so that current_debt >= principal whenever index >= checkpoint.

    Returns:
        0 if the position has no principal.
    """
    if position.principal == 0:
        return 0
    if position.accrual_checkpoint <= 0:
        raise ValueError("position with principal must carry a positive checkpoint")
    scaled = Decimal(position.principal) * state.index / position.accrual_checkpoint
    return to_amount(scaled, ROUND_UP)


@fixed_point
def capitalize(position: Position, state: GlobalAccrualState, delta: int) -> Position:
    """
    Roll accrued interest into principal and apply a debt change.

    Args:
        position: Position before the change
        state: Global state already accrued to the current time
        delta: Signed change to the debt (positive borrows, negative repays)

    Returns:
        New Position whose principal equals current_debt + delta and whose
        checkpoint equals the current index (0 when the debt is cleared).

    Raises:
        ValueError: If delta would make the debt negative
        ArithmeticOverflow: If the new debt exceeds the representation
    """
    debt = current_debt(position, state)
    new_principal = debt + delta
    if new_principal < 0:
        raise ValueError(f"cannot reduce debt {debt} by {-delta}")
    checked(new_principal, "debt")
    checkpoint = state.index if new_principal > 0 else Decimal("0")
    return replace(position, principal=new_principal, accrual_checkpoint=checkpoint)


