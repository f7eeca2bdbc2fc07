"""
Core types and pure helpers for the lending engine.

This module provides the foundations every other module builds on:
1. Decimal context configuration for deterministic fixed-point arithmetic
2. Constants: basis-point scale, liquidation threshold, representation bounds
3. Exceptions: LendingError and the specific error kinds callers branch on
4. Checked arithmetic helpers that raise instead of wrapping
5. LogicalClock: the monotonic time source the engine reads from

All functions in this module are pure. None of them touch engine state.
"""

from __future__ import annotations
from datetime import datetime, timedelta
from decimal import (
    Context, Decimal, ROUND_DOWN, ROUND_HALF_EVEN, localcontext,
    Overflow as DecimalOverflow, InvalidOperation,
)
from typing import Any, Callable, ContextManager, Optional, TypeVar, Union
import functools


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# The engine requires deterministic Decimal arithmetic.
# decimal.getcontext() is thread-local, so the engine owns one Context and
# every fixed-point computation runs under decimal.localcontext() of it.
# Callers on any thread get the same precision and rounding.
#
# Context parameters:
#   - prec=120: exact products of two 256-bit quantities with 18 fractional digits
#   - rounding=ROUND_HALF_EVEN: only used where no explicit mode is passed
#
_LENDPOOL_DECIMAL_CONTEXT = Context(prec=120, rounding=ROUND_HALF_EVEN)

F = TypeVar("F", bound=Callable[..., Any])


def decimal_context() -> ContextManager[Context]:
    """Apply the engine's Decimal context to the current thread for a with-block."""
    return localcontext(_LENDPOOL_DECIMAL_CONTEXT)


def fixed_point(func: F) -> F:
    """Run func under the engine's Decimal context, whatever the calling thread."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        with localcontext(_LENDPOOL_DECIMAL_CONTEXT):
            return func(*args, **kwargs)
    return wrapper  # type: ignore[return-value]


# ============================================================================
# CONSTANTS
# ============================================================================

# Basis-point denominator (10000 bps = 100%).
BPS_SCALE = 10_000

# Health scores strictly below this value make a position liquidatable.
LIQUIDATION_THRESHOLD = 100

# Number of fractional digits kept for the accrual index.
INDEX_DECIMAL_PLACES = 18
INDEX_QUANTUM = Decimal(10) ** -INDEX_DECIMAL_PLACES

# Starting value of the global accrual index.
INITIAL_INDEX = Decimal("1")

# Largest value any amount (or any fixed-point value in raw form) may take.
MAX_UINT256 = 2 ** 256 - 1

# Epoch used when no initial time is supplied (matches the ledger convention).
DEFAULT_EPOCH = datetime(1970, 1, 1)

Numeric = Union[int, Decimal]


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LendingError(Exception):
    """Base exception for all lending-engine errors."""
    pass


class InvalidAmount(LendingError):
    """Raised when an amount is zero, negative or not an integer."""
    pass


class InsufficientBalance(LendingError):
    """Raised when a withdrawal exceeds the balance held by the account."""
    pass


class UndercollateralizedBorrow(LendingError):
    """Raised when a borrow would push debt above the maximum borrowable value."""
    pass


class WithdrawalWouldUnderwater(LendingError):
    """Raised when removing collateral would leave debt above the maximum borrowable value."""
    pass


class PositionHealthy(LendingError):
    """Raised when liquidation is attempted on a position whose health score is >= 100."""
    pass


class ReentrantCall(LendingError):
    """Raised when a mutating operation is entered while another one is still running."""
    pass


class ProtocolPaused(LendingError):
    """Raised by every mutating entry point while the pause switch is on."""
    pass


class OracleUnavailable(LendingError):
    """Raised when the price feed fails or returns an unusable price."""
    pass


class ArithmeticOverflow(LendingError):
    """Raised when a value would exceed the fixed-point representation."""
    pass


class TransferFailed(LendingError):
    """Raised when an asset ledger refuses a transfer."""
    pass


# ============================================================================
# CHECKED ARITHMETIC
# ============================================================================

def to_decimal(value: Numeric) -> Decimal:
    """Convert an int/str/float to Decimal via str to avoid binary float artefacts."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def checked(value: Numeric, what: str = "value") -> Numeric:
    """
    Return value unchanged if it fits the 256-bit representation.

    Raises:
        ArithmeticOverflow: If value is greater than MAX_UINT256 or not finite.
    """
    if isinstance(value, Decimal) and not value.is_finite():
        raise ArithmeticOverflow(f"{what} is not finite: {value}")
    if value > MAX_UINT256:
        raise ArithmeticOverflow(f"{what} exceeds 256-bit range")
    return value


@fixed_point
def checked_index(index: Decimal) -> Decimal:
    """Verify an index fits when stored as an 18-decimal raw integer."""
    if not index.is_finite():
        raise ArithmeticOverflow(f"index is not finite: {index}")
    if index * (10 ** INDEX_DECIMAL_PLACES) > MAX_UINT256:
        raise ArithmeticOverflow("accrual index exceeds 256-bit fixed-point range")
    return index


@fixed_point
def quantize_index(value: Decimal) -> Decimal:
    """Round an index down to INDEX_DECIMAL_PLACES fractional digits."""
    try:
        return value.quantize(INDEX_QUANTUM, rounding=ROUND_DOWN)
    except (DecimalOverflow, InvalidOperation) as exc:
        raise ArithmeticOverflow(f"cannot represent index {value}") from exc


@fixed_point
def to_amount(value: Decimal, rounding: str = ROUND_DOWN) -> int:
    """
    Convert a Decimal to an integer amount of the smallest asset unit.

    Args:
        value: Non-negative Decimal
        rounding: ROUND_DOWN (value paid out) or ROUND_UP (value owed)

    Raises:
        ArithmeticOverflow: If the result is outside the 256-bit range.
    """
    try:
        integral = value.to_integral_value(rounding=rounding)
    except (DecimalOverflow, InvalidOperation) as exc:
        raise ArithmeticOverflow(f"cannot convert {value} to an amount") from exc
    return checked(int(integral), "amount")


@fixed_point
def mul_div(a: Numeric, b: Numeric, denominator: Numeric, rounding: str = ROUND_DOWN) -> int:
    """
    Compute a * b / denominator as an integer with a single rounding step.

    The product is formed exactly before dividing, so no precision is lost
    relative to the smallest asset unit.
    """
    if denominator == 0:
        raise ZeroDivisionError("mul_div denominator is zero")
    product = to_decimal(a) * to_decimal(b)
    return to_amount(product / to_decimal(denominator), rounding)


def require_amount(amount: int) -> int:
    """
    Validate a user-supplied amount.

    Raises:
        InvalidAmount: If amount is not a positive integer.
        ArithmeticOverflow: If amount exceeds MAX_UINT256.
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidAmount(f"amount must be an integer, got {type(amount).__name__}")
    if amount <= 0:
        raise InvalidAmount(f"amount must be positive, got {amount}")
    return checked(amount, "amount")


# ============================================================================
# LOGICAL CLOCK
# ============================================================================

class LogicalClock:
    """
    Monotonic logical clock.

    The engine never reads wall-clock time. Simulations and tests advance this
    clock explicitly; a production adapter can subclass and override
    current_time.
    """

    def __init__(self, initial_time: Optional[datetime] = None):
        self._current_time: datetime = initial_time or DEFAULT_EPOCH

    @property
    def current_time(self) -> datetime:
        """Current logical time."""
        return self._current_time

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the clock to new_time.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    def advance(self, delta: Union[timedelta, int, float]) -> datetime:
        """Advance by a timedelta or a number of seconds and return the new time."""
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self.advance_time(self._current_time + delta)
        return self._current_time

    def __repr__(self) -> str:
        return f"LogicalClock({self._current_time.isoformat()})"

