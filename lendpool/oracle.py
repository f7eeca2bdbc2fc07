"""
oracle.py - Collateral Price Feeds

Supplies the current price of one unit of collateral, denominated in
loan-asset units.

Classes:
- PriceOracle: Protocol defining the feed interface
- PriceQuote: A timestamped price
- StaticPriceOracle: Settable price, can be switched off to simulate an outage
- TimeSeriesPriceOracle: Historical observations read at the clock's current time

The engine trusts whatever positive, finite price it gets; validation here is
only about whether a usable price exists at all.
"""

from __future__ import annotations
from bisect import bisect_right
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple, Union, runtime_checkable

from .config import LendingSettings, get_settings
from .core import DEFAULT_EPOCH, LogicalClock, OracleUnavailable, to_decimal


@dataclass(frozen=True, slots=True)
class PriceQuote:
    """Price of one collateral unit in loan-asset units, observed at timestamp."""
    price: Decimal
    timestamp: datetime


@runtime_checkable
class PriceOracle(Protocol):
    """
    Protocol for price feeds.

    get_price() returns the freshest available quote or raises
    OracleUnavailable. It must never substitute a default.
    """

    def get_price(self) -> PriceQuote:
        ...


def validate_price(price: Decimal) -> Decimal:
    """
    Check that a price is usable.

    Raises:
        OracleUnavailable: If the price is not finite or not positive
    """
    if not isinstance(price, Decimal):
        try:
            price = to_decimal(price)
        except (ArithmeticError, ValueError, TypeError) as exc:
            raise OracleUnavailable(f"price {price!r} is not a number") from exc
    if not price.is_finite():
        raise OracleUnavailable(f"price is not finite: {price}")
    if price <= 0:
        raise OracleUnavailable(f"price must be positive, got {price}")
    return price


class StaticPriceOracle:
    """
    Oracle returning a fixed price until it is changed.

    Setting available=False makes get_price() raise, which tests use to
    simulate a feed outage.
    """

    def __init__(
        self,
        price: Union[Decimal, int, str],
        clock: Optional[LogicalClock] = None,
        available: bool = True,
    ):
        self.price = to_decimal(price)
        self.clock = clock
        self.available = available

    def get_price(self) -> PriceQuote:
        if not self.available:
            raise OracleUnavailable("price feed is unavailable")
        timestamp = self.clock.current_time if self.clock is not None else DEFAULT_EPOCH
        return PriceQuote(validate_price(self.price), timestamp)

    def set_price(self, price: Union[Decimal, int, str]) -> None:
        """Update the price."""
        self.price = to_decimal(price)

    def __repr__(self):
        return f"StaticPriceOracle({self.price}, available={self.available})"


class TimeSeriesPriceOracle:
    """
    Oracle backed by a history of (timestamp, price) observations.

    Reads the most recent observation at or before the clock's current time.
    With max_age set, an observation older than max_age is treated as missing.

    Example:
        oracle = TimeSeriesPriceOracle(clock, [(t0, Decimal("2")), (t1, Decimal("1.5"))])
        oracle.add_price(t2, Decimal("1.2"))
    """

    def __init__(
        self,
        clock: LogicalClock,
        observations: Optional[List[Tuple[datetime, Decimal]]] = None,
        max_age: Optional[timedelta] = None,
    ):
        """
        Args:
            clock: Time source used to pick the observation
            observations: Optional initial (timestamp, price) pairs in any order
            max_age: Optional staleness limit
        """
        self.clock = clock
        self.max_age = max_age
        self.history: List[Tuple[datetime, Decimal]] = sorted(
            ((ts, to_decimal(p)) for ts, p in (observations or [])),
            key=lambda x: x[0],
        )
        # Parallel to history, for bisection.
        self._timestamps: List[datetime] = [ts for ts, _ in self.history]

    @classmethod
    def from_settings(
        cls,
        clock: LogicalClock,
        settings: Optional[LendingSettings] = None,
        observations: Optional[List[Tuple[datetime, Decimal]]] = None,
    ) -> TimeSeriesPriceOracle:
        """Build an oracle whose staleness limit is LendingSettings.oracle_max_age_seconds."""
        settings = settings or get_settings()
        max_age = None
        if settings.oracle_max_age_seconds is not None:
            max_age = timedelta(seconds=settings.oracle_max_age_seconds)
        return cls(clock, observations, max_age=max_age)

    def add_price(self, timestamp: datetime, price: Union[Decimal, int, str]) -> None:
        """Add an observation after any existing ones with the same timestamp."""
        idx = bisect_right(self._timestamps, timestamp)
        self._timestamps.insert(idx, timestamp)
        self.history.insert(idx, (timestamp, to_decimal(price)))

    def get_price(self) -> PriceQuote:
        """
        Latest observation at or before clock.current_time.

        Raises:
            OracleUnavailable: If no observation exists yet, the latest one is
                older than max_age, or the observed price is unusable.
        """
        now = self.clock.current_time
        idx = bisect_right(self._timestamps, now)
        if idx == 0:
            raise OracleUnavailable(f"no price observed at or before {now}")

        timestamp, price = self.history[idx - 1]
        if self.max_age is not None and now - timestamp > self.max_age:
            raise OracleUnavailable(
                f"latest price from {timestamp} is older than {self.max_age}"
            )
        return PriceQuote(validate_price(price), timestamp)

    def __repr__(self):
        return f"TimeSeriesPriceOracle({len(self.history)} observations, max_age={self.max_age})"
