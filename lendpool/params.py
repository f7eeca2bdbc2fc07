"""
params.py - Protocol Parameters and Pause Switch

The engine reads its risk parameters through a ParameterStore at the start
of every operation and never writes them. Administrative setters belong to
whoever owns the store; StaticParameterStore is the in-memory version used
by tests, simulations and settings-driven setups.
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Optional, Protocol, runtime_checkable

from .config import LendingSettings, get_settings
from .core import BPS_SCALE, LIQUIDATION_THRESHOLD, to_decimal


@dataclass(frozen=True, slots=True)
class ProtocolParameters:
    """
    Risk parameters for the pool.

    Attributes:
        collateralization_ratio_bps: Maximum loan-to-value (0..10000)
        liquidation_bonus_bps: Extra collateral granted to liquidators
        rate_per_second: Simple per-second interest rate
        liquidation_threshold: Health score below which positions are liquidatable (fixed at 100)
    """
    collateralization_ratio_bps: int = 7500
    liquidation_bonus_bps: int = 500
    rate_per_second: Decimal = Decimal("0")
    liquidation_threshold: int = LIQUIDATION_THRESHOLD

    def __post_init__(self):
        if not isinstance(self.rate_per_second, Decimal):
            object.__setattr__(self, 'rate_per_second', to_decimal(self.rate_per_second))
        if not 0 <= self.collateralization_ratio_bps <= BPS_SCALE:
            raise ValueError(
                f"collateralization_ratio_bps must be in [0, {BPS_SCALE}], "
                f"got {self.collateralization_ratio_bps}"
            )
        if self.liquidation_bonus_bps < 0:
            raise ValueError(
                f"liquidation_bonus_bps cannot be negative, got {self.liquidation_bonus_bps}"
            )
        if not self.rate_per_second.is_finite() or self.rate_per_second < 0:
            raise ValueError(f"rate_per_second must be >= 0, got {self.rate_per_second}")
        if self.liquidation_threshold != LIQUIDATION_THRESHOLD:
            raise ValueError(f"liquidation_threshold is fixed at {LIQUIDATION_THRESHOLD}")


@runtime_checkable
class ParameterStore(Protocol):
    """Read-only view of protocol parameters plus the pause gate."""

    def get_parameters(self) -> ProtocolParameters:
        ...

    def is_paused(self) -> bool:
        ...


class StaticParameterStore:
    """In-memory parameter store with setters for tests and simulations."""

    def __init__(self, parameters: Optional[ProtocolParameters] = None, paused: bool = False):
        self._parameters = parameters or ProtocolParameters()
        self._paused = paused

    @classmethod
    def from_settings(cls, settings: Optional[LendingSettings] = None) -> StaticParameterStore:
        """Build a store seeded from LendingSettings (environment driven by default)."""
        settings = settings or get_settings()
        return cls(ProtocolParameters(
            collateralization_ratio_bps=settings.collateralization_ratio_bps,
            liquidation_bonus_bps=settings.liquidation_bonus_bps,
            rate_per_second=settings.rate_per_second,
        ))

    def get_parameters(self) -> ProtocolParameters:
        return self._parameters

    def is_paused(self) -> bool:
        return self._paused

    def update(self, **changes) -> ProtocolParameters:
        """Replace individual parameters. Validation runs on the new value."""
        self._parameters = replace(self._parameters, **changes)
        return self._parameters

    def pause(self) -> None:
        self._paused = True

    def unpause(self) -> None:
        self._paused = False

    def __repr__(self):
        return f"StaticParameterStore({self._parameters}, paused={self._paused})"
