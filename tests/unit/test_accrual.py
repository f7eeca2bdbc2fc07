"""
test_accrual.py - Unit tests for the global interest index

Tests:
- accrue(): no-op, linear growth per call, compounding across calls, backwards time
- current_debt(): rounding up, zero principal
- capitalize(): borrow, partial and full repayment
- Overflow of the index
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lendpool import (
    GlobalAccrualState, Position, ArithmeticOverflow, MAX_UINT256,
    accrue, current_debt, capitalize,
)
from tests.fakes import run_on_worker


T0 = datetime(2025, 1, 1)


def state(index="1", at=T0) -> GlobalAccrualState:
    return GlobalAccrualState(Decimal(index), at)


# ============================================================================
# ACCRUE
# ============================================================================

class TestAccrue:

    def test_zero_elapsed_is_noop(self):
        s = state()
        assert accrue(s, T0, Decimal("0.1")) is s

    def test_zero_rate_moves_time_only(self):
        s = accrue(state(), T0 + timedelta(days=30), Decimal("0"))
        assert s.index == Decimal("1")
        assert s.last_update_time == T0 + timedelta(days=30)

    def test_linear_growth_within_one_call(self):
        """index *= 1 + rate * elapsed."""
        s = accrue(state(), T0 + timedelta(seconds=1), Decimal("0.1"))
        assert s.index == Decimal("1.1")

        s = accrue(state(), T0 + timedelta(seconds=10), Decimal("0.01"))
        assert s.index == Decimal("1.1")

    def test_compounds_across_calls(self):
        """Two 1-second windows at 10% give 1.21, more than one 2-second window."""
        s = accrue(state(), T0 + timedelta(seconds=1), Decimal("0.1"))
        s = accrue(s, T0 + timedelta(seconds=2), Decimal("0.1"))
        assert s.index == Decimal("1.21")
        assert accrue(state(), T0 + timedelta(seconds=2), Decimal("0.1")).index == Decimal("1.2")

    def test_fractional_seconds(self):
        s = accrue(state(), T0 + timedelta(milliseconds=500), Decimal("0.1"))
        assert s.index == Decimal("1.05")

    def test_index_is_quantized_down(self):
        """1 * (1 + 1e-19 * 1) = 1.0000000000000000001 keeps 18 places -> 1."""
        s = accrue(state(), T0 + timedelta(seconds=1), Decimal("1E-19"))
        assert s.index == Decimal("1")

    def test_backwards_time_rejected(self):
        with pytest.raises(ValueError, match="backwards"):
            accrue(state(at=T0), T0 - timedelta(seconds=1), Decimal("0.1"))

    def test_negative_rate_rejected(self):
        with pytest.raises(ValueError):
            accrue(state(), T0 + timedelta(seconds=1), Decimal("-0.1"))

    def test_index_overflow(self):
        """An index whose 18-decimal raw form exceeds 2**256 - 1 raises."""
        with pytest.raises(ArithmeticOverflow):
            accrue(state("1E+50"), T0 + timedelta(days=365), Decimal("1E+10"))

    def test_index_below_one_rejected(self):
        with pytest.raises(ValueError):
            GlobalAccrualState(Decimal("0.5"), T0)


# ============================================================================
# CURRENT DEBT
# ============================================================================

class TestCurrentDebt:

    def test_no_principal_no_debt(self):
        assert current_debt(Position(collateral_balance=10), state("3")) == 0

    def test_debt_scales_with_index(self):
        p = Position(principal=100, accrual_checkpoint=Decimal("1"))
        assert current_debt(p, state("1.1")) == 110

    def test_debt_rounds_up(self):
        """100 * 1.000000000000000001 is a hair above 100, so the debt is 101."""
        p = Position(principal=100, accrual_checkpoint=Decimal("1"))
        assert current_debt(p, state("1.000000000000000001")) == 101

    def test_debt_relative_to_checkpoint(self):
        p = Position(principal=60, accrual_checkpoint=Decimal("1.1"))
        assert current_debt(p, state("1.1")) == 60
        assert current_debt(p, state("2.2")) == 120

    def test_debt_never_below_principal(self):
        p = Position(principal=7, accrual_checkpoint=Decimal("1.3"))
        assert current_debt(p, state("1.3")) >= 7

    def test_large_principal_exact_on_worker_thread(self):
        """Past 10**28 the product needs more digits than a fresh thread's default context."""
        principal = 10 ** 30 + 1
        p = Position(principal=principal, accrual_checkpoint=Decimal("1"))
        assert run_on_worker(current_debt, p, state("1")) == principal
        assert run_on_worker(current_debt, p, state("1.1")) == 11 * 10 ** 29 + 2


# ============================================================================
# CAPITALIZE
# ============================================================================

class TestCapitalize:

    def test_borrow_from_zero(self):
        p = capitalize(Position(collateral_balance=100), state("1.5"), 150)
        assert p.principal == 150
        assert p.accrual_checkpoint == Decimal("1.5")
        assert p.collateral_balance == 100

    def test_interest_rolled_into_principal(self):
        """Scenario: principal 100 at index 1, index now 1.1, repay 50 -> principal 60."""
        p = Position(principal=100, accrual_checkpoint=Decimal("1"))
        p = capitalize(p, state("1.1"), -50)
        assert p.principal == 60
        assert p.accrual_checkpoint == Decimal("1.1")

    def test_full_repay_resets_checkpoint(self):
        p = Position(principal=100, accrual_checkpoint=Decimal("1"))
        p = capitalize(p, state("1.1"), -110)
        assert p.principal == 0
        assert p.accrual_checkpoint == Decimal("0")

    def test_over_repay_rejected(self):
        p = Position(principal=100, accrual_checkpoint=Decimal("1"))
        with pytest.raises(ValueError):
            capitalize(p, state("1"), -101)

    def test_debt_overflow(self):
        p = Position(principal=MAX_UINT256, accrual_checkpoint=Decimal("1"))
        with pytest.raises(ArithmeticOverflow):
            capitalize(p, state("1"), 1)
