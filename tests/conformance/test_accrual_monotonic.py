"""
Accrual Conformance Tests

INVARIANTS:

    ∀ t1 ≤ t2:  index(t1) ≤ index(t2)
    ∀ position p with principal > 0, ∀ index ≥ checkpoint(p):
        current_debt(p) ≥ principal(p)
    principal(p) = 0  ⟹  checkpoint(p) = 0
"""

from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import datetime, timedelta
from decimal import Decimal

from lendpool import GlobalAccrualState, LendingError, Position, accrue, current_debt
from tests.fakes import build_engine


T0 = datetime(2025, 1, 1)

rates = st.decimals(min_value=Decimal("0"), max_value=Decimal("0.001"), places=8)
gaps = st.integers(min_value=0, max_value=3_600)


class TestIndexMonotonic:

    @given(steps=st.lists(st.tuples(gaps, rates), min_size=1, max_size=30))
    @settings(max_examples=200)
    def test_index_never_decreases(self, steps):
        """
        PROPERTY: Repeated accrual at any non-negative rates never lowers the index.
        """
        state = GlobalAccrualState(Decimal("1"), T0)
        now = T0
        for gap, rate in steps:
            now = now + timedelta(seconds=gap)
            new_state = accrue(state, now, rate)
            assert new_state.index >= state.index
            assert new_state.last_update_time >= state.last_update_time
            state = new_state

    @given(
        principal=st.integers(min_value=1, max_value=10 ** 30),
        checkpoint=st.decimals(min_value=Decimal("1"), max_value=Decimal("1000"), places=18),
        growth=st.decimals(min_value=Decimal("0"), max_value=Decimal("10"), places=18),
    )
    @settings(max_examples=300)
    def test_debt_at_least_principal(self, principal, checkpoint, growth):
        """
        PROPERTY: current_debt ≥ principal whenever index ≥ checkpoint.
        """
        position = Position(principal=principal, accrual_checkpoint=checkpoint)
        state = GlobalAccrualState(checkpoint + growth, T0)
        assert current_debt(position, state) >= principal


class TestEngineAccrual:

    @given(steps=st.lists(
        st.tuples(
            st.sampled_from(["borrow", "repay", "tick"]),
            st.integers(min_value=1, max_value=400),
        ),
        min_size=1, max_size=25,
    ))
    @settings(max_examples=75, deadline=None)
    def test_committed_index_and_checkpoints(self, steps):
        """
        PROPERTY: Across engine operations the committed index never decreases,
        every checkpoint equals the index at which it was written, and a cleared
        principal always carries a zero checkpoint.
        """
        engine = build_engine(rate_per_second=Decimal("0.0005"))
        engine.deposit("lender", 100_000)
        engine.deposit_collateral("alice", 1_000)
        last_index = engine.store.global_state.index

        for op, amount in steps:
            if op == "tick":
                engine.clock.advance(amount)
                continue
            try:
                getattr(engine, op)("alice", amount)
            except LendingError:
                continue

            index = engine.store.global_state.index
            assert index >= last_index
            last_index = index

            p = engine.get_position("alice")
            if p.principal == 0:
                assert p.accrual_checkpoint == 0
            else:
                assert p.accrual_checkpoint == index
                assert engine.current_debt("alice") >= p.principal
