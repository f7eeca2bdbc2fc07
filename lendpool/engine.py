"""
engine.py - The Lending Engine

LendingEngine is the only entry point that changes pool state. Every
mutating operation runs the same pipeline:

    1. Reentrancy guard (one writer at a time; same-thread reentry fails)
    2. Pause check
    3. Accrue the global index to the clock's current time
    4. Load the affected position(s)
    5. Validate the request
    6. Compute the new state (pure functions from accrual and health)
    7. Health check when debt or collateral backing debt changes
    8. Asset transfers (completed ones reversed if a later one fails)
    9. Commit global state, positions, totals and receipt in one step

Any failure before step 9 leaves the store untouched: there is no partial
state to roll back because nothing is written until the commit.

Example:
    engine = LendingEngine(loan_asset, collateral_asset, oracle, params, clock)
    engine.deposit("lender", 10_000)
    engine.deposit_collateral("alice", 100)
    engine.borrow("alice", 150)
    engine.health_score("alice")          # Decimal('100')
"""

from __future__ import annotations
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple
import logging
import threading

from .accrual import GlobalAccrualState, accrue, capitalize, current_debt
from .assets import AssetLedger
from .core import (
    BPS_SCALE, LogicalClock, checked, decimal_context, require_amount, to_amount,
    LendingError, InsufficientBalance, UndercollateralizedBorrow,
    WithdrawalWouldUnderwater, PositionHealthy, ReentrantCall,
    ProtocolPaused, OracleUnavailable, TransferFailed,
)
from .health import (
    INFINITE_SCORE, HealthReport, collateral_value, health_report, health_score,
    is_liquidatable, max_borrowable,
)
from .oracle import PriceOracle, validate_price
from .params import ParameterStore, ProtocolParameters
from .positions import (
    Action, AnyReceipt, LiquidationReceipt, PoolTotals, Position,
    PositionLedger, PositionStatus, Receipt,
)

logger = logging.getLogger(__name__)


# ============================================================================
# INTERNAL TYPES
# ============================================================================

@dataclass(frozen=True, slots=True)
class _Context:
    """What every operation needs after accrual: parameters, accrued state, time."""
    parameters: ProtocolParameters
    state: GlobalAccrualState
    now: datetime


@dataclass(frozen=True, slots=True)
class _Transfer:
    """One pending movement through an asset ledger."""
    ledger: AssetLedger
    inbound: bool
    account: str
    amount: int

    def execute(self) -> bool:
        if self.inbound:
            return self.ledger.transfer_in(self.account, self.amount)
        return self.ledger.transfer_out(self.account, self.amount)

    def reverse(self) -> bool:
        if self.inbound:
            return self.ledger.transfer_out(self.account, self.amount)
        return self.ledger.transfer_in(self.account, self.amount)

    def __str__(self):
        direction = "from" if self.inbound else "to"
        return f"{self.amount} {direction} {self.account}"


# ============================================================================
# ENGINE
# ============================================================================

class LendingEngine:
    """
    Single-pool collateralized lending engine.

    Users supply the loan asset, post the collateral asset and borrow the
    loan asset against it. Unsafe positions can be liquidated by anyone.

    Thread Safety:
        Mutating operations are serialized by one lock; callers on other
        threads wait. A mutating call made from inside another one on the
        same thread (for example from an asset-ledger hook) raises
        ReentrantCall. Queries do not take the lock and read the last
        committed snapshot.
    """

    def __init__(
        self,
        loan_asset: AssetLedger,
        collateral_asset: AssetLedger,
        oracle: PriceOracle,
        params: ParameterStore,
        clock: Optional[LogicalClock] = None,
        store: Optional[PositionLedger] = None,
    ):
        """
        Args:
            loan_asset: Ledger of the asset that is supplied and borrowed
            collateral_asset: Ledger of the asset posted as collateral
            oracle: Price of one collateral unit in loan-asset units
            params: Risk parameters and pause switch
            clock: Time source (default: a LogicalClock at the epoch)
            store: Position store (default: a fresh one starting at clock time)
        """
        self.loan_asset = loan_asset
        self.collateral_asset = collateral_asset
        self.oracle = oracle
        self.params = params
        self.clock = clock or LogicalClock()
        self.store = store if store is not None else PositionLedger(
            initial_time=self.clock.current_time
        )
        self._lock = threading.Lock()
        self._owner: Optional[int] = None

    # ========================================================================
    # GUARD AND PIPELINE
    # ========================================================================

    @contextmanager
    def _guard(self) -> Iterator[None]:
        me = threading.get_ident()
        if self._owner == me:
            raise ReentrantCall("a mutating operation is already in progress")
        with self._lock:
            self._owner = me
            try:
                yield
            finally:
                self._owner = None

    @contextmanager
    def _operation(self, action: Action, account: str) -> Iterator[_Context]:
        try:
            with self._guard(), decimal_context():
                if self.params.is_paused():
                    raise ProtocolPaused(f"{action.value} rejected: protocol is paused")
                parameters = self.params.get_parameters()
                now = self.clock.current_time
                state = accrue(self.store.global_state, now, parameters.rate_per_second)
                yield _Context(parameters, state, now)
        except LendingError as exc:
            logger.info(
                "%s rejected for %s: %s: %s", action.value, account, type(exc).__name__, exc,
            )
            raise

    def _get_price(self) -> Decimal:
        """
        Read the oracle once.

        Raises:
            OracleUnavailable: On any feed failure or unusable price
        """
        try:
            quote = self.oracle.get_price()
        except OracleUnavailable:
            raise
        except Exception as exc:
            raise OracleUnavailable(f"price feed failed: {exc}") from exc
        return validate_price(quote.price)

    def _execute_transfers(self, transfers: List[_Transfer]) -> None:
        """Run transfers in order; on refusal or error undo the completed ones."""
        done: List[_Transfer] = []
        try:
            for transfer in transfers:
                if transfer.amount == 0:
                    continue
                if not transfer.execute():
                    raise TransferFailed(f"transfer of {transfer} was refused")
                done.append(transfer)
        except BaseException:
            for transfer in reversed(done):
                if not transfer.reverse():
                    logger.error("could not reverse transfer of %s", transfer)
            raise

    def _settle(
        self,
        ctx: _Context,
        transfers: List[_Transfer],
        positions: Dict[str, Position],
        totals: PoolTotals,
        receipt: AnyReceipt,
    ) -> AnyReceipt:
        self._execute_transfers(transfers)
        self.store.commit(ctx.state, positions, totals, receipt)
        logger.info(
            "%s committed for %s: amount=%s seq=%s",
            receipt.action.value, receipt.account, receipt.amount, receipt.sequence,
        )
        return receipt

    def _receipt(self, ctx: _Context, action: Action, account: str, amount: int,
                 position: Position) -> Receipt:
        return Receipt(
            sequence=self.store.next_sequence,
            action=action,
            account=account,
            amount=amount,
            position=position,
            timestamp=ctx.now,
        )

    # ========================================================================
    # SUPPLY SIDE
    # ========================================================================

    def deposit(self, user: str, amount: int) -> Receipt:
        """
        Supply loan asset to the pool.

        Raises:
            InvalidAmount: If amount is not a positive int
            TransferFailed: If the loan-asset ledger refuses the pull
        """
        with self._operation(Action.DEPOSIT, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            new_position = replace(
                position, loan_balance=checked(position.loan_balance + amount, "loan balance"),
            )
            totals = self.store.totals.adjust(supplied=amount)
            checked(totals.total_supplied, "total supplied")
            return self._settle(
                ctx,
                [_Transfer(self.loan_asset, True, user, amount)],
                {user: new_position},
                totals,
                self._receipt(ctx, Action.DEPOSIT, user, amount, new_position),
            )

    def withdraw(self, user: str, amount: int) -> Receipt:
        """
        Take supplied loan asset back out of the pool.

        Raises:
            InsufficientBalance: If amount exceeds the user's loan balance
            TransferFailed: If custody cannot pay out (e.g. the funds are lent out)
        """
        with self._operation(Action.WITHDRAW, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            if amount > position.loan_balance:
                raise InsufficientBalance(
                    f"{user} has {position.loan_balance} supplied, cannot withdraw {amount}"
                )
            new_position = replace(position, loan_balance=position.loan_balance - amount)
            return self._settle(
                ctx,
                [_Transfer(self.loan_asset, False, user, amount)],
                {user: new_position},
                self.store.totals.adjust(supplied=-amount),
                self._receipt(ctx, Action.WITHDRAW, user, amount, new_position),
            )

    # ========================================================================
    # COLLATERAL
    # ========================================================================

    def deposit_collateral(self, user: str, amount: int) -> Receipt:
        """Post collateral. No health check is needed: backing only increases."""
        with self._operation(Action.DEPOSIT_COLLATERAL, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            new_position = replace(
                position,
                collateral_balance=checked(position.collateral_balance + amount, "collateral"),
            )
            totals = self.store.totals.adjust(collateral=amount)
            checked(totals.total_collateral, "total collateral")
            return self._settle(
                ctx,
                [_Transfer(self.collateral_asset, True, user, amount)],
                {user: new_position},
                totals,
                self._receipt(ctx, Action.DEPOSIT_COLLATERAL, user, amount, new_position),
            )

    def withdraw_collateral(self, user: str, amount: int) -> Receipt:
        """
        Remove collateral, provided the remaining collateral still covers the debt.

        The oracle is only read when the user has debt.

        Raises:
            InsufficientBalance: If amount exceeds the collateral balance
            WithdrawalWouldUnderwater: If debt would exceed max_borrowable of the remainder
            OracleUnavailable: If a price is needed and the feed fails
        """
        with self._operation(Action.WITHDRAW_COLLATERAL, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            if amount > position.collateral_balance:
                raise InsufficientBalance(
                    f"{user} has {position.collateral_balance} collateral, cannot withdraw {amount}"
                )
            remaining = position.collateral_balance - amount
            debt = current_debt(position, ctx.state)
            if debt > 0:
                price = self._get_price()
                limit = max_borrowable(
                    remaining, price, ctx.parameters.collateralization_ratio_bps,
                )
                if debt > limit:
                    raise WithdrawalWouldUnderwater(
                        f"debt {debt} would exceed max borrowable {limit} "
                        f"with {remaining} collateral left"
                    )
            new_position = replace(position, collateral_balance=remaining)
            return self._settle(
                ctx,
                [_Transfer(self.collateral_asset, False, user, amount)],
                {user: new_position},
                self.store.totals.adjust(collateral=-amount),
                self._receipt(ctx, Action.WITHDRAW_COLLATERAL, user, amount, new_position),
            )

    # ========================================================================
    # DEBT
    # ========================================================================

    def borrow(self, user: str, amount: int) -> Receipt:
        """
        Borrow loan asset against posted collateral.

        Accrued interest is capitalized: principal becomes current debt plus
        amount and the checkpoint moves to the current index.

        Raises:
            UndercollateralizedBorrow: If the new total debt exceeds max_borrowable
            OracleUnavailable: If the feed fails
            TransferFailed: If custody lacks the liquidity
        """
        with self._operation(Action.BORROW, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            debt = current_debt(position, ctx.state)
            new_total_debt = checked(debt + amount, "debt")
            price = self._get_price()
            limit = max_borrowable(
                position.collateral_balance, price, ctx.parameters.collateralization_ratio_bps,
            )
            if new_total_debt > limit:
                raise UndercollateralizedBorrow(
                    f"debt {new_total_debt} would exceed max borrowable {limit}"
                )
            new_position = capitalize(position, ctx.state, amount)
            return self._settle(
                ctx,
                [_Transfer(self.loan_asset, False, user, amount)],
                {user: new_position},
                self.store.totals,
                self._receipt(ctx, Action.BORROW, user, amount, new_position),
            )

    def repay(self, user: str, amount: int) -> Receipt:
        """
        Repay debt. Pulls min(amount, current debt); the receipt carries that amount.

        With no debt outstanding nothing is pulled and the receipt amount is 0.
        """
        with self._operation(Action.REPAY, user) as ctx:
            require_amount(amount)
            position = self.store.get(user)
            debt = current_debt(position, ctx.state)
            effective = min(amount, debt)
            new_position = capitalize(position, ctx.state, -effective) if debt else position
            return self._settle(
                ctx,
                [_Transfer(self.loan_asset, True, user, effective)],
                {user: new_position},
                self.store.totals,
                self._receipt(ctx, Action.REPAY, user, effective, new_position),
            )

    # ========================================================================
    # LIQUIDATION
    # ========================================================================

    def liquidate(self, liquidator: str, borrower: str) -> LiquidationReceipt:
        """
        Clear an unsafe position's debt in exchange for its collateral.

        The liquidator pays the borrower's entire current debt and receives
        all of the borrower's collateral, which leaves the position with no
        principal and no collateral. The bonus entitlement
        floor(debt / price * (1 + bonus_bps / 10000)) is recorded on the
        receipt; it is capped at the posted collateral. The part of the debt
        the collateral's value does not cover is booked as bad debt.

        Raises:
            PositionHealthy: If the borrower's health score is >= 100
            OracleUnavailable: If the feed fails
            TransferFailed: If either transfer is refused
        """
        with self._operation(Action.LIQUIDATE, borrower) as ctx:
            position = self.store.get(borrower)
            debt = current_debt(position, ctx.state)
            if debt == 0:
                raise PositionHealthy(f"{borrower} has no debt")

            price = self._get_price()
            ratio = ctx.parameters.collateralization_ratio_bps
            score = health_score(position.collateral_balance, price, debt, ratio)
            if not is_liquidatable(score, ctx.parameters.liquidation_threshold):
                raise PositionHealthy(f"{borrower} health score {score} is not below threshold")

            bonus_bps = ctx.parameters.liquidation_bonus_bps
            entitled = to_amount(
                Decimal(debt) * (BPS_SCALE + bonus_bps) / (price * BPS_SCALE)
            )
            seized = position.collateral_balance
            bad_debt = max(0, debt - collateral_value(seized, price))
            if entitled > seized:
                logger.info(
                    "liquidation bonus for %s capped: entitled to %s, posted %s",
                    borrower, entitled, seized,
                )

            new_position = Position(loan_balance=position.loan_balance)
            totals = self.store.totals.adjust(collateral=-seized, bad_debt=bad_debt)
            receipt = LiquidationReceipt(
                sequence=self.store.next_sequence,
                borrower=borrower,
                liquidator=liquidator,
                debt_repaid=debt,
                collateral_seized=seized,
                collateral_entitled=entitled,
                bad_debt=bad_debt,
                score_before=score,
                price=price,
                position=new_position,
                timestamp=ctx.now,
            )
            self._settle(
                ctx,
                [
                    _Transfer(self.loan_asset, True, liquidator, debt),
                    _Transfer(self.collateral_asset, False, liquidator, seized),
                ],
                {borrower: new_position},
                totals,
                receipt,
            )
            if bad_debt:
                logger.warning(
                    "liquidation of %s left bad debt %s: debt %s, seized all %s collateral at price %s",
                    borrower, bad_debt, debt, seized, price,
                )
            return receipt

    # ========================================================================
    # QUERIES
    # ========================================================================

    def _view(self, user: str) -> Tuple[ProtocolParameters, GlobalAccrualState, Position]:
        """Committed position plus the global state accrued to now (not committed)."""
        parameters = self.params.get_parameters()
        state, positions = self.store.snapshot(user)
        state = accrue(state, self.clock.current_time, parameters.rate_per_second)
        return parameters, state, positions[user]

    def get_position(self, user: str) -> Position:
        return self.store.get(user)

    def position_status(self, user: str) -> PositionStatus:
        return self.store.get(user).status

    def current_debt(self, user: str) -> int:
        """Debt including interest accrued up to the clock's current time."""
        _, state, position = self._view(user)
        return current_debt(position, state)

    def max_borrowable(self, user: str) -> int:
        parameters, _, position = self._view(user)
        return max_borrowable(
            position.collateral_balance, self._get_price(), parameters.collateralization_ratio_bps,
        )

    def health_score(self, user: str) -> Decimal:
        """Health score at the current price; Infinity (without reading the oracle) when debt is 0."""
        parameters, state, position = self._view(user)
        debt = current_debt(position, state)
        if debt == 0:
            return INFINITE_SCORE
        return health_score(
            position.collateral_balance, self._get_price(), debt,
            parameters.collateralization_ratio_bps,
        )

    def health_report(self, user: str) -> HealthReport:
        parameters, state, position = self._view(user)
        return health_report(
            position.collateral_balance, self._get_price(), current_debt(position, state),
            parameters.collateralization_ratio_bps,
        )

    def is_liquidatable(self, user: str) -> bool:
        return is_liquidatable(self.health_score(user))

    def global_state(self) -> GlobalAccrualState:
        """Global accrual state as it would be committed now."""
        parameters = self.params.get_parameters()
        return accrue(self.store.global_state, self.clock.current_time, parameters.rate_per_second)

    @property
    def totals(self) -> PoolTotals:
        return self.store.totals

    @property
    def receipts(self) -> Tuple[AnyReceipt, ...]:
        return self.store.receipts

    def accounts(self) -> List[str]:
        """Users with a non-empty position."""
        return self.store.accounts()

    def __repr__(self):
        return f"LendingEngine({self.store!r}, clock={self.clock!r})"
