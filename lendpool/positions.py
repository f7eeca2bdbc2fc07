"""
positions.py - Position Store, Pool Totals and Operation Log

The PositionLedger is the only object in the package that holds mutable
state. It is deliberately dumb: it stores what the engine hands it and
never validates business rules.

Key responsibilities:
    - Per-user Position records (absent users read as the zero position)
    - The global accrual state singleton
    - Pool totals (supplied, collateral, bad debt)
    - An append-only receipt log of committed operations
    - Atomic publication of an operation's results via commit()
    - clone(), export_state() and load_state() for copies and persistence
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union
import copy
import threading

from .accrual import GlobalAccrualState
from .core import INITIAL_INDEX, to_decimal


# ============================================================================
# POSITION
# ============================================================================

class PositionStatus(str, Enum):
    """Lifecycle status derived from a position's balances."""
    EMPTY = "empty"
    SUPPLYING = "supplying"
    COLLATERALIZED = "collateralized"
    BORROWED = "borrowed"


@dataclass(frozen=True, slots=True)
class Position:
    """
    One user's balances in the pool.

    Attributes:
        loan_balance: Loan asset supplied to the pool
        collateral_balance: Collateral asset posted
        principal: Debt before interest since the checkpoint
        accrual_checkpoint: Global index at the last debt interaction (0 if no debt)
    """
    loan_balance: int = 0
    collateral_balance: int = 0
    principal: int = 0
    accrual_checkpoint: Decimal = Decimal("0")

    def __post_init__(self):
        if not isinstance(self.accrual_checkpoint, Decimal):
            object.__setattr__(self, 'accrual_checkpoint', to_decimal(self.accrual_checkpoint))
        for name in ('loan_balance', 'collateral_balance', 'principal'):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{name} must be an int, got {type(value).__name__}")
            if value < 0:
                raise ValueError(f"{name} cannot be negative, got {value}")
        if self.principal == 0 and self.accrual_checkpoint != 0:
            raise ValueError("accrual_checkpoint must be 0 when principal is 0")

    @property
    def is_empty(self) -> bool:
        return (
            self.loan_balance == 0
            and self.collateral_balance == 0
            and self.principal == 0
        )

    @property
    def status(self) -> PositionStatus:
        if self.principal > 0:
            return PositionStatus.BORROWED
        if self.collateral_balance > 0:
            return PositionStatus.COLLATERALIZED
        if self.loan_balance > 0:
            return PositionStatus.SUPPLYING
        return PositionStatus.EMPTY


EMPTY_POSITION = Position()


# ============================================================================
# POOL TOTALS AND RECEIPTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolTotals:
    """Aggregate balances across all positions."""
    total_supplied: int = 0
    total_collateral: int = 0
    total_bad_debt: int = 0

    def adjust(self, supplied: int = 0, collateral: int = 0, bad_debt: int = 0) -> PoolTotals:
        """Return new totals shifted by the given signed amounts."""
        return PoolTotals(
            total_supplied=self.total_supplied + supplied,
            total_collateral=self.total_collateral + collateral,
            total_bad_debt=self.total_bad_debt + bad_debt,
        )


class Action(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    BORROW = "borrow"
    REPAY = "repay"
    DEPOSIT_COLLATERAL = "deposit_collateral"
    WITHDRAW_COLLATERAL = "withdraw_collateral"
    LIQUIDATE = "liquidate"


@dataclass(frozen=True, slots=True)
class Receipt:
    """
    Record of one committed single-account operation.

    Attributes:
        sequence: Position in the operation log (0-based, gap-free)
        action: What was done
        account: The user whose position changed
        amount: Effective amount moved (repay may be less than requested)
        position: The account's position after the operation
        timestamp: Logical time of the operation
    """
    sequence: int
    action: Action
    account: str
    amount: int
    position: Position
    timestamp: datetime


@dataclass(frozen=True, slots=True)
class LiquidationReceipt:
    """
    Record of one committed liquidation.

    Attributes:
        sequence: Position in the operation log
        borrower: Account whose debt was cleared
        liquidator: Account that repaid the debt and received collateral
        debt_repaid: Loan asset pulled from the liquidator
        collateral_seized: Collateral pushed to the liquidator (all of the borrower's)
        collateral_entitled: Debt plus bonus in collateral units, before the cap
        bad_debt: Debt value not covered by the seized collateral
        score_before: Borrower's health score at the time of liquidation
        price: Oracle price used
        position: Borrower's position after the liquidation
        timestamp: Logical time of the operation
    """
    sequence: int
    borrower: str
    liquidator: str
    debt_repaid: int
    collateral_seized: int
    collateral_entitled: int
    bad_debt: int
    score_before: Decimal
    price: Decimal
    position: Position
    timestamp: datetime
    action: Action = field(default=Action.LIQUIDATE)

    @property
    def account(self) -> str:
        return self.borrower

    @property
    def amount(self) -> int:
        return self.debt_repaid


AnyReceipt = Union[Receipt, LiquidationReceipt]


# ============================================================================
# POSITION LEDGER
# ============================================================================

class PositionLedger:
    """
    In-memory store for positions, global accrual state, totals and receipts.

    Thread Safety:
        Every read and commit() takes the internal lock, so a reader sees
        either all of an operation's effects or none of them. Validation and
        serialization of writers are the engine's job.

    Example:
        store = PositionLedger(initial_time=datetime(2025, 1, 1))
        store.put("alice", Position(loan_balance=1000))
        store.get("alice").loan_balance   # 1000
        store.get("nobody")               # Position() (zero)
    """

    def __init__(
        self,
        initial_time: Optional[datetime] = None,
        global_state: Optional[GlobalAccrualState] = None,
    ):
        """
        Create an empty store.

        Args:
            initial_time: last_update_time of a fresh global state
            global_state: Explicit starting global state (overrides initial_time)
        """
        if global_state is None:
            global_state = (
                GlobalAccrualState(INITIAL_INDEX, initial_time)
                if initial_time is not None else GlobalAccrualState()
            )
        self._positions: Dict[str, Position] = {}
        self._global_state: GlobalAccrualState = global_state
        self._totals: PoolTotals = PoolTotals()
        self._receipts: List[AnyReceipt] = []
        self._lock = threading.RLock()

    # ========================================================================
    # READS
    # ========================================================================

    def get(self, user: str) -> Position:
        """Position of user, or the zero position if none is stored."""
        with self._lock:
            return self._positions.get(user, EMPTY_POSITION)

    @property
    def global_state(self) -> GlobalAccrualState:
        with self._lock:
            return self._global_state

    @property
    def totals(self) -> PoolTotals:
        with self._lock:
            return self._totals

    @property
    def receipts(self) -> Tuple[AnyReceipt, ...]:
        with self._lock:
            return tuple(self._receipts)

    @property
    def next_sequence(self) -> int:
        with self._lock:
            return len(self._receipts)

    def accounts(self) -> List[str]:
        """Users with a non-empty stored position, sorted."""
        with self._lock:
            return sorted(self._positions)

    def snapshot(self, *users: str) -> Tuple[GlobalAccrualState, Dict[str, Position]]:
        """Global state and the given users' positions read under one lock."""
        with self._lock:
            return self._global_state, {u: self._positions.get(u, EMPTY_POSITION) for u in users}

    def __len__(self) -> int:
        with self._lock:
            return len(self._positions)

    # ========================================================================
    # WRITES
    # ========================================================================

    def put(self, user: str, position: Position) -> None:
        """Upsert a position. An all-zero position removes the record."""
        with self._lock:
            self._put(user, position)

    def _put(self, user: str, position: Position) -> None:
        if position.is_empty:
            self._positions.pop(user, None)
        else:
            self._positions[user] = position

    def set_global_state(self, state: GlobalAccrualState) -> None:
        with self._lock:
            self._global_state = state

    def commit(
        self,
        global_state: GlobalAccrualState,
        positions: Dict[str, Position],
        totals: PoolTotals,
        receipt: AnyReceipt,
    ) -> None:
        """
        Publish the full result of one operation atomically.

        Args:
            global_state: Accrued global state
            positions: Changed positions by user
            totals: New pool totals
            receipt: Receipt to append (its sequence must equal next_sequence)

        Raises:
            ValueError: If the receipt sequence is out of order
        """
        with self._lock:
            if receipt.sequence != len(self._receipts):
                raise ValueError(
                    f"receipt sequence {receipt.sequence} != expected {len(self._receipts)}"
                )
            self._global_state = global_state
            for user, position in positions.items():
                self._put(user, position)
            self._totals = totals
            self._receipts.append(receipt)

    # ========================================================================
    # COPIES AND PERSISTENCE
    # ========================================================================

    def clone(self) -> PositionLedger:
        """Independent copy. Records are immutable so a shallow copy of each container suffices."""
        with self._lock:
            twin = PositionLedger(global_state=self._global_state)
            twin._positions = dict(self._positions)
            twin._totals = self._totals
            twin._receipts = list(self._receipts)
            return twin

    def export_state(self) -> Dict[str, Any]:
        """
        Plain-record form of the persistent state.

        Returns:
            {
              "positions": {user: {"loan_balance", "collateral_balance",
                                   "principal", "accrual_checkpoint"}},
              "global": {"index", "last_update_time"},
              "totals": {"total_supplied", "total_collateral", "total_bad_debt"},
            }
            Decimals are written as strings and datetimes in ISO format.
        """
        with self._lock:
            return {
                "positions": {
                    user: {
                        "loan_balance": p.loan_balance,
                        "collateral_balance": p.collateral_balance,
                        "principal": p.principal,
                        "accrual_checkpoint": str(p.accrual_checkpoint),
                    }
                    for user, p in sorted(self._positions.items())
                },
                "global": {
                    "index": str(self._global_state.index),
                    "last_update_time": self._global_state.last_update_time.isoformat(),
                },
                "totals": {
                    "total_supplied": self._totals.total_supplied,
                    "total_collateral": self._totals.total_collateral,
                    "total_bad_debt": self._totals.total_bad_debt,
                },
            }

    def load_state(self, record: Dict[str, Any]) -> None:
        """
        Replace the store's contents with an export_state() record.

        The receipt log is cleared; it is an audit trail, not persisted state.
        Totals are recomputed from positions when the record omits them.
        """
        record = copy.deepcopy(record)
        positions = {
            user: Position(
                loan_balance=int(fields["loan_balance"]),
                collateral_balance=int(fields["collateral_balance"]),
                principal=int(fields["principal"]),
                accrual_checkpoint=Decimal(str(fields["accrual_checkpoint"])),
            )
            for user, fields in record.get("positions", {}).items()
        }
        g = record["global"]
        last_update = g["last_update_time"]
        if isinstance(last_update, str):
            last_update = datetime.fromisoformat(last_update)
        global_state = GlobalAccrualState(
            index=Decimal(str(g["index"])), last_update_time=last_update,
        )
        t = record.get("totals")
        if t is None:
            totals = PoolTotals(
                total_supplied=sum(p.loan_balance for p in positions.values()),
                total_collateral=sum(p.collateral_balance for p in positions.values()),
            )
        else:
            totals = PoolTotals(
                total_supplied=int(t["total_supplied"]),
                total_collateral=int(t["total_collateral"]),
                total_bad_debt=int(t.get("total_bad_debt", 0)),
            )

        with self._lock:
            self._positions = {u: p for u, p in positions.items() if not p.is_empty}
            self._global_state = global_state
            self._totals = totals
            self._receipts = []

    def __repr__(self) -> str:
        return (
            f"PositionLedger({len(self._positions)} positions, "
            f"index={self._global_state.index}, receipts={len(self._receipts)})"
        )
