"""
assets.py - Fungible Asset Ledgers

The engine never holds tokens itself. It moves the loan asset and the
collateral asset through two AssetLedger objects, pulling into and pushing
out of a custody account that belongs to the pool.

Classes:
- AssetLedger: Protocol with transfer_in/transfer_out returning success
- InMemoryAssetLedger: Wallet balances for one asset, with a custody account

A False return from a transfer means "refused, nothing moved". Ledgers
should not raise for ordinary refusals such as insufficient balance.
"""

from __future__ import annotations
from collections import defaultdict
from typing import Any, Dict, List, Optional, Protocol, Tuple, runtime_checkable


POOL_CUSTODY = "pool"


@runtime_checkable
class AssetLedger(Protocol):
    """Transfer interface for one fungible asset."""

    def transfer_in(self, from_account: str, amount: int) -> bool:
        """Move amount from from_account into pool custody."""
        ...

    def transfer_out(self, to_account: str, amount: int) -> bool:
        """Move amount from pool custody to to_account."""
        ...


class InMemoryAssetLedger:
    """
    Balances of a single asset held in memory.

    Supply only changes through mint() and burn(); transfers conserve it.

    Example:
        usdc = InMemoryAssetLedger("USDC")
        usdc.mint("alice", 1_000)
        usdc.transfer_in("alice", 400)      # True
        usdc.balance_of(POOL_CUSTODY)       # 400
        usdc.transfer_in("alice", 10_000)   # False, nothing moved
    """

    def __init__(self, symbol: str, custody_account: str = POOL_CUSTODY):
        self.symbol = symbol
        self.custody_account = custody_account
        self.balances: Dict[str, int] = defaultdict(int)
        self.transfer_log: List[Tuple[str, str, int]] = []

    # ========================================================================
    # READS
    # ========================================================================

    def balance_of(self, account: str) -> int:
        return self.balances.get(account, 0)

    @property
    def custody_balance(self) -> int:
        return self.balance_of(self.custody_account)

    def total_supply(self) -> int:
        """Sum of all balances, summed in sorted account order."""
        return sum(self.balances[a] for a in sorted(self.balances))

    def verify_conservation(self, expected_supply: Optional[int] = None) -> Dict[str, Any]:
        """
        Check that no balance is negative and, optionally, that supply matches.

        Returns:
            Dict with keys 'valid', 'supply' and 'discrepancies'.
        """
        supply = self.total_supply()
        discrepancies = [
            {'account': a, 'balance': b, 'error': 'negative balance'}
            for a, b in sorted(self.balances.items()) if b < 0
        ]
        if expected_supply is not None and supply != expected_supply:
            discrepancies.append({
                'expected': expected_supply,
                'actual': supply,
                'difference': supply - expected_supply,
            })
        return {
            'valid': len(discrepancies) == 0,
            'supply': supply,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # SUPPLY
    # ========================================================================

    def mint(self, account: str, amount: int) -> None:
        """Create amount new units in account."""
        if amount < 0:
            raise ValueError(f"mint amount cannot be negative, got {amount}")
        self.balances[account] += amount

    def burn(self, account: str, amount: int) -> None:
        """Destroy amount units held by account."""
        if amount < 0 or amount > self.balance_of(account):
            raise ValueError(f"cannot burn {amount} from {account}")
        self.balances[account] -= amount

    # ========================================================================
    # TRANSFERS
    # ========================================================================

    def transfer(self, source: str, dest: str, amount: int) -> bool:
        """Move amount between accounts. Returns False (and moves nothing) if refused."""
        if amount < 0 or self.balance_of(source) < amount:
            return False
        self.balances[source] -= amount
        self.balances[dest] += amount
        self.transfer_log.append((source, dest, amount))
        return True

    def transfer_in(self, from_account: str, amount: int) -> bool:
        return self.transfer(from_account, self.custody_account, amount)

    def transfer_out(self, to_account: str, amount: int) -> bool:
        return self.transfer(self.custody_account, to_account, amount)

    def __repr__(self):
        return (
            f"InMemoryAssetLedger({self.symbol}, custody={self.custody_balance}, "
            f"supply={self.total_supply()})"
        )
