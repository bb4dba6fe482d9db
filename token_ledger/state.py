"""
Ledger State

Authoritative balances, allowances and total supply, kept in a key-value
StorageInterface. Absent entries read as zero and zero-valued entries are
deleted on write, so "no record" and "explicit zero" are indistinguishable
through the read API.

Writers must hold the entry locks of every key they touch; see EntryLocks.
"""

import json
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Tuple

from .amount import AmountType, UINT256
from .storage import StorageInterface


BALANCES_TABLE = "token_balances"
ALLOWANCES_TABLE = "token_allowances"
SUPPLY_TABLE = "token_supply"
SUPPLY_RECORD_ID = "total_supply"


def balance_key(account: str) -> str:
    return f"balance:{account}"


def allowance_key(owner: str, spender: str) -> str:
    # JSON encoding keeps the pair unambiguous whatever characters ids contain
    return f"allowance:{json.dumps([owner, spender])}"


SUPPLY_KEY = "supply"


class EntryLocks:
    """
    Striped lock table over ledger entries.

    Each entry key hashes onto one of a fixed number of stripes. Operations
    lock the stripes of all entries they touch in ascending order, which
    rules out deadlock between operations over overlapping entries, while
    operations over disjoint entries usually proceed in parallel.
    """

    def __init__(self, stripes: int = 64):
        if stripes < 1:
            raise ValueError("At least one lock stripe is required")
        self._stripes = [threading.Lock() for _ in range(stripes)]

    @property
    def stripe_count(self) -> int:
        return len(self._stripes)

    def stripes_for(self, keys) -> List[int]:
        return sorted({hash(key) % len(self._stripes) for key in keys})

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Hold the stripes covering every given key"""
        yield from self._hold_indices(self.stripes_for(keys))

    @contextmanager
    def hold_all(self) -> Iterator[None]:
        yield from self._hold_indices(range(len(self._stripes)))

    def _hold_indices(self, indices) -> Iterator[None]:
        acquired = []
        try:
            for index in indices:
                self._stripes[index].acquire()
                acquired.append(index)
            yield
        finally:
            for index in reversed(acquired):
                self._stripes[index].release()


@dataclass(frozen=True)
class LedgerSnapshot:
    """Consistent point-in-time copy of the ledger"""
    total_supply: int
    balances: Dict[str, int] = field(default_factory=dict)
    allowances: Dict[Tuple[str, str], int] = field(default_factory=dict)

    @property
    def sum_of_balances(self) -> int:
        return sum(self.balances.values())


class LedgerState:
    """
    Balances, allowances and total supply of one token.

    Reads never mutate and never fail. The _write_* methods are for the
    transfer engine only, which calls them while holding the relevant entry
    locks inside a storage.atomic() block.
    """

    def __init__(self, storage: StorageInterface, amount_type: AmountType = UINT256,
                 lock_stripes: int = 64):
        self.storage = storage
        self.amount_type = amount_type
        self.locks = EntryLocks(lock_stripes)

    # Reads

    def balance_of(self, account: str) -> int:
        """Balance of an account, zero if it has never held tokens"""
        record = self.storage.load(BALANCES_TABLE, account)
        if record is None:
            return 0
        return self.amount_type.from_storage(record['amount'])

    def allowance(self, owner: str, spender: str) -> int:
        """Remaining amount spender may move out of owner's balance"""
        record = self.storage.load(ALLOWANCES_TABLE, allowance_key(owner, spender))
        if record is None:
            return 0
        return self.amount_type.from_storage(record['amount'])

    def total_supply(self) -> int:
        record = self.storage.load(SUPPLY_TABLE, SUPPLY_RECORD_ID)
        if record is None:
            return 0
        return self.amount_type.from_storage(record['amount'])

    def holders(self) -> Dict[str, int]:
        """Every account with a non-zero balance"""
        return {
            record['account']: self.amount_type.from_storage(record['amount'])
            for record in self.storage.load_all(BALANCES_TABLE)
        }

    def allowances_of(self, owner: str) -> Dict[str, int]:
        """Non-zero allowances granted by owner, keyed by spender"""
        return {
            record['spender']: self.amount_type.from_storage(record['amount'])
            for record in self.storage.find(ALLOWANCES_TABLE, {'owner': owner})
        }

    def snapshot(self) -> LedgerSnapshot:
        """Copy of the whole ledger taken with every entry lock held"""
        with self.locks.hold_all():
            allowances = {
                (record['owner'], record['spender']): self.amount_type.from_storage(record['amount'])
                for record in self.storage.load_all(ALLOWANCES_TABLE)
            }
            return LedgerSnapshot(
                total_supply=self.total_supply(),
                balances=self.holders(),
                allowances=allowances
            )

    def verify_conservation(self) -> Dict[str, Any]:
        """
        Check that balances sum to total supply and none exceeds it

        Returns:
            Dictionary with the check results
        """
        snapshot = self.snapshot()
        result = {
            'valid': True,
            'total_supply': snapshot.total_supply,
            'sum_of_balances': snapshot.sum_of_balances,
            'holder_count': len(snapshot.balances),
            'violations': []
        }

        if snapshot.sum_of_balances != snapshot.total_supply:
            result['valid'] = False
            result['violations'].append({
                'kind': 'conservation',
                'expected': snapshot.total_supply,
                'actual': snapshot.sum_of_balances
            })

        for account, balance in snapshot.balances.items():
            if balance > snapshot.total_supply:
                result['valid'] = False
                result['violations'].append({
                    'kind': 'balance_exceeds_supply',
                    'account': account,
                    'balance': balance
                })

        return result

    # Writes (entry locks held by the caller)

    def _write_balance(self, account: str, amount: int) -> None:
        if amount == 0:
            self.storage.delete(BALANCES_TABLE, account)
            return
        self.storage.save(BALANCES_TABLE, account, {
            'account': account,
            'amount': self.amount_type.to_storage(amount)
        })

    def _write_allowance(self, owner: str, spender: str, amount: int) -> None:
        key = allowance_key(owner, spender)
        if amount == 0:
            self.storage.delete(ALLOWANCES_TABLE, key)
            return
        self.storage.save(ALLOWANCES_TABLE, key, {
            'owner': owner,
            'spender': spender,
            'amount': self.amount_type.to_storage(amount)
        })

    def _write_supply(self, amount: int) -> None:
        self.storage.save(SUPPLY_TABLE, SUPPLY_RECORD_ID, {
            'amount': self.amount_type.to_storage(amount)
        })
