"""
Test suite for ledger state

Tests implicit-zero reads, zero-entry deletion, snapshots, conservation
checks and the striped entry lock table.
"""

import threading

import pytest

from token_ledger.amount import UINT64
from token_ledger.state import (
    LedgerState, EntryLocks, LedgerSnapshot,
    BALANCES_TABLE, ALLOWANCES_TABLE, SUPPLY_TABLE,
    balance_key, allowance_key
)
from token_ledger.storage import InMemoryStorage, SQLiteStorage


class TestReads:
    """Test read queries on an empty and populated ledger"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.state = LedgerState(self.storage)

    def test_initial_state_is_zero(self):
        """Test that a fresh ledger has zero supply and empty mappings"""
        assert self.state.total_supply() == 0
        assert self.state.balance_of("0xnobody") == 0
        assert self.state.allowance("0xa", "0xb") == 0
        assert self.state.holders() == {}

    def test_reads_do_not_create_entries(self):
        """Test that reading an absent account stores nothing"""
        self.state.balance_of("0xghost")
        self.state.allowance("0xghost", "0xother")
        assert self.storage.count(BALANCES_TABLE) == 0
        assert self.storage.count(ALLOWANCES_TABLE) == 0

    def test_reads_return_written_values(self):
        """Test that written entries are visible through reads"""
        self.state._write_balance("0xa", 70)
        self.state._write_balance("0xb", 30)
        self.state._write_supply(100)
        self.state._write_allowance("0xa", "0xb", 12)

        assert self.state.balance_of("0xa") == 70
        assert self.state.total_supply() == 100
        assert self.state.allowance("0xa", "0xb") == 12
        assert self.state.allowance("0xb", "0xa") == 0
        assert self.state.holders() == {"0xa": 70, "0xb": 30}
        assert self.state.allowances_of("0xa") == {"0xb": 12}

    def test_large_amounts_round_trip(self):
        """Test that 256-bit balances are stored without loss"""
        big = 2 ** 255 + 12345
        self.state._write_balance("0xwhale", big)
        assert self.state.balance_of("0xwhale") == big


class TestZeroEntries:
    """Test that zero-valued entries are deleted invisibly"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.state = LedgerState(self.storage)

    def test_zero_balance_deletes_record(self):
        """Test that writing a zero balance removes the record"""
        self.state._write_balance("0xa", 5)
        self.state._write_balance("0xa", 0)

        assert not self.storage.exists(BALANCES_TABLE, "0xa")
        assert self.state.balance_of("0xa") == 0
        assert "0xa" not in self.state.holders()

    def test_zero_allowance_deletes_record(self):
        """Test that writing a zero allowance removes the record"""
        self.state._write_allowance("0xa", "0xb", 5)
        self.state._write_allowance("0xa", "0xb", 0)

        assert self.storage.count(ALLOWANCES_TABLE) == 0
        assert self.state.allowance("0xa", "0xb") == 0
        assert self.state.allowances_of("0xa") == {}

    def test_zero_supply_is_kept(self):
        """Test that supply is a single record and reads zero either way"""
        self.state._write_supply(0)
        assert self.state.total_supply() == 0
        assert self.storage.count(SUPPLY_TABLE) == 1


class TestAllowanceKeys:
    """Test that allowance keys cannot collide"""

    def test_separator_characters_in_ids(self):
        """Test that ids containing separators map to distinct entries"""
        state = LedgerState(InMemoryStorage())
        state._write_allowance("a:b", "c", 1)
        state._write_allowance("a", "b:c", 2)

        assert state.allowance("a:b", "c") == 1
        assert state.allowance("a", "b:c") == 2
        assert allowance_key("a:b", "c") != allowance_key("a", "b:c")

    def test_entry_keys_are_distinct(self):
        """Test that balance and allowance keys never coincide"""
        assert balance_key("x") != allowance_key("x", "x")


class TestSnapshot:
    """Test consistent snapshots and conservation checks"""

    def setup_method(self):
        self.state = LedgerState(InMemoryStorage(), amount_type=UINT64)
        self.state._write_balance("0xa", 60)
        self.state._write_balance("0xb", 40)
        self.state._write_supply(100)
        self.state._write_allowance("0xa", "0xc", 25)

    def test_snapshot_contents(self):
        """Test that a snapshot copies supply, balances and allowances"""
        snapshot = self.state.snapshot()

        assert isinstance(snapshot, LedgerSnapshot)
        assert snapshot.total_supply == 100
        assert snapshot.balances == {"0xa": 60, "0xb": 40}
        assert snapshot.allowances == {("0xa", "0xc"): 25}
        assert snapshot.sum_of_balances == 100

    def test_conservation_holds(self):
        """Test that a consistent ledger verifies"""
        result = self.state.verify_conservation()

        assert result["valid"]
        assert result["total_supply"] == 100
        assert result["sum_of_balances"] == 100
        assert result["holder_count"] == 2
        assert result["violations"] == []

    def test_conservation_violation_detected(self):
        """Test that a corrupted balance is reported"""
        self.state._write_balance("0xb", 140)

        result = self.state.verify_conservation()

        assert not result["valid"]
        kinds = {v["kind"] for v in result["violations"]}
        assert kinds == {"conservation", "balance_exceeds_supply"}

    def test_snapshot_on_sqlite(self):
        """Test that snapshots work against the SQLite backend"""
        state = LedgerState(SQLiteStorage())
        state._write_balance("0xa", 3)
        state._write_supply(3)
        assert state.snapshot().balances == {"0xa": 3}
        assert state.verify_conservation()["valid"]


class TestEntryLocks:
    """Test the striped lock table"""

    def test_requires_a_stripe(self):
        """Test that zero stripes are rejected"""
        with pytest.raises(ValueError):
            EntryLocks(0)

    def test_stripes_sorted_and_unique(self):
        """Test that stripe indices are acquired in ascending order without repeats"""
        locks = EntryLocks(8)
        stripes = locks.stripes_for(["k1", "k2", "k1", "k3"])
        assert stripes == sorted(set(stripes))
        assert all(0 <= s < 8 for s in stripes)

    def test_same_key_twice(self):
        """Test that holding the same key twice does not self-deadlock"""
        locks = EntryLocks(4)
        with locks.hold("a", "a"):
            pass

    def test_released_after_exception(self):
        """Test that stripes are released when the block raises"""
        locks = EntryLocks(1)
        with pytest.raises(RuntimeError):
            with locks.hold("a"):
                raise RuntimeError("fail")

        acquired = threading.Event()

        def worker():
            with locks.hold("b"):
                acquired.set()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join(timeout=5)
        assert acquired.is_set()

    def test_hold_blocks_overlapping_entry(self):
        """Test that a second holder of the same entry waits"""
        locks = EntryLocks(16)
        entered = threading.Event()

        def worker():
            with locks.hold("shared"):
                entered.set()

        with locks.hold("shared"):
            thread = threading.Thread(target=worker)
            thread.start()
            assert not entered.wait(timeout=0.1)

        thread.join(timeout=5)
        assert entered.is_set()

    def test_hold_all(self):
        """Test that hold_all excludes every other holder"""
        locks = EntryLocks(4)
        entered = threading.Event()

        def worker():
            with locks.hold("anything"):
                entered.set()

        with locks.hold_all():
            thread = threading.Thread(target=worker)
            thread.start()
            assert not entered.wait(timeout=0.1)

        thread.join(timeout=5)
        assert entered.is_set()
