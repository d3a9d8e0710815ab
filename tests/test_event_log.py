"""
Tests for the mint/burn/transfer event logs
"""

import pytest

from token_ledger.event_log import (
    EventLog, EventKind, MintEvent, BurnEvent, TransferEvent
)
from token_ledger.storage import InMemoryStorage, SQLiteStorage


class TestEventLog:
    """Append-only logs with per-kind sequence numbers"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.log = EventLog(self.storage, clock=lambda: 1_700_000_000)

    def test_ids_are_per_log(self):
        mint = self.log.append_mint("alice", 100, "deployer")
        burn = self.log.append_burn("alice", 10)
        second_mint = self.log.append_mint("bob", 5, "deployer")

        assert mint.id == 1
        assert burn.id == 1
        assert second_mint.id == 2
        assert self.log.count(EventKind.MINT) == 2
        assert self.log.count(EventKind.BURN) == 1
        assert self.log.count(EventKind.TRANSFER) == 0

    def test_get_returns_stored_event(self):
        self.log.append_mint("alice", 100, "deployer")
        self.log.append_transfer("alice", "bob", 7, b"\x00invoice-42")

        assert self.log.get(EventKind.MINT, 1) == MintEvent(
            id=1, recipient="alice", amount=100, tx_sender="deployer", timestamp=1_700_000_000
        )
        assert self.log.get(EventKind.TRANSFER, 1) == TransferEvent(
            id=1, sender="alice", recipient="bob", amount=7,
            memo=b"\x00invoice-42", timestamp=1_700_000_000
        )

    @pytest.mark.parametrize("event_id", [0, -1, 2, 10 ** 30, True, "1", None])
    def test_get_outside_range_is_absent(self, event_id):
        self.log.append_burn("alice", 1)

        assert self.log.get(EventKind.BURN, event_id) is None

    def test_transfer_without_memo(self):
        event = self.log.append_transfer("alice", "bob", 1)

        assert event.memo is None
        assert self.log.get(EventKind.TRANSFER, 1).memo is None

    def test_amounts_beyond_64_bits_survive_storage(self):
        amount = 2 ** 64 + 12345
        self.log.append_burn("whale", amount)

        assert self.log.get(EventKind.BURN, 1).amount == amount

    def test_rolled_back_append_leaves_no_gap(self):
        self.log.append_mint("alice", 1, "deployer")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                self.log.append_mint("bob", 2, "deployer")
                raise RuntimeError("abort")

        assert self.log.count(EventKind.MINT) == 1
        assert self.log.get(EventKind.MINT, 2) is None

        event = self.log.append_mint("carol", 3, "deployer")
        assert event.id == 2
        assert event.recipient == "carol"

    def test_list_events(self):
        for amount in range(1, 6):
            self.log.append_burn("alice", amount)

        assert [e.amount for e in self.log.list_events(EventKind.BURN)] == [1, 2, 3, 4, 5]
        assert [e.id for e in self.log.list_events(EventKind.BURN, start=2, limit=2)] == [2, 3]
        assert self.log.list_events(EventKind.MINT) == []

    def test_sqlite_backend(self, tmp_path):
        log = EventLog(SQLiteStorage(tmp_path / "events.db"), clock=lambda: 42)
        log.append_transfer("alice", "bob", 9, b"\xde\xad")

        assert log.get(EventKind.TRANSFER, 1).memo == b"\xde\xad"
        assert log.get(EventKind.TRANSFER, 1).timestamp == 42


class TestEventRecords:
    """Serialised form of event records"""

    def test_amount_stored_as_string(self):
        event = BurnEvent(id=3, burner="alice", amount=18446744073709551615, timestamp=1)

        data = event.to_dict()
        assert data["amount"] == "18446744073709551615"
        assert BurnEvent.from_dict(data) == event

    def test_memo_stored_as_hex(self):
        event = TransferEvent(id=1, sender="a", recipient="b", amount=1, memo=b"\x01\x02", timestamp=1)

        assert event.to_dict()["memo"] == "0102"

    def test_event_kind_tables(self):
        assert EventKind.MINT.table == "mint_events"
        assert EventKind.BURN.table == "burn_events"
        assert EventKind.TRANSFER.table == "transfer_events"
