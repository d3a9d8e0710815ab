"""
Tests for the domain event dispatcher and post-commit publishing
"""

import threading

import pytest

from token_ledger.events import EventDispatcher, EventPayload, DomainEvent
from token_ledger.errors import UnauthorizedError
from token_ledger.ledger import TokenLedger
from token_ledger.storage import InMemoryStorage


def _payload(event_type=DomainEvent.TOKENS_MINTED, entity_id="alice"):
    return EventPayload(
        event_type=event_type,
        entity_type="account",
        entity_id=entity_id,
        data={"amount": "10"}
    )


class TestEventDispatcher:
    """Subscription management and delivery"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()
        self.received = []

    def handler(self, event):
        self.received.append(event)

    def test_subscribe_and_publish(self):
        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, self.handler)

        self.dispatcher.publish(_payload())
        self.dispatcher.publish(_payload(DomainEvent.TOKENS_BURNED))

        assert len(self.received) == 1
        assert self.received[0].event_type == DomainEvent.TOKENS_MINTED

    def test_subscribe_all(self):
        self.dispatcher.subscribe_all(self.handler)

        self.dispatcher.publish(_payload())
        self.dispatcher.publish(_payload(DomainEvent.PAUSE_CHANGED))

        assert [e.event_type for e in self.received] == [
            DomainEvent.TOKENS_MINTED, DomainEvent.PAUSE_CHANGED
        ]

    def test_unsubscribe(self):
        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, self.handler)
        self.dispatcher.subscribe_all(self.handler)
        assert self.dispatcher.get_handler_count() == 2
        assert self.dispatcher.get_handler_count(DomainEvent.TOKENS_MINTED) == 1
        assert self.dispatcher.get_subscribed_events() == [DomainEvent.TOKENS_MINTED]

        self.dispatcher.unsubscribe(DomainEvent.TOKENS_MINTED, self.handler)
        self.dispatcher.unsubscribe_all(self.handler)
        # Removing an unknown handler only logs a warning
        self.dispatcher.unsubscribe(DomainEvent.TOKENS_BURNED, self.handler)

        self.dispatcher.publish(_payload())
        assert self.received == []
        assert self.dispatcher.get_handler_count() == 0

    def test_failing_handler_does_not_stop_delivery(self):
        def broken(event):
            raise ValueError("subscriber bug")

        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, broken)
        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, self.handler)

        self.dispatcher.publish(_payload())
        assert len(self.received) == 1

    def test_clear(self):
        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, self.handler)
        self.dispatcher.clear()

        self.dispatcher.publish(_payload())
        assert self.received == []

    def test_payload_round_trip(self):
        payload = _payload()
        restored = EventPayload.from_dict(payload.to_dict())

        assert restored == payload


class TestLedgerPublishing:
    """The ledger publishes only committed mutations"""

    def setup_method(self):
        self.dispatcher = EventDispatcher()
        self.ledger = TokenLedger(InMemoryStorage(), deployer="deployer", dispatcher=self.dispatcher)
        self.received = []
        self.dispatcher.subscribe_all(self.received.append)

    def test_mint_publishes_after_commit(self):
        balances_seen = []
        self.dispatcher.subscribe(
            DomainEvent.TOKENS_MINTED,
            lambda event: balances_seen.append(self.ledger.get_balance(event.entity_id))
        )

        self.ledger.mint("deployer", 250, "alice")

        assert balances_seen == [250]
        assert self.received[0].data == {"amount": "250", "event_id": 1, "minter": "deployer"}

    def test_batch_mint_publishes_one_event_per_recipient(self):
        self.ledger.batch_mint("deployer", ["alice", "bob"], [1, 2])

        assert [e.entity_id for e in self.received] == ["alice", "bob"]
        assert [e.data["event_id"] for e in self.received] == [1, 2]

    def test_rejected_operation_publishes_nothing(self):
        with pytest.raises(UnauthorizedError):
            self.ledger.mint("mallory", 10, "mallory")

        assert self.received == []

    def test_subscriber_may_call_back_into_ledger(self):
        def forward(event):
            if event.entity_id == "alice":
                self.ledger.transfer("alice", 5, "alice", "bob")

        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, forward)

        self.ledger.mint("deployer", 20, "alice")

        assert self.ledger.get_balance("alice") == 15
        assert self.ledger.get_balance("bob") == 5

    def test_callback_events_follow_the_triggering_event(self):
        def forward(event):
            if event.entity_id == "alice":
                self.ledger.transfer("alice", 5, "alice", "bob")

        self.dispatcher.subscribe(DomainEvent.TOKENS_MINTED, forward)

        self.ledger.mint("deployer", 20, "alice")

        assert [e.event_type for e in self.received] == [
            DomainEvent.TOKENS_MINTED, DomainEvent.TOKENS_TRANSFERRED
        ]

    def test_concurrent_mints_delivered_in_commit_order(self):
        threads = [
            threading.Thread(target=lambda: [self.ledger.mint("deployer", 1, "alice") for _ in range(25)])
            for _ in range(8)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert [e.data["event_id"] for e in self.received] == list(range(1, 201))
        assert self.ledger.get_balance("alice") == 200

    def test_admin_events(self):
        self.ledger.set_paused("deployer", True)
        self.ledger.blacklist_address("deployer", "mallory")
        self.ledger.transfer_minter_role("deployer", "issuer")
        self.ledger.set_metadata("issuer", "Token", "TKN", 2)

        assert [e.event_type for e in self.received] == [
            DomainEvent.PAUSE_CHANGED,
            DomainEvent.BLACKLIST_CHANGED,
            DomainEvent.MINTER_CHANGED,
            DomainEvent.METADATA_UPDATED,
        ]
        assert self.received[2].data == {"previous_minter": "deployer", "new_minter": "issuer"}
