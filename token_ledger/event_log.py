"""
Event Log Module

Three independent append-only logs (mint, burn, transfer). Each entry gets a
1-based sequence number within its own log; entries are stored under that
number and never rewritten, so the count of a log is also its last id.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from .storage import StorageInterface


class EventKind(Enum):
    """The three audited mutation kinds"""
    MINT = "mint"
    BURN = "burn"
    TRANSFER = "transfer"

    @property
    def table(self) -> str:
        return f"{self.value}_events"


def utc_timestamp() -> int:
    """Seconds since the Unix epoch, UTC"""
    return int(datetime.now(timezone.utc).timestamp())


@dataclass(frozen=True)
class MintEvent:
    id: int
    recipient: str
    amount: int
    tx_sender: str
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['amount'] = str(self.amount)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MintEvent':
        return cls(
            id=int(data['id']),
            recipient=data['recipient'],
            amount=int(data['amount']),
            tx_sender=data['tx_sender'],
            timestamp=int(data['timestamp'])
        )


@dataclass(frozen=True)
class BurnEvent:
    id: int
    burner: str
    amount: int
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['amount'] = str(self.amount)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BurnEvent':
        return cls(
            id=int(data['id']),
            burner=data['burner'],
            amount=int(data['amount']),
            timestamp=int(data['timestamp'])
        )


@dataclass(frozen=True)
class TransferEvent:
    """Transfer record; memo is carried verbatim and never interpreted"""
    id: int
    sender: str
    recipient: str
    amount: int
    memo: Optional[bytes]
    timestamp: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'sender': self.sender,
            'recipient': self.recipient,
            'amount': str(self.amount),
            'memo': self.memo.hex() if self.memo is not None else None,
            'timestamp': self.timestamp
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferEvent':
        memo = data.get('memo')
        return cls(
            id=int(data['id']),
            sender=data['sender'],
            recipient=data['recipient'],
            amount=int(data['amount']),
            memo=bytes.fromhex(memo) if memo is not None else None,
            timestamp=int(data['timestamp'])
        )


LedgerEvent = Union[MintEvent, BurnEvent, TransferEvent]

EVENT_CLASSES = {
    EventKind.MINT: MintEvent,
    EventKind.BURN: BurnEvent,
    EventKind.TRANSFER: TransferEvent,
}


class EventLog:
    """
    Append-only mint/burn/transfer logs

    Appends must run inside the same storage transaction as the balance
    change they record; a rollback then removes the entry so committed ids
    stay contiguous.
    """

    def __init__(self, storage: StorageInterface, clock: Optional[Callable[[], int]] = None):
        self.storage = storage
        self.clock = clock or utc_timestamp

    def count(self, kind: EventKind) -> int:
        """Number of entries in one log"""
        return self.storage.count(kind.table)

    def _append(self, kind: EventKind, **fields) -> LedgerEvent:
        event_id = self.count(kind) + 1
        if self.storage.exists(kind.table, str(event_id)):
            raise RuntimeError(f"{kind.value} event log is corrupt: id {event_id} already present")

        event = EVENT_CLASSES[kind](id=event_id, timestamp=self.clock(), **fields)
        self.storage.save(kind.table, str(event_id), event.to_dict())
        return event

    def append_mint(self, recipient: str, amount: int, tx_sender: str) -> MintEvent:
        return self._append(EventKind.MINT, recipient=recipient, amount=amount, tx_sender=tx_sender)

    def append_burn(self, burner: str, amount: int) -> BurnEvent:
        return self._append(EventKind.BURN, burner=burner, amount=amount)

    def append_transfer(self, sender: str, recipient: str, amount: int,
                        memo: Optional[bytes] = None) -> TransferEvent:
        return self._append(EventKind.TRANSFER, sender=sender, recipient=recipient,
                            amount=amount, memo=memo)

    def get(self, kind: EventKind, event_id: int) -> Optional[LedgerEvent]:
        """Look up an entry by id; ids outside [1, count] are absent"""
        if not isinstance(event_id, int) or isinstance(event_id, bool) or event_id < 1:
            return None
        data = self.storage.load(kind.table, str(event_id))
        if data is None:
            return None
        return EVENT_CLASSES[kind].from_dict(data)

    def list_events(self, kind: EventKind, start: int = 1, limit: Optional[int] = None) -> List[LedgerEvent]:
        """Entries from id `start` onwards, in id order"""
        start = max(start, 1)
        end = self.count(kind)
        if limit is not None:
            end = min(end, start + limit - 1)
        events = []
        for event_id in range(start, end + 1):
            event = self.get(kind, event_id)
            if event is not None:
                events.append(event)
        return events
