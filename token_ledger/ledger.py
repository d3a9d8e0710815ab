"""
Token Ledger Engine

The operation set of the ledger. Every mutating operation evaluates its
guards (authorization, pause, blacklist, amount, sufficiency) in that order
against current state, then applies balances, allowances, supply, the event
log and the audit trail inside one storage transaction. A rejected operation
raises a LedgerError and leaves storage exactly as it was.
"""

from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Dict, List, Optional, Sequence
import threading

from .audit import AuditTrail, AuditEventType
from .config import TokenLedgerConfig, get_config
from .errors import (
    LedgerError, NotTokenOwnerError, InsufficientBalanceError,
    InvalidAmountError, UnauthorizedError
)
from .event_log import EventLog, EventKind, MintEvent, BurnEvent, TransferEvent, LedgerEvent
from .events import EventDispatcher, EventPayload, DomainEvent
from .logging_config import get_logger, log_action
from .state import LedgerState, TokenMetadata
from .storage import StorageInterface, create_storage


def _is_uint(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


class TokenLedger:
    """
    Single-asset fungible token ledger

    One instance owns one store. All calls are serialised by a re-entrant
    lock held from guard evaluation through commit; domain events are
    published after the lock is released.
    """

    def __init__(
        self,
        storage: StorageInterface,
        deployer: Optional[str] = None,
        metadata: Optional[TokenMetadata] = None,
        audit_trail: Optional[AuditTrail] = None,
        dispatcher: Optional[EventDispatcher] = None,
        clock: Optional[Callable[[], int]] = None,
        config: Optional[TokenLedgerConfig] = None
    ):
        config = config or get_config()
        self.storage = storage
        self.state = LedgerState(storage)
        self.events = EventLog(storage, clock)
        if audit_trail is None and config.enable_audit_logging:
            audit_trail = AuditTrail(storage)
        self.audit_trail = audit_trail
        self.dispatcher = dispatcher
        self.max_batch_size = config.max_batch_size
        self.verify_invariants = config.verify_invariants
        self.logger = get_logger("token_ledger.ledger")
        self._lock = threading.RLock()
        self._publish_lock = threading.Lock()
        self._delivery = threading.local()
        self._outbox: Deque[EventPayload] = deque()

        if not self.state.is_initialized():
            self._genesis(deployer or config.deployer, metadata or TokenMetadata(
                name=config.token_name,
                symbol=config.token_symbol,
                decimals=config.token_decimals,
                uri=config.token_uri
            ))

    @classmethod
    def from_config(cls, config: Optional[TokenLedgerConfig] = None,
                    dispatcher: Optional[EventDispatcher] = None) -> 'TokenLedger':
        """Build a ledger on the storage backend named by the configuration"""
        config = config or get_config()
        storage = create_storage(config.storage_backend, config.database_path)
        return cls(storage, dispatcher=dispatcher or EventDispatcher(), config=config)

    def _genesis(self, deployer: str, metadata: TokenMetadata) -> None:
        with self._lock, self.storage.atomic():
            self.state.initialize(deployer, metadata)
            self._audit(AuditEventType.LEDGER_INITIALIZED, "token", "token", deployer, {
                "minter": deployer,
                "metadata": metadata.to_dict()
            })
        log_action(self.logger, "info", "Ledger initialized", user_id=deployer,
                   action="genesis", resource="token")

    # Operation plumbing

    @contextmanager
    def _operation(self, action: str, caller: str, resource: Optional[str] = None):
        """
        Run one operation atomically

        Yields a list the body appends EventPayloads to; they are published
        only once the transaction has committed.
        """
        published: List[EventPayload] = []
        with self._lock:
            try:
                with self.storage.atomic():
                    yield published
                    if self.verify_invariants:
                        self.state.check_invariants()
            except LedgerError as e:
                log_action(self.logger, "warning", f"{action} rejected: {e}",
                           user_id=caller, action=action, resource=resource,
                           error_code=int(e.code))
                raise

            # Queued before the lock is released so the outbox holds commit order
            if self.dispatcher is not None:
                self._outbox.extend(published)

        log_action(self.logger, "info", f"{action} committed",
                   user_id=caller, action=action, resource=resource)
        self._drain_outbox()

    def _drain_outbox(self) -> None:
        """
        Deliver queued domain events in commit order

        Runs outside the ledger lock. Events raised by a subscriber that calls
        back into the ledger stay queued until the current event has reached
        every handler; other threads wait on the publish lock.
        """
        if getattr(self._delivery, "active", False):
            return
        with self._publish_lock:
            self._delivery.active = True
            try:
                while self._outbox:
                    self.dispatcher.publish(self._outbox.popleft())
            finally:
                self._delivery.active = False

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               caller: str, metadata: Dict) -> None:
        if self.audit_trail is not None:
            self.audit_trail.log_event(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                user_id=caller
            )

    # Guards

    def _require_minter(self, caller: str) -> None:
        if caller != self.state.minter:
            raise UnauthorizedError(f"{caller} does not hold the minter role")

    def _require_not_paused(self) -> None:
        if self.state.paused:
            raise UnauthorizedError("Ledger is paused")

    def _require_not_blacklisted(self, *accounts: str) -> None:
        for account in accounts:
            if self.state.is_blacklisted(account):
                raise UnauthorizedError(f"{account} is blacklisted")

    @staticmethod
    def _require_positive(amount) -> None:
        if not _is_uint(amount) or amount == 0:
            raise InvalidAmountError(f"Amount must be a positive integer, got {amount!r}")

    @staticmethod
    def _require_uint(amount) -> None:
        if not _is_uint(amount):
            raise InvalidAmountError(f"Amount must be a non-negative integer, got {amount!r}")

    # Balance helpers (no guards; callers have already checked sufficiency)

    def _credit(self, account: str, amount: int) -> None:
        self.state.set_balance(account, self.state.get_balance(account) + amount)

    def _debit(self, account: str, amount: int) -> None:
        self.state.set_balance(account, self.state.get_balance(account) - amount)

    def _mint_to(self, caller: str, recipient: str, amount: int) -> MintEvent:
        self._credit(recipient, amount)
        self.state.set_total_supply(self.state.total_supply + amount)
        event = self.events.append_mint(recipient, amount, caller)
        self._audit(AuditEventType.TOKENS_MINTED, "account", recipient, caller, {
            "amount": str(amount),
            "mint_event_id": event.id
        })
        return event

    def _move(self, sender: str, recipient: str, amount: int,
              memo: Optional[bytes], caller: str) -> TransferEvent:
        self._debit(sender, amount)
        self._credit(recipient, amount)
        event = self.events.append_transfer(sender, recipient, amount, memo)
        self._audit(AuditEventType.TOKENS_TRANSFERRED, "account", sender, caller, {
            "recipient": recipient,
            "amount": str(amount),
            "memo": memo,
            "transfer_event_id": event.id
        })
        return event

    # Supply operations

    def mint(self, caller: str, amount: int, recipient: str) -> bool:
        """
        Create new tokens for a recipient

        Raises:
            UnauthorizedError: If caller is not the minter, the ledger is
                paused or the minter is blacklisted
            InvalidAmountError: If amount is zero
        """
        with self._operation("mint", caller, recipient) as published:
            self._require_minter(caller)
            self._require_not_paused()
            self._require_not_blacklisted(caller)
            self._require_positive(amount)

            event = self._mint_to(caller, recipient, amount)
            published.append(EventPayload(
                event_type=DomainEvent.TOKENS_MINTED,
                entity_type="account",
                entity_id=recipient,
                data={"amount": str(amount), "event_id": event.id, "minter": caller}
            ))
        return True

    def batch_mint(self, caller: str, recipients: Sequence[str], amounts: Sequence[int]) -> bool:
        """
        Mint to several recipients at once, all or nothing

        One mint event is appended per (recipient, amount) pair, in list order.

        Raises:
            UnauthorizedError: If caller is not the minter, the ledger is
                paused or the minter is blacklisted
            TypeError: If recipients or amounts is not a list
            InvalidAmountError: If the lists differ in length, exceed the
                configured batch size or contain a zero amount
        """
        if not isinstance(recipients, (list, tuple)) or not isinstance(amounts, (list, tuple)):
            raise TypeError("recipients and amounts must be lists")
        with self._operation("batch-mint", caller) as published:
            self._require_minter(caller)
            self._require_not_paused()
            self._require_not_blacklisted(caller)
            if len(recipients) != len(amounts):
                raise InvalidAmountError(
                    f"{len(recipients)} recipients but {len(amounts)} amounts"
                )
            if len(recipients) > self.max_batch_size:
                raise InvalidAmountError(
                    f"Batch of {len(recipients)} exceeds maximum of {self.max_batch_size}"
                )
            for amount in amounts:
                self._require_positive(amount)

            for recipient, amount in zip(recipients, amounts):
                event = self._mint_to(caller, recipient, amount)
                published.append(EventPayload(
                    event_type=DomainEvent.TOKENS_MINTED,
                    entity_type="account",
                    entity_id=recipient,
                    data={"amount": str(amount), "event_id": event.id, "minter": caller}
                ))
        return True

    def burn(self, caller: str, amount: int) -> bool:
        """
        Destroy tokens from the caller's own balance

        Raises:
            UnauthorizedError: If the ledger is paused or caller is blacklisted
            InvalidAmountError: If amount is zero
            InsufficientBalanceError: If amount exceeds the caller's balance
        """
        with self._operation("burn", caller, caller) as published:
            self._require_not_paused()
            self._require_not_blacklisted(caller)
            self._require_positive(amount)
            balance = self.state.get_balance(caller)
            if balance < amount:
                raise InsufficientBalanceError(f"Balance {balance} is less than {amount}")

            self.state.set_balance(caller, balance - amount)
            self.state.set_total_supply(self.state.total_supply - amount)
            event = self.events.append_burn(caller, amount)
            self._audit(AuditEventType.TOKENS_BURNED, "account", caller, caller, {
                "amount": str(amount),
                "burn_event_id": event.id
            })
            published.append(EventPayload(
                event_type=DomainEvent.TOKENS_BURNED,
                entity_type="account",
                entity_id=caller,
                data={"amount": str(amount), "event_id": event.id}
            ))
        return True

    # Transfers

    def transfer(self, caller: str, amount: int, sender: str, recipient: str,
                 memo: Optional[bytes] = None) -> bool:
        """
        Move tokens from sender to recipient

        Args:
            caller: Authenticated caller, must be the sender
            amount: Amount to move
            sender: Account debited
            recipient: Account credited
            memo: Opaque bytes recorded on the transfer event

        Raises:
            NotTokenOwnerError: If caller is not the sender
            UnauthorizedError: If the ledger is paused or sender is blacklisted
            InvalidAmountError: If amount is zero
            TypeError: If memo is neither bytes nor None
            InsufficientBalanceError: If amount exceeds the sender's balance
        """
        if memo is not None and not isinstance(memo, bytes):
            raise TypeError(f"memo must be bytes or None, got {type(memo).__name__}")
        with self._operation("transfer", caller, sender) as published:
            if caller != sender:
                raise NotTokenOwnerError(f"{caller} cannot transfer on behalf of {sender}")
            self._require_not_paused()
            self._require_not_blacklisted(sender)
            self._require_positive(amount)
            balance = self.state.get_balance(sender)
            if balance < amount:
                raise InsufficientBalanceError(f"Balance {balance} is less than {amount}")

            event = self._move(sender, recipient, amount, memo, caller)
            published.append(EventPayload(
                event_type=DomainEvent.TOKENS_TRANSFERRED,
                entity_type="account",
                entity_id=sender,
                data={"recipient": recipient, "amount": str(amount), "event_id": event.id}
            ))
        return True

    def transfer_from(self, caller: str, owner: str, recipient: str, amount: int) -> bool:
        """
        Spend part of an allowance: move owner's tokens on the caller's behalf

        Raises:
            UnauthorizedError: If the ledger is paused or owner or caller is
                blacklisted
            InvalidAmountError: If amount is zero
            InsufficientBalanceError: If amount exceeds the allowance granted
                to the caller or the owner's balance
        """
        with self._operation("transfer-from", caller, owner) as published:
            self._require_not_paused()
            self._require_not_blacklisted(owner, caller)
            self._require_positive(amount)
            allowance = self.state.get_allowance(owner, caller)
            if allowance < amount:
                raise InsufficientBalanceError(f"Allowance {allowance} is less than {amount}")
            balance = self.state.get_balance(owner)
            if balance < amount:
                raise InsufficientBalanceError(f"Balance {balance} is less than {amount}")

            self.state.set_allowance(owner, caller, allowance - amount)
            event = self._move(owner, recipient, amount, None, caller)
            published.append(EventPayload(
                event_type=DomainEvent.TOKENS_TRANSFERRED,
                entity_type="account",
                entity_id=owner,
                data={
                    "recipient": recipient,
                    "amount": str(amount),
                    "event_id": event.id,
                    "spender": caller
                }
            ))
        return True

    # Allowances

    def _change_allowance(self, caller: str, spender: str, new_amount: int,
                          action: str, audit_type: AuditEventType, published: List[EventPayload]) -> None:
        previous = self.state.get_allowance(caller, spender)
        self.state.set_allowance(caller, spender, new_amount)
        self._audit(audit_type, "allowance", f"{caller}->{spender}", caller, {
            "owner": caller,
            "spender": spender,
            "previous": str(previous),
            "amount": str(new_amount)
        })
        published.append(EventPayload(
            event_type=DomainEvent.ALLOWANCE_CHANGED,
            entity_type="allowance",
            entity_id=f"{caller}->{spender}",
            data={"action": action, "previous": str(previous), "amount": str(new_amount)}
        ))

    def approve(self, caller: str, spender: str, amount: int) -> bool:
        """Set the caller's allowance for spender to an absolute amount"""
        with self._operation("approve", caller, spender) as published:
            self._require_uint(amount)
            self._change_allowance(caller, spender, amount, "approve",
                                   AuditEventType.ALLOWANCE_APPROVED, published)
        return True

    def increase_allowance(self, caller: str, spender: str, delta: int) -> bool:
        """Raise the caller's allowance for spender by delta"""
        with self._operation("increase-allowance", caller, spender) as published:
            self._require_uint(delta)
            current = self.state.get_allowance(caller, spender)
            self._change_allowance(caller, spender, current + delta, "increase",
                                   AuditEventType.ALLOWANCE_INCREASED, published)
        return True

    def decrease_allowance(self, caller: str, spender: str, delta: int) -> bool:
        """Lower the caller's allowance for spender by delta, saturating at zero"""
        with self._operation("decrease-allowance", caller, spender) as published:
            self._require_uint(delta)
            current = self.state.get_allowance(caller, spender)
            self._change_allowance(caller, spender, max(0, current - delta), "decrease",
                                   AuditEventType.ALLOWANCE_DECREASED, published)
        return True

    # Administration (minter only, unaffected by the paused flag)

    def set_paused(self, caller: str, paused: bool) -> bool:
        """
        Set or clear the paused flag

        Raises:
            TypeError: If paused is not a bool
            UnauthorizedError: If caller is not the minter
        """
        if not isinstance(paused, bool):
            raise TypeError(f"paused must be a bool, got {type(paused).__name__}")
        with self._operation("set-paused", caller, "token") as published:
            self._require_minter(caller)
            self.state.set_paused(paused)
            self._audit(
                AuditEventType.LEDGER_PAUSED if paused else AuditEventType.LEDGER_UNPAUSED,
                "token", "token", caller, {"paused": paused}
            )
            published.append(EventPayload(
                event_type=DomainEvent.PAUSE_CHANGED,
                entity_type="token",
                entity_id="token",
                data={"paused": paused}
            ))
        return True

    def _set_blacklisted(self, caller: str, account: str, listed: bool) -> bool:
        action = "blacklist-address" if listed else "unblacklist-address"
        with self._operation(action, caller, account) as published:
            self._require_minter(caller)
            if listed:
                self.state.add_to_blacklist(account)
            else:
                self.state.remove_from_blacklist(account)
            self._audit(
                AuditEventType.ADDRESS_BLACKLISTED if listed else AuditEventType.ADDRESS_UNBLACKLISTED,
                "account", account, caller, {"blacklisted": listed}
            )
            published.append(EventPayload(
                event_type=DomainEvent.BLACKLIST_CHANGED,
                entity_type="account",
                entity_id=account,
                data={"blacklisted": listed}
            ))
        return True

    def blacklist_address(self, caller: str, account: str) -> bool:
        """Bar an account from sending tokens"""
        return self._set_blacklisted(caller, account, True)

    def unblacklist_address(self, caller: str, account: str) -> bool:
        """Lift a blacklisting"""
        return self._set_blacklisted(caller, account, False)

    def transfer_minter_role(self, caller: str, new_minter: str) -> bool:
        """Hand the minter role to another account"""
        with self._operation("transfer-minter-role", caller, new_minter) as published:
            self._require_minter(caller)
            self.state.set_minter(new_minter)
            self._audit(AuditEventType.MINTER_ROLE_TRANSFERRED, "token", "token", caller, {
                "previous_minter": caller,
                "new_minter": new_minter
            })
            published.append(EventPayload(
                event_type=DomainEvent.MINTER_CHANGED,
                entity_type="token",
                entity_id="token",
                data={"previous_minter": caller, "new_minter": new_minter}
            ))
        return True

    def set_metadata(self, caller: str, name: str, symbol: str, decimals: int,
                     uri: Optional[str] = None) -> bool:
        """Replace the token metadata in full"""
        with self._operation("set-metadata", caller, "token") as published:
            self._require_minter(caller)
            self._require_uint(decimals)
            metadata = TokenMetadata(name=name, symbol=symbol, decimals=decimals, uri=uri)
            self.state.set_metadata(metadata)
            self._audit(AuditEventType.METADATA_UPDATED, "token", "token", caller, metadata.to_dict())
            published.append(EventPayload(
                event_type=DomainEvent.METADATA_UPDATED,
                entity_type="token",
                entity_id="token",
                data=metadata.to_dict()
            ))
        return True

    # Read-only queries

    def get_balance(self, account: str) -> int:
        with self._lock:
            return self.state.get_balance(account)

    def get_allowance(self, owner: str, spender: str) -> int:
        with self._lock:
            return self.state.get_allowance(owner, spender)

    def get_total_supply(self) -> int:
        with self._lock:
            return self.state.total_supply

    def get_metadata(self) -> TokenMetadata:
        with self._lock:
            return self.state.metadata

    def get_name(self) -> str:
        return self.get_metadata().name

    def get_symbol(self) -> str:
        return self.get_metadata().symbol

    def get_decimals(self) -> int:
        return self.get_metadata().decimals

    def get_token_uri(self) -> Optional[str]:
        return self.get_metadata().uri

    def get_minter(self) -> str:
        with self._lock:
            return self.state.minter

    def is_paused(self) -> bool:
        with self._lock:
            return self.state.paused

    def is_blacklisted(self, account: str) -> bool:
        with self._lock:
            return self.state.is_blacklisted(account)

    def get_event(self, kind: EventKind, event_id: int) -> Optional[LedgerEvent]:
        with self._lock:
            return self.events.get(kind, event_id)

    def get_event_count(self, kind: EventKind) -> int:
        with self._lock:
            return self.events.count(kind)

    def get_mint_event(self, event_id: int) -> Optional[MintEvent]:
        return self.get_event(EventKind.MINT, event_id)

    def get_burn_event(self, event_id: int) -> Optional[BurnEvent]:
        return self.get_event(EventKind.BURN, event_id)

    def get_transfer_event(self, event_id: int) -> Optional[TransferEvent]:
        return self.get_event(EventKind.TRANSFER, event_id)

    def get_mint_event_count(self) -> int:
        return self.get_event_count(EventKind.MINT)

    def get_burn_event_count(self) -> int:
        return self.get_event_count(EventKind.BURN)

    def get_transfer_event_count(self) -> int:
        return self.get_event_count(EventKind.TRANSFER)

    def check_invariants(self) -> Dict[str, int]:
        """Recompute supply against balances (see LedgerState.check_invariants)"""
        with self._lock:
            return self.state.check_invariants()
