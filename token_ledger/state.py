"""
Ledger State Module

Balances, allowances, total supply, metadata and the role/status flags of
the token, all kept in storage so that a single storage transaction covers
every table an operation touches. Amounts are unbounded non-negative ints.

This module performs no authorization; callers go through TokenLedger.
"""

from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import json

from .storage import StorageInterface


class InvariantViolation(RuntimeError):
    """Raised when stored state breaks a ledger invariant"""


@dataclass(frozen=True)
class TokenMetadata:
    """Descriptive token metadata, replaced in full by set-metadata"""
    name: str = "USDCx"
    symbol: str = "USDCx"
    decimals: int = 6
    uri: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenMetadata':
        return cls(
            name=data['name'],
            symbol=data['symbol'],
            decimals=int(data['decimals']),
            uri=data.get('uri')
        )


class LedgerState:
    """Storage-backed tables of the ledger"""

    SETTINGS_TABLE = "ledger_settings"
    SETTINGS_ID = "token"
    BALANCES_TABLE = "balances"
    ALLOWANCES_TABLE = "allowances"
    BLACKLIST_TABLE = "blacklist"

    def __init__(self, storage: StorageInterface):
        self.storage = storage

    # Genesis

    def is_initialized(self) -> bool:
        return self.storage.exists(self.SETTINGS_TABLE, self.SETTINGS_ID)

    def initialize(self, deployer: str, metadata: Optional[TokenMetadata] = None) -> None:
        """
        Write the genesis record: zero supply, deployer as minter, unpaused

        Raises:
            RuntimeError: If the state has already been initialized
        """
        if self.is_initialized():
            raise RuntimeError("Ledger state already initialized")

        metadata = metadata or TokenMetadata()
        settings = {
            'total_supply': "0",
            'minter': deployer,
            'paused': False,
            'genesis_at': datetime.now(timezone.utc).isoformat(),
        }
        settings.update(metadata.to_dict())
        self.storage.save(self.SETTINGS_TABLE, self.SETTINGS_ID, settings)

    def _settings(self) -> Dict[str, Any]:
        settings = self.storage.load(self.SETTINGS_TABLE, self.SETTINGS_ID)
        if settings is None:
            raise RuntimeError("Ledger state not initialized")
        return settings

    def _update_settings(self, **changes) -> None:
        settings = self._settings()
        settings.update(changes)
        self.storage.save(self.SETTINGS_TABLE, self.SETTINGS_ID, settings)

    # Supply

    @property
    def total_supply(self) -> int:
        return int(self._settings()['total_supply'])

    def set_total_supply(self, amount: int) -> None:
        if amount < 0:
            raise InvariantViolation(f"Total supply cannot be negative: {amount}")
        self._update_settings(total_supply=str(amount))

    # Balances

    def get_balance(self, account: str) -> int:
        record = self.storage.load(self.BALANCES_TABLE, account)
        if record is None:
            return 0
        return int(record['amount'])

    def set_balance(self, account: str, amount: int) -> None:
        if amount < 0:
            raise InvariantViolation(f"Balance of {account} cannot be negative: {amount}")
        if amount == 0:
            self.storage.delete(self.BALANCES_TABLE, account)
        else:
            self.storage.save(self.BALANCES_TABLE, account, {
                'account': account,
                'amount': str(amount)
            })

    def balances(self) -> Dict[str, int]:
        """All non-zero balances"""
        return {
            record['account']: int(record['amount'])
            for record in self.storage.load_all(self.BALANCES_TABLE)
        }

    # Allowances

    @staticmethod
    def _allowance_key(owner: str, spender: str) -> str:
        # JSON keeps the pair unambiguous whatever characters identifiers contain
        return json.dumps([owner, spender], separators=(',', ':'))

    def get_allowance(self, owner: str, spender: str) -> int:
        record = self.storage.load(self.ALLOWANCES_TABLE, self._allowance_key(owner, spender))
        if record is None:
            return 0
        return int(record['amount'])

    def set_allowance(self, owner: str, spender: str, amount: int) -> None:
        if amount < 0:
            raise InvariantViolation(f"Allowance {owner}->{spender} cannot be negative: {amount}")
        key = self._allowance_key(owner, spender)
        if amount == 0:
            self.storage.delete(self.ALLOWANCES_TABLE, key)
        else:
            self.storage.save(self.ALLOWANCES_TABLE, key, {
                'owner': owner,
                'spender': spender,
                'amount': str(amount)
            })

    def allowances_of(self, owner: str) -> Dict[str, int]:
        """Non-zero allowances granted by one owner, keyed by spender"""
        return {
            record['spender']: int(record['amount'])
            for record in self.storage.find(self.ALLOWANCES_TABLE, {'owner': owner})
        }

    # Roles and flags

    @property
    def minter(self) -> str:
        return self._settings()['minter']

    def set_minter(self, account: str) -> None:
        self._update_settings(minter=account)

    @property
    def paused(self) -> bool:
        return bool(self._settings()['paused'])

    def set_paused(self, paused: bool) -> None:
        self._update_settings(paused=bool(paused))

    def is_blacklisted(self, account: str) -> bool:
        return self.storage.exists(self.BLACKLIST_TABLE, account)

    def add_to_blacklist(self, account: str) -> None:
        if not self.is_blacklisted(account):
            self.storage.save(self.BLACKLIST_TABLE, account, {
                'account': account,
                'listed_at': datetime.now(timezone.utc).isoformat()
            })

    def remove_from_blacklist(self, account: str) -> None:
        self.storage.delete(self.BLACKLIST_TABLE, account)

    def blacklisted_accounts(self) -> List[str]:
        return [record['account'] for record in self.storage.load_all(self.BLACKLIST_TABLE)]

    # Metadata

    @property
    def metadata(self) -> TokenMetadata:
        return TokenMetadata.from_dict(self._settings())

    def set_metadata(self, metadata: TokenMetadata) -> None:
        self._update_settings(**metadata.to_dict())

    # Invariants

    def check_invariants(self) -> Dict[str, int]:
        """
        Recompute the sum of balances and compare it with the stored supply

        Returns:
            Dictionary with the stored supply, the recomputed sum and the
            number of funded accounts

        Raises:
            InvariantViolation: If supply differs from the sum of balances or
                any balance or allowance is negative
        """
        balances = self.balances()
        for account, amount in balances.items():
            if amount < 0:
                raise InvariantViolation(f"Negative balance for {account}: {amount}")

        for record in self.storage.load_all(self.ALLOWANCES_TABLE):
            if int(record['amount']) < 0:
                raise InvariantViolation(
                    f"Negative allowance {record['owner']}->{record['spender']}: {record['amount']}"
                )

        total = sum(balances.values())
        supply = self.total_supply
        if total != supply:
            raise InvariantViolation(f"Total supply {supply} != sum of balances {total}")

        return {'total_supply': supply, 'sum_of_balances': total, 'accounts': len(balances)}
