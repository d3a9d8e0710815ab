"""
Contract Runtime Module

The call surface an execution environment uses: operations are invoked by
their hyphenated name with positional arguments and an already-authenticated
caller, and every outcome comes back as a CallResult, either Ok(value) or
Err(code).

Ledger rejections become Err results. Calls the environment itself got wrong
(unknown function, wrong number of arguments, a query sent as a public call)
raise RuntimeCallError instead, since no ledger outcome exists for them.
"""

from dataclasses import dataclass, asdict
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Sequence, Tuple

from .errors import ErrorCode, LedgerError, error_for_code
from .event_log import EventKind
from .ledger import TokenLedger
from .logging_config import get_logger


class RuntimeCallError(Exception):
    """A call that could not be dispatched to the ledger"""


class UnknownFunctionError(RuntimeCallError):
    pass


class ArgumentError(RuntimeCallError):
    pass


@dataclass(frozen=True)
class CallResult:
    """Outcome of one runtime call"""
    ok: bool
    value: Any = None
    error: Optional[ErrorCode] = None

    def unwrap(self) -> Any:
        """Return the value, or raise the LedgerError matching the error code"""
        if self.ok:
            return self.value
        raise error_for_code(self.error)

    def to_dict(self) -> Dict[str, Any]:
        if self.ok:
            return {"ok": True, "value": self.value}
        return {"ok": False, "error": int(self.error)}


def Ok(value: Any) -> CallResult:
    return CallResult(ok=True, value=value)


def Err(code: int) -> CallResult:
    return CallResult(ok=False, error=ErrorCode(code))


class Shape(NamedTuple):
    """Accepted form of one positional argument"""
    kind: str
    check: Callable[[Any], bool]


def _is_integer(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _list_of(check: Callable[[Any], bool]) -> Callable[[Any], bool]:
    return lambda value: isinstance(value, (list, tuple)) and all(check(v) for v in value)


ACCOUNT = Shape("an account identifier (str)", lambda value: isinstance(value, str))
# Negative integers pass here and are rejected by the ledger as InvalidAmount
INTEGER = Shape("an integer", _is_integer)
FLAG = Shape("a bool", lambda value: isinstance(value, bool))
TEXT = Shape("a str", lambda value: isinstance(value, str))
OPTIONAL_TEXT = Shape("a str or null", lambda value: value is None or isinstance(value, str))
OPTIONAL_BYTES = Shape("bytes or null", lambda value: value is None or isinstance(value, bytes))

PARAM_SHAPES: Dict[str, Shape] = {
    "account": ACCOUNT,
    "owner": ACCOUNT,
    "spender": ACCOUNT,
    "sender": ACCOUNT,
    "recipient": ACCOUNT,
    "new_minter": ACCOUNT,
    "recipients": Shape("a list of account identifiers", _list_of(ACCOUNT.check)),
    "amount": INTEGER,
    "delta": INTEGER,
    "decimals": INTEGER,
    "event_id": INTEGER,
    "amounts": Shape("a list of integers", _list_of(_is_integer)),
    "paused": FLAG,
    "name": TEXT,
    "symbol": TEXT,
    "uri": OPTIONAL_TEXT,
    "memo": OPTIONAL_BYTES,
}


@dataclass(frozen=True)
class ContractFunction:
    """One named entry point of the call surface"""
    name: str
    read_only: bool
    params: Tuple[str, ...]
    handler: Callable[..., Any]
    optional: int = 0  # trailing params that may be omitted (default None)

    def bind(self, args: Sequence[Any]) -> List[Any]:
        """
        Check arity and argument shapes, padding omitted optionals with None

        Raises:
            ArgumentError: If the count is wrong or an argument has the wrong shape
        """
        required = len(self.params) - self.optional
        if not required <= len(args) <= len(self.params):
            raise ArgumentError(
                f"{self.name} expects {len(self.params)} arguments "
                f"({', '.join(self.params)}), got {len(args)}"
            )
        bound = list(args) + [None] * (len(self.params) - len(args))
        for param, value in zip(self.params, bound):
            shape = PARAM_SHAPES[param]
            if not shape.check(value):
                raise ArgumentError(
                    f"{self.name}: {param} must be {shape.kind}, got {type(value).__name__}"
                )
        return bound


def _event_to_dict(event) -> Optional[Dict[str, Any]]:
    if event is None:
        return None
    return asdict(event)


def _public(name: str, params: Tuple[str, ...], handler: Callable, optional: int = 0) -> ContractFunction:
    return ContractFunction(name, False, params, handler, optional)


def _read_only(name: str, params: Tuple[str, ...], handler: Callable) -> ContractFunction:
    return ContractFunction(name, True, params, handler)


FUNCTIONS: Dict[str, ContractFunction] = {f.name: f for f in (
    # Mutating entry points
    _public("mint", ("amount", "recipient"),
            lambda ledger, caller, amount, recipient: ledger.mint(caller, amount, recipient)),
    _public("batch-mint", ("recipients", "amounts"),
            lambda ledger, caller, recipients, amounts: ledger.batch_mint(caller, recipients, amounts)),
    _public("burn", ("amount",),
            lambda ledger, caller, amount: ledger.burn(caller, amount)),
    _public("transfer", ("amount", "sender", "recipient", "memo"),
            lambda ledger, caller, amount, sender, recipient, memo:
                ledger.transfer(caller, amount, sender, recipient, memo),
            optional=1),
    _public("approve", ("spender", "amount"),
            lambda ledger, caller, spender, amount: ledger.approve(caller, spender, amount)),
    _public("increase-allowance", ("spender", "delta"),
            lambda ledger, caller, spender, delta: ledger.increase_allowance(caller, spender, delta)),
    _public("decrease-allowance", ("spender", "delta"),
            lambda ledger, caller, spender, delta: ledger.decrease_allowance(caller, spender, delta)),
    _public("transfer-from", ("owner", "recipient", "amount"),
            lambda ledger, caller, owner, recipient, amount:
                ledger.transfer_from(caller, owner, recipient, amount)),
    _public("set-paused", ("paused",),
            lambda ledger, caller, paused: ledger.set_paused(caller, paused)),
    _public("blacklist-address", ("account",),
            lambda ledger, caller, account: ledger.blacklist_address(caller, account)),
    _public("unblacklist-address", ("account",),
            lambda ledger, caller, account: ledger.unblacklist_address(caller, account)),
    _public("transfer-minter-role", ("new_minter",),
            lambda ledger, caller, new_minter: ledger.transfer_minter_role(caller, new_minter)),
    _public("set-metadata", ("name", "symbol", "decimals", "uri"),
            lambda ledger, caller, name, symbol, decimals, uri:
                ledger.set_metadata(caller, name, symbol, decimals, uri),
            optional=1),

    # Queries
    _read_only("get-balance", ("account",),
               lambda ledger, caller, account: ledger.get_balance(account)),
    _read_only("get-allowance", ("owner", "spender"),
               lambda ledger, caller, owner, spender: {"amount": ledger.get_allowance(owner, spender)}),
    _read_only("get-total-supply", (),
               lambda ledger, caller: ledger.get_total_supply()),
    _read_only("get-name", (), lambda ledger, caller: ledger.get_name()),
    _read_only("get-symbol", (), lambda ledger, caller: ledger.get_symbol()),
    _read_only("get-decimals", (), lambda ledger, caller: ledger.get_decimals()),
    _read_only("get-token-uri", (), lambda ledger, caller: ledger.get_token_uri()),
    _read_only("get-minter-role", (), lambda ledger, caller: ledger.get_minter()),
    _read_only("is-paused", (), lambda ledger, caller: ledger.is_paused()),
    _read_only("is-blacklisted", ("account",),
               lambda ledger, caller, account: ledger.is_blacklisted(account)),
    _read_only("get-mint-event", ("event_id",),
               lambda ledger, caller, event_id: _event_to_dict(ledger.get_event(EventKind.MINT, event_id))),
    _read_only("get-burn-event", ("event_id",),
               lambda ledger, caller, event_id: _event_to_dict(ledger.get_event(EventKind.BURN, event_id))),
    _read_only("get-transfer-event", ("event_id",),
               lambda ledger, caller, event_id: _event_to_dict(ledger.get_event(EventKind.TRANSFER, event_id))),
    _read_only("get-mint-event-count", (),
               lambda ledger, caller: ledger.get_event_count(EventKind.MINT)),
    _read_only("get-burn-event-count", (),
               lambda ledger, caller: ledger.get_event_count(EventKind.BURN)),
    _read_only("get-transfer-event-count", (),
               lambda ledger, caller: ledger.get_event_count(EventKind.TRANSFER)),
)}


class ContractRuntime:
    """Dispatches named calls from the execution environment to a ledger"""

    def __init__(self, ledger: TokenLedger):
        self.ledger = ledger
        self.logger = get_logger("token_ledger.runtime")

    @staticmethod
    def describe() -> Dict[str, Dict[str, Any]]:
        """Name, kind and parameters of every entry point"""
        return {
            name: {"read_only": fn.read_only, "params": list(fn.params)}
            for name, fn in FUNCTIONS.items()
        }

    def _lookup(self, function_name: str, read_only: bool) -> ContractFunction:
        fn = FUNCTIONS.get(function_name)
        if fn is None:
            raise UnknownFunctionError(f"Unknown function: {function_name}")
        if fn.read_only != read_only:
            kind = "read-only" if fn.read_only else "public"
            raise UnknownFunctionError(f"{function_name} is a {kind} function")
        return fn

    def _invoke(self, fn: ContractFunction, args: Sequence[Any], caller: str) -> CallResult:
        bound = fn.bind(args)
        self.logger.debug(f"Calling {fn.name} as {caller}")
        try:
            return Ok(fn.handler(self.ledger, caller, *bound))
        except LedgerError as e:
            return Err(e.code)

    def call_public(self, function_name: str, args: Sequence[Any], caller: str) -> CallResult:
        """Invoke a mutating entry point"""
        return self._invoke(self._lookup(function_name, read_only=False), args, caller)

    def call_read_only(self, function_name: str, args: Sequence[Any], caller: str) -> CallResult:
        """Invoke a query"""
        return self._invoke(self._lookup(function_name, read_only=True), args, caller)
