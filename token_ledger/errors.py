"""
Ledger Error Module

The four rejection kinds a ledger operation can end in. Codes are stable
and are what callers of the runtime observe.
"""

from enum import IntEnum


class ErrorCode(IntEnum):
    """Stable numeric error codes"""
    NOT_TOKEN_OWNER = 101       # Transfer invoked by someone other than the sender
    INSUFFICIENT_BALANCE = 102  # Balance or allowance too small
    INVALID_AMOUNT = 103        # Zero amount or malformed batch
    UNAUTHORIZED = 104          # Wrong caller, paused ledger or blacklisted sender


class LedgerError(Exception):
    """Base class for rejected ledger operations"""
    code: ErrorCode

    def __init__(self, message: str = ""):
        super().__init__(message or self.code.name.lower())
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={int(self.code)}, message={self.message!r})"


class NotTokenOwnerError(LedgerError):
    code = ErrorCode.NOT_TOKEN_OWNER


class InsufficientBalanceError(LedgerError):
    code = ErrorCode.INSUFFICIENT_BALANCE


class InvalidAmountError(LedgerError):
    code = ErrorCode.INVALID_AMOUNT


class UnauthorizedError(LedgerError):
    code = ErrorCode.UNAUTHORIZED


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (NotTokenOwnerError, InsufficientBalanceError, InvalidAmountError, UnauthorizedError)
}


def error_for_code(code: int, message: str = "") -> LedgerError:
    """Build the exception matching a numeric error code"""
    return ERRORS_BY_CODE[ErrorCode(code)](message)
