"""
Ledger Error Taxonomy

Every failure raised by the transfer engine derives from LedgerError.
All of them are logical validation failures: when one is raised the
ledger state has not been touched.
"""

from typing import Optional


class LedgerError(ValueError):
    """Base class for ledger failures"""
    code = "ledger_error"


class InsufficientBalance(LedgerError):
    """Requested amount exceeds the source account balance"""
    code = "insufficient_balance"

    def __init__(self, account: str, balance: int, requested: int):
        self.account = account
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient balance for {account}: "
            f"available {balance}, requested {requested}"
        )


class InsufficientAllowance(LedgerError):
    """Requested delegated amount exceeds the remaining allowance"""
    code = "insufficient_allowance"

    def __init__(self, owner: str, spender: str, allowance: int, requested: int):
        self.owner = owner
        self.spender = spender
        self.allowance = allowance
        self.requested = requested
        super().__init__(
            f"Insufficient allowance for {spender} on {owner}: "
            f"approved {allowance}, requested {requested}"
        )


class Overflow(LedgerError):
    """An addition would exceed the maximum representable amount"""
    code = "overflow"

    def __init__(self, current: int, increment: int, maximum: int):
        self.current = current
        self.increment = increment
        self.maximum = maximum
        super().__init__(
            f"Amount overflow: {current} + {increment} exceeds {maximum}"
        )


class InvalidAmount(LedgerError):
    """Amount is negative or wider than the ledger amount type"""
    code = "invalid_amount"

    def __init__(self, value: int, maximum: Optional[int] = None):
        self.value = value
        self.maximum = maximum
        if value < 0:
            message = f"Amount must be non-negative, got {value}"
        else:
            message = f"Amount {value} exceeds maximum {maximum}"
        super().__init__(message)


class UnauthorizedMint(LedgerError):
    """Caller is not permitted to mint"""
    code = "unauthorized_mint"

    def __init__(self, caller: str):
        self.caller = caller
        super().__init__(f"Caller {caller} is not authorized to mint")
