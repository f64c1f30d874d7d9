# carbon_ledger/core/errors.py
"""
Typed failures raised by ledger operations.
Every one aborts the whole operation; nothing is retried internally.
"""


class LedgerError(Exception):
    """Base for all ledger operation failures."""


class Unauthorized(LedgerError):
    def __init__(self, identity: str, role):
        self.identity = identity
        self.role = role
        name = getattr(role, "value", role)
        super().__init__(f"{identity} is missing role {name}")


class AlreadyRegistered(LedgerError):
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Account already registered: {identity}")


class UnknownAccount(LedgerError):
    def __init__(self, identity: str):
        self.identity = identity
        super().__init__(f"Account not registered: {identity}")


class InsufficientBalance(LedgerError):
    def __init__(self, identity: str, balance: int, requested: int):
        self.identity = identity
        self.balance = balance
        self.requested = requested
        super().__init__(
            f"Insufficient credits for {identity}: balance {balance}, requested {requested}"
        )


class RecordNotFound(LedgerError):
    def __init__(self, identity: str, kind: str, key: int):
        self.identity = identity
        self.kind = kind
        self.key = key
        super().__init__(f"No valid {kind} record {key} for {identity}")


class InvalidAmount(LedgerError, ValueError):
    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Amount must be a non-negative integer, got {amount!r}")


class AdminTransferError(LedgerError):
    """Super-admin handoff requested out of order or before its delay elapsed."""
