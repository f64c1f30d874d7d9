# carbon_ledger/__init__.py
"""
Carbon Ledger: permissioned issuance and transfer of carbon credits between
registered organizations, with role-gated operations and a hash-chained
audit journal.
"""

__version__ = "0.1.0-dev"

from carbon_ledger.core.errors import (
    AdminTransferError,
    AlreadyRegistered,
    InsufficientBalance,
    InvalidAmount,
    LedgerError,
    RecordNotFound,
    Unauthorized,
    UnknownAccount,
)
from carbon_ledger.core.ledger import CarbonLedger
from carbon_ledger.core.types import Account, CarbonCredit, CarbonTrade, IdScheme, Role
from carbon_ledger.verify.verifier import LedgerVerifier

__all__ = [
    "CarbonLedger",
    "LedgerVerifier",
    "Account",
    "CarbonCredit",
    "CarbonTrade",
    "IdScheme",
    "Role",
    "LedgerError",
    "Unauthorized",
    "AlreadyRegistered",
    "UnknownAccount",
    "InsufficientBalance",
    "RecordNotFound",
    "InvalidAmount",
    "AdminTransferError",
]
