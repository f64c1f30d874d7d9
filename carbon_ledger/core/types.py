# carbon_ledger/core/types.py
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict


class Role(str, Enum):
    """Closed set of roles. Values are the role tokens and never change."""
    ADMIN = "ADMIN_ROLE"
    TRADER = "TRADER_ROLE"
    AUDITOR = "AUDITOR_ROLE"
    ISSUER = "ISSUER_ROLE"
    SUPER_ADMIN = "DEFAULT_ADMIN_ROLE"

    @classmethod
    def from_index(cls, index: int) -> "Role":
        """Resolve the fixed numeric role index (0=ADMIN .. 3=ISSUER)."""
        try:
            return ROLE_INDEX[index]
        except KeyError:
            raise ValueError(f"Unknown role index: {index}") from None

    @classmethod
    def parse(cls, name: str) -> "Role":
        """Accept either the token ("ISSUER_ROLE") or the short name ("issuer")."""
        key = name.strip().upper()
        for role in cls:
            if key in (role.name, role.value):
                return role
        raise ValueError(f"Unknown role: {name}")


ROLE_INDEX: Dict[int, Role] = {
    0: Role.ADMIN,
    1: Role.TRADER,
    2: Role.AUDITOR,
    3: Role.ISSUER,
}


class IdScheme(str, Enum):
    """How credit and trade log keys are assigned."""
    BALANCE = "balance"          # credit id = pre-issuance balance, trade id shared from seller
    SEQUENTIAL = "sequential"    # dense per-account counters, no overwrites


@dataclass(frozen=True)
class CarbonCredit:
    """Units issued to one account. Never transferred or merged."""
    credit_id: int
    amount: int
    issued_date: str                # ISO 8601 UTC with millis
    issued_by: str
    is_valid: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class CarbonTrade:
    """A bilateral transfer, stored identically in seller and buyer logs."""
    trade_id: int
    seller: str
    buyer: str
    amount: int
    trade_date: str
    is_valid: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Account:
    """
    One registered organization.
    `credits` and `trades` map log slot -> record; records are immutable,
    the maps themselves are only replaced through a committed change.
    """
    identity: str
    organization_name: str
    total_credits: int = 0
    trade_count: int = 0
    is_valid: bool = False
    credits: Dict[int, CarbonCredit] = field(default_factory=dict)
    trades: Dict[int, CarbonTrade] = field(default_factory=dict)

    def copy(self) -> "Account":
        return Account(
            identity=self.identity,
            organization_name=self.organization_name,
            total_credits=self.total_credits,
            trade_count=self.trade_count,
            is_valid=self.is_valid,
            credits=dict(self.credits),
            trades=dict(self.trades),
        )

    def header(self) -> dict:
        """Scalar fields only (what the accounts table stores)."""
        return {
            "identity": self.identity,
            "organization_name": self.organization_name,
            "total_credits": self.total_credits,
            "trade_count": self.trade_count,
            "is_valid": self.is_valid,
        }


@dataclass(frozen=True)
class LedgerEvent:
    """Single entry in the hash-chained journal of committed mutations."""
    sequence: int
    timestamp: str
    kind: str                       # e.g. "credit_issued", "credits_transferred"
    actor: str                      # identity that performed the operation
    payload: Dict[str, Any] = field(default_factory=dict)
    prev_hash: str = ""             # hex(sha256) or empty for the first event

    def to_dict(self) -> dict:
        return asdict(self)
