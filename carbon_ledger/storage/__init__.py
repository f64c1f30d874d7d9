# carbon_ledger/storage/__init__.py
"""
Storage backends for durable ledger state.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List, Tuple
from pathlib import Path

from carbon_ledger.core.types import Account, CarbonCredit, CarbonTrade, LedgerEvent, Role


@dataclass
class Changeset:
    """Everything one ledger operation writes. Committed as a single transaction."""
    accounts: List[Account] = field(default_factory=list)
    credits: List[Tuple[str, int, CarbonCredit]] = field(default_factory=list)   # (owner, slot, record)
    trades: List[Tuple[str, int, CarbonTrade]] = field(default_factory=list)
    grants: List[Tuple[Role, str]] = field(default_factory=list)
    revokes: List[Tuple[Role, str]] = field(default_factory=list)
    settings: Dict[str, str] = field(default_factory=dict)
    events: List[LedgerEvent] = field(default_factory=list)


class StorageBackend(ABC):
    """Abstract base for all persistent storage implementations."""

    @abstractmethod
    def commit(self, changes: Changeset) -> None:
        """Apply all changes or none of them."""

    @abstractmethod
    def load_accounts(self) -> Dict[str, Account]:
        pass

    @abstractmethod
    def load_roles(self) -> List[Tuple[Role, str]]:
        pass

    @abstractmethod
    def load_settings(self) -> Dict[str, str]:
        pass

    @abstractmethod
    def load_events(self) -> List[LedgerEvent]:
        pass

    @abstractmethod
    def close(self) -> None:
        pass


def create_storage(uri: str) -> StorageBackend:
    if uri.startswith("sqlite://"):
        from .sqlite import SQLiteStorage
        # Extract everything after sqlite://
        raw_path = uri[len("sqlite://"):].lstrip("/")
        if not raw_path.startswith('/'):
            raw_path = '/' + raw_path

        absolute_path = Path(raw_path).resolve()
        return SQLiteStorage(absolute_path)
    else:
        raise ValueError(f"Unsupported storage URI: {uri}")


from .sqlite import SQLiteStorage

__all__ = ["Changeset", "StorageBackend", "create_storage", "SQLiteStorage"]
