# carbon_ledger/config.py
"""
Environment-driven settings shared by the CLI and embedding applications.

    CARBON_LEDGER_DB_PATH       SQLite database file
    CARBON_LEDGER_ADMIN_DELAY   super-admin transfer delay, seconds
    CARBON_LEDGER_ID_SCHEME     "balance" or "sequential"
    CARBON_LEDGER_LOG_LEVEL     logging level name
"""

import os
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Optional

from carbon_ledger.core.ledger import DEFAULT_ADMIN_TRANSFER_DELAY
from carbon_ledger.core.types import IdScheme
from carbon_ledger.storage.sqlite import DB_PATH_ENV

ADMIN_DELAY_ENV = "CARBON_LEDGER_ADMIN_DELAY"
ID_SCHEME_ENV = "CARBON_LEDGER_ID_SCHEME"
LOG_LEVEL_ENV = "CARBON_LEDGER_LOG_LEVEL"


def default_db_path() -> Path:
    return Path.home() / ".carbon-ledger" / "ledger.db"


@dataclass(frozen=True)
class LedgerConfig:
    db_path: Path
    admin_transfer_delay: timedelta = DEFAULT_ADMIN_TRANSFER_DELAY
    id_scheme: IdScheme = IdScheme.BALANCE
    log_level: str = "WARNING"

    @classmethod
    def from_env(cls, db_path: Optional[Path] = None) -> "LedgerConfig":
        """Resolve settings: explicit argument, then environment, then defaults."""
        if db_path is None:
            env_path = os.environ.get(DB_PATH_ENV)
            db_path = Path(env_path) if env_path else default_db_path()

        delay = DEFAULT_ADMIN_TRANSFER_DELAY
        raw_delay = os.environ.get(ADMIN_DELAY_ENV)
        if raw_delay:
            try:
                delay = timedelta(seconds=int(raw_delay))
            except ValueError:
                raise ValueError(f"{ADMIN_DELAY_ENV} must be an integer number of seconds, got {raw_delay!r}")

        scheme = IdScheme(os.environ.get(ID_SCHEME_ENV, IdScheme.BALANCE.value).strip().lower())

        return cls(
            db_path=Path(db_path).expanduser().resolve(),
            admin_transfer_delay=delay,
            id_scheme=scheme,
            log_level=os.environ.get(LOG_LEVEL_ENV, "WARNING").upper(),
        )
