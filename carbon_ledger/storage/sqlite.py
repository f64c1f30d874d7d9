# carbon_ledger/storage/sqlite.py
import json
import logging
import os
import sqlite3
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from carbon_ledger.core.types import Account, CarbonCredit, CarbonTrade, LedgerEvent, Role
from carbon_ledger.core.canon import canonical_json_str
from carbon_ledger.core.hashing import event_hash
from . import Changeset, StorageBackend

logger = logging.getLogger(__name__)

DB_PATH_ENV = "CARBON_LEDGER_DB_PATH"


class SQLiteStorage(StorageBackend):
    """SQLite persistent storage for ledger accounts, records, roles and journal."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            env_path = os.environ.get(DB_PATH_ENV)
            db_path = env_path if env_path else Path.cwd() / "carbon-ledger.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = self.db_path.resolve()

        self._conn: Optional[sqlite3.Connection] = None
        self._connect()

    def _connect(self):
        # isolation_level=None: transactions are opened explicitly in commit()
        self._conn = sqlite3.connect(str(self.db_path), isolation_level=None)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._create_schema()

    def _create_schema(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS accounts (
                identity            TEXT    PRIMARY KEY,
                organization_name   TEXT    NOT NULL,
                total_credits       INTEGER NOT NULL,
                trade_count         INTEGER NOT NULL,
                is_valid            INTEGER NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS credits (
                owner       TEXT    NOT NULL,
                slot        INTEGER NOT NULL,
                credit_id   INTEGER NOT NULL,
                amount      INTEGER NOT NULL,
                issued_date TEXT    NOT NULL,
                issued_by   TEXT    NOT NULL,
                is_valid    INTEGER NOT NULL,
                PRIMARY KEY (owner, slot)
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS trades (
                owner       TEXT    NOT NULL,
                slot        INTEGER NOT NULL,
                trade_id    INTEGER NOT NULL,
                seller      TEXT    NOT NULL,
                buyer       TEXT    NOT NULL,
                amount      INTEGER NOT NULL,
                trade_date  TEXT    NOT NULL,
                is_valid    INTEGER NOT NULL,
                PRIMARY KEY (owner, slot)
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS roles (
                role        TEXT    NOT NULL,
                identity    TEXT    NOT NULL,
                PRIMARY KEY (role, identity)
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key     TEXT    PRIMARY KEY,
                value   TEXT    NOT NULL
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS events (
                sequence        INTEGER PRIMARY KEY,
                timestamp       TEXT    NOT NULL,
                kind            TEXT    NOT NULL,
                actor           TEXT    NOT NULL,
                payload_json    TEXT    NOT NULL,
                prev_hash       TEXT    NOT NULL,
                event_hash      TEXT    NOT NULL
            )
        """)
        self.conn.execute("CREATE INDEX IF NOT EXISTS idx_events_actor ON events(actor)")

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            raise RuntimeError("Storage connection is closed")
        return self._conn

    def commit(self, changes: Changeset) -> None:
        conn = self.conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            for account in changes.accounts:
                h = account.header()
                conn.execute("""
                    INSERT OR REPLACE INTO accounts
                    (identity, organization_name, total_credits, trade_count, is_valid)
                    VALUES (?, ?, ?, ?, ?)
                """, (h["identity"], h["organization_name"], h["total_credits"],
                      h["trade_count"], int(h["is_valid"])))

            # REPLACE: a record landing on an occupied slot overwrites it
            for owner, slot, c in changes.credits:
                conn.execute("""
                    INSERT OR REPLACE INTO credits
                    (owner, slot, credit_id, amount, issued_date, issued_by, is_valid)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (owner, slot, c.credit_id, c.amount, c.issued_date, c.issued_by, int(c.is_valid)))

            for owner, slot, t in changes.trades:
                conn.execute("""
                    INSERT OR REPLACE INTO trades
                    (owner, slot, trade_id, seller, buyer, amount, trade_date, is_valid)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (owner, slot, t.trade_id, t.seller, t.buyer, t.amount, t.trade_date, int(t.is_valid)))

            for role, identity in changes.grants:
                conn.execute("INSERT OR IGNORE INTO roles (role, identity) VALUES (?, ?)",
                             (role.value, identity))
            for role, identity in changes.revokes:
                conn.execute("DELETE FROM roles WHERE role = ? AND identity = ?",
                             (role.value, identity))

            for key, value in changes.settings.items():
                conn.execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)",
                             (key, value))

            for ev in changes.events:
                conn.execute("""
                    INSERT INTO events
                    (sequence, timestamp, kind, actor, payload_json, prev_hash, event_hash)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (ev.sequence, ev.timestamp, ev.kind, ev.actor,
                      canonical_json_str(ev.payload), ev.prev_hash, event_hash(ev)))
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    def load_accounts(self) -> Dict[str, Account]:
        accounts: Dict[str, Account] = {}
        for identity, name, total, trade_count, valid in self.conn.execute("""
            SELECT identity, organization_name, total_credits, trade_count, is_valid
            FROM accounts ORDER BY identity
        """):
            accounts[identity] = Account(
                identity=identity,
                organization_name=name,
                total_credits=total,
                trade_count=trade_count,
                is_valid=bool(valid),
            )

        for owner, slot, cid, amount, issued, by, valid in self.conn.execute("""
            SELECT owner, slot, credit_id, amount, issued_date, issued_by, is_valid
            FROM credits ORDER BY owner, slot ASC
        """):
            account = accounts.get(owner)
            if account is None:
                logger.warning("Skipping credit %d for unknown account %s", slot, owner)
                continue
            account.credits[slot] = CarbonCredit(cid, amount, issued, by, bool(valid))

        for owner, slot, tid, seller, buyer, amount, date, valid in self.conn.execute("""
            SELECT owner, slot, trade_id, seller, buyer, amount, trade_date, is_valid
            FROM trades ORDER BY owner, slot ASC
        """):
            account = accounts.get(owner)
            if account is None:
                logger.warning("Skipping trade %d for unknown account %s", slot, owner)
                continue
            account.trades[slot] = CarbonTrade(tid, seller, buyer, amount, date, bool(valid))

        return accounts

    def load_roles(self) -> List[Tuple[Role, str]]:
        cursor = self.conn.execute("SELECT role, identity FROM roles ORDER BY role, identity")
        return [(Role(role), identity) for role, identity in cursor]

    def load_settings(self) -> Dict[str, str]:
        cursor = self.conn.execute("SELECT key, value FROM settings")
        return {key: value for key, value in cursor}

    def load_events(self) -> List[LedgerEvent]:
        cursor = self.conn.execute("""
            SELECT sequence, timestamp, kind, actor, payload_json, prev_hash
            FROM events ORDER BY sequence ASC
        """)
        loaded = []
        for seq, ts, kind, actor, pjson, prev in cursor:
            loaded.append(LedgerEvent(
                sequence=seq,
                timestamp=ts,
                kind=kind,
                actor=actor,
                payload=json.loads(pjson),
                prev_hash=prev,
            ))
        for i in range(1, len(loaded)):
            if loaded[i].prev_hash != event_hash(loaded[i - 1]):
                raise ValueError(f"Chain broken at sequence {loaded[i].sequence}")
        return loaded

    def get_event_count(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
