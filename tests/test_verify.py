# tests/test_verify.py
import sqlite3
from dataclasses import replace
from pathlib import Path

import pytest

from carbon_ledger.core.ledger import CarbonLedger
from carbon_ledger.core.types import Role
from carbon_ledger.storage import SQLiteStorage
from carbon_ledger.verify.verifier import LedgerVerifier

ADMIN = "0xadmin"
ISSUER = "0xissuer"
ALICE = "0xalice"
BOB = "0xbob"


def build_ledger(clock, storage=None) -> CarbonLedger:
    led = CarbonLedger(admin=ADMIN, clock=clock, storage=storage)
    led.grant_role(ADMIN, Role.ISSUER, ISSUER)
    led.register_account(ADMIN, ALICE, "Alice Org")
    led.register_account(ADMIN, BOB, "Bob Org")
    led.issue_credit(ISSUER, ALICE, 200)
    led.transfer_credits(ALICE, BOB, 50)
    led.transfer_credits(BOB, ALICE, 20)
    return led


@pytest.fixture
def verifier():
    return LedgerVerifier()


def test_valid_ledger(verifier, clock):
    led = build_ledger(clock)
    result = verifier.verify(led.events(), led.accounts_snapshot())
    assert result.is_valid is True
    assert len(result.failures) == 0
    assert result.warnings == []
    assert "supply 200" in result.message


def test_empty_journal_is_invalid(verifier):
    result = verifier.verify([], {})
    assert not result
    assert result.first_failure.category == "journal"


def test_tampered_balance(verifier, clock):
    led = build_ledger(clock)
    accounts = led.accounts_snapshot()
    accounts[BOB].total_credits += 1000
    result = verifier.verify(led.events(), accounts)
    assert result.is_valid is False
    categories = {f.category for f in result.failures}
    assert "balance" in categories
    assert "conservation" in categories


def test_broken_hash_link(verifier, clock):
    chain = build_ledger(clock).events()
    chain[3] = replace(chain[3], prev_hash="deadbeef" * 8)
    result = verifier.verify_journal(chain)
    assert result.is_valid is False
    assert any("hash_chain" in f.category for f in result.failures)


def test_tampered_event_content(verifier, clock):
    led = build_ledger(clock)
    chain = led.events()
    issued = next(i for i, ev in enumerate(chain) if ev.kind == "credit_issued")
    chain[issued] = replace(chain[issued], payload={**chain[issued].payload, "amount": 999})
    result = verifier.verify(chain, led.accounts_snapshot())
    assert result.is_valid is False
    assert result.failures[0].index == issued + 1
    assert result.failures[0].category == "hash_chain"


def test_wrong_sequence(verifier, clock):
    chain = build_ledger(clock).events()
    chain[2] = replace(chain[2], sequence=99)
    result = verifier.verify_journal(chain)
    assert result.is_valid is False
    assert any("sequence" in f.category for f in result.failures)


def test_tampered_record(verifier, clock):
    led = build_ledger(clock)
    accounts = led.accounts_snapshot()
    trade = accounts[BOB].trades[0]
    accounts[BOB].trades[0] = replace(trade, amount=trade.amount + 1)
    result = verifier.verify(led.events(), accounts)
    assert not result.is_valid
    assert [f.category for f in result.failures] == ["record"]


def test_overwritten_records_are_warnings(verifier, clock):
    led = build_ledger(clock)
    # Alice's balance is 170; drain to 0 so the next issuance reuses credit key 0
    led.transfer_credits(ALICE, BOB, 170)
    led.issue_credit(ISSUER, ALICE, 5)

    result = verifier.verify(led.events(), led.accounts_snapshot())
    assert result.is_valid
    assert [w.category for w in result.warnings] == ["overwritten_record"]
    assert "!" in str(result)


def test_shared_trade_id_collision_is_reported(verifier, clock):
    led = build_ledger(clock)
    # Carol has never traded, so her first sale takes trade id 0, which is
    # already occupied in Bob's log by Alice's first sale.
    led.register_account(ADMIN, "0xcarol", "Carol Org")
    led.issue_credit(ISSUER, "0xcarol", 10)
    led.transfer_credits("0xcarol", BOB, 1)
    assert led.get_account(BOB).trades[0].seller == "0xcarol"

    result = verifier.verify(led.events(), led.accounts_snapshot())
    assert result.is_valid
    assert any("Trade slot 0 of 0xbob" in w.message for w in result.warnings)


def test_verifier_with_storage(tmp_path: Path, clock, verifier):
    db_path = tmp_path / "verify.db"
    build_ledger(clock, storage=str(db_path)).close()

    with SQLiteStorage(db_path) as storage:
        result = verifier.verify_from_storage(storage)
    assert result.is_valid, f"Verification failed: {result}"
    assert "valid" in str(result).lower()

    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE accounts SET total_credits = total_credits + 5 WHERE identity = ?", (BOB,))
    conn.commit()
    conn.close()

    with SQLiteStorage(db_path) as storage:
        tampered = verifier.verify_from_storage(storage)
    assert not tampered.is_valid
    assert any(f.category == "balance" for f in tampered.failures)


def test_verify_from_storage_reports_load_errors(tmp_path: Path, clock, verifier):
    db_path = tmp_path / "broken.db"
    build_ledger(clock, storage=str(db_path)).close()

    conn = sqlite3.connect(db_path)
    conn.execute("UPDATE events SET actor = 'mallory' WHERE sequence = 1")
    conn.commit()
    conn.close()

    with SQLiteStorage(db_path) as storage:
        result = verifier.verify_from_storage(storage)
    assert not result.is_valid
    assert result.first_failure.category == "storage"


def test_unjournaled_records_in_storage(tmp_path: Path, clock, verifier):
    db_path = tmp_path / "forged.db"
    build_ledger(clock, storage=str(db_path)).close()

    conn = sqlite3.connect(db_path)
    conn.execute(
        "INSERT INTO credits VALUES (?, ?, ?, ?, ?, ?, ?)",
        (ALICE, 777, 777, 1000000, "t", "0xmallory", 1),
    )
    conn.execute(
        "INSERT INTO trades VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (BOB, 555, 555, ALICE, BOB, 9, "t", 1),
    )
    conn.commit()
    conn.close()

    with SQLiteStorage(db_path) as storage:
        result = verifier.verify_from_storage(storage)
    assert not result.is_valid
    assert {f.category for f in result.failures} == {"record"}
    messages = [f.message for f in result.failures]
    assert any(f"Credit 777 of {ALICE}" in m for m in messages)
    assert any(f"Trade slot 555 of {BOB}" in m for m in messages)
