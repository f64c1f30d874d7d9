# tests/test_cli.py
import json
from pathlib import Path
from typing import Generator

import pytest
from typer.testing import CliRunner

from carbon_ledger.cli.main import app

runner = CliRunner()

ADMIN = "0xadmin"
ISSUER = "0xissuer"
AUDITOR = "0xauditor"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    monkeypatch.delenv("CARBON_LEDGER_DB_PATH", raising=False)
    monkeypatch.delenv("CARBON_LEDGER_ID_SCHEME", raising=False)
    monkeypatch.delenv("CARBON_LEDGER_ADMIN_DELAY", raising=False)


@pytest.fixture
def temp_db(tmp_path: Path) -> Generator[Path, None, None]:
    db_path = tmp_path / "test-cli.db"
    yield db_path
    if db_path.exists():
        db_path.unlink()


def invoke(*args: str):
    return runner.invoke(app, list(args))


@pytest.fixture
def populated_db(temp_db: Path) -> Path:
    """Two traders, 200 credits issued to the first, one trade of 50."""
    db = str(temp_db)
    steps = [
        ["init", "--admin", ADMIN, "--db", db],
        ["grant", "issuer", ISSUER, "--as", ADMIN, "--db", db],
        ["grant", "auditor", AUDITOR, "--as", ADMIN, "--db", db],
        ["register", "0xt1", "Trader1 Org", "--as", ADMIN, "--db", db],
        ["register", "0xt2", "Trader2 Org", "--as", ADMIN, "--db", db],
        ["issue", "0xt1", "200", "--as", ISSUER, "--db", db],
        ["transfer", "0xt2", "50", "--as", "0xt1", "--db", db],
    ]
    for step in steps:
        result = invoke(*step)
        assert result.exit_code == 0, f"{step}: {result.stdout}"
    return temp_db


def test_accounts_no_db(temp_db: Path):
    result = invoke("accounts", "--db", str(temp_db))
    assert result.exit_code == 1
    assert "not found" in result.stdout.lower()
    assert "to get started" in result.stdout.lower()


def test_uninitialized_db(temp_db: Path):
    temp_db.touch()
    result = invoke("accounts", "--db", str(temp_db))
    assert result.exit_code == 1
    assert "not initialized" in result.stdout.lower()


def test_init_twice(temp_db: Path):
    assert invoke("init", "--admin", ADMIN, "--db", str(temp_db)).exit_code == 0
    result = invoke("init", "--admin", "0xother", "--db", str(temp_db))
    assert result.exit_code == 1
    assert "already initialized" in result.stdout.lower()


def test_accounts_with_data(populated_db: Path):
    result = invoke("accounts", "--db", str(populated_db))
    assert result.exit_code == 0
    assert "0xt1" in result.stdout
    assert "150" in result.stdout
    assert "Total supply: 200" in result.stdout


def test_check_role(populated_db: Path):
    result = invoke("check-role", "0xt1", "1", "--as", ADMIN, "--db", str(populated_db))
    assert result.exit_code == 0
    assert result.stdout.strip() == "true"

    denied = invoke("check-role", "0xt1", "1", "--as", "0xt1", "--db", str(populated_db))
    assert denied.exit_code == 1
    assert "Unauthorized" in denied.stdout


def test_audit_and_trade_records(populated_db: Path):
    audit = invoke("audit", "0xt1", "0", "--as", AUDITOR, "--db", str(populated_db))
    assert audit.exit_code == 0
    assert "200" in audit.stdout

    trade = invoke("trade", "0xt2", "0", "--as", "0xt1", "--db", str(populated_db))
    assert trade.exit_code == 0
    assert "buyer:  0xt2" in trade.stdout
    assert "amount: 50" in trade.stdout

    missing = invoke("audit", "0xt1", "7", "--as", AUDITOR, "--db", str(populated_db))
    assert missing.exit_code == 1
    assert "RecordNotFound" in missing.stdout


def test_transfer_insufficient_balance(populated_db: Path):
    result = invoke("transfer", "0xt1", "51", "--as", "0xt2", "--db", str(populated_db))
    assert result.exit_code == 1
    assert "InsufficientBalance" in result.stdout

    accounts = invoke("accounts", "--db", str(populated_db))
    assert "150" in accounts.stdout


def test_register_twice(populated_db: Path):
    result = invoke("register", "0xt1", "Again", "--as", ADMIN, "--db", str(populated_db))
    assert result.exit_code == 1
    assert "AlreadyRegistered" in result.stdout


def test_grant_unknown_role(populated_db: Path):
    result = invoke("grant", "minter", "0xt1", "--as", ADMIN, "--db", str(populated_db))
    assert result.exit_code == 1
    assert "unknown role" in result.stdout.lower()


def test_revoke_role(populated_db: Path):
    result = invoke("revoke", "trader", "0xt2", "--as", ADMIN, "--db", str(populated_db))
    assert result.exit_code == 0
    assert "Revoked" in result.stdout
    denied = invoke("transfer", "0xt1", "1", "--as", "0xt2", "--db", str(populated_db))
    assert denied.exit_code == 1


def test_verify_populated_db(populated_db: Path):
    result = invoke("verify", "--db", str(populated_db))
    assert result.exit_code == 0
    assert "valid" in result.stdout.lower()


def test_export_creates_jsonl(populated_db: Path, tmp_path: Path):
    output_file = tmp_path / "export-test.jsonl"
    result = invoke("export", "--db", str(populated_db), "--output", str(output_file))

    assert result.exit_code == 0
    assert "Exported 7 events" in result.stdout

    with open(output_file, "r", encoding="utf-8") as f:
        lines = [json.loads(line) for line in f if line.strip()]
    assert len(lines) == 7
    assert lines[0]["kind"] == "ledger_initialized"
    assert lines[-1]["kind"] == "credits_transferred"
    assert lines[-1]["payload"]["amount"] == 50


@pytest.mark.parametrize("command", [["init", "--admin", ADMIN], ["verify"], ["accounts"]])
def test_corrupt_db_file(temp_db: Path, command):
    temp_db.write_bytes(b"this is not a sqlite database, just junk bytes" * 40)
    result = invoke(*command, "--db", str(temp_db))
    assert result.exit_code == 1
    assert "failed to open database" in result.stdout.lower()
