# tests/test_config.py
from datetime import timedelta
from pathlib import Path

import pytest

from carbon_ledger.config import LedgerConfig
from carbon_ledger.core.types import IdScheme


def test_defaults(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("HOME", str(tmp_path))
    for var in ("CARBON_LEDGER_DB_PATH", "CARBON_LEDGER_ADMIN_DELAY",
                "CARBON_LEDGER_ID_SCHEME", "CARBON_LEDGER_LOG_LEVEL"):
        monkeypatch.delenv(var, raising=False)

    config = LedgerConfig.from_env()
    assert config.db_path == (tmp_path / ".carbon-ledger" / "ledger.db").resolve()
    assert config.admin_transfer_delay == timedelta(days=3)
    assert config.id_scheme is IdScheme.BALANCE
    assert config.log_level == "WARNING"


def test_env_overrides(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("CARBON_LEDGER_DB_PATH", str(tmp_path / "env.db"))
    monkeypatch.setenv("CARBON_LEDGER_ADMIN_DELAY", "120")
    monkeypatch.setenv("CARBON_LEDGER_ID_SCHEME", "Sequential")
    monkeypatch.setenv("CARBON_LEDGER_LOG_LEVEL", "debug")

    config = LedgerConfig.from_env()
    assert config.db_path == (tmp_path / "env.db").resolve()
    assert config.admin_transfer_delay == timedelta(seconds=120)
    assert config.id_scheme is IdScheme.SEQUENTIAL
    assert config.log_level == "DEBUG"

    # explicit path wins over the environment
    assert LedgerConfig.from_env(tmp_path / "flag.db").db_path == (tmp_path / "flag.db").resolve()


def test_bad_delay(monkeypatch):
    monkeypatch.setenv("CARBON_LEDGER_ADMIN_DELAY", "soon")
    with pytest.raises(ValueError, match="CARBON_LEDGER_ADMIN_DELAY"):
        LedgerConfig.from_env()
