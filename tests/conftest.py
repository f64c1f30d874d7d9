# tests/conftest.py
from datetime import datetime, timedelta, timezone

import pytest

from carbon_ledger.core.ledger import CarbonLedger
from carbon_ledger.core.types import Role

ADMIN = "0xadmin"
ISSUER = "0xissuer"
AUDITOR = "0xauditor"


class FakeClock:
    """Deterministic aware-UTC clock; advance() moves it forward."""

    def __init__(self, start: datetime = datetime(2026, 1, 31, 14, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock: FakeClock) -> CarbonLedger:
    """In-memory ledger with an issuer and an auditor already granted."""
    led = CarbonLedger(admin=ADMIN, clock=clock)
    led.grant_role(ADMIN, Role.ISSUER, ISSUER)
    led.grant_role(ADMIN, Role.AUDITOR, AUDITOR)
    return led
