# carbon_ledger/core/hashing.py
import hashlib

from carbon_ledger.core.canon import canonical_json
from carbon_ledger.core.types import LedgerEvent


def event_hash(event: LedgerEvent) -> str:
    """hex(sha256(JCS(event))); the next event stores it as prev_hash."""
    return hashlib.sha256(canonical_json(event.to_dict())).hexdigest()
