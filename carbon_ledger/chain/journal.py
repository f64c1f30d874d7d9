# carbon_ledger/chain/journal.py
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from carbon_ledger.core.types import LedgerEvent
from carbon_ledger.core.hashing import event_hash


@dataclass
class EventJournal:
    """
    Ordered, hash-chained record of every committed ledger mutation.
    Events are prepared with `next_event` and only appended once the
    mutation they describe has been persisted.
    """
    events: List[LedgerEvent] = field(default_factory=list)

    @property
    def length(self) -> int:
        return len(self.events)

    def next_event(
        self,
        kind: str,
        actor: str,
        timestamp: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> LedgerEvent:
        """Build (but do not append) the event that would follow the current tail."""
        return LedgerEvent(
            sequence=self.length,
            timestamp=timestamp,
            kind=kind,
            actor=actor,
            payload=dict(payload or {}),
            prev_hash=self.get_last_hash() or "",
        )

    def append(self, event: LedgerEvent) -> LedgerEvent:
        if event.sequence != self.length:
            raise ValueError(f"Expected sequence {self.length}, got {event.sequence}")
        if event.prev_hash != (self.get_last_hash() or ""):
            raise ValueError(f"prev_hash mismatch at sequence {event.sequence}")
        self.events.append(event)
        return event

    def get_chain(self) -> List[LedgerEvent]:
        """Returns copy of the full chain"""
        return self.events.copy()

    def get_last_hash(self) -> Optional[str]:
        if not self.events:
            return None
        return event_hash(self.events[-1])
