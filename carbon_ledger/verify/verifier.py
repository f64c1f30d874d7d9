# carbon_ledger/verify/verifier.py
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from carbon_ledger.core.types import Account, LedgerEvent
from carbon_ledger.core.hashing import event_hash
from carbon_ledger.storage import StorageBackend


@dataclass
class VerificationFailure:
    index: int
    message: str
    category: str = "general"  # e.g. "hash_chain", "sequence", "balance", "conservation", "record"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)
    warnings: List[VerificationFailure] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def fail(self, index: int, message: str, category: str) -> None:
        self.failures.append(VerificationFailure(index, message, category))
        self.is_valid = False

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            lines = ["Ledger is valid ✓"]
        else:
            lines = [f"Verification FAILED ({len(self.failures)} issues):"]
            for f in self.failures:
                lines.append(f"  • [{f.index}] {f.category}: {f.message}")
        for w in self.warnings:
            lines.append(f"  ! [{w.index}] {w.category}: {w.message}")
        return "\n".join(lines)


class LedgerVerifier:
    """
    Offline auditor for a ledger's journal and account state.
    Replays the journal to derive what every balance and record slot should
    hold, then compares against the stored accounts.
    """

    def verify_journal(self, events: List[LedgerEvent]) -> VerificationResult:
        """Sequence numbering and hash-chain linkage only."""
        result = VerificationResult(True)
        for i, ev in enumerate(events):
            if ev.sequence != i:
                result.fail(i, f"Sequence mismatch: expected {i}, got {ev.sequence}", "sequence")
            expected_prev = event_hash(events[i - 1]) if i > 0 else ""
            if ev.prev_hash != expected_prev:
                result.fail(i, "prev_hash does not match previous event hash", "hash_chain")
        return result

    def verify(self, events: List[LedgerEvent], accounts: Dict[str, Account]) -> VerificationResult:
        """Journal integrity plus reconciliation of balances and records."""
        if not events:
            return VerificationResult(False, "Empty journal: ledger was never initialized",
                                      [VerificationFailure(-1, "No events", "journal")])

        result = self.verify_journal(events)
        if not result.is_valid:
            result.message = f"Failed with {len(result.failures)} issues"
            return result

        registered: Dict[str, int] = {}
        balances: Dict[str, int] = defaultdict(int)
        issued_total = 0
        # (owner, slot) -> (event index, expected fields)
        credit_slots: Dict[Tuple[str, int], Tuple[int, dict]] = {}
        trade_slots: Dict[Tuple[str, int], Tuple[int, dict]] = {}

        for i, ev in enumerate(events):
            p = ev.payload
            if ev.kind == "account_registered":
                if p["identity"] in registered:
                    result.fail(i, f"Account {p['identity']} registered twice", "registry")
                registered[p["identity"]] = i

            elif ev.kind == "credit_issued":
                owner, slot = p["account"], p["credit_id"]
                if owner not in registered:
                    result.fail(i, f"Credit issued to unregistered account {owner}", "registry")
                balances[owner] += p["amount"]
                issued_total += p["amount"]
                prior = credit_slots.get((owner, slot))
                if prior is not None:
                    result.warnings.append(VerificationFailure(
                        i,
                        f"Credit {slot} of {owner} replaced the record issued at event "
                        f"{prior[0]} ({prior[1]['amount']} units)",
                        "overwritten_record",
                    ))
                credit_slots[(owner, slot)] = (i, {
                    "credit_id": slot, "amount": p["amount"], "issued_by": ev.actor,
                })

            elif ev.kind == "credits_transferred":
                seller, buyer, amount = p["seller"], p["buyer"], p["amount"]
                for party in (seller, buyer):
                    if party not in registered:
                        result.fail(i, f"Trade involves unregistered account {party}", "registry")
                if balances[seller] < amount:
                    result.fail(i, f"Seller {seller} spent {amount} with balance {balances[seller]}", "balance")
                balances[seller] -= amount
                balances[buyer] += amount
                expected = {"trade_id": p["trade_id"], "seller": seller, "buyer": buyer, "amount": amount}
                for owner, slot in ((seller, p["seller_slot"]), (buyer, p["buyer_slot"])):
                    prior = trade_slots.get((owner, slot))
                    if prior is not None and prior[0] != i:
                        result.warnings.append(VerificationFailure(
                            i,
                            f"Trade slot {slot} of {owner} replaced trade {prior[1]['trade_id']} "
                            f"recorded at event {prior[0]}",
                            "overwritten_record",
                        ))
                    trade_slots[(owner, slot)] = (i, expected)

        live = {identity: a for identity, a in accounts.items() if a.is_valid}
        n = len(events)

        for identity in sorted(set(registered) ^ set(live)):
            where = "journal" if identity in registered else "account state"
            result.fail(n, f"Account {identity} only present in {where}", "registry")

        for identity, account in sorted(live.items()):
            expected = balances.get(identity, 0)
            if account.total_credits != expected:
                result.fail(n, f"{identity} balance {account.total_credits}, journal implies {expected}", "balance")
            if account.total_credits < 0:
                result.fail(n, f"{identity} has negative balance {account.total_credits}", "balance")

        supply = sum(a.total_credits for a in live.values())
        if supply != issued_total:
            result.fail(n, f"Total supply {supply} differs from total issued {issued_total}", "conservation")

        for (owner, slot), (i, fields) in sorted(credit_slots.items()):
            stored = live[owner].credits.get(slot) if owner in live else None
            if stored is None or any(getattr(stored, k) != v for k, v in fields.items()):
                result.fail(i, f"Credit {slot} of {owner} does not match journal", "record")

        for (owner, slot), (i, fields) in sorted(trade_slots.items()):
            stored = live[owner].trades.get(slot) if owner in live else None
            if stored is None or any(getattr(stored, k) != v for k, v in fields.items()):
                result.fail(i, f"Trade slot {slot} of {owner} does not match journal", "record")

        for identity, account in sorted(live.items()):
            for slot in sorted(account.credits):
                if (identity, slot) not in credit_slots:
                    result.fail(n, f"Credit {slot} of {identity} has no issuance in journal", "record")
            for slot in sorted(account.trades):
                if (identity, slot) not in trade_slots:
                    result.fail(n, f"Trade slot {slot} of {identity} has no transfer in journal", "record")

        result.message = (
            f"Valid ledger: {n} events, {len(live)} accounts, supply {supply}"
            if result.is_valid else f"Failed with {len(result.failures)} issues"
        )
        return result

    def verify_from_storage(self, storage: StorageBackend) -> VerificationResult:
        """
        Load journal and accounts from persistent storage and verify them.
        Load errors (including a broken chain) are reported as a storage failure.
        """
        try:
            events = storage.load_events()
            accounts = storage.load_accounts()
        except Exception as e:
            return VerificationResult(
                False,
                f"Failed to load ledger from storage: {str(e)}",
                [VerificationFailure(-1, str(e), "storage")]
            )

        return self.verify(events, accounts)
