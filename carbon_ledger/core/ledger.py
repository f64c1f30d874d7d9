# carbon_ledger/core/ledger.py
"""
Permissioned carbon credit ledger.

Every mutating operation runs the same pipeline under one lock:
authorization gate -> existence gate -> changes built on draft copies ->
one storage transaction -> drafts published to memory and journal.
If anything raises before publication, neither memory nor storage changes.
"""

import logging
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

from carbon_ledger.chain.journal import EventJournal
from carbon_ledger.core.errors import (
    AdminTransferError,
    AlreadyRegistered,
    InsufficientBalance,
    InvalidAmount,
    RecordNotFound,
    Unauthorized,
    UnknownAccount,
)
from carbon_ledger.core.roles import PendingAdminTransfer, RoleAuthority
from carbon_ledger.core.types import (
    Account,
    CarbonCredit,
    CarbonTrade,
    IdScheme,
    LedgerEvent,
    Role,
)
from carbon_ledger.storage import Changeset, SQLiteStorage, StorageBackend, create_storage

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_TRANSFER_DELAY = timedelta(days=3)

# settings table keys
SUPER_ADMIN_KEY = "super_admin"
DELAY_KEY = "admin_transfer_delay"
ID_SCHEME_KEY = "id_scheme"
PENDING_ADMIN_KEY = "pending_admin"
PENDING_AFTER_KEY = "pending_admin_after"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso_millis(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def _resolve_storage(storage) -> Optional[StorageBackend]:
    if storage is None or isinstance(storage, StorageBackend):
        return storage
    if isinstance(storage, Path):
        return SQLiteStorage(storage)
    stripped = str(storage).strip()
    if not stripped:
        return None
    if "://" in stripped:
        return create_storage(stripped)
    # plain file path
    return SQLiteStorage(Path(stripped))


def _check_identity(identity: str) -> None:
    if not isinstance(identity, str) or not identity.strip():
        raise ValueError(f"Invalid identity: {identity!r}")


def _check_amount(amount) -> None:
    if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
        raise InvalidAmount(amount)


class CarbonLedger:
    """
    Accounts, credit logs and trade logs behind a role-gated operation surface.

    The caller identity is passed explicitly to every operation; the ledger
    trusts it. Timestamps come from `clock` (aware datetimes).

    Usage:
        ledger = CarbonLedger(admin="0xadmin")
        ledger.grant_role("0xadmin", Role.ISSUER, "0xissuer")
        ledger.register_account("0xadmin", "0xacme", "Acme Corp")
        ledger.issue_credit("0xissuer", "0xacme", 100)
    """

    def __init__(
        self,
        admin: Optional[str] = None,
        admin_transfer_delay: Union[timedelta, int, float] = DEFAULT_ADMIN_TRANSFER_DELAY,
        storage: Optional[Union[StorageBackend, str, Path]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        id_scheme: Union[IdScheme, str] = IdScheme.BALANCE,
    ):
        self._lock = threading.RLock()
        self._clock = clock or utc_now
        self.storage = _resolve_storage(storage)
        self._accounts: Dict[str, Account] = {}
        self.journal = EventJournal()
        try:
            self._load_state(admin, admin_transfer_delay, id_scheme)
        except Exception:
            # close storage opened here from a path or URI; callers own theirs
            if self.storage is not None and self.storage is not storage:
                self.storage.close()
            raise

    def _load_state(self, admin, admin_transfer_delay, id_scheme) -> None:
        settings: Dict[str, str] = {}
        grants = []
        if self.storage:
            self._accounts = self.storage.load_accounts()
            grants = self.storage.load_roles()
            settings = self.storage.load_settings()
            self.journal = EventJournal(self.storage.load_events())
            logger.info(
                "Loaded %d accounts and %d journal events from storage",
                len(self._accounts), self.journal.length,
            )

        stored_admin = settings.get(SUPER_ADMIN_KEY)
        if stored_admin:
            if admin is not None and admin != stored_admin:
                raise ValueError(
                    f"Storage already initialized with super-admin {stored_admin}, not {admin}"
                )
            self.admin_transfer_delay = timedelta(seconds=int(settings.get(DELAY_KEY, "0")))
            self.id_scheme = IdScheme(settings.get(ID_SCHEME_KEY, IdScheme.BALANCE.value))
            pending = None
            if settings.get(PENDING_ADMIN_KEY):
                pending = PendingAdminTransfer(
                    new_admin=settings[PENDING_ADMIN_KEY],
                    accept_after=datetime.fromisoformat(settings[PENDING_AFTER_KEY]),
                )
            self.roles = RoleAuthority(stored_admin, grants, pending)
        else:
            if not admin:
                raise ValueError("admin identity is required to initialize a new ledger")
            _check_identity(admin)
            if not isinstance(admin_transfer_delay, timedelta):
                admin_transfer_delay = timedelta(seconds=admin_transfer_delay)
            if admin_transfer_delay < timedelta(0):
                raise ValueError("admin_transfer_delay must not be negative")
            if admin_transfer_delay % timedelta(seconds=1):
                raise ValueError("admin_transfer_delay must be a whole number of seconds")
            self.admin_transfer_delay = admin_transfer_delay
            self.id_scheme = IdScheme(id_scheme)
            self.roles = RoleAuthority(admin, grants)
            self._bootstrap(admin)

    @property
    def super_admin(self) -> str:
        return self.roles.super_admin

    # ── Role Authority ─────────────────────────────────────────

    def has_role(self, identity: str, role: Union[Role, str]) -> bool:
        return self.roles.has_role(identity, Role(role))

    def check_role(self, caller: str, identity: str, role_index: int) -> bool:
        """Super-admin only: does `identity` hold the role at `role_index`?"""
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            role = self.roles.role_for_index(role_index)
            return self.roles.has_role(identity, role)

    def grant_role(self, caller: str, role: Union[Role, str], identity: str) -> bool:
        """Returns False (and journals nothing) when the identity already holds the role."""
        role = Role(role)
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            _check_identity(identity)
            if role is Role.SUPER_ADMIN:
                raise AdminTransferError("SUPER_ADMIN is handed over with begin_admin_transfer")
            if self.roles.has_role(identity, role):
                return False
            changes = Changeset(grants=[(role, identity)])
            self._commit(changes, self._event("role_granted", caller, {
                "role": role.value, "identity": identity,
            }))
            logger.info("Granted %s to %s", role.value, identity)
            return True

    def revoke_role(self, caller: str, role: Union[Role, str], identity: str) -> bool:
        role = Role(role)
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            if role is Role.SUPER_ADMIN:
                raise AdminTransferError("SUPER_ADMIN is handed over with begin_admin_transfer")
            if not self.roles.has_role(identity, role):
                return False
            changes = Changeset(revokes=[(role, identity)])
            self._commit(changes, self._event("role_revoked", caller, {
                "role": role.value, "identity": identity,
            }))
            logger.info("Revoked %s from %s", role.value, identity)
            return True

    def begin_admin_transfer(self, caller: str, new_admin: str) -> PendingAdminTransfer:
        """Schedule the super-admin handoff; `new_admin` may accept once the delay has passed."""
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            _check_identity(new_admin)
            now = self._clock()
            pending = PendingAdminTransfer(new_admin, now + self.admin_transfer_delay)
            changes = Changeset(settings={
                PENDING_ADMIN_KEY: new_admin,
                PENDING_AFTER_KEY: pending.accept_after.isoformat(),
            })
            self._commit(changes, self._event("admin_transfer_started", caller, {
                "new_admin": new_admin,
                "accept_after": iso_millis(pending.accept_after),
            }, now))
            self.roles.pending = pending
            logger.info("Super-admin transfer to %s scheduled after %s", new_admin, pending.accept_after)
            return pending

    def accept_admin_transfer(self, caller: str) -> None:
        with self._lock:
            pending = self.roles.pending
            if pending is None:
                raise AdminTransferError("No super-admin transfer is pending")
            if caller != pending.new_admin:
                raise Unauthorized(caller, Role.SUPER_ADMIN)
            now = self._clock()
            if now < pending.accept_after:
                raise AdminTransferError(
                    f"Super-admin transfer cannot be accepted before {iso_millis(pending.accept_after)}"
                )
            previous = self.roles.super_admin
            changes = Changeset(settings={
                SUPER_ADMIN_KEY: caller,
                PENDING_ADMIN_KEY: "",
                PENDING_AFTER_KEY: "",
            })
            self._commit(changes, self._event("admin_transfer_accepted", caller, {
                "previous_admin": previous, "new_admin": caller,
            }, now))
            self.roles.transfer_super_admin(caller)
            logger.info("Super-admin transferred from %s to %s", previous, caller)

    def cancel_admin_transfer(self, caller: str) -> bool:
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            pending = self.roles.pending
            if pending is None:
                return False
            changes = Changeset(settings={PENDING_ADMIN_KEY: "", PENDING_AFTER_KEY: ""})
            self._commit(changes, self._event("admin_transfer_cancelled", caller, {
                "new_admin": pending.new_admin,
            }))
            self.roles.pending = None
            return True

    # ── Account Registry ───────────────────────────────────────

    def register_account(self, caller: str, identity: str, organization_name: str) -> Account:
        """Super-admin only. Creates a zeroed account and grants TRADER to it."""
        with self._lock:
            self.roles.require(caller, Role.SUPER_ADMIN)
            _check_identity(identity)
            existing = self._accounts.get(identity)
            if existing is not None and existing.is_valid:
                raise AlreadyRegistered(identity)

            account = Account(identity=identity, organization_name=organization_name, is_valid=True)
            changes = Changeset(accounts=[account])
            if not self.roles.has_role(identity, Role.TRADER):
                changes.grants.append((Role.TRADER, identity))
            self._commit(changes, self._event("account_registered", caller, {
                "identity": identity,
                "organization_name": organization_name,
            }))
            logger.info("Registered account %s (%s)", identity, organization_name)
            return account.copy()

    def account_exists(self, identity: str) -> bool:
        with self._lock:
            account = self._accounts.get(identity)
            return account is not None and account.is_valid

    def get_account(self, identity: str) -> Account:
        """Snapshot copy; mutating it does not touch the ledger."""
        with self._lock:
            return self._registered(identity).copy()

    def balance_of(self, identity: str) -> int:
        with self._lock:
            return self._registered(identity).total_credits

    def total_supply(self) -> int:
        with self._lock:
            return sum(a.total_credits for a in self._accounts.values() if a.is_valid)

    def identities(self) -> List[str]:
        with self._lock:
            return sorted(i for i, a in self._accounts.items() if a.is_valid)

    def accounts_snapshot(self) -> Dict[str, Account]:
        with self._lock:
            return {i: a.copy() for i, a in self._accounts.items()}

    # ── Credit Store ───────────────────────────────────────────

    def issue_credit(self, caller: str, identity: str, amount: int) -> CarbonCredit:
        """
        ISSUER only. Appends a credit record to `identity` and raises its balance.

        Under IdScheme.BALANCE the record key is the balance before issuance,
        so a later issuance can land on an occupied key and replace it.
        """
        with self._lock:
            self.roles.require(caller, Role.ISSUER)
            _check_amount(amount)
            account = self._registered(identity).copy()

            credit_id = self._next_credit_id(account)
            previous = account.credits.get(credit_id)
            if previous is not None:
                logger.warning(
                    "Credit %d of %s overwritten (previous amount %d)",
                    credit_id, identity, previous.amount,
                )

            now = self._clock()
            credit = CarbonCredit(
                credit_id=credit_id,
                amount=amount,
                issued_date=iso_millis(now),
                issued_by=caller,
            )
            account.credits[credit_id] = credit
            account.total_credits += amount

            changes = Changeset(accounts=[account], credits=[(identity, credit_id, credit)])
            self._commit(changes, self._event("credit_issued", caller, {
                "account": identity,
                "credit_id": credit_id,
                "amount": amount,
            }, now))
            logger.info("Issued %d credits to %s (credit %d)", amount, identity, credit_id)
            return credit

    def audit_credit(self, caller: str, identity: str, credit_id: int) -> CarbonCredit:
        """AUDITOR only. Read-only lookup of one credit record."""
        with self._lock:
            self.roles.require(caller, Role.AUDITOR)
            account = self._accounts.get(identity)
            credit = account.credits.get(credit_id) if account else None
            if credit is None or not credit.is_valid:
                raise RecordNotFound(identity, "credit", credit_id)
            return credit

    def _next_credit_id(self, account: Account) -> int:
        if self.id_scheme is IdScheme.SEQUENTIAL:
            return len(account.credits)
        return account.total_credits

    # ── Trade Store ────────────────────────────────────────────

    def transfer_credits(self, caller: str, buyer: str, amount: int) -> CarbonTrade:
        """
        TRADER only. Moves `amount` from the caller (seller) to `buyer` and
        records the trade in both accounts' logs.

        The trade id is the seller's trade counter; both counters advance.
        """
        with self._lock:
            self.roles.require(caller, Role.TRADER)
            _check_amount(amount)
            balance = self._registered(caller).total_credits
            self._registered(buyer)
            if balance < amount:
                raise InsufficientBalance(caller, balance, amount)

            drafts: Dict[str, Account] = {}

            def draft(identity: str) -> Account:
                if identity not in drafts:
                    drafts[identity] = self._accounts[identity].copy()
                return drafts[identity]

            now = self._clock()
            trade = CarbonTrade(
                trade_id=draft(caller).trade_count,
                seller=caller,
                buyer=buyer,
                amount=amount,
                trade_date=iso_millis(now),
            )
            draft(caller).total_credits -= amount
            draft(buyer).total_credits += amount

            changes = Changeset()
            slots = {}
            for side, identity in (("seller", caller), ("buyer", buyer)):
                account = draft(identity)
                if self.id_scheme is IdScheme.SEQUENTIAL:
                    slot = account.trade_count
                else:
                    slot = trade.trade_id
                previous = account.trades.get(slot)
                if previous is not None and previous is not trade:
                    logger.warning(
                        "Trade %d of %s overwritten (previous trade %d, %d units)",
                        slot, identity, previous.trade_id, previous.amount,
                    )
                account.trades[slot] = trade
                account.trade_count += 1
                changes.trades.append((identity, slot, trade))
                slots[f"{side}_slot"] = slot
            changes.accounts = list(drafts.values())

            self._commit(changes, self._event("credits_transferred", caller, {
                "trade_id": trade.trade_id,
                "seller": caller,
                "buyer": buyer,
                "amount": amount,
                **slots,
            }, now))
            logger.info("Trade %d: %s -> %s, %d credits", trade.trade_id, caller, buyer, amount)
            return trade

    def get_trade_record(self, caller: str, identity: str, trade_id: int) -> CarbonTrade:
        """TRADER only. Read-only lookup of one trade record in `identity`'s log."""
        with self._lock:
            self.roles.require(caller, Role.TRADER)
            account = self._accounts.get(identity)
            trade = account.trades.get(trade_id) if account else None
            if trade is None or not trade.is_valid:
                raise RecordNotFound(identity, "trade", trade_id)
            return trade

    # ── Journal / lifecycle ────────────────────────────────────

    def events(self) -> List[LedgerEvent]:
        return self.journal.get_chain()

    def close(self) -> None:
        if self.storage:
            self.storage.close()
            self.storage = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ── Internal ───────────────────────────────────────────────

    def _registered(self, identity: str) -> Account:
        account = self._accounts.get(identity)
        if account is None or not account.is_valid:
            raise UnknownAccount(identity)
        return account

    def _event(
        self,
        kind: str,
        actor: str,
        payload: Dict[str, Any],
        moment: Optional[datetime] = None,
    ) -> LedgerEvent:
        return self.journal.next_event(
            kind=kind,
            actor=actor,
            timestamp=iso_millis(moment or self._clock()),
            payload=payload,
        )

    def _commit(self, changes: Changeset, event: LedgerEvent) -> None:
        """Persist, then publish. Memory is untouched if the storage commit raises."""
        changes.events.append(event)
        if self.storage:
            self.storage.commit(changes)
        for account in changes.accounts:
            self._accounts[account.identity] = account
        for role, identity in changes.grants:
            self.roles.grant(role, identity)
        for role, identity in changes.revokes:
            self.roles.revoke(role, identity)
        self.journal.append(event)

    def _bootstrap(self, admin: str) -> None:
        changes = Changeset(settings={
            SUPER_ADMIN_KEY: admin,
            DELAY_KEY: str(int(self.admin_transfer_delay.total_seconds())),
            ID_SCHEME_KEY: self.id_scheme.value,
        })
        self._commit(changes, self._event("ledger_initialized", admin, {
            "super_admin": admin,
            "admin_transfer_delay": int(self.admin_transfer_delay.total_seconds()),
            "id_scheme": self.id_scheme.value,
        }))
        logger.info("Initialized ledger with super-admin %s", admin)
