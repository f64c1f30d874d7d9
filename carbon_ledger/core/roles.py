# carbon_ledger/core/roles.py
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional, Set, Tuple

from carbon_ledger.core.errors import Unauthorized
from carbon_ledger.core.types import Role


@dataclass(frozen=True)
class PendingAdminTransfer:
    new_admin: str
    accept_after: datetime


class RoleAuthority:
    """
    Role membership for the ledger.
    Roles are flat: the super-admin can grant or revoke any role but does not
    implicitly hold the others. Exactly one identity holds SUPER_ADMIN.

    Pure in-memory state: the ledger decides when a change is committed and
    only then calls the mutators here.
    """

    def __init__(
        self,
        super_admin: str,
        grants: Optional[Iterable[Tuple[Role, str]]] = None,
        pending: Optional[PendingAdminTransfer] = None,
    ):
        if not super_admin:
            raise ValueError("super_admin identity is required")
        self._members: Dict[Role, Set[str]] = {role: set() for role in Role}
        self._super_admin = super_admin
        self._members[Role.SUPER_ADMIN].add(super_admin)
        for role, identity in grants or ():
            if role is not Role.SUPER_ADMIN:
                self._members[role].add(identity)
        self.pending = pending

    @property
    def super_admin(self) -> str:
        return self._super_admin

    def has_role(self, identity: str, role: Role) -> bool:
        return identity in self._members[role]

    def require(self, identity: str, role: Role) -> None:
        """Authorization gate: raise Unauthorized unless identity holds role."""
        if not self.has_role(identity, role):
            raise Unauthorized(identity, role)

    @staticmethod
    def role_for_index(index: int) -> Role:
        return Role.from_index(index)

    def members(self, role: Role) -> Set[str]:
        return set(self._members[role])

    def grants(self) -> list:
        """All (role, identity) pairs except the super-admin seat."""
        return sorted(
            (role, identity)
            for role, ids in self._members.items()
            if role is not Role.SUPER_ADMIN
            for identity in ids
        )

    def grant(self, role: Role, identity: str) -> bool:
        """Returns True when membership actually changed."""
        if role is Role.SUPER_ADMIN:
            raise ValueError("SUPER_ADMIN moves only through an admin transfer")
        if identity in self._members[role]:
            return False
        self._members[role].add(identity)
        return True

    def revoke(self, role: Role, identity: str) -> bool:
        if role is Role.SUPER_ADMIN:
            raise ValueError("SUPER_ADMIN moves only through an admin transfer")
        if identity not in self._members[role]:
            return False
        self._members[role].discard(identity)
        return True

    def transfer_super_admin(self, new_admin: str) -> None:
        self._members[Role.SUPER_ADMIN] = {new_admin}
        self._super_admin = new_admin
        self.pending = None
