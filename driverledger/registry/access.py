# driverledger/registry/access.py
"""
Owner/admin access control.

The owner is fixed when the registry is created and can never be
transferred. Only the owner may grant or revoke admin status. The owner
and every admin may write records.
"""

from typing import Any, Iterable, List, Optional, Set

from ..errors import InvalidIdentity, Unauthorized

ZERO_IDENTITY = "0x" + "0" * 40


def is_null_identity(identity: Any) -> bool:
    """True for None, empty or zero identities."""
    if identity is None:
        return True
    if not isinstance(identity, str):
        return True
    identity = identity.strip()
    return not identity or identity.lower() == ZERO_IDENTITY


class AccessControl:
    """
    Owner and admin set.

    Not thread-safe on its own; the registry holds its lock around every
    call.
    """

    def __init__(self, owner: str, admins: Optional[Iterable[str]] = None):
        if is_null_identity(owner):
            raise InvalidIdentity(owner)
        self._owner = owner
        self._admins: Set[str] = set(admins or [])

    @property
    def owner(self) -> str:
        return self._owner

    def admins(self) -> List[str]:
        return sorted(self._admins)

    def is_admin(self, identity: Optional[str]) -> bool:
        return identity in self._admins

    def is_authorized_writer(self, identity: Optional[str]) -> bool:
        if is_null_identity(identity):
            return False
        return identity == self._owner or identity in self._admins

    def require_owner(self, caller: Optional[str], action: str) -> None:
        if is_null_identity(caller) or caller != self._owner:
            raise Unauthorized(caller, action)

    def require_writer(self, caller: Optional[str], action: str) -> None:
        if not self.is_authorized_writer(caller):
            raise Unauthorized(caller, action)

    def grant(self, target: str) -> bool:
        """Add target to the admin set. Returns whether it was already a member."""
        if is_null_identity(target):
            raise InvalidIdentity(target)
        was_member = target in self._admins
        self._admins.add(target)
        return was_member

    def revoke(self, target: str) -> bool:
        """Remove target from the admin set. Returns whether it was a member."""
        if is_null_identity(target):
            raise InvalidIdentity(target)
        was_member = target in self._admins
        self._admins.discard(target)
        return was_member
