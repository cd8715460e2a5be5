# tests/test_access.py
"""Tests for owner/admin access control."""

import pytest

from driverledger import AccessControl, InvalidIdentity, Registry, Unauthorized, ZERO_IDENTITY
from driverledger.registry import is_null_identity

OWNER = "0x" + "a" * 40
ADMIN = "0x" + "b" * 40
STRANGER = "0x" + "c" * 40


@pytest.fixture
def registry():
    return Registry(owner=OWNER)


class TestNullIdentity:

    @pytest.mark.parametrize("identity", [None, "", "   ", ZERO_IDENTITY, "0X" + "0" * 40, 42])
    def test_null(self, identity):
        """None, blank, zero and non-string identities are null."""
        assert is_null_identity(identity)

    def test_not_null(self):
        assert not is_null_identity(OWNER)

    def test_owner_required(self):
        """A registry cannot be created without an owner."""
        with pytest.raises(InvalidIdentity):
            Registry()
        with pytest.raises(InvalidIdentity):
            Registry(owner=ZERO_IDENTITY)


class TestAccessControl:
    """Tests for the AccessControl value object."""

    def test_owner_is_writer(self):
        access = AccessControl(OWNER)
        assert access.is_authorized_writer(OWNER)
        assert not access.is_admin(OWNER)

    def test_grant_and_revoke(self):
        access = AccessControl(OWNER)
        assert access.grant(ADMIN) is False
        assert access.grant(ADMIN) is True
        assert access.is_authorized_writer(ADMIN)
        assert access.revoke(ADMIN) is True
        assert access.revoke(ADMIN) is False
        assert not access.is_authorized_writer(ADMIN)

    def test_require_owner(self):
        access = AccessControl(OWNER, admins=[ADMIN])
        access.require_owner(OWNER, "grant admin")
        with pytest.raises(Unauthorized) as exc_info:
            access.require_owner(ADMIN, "grant admin")
        assert exc_info.value.caller == ADMIN
        assert exc_info.value.action == "grant admin"


class TestAdminManagement:
    """Tests for grant_admin() and revoke_admin() on the registry."""

    def test_owner_grants_admin(self, registry):
        """The owner can make an identity an admin."""
        registry.grant_admin(OWNER, ADMIN)
        assert registry.is_admin(ADMIN)
        assert registry.is_authorized_writer(ADMIN)
        assert registry.admins() == [ADMIN]

    def test_admin_cannot_grant(self, registry):
        """Admins cannot manage the admin set."""
        registry.grant_admin(OWNER, ADMIN)
        with pytest.raises(Unauthorized):
            registry.grant_admin(ADMIN, STRANGER)
        with pytest.raises(Unauthorized):
            registry.revoke_admin(ADMIN, ADMIN)
        assert registry.admins() == [ADMIN]

    def test_stranger_cannot_grant(self, registry):
        """Strangers cannot grant themselves admin."""
        with pytest.raises(Unauthorized):
            registry.grant_admin(STRANGER, STRANGER)
        assert not registry.is_authorized_writer(STRANGER)

    def test_grant_null_identity(self, registry):
        """Granting a null identity fails without changing state."""
        for target in (None, "", ZERO_IDENTITY):
            with pytest.raises(InvalidIdentity):
                registry.grant_admin(OWNER, target)
        assert registry.admins() == []
        assert registry.events() == []

    def test_revoke_null_identity(self, registry):
        with pytest.raises(InvalidIdentity):
            registry.revoke_admin(OWNER, ZERO_IDENTITY)

    def test_authorization_checked_first(self, registry):
        """A non-owner granting a null identity gets Unauthorized."""
        with pytest.raises(Unauthorized):
            registry.grant_admin(STRANGER, None)

    def test_revoke_removes_write_access(self, registry):
        """A revoked admin can no longer write."""
        registry.grant_admin(OWNER, ADMIN)
        registry.revoke_admin(OWNER, ADMIN)
        with pytest.raises(Unauthorized):
            registry.add_driver(ADMIN, "Bob")

    def test_revoke_non_member(self, registry):
        """Revoking an identity that was never an admin is not an error."""
        registry.revoke_admin(OWNER, STRANGER)
        assert registry.admins() == []

    def test_owner_always_writer(self, registry):
        """Revoking the owner's identity does not remove its write access."""
        registry.grant_admin(OWNER, OWNER)
        registry.revoke_admin(OWNER, OWNER)
        assert registry.is_authorized_writer(OWNER)
        assert registry.add_driver(OWNER, "Alice") == 100000
        registry.grant_admin(OWNER, ADMIN)

    def test_remove_admin_alias(self, registry):
        registry.add_admin(OWNER, ADMIN)
        registry.remove_admin(OWNER, ADMIN)
        assert not registry.is_admin(ADMIN)

    def test_owner_is_fixed(self, registry):
        """There is no way to reassign the owner."""
        assert registry.owner == OWNER
        with pytest.raises(AttributeError):
            registry.owner = ADMIN
