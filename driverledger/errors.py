# driverledger/errors.py
"""
Error taxonomy for the driver registry.

Every failure is raised synchronously to the caller and leaves the
registry unchanged.
"""

from typing import Any, Dict, Optional, Type


class RegistryError(Exception):
    """Base class for all registry errors."""

    @classmethod
    def from_message(cls, message: str) -> "RegistryError":
        """Rebuild an error reported by a remote registry."""
        error = cls.__new__(cls)
        Exception.__init__(error, message)
        return error


class Unauthorized(RegistryError):
    """Caller lacks the privilege required for the operation."""

    caller = None
    action = None

    def __init__(self, caller: Optional[str], action: str):
        self.caller = caller
        self.action = action
        super().__init__(f"{caller!r} is not authorized to {action}")


class InvalidIdentity(RegistryError):
    """A null or zero identity was supplied."""

    identity = None

    def __init__(self, identity: Any):
        self.identity = identity
        super().__init__(f"Invalid identity: {identity!r}")


class DriverNotFound(RegistryError):
    """The referenced driver ID has no profile."""

    driver_id = None

    def __init__(self, driver_id: Any):
        self.driver_id = driver_id
        super().__init__(f"Driver not found: {driver_id!r}")


class IntegrityError(RegistryError):
    """The persisted event chain does not verify."""


class AuthenticationError(RegistryError):
    """A request signature is missing or invalid."""


ERROR_TYPES: Dict[str, Type[RegistryError]] = {
    cls.__name__: cls
    for cls in (
        RegistryError,
        Unauthorized,
        InvalidIdentity,
        DriverNotFound,
        IntegrityError,
        AuthenticationError,
    )
}
