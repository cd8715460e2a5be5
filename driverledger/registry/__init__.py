# driverledger/registry/__init__.py
"""
Driver registry.

The registry maps sequential driver IDs to a profile, one current vehicle
and an append-only accident history. The owner manages admins; the owner
and admins write records; anyone reads.

Example:
    registry = Registry("/path/to/registry", owner=owner_identity)
    driver_id = registry.add_driver(owner_identity, "Alice")
    registry.add_vehicle(owner_identity, driver_id, "Toyota", "Corolla", "REG1")
    profile, vehicle, accidents = registry.get_driver_data(driver_id)
"""

from .access import AccessControl, ZERO_IDENTITY, is_null_identity
from .registry import FIRST_DRIVER_ID, Registry

__all__ = ["Registry", "AccessControl", "FIRST_DRIVER_ID", "ZERO_IDENTITY", "is_null_identity"]
