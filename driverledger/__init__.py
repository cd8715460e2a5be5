# driverledger - Tamper-evident driver, vehicle and accident registry
#
# Associates a sequential driver ID with a driver profile, one current
# vehicle and an append-only accident history. Writes are restricted to
# the owner and admins; reads are open.
#
# Core concepts:
# - Registry: The stateful service that owns all records
# - AccessControl: Fixed owner plus an owner-managed admin set
# - EventLog: Hash-chained log of every committed write
# - KeyPair: Signing key whose address is a caller identity

from .errors import (
    RegistryError,
    Unauthorized,
    InvalidIdentity,
    DriverNotFound,
    IntegrityError,
    AuthenticationError,
)
from .records import DriverProfile, VehicleRecord, AccidentRecord
from .events import Event, EventLog
from .registry import Registry, AccessControl, FIRST_DRIVER_ID, ZERO_IDENTITY
from .identity import KeyPair, KeyStore, sign_request, verify_request
from .config import RegistryConfig

__all__ = [
    # Core
    "Registry",
    "AccessControl",
    "FIRST_DRIVER_ID",
    "ZERO_IDENTITY",
    "DriverProfile",
    "VehicleRecord",
    "AccidentRecord",
    "Event",
    "EventLog",
    "RegistryConfig",
    # Errors
    "RegistryError",
    "Unauthorized",
    "InvalidIdentity",
    "DriverNotFound",
    "IntegrityError",
    "AuthenticationError",
    # Identity
    "KeyPair",
    "KeyStore",
    "sign_request",
    "verify_request",
]

__version__ = "0.1.0"
