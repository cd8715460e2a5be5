# driverledger/registry/registry.py
"""
The driver registry.

Associates a sequential driver ID with a driver profile, one current
vehicle record and an append-only accident history. Writes are gated by
owner/admin access control; reads are open to everyone.

Every write runs under a single lock spanning validation, mutation,
persistence and event delivery, so a failed write leaves no trace and
readers always see a consistent snapshot. On-disk registries also hold
an inter-process lock on the directory for the length of each write and
reload registry.json whenever another process has replaced it, so several
processes can share one directory without reusing driver IDs.
"""

import json
import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import replace
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

from filelock import FileLock

from ..errors import DriverNotFound, IntegrityError, RegistryError, Unauthorized
from ..events import (
    ACCIDENT_ADDED,
    ADMIN_GRANTED,
    ADMIN_REVOKED,
    DRIVER_ADDED,
    VEHICLE_ADDED,
    Event,
    EventLog,
)
from ..records import AccidentRecord, DriverProfile, VehicleRecord
from .access import AccessControl

logger = logging.getLogger(__name__)

FIRST_DRIVER_ID = 100000
DEFAULT_LOCK_TIMEOUT = 10.0

EventCallback = Callable[[Event], None]

State = Tuple[
    AccessControl,
    int,
    Dict[int, DriverProfile],
    Dict[int, VehicleRecord],
    Dict[int, List[AccidentRecord]],
]


def _replay(owner: str, events: EventLog) -> State:
    """
    Rebuild registry state by re-applying every event in order.

    Each event is re-authorized against the admin set in force when it was
    recorded, so a swapped owner or an out-of-order event is rejected.

    Raises:
        IntegrityError: an event cannot have been produced by a valid write
    """
    try:
        access = AccessControl(owner)
    except RegistryError as e:
        raise IntegrityError(f"Invalid stored owner: {e}") from e
    next_id = FIRST_DRIVER_ID
    drivers: Dict[int, DriverProfile] = {}
    vehicles: Dict[int, VehicleRecord] = {}
    accidents: Dict[int, List[AccidentRecord]] = {}

    for event in events.list():
        payload = event.payload
        try:
            if event.name == ADMIN_GRANTED:
                access.require_owner(event.caller, "grant admin")
                access.grant(payload["identity"])
                continue
            if event.name == ADMIN_REVOKED:
                access.require_owner(event.caller, "revoke admin")
                access.revoke(payload["identity"])
                continue

            access.require_writer(event.caller, event.name)
            driver_id = payload["driver_id"]
            if event.name == DRIVER_ADDED:
                if driver_id != next_id:
                    raise ValueError(f"expected driver {next_id}, got {driver_id}")
                profile = DriverProfile.from_dict(event.record)
                if not profile.exists or profile.name != payload["name"]:
                    raise ValueError("profile does not match event")
                drivers[driver_id] = profile
                next_id += 1
            elif driver_id not in drivers:
                raise DriverNotFound(driver_id)
            elif event.name == VEHICLE_ADDED:
                vehicle = VehicleRecord.from_dict(event.record)
                if not vehicle.exists or vehicle.registration_number != payload["registration_number"]:
                    raise ValueError("vehicle does not match event")
                vehicles[driver_id] = vehicle
            elif event.name == ACCIDENT_ADDED:
                accident = AccidentRecord.from_dict(event.record)
                if not accident.exists or accident.location != payload["location"]:
                    raise ValueError("accident does not match event")
                accidents.setdefault(driver_id, []).append(accident)
        except (RegistryError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise IntegrityError(
                f"Event {event.sequence} ({event.name}) cannot be replayed: {e}"
            ) from e

    return access, next_id, drivers, vehicles, accidents


class Registry:
    """
    Tamper-evident driver registry.

    Without a registry_dir the registry lives in memory only. With one,
    state is kept in a single JSON file:

    Structure:
        registry_dir/
            registry.json     # owner, admins, records, counter, event chain
            registry.lock     # inter-process write lock
    """

    def __init__(
        self,
        registry_dir: Path | str = None,
        owner: str = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT,
    ):
        """
        Open or create a registry.

        Args:
            registry_dir: Directory holding registry.json (None for in-memory)
            owner: Owner identity. Required when creating; when opening an
                existing registry it must match the stored owner if given.
            lock_timeout: Seconds to wait for another process holding the
                directory lock before raising filelock.Timeout
        """
        self.registry_dir = Path(registry_dir) if registry_dir else None
        self._lock = threading.RLock()
        self._file_lock: Optional[FileLock] = None
        self._stamp_seen = None
        self._subscribers: List[EventCallback] = []
        self._drivers: Dict[int, DriverProfile] = {}
        self._vehicles: Dict[int, VehicleRecord] = {}
        self._accidents: Dict[int, List[AccidentRecord]] = {}
        self._next_id = FIRST_DRIVER_ID
        self._events = EventLog()

        if self.registry_dir is None:
            self._access = AccessControl(owner)
            logger.info(f"Created in-memory registry owned by {owner}")
            return

        self.registry_dir.mkdir(parents=True, exist_ok=True)
        self._file_lock = FileLock(str(self.registry_dir / "registry.lock"), timeout=lock_timeout)
        with self._file_lock:
            if self._index_path().exists():
                self._load()
            else:
                self._access = AccessControl(owner)
                self._save()
                logger.info(f"Created registry owned by {owner} in {self.registry_dir}")

        if owner is not None and owner != self._access.owner:
            raise ValueError(
                f"Registry at {self.registry_dir} is owned by {self._access.owner}, not {owner}"
            )

    # Persistence

    def _index_path(self) -> Path:
        return self.registry_dir / "registry.json"

    def _stamp(self) -> Optional[Tuple[int, int, int]]:
        """Identify the current registry.json; saves replace the file, so this changes."""
        try:
            st = self._index_path().stat()
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    def _load(self):
        """
        Load registry state from disk.

        The event chain must verify, and the stored owner, admins, counter and
        records must equal what replaying the chain produces.
        """
        index_path = self._index_path()
        stamp = self._stamp()
        try:
            with open(index_path) as f:
                data = json.load(f)
            events = EventLog.from_list(data.get("events", []))
            owner = data["owner"]
            stored = (
                sorted(data.get("admins", [])),
                data["next_id"],
                {int(k): DriverProfile.from_dict(v) for k, v in data.get("drivers", {}).items()},
                {int(k): VehicleRecord.from_dict(v) for k, v in data.get("vehicles", {}).items()},
                {
                    int(k): [AccidentRecord.from_dict(a) for a in v]
                    for k, v in data.get("accidents", {}).items()
                },
            )
        except (OSError, json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
            raise IntegrityError(f"Unreadable registry state in {index_path}: {e}") from e

        try:
            verified = events.verify()
        except (TypeError, ValueError, AttributeError) as e:
            raise IntegrityError(f"Malformed event in {index_path}: {e}") from e
        if not verified:
            raise IntegrityError(f"Event chain in {index_path} does not verify")
        access, next_id, drivers, vehicles, accidents = _replay(owner, events)
        if (access.admins(), next_id, drivers, vehicles, accidents) != stored:
            raise IntegrityError(f"Stored records in {index_path} do not match the event chain")

        self._access = access
        self._next_id = next_id
        self._drivers = drivers
        self._vehicles = vehicles
        self._accidents = accidents
        self._events = events
        self._stamp_seen = stamp
        logger.debug(f"Loaded registry: {len(self._drivers)} drivers, {len(self._events)} events")

    def _save(self):
        """Atomically write registry state to disk."""
        if self.registry_dir is None:
            return
        data = {
            "version": "2.0",
            "owner": self._access.owner,
            "admins": self._access.admins(),
            "next_id": self._next_id,
            "drivers": {str(k): v.to_dict() for k, v in self._drivers.items()},
            "vehicles": {str(k): v.to_dict() for k, v in self._vehicles.items()},
            "accidents": {
                str(k): [a.to_dict() for a in v] for k, v in self._accidents.items()
            },
            "events": self._events.to_list(),
        }
        index_path = self._index_path()
        tmp_path = index_path.with_suffix(".json.tmp")
        with open(tmp_path, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, index_path)
        self._stamp_seen = self._stamp()
        logger.debug(f"Saved registry to {index_path}")

    def _refresh(self):
        """Reload if another process has replaced registry.json since we last read it."""
        if self.registry_dir is None:
            return
        if self._stamp() != self._stamp_seen:
            logger.debug(f"Registry in {self.registry_dir} changed on disk, reloading")
            self._load()

    @contextmanager
    def _reading(self):
        with self._lock:
            self._refresh()
            yield

    @contextmanager
    def _writing(self):
        """Serialize a write against other threads and, on disk, other processes."""
        with self._lock:
            if self._file_lock is None:
                yield
                return
            with self._file_lock:
                self._refresh()
                yield

    # Commit / notify

    def _commit(
        self,
        name: str,
        payload: Dict[str, Any],
        caller: str,
        undo: Callable[[], None],
        record: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """
        Seal the event for an applied mutation and persist both.

        On failure the mutation is undone via ``undo`` and the error
        propagates; subscribers only ever see committed events.
        """
        appended = False
        try:
            event = self._events.append(name, payload, caller, record)
            appended = True
            self._save()
        except Exception:
            if appended:
                self._events.pop()
            undo()
            logger.error(f"Failed to commit {name}, state rolled back")
            raise

        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.warning(f"Event subscriber error on {event.name}: {e}")
        return event

    def subscribe(self, callback: EventCallback) -> None:
        """Call ``callback`` with every event committed from now on."""
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: EventCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # Guards

    def _authorize(self, caller: Optional[str], action: str, owner_only: bool = False):
        try:
            if owner_only:
                self._access.require_owner(caller, action)
            else:
                self._access.require_writer(caller, action)
        except Unauthorized:
            logger.warning(f"Rejected {action} from {caller}")
            raise

    def _require_driver(self, driver_id: Any):
        if not self._exists(driver_id):
            raise DriverNotFound(driver_id)

    def _exists(self, driver_id: Any) -> bool:
        if isinstance(driver_id, bool) or not isinstance(driver_id, int):
            return False
        return driver_id in self._drivers

    # Access control

    @property
    def owner(self) -> str:
        return self._access.owner

    def admins(self) -> List[str]:
        with self._reading():
            return self._access.admins()

    def is_admin(self, identity: Optional[str]) -> bool:
        with self._reading():
            return self._access.is_admin(identity)

    def is_authorized_writer(self, identity: Optional[str]) -> bool:
        """True iff identity is the owner or an admin."""
        with self._reading():
            return self._access.is_authorized_writer(identity)

    def grant_admin(self, caller: str, target: str) -> None:
        """
        Grant write privilege to target. Owner only.

        Raises:
            Unauthorized: caller is not the owner
            InvalidIdentity: target is null or zero
        """
        with self._writing():
            self._authorize(caller, "grant admin", owner_only=True)
            was_member = self._access.grant(target)

            def undo():
                if not was_member:
                    self._access.revoke(target)

            self._commit(ADMIN_GRANTED, {"identity": target}, caller, undo)
            logger.info(f"Admin granted: {target}")

    def revoke_admin(self, caller: str, target: str) -> None:
        """
        Revoke write privilege from target. Owner only.

        Revoking an identity that is not an admin is not an error.
        """
        with self._writing():
            self._authorize(caller, "revoke admin", owner_only=True)
            was_member = self._access.revoke(target)

            def undo():
                if was_member:
                    self._access.grant(target)

            self._commit(ADMIN_REVOKED, {"identity": target}, caller, undo)
            logger.info(f"Admin revoked: {target}")

    add_admin = grant_admin
    remove_admin = revoke_admin

    # Drivers

    @property
    def next_driver_id(self) -> int:
        with self._reading():
            return self._next_id

    def add_driver(
        self,
        caller: str,
        name: str,
        date_of_birth: str = "",
        mobile: str = "",
        email: str = "",
        license_number: str = "",
        address: str = "",
        blood_group: str = "",
        vehicle_type: str = "",
        image: str = "",
    ) -> int:
        """
        Register a new driver and return its assigned ID.

        IDs start at 100000 and increase by one per driver; they are never
        supplied by the caller and never reused.

        Raises:
            Unauthorized: caller is neither owner nor admin
        """
        with self._writing():
            self._authorize(caller, "add driver")
            driver_id = self._next_id
            self._drivers[driver_id] = DriverProfile(
                name=name,
                date_of_birth=date_of_birth,
                mobile=mobile,
                email=email,
                license_number=license_number,
                address=address,
                blood_group=blood_group,
                vehicle_type=vehicle_type,
                image=image,
                exists=True,
            )
            self._next_id = driver_id + 1

            def undo():
                del self._drivers[driver_id]
                self._next_id = driver_id

            self._commit(
                DRIVER_ADDED,
                {"driver_id": driver_id, "name": name},
                caller,
                undo,
                record=self._drivers[driver_id].to_dict(),
            )
            logger.info(f"Driver {driver_id} added by {caller}")
            return driver_id

    def driver_exists(self, driver_id: Any) -> bool:
        with self._reading():
            return self._exists(driver_id)

    def driver_count(self) -> int:
        with self._reading():
            return len(self._drivers)

    def driver_ids(self) -> List[int]:
        with self._reading():
            return sorted(self._drivers)

    def get_driver_info(self, driver_id: int) -> DriverProfile:
        with self._reading():
            self._require_driver(driver_id)
            return replace(self._drivers[driver_id])

    # Vehicles

    def add_vehicle(
        self,
        caller: str,
        driver_id: int,
        make: str,
        model: str,
        registration_number: str,
        registration_date: str = "",
        chassis_number: str = "",
        insurance_provider: str = "",
        insurance_policy_number: str = "",
        insurance_expiry: str = "",
        owner_name: str = "",
    ) -> None:
        """
        Record the driver's current vehicle, replacing any previous one.

        Raises:
            Unauthorized: caller is neither owner nor admin
            DriverNotFound: no driver with this ID
        """
        with self._writing():
            self._authorize(caller, "add vehicle")
            self._require_driver(driver_id)
            previous = self._vehicles.get(driver_id)
            self._vehicles[driver_id] = VehicleRecord(
                make=make,
                model=model,
                registration_number=registration_number,
                registration_date=registration_date,
                chassis_number=chassis_number,
                insurance_provider=insurance_provider,
                insurance_policy_number=insurance_policy_number,
                insurance_expiry=insurance_expiry,
                owner_name=owner_name,
                exists=True,
            )

            def undo():
                if previous is None:
                    del self._vehicles[driver_id]
                else:
                    self._vehicles[driver_id] = previous

            self._commit(
                VEHICLE_ADDED,
                {"driver_id": driver_id, "registration_number": registration_number},
                caller,
                undo,
                record=self._vehicles[driver_id].to_dict(),
            )
            logger.info(f"Vehicle {registration_number} recorded for driver {driver_id}")

    def get_vehicle_info(self, driver_id: int) -> VehicleRecord:
        """Current vehicle, or an empty record with exists=False."""
        with self._reading():
            self._require_driver(driver_id)
            return self._vehicle(driver_id)

    def _vehicle(self, driver_id: int) -> VehicleRecord:
        vehicle = self._vehicles.get(driver_id)
        return replace(vehicle) if vehicle else VehicleRecord()

    # Accidents

    def add_accident(
        self,
        caller: str,
        driver_id: int,
        timestamp: str,
        location: str,
        description: str = "",
        cause: str = "",
        case_status: str = "",
        claim_status: str = "",
        photo: str = "",
        fir_number: str = "",
    ) -> None:
        """
        Append an accident to the driver's history.

        Raises:
            Unauthorized: caller is neither owner nor admin
            DriverNotFound: no driver with this ID
        """
        with self._writing():
            self._authorize(caller, "add accident")
            self._require_driver(driver_id)
            history = self._accidents.setdefault(driver_id, [])
            history.append(AccidentRecord(
                timestamp=timestamp,
                location=location,
                description=description,
                cause=cause,
                case_status=case_status,
                claim_status=claim_status,
                photo=photo,
                fir_number=fir_number,
                exists=True,
            ))

            def undo():
                history.pop()
                if not history:
                    del self._accidents[driver_id]

            self._commit(
                ACCIDENT_ADDED,
                {"driver_id": driver_id, "location": location},
                caller,
                undo,
                record=history[-1].to_dict(),
            )
            logger.info(f"Accident at {location} recorded for driver {driver_id}")

    def get_accident_history(self, driver_id: int) -> List[AccidentRecord]:
        """Accidents in the order they were recorded (a snapshot copy)."""
        with self._reading():
            self._require_driver(driver_id)
            return self._history(driver_id)

    def _history(self, driver_id: int) -> List[AccidentRecord]:
        return [replace(a) for a in self._accidents.get(driver_id, [])]

    # Aggregate

    def get_driver_data(
        self, driver_id: int
    ) -> Tuple[DriverProfile, VehicleRecord, List[AccidentRecord]]:
        """Profile, vehicle and accident history read at the same instant."""
        with self._reading():
            self._require_driver(driver_id)
            return (
                replace(self._drivers[driver_id]),
                self._vehicle(driver_id),
                self._history(driver_id),
            )

    # Events

    def events(self, since: int = 0) -> List[Event]:
        with self._reading():
            return self._events.since(since)

    @property
    def head_hash(self) -> str:
        with self._reading():
            return self._events.head_hash

    def verify_integrity(self) -> bool:
        """True iff the event chain verifies and replaying it yields the current state."""
        with self._reading():
            if not self._events.verify():
                return False
            try:
                access, next_id, drivers, vehicles, accidents = _replay(self.owner, self._events)
            except IntegrityError:
                return False
            return (access.admins(), next_id, drivers, vehicles, accidents) == (
                self._access.admins(),
                self._next_id,
                self._drivers,
                self._vehicles,
                self._accidents,
            )

    def __contains__(self, driver_id: Any) -> bool:
        return self.driver_exists(driver_id)

    def __len__(self) -> int:
        return self.driver_count()
