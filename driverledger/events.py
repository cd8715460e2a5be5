# driverledger/events.py
"""
Registry events.

Every successful write appends one event to an append-only log. Events
are hash-chained: each one commits to the hash of its predecessor, so
any edit to a stored event breaks verification of the chain.

Event names:
- AdminGranted: identity
- AdminRevoked: identity
- DriverAdded: driver_id, name
- VehicleAdded: driver_id, registration_number
- AccidentAdded: driver_id, location

Record-creating events also carry the full stored record, so the registry
state can be rebuilt from the chain alone and checked against what is on
disk.
"""

import hashlib
import json
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

ADMIN_GRANTED = "AdminGranted"
ADMIN_REVOKED = "AdminRevoked"
DRIVER_ADDED = "DriverAdded"
VEHICLE_ADDED = "VehicleAdded"
ACCIDENT_ADDED = "AccidentAdded"

EVENT_NAMES = (ADMIN_GRANTED, ADMIN_REVOKED, DRIVER_ADDED, VEHICLE_ADDED, ACCIDENT_ADDED)

GENESIS_HASH = "0" * 64


def _canonicalize(data: Dict[str, Any]) -> str:
    """Canonical JSON: sorted keys, no whitespace."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


@dataclass
class Event:
    """
    A committed registry event.

    Attributes:
        sequence: Position in the log, starting at 0
        name: Event name (AdminGranted, DriverAdded, ...)
        payload: Event data
        caller: Identity that performed the write
        record: Full record written by the event (empty for admin events)
        recorded_at: ISO timestamp
        prev_hash: Hash of the previous event (GENESIS_HASH for the first)
        hash: SHA-256 over all other fields
    """
    sequence: int
    name: str
    payload: Dict[str, Any]
    caller: Optional[str] = None
    record: Dict[str, Any] = field(default_factory=dict)
    recorded_at: str = field(default_factory=_now)
    prev_hash: str = GENESIS_HASH
    hash: str = ""

    def compute_hash(self) -> str:
        data = self.to_dict()
        data.pop("hash")
        return hashlib.sha256(_canonicalize(data).encode()).hexdigest()

    def seal(self) -> "Event":
        self.hash = self.compute_hash()
        return self

    @property
    def driver_id(self) -> Optional[int]:
        return self.payload.get("driver_id")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "name": self.name,
            "payload": dict(self.payload),
            "caller": self.caller,
            "record": dict(self.record),
            "recorded_at": self.recorded_at,
            "prev_hash": self.prev_hash,
            "hash": self.hash,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        return cls(
            sequence=data["sequence"],
            name=data["name"],
            payload=data.get("payload", {}),
            caller=data.get("caller"),
            record=data.get("record", {}),
            recorded_at=data.get("recorded_at", ""),
            prev_hash=data.get("prev_hash", GENESIS_HASH),
            hash=data.get("hash", ""),
        )


class EventLog:
    """
    Append-only, hash-chained event log.

    The log holds no lock of its own; the registry serializes access.
    """

    def __init__(self, events: Optional[List[Event]] = None):
        self._events: List[Event] = list(events or [])

    @property
    def head_hash(self) -> str:
        """Hash of the newest event (GENESIS_HASH when empty)."""
        if not self._events:
            return GENESIS_HASH
        return self._events[-1].hash

    def append(
        self,
        name: str,
        payload: Dict[str, Any],
        caller: Optional[str] = None,
        record: Optional[Dict[str, Any]] = None,
    ) -> Event:
        """Seal a new event onto the end of the chain."""
        if name not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {name}")
        event = Event(
            sequence=len(self._events),
            name=name,
            payload=dict(payload),
            caller=caller,
            record=dict(record or {}),
            prev_hash=self.head_hash,
        ).seal()
        self._events.append(event)
        return event

    def pop(self) -> Event:
        """Drop the newest event. Only used to undo an uncommitted write."""
        return self._events.pop()

    def verify(self) -> bool:
        """Check sequence numbers, links and hashes of the whole chain."""
        prev_hash = GENESIS_HASH
        for index, event in enumerate(self._events):
            if event.sequence != index:
                return False
            if event.prev_hash != prev_hash:
                return False
            if event.hash != event.compute_hash():
                return False
            prev_hash = event.hash
        return True

    def list(self) -> List[Event]:
        return [Event.from_dict(e.to_dict()) for e in self._events]

    def since(self, sequence: int) -> List[Event]:
        """Events with sequence >= the given one."""
        return [Event.from_dict(e.to_dict()) for e in self._events[max(sequence, 0):]]

    def find_by_name(self, name: str) -> List[Event]:
        return [e for e in self.list() if e.name == name]

    def find_by_driver(self, driver_id: int) -> List[Event]:
        return [e for e in self.list() if e.driver_id == driver_id]

    def to_list(self) -> List[Dict[str, Any]]:
        return [e.to_dict() for e in self._events]

    @classmethod
    def from_list(cls, data: List[Dict[str, Any]]) -> "EventLog":
        return cls([Event.from_dict(e) for e in data])

    def __len__(self) -> int:
        return len(self._events)
