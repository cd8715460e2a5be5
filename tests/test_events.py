# tests/test_events.py
"""Tests for event emission and the hash-chained event log."""

import pytest

from driverledger import DriverNotFound, Event, EventLog, Registry, Unauthorized
from driverledger.events import GENESIS_HASH

OWNER = "0x" + "a" * 40
ADMIN = "0x" + "b" * 40
STRANGER = "0x" + "c" * 40


@pytest.fixture
def registry():
    return Registry(owner=OWNER)


class TestEmission:
    """Each successful write emits exactly one event."""

    def test_event_payloads(self, registry):
        """Events carry the documented payloads in call order."""
        registry.grant_admin(OWNER, ADMIN)
        driver_id = registry.add_driver(ADMIN, "Alice")
        registry.add_vehicle(ADMIN, driver_id, "Toyota", "Corolla", "REG1")
        registry.add_accident(OWNER, driver_id, "2024-01-01", "Main St")
        registry.revoke_admin(OWNER, ADMIN)

        events = registry.events()
        assert [(e.name, e.payload) for e in events] == [
            ("AdminGranted", {"identity": ADMIN}),
            ("DriverAdded", {"driver_id": driver_id, "name": "Alice"}),
            ("VehicleAdded", {"driver_id": driver_id, "registration_number": "REG1"}),
            ("AccidentAdded", {"driver_id": driver_id, "location": "Main St"}),
            ("AdminRevoked", {"identity": ADMIN}),
        ]
        assert [e.caller for e in events] == [OWNER, ADMIN, ADMIN, OWNER, OWNER]
        assert [e.sequence for e in events] == [0, 1, 2, 3, 4]

    def test_events_carry_records(self, registry):
        """Record-creating events hold the full stored record."""
        driver_id = registry.add_driver(OWNER, "Alice", license_number="DL-1")
        registry.add_vehicle(OWNER, driver_id, "Toyota", "Corolla", "REG1")
        registry.add_accident(OWNER, driver_id, "2024-01-01", "Main St", fir_number="FIR-9")
        registry.grant_admin(OWNER, ADMIN)

        driver_event, vehicle_event, accident_event, admin_event = registry.events()
        assert driver_event.record == registry.get_driver_info(driver_id).to_dict()
        assert vehicle_event.record == registry.get_vehicle_info(driver_id).to_dict()
        assert accident_event.record["fir_number"] == "FIR-9"
        assert admin_event.record == {}

    def test_revoke_non_member_still_emits(self, registry):
        """An idempotent revoke is still a successful call."""
        registry.revoke_admin(OWNER, STRANGER)
        assert [e.name for e in registry.events()] == ["AdminRevoked"]

    def test_failed_calls_emit_nothing(self, registry):
        """Rejected writes leave the log untouched."""
        with pytest.raises(Unauthorized):
            registry.add_driver(STRANGER, "Mallory")
        with pytest.raises(DriverNotFound):
            registry.add_vehicle(OWNER, 100000, "Toyota", "Corolla", "REG1")
        with pytest.raises(Unauthorized):
            registry.grant_admin(STRANGER, STRANGER)
        assert registry.events() == []

    def test_events_since(self, registry):
        for name in ("A", "B", "C"):
            registry.add_driver(OWNER, name)
        assert [e.payload["name"] for e in registry.events(since=1)] == ["B", "C"]
        assert registry.events(since=10) == []


class TestSubscribers:
    """Tests for subscribe()/unsubscribe()."""

    def test_subscriber_sees_committed_state(self, registry):
        """Subscribers run after the mutation is visible."""
        seen = []

        def on_event(event):
            driver_id = event.payload["driver_id"]
            seen.append((event.name, registry.driver_exists(driver_id)))

        registry.subscribe(on_event)
        registry.add_driver(OWNER, "Alice")
        assert seen == [("DriverAdded", True)]

    def test_no_notification_on_failure(self, registry):
        seen = []
        registry.subscribe(seen.append)
        with pytest.raises(Unauthorized):
            registry.add_driver(STRANGER, "Mallory")
        assert seen == []

    def test_unsubscribe(self, registry):
        seen = []
        registry.subscribe(seen.append)
        registry.add_driver(OWNER, "Alice")
        registry.unsubscribe(seen.append)
        registry.add_driver(OWNER, "Bob")
        assert len(seen) == 1

    def test_failing_subscriber_does_not_fail_write(self, registry, caplog):
        """A subscriber error is logged and the write stands."""
        def broken(event):
            raise RuntimeError("boom")

        seen = []
        registry.subscribe(broken)
        registry.subscribe(seen.append)

        driver_id = registry.add_driver(OWNER, "Alice")

        assert driver_id == 100000
        assert registry.driver_exists(driver_id)
        assert len(seen) == 1
        assert registry.verify_integrity()
        warnings = [r for r in caplog.records if "boom" in r.getMessage()]
        assert [r.levelname for r in warnings] == ["WARNING"]


class TestEventLog:
    """Tests for the hash chain."""

    def test_chain_links(self):
        log = EventLog()
        first = log.append("DriverAdded", {"driver_id": 100000, "name": "A"}, OWNER)
        second = log.append("DriverAdded", {"driver_id": 100001, "name": "B"}, OWNER)

        assert first.prev_hash == GENESIS_HASH
        assert second.prev_hash == first.hash
        assert log.head_hash == second.hash
        assert log.verify()

    def test_empty_log(self):
        log = EventLog()
        assert log.head_hash == GENESIS_HASH
        assert log.verify()
        assert len(log) == 0

    def test_unknown_event_name(self):
        with pytest.raises(ValueError):
            EventLog().append("DriverDeleted", {}, OWNER)

    def test_tampered_payload_detected(self):
        log = EventLog()
        log.append("DriverAdded", {"driver_id": 100000, "name": "Alice"}, OWNER)
        log.append("VehicleAdded", {"driver_id": 100000, "registration_number": "REG1"}, OWNER)

        data = log.to_list()
        data[0]["payload"]["name"] = "Mallory"
        assert not EventLog.from_list(data).verify()

    def test_rehashed_event_breaks_link(self):
        """Resealing an edited event still breaks its successor's link."""
        log = EventLog()
        log.append("DriverAdded", {"driver_id": 100000, "name": "Alice"}, OWNER)
        log.append("DriverAdded", {"driver_id": 100001, "name": "Bob"}, OWNER)

        events = [Event.from_dict(e) for e in log.to_list()]
        events[0].payload["name"] = "Mallory"
        events[0].seal()
        assert not EventLog(events).verify()

    def test_dropped_event_detected(self):
        log = EventLog()
        for i in range(3):
            log.append("DriverAdded", {"driver_id": 100000 + i, "name": str(i)}, OWNER)
        data = log.to_list()
        del data[1]
        assert not EventLog.from_list(data).verify()

    def test_find(self):
        log = EventLog()
        log.append("DriverAdded", {"driver_id": 100000, "name": "A"}, OWNER)
        log.append("AdminGranted", {"identity": ADMIN}, OWNER)
        log.append("AccidentAdded", {"driver_id": 100000, "location": "X"}, OWNER)

        assert len(log.find_by_name("AdminGranted")) == 1
        assert [e.name for e in log.find_by_driver(100000)] == ["DriverAdded", "AccidentAdded"]

    def test_registry_integrity(self, registry):
        registry.add_driver(OWNER, "Alice")
        assert registry.verify_integrity()
        assert registry.head_hash == registry.events()[-1].hash

    def test_record_is_hashed(self):
        """Editing an event's record breaks the chain."""
        log = EventLog()
        log.append("DriverAdded", {"driver_id": 100000, "name": "A"}, OWNER, {"name": "A", "exists": True})
        log._events[0].record["name"] = "Mallory"
        assert not log.verify()
