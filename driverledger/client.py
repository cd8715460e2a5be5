# driverledger/client.py
"""
Client SDK for the registry server.

Usage:
    keys = KeyStore("~/.driverledger/keys")
    client = RegistryClient("http://localhost:8080", keypair=keys.get("owner"))

    driver_id = client.add_driver(name="Alice", license_number="DL-1")
    client.add_vehicle(driver_id, make="Toyota", model="Corolla", registration_number="REG1")
    profile, vehicle, accidents = client.get_driver_data(driver_id)
"""

import json
from typing import Any, Dict, List, Tuple
from urllib.error import HTTPError, URLError
from urllib.parse import quote
from urllib.request import Request, urlopen

from .errors import ERROR_TYPES
from .events import Event
from .identity.keys import KeyPair
from .identity.signatures import sign_request
from .records import AccidentRecord, DriverProfile, VehicleRecord


class RegistryClient:
    """
    Client for the registry server.

    Args:
        base_url: Server URL (e.g., "http://localhost:8080")
        keypair: Key used to sign write requests (reads need none)
        timeout: Request timeout in seconds
    """

    def __init__(self, base_url: str = "http://localhost:8080", keypair: KeyPair = None, timeout: float = 30):
        self.base_url = base_url.rstrip("/")
        self.keypair = keypair
        self.timeout = timeout

    def _request(self, method: str, path: str, data: dict = None, signed: bool = False) -> dict:
        """Make HTTP request to server."""
        url = f"{self.base_url}{path}"

        body = json.dumps(data).encode() if data is not None else b""
        headers = {"Content-Type": "application/json"} if data is not None else {}
        if signed:
            if self.keypair is None:
                raise ValueError("A key pair is required for write requests")
            headers.update(sign_request(method, path, body, self.keypair))

        req = Request(url, data=body or None, headers=headers, method=method)

        try:
            with urlopen(req, timeout=self.timeout) as response:
                return json.loads(response.read().decode())
        except HTTPError as e:
            error_body = e.read().decode()
            try:
                error_data = json.loads(error_body)
            except json.JSONDecodeError:
                raise RuntimeError(f"HTTP {e.code}: {error_body}")
            error_cls = ERROR_TYPES.get(error_data.get("type"))
            message = error_data.get("error", str(e))
            if error_cls is not None:
                raise error_cls.from_message(message)
            raise RuntimeError(message)
        except URLError as e:
            raise ConnectionError(f"Failed to connect to server: {e}")

    def health(self) -> bool:
        """Check if server is healthy."""
        try:
            result = self._request("GET", "/health")
            return result.get("status") == "ok"
        except Exception:
            return False

    def info(self) -> Dict[str, Any]:
        """Owner, admins, driver count, next ID and head hash."""
        return self._request("GET", "/registry")

    # Writes

    def grant_admin(self, identity: str) -> None:
        self._request("POST", "/admins", {"identity": identity}, signed=True)

    def revoke_admin(self, identity: str) -> None:
        self._request("DELETE", f"/admins/{quote(identity, safe='')}", signed=True)

    def add_driver(self, name: str, **profile: str) -> int:
        """Register a driver; returns the assigned driver ID."""
        result = self._request("POST", "/drivers", {"name": name, **profile}, signed=True)
        return result["driver_id"]

    def add_vehicle(self, driver_id: int, make: str, model: str, registration_number: str, **vehicle: str) -> None:
        data = {"make": make, "model": model, "registration_number": registration_number, **vehicle}
        self._request("PUT", f"/drivers/{driver_id}/vehicle", data, signed=True)

    def add_accident(self, driver_id: int, timestamp: str, location: str, **accident: str) -> None:
        data = {"timestamp": timestamp, "location": location, **accident}
        self._request("POST", f"/drivers/{driver_id}/accidents", data, signed=True)

    # Reads

    def driver_exists(self, driver_id: int) -> bool:
        return self._request("GET", f"/drivers/{driver_id}/exists")["exists"]

    def get_driver_info(self, driver_id: int) -> DriverProfile:
        return DriverProfile.from_dict(self._request("GET", f"/drivers/{driver_id}/profile"))

    def get_vehicle_info(self, driver_id: int) -> VehicleRecord:
        return VehicleRecord.from_dict(self._request("GET", f"/drivers/{driver_id}/vehicle"))

    def get_accident_history(self, driver_id: int) -> List[AccidentRecord]:
        data = self._request("GET", f"/drivers/{driver_id}/accidents")
        return [AccidentRecord.from_dict(a) for a in data["accidents"]]

    def get_driver_data(self, driver_id: int) -> Tuple[DriverProfile, VehicleRecord, List[AccidentRecord]]:
        data = self._request("GET", f"/drivers/{driver_id}")
        return (
            DriverProfile.from_dict(data["profile"]),
            VehicleRecord.from_dict(data["vehicle"]),
            [AccidentRecord.from_dict(a) for a in data["accidents"]],
        )

    def events(self, since: int = 0) -> List[Event]:
        data = self._request("GET", f"/events?since={since}")
        return [Event.from_dict(e) for e in data["events"]]


__all__ = ["RegistryClient"]
