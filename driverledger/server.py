# driverledger/server.py
"""
HTTP server for the driver registry.

Reads are open; writes must be signed (see identity.signatures) and the
caller identity is taken from the signing key. A signed write is accepted
once; replaying it within the clock-skew window is rejected with 401.

Endpoints:
    GET    /health                      - Liveness check
    GET    /registry                    - Owner, admins, counters, head hash
    POST   /admins                      - Grant admin   {"identity": ...}
    DELETE /admins/:identity            - Revoke admin
    POST   /drivers                     - Add driver    (profile fields)
    GET    /drivers/:id                 - Profile, vehicle and accidents
    GET    /drivers/:id/exists          - Existence check
    GET    /drivers/:id/profile         - Profile only
    PUT    /drivers/:id/vehicle         - Record vehicle (vehicle fields)
    GET    /drivers/:id/vehicle         - Current vehicle
    POST   /drivers/:id/accidents       - Append accident (accident fields)
    GET    /drivers/:id/accidents       - Accident history
    GET    /events?since=N              - Committed events
"""

import json
import logging
import re
import threading
from dataclasses import fields
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Dict, List, Optional, Type
from urllib.parse import parse_qs, unquote, urlparse

from .errors import (
    AuthenticationError,
    DriverNotFound,
    IntegrityError,
    InvalidIdentity,
    RegistryError,
    Unauthorized,
)
from .identity.signatures import DEFAULT_MAX_SKEW, ReplayGuard, verify_request
from .records import AccidentRecord, DriverProfile, VehicleRecord
from .registry import Registry

logger = logging.getLogger(__name__)

_STATUS = {
    AuthenticationError: 401,
    Unauthorized: 403,
    InvalidIdentity: 400,
    DriverNotFound: 404,
    IntegrityError: 500,
}

_DRIVER_ROUTE = re.compile(r"^/drivers/([^/]+)(?:/(exists|profile|vehicle|accidents))?$")
_ADMIN_ROUTE = re.compile(r"^/admins/([^/]+)$")


class BadRequest(ValueError):
    """Malformed request body or parameters."""


def _record_fields(record_type: Type) -> List[str]:
    return [f.name for f in fields(record_type) if f.name != "exists"]


def _parse_fields(data: Dict[str, Any], record_type: Type, required: List[str]) -> Dict[str, Any]:
    """Pick a record's fields out of a request body."""
    missing = [name for name in required if name not in data]
    if missing:
        raise BadRequest(f"Missing fields: {', '.join(missing)}")
    allowed = _record_fields(record_type)
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        raise BadRequest(f"Unknown fields: {', '.join(unknown)}")
    for name, value in data.items():
        if not isinstance(value, str):
            raise BadRequest(f"Field {name} must be a string")
    return {name: data[name] for name in allowed if name in data}


def _parse_driver_id(segment: str) -> Any:
    """Driver IDs are integers; anything else is passed through to fail as not found."""
    try:
        return int(segment)
    except ValueError:
        return segment


class RegistryServer:
    """
    HTTP server for the registry.

    Usage:
        server = RegistryServer(Registry("/var/lib/driverledger"), port=8080)
        server.start()  # Blocking
    """

    def __init__(
        self,
        registry: Registry,
        host: str = "127.0.0.1",
        port: int = 8080,
        max_clock_skew: int = DEFAULT_MAX_SKEW,
    ):
        self.registry = registry
        self.host = host
        self.port = port
        self.max_clock_skew = max_clock_skew
        self.replay_guard = ReplayGuard(max_clock_skew)
        self._httpd: Optional[ThreadingHTTPServer] = None

    def authenticate(self, method: str, path: str, body: bytes, headers) -> str:
        """Return the identity that signed the request; each signature is accepted once."""
        return verify_request(
            method,
            path,
            body,
            headers,
            max_skew=self.max_clock_skew,
            replay_guard=self.replay_guard,
        )

    def _create_handler(server_instance):
        """Create request handler with access to server instance."""

        class RequestHandler(BaseHTTPRequestHandler):
            server_ref = server_instance

            def log_message(self, format, *args):
                logger.debug(format % args)

            def _send_json(self, data: Any, status: int = 200):
                body = json.dumps(data).encode()
                self.send_response(status)
                self.send_header("Content-Type", "application/json")
                self.send_header("Content-Length", str(len(body)))
                self.end_headers()
                self.wfile.write(body)

            def _send_error(self, message: str, status: int = 400, error_type: str = "BadRequest"):
                self._send_json({"error": message, "type": error_type}, status)

            def _read_body(self) -> bytes:
                try:
                    content_length = int(self.headers.get("Content-Length", 0))
                except ValueError:
                    raise BadRequest("Invalid Content-Length")
                if content_length < 0:
                    raise BadRequest("Invalid Content-Length")
                return self.rfile.read(content_length) if content_length else b""

            def _json_body(self, body: bytes) -> Dict[str, Any]:
                try:
                    data = json.loads(body.decode() or "{}")
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    raise BadRequest(f"Invalid JSON: {e}")
                if not isinstance(data, dict):
                    raise BadRequest("Request body must be a JSON object")
                return data

            def _dispatch(self, handler, *args):
                try:
                    handler(*args)
                except RegistryError as e:
                    status = _STATUS.get(type(e), 400)
                    self._send_error(str(e), status, type(e).__name__)
                except BadRequest as e:
                    self._send_error(str(e), 400)
                except Exception as e:
                    logger.exception(f"{self.command} {self.path} failed")
                    self._send_error(str(e), 500, "InternalError")

            def do_GET(self):
                self._dispatch(self._get)

            def do_POST(self):
                self._dispatch(self._write, "POST")

            def do_PUT(self):
                self._dispatch(self._write, "PUT")

            def do_DELETE(self):
                self._dispatch(self._write, "DELETE")

            def _get(self):
                registry = self.server_ref.registry
                parsed = urlparse(self.path)
                path = parsed.path

                if path == "/health":
                    self._send_json({"status": "ok"})
                    return

                if path == "/registry":
                    self._send_json({
                        "owner": registry.owner,
                        "admins": registry.admins(),
                        "driver_count": registry.driver_count(),
                        "next_id": registry.next_driver_id,
                        "head_hash": registry.head_hash,
                    })
                    return

                if path == "/events":
                    query = parse_qs(parsed.query)
                    try:
                        since = int(query.get("since", ["0"])[0])
                    except ValueError:
                        raise BadRequest("since must be an integer")
                    self._send_json({"events": [e.to_dict() for e in registry.events(since)]})
                    return

                match = _DRIVER_ROUTE.match(path)
                if not match:
                    self._send_error("Not found", 404, "NotFound")
                    return

                driver_id = _parse_driver_id(match.group(1))
                view = match.group(2)
                if view == "exists":
                    self._send_json({"driver_id": driver_id, "exists": registry.driver_exists(driver_id)})
                elif view == "profile":
                    self._send_json(registry.get_driver_info(driver_id).to_dict())
                elif view == "vehicle":
                    self._send_json(registry.get_vehicle_info(driver_id).to_dict())
                elif view == "accidents":
                    history = registry.get_accident_history(driver_id)
                    self._send_json({"accidents": [a.to_dict() for a in history]})
                else:
                    profile, vehicle, accidents = registry.get_driver_data(driver_id)
                    self._send_json({
                        "driver_id": driver_id,
                        "profile": profile.to_dict(),
                        "vehicle": vehicle.to_dict(),
                        "accidents": [a.to_dict() for a in accidents],
                    })

            def _write(self, method: str):
                registry = self.server_ref.registry
                body = self._read_body()
                path = urlparse(self.path).path
                caller = self.server_ref.authenticate(method, self.path, body, self.headers)

                if method == "POST" and path == "/admins":
                    identity = self._json_body(body).get("identity")
                    registry.grant_admin(caller, identity)
                    self._send_json({"status": "granted", "identity": identity})
                    return

                admin_match = _ADMIN_ROUTE.match(path)
                if method == "DELETE" and admin_match:
                    identity = unquote(admin_match.group(1))
                    registry.revoke_admin(caller, identity)
                    self._send_json({"status": "revoked", "identity": identity})
                    return

                if method == "POST" and path == "/drivers":
                    profile = _parse_fields(self._json_body(body), DriverProfile, ["name"])
                    driver_id = registry.add_driver(caller, **profile)
                    self._send_json({"driver_id": driver_id}, 201)
                    return

                match = _DRIVER_ROUTE.match(path)
                if match:
                    driver_id = _parse_driver_id(match.group(1))
                    view = match.group(2)
                    if method == "PUT" and view == "vehicle":
                        vehicle = _parse_fields(
                            self._json_body(body),
                            VehicleRecord,
                            ["make", "model", "registration_number"],
                        )
                        registry.add_vehicle(caller, driver_id, **vehicle)
                        self._send_json({"status": "recorded", "driver_id": driver_id})
                        return
                    if method == "POST" and view == "accidents":
                        accident = _parse_fields(
                            self._json_body(body),
                            AccidentRecord,
                            ["timestamp", "location"],
                        )
                        registry.add_accident(caller, driver_id, **accident)
                        self._send_json({"status": "recorded", "driver_id": driver_id}, 201)
                        return

                self._send_error("Not found", 404, "NotFound")

        return RequestHandler

    def _make_server(self) -> ThreadingHTTPServer:
        httpd = ThreadingHTTPServer((self.host, self.port), self._create_handler())
        self.port = httpd.server_address[1]
        self._httpd = httpd
        return httpd

    def start(self):
        """Start the HTTP server (blocking)."""
        httpd = self._make_server()
        logger.info(f"Registry server starting on {self.host}:{self.port}")
        print(f"Registry server running on http://{self.host}:{self.port}")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print("\nShutting down...")
        finally:
            httpd.server_close()

    def start_background(self) -> threading.Thread:
        """Start the server in a background thread. Port 0 picks a free port."""
        httpd = self._make_server()
        logger.info(f"Registry server starting on {self.host}:{self.port}")
        thread = threading.Thread(target=httpd.serve_forever)
        thread.daemon = True
        thread.start()
        return thread

    def stop(self):
        if self._httpd is not None:
            self._httpd.shutdown()
            self._httpd.server_close()
            self._httpd = None


def main():
    """CLI entry point."""
    import argparse

    from .config import RegistryConfig

    parser = argparse.ArgumentParser(description="Driver registry server")
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--host", help="Host to bind to")
    parser.add_argument("--port", type=int, help="Port to bind to")
    parser.add_argument("--data-dir", help="Registry data directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")

    args = parser.parse_args()

    config = RegistryConfig.from_file(args.config) if args.config else RegistryConfig()
    config.override(host=args.host, port=args.port, data_dir=args.data_dir)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    if not (config.data_path / "registry.json").exists():
        parser.error(f"No registry in {config.data_path}; run `driverledger init` first")

    server = RegistryServer(
        registry=Registry(config.data_path),
        host=config.host,
        port=config.port,
        max_clock_skew=config.max_clock_skew,
    )
    server.start()


if __name__ == "__main__":
    main()
