#!/usr/bin/env python3
"""
driverledger CLI

Command-line interface for a local registry directory:
  driverledger keygen <name>                 - Create a signing key
  driverledger init --owner <key>            - Create a registry
  driverledger grant-admin --as <key> <id>   - Grant admin (owner only)
  driverledger revoke-admin --as <key> <id>  - Revoke admin (owner only)
  driverledger add-driver --as <key> ...     - Register a driver
  driverledger add-vehicle --as <key> ...    - Record a driver's vehicle
  driverledger add-accident --as <key> ...   - Append an accident
  driverledger show <driver_id>              - Print profile, vehicle, accidents
  driverledger events [--since N]            - Print the event log
  driverledger verify                        - Verify the event chain
  driverledger serve                         - Run the HTTP server

Usage:
  driverledger --data-dir ./data keygen owner
  driverledger --data-dir ./data init --owner owner
  driverledger --data-dir ./data add-driver --as owner --name Alice
"""

import argparse
import json
import logging
import sys
from typing import Optional

from filelock import Timeout

from .config import RegistryConfig
from .errors import RegistryError
from .identity import KeyStore
from .registry import Registry

PROFILE_OPTIONS = [
    ("--name", "name"),
    ("--dob", "date_of_birth"),
    ("--mobile", "mobile"),
    ("--email", "email"),
    ("--license", "license_number"),
    ("--address", "address"),
    ("--blood-group", "blood_group"),
    ("--vehicle-type", "vehicle_type"),
    ("--image", "image"),
]

VEHICLE_OPTIONS = [
    ("--make", "make"),
    ("--model", "model"),
    ("--registration", "registration_number"),
    ("--registration-date", "registration_date"),
    ("--chassis", "chassis_number"),
    ("--insurer", "insurance_provider"),
    ("--policy", "insurance_policy_number"),
    ("--insurance-expiry", "insurance_expiry"),
    ("--owner-name", "owner_name"),
]

ACCIDENT_OPTIONS = [
    ("--timestamp", "timestamp"),
    ("--location", "location"),
    ("--description", "description"),
    ("--cause", "cause"),
    ("--case-status", "case_status"),
    ("--claim-status", "claim_status"),
    ("--photo", "photo"),
    ("--fir", "fir_number"),
]

REQUIRED = {"name", "make", "model", "registration_number", "timestamp", "location"}


def load_config(args) -> RegistryConfig:
    config = RegistryConfig.from_file(args.config) if args.config else RegistryConfig()
    return config.override(data_dir=args.data_dir, key_dir=args.key_dir)


def resolve_identity(keys: KeyStore, value: str) -> str:
    """Accept either a key name from the key store or a literal identity."""
    key = keys.get(value)
    if key is not None:
        return key.identity
    if value.startswith("0x"):
        return value
    raise ValueError(f"Unknown key: {value}")


def open_registry(config: RegistryConfig, owner: Optional[str] = None) -> Registry:
    if owner is None and not (config.data_path / "registry.json").exists():
        raise ValueError(f"No registry in {config.data_path}; run `driverledger init` first")
    return Registry(config.data_path, owner=owner)


def collect_fields(args, options) -> dict:
    return {
        dest: getattr(args, dest)
        for _, dest in options
        if getattr(args, dest) is not None
    }


def print_json(data) -> None:
    print(json.dumps(data, indent=2))


def cmd_keygen(args, config: RegistryConfig):
    """Create a signing key."""
    keys = KeyStore(config.key_path)
    key = keys.create(args.name)
    print(f"Created key {key.name}")
    print(f"Identity: {key.identity}")


def cmd_init(args, config: RegistryConfig):
    """Create a registry owned by a key or identity."""
    owner_ref = args.owner or config.owner
    if not owner_ref:
        raise ValueError("An owner is required (--owner or `owner` in config)")
    if (config.data_path / "registry.json").exists():
        raise ValueError(f"A registry already exists in {config.data_path}")

    owner = resolve_identity(KeyStore(config.key_path), owner_ref)
    open_registry(config, owner=owner)
    print(f"Registry created in {config.data_path}")
    print(f"Owner: {owner}")


def cmd_grant_admin(args, config: RegistryConfig):
    keys = KeyStore(config.key_path)
    registry = open_registry(config)
    target = resolve_identity(keys, args.identity)
    registry.grant_admin(resolve_identity(keys, args.caller), target)
    print(f"Granted admin: {target}")


def cmd_revoke_admin(args, config: RegistryConfig):
    keys = KeyStore(config.key_path)
    registry = open_registry(config)
    target = resolve_identity(keys, args.identity)
    registry.revoke_admin(resolve_identity(keys, args.caller), target)
    print(f"Revoked admin: {target}")


def cmd_add_driver(args, config: RegistryConfig):
    caller = resolve_identity(KeyStore(config.key_path), args.caller)
    registry = open_registry(config)
    driver_id = registry.add_driver(caller, **collect_fields(args, PROFILE_OPTIONS))
    print(f"Driver ID: {driver_id}")


def cmd_add_vehicle(args, config: RegistryConfig):
    caller = resolve_identity(KeyStore(config.key_path), args.caller)
    registry = open_registry(config)
    registry.add_vehicle(caller, args.driver_id, **collect_fields(args, VEHICLE_OPTIONS))
    print(f"Vehicle {args.registration_number} recorded for driver {args.driver_id}")


def cmd_add_accident(args, config: RegistryConfig):
    caller = resolve_identity(KeyStore(config.key_path), args.caller)
    registry = open_registry(config)
    registry.add_accident(caller, args.driver_id, **collect_fields(args, ACCIDENT_OPTIONS))
    count = len(registry.get_accident_history(args.driver_id))
    print(f"Accident recorded for driver {args.driver_id} ({count} total)")


def cmd_show(args, config: RegistryConfig):
    """Print everything recorded for a driver."""
    registry = open_registry(config)
    profile, vehicle, accidents = registry.get_driver_data(args.driver_id)
    print_json({
        "driver_id": args.driver_id,
        "profile": profile.to_dict(),
        "vehicle": vehicle.to_dict(),
        "accidents": [a.to_dict() for a in accidents],
    })


def cmd_events(args, config: RegistryConfig):
    registry = open_registry(config)
    for event in registry.events(args.since):
        print(f"{event.sequence:>6}  {event.recorded_at}  {event.name:<14} {json.dumps(event.payload)}")


def cmd_verify(args, config: RegistryConfig):
    """Verify the event chain (loading already fails on a broken chain)."""
    registry = open_registry(config)
    if not registry.verify_integrity():
        print("Event chain does NOT verify", file=sys.stderr)
        sys.exit(1)
    print(f"OK: {len(registry.events())} events, head {registry.head_hash[:16]}...")


def cmd_serve(args, config: RegistryConfig):
    from .server import RegistryServer

    config.override(host=args.host, port=args.port)
    server = RegistryServer(
        registry=open_registry(config),
        host=config.host,
        port=config.port,
        max_clock_skew=config.max_clock_skew,
    )
    server.start()


def _add_field_options(parser, options):
    for flag, dest in options:
        parser.add_argument(flag, dest=dest, required=dest in REQUIRED)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="driverledger",
        description="Tamper-evident driver, vehicle and accident registry",
    )
    parser.add_argument("--config", help="YAML configuration file")
    parser.add_argument("--data-dir", help="Registry data directory")
    parser.add_argument("--key-dir", help="Key store directory")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    subparsers = parser.add_subparsers(dest="command", help="Commands")

    keygen_parser = subparsers.add_parser("keygen", help="Create a signing key")
    keygen_parser.add_argument("name", help="Key name")

    init_parser = subparsers.add_parser("init", help="Create a registry")
    init_parser.add_argument("--owner", help="Owner key name or identity")

    for command, help_text in (("grant-admin", "Grant admin status"), ("revoke-admin", "Revoke admin status")):
        admin_parser = subparsers.add_parser(command, help=help_text)
        admin_parser.add_argument("--as", dest="caller", required=True, help="Caller key name")
        admin_parser.add_argument("identity", help="Target key name or identity")

    driver_parser = subparsers.add_parser("add-driver", help="Register a driver")
    driver_parser.add_argument("--as", dest="caller", required=True, help="Caller key name")
    _add_field_options(driver_parser, PROFILE_OPTIONS)

    vehicle_parser = subparsers.add_parser("add-vehicle", help="Record a driver's vehicle")
    vehicle_parser.add_argument("--as", dest="caller", required=True, help="Caller key name")
    vehicle_parser.add_argument("driver_id", type=int, help="Driver ID")
    _add_field_options(vehicle_parser, VEHICLE_OPTIONS)

    accident_parser = subparsers.add_parser("add-accident", help="Append an accident")
    accident_parser.add_argument("--as", dest="caller", required=True, help="Caller key name")
    accident_parser.add_argument("driver_id", type=int, help="Driver ID")
    _add_field_options(accident_parser, ACCIDENT_OPTIONS)

    show_parser = subparsers.add_parser("show", help="Show a driver's records")
    show_parser.add_argument("driver_id", type=int, help="Driver ID")

    events_parser = subparsers.add_parser("events", help="Print the event log")
    events_parser.add_argument("--since", type=int, default=0, help="First sequence number")

    subparsers.add_parser("verify", help="Verify the event chain")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP server")
    serve_parser.add_argument("--host", help="Host to bind to")
    serve_parser.add_argument("--port", type=int, help="Port to bind to")

    return parser


COMMANDS = {
    "keygen": cmd_keygen,
    "init": cmd_init,
    "grant-admin": cmd_grant_admin,
    "revoke-admin": cmd_revoke_admin,
    "add-driver": cmd_add_driver,
    "add-vehicle": cmd_add_vehicle,
    "add-accident": cmd_add_accident,
    "show": cmd_show,
    "events": cmd_events,
    "verify": cmd_verify,
    "serve": cmd_serve,
}


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command not in COMMANDS:
        parser.print_help()
        sys.exit(1)

    config = load_config(args)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else config.log_level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    try:
        COMMANDS[args.command](args, config)
    except (RegistryError, ValueError, Timeout) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
