# tests/test_cli.py
"""Tests for the driverledger command-line tool."""

import json
import tempfile
from pathlib import Path

import pytest

from driverledger import Registry
from driverledger.cli import main


@pytest.fixture
def temp_dir():
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def run(temp_dir, capsys):
    """Run the CLI against temporary data and key directories."""
    def _run(*argv):
        main(["--data-dir", str(temp_dir / "data"), "--key-dir", str(temp_dir / "keys"), *argv])
        return capsys.readouterr().out
    return _run


@pytest.fixture
def initialized(run):
    run("keygen", "owner")
    run("keygen", "clerk")
    run("keygen", "stranger")
    run("init", "--owner", "owner")
    return run


class TestCli:

    def test_keygen_prints_identity(self, run):
        out = run("keygen", "owner")
        assert "Identity: 0x" in out

    def test_init_requires_owner(self, run):
        with pytest.raises(SystemExit) as exc_info:
            run("init")
        assert exc_info.value.code == 1

    def test_commands_require_init(self, run):
        with pytest.raises(SystemExit):
            run("show", "100000")

    def test_init_twice(self, initialized):
        with pytest.raises(SystemExit):
            initialized("init", "--owner", "owner")

    def test_add_and_show(self, initialized):
        out = initialized("add-driver", "--as", "owner", "--name", "Alice", "--license", "DL-1")
        assert "Driver ID: 100000" in out

        initialized(
            "add-vehicle", "--as", "owner", "100000",
            "--make", "Toyota", "--model", "Corolla", "--registration", "REG1",
        )
        initialized(
            "add-accident", "--as", "owner", "100000",
            "--timestamp", "2024-01-01T10:00", "--location", "Main St",
        )

        data = json.loads(initialized("show", "100000"))
        assert data["profile"]["name"] == "Alice"
        assert data["profile"]["license_number"] == "DL-1"
        assert data["vehicle"]["registration_number"] == "REG1"
        assert [a["location"] for a in data["accidents"]] == ["Main St"]

    def test_admin_flow(self, initialized, temp_dir):
        initialized("grant-admin", "--as", "owner", "clerk")
        assert "Driver ID: 100000" in initialized("add-driver", "--as", "clerk", "--name", "Bob")

        initialized("revoke-admin", "--as", "owner", "clerk")
        with pytest.raises(SystemExit):
            initialized("add-driver", "--as", "clerk", "--name", "Carol")

        assert Registry(temp_dir / "data").driver_ids() == [100000]

    def test_stranger_rejected(self, initialized, capsys):
        with pytest.raises(SystemExit) as exc_info:
            initialized("add-driver", "--as", "stranger", "--name", "Mallory")
        assert exc_info.value.code == 1
        assert "not authorized" in capsys.readouterr().err

    def test_unknown_driver(self, initialized, capsys):
        with pytest.raises(SystemExit):
            initialized("add-vehicle", "--as", "owner", "100000",
                        "--make", "Toyota", "--model", "Corolla", "--registration", "REG1")
        assert "Driver not found" in capsys.readouterr().err

    def test_events_and_verify(self, initialized):
        initialized("add-driver", "--as", "owner", "--name", "Alice")
        assert "DriverAdded" in initialized("events")
        assert initialized("verify").startswith("OK: 1 events")

    def test_verify_detects_tampering(self, initialized, temp_dir):
        initialized("add-driver", "--as", "owner", "--name", "Alice")
        path = temp_dir / "data" / "registry.json"
        data = json.loads(path.read_text())
        data["events"][0]["payload"]["name"] = "Mallory"
        path.write_text(json.dumps(data))

        with pytest.raises(SystemExit) as exc_info:
            initialized("verify")
        assert exc_info.value.code == 1
