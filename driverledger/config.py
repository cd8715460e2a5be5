# driverledger/config.py
"""
Registry configuration.

Example driverledger.yaml:

    data_dir: /var/lib/driverledger
    key_dir: ~/.driverledger/keys
    owner: owner            # key name or identity, used by `init`
    host: 0.0.0.0
    port: 8080
    max_clock_skew: 300
    log_level: INFO
"""

from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from .identity.signatures import DEFAULT_MAX_SKEW


@dataclass
class RegistryConfig:
    """Settings shared by the CLI and the HTTP server."""
    data_dir: str = "./driverledger-data"
    key_dir: str = "~/.driverledger/keys"
    owner: Optional[str] = None
    host: str = "127.0.0.1"
    port: int = 8080
    max_clock_skew: int = DEFAULT_MAX_SKEW
    log_level: str = "INFO"

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()

    @property
    def key_path(self) -> Path:
        return Path(self.key_dir).expanduser()

    def override(self, **values: Any) -> "RegistryConfig":
        """Apply non-None overrides (e.g. from command-line flags)."""
        for key, value in values.items():
            if value is not None and hasattr(self, key):
                setattr(self, key, value)
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RegistryConfig":
        known = {f.name for f in fields(cls)}
        config = cls(**{k: v for k, v in data.items() if k in known})
        config.port = int(config.port)
        config.max_clock_skew = int(config.max_clock_skew)
        config.log_level = str(config.log_level).upper()
        return config

    @classmethod
    def from_yaml(cls, yaml_content: str) -> "RegistryConfig":
        """Parse configuration from YAML string."""
        data = yaml.safe_load(yaml_content) or {}
        if not isinstance(data, dict):
            raise ValueError("Configuration must be a YAML mapping")
        return cls.from_dict(data)

    @classmethod
    def from_file(cls, path: Path | str) -> "RegistryConfig":
        """Load configuration from YAML file."""
        with open(path, "r") as f:
            return cls.from_yaml(f.read())
