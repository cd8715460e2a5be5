# driverledger/identity/keys.py
"""
Key pairs and their identities.

An identity is the address of an RSA public key:
``0x`` + the first 40 hex digits of SHA-256 over the DER-encoded key.
"""

import hashlib
import json
import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa


def _generate_keypair() -> tuple[bytes, bytes]:
    """Generate RSA key pair for signing."""
    private_key = rsa.generate_private_key(
        public_exponent=65537,
        key_size=2048,
    )
    private_pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_pem = private_key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_pem, public_pem


def identity_from_public_key(public_key_pem: bytes) -> str:
    """Derive the identity address of a PEM-encoded public key."""
    public_key = serialization.load_pem_public_key(public_key_pem)
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return "0x" + hashlib.sha256(der).hexdigest()[:40]


@dataclass
class KeyPair:
    """
    A named signing key.

    Attributes:
        name: Local name of the key (e.g., "owner")
        public_key: PEM-encoded public key
        private_key: PEM-encoded private key (None for public-only entries)
        created_at: Timestamp of creation
    """
    name: str
    public_key: bytes
    private_key: Optional[bytes] = None
    created_at: float = field(default_factory=time.time)

    @property
    def identity(self) -> str:
        return identity_from_public_key(self.public_key)

    @property
    def can_sign(self) -> bool:
        return self.private_key is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the public part for the index."""
        return {
            "name": self.name,
            "identity": self.identity,
            "public_key": self.public_key.decode("utf-8"),
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], private_key: bytes = None) -> "KeyPair":
        return cls(
            name=data["name"],
            public_key=data["public_key"].encode("utf-8"),
            private_key=private_key,
            created_at=data.get("created_at", time.time()),
        )

    @classmethod
    def generate(cls, name: str) -> "KeyPair":
        """Create a new key pair."""
        private_pem, public_pem = _generate_keypair()
        return cls(name=name, public_key=public_pem, private_key=private_pem)


class KeyStore:
    """
    Persistent storage for key pairs.

    Structure:
        store_dir/
            keys.json         # Index of public keys and identities
            <name>.pem        # Private keys, mode 600
    """

    def __init__(self, store_dir: Path | str):
        self.store_dir = Path(store_dir)
        self.store_dir.mkdir(parents=True, exist_ok=True)
        self._keys: Dict[str, KeyPair] = {}
        self._load()

    def _index_path(self) -> Path:
        return self.store_dir / "keys.json"

    def _private_key_path(self, name: str) -> Path:
        return self.store_dir / f"{name}.pem"

    def _load(self):
        """Load keys from disk."""
        index_path = self._index_path()
        if index_path.exists():
            with open(index_path) as f:
                data = json.load(f)
            for name, key_data in data.get("keys", {}).items():
                private_path = self._private_key_path(name)
                private_key = private_path.read_bytes() if private_path.exists() else None
                self._keys[name] = KeyPair.from_dict(key_data, private_key)

    def _save(self):
        """Save the public index to disk."""
        data = {
            "version": "1.0",
            "keys": {name: key.to_dict() for name, key in self._keys.items()},
        }
        with open(self._index_path(), "w") as f:
            json.dump(data, f, indent=2)

    def create(self, name: str) -> KeyPair:
        """Generate and store a new key pair."""
        if name in self._keys:
            raise ValueError(f"Key {name} already exists")

        key = KeyPair.generate(name)
        private_path = self._private_key_path(name)
        private_path.write_bytes(key.private_key)
        os.chmod(private_path, 0o600)  # Owner read/write only
        self._keys[name] = key
        self._save()
        return key

    def get(self, name: str) -> Optional[KeyPair]:
        """Get a key by name."""
        return self._keys.get(name)

    def find_by_identity(self, identity: str) -> Optional[KeyPair]:
        for key in self._keys.values():
            if key.identity == identity:
                return key
        return None

    def list(self) -> List[KeyPair]:
        """List all keys."""
        return list(self._keys.values())

    def __contains__(self, name: str) -> bool:
        return name in self._keys

    def __len__(self) -> int:
        return len(self._keys)
