# driverledger/identity/signatures.py
"""
Request signatures.

Write requests carry the caller's public key, a timestamp, a random nonce and
an RSA-SHA256 signature over the method, path, timestamp, nonce and a hash
of the body. The server verifies the signature and derives the caller
identity from the key. A ReplayGuard remembers accepted nonces for the
length of the clock-skew window so each signed request is accepted once.
"""

import base64
import hashlib
import json
import threading
import time
import uuid
from typing import Any, Dict, Mapping, Optional, Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding

from ..errors import AuthenticationError
from .keys import KeyPair, identity_from_public_key

PUBLIC_KEY_HEADER = "X-Public-Key"
TIMESTAMP_HEADER = "X-Timestamp"
SIGNATURE_HEADER = "X-Signature"
NONCE_HEADER = "X-Nonce"

DEFAULT_MAX_SKEW = 300


def _canonicalize(data: Dict[str, Any]) -> str:
    """
    Canonicalize JSON for signing.

    Uses JCS (JSON Canonicalization Scheme) - sorted keys, no whitespace.
    """
    return json.dumps(data, sort_keys=True, separators=(",", ":"))


def _signing_input(method: str, path: str, timestamp: str, nonce: str, body: bytes) -> bytes:
    return _canonicalize({
        "method": method.upper(),
        "path": path,
        "timestamp": timestamp,
        "nonce": nonce,
        "body": hashlib.sha256(body or b"").hexdigest(),
    }).encode()


def sign_request(method: str, path: str, body: bytes, keypair: KeyPair) -> Dict[str, str]:
    """
    Sign a request with the key pair's private key.

    Args:
        method: HTTP method
        path: Request path including query string
        body: Raw request body (b"" if none)
        keypair: Key pair with a private key

    Returns:
        Headers to attach to the request
    """
    if not keypair.can_sign:
        raise ValueError(f"Key {keypair.name} has no private key")

    private_key = serialization.load_pem_private_key(
        keypair.private_key,
        password=None,
    )
    timestamp = str(int(time.time()))
    nonce = uuid.uuid4().hex
    signature_bytes = private_key.sign(
        _signing_input(method, path, timestamp, nonce, body),
        padding.PKCS1v15(),
        hashes.SHA256(),
    )
    return {
        PUBLIC_KEY_HEADER: base64.b64encode(keypair.public_key).decode("utf-8"),
        TIMESTAMP_HEADER: timestamp,
        NONCE_HEADER: nonce,
        SIGNATURE_HEADER: base64.b64encode(signature_bytes).decode("utf-8"),
    }


def verify_request(
    method: str,
    path: str,
    body: bytes,
    headers: Mapping[str, str],
    max_skew: int = DEFAULT_MAX_SKEW,
    replay_guard: Optional["ReplayGuard"] = None,
) -> str:
    """
    Verify a signed request and return the caller identity.

    Args:
        replay_guard: When given, a nonce already accepted from the same
            identity is rejected

    Raises:
        AuthenticationError: headers missing, timestamp out of window,
            signature invalid, or request replayed
    """
    public_key_b64 = headers.get(PUBLIC_KEY_HEADER)
    timestamp = headers.get(TIMESTAMP_HEADER)
    signature_b64 = headers.get(SIGNATURE_HEADER)
    nonce = headers.get(NONCE_HEADER)
    if not (public_key_b64 and timestamp and nonce and signature_b64):
        raise AuthenticationError("Missing signature headers")

    try:
        issued_at = int(timestamp)
    except ValueError:
        raise AuthenticationError(f"Invalid timestamp: {timestamp}")
    if abs(time.time() - issued_at) > max_skew:
        raise AuthenticationError(f"Request timestamp outside {max_skew}s window")

    try:
        public_key_pem = base64.b64decode(public_key_b64)
        public_key = serialization.load_pem_public_key(public_key_pem)
        public_key.verify(
            base64.b64decode(signature_b64),
            _signing_input(method, path, timestamp, nonce, body),
            padding.PKCS1v15(),
            hashes.SHA256(),
        )
    except (InvalidSignature, ValueError, TypeError) as e:
        raise AuthenticationError(f"Invalid signature: {e or 'verification failed'}")

    identity = identity_from_public_key(public_key_pem)
    if replay_guard is not None:
        replay_guard.check(identity, nonce, issued_at)
    return identity


class ReplayGuard:
    """
    Remembers accepted (identity, nonce) pairs until their timestamp falls
    out of the skew window, after which verify_request rejects them anyway.

    Thread-safe; one instance is shared by all server handler threads.
    """

    def __init__(self, window: int = DEFAULT_MAX_SKEW):
        self.window = window
        self._seen: Dict[Tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def check(self, identity: str, nonce: str, issued_at: int) -> None:
        """Record the nonce, or raise AuthenticationError if it was seen."""
        now = time.time()
        key = (identity, nonce)
        with self._lock:
            self._seen = {k: expiry for k, expiry in self._seen.items() if expiry >= now}
            if key in self._seen:
                raise AuthenticationError(f"Replayed request from {identity}")
            self._seen[key] = issued_at + self.window

    def __len__(self) -> int:
        with self._lock:
            return len(self._seen)
