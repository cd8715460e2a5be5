# driverledger/identity/__init__.py
"""
Caller identities for the driver registry.

Core concepts:
- KeyPair: an RSA signing key; its identity is the address of the public key
- KeyStore: named key pairs kept on disk
- Signed requests: how a remote caller proves which identity it holds
- ReplayGuard: accepts each signed request once
"""

from .keys import KeyPair, KeyStore, identity_from_public_key
from .signatures import ReplayGuard, sign_request, verify_request

__all__ = [
    "KeyPair",
    "KeyStore",
    "identity_from_public_key",
    "ReplayGuard",
    "sign_request",
    "verify_request",
]
