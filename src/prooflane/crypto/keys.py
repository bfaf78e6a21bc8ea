"""Ed25519 attestor keys: load-or-create, request signing and verification."""
from __future__ import annotations

import base64
import os
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from .jcs import canonical_request_bytes


def ensure_attestor_key(path: str) -> Ed25519PrivateKey:
    if not os.path.exists(path):
        os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
        key = Ed25519PrivateKey.generate()
        with open(path, "wb") as f:
            f.write(key.private_bytes(
                encoding=serialization.Encoding.PEM,
                format=serialization.PrivateFormat.PKCS8,
                encryption_algorithm=serialization.NoEncryption()
            ))
        return key
    with open(path, "rb") as f:
        key = serialization.load_pem_private_key(f.read(), password=None)
    if not isinstance(key, Ed25519PrivateKey):
        raise ValueError(f"{path} is not an Ed25519 private key")
    return key


def public_key_b64(key: Ed25519PrivateKey) -> str:
    raw = key.public_key().public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return base64.b64encode(raw).decode()


def sign_request(key: Ed25519PrivateKey, fields: Dict[str, Any]) -> str:
    return base64.b64encode(key.sign(canonical_request_bytes(fields))).decode()


def verify_request(public_key_b64_value: str, signature_b64: str, fields: Dict[str, Any]) -> bool:
    try:
        pk = Ed25519PublicKey.from_public_bytes(base64.b64decode(public_key_b64_value))
        pk.verify(base64.b64decode(signature_b64), canonical_request_bytes(fields))
        return True
    except (InvalidSignature, ValueError):
        return False


__all__ = ["ensure_attestor_key", "public_key_b64", "sign_request", "verify_request"]
