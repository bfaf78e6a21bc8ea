"""Built-in verification capabilities.

``RemoteVerifier`` delegates to an external verification service. ``StructuralCheck``
only checks that a proof is shaped sensibly; it does not run any cryptography
and says so through its ``structural_only`` flag.
"""
from __future__ import annotations

import base64
from typing import Dict, Optional

import httpx

from ..config import PipelineConfig
from ..envelope.codec import DecodeError, ProofSystem
from ..envelope.statement import decode_statement
from .dispatcher import VerificationCapability

MIN_STARK_PROOF_LEN = 64


class StructuralCheck:
    structural_only = True

    def __init__(self, min_proof_len: int = MIN_STARK_PROOF_LEN):
        self.min_proof_len = min_proof_len

    def check_proof(self, payload: bytes, public_inputs: bytes, key_material: bytes) -> bool:
        if len(payload) < self.min_proof_len:
            return False
        if not public_inputs:
            return False
        try:
            decode_statement(public_inputs)
            return True
        except DecodeError:
            # fall back to a flat list of 32-byte field elements
            return len(public_inputs) % 32 == 0


class RemoteVerifier:
    """Calls ``POST {base_url}/verify`` and reads ``{"valid": bool}`` back."""

    def __init__(self, base_url: str, *, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(base_url=self.base_url, timeout=timeout)

    def check_proof(self, payload: bytes, public_inputs: bytes, key_material: bytes) -> bool:
        body = {
            "proof_b64": base64.b64encode(payload).decode(),
            "public_inputs_b64": base64.b64encode(public_inputs).decode(),
            "vk_commitment": "0x" + key_material.hex(),
        }
        r = self._client.post("/verify", json=body)
        r.raise_for_status()
        return bool(r.json().get("valid", False))

    def close(self) -> None:
        self._client.close()


def capabilities_from_config(cfg: PipelineConfig) -> Dict[ProofSystem, VerificationCapability]:
    caps: Dict[ProofSystem, VerificationCapability] = {}
    for name, url in cfg.verifier_urls.items():
        caps[ProofSystem.from_label(name)] = RemoteVerifier(url, timeout=cfg.verify_call_timeout)
    if cfg.structural_stark and ProofSystem.STARK not in caps:
        caps[ProofSystem.STARK] = StructuralCheck()
    return caps


__all__ = ["StructuralCheck", "RemoteVerifier", "capabilities_from_config"]
