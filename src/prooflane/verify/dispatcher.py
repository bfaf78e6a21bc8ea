"""Route decoded envelopes to the verification capability for their proof system.

Capabilities are external black boxes. Whatever goes wrong inside one (an
exception, a hang past the per-call timeout) becomes ``valid=False`` with a
diagnostic reason. A capability runs in a worker thread that cannot be
interrupted: after a timeout the thread keeps running until the capability
returns, and its result is discarded. Blocking capabilities should bound their
own I/O; ``RemoteVerifier`` is built with the same per-call timeout.

A proof system with no registered capability is a configuration problem and
raises ``DispatchConfigError`` instead.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from ..envelope.codec import ProofEnvelope, ProofSystem
from ..obs.prom import observe_verification
from ..utils.logging import get_logger
from .cost import estimate_gas

log = get_logger("verify")


@runtime_checkable
class VerificationCapability(Protocol):
    def check_proof(self, payload: bytes, public_inputs: bytes, key_material: bytes) -> bool: ...


class DispatchConfigError(LookupError):
    """No capability registered for a proof system."""

    def __init__(self, proof_system: ProofSystem):
        super().__init__(f"no verification capability registered for {proof_system.label}")
        self.proof_system = proof_system


@dataclass(frozen=True)
class VerifyOutcome:
    valid: bool
    diagnostics: Dict[str, Any] = field(default_factory=dict)


class VerifierDispatcher:
    def __init__(
        self,
        capabilities: Optional[Mapping[ProofSystem, VerificationCapability]] = None,
        call_timeout: float = 10.0,
    ) -> None:
        self.call_timeout = call_timeout
        self._caps: Dict[ProofSystem, VerificationCapability] = {}
        for system, cap in (capabilities or {}).items():
            self.register(system, cap)

    def register(self, system: ProofSystem, cap: VerificationCapability) -> None:
        if getattr(cap, "structural_only", False):
            log.warning("%s verification is a structural check only, not a cryptographic one", system.label)
        self._caps[ProofSystem(system)] = cap

    def supports(self, system: ProofSystem) -> bool:
        return system in self._caps

    def close(self) -> None:
        """Release capabilities that hold resources, such as HTTP clients."""
        for cap in self._caps.values():
            close = getattr(cap, "close", None)
            if close is not None:
                close()

    async def verify(self, env: ProofEnvelope) -> VerifyOutcome:
        cap = self._caps.get(env.proof_system)
        if cap is None:
            raise DispatchConfigError(env.proof_system)
        diag: Dict[str, Any] = {
            "proof_system": env.proof_system.label,
            "program_id": env.program_id,
            "fingerprint": env.fingerprint,
            "gas_estimate": estimate_gas(env),
        }
        if getattr(cap, "structural_only", False):
            diag["structural_only"] = True
        start = time.monotonic()
        try:
            ok = await asyncio.wait_for(
                asyncio.to_thread(cap.check_proof, env.proof_payload, env.public_inputs, env.key_commitment),
                timeout=self.call_timeout,
            )
            valid = bool(ok)
            if not valid:
                diag["reason"] = "proof rejected"
        except asyncio.TimeoutError:
            valid = False
            diag["reason"] = f"verifier timed out after {self.call_timeout}s"
        except Exception as e:
            valid = False
            diag["reason"] = f"verifier error: {type(e).__name__}: {e}"
        diag["elapsed_ms"] = round((time.monotonic() - start) * 1000.0, 3)
        observe_verification(env.proof_system.label, valid)
        return VerifyOutcome(valid=valid, diagnostics=diag)


__all__ = ["VerificationCapability", "VerifierDispatcher", "VerifyOutcome", "DispatchConfigError"]
