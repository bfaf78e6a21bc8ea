"""Gas cost estimates per proof system.

Linear model: base + per_input * n_inputs + per_byte * proof_len, with inputs
counted as 32-byte field elements. Only used for diagnostics and summaries.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict

from ..envelope.codec import ProofEnvelope, ProofSystem


@dataclass(frozen=True)
class GasModel:
    base: int
    per_input: int
    per_byte: int

    def estimate(self, n_inputs: int, proof_len: int) -> int:
        return self.base + self.per_input * n_inputs + self.per_byte * proof_len


GAS_MODELS: Dict[ProofSystem, GasModel] = {
    ProofSystem.GROTH16: GasModel(base=250_000, per_input=40_000, per_byte=0),
    ProofSystem.PLONK: GasModel(base=350_000, per_input=10_000, per_byte=0),
    ProofSystem.STARK: GasModel(base=200_000, per_input=5_000, per_byte=10),
}


def estimate_gas(env: ProofEnvelope) -> int:
    model = GAS_MODELS[env.proof_system]
    return model.estimate(len(env.public_inputs) // 32, len(env.proof_payload))


__all__ = ["GasModel", "GAS_MODELS", "estimate_gas"]
