"""Proof envelope v1 codec.

Binary layout (all integers little-endian)::

    [version: u8]            must be 1
    [proof_system: u8]       0=groth16, 1=plonk, 2=stark
    [program_id: u32]
    [key_commitment: 32 bytes]
    [proof_len: u32][proof_payload: proof_len bytes]
    [inputs_len: u32][public_inputs: inputs_len bytes]

The public inputs section must end exactly at the end of the buffer. Any
mismatch is a hard ``DecodeError``; a partially parsed envelope is never
returned.

The envelope fingerprint is SHA-256 over the two length-prefixed sections only,
so two envelopes carrying the same proof and inputs share a fingerprint no
matter what the header says.
"""
from __future__ import annotations

import hashlib
import re
import struct
from dataclasses import dataclass, field
from enum import IntEnum

WIRE_VERSION = 1
KEY_COMMITMENT_LEN = 32
HEADER_LEN = 1 + 1 + 4 + KEY_COMMITMENT_LEN  # 38
MIN_ENVELOPE_LEN = HEADER_LEN + 4 + 4  # 46
_U32_MAX = 0xFFFFFFFF

_HEADER = struct.Struct("<BBI32s")
_LEN = struct.Struct("<I")
_FINGERPRINT_RE = re.compile(r"^0x[0-9a-f]{64}$")


class ProofSystem(IntEnum):
    GROTH16 = 0
    PLONK = 1
    STARK = 2

    @property
    def label(self) -> str:
        return self.name.lower()

    @classmethod
    def from_label(cls, label: str) -> "ProofSystem":
        try:
            return cls[label.strip().upper()]
        except KeyError:
            raise ValueError(f"unknown proof system {label!r}") from None


class DecodeError(ValueError):
    """Raised when a buffer is not a well-formed envelope."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def fingerprint(proof_payload: bytes, public_inputs: bytes) -> str:
    h = hashlib.sha256()
    h.update(_LEN.pack(len(proof_payload)))
    h.update(proof_payload)
    h.update(_LEN.pack(len(public_inputs)))
    h.update(public_inputs)
    return "0x" + h.hexdigest()


def is_fingerprint(value: object) -> bool:
    return isinstance(value, str) and bool(_FINGERPRINT_RE.match(value))


@dataclass(frozen=True)
class ProofEnvelope:
    proof_system: ProofSystem
    program_id: int
    key_commitment: bytes
    proof_payload: bytes
    public_inputs: bytes
    version: int = WIRE_VERSION
    fingerprint: str = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "fingerprint", fingerprint(self.proof_payload, self.public_inputs))

    @property
    def encoded_size(self) -> int:
        return MIN_ENVELOPE_LEN + len(self.proof_payload) + len(self.public_inputs)


def encode(env: ProofEnvelope) -> bytes:
    if env.version != WIRE_VERSION:
        raise ValueError(f"unsupported envelope version {env.version}")
    if not 0 <= env.program_id <= _U32_MAX:
        raise ValueError("program_id must fit in u32")
    if len(env.key_commitment) != KEY_COMMITMENT_LEN:
        raise ValueError(f"key_commitment must be {KEY_COMMITMENT_LEN} bytes")
    if len(env.proof_payload) > _U32_MAX or len(env.public_inputs) > _U32_MAX:
        raise ValueError("section too large for u32 length prefix")
    parts = [
        _HEADER.pack(env.version, int(env.proof_system), env.program_id, env.key_commitment),
        _LEN.pack(len(env.proof_payload)),
        env.proof_payload,
        _LEN.pack(len(env.public_inputs)),
        env.public_inputs,
    ]
    return b"".join(parts)


def decode(buf: bytes) -> ProofEnvelope:
    buf = bytes(buf)
    if len(buf) < MIN_ENVELOPE_LEN:
        raise DecodeError(f"buffer too short: {len(buf)} < {MIN_ENVELOPE_LEN}")
    version, tag, program_id, key_commitment = _HEADER.unpack_from(buf, 0)
    if version != WIRE_VERSION:
        raise DecodeError(f"unsupported version {version}")
    try:
        proof_system = ProofSystem(tag)
    except ValueError:
        raise DecodeError(f"unknown proof system tag {tag}") from None

    offset = HEADER_LEN
    (proof_len,) = _LEN.unpack_from(buf, offset)
    offset += 4
    # the inputs length prefix must still fit after the proof bytes
    if proof_len > len(buf) - offset - 4:
        raise DecodeError(f"declared proof length {proof_len} exceeds remaining {len(buf) - offset - 4} bytes")
    proof_payload = buf[offset:offset + proof_len]
    offset += proof_len

    (inputs_len,) = _LEN.unpack_from(buf, offset)
    offset += 4
    remaining = len(buf) - offset
    if inputs_len != remaining:
        if inputs_len > remaining:
            raise DecodeError(f"declared inputs length {inputs_len} exceeds remaining {remaining} bytes")
        raise DecodeError(f"{remaining - inputs_len} trailing bytes after public inputs")
    public_inputs = buf[offset:]

    return ProofEnvelope(
        version=version,
        proof_system=proof_system,
        program_id=program_id,
        key_commitment=key_commitment,
        proof_payload=proof_payload,
        public_inputs=public_inputs,
    )


__all__ = [
    "WIRE_VERSION",
    "KEY_COMMITMENT_LEN",
    "HEADER_LEN",
    "MIN_ENVELOPE_LEN",
    "ProofSystem",
    "ProofEnvelope",
    "DecodeError",
    "encode",
    "decode",
    "fingerprint",
    "is_fingerprint",
]
