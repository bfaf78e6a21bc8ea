"""Structured public statement carried in an envelope's public inputs.

Layout::

    [merkle_root: 32][public_key: 32][nullifier: 32]
    [value: u128 little-endian]
    [extra_len: u32 little-endian][extra: extra_len bytes]
"""
from __future__ import annotations

import struct
from dataclasses import dataclass

from .codec import DecodeError

STATEMENT_FIXED_LEN = 32 + 32 + 32 + 16 + 4  # 116
_U128_MAX = (1 << 128) - 1


@dataclass(frozen=True)
class PublicStatement:
    merkle_root: bytes
    public_key: bytes
    nullifier: bytes
    value: int
    extra: bytes = b""


def encode_statement(st: PublicStatement) -> bytes:
    for name in ("merkle_root", "public_key", "nullifier"):
        if len(getattr(st, name)) != 32:
            raise ValueError(f"{name} must be 32 bytes")
    if not 0 <= st.value <= _U128_MAX:
        raise ValueError("value must fit in u128")
    return b"".join([
        st.merkle_root,
        st.public_key,
        st.nullifier,
        st.value.to_bytes(16, "little"),
        struct.pack("<I", len(st.extra)),
        st.extra,
    ])


def decode_statement(buf: bytes) -> PublicStatement:
    buf = bytes(buf)
    if len(buf) < STATEMENT_FIXED_LEN:
        raise DecodeError(f"statement too short: {len(buf)} < {STATEMENT_FIXED_LEN}")
    (extra_len,) = struct.unpack_from("<I", buf, 112)
    if extra_len != len(buf) - STATEMENT_FIXED_LEN:
        raise DecodeError(
            f"statement extra length {extra_len} does not match remaining {len(buf) - STATEMENT_FIXED_LEN} bytes"
        )
    return PublicStatement(
        merkle_root=buf[0:32],
        public_key=buf[32:64],
        nullifier=buf[64:96],
        value=int.from_bytes(buf[96:112], "little"),
        extra=buf[STATEMENT_FIXED_LEN:],
    )


__all__ = ["PublicStatement", "STATEMENT_FIXED_LEN", "encode_statement", "decode_statement"]
