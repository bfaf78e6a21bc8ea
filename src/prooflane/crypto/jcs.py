"""Canonical bytes for signed ledger requests.

Requests are flat JSON objects of string keys and string, integer or boolean
values. Keys are sorted, separators carry no whitespace and the text is UTF-8.
Floats have no single canonical rendering and are refused, as are nested
containers; the emulator verifies signatures over exactly these bytes.
"""
import json
from typing import Any, Mapping

_SCALARS = (str, int, bool)


def canonical_request_bytes(fields: Mapping[str, Any]) -> bytes:
    for key, value in fields.items():
        if not isinstance(key, str):
            raise TypeError(f"request field names must be strings, got {key!r}")
        if isinstance(value, float) or not isinstance(value, _SCALARS):
            raise TypeError(f"request field {key!r} has unsupported type {type(value).__name__}")
    text = json.dumps(dict(fields), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8")


__all__ = ["canonical_request_bytes"]
