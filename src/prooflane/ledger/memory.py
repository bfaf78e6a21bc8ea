"""In-process ledger with the attestor contract's rules.

- only the configured attestor may submit (when one is configured)
- a fingerprint can be recorded once; a second submit is a duplicate rejection
- a receipt confirms after ``confirm_after`` confirmation polls

``endpoint()`` hands out access points onto the same ledger; ``mode`` lets an
access point be permanently down (transient errors) or hang (every call
blocks until the caller's timeout fires).
"""
from __future__ import annotations

import asyncio
import hashlib
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from ..envelope.codec import is_fingerprint
from .errors import PermanentKind, PermanentLedgerError, TransientLedgerError

ENDPOINT_MODES = ("ok", "down", "hang")


@dataclass
class LedgerEntry:
    fingerprint: str
    receipt_id: str
    attestor: Optional[str]
    recorded_at: float


class InMemoryLedger:
    def __init__(self, attestor: Optional[str] = None, confirm_after: int = 0):
        self.attestor = attestor
        self.confirm_after = confirm_after
        self.entries: Dict[str, LedgerEntry] = {}
        self._polls: Dict[str, int] = {}
        self.submissions: List[str] = []

    def is_attested(self, fingerprint: str) -> bool:
        return fingerprint in self.entries

    def record(self, fingerprint: str, attestor: Optional[str] = None) -> str:
        if not is_fingerprint(fingerprint):
            raise PermanentLedgerError(PermanentKind.MALFORMED, f"malformed fingerprint {fingerprint!r}")
        if self.attestor is not None and attestor != self.attestor:
            raise PermanentLedgerError(PermanentKind.UNAUTHORIZED, "only attestor can attest")
        if fingerprint in self.entries:
            raise PermanentLedgerError(PermanentKind.DUPLICATE, "proof already attested")
        n = len(self.submissions)
        receipt_id = "0x" + hashlib.sha256(f"{fingerprint}:{n}".encode()).hexdigest()
        self.entries[fingerprint] = LedgerEntry(fingerprint, receipt_id, attestor, time.time())
        self._polls[receipt_id] = 0
        self.submissions.append(fingerprint)
        return receipt_id

    def poll(self, receipt_id: str) -> bool:
        if receipt_id not in self._polls:
            raise PermanentLedgerError(PermanentKind.MALFORMED, f"unknown receipt {receipt_id}")
        self._polls[receipt_id] += 1
        return self._polls[receipt_id] > self.confirm_after

    def endpoint(self, name: str = "local", *, attestor: Optional[str] = None, mode: str = "ok") -> "LocalLedgerEndpoint":
        return LocalLedgerEndpoint(self, name, attestor=attestor if attestor is not None else self.attestor, mode=mode)


class LocalLedgerEndpoint:
    def __init__(self, ledger: InMemoryLedger, name: str, *, attestor: Optional[str] = None, mode: str = "ok"):
        if mode not in ENDPOINT_MODES:
            raise ValueError(f"mode must be one of {ENDPOINT_MODES}")
        self.ledger = ledger
        self.name = name
        self.attestor = attestor
        self.mode = mode
        self.calls: List[str] = []

    async def _gate(self, op: str) -> None:
        self.calls.append(op)
        if self.mode == "down":
            raise TransientLedgerError(f"{self.name} unreachable")
        if self.mode == "hang":
            await asyncio.Event().wait()
        await asyncio.sleep(0)

    async def exists(self, fingerprint: str) -> bool:
        await self._gate("exists")
        return self.ledger.is_attested(fingerprint)

    async def submit(self, fingerprint: str) -> str:
        await self._gate("submit")
        return self.ledger.record(fingerprint, self.attestor)

    async def confirm(self, receipt_id: str) -> bool:
        await self._gate("confirm")
        return self.ledger.poll(receipt_id)


__all__ = ["InMemoryLedger", "LocalLedgerEndpoint", "LedgerEntry", "ENDPOINT_MODES"]
