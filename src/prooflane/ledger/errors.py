"""Ledger error taxonomy.

Transient errors are worth retrying on another endpoint; permanent ones are
not. Timeouts raised by ``asyncio.wait_for`` around ledger calls are treated
as transient by the submitter.
"""
from __future__ import annotations

from enum import Enum


class PermanentKind(str, Enum):
    UNAUTHORIZED = "unauthorized"
    MALFORMED = "malformed"
    DUPLICATE = "duplicate"


class LedgerError(Exception):
    pass


class TransientLedgerError(LedgerError):
    pass


class PermanentLedgerError(LedgerError):
    def __init__(self, kind: PermanentKind, message: str = ""):
        super().__init__(message or kind.value)
        self.kind = PermanentKind(kind)


__all__ = ["LedgerError", "TransientLedgerError", "PermanentLedgerError", "PermanentKind"]
