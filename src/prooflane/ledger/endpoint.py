from __future__ import annotations

from typing import Protocol, runtime_checkable


@runtime_checkable
class LedgerEndpoint(Protocol):
    """One of several interchangeable access points to the same ledger."""

    name: str

    async def exists(self, fingerprint: str) -> bool: ...

    async def submit(self, fingerprint: str) -> str: ...

    async def confirm(self, receipt_id: str) -> bool: ...


__all__ = ["LedgerEndpoint"]
