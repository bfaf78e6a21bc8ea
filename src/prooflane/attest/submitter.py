"""Attestation submitter.

Drives a single fingerprint to a terminal outcome against an ordered list of
interchangeable ledger endpoints:

    exists? -> submit -> confirm

Transient failures rotate to the next endpoint (``endpoints[attempt % n]``)
after an exponential backoff; permanent failures stop immediately. All retry
state lives inside one ``attest`` call.
"""
from __future__ import annotations

import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence

from ..envelope.codec import is_fingerprint
from ..ledger.endpoint import LedgerEndpoint
from ..ledger.errors import PermanentKind, PermanentLedgerError, TransientLedgerError
from ..obs.prom import observe_attestation, observe_ledger_attempt
from ..utils.logging import get_logger
from .model import AttestationOutcome, AttestationRecord, utc_now

log = get_logger("attest")

ReceiptCallback = Callable[[AttestationRecord], Any]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 4
    base_delay: float = 0.5
    max_delay: float = 8.0
    query_timeout: float = 5.0
    submit_timeout: float = 15.0
    confirm_timeout: float = 60.0

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Backoff after failed attempt ``attempt`` (0-based)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    @classmethod
    def from_config(cls, cfg) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.max_attempts,
            base_delay=cfg.backoff_base,
            max_delay=cfg.backoff_max,
            query_timeout=cfg.query_timeout,
            submit_timeout=cfg.submit_timeout,
            confirm_timeout=cfg.confirm_timeout,
        )


class AttestationSubmitter:
    def __init__(
        self,
        endpoints: Sequence[LedgerEndpoint],
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        if not endpoints:
            raise ValueError("at least one ledger endpoint is required")
        self.endpoints = tuple(endpoints)
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    async def _bounded(self, ep: LedgerEndpoint, op: str, coro: Awaitable, timeout: float):
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError as e:
            raise TransientLedgerError(f"{op} timed out after {timeout}s on {ep.name}") from e

    def _finish(self, record: AttestationRecord, outcome: AttestationOutcome) -> AttestationRecord:
        record.outcome = outcome
        if outcome == AttestationOutcome.CONFIRMED:
            record.confirmed_at = utc_now()
        observe_attestation(outcome.value)
        log.info(
            "attest %s -> %s after %d attempt(s)%s",
            record.fingerprint, outcome.value, record.attempts,
            f" ({record.error_kind}: {record.error})" if record.error and outcome == AttestationOutcome.FAILED else "",
        )
        return record

    async def attest(self, fingerprint: str, on_receipt: Optional[ReceiptCallback] = None) -> AttestationRecord:
        record = AttestationRecord(fingerprint=fingerprint)
        if not is_fingerprint(fingerprint):
            record.error = f"malformed fingerprint {fingerprint!r}"
            record.error_kind = PermanentKind.MALFORMED.value
            return self._finish(record, AttestationOutcome.FAILED)

        policy = self.policy
        n = len(self.endpoints)
        for attempt in range(policy.max_attempts):
            ep = self.endpoints[attempt % n]
            record.attempts = attempt + 1
            record.endpoint_used = ep.name
            try:
                try:
                    found = await self._bounded(ep, "exists", ep.exists(fingerprint), policy.query_timeout)
                except TransientLedgerError as e:
                    # Unknown; the ledger rejects duplicates so submitting is safe.
                    log.warning("exists query failed on %s, proceeding to submit: %s", ep.name, e)
                    found = None
                if found:
                    observe_ledger_attempt(ep.name, "ok")
                    if record.receipt_id is not None:
                        return self._finish(record, AttestationOutcome.CONFIRMED)
                    return self._finish(record, AttestationOutcome.ALREADY_RECORDED)

                if record.receipt_id is None:
                    receipt_id = await self._bounded(ep, "submit", ep.submit(fingerprint), policy.submit_timeout)
                    record.receipt_id = receipt_id
                    record.submitted_at = utc_now()
                    if on_receipt is not None:
                        res = on_receipt(record)
                        if inspect.isawaitable(res):
                            await res

                confirmed = await self._bounded(ep, "confirm", ep.confirm(record.receipt_id), policy.confirm_timeout)
                if not confirmed:
                    raise TransientLedgerError(f"receipt {record.receipt_id} not confirmed on {ep.name}")
                observe_ledger_attempt(ep.name, "ok")
                return self._finish(record, AttestationOutcome.CONFIRMED)
            except PermanentLedgerError as e:
                observe_ledger_attempt(ep.name, "permanent")
                record.error = str(e)
                record.error_kind = e.kind.value
                return self._finish(record, AttestationOutcome.FAILED)
            except TransientLedgerError as e:
                observe_ledger_attempt(ep.name, "transient")
                record.error = str(e)
                record.error_kind = "transient"
                if attempt + 1 < policy.max_attempts:
                    delay = policy.delay_for(attempt)
                    log.warning("attempt %d on %s failed (%s); retrying in %.2fs", attempt + 1, ep.name, e, delay)
                    await self._sleep(delay)
            except Exception as e:
                # a misbehaving endpoint counts against this attempt only
                observe_ledger_attempt(ep.name, "unexpected")
                record.error = f"{type(e).__name__}: {e}"
                record.error_kind = "unexpected"
                log.exception("unexpected error from %s during attempt %d", ep.name, attempt + 1)
                if attempt + 1 < policy.max_attempts:
                    await self._sleep(policy.delay_for(attempt))

        return self._finish(record, AttestationOutcome.FAILED)


__all__ = ["RetryPolicy", "AttestationSubmitter", "ReceiptCallback"]
