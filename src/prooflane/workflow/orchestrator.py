"""Per-session workflow: Collecting -> Verifying -> Attesting -> Complete.

Phases run strictly in sequence, each bounded by its own timeout. Item-level
problems (undecodable envelopes, rejected proofs, failed attestations) are
recorded on the session and never abort a phase. A missing verification
capability, a phase timeout, a failing candidate source or any unexpected
error moves the session to ``errored`` with everything gathered so far kept.
Verified fingerprints that never reached the ledger are listed as
``unattempted``. Cancelling ``run`` seals the session as errored
(``cancelled``) and stores it without waiting on the channel.

Every phase change, log line and newly obtained receipt is published to the
session's ``EventChannel`` in the order it happens. The channel is bounded and
``publish`` waits, so the session only advances as fast as its consumer reads.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..attest.model import AttestationOutcome, AttestationRecord
from ..attest.submitter import AttestationSubmitter
from ..envelope.codec import DecodeError, ProofEnvelope, decode
from ..obs.prom import observe_phase
from ..utils.logging import get_logger
from ..verify.dispatcher import DispatchConfigError, VerifierDispatcher
from .events import AttestationEvent, CompleteEvent, ErrorEvent, EventChannel, LogEvent, StatusEvent
from .session import Candidate, CandidateStatus, Phase, Session, SessionSummary
from .sources import CandidateSource, RawCandidate
from .store import SessionStore

log = get_logger("workflow")


@dataclass(frozen=True)
class PhaseTimeouts:
    collect: float = 60.0
    verify: float = 30.0
    attest: float = 120.0

    @classmethod
    def from_config(cls, cfg) -> "PhaseTimeouts":
        return cls(collect=cfg.collect_timeout, verify=cfg.verify_timeout, attest=cfg.attest_timeout)


class _SessionAbort(Exception):
    def __init__(self, reason: str, kind: str = "aborted"):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind


class Orchestrator:
    def __init__(
        self,
        session: Session,
        source: CandidateSource,
        dispatcher: VerifierDispatcher,
        submitter: AttestationSubmitter,
        store: SessionStore,
        timeouts: Optional[PhaseTimeouts] = None,
        channel: Optional[EventChannel] = None,
        inter_item_delay: float = 0.25,
        explorer_url_template: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.session = session
        self.source = source
        self.dispatcher = dispatcher
        self.submitter = submitter
        self.store = store
        self.timeouts = timeouts or PhaseTimeouts()
        self.channel = channel or EventChannel()
        self.inter_item_delay = inter_item_delay
        self.explorer_url_template = explorer_url_template
        self._sleep = sleep
        self._envelopes: Dict[int, ProofEnvelope] = {}
        # attesting progress, read back when the phase times out
        self._cursor = 0
        self._in_flight: Optional[str] = None
        self._in_flight_receipt: Optional[AttestationRecord] = None

    # -- event helpers -------------------------------------------------

    async def _log(self, message: str) -> None:
        entry = self.session.append_log(message)
        log.info("[%s] %s", self.session.session_id[:8], message)
        await self.channel.publish(LogEvent(message=entry.message, timestamp=entry.timestamp))

    async def _enter(self, phase: Phase) -> None:
        self.session.enter(phase)
        self.store.put(self.session)
        await self.channel.publish(StatusEvent(phase=phase, progress=self.session.progress_percent))

    def explorer_url(self, receipt_id: str) -> Optional[str]:
        if not self.explorer_url_template:
            return None
        return self.explorer_url_template.format(receipt_id=receipt_id)

    # -- run -----------------------------------------------------------

    async def _timed(self, phase: Phase, coro: Awaitable, timeout: float):
        start = time.monotonic()
        try:
            return await asyncio.wait_for(coro, timeout)
        except asyncio.TimeoutError:
            raise _SessionAbort(f"{phase.value} phase timed out after {timeout}s", kind="phase_timeout") from None
        finally:
            observe_phase(phase.value, time.monotonic() - start)

    async def run(self) -> SessionSummary:
        s = self.session
        self.store.put(s)
        try:
            await self._enter(Phase.COLLECTING)
            await self._timed(Phase.COLLECTING, self._collect(), self.timeouts.collect)
            await self._enter(Phase.VERIFYING)
            await self._timed(Phase.VERIFYING, self._verify(), self.timeouts.verify)
            await self._enter(Phase.ATTESTING)
            await self._timed(Phase.ATTESTING, self._attest(), self.timeouts.attest)
            summary = s.summary()
            await self._log(
                f"done: {summary.attested} attested, {summary.already_recorded} already recorded, "
                f"{summary.failed_attestation} failed"
            )
            await self._enter(Phase.COMPLETE)
            await self.channel.publish(CompleteEvent(summary=s.summary()))
        except _SessionAbort as e:
            await self._abort(e.reason, e.kind)
        except DispatchConfigError as e:
            await self._abort(f"dispatch configuration error: {e}", "dispatch_config")
        except asyncio.CancelledError:
            # no awaiting here: the consumer may be gone
            if not s.sealed:
                self._seal_errored("cancelled", "cancelled")
            raise
        except Exception as e:
            if s.sealed:
                raise
            log.exception("[%s] unexpected error during %s", s.session_id[:8], s.phase.value)
            await self._abort(f"unexpected error: {type(e).__name__}: {e}", "unexpected")
        finally:
            self.store.put(s)
            self.channel.close()
        return s.summary()

    def _seal_errored(self, reason: str, kind: str):
        """Settle partial results and move the session to ``errored``."""
        s = self.session
        phase = s.phase
        if phase == Phase.VERIFYING:
            for cand in s.candidates:
                if cand.status == CandidateStatus.COLLECTED:
                    cand.reason = f"not verified: {reason}"
            # verified but never handed to the ledger
            if s.verified_fingerprints:
                s.mark_unattempted(list(s.verified_fingerprints))
        elif phase == Phase.ATTESTING:
            self._settle_interrupted_attesting(reason, kind)
        entry = s.append_log(f"session errored during {phase.value}: {reason}")
        log.error("[%s] %s", s.session_id[:8], reason)
        s.fail(reason)
        self.store.put(s)
        return phase, entry

    async def _abort(self, reason: str, kind: str) -> None:
        phase, entry = self._seal_errored(reason, kind)
        await self.channel.publish(LogEvent(message=entry.message, timestamp=entry.timestamp))
        await self.channel.publish(ErrorEvent(reason=reason, phase=phase))

    # -- phases --------------------------------------------------------

    async def _collect(self) -> None:
        s = self.session
        try:
            raws: List[RawCandidate] = await self.source.collect(s.kind)
        except Exception as e:
            raise _SessionAbort(f"candidate source failed: {type(e).__name__}: {e}") from e

        counts: Dict[str, int] = {}
        for i, raw in enumerate(raws):
            cand = Candidate(index=i, label=raw.label)
            try:
                env = decode(raw.data)
            except DecodeError as e:
                cand.status = CandidateStatus.DECODE_FAILED
                cand.reason = e.reason
                s.add_candidate(cand)
                await self._log(f"{raw.label}: not a valid envelope ({e.reason})")
                counts["undecodable"] = counts.get("undecodable", 0) + 1
                continue
            cand.proof_system = env.proof_system.label
            cand.program_id = env.program_id
            cand.fingerprint = env.fingerprint
            counts[cand.proof_system] = counts.get(cand.proof_system, 0) + 1
            if s.kind != "all" and cand.proof_system != s.kind:
                cand.status = CandidateStatus.SKIPPED
                cand.reason = f"{cand.proof_system} envelope in a {s.kind} session"
            else:
                self._envelopes[i] = env
            s.add_candidate(cand)

        if not raws:
            await self._log("collected 0 candidates")
        else:
            per_kind = ", ".join(f"{k}={v}" for k, v in sorted(counts.items()))
            await self._log(f"collected {len(raws)} candidate(s): {per_kind}")
        skipped = sum(1 for c in s.candidates if c.status == CandidateStatus.SKIPPED)
        if skipped:
            await self._log(f"skipping {skipped} candidate(s) outside kind {s.kind}")

    async def _verify(self) -> None:
        s = self.session
        ok = failed = 0
        for cand in s.candidates:
            env = self._envelopes.get(cand.index)
            if env is None:
                continue
            outcome = await self.dispatcher.verify(env)
            cand.diagnostics = dict(outcome.diagnostics)
            if outcome.valid:
                cand.status = CandidateStatus.VERIFIED
                ok += 1
                if env.fingerprint in s.verified_fingerprints:
                    await self._log(f"{cand.label}: verified ({cand.proof_system}), duplicate of an earlier candidate")
                    continue
                s.mark_verified(env.fingerprint)
                note = " [structural check only]" if outcome.diagnostics.get("structural_only") else ""
                await self._log(f"{cand.label}: verified ({cand.proof_system}) {env.fingerprint}{note}")
            else:
                cand.status = CandidateStatus.REJECTED
                cand.reason = str(outcome.diagnostics.get("reason", "proof rejected"))
                failed += 1
                await self._log(f"{cand.label}: rejected ({cand.proof_system}): {cand.reason}")
        gas = sum(int(c.diagnostics.get("gas_estimate", 0)) for c in s.candidates if c.status == CandidateStatus.VERIFIED)
        await self._log(f"verified {ok}, failed {failed}; estimated gas {gas}")

    async def _on_receipt(self, record: AttestationRecord) -> None:
        self._in_flight_receipt = record.model_copy()
        await self.channel.publish(AttestationEvent(
            receipt_id=record.receipt_id,
            fingerprint=record.fingerprint,
            explorer_url=self.explorer_url(record.receipt_id),
        ))

    async def _attest(self) -> None:
        s = self.session
        queue = list(s.verified_fingerprints)
        if not queue:
            await self._log("nothing to attest")
            return
        for i, fp in enumerate(queue):
            self._cursor = i + 1
            self._in_flight = fp
            self._in_flight_receipt = None
            rec = await self.submitter.attest(fp, on_receipt=self._on_receipt)
            s.record_attestation(rec)
            self._in_flight = None
            if rec.outcome == AttestationOutcome.FAILED:
                await self._log(f"attest {fp}: failed after {rec.attempts} attempt(s): {rec.error}")
            else:
                await self._log(f"attest {fp}: {rec.outcome.value} via {rec.endpoint_used}")
            if rec.outcome == AttestationOutcome.CONFIRMED and i + 1 < len(queue):
                await self._sleep(self.inter_item_delay)

    def _settle_interrupted_attesting(self, reason: str, kind: str) -> None:
        s = self.session
        queue = list(s.verified_fingerprints)
        if self._in_flight is not None:
            rec = self._in_flight_receipt or AttestationRecord(fingerprint=self._in_flight)
            rec.outcome = AttestationOutcome.FAILED
            rec.error = f"abandoned: {reason}"
            rec.error_kind = kind
            s.record_attestation(rec)
            self._in_flight = None
        remaining = queue[self._cursor:]
        if remaining:
            s.mark_unattempted(remaining)


def build_orchestrator(
    cfg,
    session: Session,
    source: CandidateSource,
    dispatcher: VerifierDispatcher,
    submitter: AttestationSubmitter,
    store: SessionStore,
    channel: Optional[EventChannel] = None,
) -> Orchestrator:
    return Orchestrator(
        session,
        source,
        dispatcher,
        submitter,
        store,
        timeouts=PhaseTimeouts.from_config(cfg),
        channel=channel or EventChannel(cfg.event_channel_size),
        inter_item_delay=cfg.inter_item_delay,
        explorer_url_template=cfg.explorer_tx_url,
    )


__all__ = ["Orchestrator", "PhaseTimeouts", "build_orchestrator"]
