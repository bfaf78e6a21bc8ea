from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any, List
from enum import Enum
import uuid

from ..attest.model import AttestationRecord, AttestationOutcome, utc_now
from ..envelope.codec import ProofSystem

SESSION_KINDS = ("all",) + tuple(p.label for p in ProofSystem)


class Phase(str, Enum):
    COLLECTING = "collecting"
    VERIFYING = "verifying"
    ATTESTING = "attesting"
    COMPLETE = "complete"
    ERRORED = "errored"


PHASE_PROGRESS = {
    Phase.COLLECTING: 0,
    Phase.VERIFYING: 33,
    Phase.ATTESTING: 66,
    Phase.COMPLETE: 100,
}


class CandidateStatus(str, Enum):
    COLLECTED = "collected"
    DECODE_FAILED = "decode_failed"
    SKIPPED = "skipped"
    VERIFIED = "verified"
    REJECTED = "rejected"


class SessionSealed(RuntimeError):
    """Raised when a complete or errored session is mutated."""


class LogEntry(BaseModel):
    message: str
    timestamp: str = Field(default_factory=utc_now)


class Candidate(BaseModel):
    index: int
    label: str
    status: CandidateStatus = CandidateStatus.COLLECTED
    proof_system: Optional[str] = None
    program_id: Optional[int] = None
    fingerprint: Optional[str] = None
    reason: Optional[str] = None
    diagnostics: Dict[str, Any] = Field(default_factory=dict)


class SessionSummary(BaseModel):
    session_id: str
    kind: str
    phase: Phase
    candidates: int = 0
    verified: int = 0
    failed_verification: int = 0
    attested: int = 0
    already_recorded: int = 0
    failed_attestation: int = 0
    unattempted: int = 0
    skipped: int = 0
    gas_estimate_total: int = 0
    error: Optional[str] = None
    log: List[LogEntry] = Field(default_factory=list)


class Session(BaseModel):
    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: str = "all"
    phase: Phase = Phase.COLLECTING
    progress_percent: int = 0
    log: List[LogEntry] = Field(default_factory=list)
    candidates: List[Candidate] = Field(default_factory=list)
    verified_fingerprints: List[str] = Field(default_factory=list)
    attestations: List[AttestationRecord] = Field(default_factory=list)
    unattempted: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    @field_validator("kind")
    @classmethod
    def _known_kind(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SESSION_KINDS:
            raise ValueError(f"kind must be one of {SESSION_KINDS}")
        return v

    @property
    def sealed(self) -> bool:
        return self.phase in (Phase.COMPLETE, Phase.ERRORED)

    def _touch(self):
        if self.sealed:
            raise SessionSealed(f"session {self.session_id} is {self.phase.value}")
        self.updated_at = utc_now()

    def append_log(self, message: str) -> LogEntry:
        self._touch()
        entry = LogEntry(message=message)
        self.log.append(entry)
        return entry

    def enter(self, phase: Phase):
        self._touch()
        self.phase = phase
        if phase in PHASE_PROGRESS:
            self.progress_percent = PHASE_PROGRESS[phase]

    def fail(self, reason: str):
        # progress stays where the failing phase left it
        self._touch()
        self.error = reason
        self.phase = Phase.ERRORED

    def add_candidate(self, candidate: Candidate):
        self._touch()
        self.candidates.append(candidate)

    def mark_verified(self, fingerprint: str):
        self._touch()
        self.verified_fingerprints.append(fingerprint)

    def record_attestation(self, record: AttestationRecord):
        self._touch()
        self.attestations.append(record)

    def mark_unattempted(self, fingerprints: List[str]):
        self._touch()
        self.unattempted.extend(fingerprints)

    def summary(self) -> SessionSummary:
        by_status: Dict[CandidateStatus, int] = {}
        for c in self.candidates:
            by_status[c.status] = by_status.get(c.status, 0) + 1
        by_outcome: Dict[AttestationOutcome, int] = {}
        for r in self.attestations:
            by_outcome[r.outcome] = by_outcome.get(r.outcome, 0) + 1
        gas = sum(int(c.diagnostics.get("gas_estimate", 0)) for c in self.candidates if c.status == CandidateStatus.VERIFIED)
        return SessionSummary(
            session_id=self.session_id,
            kind=self.kind,
            phase=self.phase,
            candidates=len(self.candidates),
            verified=by_status.get(CandidateStatus.VERIFIED, 0),
            failed_verification=by_status.get(CandidateStatus.REJECTED, 0) + by_status.get(CandidateStatus.DECODE_FAILED, 0),
            attested=by_outcome.get(AttestationOutcome.CONFIRMED, 0),
            already_recorded=by_outcome.get(AttestationOutcome.ALREADY_RECORDED, 0),
            failed_attestation=by_outcome.get(AttestationOutcome.FAILED, 0),
            unattempted=len(self.unattempted),
            skipped=by_status.get(CandidateStatus.SKIPPED, 0),
            gas_estimate_total=gas,
            error=self.error,
            log=list(self.log),
        )
