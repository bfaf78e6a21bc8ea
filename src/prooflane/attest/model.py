from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime, timezone
from enum import Enum


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class AttestationOutcome(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ALREADY_RECORDED = "already_recorded"
    FAILED = "failed"


class AttestationRecord(BaseModel):
    fingerprint: str
    endpoint_used: Optional[str] = None
    submitted_at: str = Field(default_factory=utc_now)
    confirmed_at: Optional[str] = None
    outcome: AttestationOutcome = AttestationOutcome.PENDING
    receipt_id: Optional[str] = None
    attempts: int = 0
    # Last observed error; error_kind is a permanent kind, "transient", "unexpected",
    # or how the session cut the attempt short ("phase_timeout", "cancelled")
    error: Optional[str] = None
    error_kind: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.outcome != AttestationOutcome.PENDING

    @property
    def succeeded(self) -> bool:
        return self.outcome in (AttestationOutcome.CONFIRMED, AttestationOutcome.ALREADY_RECORDED)
