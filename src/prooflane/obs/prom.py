"""Prometheus instrumentation for the proof pipeline.

Labels are kept to small closed sets (proof system, outcome, endpoint name,
phase) to avoid cardinality explosion; fingerprints never become labels.
"""
from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
    CONTENT_TYPE_LATEST,
)

# Registry must be created before metric objects reference it.
REGISTRY = CollectorRegistry()

VERIFICATIONS = Counter(
    "prooflane_verifications_total",
    "Envelope verifications by proof system and result.",
    ["proof_system", "result"],
    registry=REGISTRY,
)
ATTESTATIONS = Counter(
    "prooflane_attestations_total",
    "Terminal attestation outcomes.",
    ["outcome"],
    registry=REGISTRY,
)
LEDGER_ATTEMPTS = Counter(
    "prooflane_ledger_attempts_total",
    "Ledger attempts per endpoint and result (ok, transient, permanent, unexpected).",
    ["endpoint", "result"],
    registry=REGISTRY,
)
PHASE_SECONDS = Histogram(
    "prooflane_phase_seconds",
    "Wall-clock time spent per workflow phase.",
    ["phase"],
    buckets=(0.01, 0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
    registry=REGISTRY,
)


def observe_verification(proof_system: str, valid: bool) -> None:
    VERIFICATIONS.labels(proof_system=proof_system, result="valid" if valid else "invalid").inc()


def observe_attestation(outcome: str) -> None:
    ATTESTATIONS.labels(outcome=outcome).inc()


def observe_ledger_attempt(endpoint: str, result: str) -> None:
    LEDGER_ATTEMPTS.labels(endpoint=endpoint, result=result).inc()


def observe_phase(phase: str, seconds: float) -> None:
    PHASE_SECONDS.labels(phase=phase).observe(seconds)


def prometheus_latest() -> tuple[bytes, str]:
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
