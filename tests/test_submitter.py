import asyncio

import pytest

from prooflane.attest.model import AttestationOutcome
from prooflane.attest.submitter import AttestationSubmitter, RetryPolicy
from prooflane.envelope.codec import fingerprint
from prooflane.ledger.errors import PermanentKind, PermanentLedgerError, TransientLedgerError
from prooflane.ledger.memory import InMemoryLedger

FP = fingerprint(b"\xab" * 256, b"\x01" * 32)
FAST = RetryPolicy(max_attempts=4, base_delay=0.5, max_delay=3.0, query_timeout=0.02, submit_timeout=0.02, confirm_timeout=0.02)


class Sleeps:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


def _attest(submitter, fp=FP, **kw):
    return asyncio.run(submitter.attest(fp, **kw))


def test_scenario_confirms_after_one_submit_and_confirm():
    ledger = InMemoryLedger()
    ep = ledger.endpoint("a")
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert ep.calls == ["exists", "submit", "confirm"]
    assert rec.attempts == 1
    assert rec.receipt_id and rec.confirmed_at
    assert rec.endpoint_used == "a"


def test_second_attest_is_already_recorded():
    ledger = InMemoryLedger()
    ep = ledger.endpoint("a")
    sub = AttestationSubmitter([ep], FAST, sleep=Sleeps())
    assert _attest(sub).outcome == AttestationOutcome.CONFIRMED
    ep.calls.clear()
    rec = _attest(sub)
    assert rec.outcome == AttestationOutcome.ALREADY_RECORDED
    assert ep.calls == ["exists"]
    assert ledger.submissions == [FP]


@pytest.mark.parametrize("n_failing", [1, 2, 3])
def test_rotates_past_timing_out_endpoints(n_failing):
    ledger = InMemoryLedger()
    eps = [ledger.endpoint(f"bad{i}", mode="hang") for i in range(n_failing)] + [ledger.endpoint("good")]
    sleeps = Sleeps()
    rec = _attest(AttestationSubmitter(eps, FAST, sleep=sleeps))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert rec.attempts == n_failing + 1
    assert rec.endpoint_used == "good"
    assert sleeps.delays == [min(0.5 * 2 ** i, 3.0) for i in range(n_failing)]


@pytest.mark.parametrize("n_failing", [4, 5])
def test_exhausts_budget_when_too_many_endpoints_fail(n_failing):
    ledger = InMemoryLedger()
    eps = [ledger.endpoint(f"bad{i}", mode="hang") for i in range(n_failing)] + [ledger.endpoint("good")]
    sleeps = Sleeps()
    rec = _attest(AttestationSubmitter(eps, FAST, sleep=sleeps))
    assert rec.outcome == AttestationOutcome.FAILED
    assert rec.attempts == 4
    assert rec.error_kind == "transient"
    assert "timed out" in rec.error
    # no sleep after the final attempt
    assert sleeps.delays == [0.5, 1.0, 2.0]
    assert ledger.submissions == []


def test_rotation_wraps_around():
    ledger = InMemoryLedger()
    down = ledger.endpoint("down", mode="down")
    flaky = ledger.endpoint("flaky", mode="down")
    rec = _attest(AttestationSubmitter([down, flaky], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.FAILED
    assert down.calls == ["exists", "submit", "exists", "submit"]
    assert flaky.calls == ["exists", "submit", "exists", "submit"]


def test_permanent_error_stops_without_rotation():
    ledger = InMemoryLedger(attestor="the-attestor")
    intruder = ledger.endpoint("a", attestor="someone-else")
    other = ledger.endpoint("b")
    sleeps = Sleeps()
    rec = _attest(AttestationSubmitter([intruder, other], FAST, sleep=sleeps))
    assert rec.outcome == AttestationOutcome.FAILED
    assert rec.error_kind == PermanentKind.UNAUTHORIZED.value
    assert rec.attempts == 1
    assert other.calls == []
    assert sleeps.delays == []


def test_malformed_fingerprint_makes_no_calls():
    ledger = InMemoryLedger()
    ep = ledger.endpoint("a")
    rec = _attest(AttestationSubmitter([ep], FAST), fp="0xnothex")
    assert rec.outcome == AttestationOutcome.FAILED
    assert rec.error_kind == "malformed"
    assert rec.attempts == 0
    assert ep.calls == []


class Scripted:
    """Endpoint whose responses are queued per operation."""

    def __init__(self, name="scripted", exists=(), submit=(), confirm=()):
        self.name = name
        self.script = {"exists": list(exists), "submit": list(submit), "confirm": list(confirm)}
        self.calls = []

    async def _next(self, op):
        self.calls.append(op)
        item = self.script[op].pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def exists(self, fp):
        return await self._next("exists")

    async def submit(self, fp):
        return await self._next("submit")

    async def confirm(self, receipt_id):
        return await self._next("confirm")


def test_failed_exists_query_proceeds_to_submit():
    ep = Scripted(exists=[TransientLedgerError("rpc down")], submit=["0xr1"], confirm=[True])
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert ep.calls == ["exists", "submit", "confirm"]


def test_unconfirmed_receipt_is_not_resubmitted():
    ep = Scripted(exists=[False, False], submit=["0xr1"], confirm=[False, True])
    receipts = []
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()), on_receipt=lambda r: receipts.append(r.receipt_id))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert ep.calls == ["exists", "submit", "confirm", "exists", "confirm"]
    assert receipts == ["0xr1"]
    assert rec.attempts == 2


def test_exists_after_own_receipt_counts_as_confirmed():
    ep = Scripted(exists=[False, True], submit=["0xr1"], confirm=[TransientLedgerError("node lagging")])
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert rec.receipt_id == "0xr1"


def test_duplicate_rejection_is_permanent():
    ep = Scripted(exists=[False], submit=[PermanentLedgerError(PermanentKind.DUPLICATE)])
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.FAILED
    assert rec.error_kind == "duplicate"


def test_async_receipt_callback_is_awaited():
    ledger = InMemoryLedger()
    seen = []

    async def on_receipt(rec):
        seen.append((rec.receipt_id, rec.outcome))

    rec = _attest(AttestationSubmitter([ledger.endpoint()], FAST), on_receipt=on_receipt)
    assert seen == [(rec.receipt_id, AttestationOutcome.PENDING)]


def test_policy_validation_and_delays():
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    p = RetryPolicy(base_delay=1.0, max_delay=5.0)
    assert [p.delay_for(i) for i in range(5)] == [1.0, 2.0, 4.0, 5.0, 5.0]
    with pytest.raises(ValueError):
        AttestationSubmitter([], p)


def test_unexpected_endpoint_error_rotates_to_next_endpoint():
    broken = Scripted("broken", exists=[ValueError("Expecting value: line 1 column 1")])
    good = InMemoryLedger().endpoint("good")
    sleeps = Sleeps()
    rec = _attest(AttestationSubmitter([broken, good], FAST, sleep=sleeps))
    assert rec.outcome == AttestationOutcome.CONFIRMED
    assert rec.endpoint_used == "good"
    assert rec.attempts == 2
    assert sleeps.delays == [0.5]


def test_unexpected_errors_exhaust_budget_as_failed_record():
    ep = Scripted(exists=[KeyError("attested")] * 4)
    rec = _attest(AttestationSubmitter([ep], FAST, sleep=Sleeps()))
    assert rec.outcome == AttestationOutcome.FAILED
    assert rec.attempts == 4
    assert rec.error_kind == "unexpected"
    assert rec.error.startswith("KeyError")
