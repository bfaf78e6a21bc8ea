import asyncio

import pytest

from prooflane.workflow.events import ChannelClosed, EventChannel, LogEvent, StatusEvent, sse_payload, to_sse
from prooflane.workflow.session import Phase
from prooflane.workflow.sources import DirectoryCandidateSource


def test_directory_source_reads_envelope_files_by_name(tmp_path):
    (tmp_path / "b.upf").write_bytes(b"B")
    (tmp_path / "a.bin").write_bytes(b"A")
    (tmp_path / "notes.txt").write_bytes(b"ignored")
    (tmp_path / "c.bin").mkdir()
    got = asyncio.run(DirectoryCandidateSource(str(tmp_path)).collect("all"))
    assert [(c.label, c.data) for c in got] == [("a.bin", b"A"), ("b.upf", b"B")]


def test_missing_directory_is_empty(tmp_path):
    assert asyncio.run(DirectoryCandidateSource(str(tmp_path / "nope")).collect("all")) == []


def test_channel_delivers_in_order_then_stops():
    async def go():
        ch = EventChannel(maxsize=2)

        async def produce():
            for i in range(5):
                await ch.publish(LogEvent(message=f"m{i}"))
            ch.close()

        producer = asyncio.create_task(produce())
        got = [e.message async for e in ch]
        await producer
        with pytest.raises(ChannelClosed):
            await ch.publish(LogEvent(message="late"))
        # a second iteration ends immediately
        assert await ch.collect() == []
        return got

    assert asyncio.run(go()) == ["m0", "m1", "m2", "m3", "m4"]


def test_close_on_full_channel_does_not_block():
    async def go():
        ch = EventChannel(maxsize=2)
        await ch.publish(LogEvent(message="m0"))
        await ch.publish(LogEvent(message="m1"))
        ch.close()
        assert ch.closed
        return [e.message async for e in ch]

    assert asyncio.run(asyncio.wait_for(go(), 1.0)) == ["m0", "m1"]


def test_sse_frame():
    frame = to_sse(StatusEvent(phase=Phase.VERIFYING, progress=33))
    assert frame.startswith("event: status\n")
    assert frame.endswith("\n\n")
    assert sse_payload(frame) == {"type": "status", "phase": "verifying", "progress": 33}
