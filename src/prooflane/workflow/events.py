"""Typed session events and the bounded per-session channel that carries them.

The orchestrator is the only publisher; a single consumer drains the channel
with ``async for``. ``publish`` waits when the channel is full, so a consumer
that stops reading stalls the session rather than losing events.
"""
from __future__ import annotations

import asyncio
import json
from typing import AsyncIterator, List, Literal, Optional, Union

from pydantic import BaseModel, Field

from ..attest.model import utc_now
from .session import Phase, SessionSummary


class StatusEvent(BaseModel):
    type: Literal["status"] = "status"
    phase: Phase
    progress: int


class LogEvent(BaseModel):
    type: Literal["log"] = "log"
    message: str
    timestamp: str = Field(default_factory=utc_now)


class AttestationEvent(BaseModel):
    type: Literal["attestation"] = "attestation"
    receipt_id: str
    fingerprint: str
    explorer_url: Optional[str] = None


class CompleteEvent(BaseModel):
    type: Literal["complete"] = "complete"
    summary: SessionSummary


class ErrorEvent(BaseModel):
    type: Literal["error"] = "error"
    reason: str
    phase: Phase


SessionEvent = Union[StatusEvent, LogEvent, AttestationEvent, CompleteEvent, ErrorEvent]


def to_sse(event: SessionEvent) -> str:
    return f"event: {event.type}\ndata: {event.model_dump_json()}\n\n"


def sse_payload(frame: str) -> dict:
    """Parse the ``data:`` line of a single SSE frame."""
    for line in frame.splitlines():
        if line.startswith("data: "):
            return json.loads(line[len("data: "):])
    raise ValueError("frame has no data line")


class ChannelClosed(RuntimeError):
    pass


_CLOSED = object()


class EventChannel:
    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def publish(self, event: SessionEvent) -> None:
        if self._closed:
            raise ChannelClosed("event channel is closed")
        await self._queue.put(event)

    def close(self) -> None:
        """Never blocks. When the queue is full the sentinel is dropped and
        readers stop once they have drained what is left."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put_nowait(_CLOSED)
        except asyncio.QueueFull:
            pass

    def __aiter__(self) -> AsyncIterator[SessionEvent]:
        return self

    async def __anext__(self) -> SessionEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def collect(self) -> List[SessionEvent]:
        return [e async for e in self]


__all__ = [
    "StatusEvent", "LogEvent", "AttestationEvent", "CompleteEvent", "ErrorEvent",
    "SessionEvent", "EventChannel", "ChannelClosed", "to_sse", "sse_payload",
]
