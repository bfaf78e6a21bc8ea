from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Protocol, Sequence, Tuple

from ..utils.logging import get_logger

log = get_logger("sources")

ENVELOPE_PATTERNS = ("*.bin", "*.upf")


@dataclass(frozen=True)
class RawCandidate:
    label: str
    data: bytes


class CandidateSource(Protocol):
    async def collect(self, kind: str) -> List[RawCandidate]: ...


class StaticCandidateSource:
    def __init__(self, items: Iterable[Tuple[str, bytes]]):
        self.items = [RawCandidate(label, bytes(data)) for label, data in items]

    async def collect(self, kind: str) -> List[RawCandidate]:
        return list(self.items)


class DirectoryCandidateSource:
    """Envelope files in one directory, ordered by file name.

    The proof system is read from each envelope's tag, never from the file
    name, so ``kind`` filtering happens after decoding.
    """

    def __init__(self, root: str, patterns: Sequence[str] = ENVELOPE_PATTERNS):
        self.root = Path(root)
        self.patterns = tuple(patterns)

    def _read_all(self) -> List[RawCandidate]:
        if not self.root.is_dir():
            log.warning("candidate directory %s does not exist; nothing to collect", self.root)
            return []
        paths = sorted({p for pat in self.patterns for p in self.root.glob(pat) if p.is_file()}, key=lambda p: p.name)
        return [RawCandidate(p.name, p.read_bytes()) for p in paths]

    async def collect(self, kind: str) -> List[RawCandidate]:
        return await asyncio.to_thread(self._read_all)


__all__ = ["RawCandidate", "CandidateSource", "StaticCandidateSource", "DirectoryCandidateSource", "ENVELOPE_PATTERNS"]
