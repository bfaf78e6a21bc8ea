import asyncio
import threading
import time
from typing import Dict, Optional, Protocol, Tuple

import redis

from ..config import REDIS_URL, SESSION_TTL_SEC
from ..utils.logging import get_logger
from .session import Session

log = get_logger("store")


class SessionStore(Protocol):
    def get(self, session_id: str) -> Optional[Session]: ...
    def put(self, session: Session) -> None: ...
    def delete(self, session_id: str) -> bool: ...
    def purge_expired(self, now: Optional[float] = None) -> int: ...


class InMemorySessionStore:
    """Sessions keyed by id; each ``put`` restarts the entry's TTL."""

    def __init__(self, ttl: float = SESSION_TTL_SEC, clock=time.time):
        self.ttl = ttl
        self._clock = clock
        self._lock = threading.Lock()
        self._items: Dict[str, Tuple[float, str]] = {}

    def put(self, session: Session) -> None:
        with self._lock:
            self._items[session.session_id] = (self._clock() + self.ttl, session.model_dump_json())

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            item = self._items.get(session_id)
        if item is None:
            return None
        expires_at, raw = item
        if expires_at <= self._clock():
            return None
        return Session.model_validate_json(raw)

    def delete(self, session_id: str) -> bool:
        with self._lock:
            return self._items.pop(session_id, None) is not None

    def purge_expired(self, now: Optional[float] = None) -> int:
        now = self._clock() if now is None else now
        with self._lock:
            dead = [k for k, (exp, _) in self._items.items() if exp <= now]
            for k in dead:
                del self._items[k]
        return len(dead)

    def count(self) -> int:
        """Entries held, expired ones included until purged."""
        with self._lock:
            return len(self._items)


class RedisSessionStore:
    """``SETEX workflow:{id}``; expiry is left to redis."""

    prefix = "workflow:"

    def __init__(self, ttl: int = SESSION_TTL_SEC, url: str = REDIS_URL, client=None):
        self.ttl = int(ttl)
        self.r = client if client is not None else redis.from_url(url, decode_responses=True)

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}{session_id}"

    def put(self, session: Session) -> None:
        self.r.setex(self._key(session.session_id), self.ttl, session.model_dump_json())

    def get(self, session_id: str) -> Optional[Session]:
        raw = self.r.get(self._key(session_id))
        if raw is None:
            return None
        return Session.model_validate_json(raw)

    def delete(self, session_id: str) -> bool:
        return self.r.delete(self._key(session_id)) == 1

    def purge_expired(self, now: Optional[float] = None) -> int:
        return 0


def store_from_config(cfg) -> SessionStore:
    if cfg.session_store == "redis":
        return RedisSessionStore(ttl=cfg.session_ttl, url=cfg.redis_url)
    return InMemorySessionStore(ttl=cfg.session_ttl)


async def run_expiry_loop(store: SessionStore, interval: float = 60.0, stop: Optional[asyncio.Event] = None) -> None:
    """Purge expired sessions every ``interval`` seconds until ``stop`` is set or the task is cancelled."""
    stop = stop or asyncio.Event()
    while not stop.is_set():
        try:
            n = store.purge_expired()
        except redis.RedisError as e:
            log.warning("session purge failed: %s", e)
        else:
            if n:
                log.info("purged %d expired session(s)", n)
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval)
        except asyncio.TimeoutError:
            pass
