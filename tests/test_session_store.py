import asyncio

from prooflane.workflow.session import Session
from prooflane.workflow.store import InMemorySessionStore, RedisSessionStore, run_expiry_loop


class Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_memory_store_ttl_and_purge():
    clock = Clock()
    store = InMemorySessionStore(ttl=60, clock=clock)
    s = Session(kind="plonk")
    store.put(s)
    assert store.get(s.session_id).kind == "plonk"
    clock.now += 61
    assert store.get(s.session_id) is None
    assert store.count() == 1
    assert store.purge_expired() == 1
    assert store.count() == 0


def test_put_refreshes_ttl():
    clock = Clock()
    store = InMemorySessionStore(ttl=60, clock=clock)
    s = Session()
    store.put(s)
    clock.now += 50
    store.put(s)
    clock.now += 50
    assert store.get(s.session_id) is not None
    assert store.purge_expired(now=clock.now + 11) == 1


def test_stored_copy_is_detached():
    store = InMemorySessionStore()
    s = Session()
    store.put(s)
    s.append_log("after put")
    assert store.get(s.session_id).log == []
    assert store.delete(s.session_id)
    assert not store.delete(s.session_id)


class FakeRedis:
    def __init__(self):
        self.data = {}
        self.ttls = {}

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0


def test_redis_store_uses_setex():
    r = FakeRedis()
    store = RedisSessionStore(ttl=120, client=r)
    s = Session(kind="stark")
    store.put(s)
    key = f"workflow:{s.session_id}"
    assert r.ttls[key] == 120
    assert store.get(s.session_id).kind == "stark"
    assert store.get("missing") is None
    assert store.delete(s.session_id)
    assert store.purge_expired() == 0


def test_expiry_loop_purges_until_stopped():
    clock = Clock()
    store = InMemorySessionStore(ttl=1, clock=clock)
    store.put(Session())
    clock.now += 5

    async def go():
        stop = asyncio.Event()
        task = asyncio.create_task(run_expiry_loop(store, interval=0.01, stop=stop))
        await asyncio.sleep(0.05)
        stop.set()
        await asyncio.wait_for(task, 1)

    asyncio.run(go())
    assert store.count() == 0


def test_empty_store_is_still_a_store():
    store = InMemorySessionStore()
    assert store.count() == 0
    # an empty store must not read as "no store given"
    assert (store or None) is store
