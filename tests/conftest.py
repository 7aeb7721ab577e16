"""
Shared fixtures: an in-memory stand-in for the handful of Redis commands the
service uses, and a transport that records batches instead of sending them.
"""
from collections import defaultdict

import pytest
import redis

from neuvera.events import Event, EventType


class InMemoryRedis:
    def __init__(self):
        self.lists = defaultdict(list)
        self.sets = defaultdict(set)
        self.broken = False

    def _check(self):
        if self.broken:
            raise redis.ConnectionError("redis down")

    @staticmethod
    def _b(v):
        return v if isinstance(v, bytes) else str(v).encode("utf-8")

    def ping(self):
        self._check()
        return True

    def rpush(self, key, *values):
        self._check()
        self.lists[key].extend(self._b(v) for v in values)
        return len(self.lists[key])

    def lrange(self, key, start, end):
        self._check()
        items = self.lists[key]
        end = len(items) if end == -1 else end + 1
        return items[start:end]

    def lpop(self, key):
        self._check()
        items = self.lists[key]
        return items.pop(0) if items else None

    def blpop(self, key, timeout=0):
        value = self.lpop(key)
        return (self._b(key), value) if value is not None else None

    def sadd(self, key, *members):
        self._check()
        before = len(self.sets[key])
        self.sets[key].update(self._b(m) for m in members)
        return len(self.sets[key]) - before

    def srem(self, key, *members):
        self._check()
        for m in members:
            self.sets[key].discard(self._b(m))

    def sismember(self, key, member):
        self._check()
        return int(self._b(member) in self.sets[key])


class RecordingTransport:
    def __init__(self, ok=True):
        self.ok = ok
        self.batches = []
        self.posts = []

    def send(self, batch):
        self.batches.append(list(batch))
        return self.ok

    def post_json(self, url, data):
        self.posts.append((url, data))
        return True

    @property
    def sent(self):
        return [ev for b in self.batches for ev in b]


def make_event(i=0, **kw):
    data = dict(
        pixel_id="pixel-1",
        session_id="session-1",
        event_type=EventType.page_view,
        current_url=f"https://neuvera.ai/page/{i}",
        timestamp=1_700_000_000.0 + i,
    )
    data.update(kw)
    return Event(**data)


@pytest.fixture
def fake_redis():
    return InMemoryRedis()


@pytest.fixture
def recorder():
    return RecordingTransport()
