from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Set

from roadlimit_core.errors import StoreUnavailable
from roadlimit_core.sessions import InMemorySessionStore


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self._now = start

    def __call__(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)


class FakeRedis:
    """Subset of the redis-py client API, bytes in and out like a default client."""

    def __init__(self):
        self.values: Dict[str, bytes] = {}
        self.sets: Dict[str, Set[bytes]] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False
        # Commands that fail once, the next time they are called
        self.fail_next: Set[str] = set()

    def _check(self, command: str) -> None:
        if self.fail:
            raise ConnectionError("redis is down")
        if command in self.fail_next:
            self.fail_next.discard(command)
            raise ConnectionError(f"{command} failed")

    @staticmethod
    def _b(value: Any) -> bytes:
        return value if isinstance(value, bytes) else str(value).encode()

    def set(self, key: str, value: Any) -> bool:
        self._check("set")
        self.values[key] = self._b(value)
        self.ttls.pop(key, None)
        return True

    def setex(self, key: str, ttl: int, value: Any) -> bool:
        self._check("setex")
        self.values[key] = self._b(value)
        self.ttls[key] = ttl
        return True

    def get(self, key: str) -> Optional[bytes]:
        self._check("get")
        return self.values.get(key)

    def exists(self, key: str) -> int:
        self._check("exists")
        return int(key in self.values or key in self.sets)

    def delete(self, *keys: str) -> int:
        self._check("delete")
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
            if self.sets.pop(key, None) is not None:
                removed += 1
        return removed

    def sadd(self, key: str, *members: Any) -> int:
        self._check("sadd")
        s = self.sets.setdefault(key, set())
        before = len(s)
        s.update(self._b(m) for m in members)
        return len(s) - before

    def srem(self, key: str, *members: Any) -> int:
        self._check("srem")
        s = self.sets.get(key, set())
        removed = 0
        for m in members:
            if self._b(m) in s:
                s.discard(self._b(m))
                removed += 1
        if not s:
            self.sets.pop(key, None)
        return removed

    def smembers(self, key: str) -> Set[bytes]:
        self._check("smembers")
        return set(self.sets.get(key, set()))

    def expire(self, key: str, ttl: int) -> bool:
        self._check("expire")
        self.ttls[key] = ttl
        return True

    def expire_now(self, key: str) -> None:
        """Simulate Redis dropping a key whose TTL ran out."""
        self.values.pop(key, None)


class FlakyStore(InMemorySessionStore):
    """In-memory store whose writes can be made to fail."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.fail_create = False
        self.fail_evict = False
        self.fail_count = False

    def count(self, principal: str) -> int:
        if self.fail_count:
            raise StoreUnavailable("count failed")
        return super().count(principal)

    def create(self, principal, ttl=None, metadata=None):  # noqa: ANN001
        if self.fail_create:
            raise StoreUnavailable("create failed")
        return super().create(principal, ttl=ttl, metadata=metadata)

    def revoke_all_except(self, principal: str, keep_session_id: str) -> int:
        if self.fail_evict:
            raise StoreUnavailable("revoke failed")
        return super().revoke_all_except(principal, keep_session_id)


class SlowStore(InMemorySessionStore):
    """Blocks inside ``count`` for chosen principals until released."""

    def __init__(self, slow_principals, **kwargs):  # noqa: ANN001
        super().__init__(**kwargs)
        self.slow_principals = set(slow_principals)
        self.entered = threading.Event()
        self.release = threading.Event()

    def count(self, principal: str) -> int:
        if principal in self.slow_principals:
            self.entered.set()
            self.release.wait(timeout=10)
        return super().count(principal)
