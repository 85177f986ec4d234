"""RoadLimit Sessions - Session records and session stores.

Provides the session registry used by the admission coordinator:
- Session records with activity tracking and optional expiry
- Abstract session store contract
- In-memory store for single-process deployments
- Redis-backed store for distributed deployments

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from roadlimit_core.errors import StoreUnavailable

# Configure logging
logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def generate_session_id() -> str:
    """Generate an opaque, URL-safe session ID."""
    return secrets.token_urlsafe(32)


@dataclass
class SessionRecord:
    """One admitted login for a principal.

    Records are created by the admission coordinator and owned by the store.
    The only mutation after creation is advancing ``last_activity_at``.
    """

    session_id: str
    principal: str

    # Timestamps
    created_at: datetime = field(default_factory=datetime.now)
    last_activity_at: datetime = field(default_factory=datetime.now)
    expires_at: Optional[datetime] = None

    # Login context (ip address, user agent, device name, ...)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        principal: str,
        now: datetime,
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> SessionRecord:
        """Create a new session record.

        Args:
            principal: Principal the session belongs to
            now: Creation time
            ttl: Time to live in seconds (None or 0 for no expiry)
            metadata: Login context to attach
            session_id: Pre-allocated ID (generated if omitted)

        Returns:
            New session record
        """
        return cls(
            session_id=session_id or generate_session_id(),
            principal=principal,
            created_at=now,
            last_activity_at=now,
            expires_at=now + timedelta(seconds=ttl) if ttl else None,
            metadata=dict(metadata or {}),
        )

    def expired_at(self, now: datetime) -> bool:
        """Check whether the record is expired at the given time."""
        if self.expires_at is None:
            return False
        return now >= self.expires_at

    @property
    def is_expired(self) -> bool:
        """Check if session is expired."""
        return self.expired_at(datetime.now())

    def touch(self, now: datetime) -> None:
        """Record activity. Never moves ``last_activity_at`` backwards."""
        if now > self.last_activity_at:
            self.last_activity_at = now

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "session_id": self.session_id,
            "principal": self.principal,
            "created_at": self.created_at.isoformat(),
            "last_activity_at": self.last_activity_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> SessionRecord:
        """Create from dictionary."""
        return cls(
            session_id=data["session_id"],
            principal=data["principal"],
            created_at=datetime.fromisoformat(data["created_at"]),
            last_activity_at=datetime.fromisoformat(data["last_activity_at"]),
            expires_at=datetime.fromisoformat(data["expires_at"]) if data.get("expires_at") else None,
            metadata=data.get("metadata", {}),
        )


def _sort_key(record: SessionRecord):
    return (record.created_at, record.session_id)


class SessionStore(ABC):
    """Abstract session store interface.

    All principal-keyed operations return empty or zero results for a
    principal with no sessions. Backend failures raise ``StoreUnavailable``.
    """

    @abstractmethod
    def list(self, principal: str) -> List[SessionRecord]:
        """Get current, non-expired sessions for principal."""
        pass

    def count(self, principal: str) -> int:
        """Count current sessions for principal."""
        return len(self.list(principal))

    @abstractmethod
    def create(
        self,
        principal: str,
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionRecord:
        """Allocate and store a new session."""
        pass

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a non-expired session by ID."""
        pass

    @abstractmethod
    def touch(self, session_id: str) -> Optional[SessionRecord]:
        """Update last activity time of a session."""
        pass

    @abstractmethod
    def revoke(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was absent."""
        pass

    @abstractmethod
    def revoke_all(self, principal: str) -> int:
        """Remove every session of principal."""
        pass

    @abstractmethod
    def revoke_all_except(self, principal: str, keep_session_id: str) -> int:
        """Remove every session of principal except one.

        Returns the number of non-expired sessions removed.
        """
        pass

    @abstractmethod
    def cleanup_expired(self) -> int:
        """Remove expired sessions."""
        pass


class InMemorySessionStore(SessionStore):
    """Thread-safe in-memory session store."""

    def __init__(self, clock: Optional[Clock] = None):
        """Initialize store.

        Args:
            clock: Time source (defaults to ``datetime.now``)
        """
        self._sessions: Dict[str, SessionRecord] = {}
        self._principal_sessions: Dict[str, Set[str]] = {}
        self._clock = clock or datetime.now
        self._lock = threading.RLock()

    def list(self, principal: str) -> List[SessionRecord]:
        """Get current, non-expired sessions for principal."""
        with self._lock:
            now = self._clock()
            records = [
                self._sessions[sid]
                for sid in self._principal_sessions.get(principal, set())
                if sid in self._sessions and not self._sessions[sid].expired_at(now)
            ]
        records.sort(key=_sort_key)
        return records

    def create(
        self,
        principal: str,
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionRecord:
        """Allocate and store a new session."""
        with self._lock:
            session_id = generate_session_id()
            while session_id in self._sessions:
                session_id = generate_session_id()

            record = SessionRecord.create(
                principal,
                now=self._clock(),
                ttl=ttl,
                metadata=metadata,
                session_id=session_id,
            )
            self._sessions[session_id] = record
            self._principal_sessions.setdefault(principal, set()).add(session_id)

        logger.info(f"Session created: {record.session_id} for principal {principal}")
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a non-expired session by ID."""
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.expired_at(self._clock()):
                return None
            return record

    def touch(self, session_id: str) -> Optional[SessionRecord]:
        """Update last activity time of a session."""
        with self._lock:
            record = self.get(session_id)
            if record is not None:
                record.touch(self._clock())
            return record

    def revoke(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was absent."""
        with self._lock:
            record = self._sessions.pop(session_id, None)
            if record is None:
                return False
            self._remove_principal_mapping(session_id, record.principal)

        logger.info(f"Session revoked: {session_id}")
        return True

    def revoke_all(self, principal: str) -> int:
        """Remove every session of principal. Returns the number of live ones removed."""
        with self._lock:
            now = self._clock()
            session_ids = self._principal_sessions.pop(principal, set())
            count = 0
            for sid in session_ids:
                record = self._sessions.pop(sid, None)
                if record is not None and not record.expired_at(now):
                    count += 1

        if count:
            logger.info(f"Revoked {count} sessions for principal {principal}")
        return count

    def revoke_all_except(self, principal: str, keep_session_id: str) -> int:
        """Remove every session of principal except one."""
        with self._lock:
            now = self._clock()
            session_ids = [
                sid for sid in self._principal_sessions.get(principal, set())
                if sid != keep_session_id
            ]
            count = 0
            for sid in session_ids:
                record = self._sessions.pop(sid, None)
                self._remove_principal_mapping(sid, principal)
                if record is not None and not record.expired_at(now):
                    count += 1

        if count:
            logger.info(
                f"Revoked {count} sessions for principal {principal} "
                f"(kept {keep_session_id})"
            )
        return count

    def cleanup_expired(self) -> int:
        """Remove expired sessions."""
        with self._lock:
            now = self._clock()
            expired = [
                sid for sid, record in self._sessions.items()
                if record.expired_at(now)
            ]
            for sid in expired:
                record = self._sessions.pop(sid)
                self._remove_principal_mapping(sid, record.principal)
            return len(expired)

    def _remove_principal_mapping(self, session_id: str, principal: str) -> None:
        """Remove session from principal mapping."""
        sids = self._principal_sessions.get(principal)
        if sids is None:
            return
        sids.discard(session_id)
        if not sids:
            del self._principal_sessions[principal]

    @property
    def total(self) -> int:
        """Get total session count across principals."""
        with self._lock:
            return len(self._sessions)


class RedisSessionStore(SessionStore):
    """Redis-backed session store for distributed deployments.

    Each record is a JSON string under ``<prefix><session_id>`` with a Redis
    TTL matching its expiry; each principal has a set of its session IDs.
    Works with any client exposing the redis-py command methods.
    """

    def __init__(
        self,
        redis_client: Any,
        prefix: str = "roadlimit:session:",
        clock: Optional[Clock] = None,
    ):
        """Initialize Redis store.

        Args:
            redis_client: Redis client instance
            prefix: Key prefix
            clock: Time source (defaults to ``datetime.now``)
        """
        self._redis = redis_client
        self._prefix = prefix
        self._clock = clock or datetime.now

    def _key(self, session_id: str) -> str:
        """Generate Redis key."""
        return f"{self._prefix}{session_id}"

    def _principal_key(self, principal: str) -> str:
        """Generate principal sessions key."""
        return f"{self._prefix}principal:{principal}"

    @staticmethod
    def _decode(value: Any) -> str:
        return value.decode() if isinstance(value, bytes) else value

    @contextmanager
    def _guard(self, operation: str) -> Iterator[None]:
        """Translate client failures into ``StoreUnavailable``."""
        try:
            yield
        except StoreUnavailable:
            raise
        except Exception as e:
            logger.error(f"Redis session store failed to {operation}: {e}")
            raise StoreUnavailable(f"Failed to {operation}: {e}") from e

    def _write(self, record: SessionRecord) -> None:
        key = self._key(record.session_id)
        data = json.dumps(record.to_dict())

        if record.expires_at is None:
            self._redis.set(key, data)
            return

        remaining = (record.expires_at - self._clock()).total_seconds()
        self._redis.setex(key, max(int(remaining), 1), data)

    def _read(self, session_id: str) -> Optional[SessionRecord]:
        data = self._redis.get(self._key(session_id))
        if not data:
            return None
        record = SessionRecord.from_dict(json.loads(data))
        if record.expired_at(self._clock()):
            return None
        return record

    def list(self, principal: str) -> List[SessionRecord]:
        """Get current, non-expired sessions for principal."""
        with self._guard("list sessions"):
            principal_key = self._principal_key(principal)
            records = []
            for sid in self._redis.smembers(principal_key):
                sid = self._decode(sid)
                record = self._read(sid)
                if record is None:
                    # Expired by TTL; drop the dangling reference
                    self._redis.srem(principal_key, sid)
                    continue
                records.append(record)

        records.sort(key=_sort_key)
        return records

    def create(
        self,
        principal: str,
        ttl: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> SessionRecord:
        """Allocate and store a new session."""
        with self._guard("create session"):
            session_id = generate_session_id()
            while self._redis.exists(self._key(session_id)):
                session_id = generate_session_id()

            record = SessionRecord.create(
                principal,
                now=self._clock(),
                ttl=ttl,
                metadata=metadata,
                session_id=session_id,
            )
            self._write(record)
            self._redis.sadd(self._principal_key(principal), session_id)

        logger.info(f"Session created: {record.session_id} for principal {principal}")
        return record

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a non-expired session by ID."""
        with self._guard("get session"):
            return self._read(session_id)

    def touch(self, session_id: str) -> Optional[SessionRecord]:
        """Update last activity time of a session."""
        with self._guard("touch session"):
            record = self._read(session_id)
            if record is None:
                return None
            record.touch(self._clock())
            self._write(record)
            return record

    def revoke(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was absent."""
        with self._guard("revoke session"):
            record = self._read(session_id)
            if record is not None:
                self._redis.srem(self._principal_key(record.principal), session_id)
            deleted = self._redis.delete(self._key(session_id)) > 0

        if deleted:
            logger.info(f"Session revoked: {session_id}")
        return deleted

    def revoke_all(self, principal: str) -> int:
        """Remove every session of principal."""
        with self._guard("revoke principal sessions"):
            principal_key = self._principal_key(principal)
            keys = [self._key(self._decode(sid)) for sid in self._redis.smembers(principal_key)]
            # Expired records are already gone, so only live keys are counted
            count = self._redis.delete(*keys) if keys else 0
            self._redis.delete(principal_key)

        if count:
            logger.info(f"Revoked {count} sessions for principal {principal}")
        return count

    def revoke_all_except(self, principal: str, keep_session_id: str) -> int:
        """Remove every session of principal except one.

        The records go in a single multi-key DELETE, so either all of them
        are evicted or none are. The index cleanup afterwards is best effort:
        ``list`` drops ids whose record no longer exists.
        """
        principal_key = self._principal_key(principal)
        with self._guard("revoke principal sessions"):
            others = [
                sid for sid in (self._decode(s) for s in self._redis.smembers(principal_key))
                if sid != keep_session_id
            ]
            if not others:
                return 0
            count = self._redis.delete(*[self._key(sid) for sid in others])

        try:
            self._redis.srem(principal_key, *others)
        except Exception as e:
            logger.warning(f"Stale session index for principal {principal}: {e}")

        if count:
            logger.info(
                f"Revoked {count} sessions for principal {principal} "
                f"(kept {keep_session_id})"
            )
        return count

    def cleanup_expired(self) -> int:
        """Clean up expired sessions (handled by Redis TTL)."""
        return 0


__all__ = [
    "SessionRecord",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "generate_session_id",
]
