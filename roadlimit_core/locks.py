"""RoadLimit Locks - Per-principal critical sections.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional

from roadlimit_core.errors import AdmissionCancelled, AdmissionTimeout

logger = logging.getLogger(__name__)


@dataclass
class _LockEntry:
    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


class PrincipalLockTable:
    """Table of exclusive locks keyed by principal.

    Entries are reference counted and dropped once no caller holds or waits
    on them, so the table only grows with concurrently active principals.
    Locks for different principals are independent.
    """

    def __init__(self, poll_interval: float = 0.05):
        """Initialize lock table.

        Args:
            poll_interval: Seconds between cancellation checks while waiting
        """
        self._entries: Dict[str, _LockEntry] = {}
        self._guard = threading.Lock()
        self.poll_interval = poll_interval

    def _checkout(self, principal: str) -> _LockEntry:
        with self._guard:
            entry = self._entries.get(principal)
            if entry is None:
                entry = _LockEntry()
                self._entries[principal] = entry
            entry.users += 1
            return entry

    def _checkin(self, principal: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._entries.get(principal) is entry:
                del self._entries[principal]

    def _acquire(
        self,
        principal: str,
        entry: _LockEntry,
        cancel_event: Optional[threading.Event],
        timeout: Optional[float],
    ) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise AdmissionCancelled(principal)

        if entry.lock.acquire(blocking=False):
            return

        logger.debug(f"Waiting for session lock of principal {principal}")
        deadline = None if timeout is None else time.monotonic() + timeout

        while True:
            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise AdmissionTimeout(principal, timeout)
                wait = min(wait, remaining)

            if entry.lock.acquire(timeout=wait):
                return

            if cancel_event is not None and cancel_event.is_set():
                raise AdmissionCancelled(principal)

    @contextmanager
    def hold(
        self,
        principal: str,
        cancel_event: Optional[threading.Event] = None,
        timeout: Optional[float] = None,
    ) -> Iterator[None]:
        """Hold the principal's critical section.

        Args:
            principal: Principal to lock
            cancel_event: Aborts the wait when set before the lock is held
            timeout: Maximum seconds to wait (None waits indefinitely)

        Raises:
            AdmissionCancelled: Cancelled before the lock was acquired
            AdmissionTimeout: Lock not acquired within ``timeout``
        """
        entry = self._checkout(principal)
        try:
            self._acquire(principal, entry, cancel_event, timeout)
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(principal, entry)

    def is_locked(self, principal: str) -> bool:
        """Check if principal's critical section is currently held."""
        with self._guard:
            entry = self._entries.get(principal)
            return entry is not None and entry.lock.locked()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


__all__ = ["PrincipalLockTable"]
