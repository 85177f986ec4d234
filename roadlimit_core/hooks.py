"""RoadLimit Hooks - Extension points for the admission coordinator.

Extensions can exempt principals from the limit, adjust the "limit reached"
determination, and rewrite the rejection message. Hooks run in registration
order.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, List

from roadlimit_core.policy import LimitStrategy

logger = logging.getLogger(__name__)

BypassPredicate = Callable[[str], bool]
ReachedFilter = Callable[[bool, str, int], bool]
MessageFilter = Callable[[str, str, LimitStrategy], str]


class HookRegistry:
    """Ordered registry of bypass predicates and decision filters."""

    def __init__(self):
        """Initialize empty registry."""
        self._bypass: List[BypassPredicate] = []
        self._reached: List[ReachedFilter] = []
        self._message: List[MessageFilter] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_bypass(self, predicate: BypassPredicate) -> BypassPredicate:
        """Register a bypass predicate.

        Args:
            predicate: ``predicate(principal) -> bool``; any True exempts
                the principal from the limit

        Returns:
            The predicate, so this can be used as a decorator
        """
        with self._lock:
            self._bypass.append(predicate)
        return predicate

    def add_reached_filter(self, fn: ReachedFilter) -> ReachedFilter:
        """Register a reached-limit filter.

        Args:
            fn: ``fn(reached, principal, count) -> bool``; receives the
                result of the previous filter

        Returns:
            The filter, so this can be used as a decorator
        """
        with self._lock:
            self._reached.append(fn)
        return fn

    def add_message_filter(self, fn: MessageFilter) -> MessageFilter:
        """Register a rejection message filter.

        Args:
            fn: ``fn(message, principal, strategy) -> str``

        Returns:
            The filter, so this can be used as a decorator
        """
        with self._lock:
            self._message.append(fn)
        return fn

    def remove_bypass(self, predicate: BypassPredicate) -> bool:
        """Unregister a bypass predicate."""
        return self._remove(self._bypass, predicate)

    def remove_reached_filter(self, fn: ReachedFilter) -> bool:
        """Unregister a reached-limit filter."""
        return self._remove(self._reached, fn)

    def remove_message_filter(self, fn: MessageFilter) -> bool:
        """Unregister a message filter."""
        return self._remove(self._message, fn)

    def clear(self) -> None:
        """Remove all hooks."""
        with self._lock:
            self._bypass.clear()
            self._reached.clear()
            self._message.clear()

    def _remove(self, hooks: list, fn: Callable) -> bool:
        with self._lock:
            if fn in hooks:
                hooks.remove(fn)
                return True
            return False

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def is_bypassed(self, principal: str) -> bool:
        """Check whether any bypass predicate exempts the principal."""
        with self._lock:
            predicates = list(self._bypass)

        for predicate in predicates:
            if predicate(principal):
                logger.debug(f"Session limit bypassed for principal {principal}")
                return True
        return False

    def adjust_reached(self, reached: bool, principal: str, count: int) -> bool:
        """Run the reached-limit determination through every filter."""
        with self._lock:
            filters = list(self._reached)

        for fn in filters:
            reached = bool(fn(reached, principal, count))
        return reached

    def filter_message(self, message: str, principal: str, strategy: LimitStrategy) -> str:
        """Run the rejection message through every filter."""
        with self._lock:
            filters = list(self._message)

        for fn in filters:
            message = fn(message, principal, strategy)
        return message

    def __len__(self) -> int:
        with self._lock:
            return len(self._bypass) + len(self._reached) + len(self._message)


__all__ = [
    "HookRegistry",
    "BypassPredicate",
    "ReachedFilter",
    "MessageFilter",
]
