"""RoadLimit Errors - Exception hierarchy.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations


class RoadLimitError(Exception):
    """Base RoadLimit error."""
    pass


class StoreUnavailable(RoadLimitError):
    """Session store failed to complete a read or write."""
    pass


class InvalidConfiguration(RoadLimitError):
    """Limit policy or config file is invalid."""
    pass


class AdmissionCancelled(RoadLimitError):
    """Login attempt was cancelled before it was evaluated."""

    def __init__(self, principal: str, message: str = "Admission cancelled"):
        super().__init__(f"{message} (principal={principal})")
        self.principal = principal


class AdmissionTimeout(AdmissionCancelled):
    """Timed out waiting for the principal's critical section."""

    def __init__(self, principal: str, timeout: float):
        super().__init__(principal, f"Timed out after {timeout:.2f}s waiting for session lock")
        self.timeout = timeout


__all__ = [
    "RoadLimitError",
    "StoreUnavailable",
    "InvalidConfiguration",
    "AdmissionCancelled",
    "AdmissionTimeout",
]
