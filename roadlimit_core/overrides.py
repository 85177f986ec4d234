"""RoadLimit Overrides - One-time SemiBlock opt-in tokens.

A principal blocked by the SEMI_BLOCK strategy can be handed a short-lived
token (e.g. behind a "sign in anyway" link). Presenting it on the next login
admits that login once, without evicting other sessions.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_OVERRIDE_TTL = 600  # 10 minutes


@dataclass
class _IssuedToken:
    principal: str
    expires_at: datetime


class OverrideTokenRegistry:
    """Issues and consumes one-time SemiBlock override tokens."""

    def __init__(
        self,
        ttl: int = DEFAULT_OVERRIDE_TTL,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """Initialize registry.

        Args:
            ttl: Token lifetime in seconds
            clock: Time source (defaults to ``datetime.now``)
        """
        self.ttl = ttl
        self._clock = clock or datetime.now
        self._tokens: Dict[str, _IssuedToken] = {}
        self._lock = threading.Lock()

    def issue(self, principal: str) -> str:
        """Issue a token for principal.

        Args:
            principal: Principal allowed to use the token

        Returns:
            Opaque token string
        """
        token = secrets.token_urlsafe(24)
        with self._lock:
            self._tokens[token] = _IssuedToken(
                principal=principal,
                expires_at=self._clock() + timedelta(seconds=self.ttl),
            )
        logger.info(f"Issued session limit override token for principal {principal}")
        return token

    def consume(self, principal: str, token: Optional[str]) -> bool:
        """Consume a token.

        Args:
            principal: Principal presenting the token
            token: Token from the caller

        Returns:
            True exactly once for a live token issued to principal
        """
        if not token:
            return False

        with self._lock:
            issued = self._tokens.get(token)
            if issued is None:
                return False
            if issued.expires_at <= self._clock():
                del self._tokens[token]
                return False
            if not hmac.compare_digest(issued.principal.encode(), principal.encode()):
                return False
            del self._tokens[token]
            return True

    def cleanup_expired(self) -> int:
        """Remove expired tokens.

        Returns:
            Number of tokens removed
        """
        with self._lock:
            now = self._clock()
            expired = [t for t, issued in self._tokens.items() if issued.expires_at <= now]
            for token in expired:
                del self._tokens[token]
            return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)


__all__ = ["OverrideTokenRegistry", "DEFAULT_OVERRIDE_TTL"]
