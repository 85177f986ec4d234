"""RoadLimit Engine - Concurrent session limiting for authentication flows.

Provides the main RoadLimit class that wires together:
- Limit configuration (YAML)
- Session store
- Extension hooks
- Admission coordinator
- One-time SemiBlock override tokens
- Background expiry sweep

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from roadlimit_core.coordinator import (
    AdmissionCoordinator,
    AdmissionEvent,
    AdmissionResult,
    LoginContext,
)
from roadlimit_core.errors import InvalidConfiguration
from roadlimit_core.hooks import (
    BypassPredicate,
    HookRegistry,
    MessageFilter,
    ReachedFilter,
)
from roadlimit_core.locks import PrincipalLockTable
from roadlimit_core.overrides import DEFAULT_OVERRIDE_TTL, OverrideTokenRegistry
from roadlimit_core.policy import LimitPolicy, LimitStrategy
from roadlimit_core.sessions import InMemorySessionStore, SessionRecord, SessionStore

# Configure logging
logger = logging.getLogger(__name__)

# Default paths
DEFAULT_CONFIG_PATH = Path.home() / ".roadlimit" / "config.yaml"

# Option names used by the login-limit plugin this service replaces
LEGACY_KEYS = {
    "loggedin_maximum": "maximum_sessions",
    "loggedin_logic": "strategy",
}


@dataclass
class LimitConfig:
    """Session limit configuration."""

    # Limit policy
    maximum_sessions: int = 1
    strategy: str = LimitStrategy.EVICT_OLDEST.value
    semi_block_override_token: Optional[str] = None

    # Session settings
    session_ttl: int = 86400  # 24 hours, 0 = no expiry

    # Override tokens
    override_token_ttl: int = DEFAULT_OVERRIDE_TTL

    # Concurrency
    lock_timeout: Optional[float] = None

    # Background cleanup
    cleanup_interval: int = 300  # 5 minutes

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Validate configuration values.

        Raises:
            InvalidConfiguration: A value is out of range
        """
        # Normalizes legacy names and rejects bad limits
        policy = self.to_policy()
        self.strategy = policy.strategy.value

        for name in ("session_ttl", "override_token_ttl"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise InvalidConfiguration(f"{name} must be a non-negative integer, got {value!r}")

        interval = self.cleanup_interval
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise InvalidConfiguration(
                f"cleanup_interval must be a positive integer, got {interval!r}"
            )

        timeout = self.lock_timeout
        if timeout is not None and (
            isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0
        ):
            raise InvalidConfiguration(f"lock_timeout must be a positive number, got {timeout!r}")

    def to_policy(self) -> LimitPolicy:
        """Build the limit policy."""
        return LimitPolicy(
            maximum_sessions=self.maximum_sessions,
            strategy=LimitStrategy.parse(self.strategy),
            semi_block_override_token=self.semi_block_override_token,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> LimitConfig:
        """Create from dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        values = {}
        for key, value in data.items():
            key = LEGACY_KEYS.get(key, key)
            if key in known:
                values[key] = value

        # Legacy option values were stored as strings
        if isinstance(values.get("maximum_sessions"), str):
            try:
                values["maximum_sessions"] = int(values["maximum_sessions"])
            except ValueError:
                raise InvalidConfiguration(
                    f"maximum_sessions must be an integer, got {values['maximum_sessions']!r}"
                )

        return cls(**values)

    @classmethod
    def from_file(cls, path: Path) -> LimitConfig:
        """Load config from YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise InvalidConfiguration(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(data, dict):
            raise InvalidConfiguration(f"Config file {path} must contain a mapping")

        return cls.from_dict(data)

    def to_file(self, path: Path) -> None:
        """Save config to YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.safe_dump(asdict(self), f, default_flow_style=False)


class RoadLimit:
    """Concurrent session limiting engine.

    Call ``attempt_login`` once per successful credential check, before the
    new session is handed to the client.
    """

    def __init__(
        self,
        config: Optional[LimitConfig] = None,
        store: Optional[SessionStore] = None,
        config_path: Optional[Path] = None,
    ):
        """Initialize RoadLimit engine.

        Args:
            config: Limit configuration
            store: Session store (in-memory if omitted)
            config_path: Path to config file
        """
        # Load configuration
        if config:
            self.config = config
        elif config_path:
            self.config = LimitConfig.from_file(config_path)
        else:
            self.config = LimitConfig.from_file(DEFAULT_CONFIG_PATH)

        # Initialize components
        self.store = store if store is not None else InMemorySessionStore()
        self.hooks = HookRegistry()
        self.locks = PrincipalLockTable()
        self.override_tokens = OverrideTokenRegistry(ttl=self.config.override_token_ttl)
        self.coordinator = AdmissionCoordinator(
            store=self.store,
            policy=self.config.to_policy(),
            hooks=self.hooks,
            locks=self.locks,
            override_tokens=self.override_tokens,
            default_ttl=self.config.session_ttl or None,
            lock_timeout=self.config.lock_timeout,
        )

        # Background cleanup
        self._cleanup_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()

        logger.info(
            f"RoadLimit engine initialized: maximum_sessions={self.config.maximum_sessions}, "
            f"strategy={self.config.strategy}"
        )

    @property
    def policy(self) -> LimitPolicy:
        """Active limit policy."""
        return self.coordinator.policy

    def reconfigure(self, config: LimitConfig) -> None:
        """Swap in a new configuration.

        Attempts already holding a principal's lock finish under the old
        policy.
        """
        policy = config.to_policy()
        self.config = config
        self.coordinator.policy = policy
        self.coordinator.default_ttl = config.session_ttl or None
        self.coordinator.lock_timeout = config.lock_timeout
        self.override_tokens.ttl = config.override_token_ttl
        logger.info(
            f"RoadLimit reconfigured: maximum_sessions={policy.maximum_sessions}, "
            f"strategy={policy.strategy.value}"
        )

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    def attempt_login(
        self,
        principal: str,
        context: Optional[LoginContext] = None,
        **kwargs,
    ) -> AdmissionResult:
        """Admit or reject a new session for an authenticated principal.

        Args:
            principal: Principal that passed credential verification
            context: Per-attempt options
            **kwargs: LoginContext fields, when no context is given

        Returns:
            AdmissionResult

        Raises:
            TypeError: Both a context and LoginContext fields were given
        """
        if context is None:
            context = LoginContext(**kwargs)
        elif kwargs:
            raise TypeError(
                f"attempt_login() takes a context or keyword options, not both: {sorted(kwargs)}"
            )
        return self.coordinator.attempt_login(principal, context)

    def issue_override_token(self, principal: str) -> str:
        """Issue a one-time token that lets the next login skip SemiBlock."""
        return self.override_tokens.issue(principal)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def list_sessions(self, principal: str) -> List[SessionRecord]:
        """Get active sessions of principal."""
        return self.store.list(principal)

    def count_sessions(self, principal: str) -> int:
        """Count active sessions of principal."""
        return self.store.count(principal)

    def get_session(self, session_id: str) -> Optional[SessionRecord]:
        """Get an active session by ID."""
        return self.store.get(session_id)

    def touch(self, session_id: str) -> Optional[SessionRecord]:
        """Record activity on a session."""
        return self.store.touch(session_id)

    def logout(self, session_id: str) -> bool:
        """Revoke one session. Revoking an unknown session returns False."""
        return self.store.revoke(session_id)

    def logout_all(self, principal: str) -> int:
        """Revoke every session of principal."""
        with self.locks.hold(principal):
            return self.store.revoke_all(principal)

    def logout_others(self, principal: str, current_session_id: str) -> int:
        """Revoke every session of principal except the current one."""
        with self.locks.hold(principal):
            return self.store.revoke_all_except(principal, current_session_id)

    # ------------------------------------------------------------------
    # Extensions
    # ------------------------------------------------------------------

    def add_bypass(self, predicate: BypassPredicate) -> BypassPredicate:
        """Register a bypass predicate."""
        return self.hooks.add_bypass(predicate)

    def add_reached_filter(self, fn: ReachedFilter) -> ReachedFilter:
        """Register a reached-limit filter."""
        return self.hooks.add_reached_filter(fn)

    def add_message_filter(self, fn: MessageFilter) -> MessageFilter:
        """Register a rejection message filter."""
        return self.hooks.add_message_filter(fn)

    def on(self, event: AdmissionEvent, handler: Callable[[AdmissionResult], None]) -> None:
        """Register admission event handler."""
        self.coordinator.on(event, handler)

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    def cleanup_expired(self) -> int:
        """Sweep expired sessions and override tokens.

        Returns:
            Number of sessions removed
        """
        count = self.store.cleanup_expired()
        self.override_tokens.cleanup_expired()
        if count > 0:
            logger.info(f"Cleaned up {count} expired sessions")
        return count

    def start_cleanup(self) -> None:
        """Start background cleanup thread."""
        if self._cleanup_thread is not None:
            return

        self._stop_event.clear()
        self._cleanup_thread = threading.Thread(target=self._cleanup_loop, daemon=True)
        self._cleanup_thread.start()
        logger.info("Session cleanup thread started")

    def stop_cleanup(self) -> None:
        """Stop background cleanup thread."""
        self._stop_event.set()
        if self._cleanup_thread:
            self._cleanup_thread.join(timeout=5)
            self._cleanup_thread = None
        logger.info("Session cleanup thread stopped")

    def _cleanup_loop(self) -> None:
        """Background cleanup loop."""
        while not self._stop_event.wait(self.config.cleanup_interval):
            try:
                self.cleanup_expired()
            except Exception as e:
                logger.error(f"Session cleanup error: {e}")

    def get_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "maximum_sessions": self.policy.maximum_sessions,
            "strategy": self.policy.strategy.value,
            "locked_principals": len(self.locks),
            "pending_override_tokens": len(self.override_tokens),
            "hooks": len(self.hooks),
            "cleanup_running": self._cleanup_thread is not None,
        }


# =============================================================================
# Factory Functions
# =============================================================================


def create_limiter(
    config_path: Optional[Path] = None,
    store: Optional[SessionStore] = None,
    **kwargs,
) -> RoadLimit:
    """Create a RoadLimit instance.

    Args:
        config_path: Path to config file
        store: Session store
        **kwargs: Config options (take precedence over the file)

    Returns:
        Configured RoadLimit instance
    """
    config = None
    if kwargs:
        base = asdict(LimitConfig.from_file(config_path)) if config_path else {}
        base.update(kwargs)
        config = LimitConfig.from_dict(base)
    return RoadLimit(config=config, store=store, config_path=config_path)


__all__ = [
    "RoadLimit",
    "LimitConfig",
    "create_limiter",
    "DEFAULT_CONFIG_PATH",
]
