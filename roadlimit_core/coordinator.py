"""RoadLimit Coordinator - Session admission under a concurrency limit.

Orchestrates a login attempt end to end:
- Serializes attempts per principal
- Consults bypass hooks and snapshots the session count
- Asks the limit policy for a decision
- Applies it (create, create-then-evict, or reject) before releasing the lock

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

import hmac
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Callable, Dict, List, Optional

from roadlimit_core.errors import StoreUnavailable
from roadlimit_core.hooks import HookRegistry
from roadlimit_core.locks import PrincipalLockTable
from roadlimit_core.overrides import OverrideTokenRegistry
from roadlimit_core.policy import Decision, LimitPolicy, LimitStrategy
from roadlimit_core.sessions import SessionRecord, SessionStore

logger = logging.getLogger(__name__)

LIMIT_REACHED_MESSAGE = (
    "Maximum no. of active logins found for this account. "
    "Please logout from another device to continue."
)
SEMI_BLOCK_HINT = (
    " Or you could sign out your other sessions and continue with a "
    "one-time override."
)


class RejectionKind(Enum):
    """Why a login was not admitted."""

    LIMIT_REACHED = "limit_reached"


class AdmissionEvent(Enum):
    """Admission lifecycle events."""

    ADMITTED = auto()
    EVICTED = auto()
    REJECTED = auto()
    BYPASSED = auto()


@dataclass
class LoginContext:
    """Per-attempt input supplied by the transport layer."""

    # SemiBlock opt-in
    semi_block_override: bool = False
    override_token: Optional[str] = None

    # Cancellation of the wait for the principal's critical section
    cancel_event: Optional[threading.Event] = None

    # Session TTL in seconds for this login (coordinator default if None)
    ttl: Optional[int] = None

    # Attached to the session record (ip address, user agent, ...)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RejectionReason:
    """User-facing reason for a rejected login."""

    kind: RejectionKind
    message: str
    count: int = 0
    maximum: int = 0
    strategy: Optional[LimitStrategy] = None


@dataclass
class AdmissionResult:
    """Outcome of an admission attempt."""

    principal: str
    admitted: bool
    decision: Decision
    session: Optional[SessionRecord] = None
    rejection: Optional[RejectionReason] = None
    evicted: int = 0
    bypassed: bool = False
    count: int = 0

    @property
    def session_id(self) -> Optional[str]:
        """ID of the admitted session."""
        return self.session.session_id if self.session else None


class AdmissionCoordinator:
    """Admits sessions for authenticated principals."""

    def __init__(
        self,
        store: SessionStore,
        policy: Optional[LimitPolicy] = None,
        hooks: Optional[HookRegistry] = None,
        locks: Optional[PrincipalLockTable] = None,
        override_tokens: Optional[OverrideTokenRegistry] = None,
        default_ttl: Optional[int] = None,
        lock_timeout: Optional[float] = None,
    ):
        """Initialize coordinator.

        Args:
            store: Session store
            policy: Limit policy (defaults to one session, EVICT_OLDEST)
            hooks: Extension hooks
            locks: Per-principal lock table
            override_tokens: Registry of one-time SemiBlock tokens
            default_ttl: Session TTL in seconds when the context has none
            lock_timeout: Maximum seconds to wait for a principal's lock
        """
        self.store = store
        self.policy = policy or LimitPolicy()
        # Empty registries are falsy, so compare against None
        self.hooks = hooks if hooks is not None else HookRegistry()
        self.locks = locks if locks is not None else PrincipalLockTable()
        self.override_tokens = override_tokens
        self.default_ttl = default_ttl
        self.lock_timeout = lock_timeout

        self._event_handlers: Dict[AdmissionEvent, List[Callable]] = {
            event: [] for event in AdmissionEvent
        }

    def attempt_login(
        self,
        principal: str,
        context: Optional[LoginContext] = None,
    ) -> AdmissionResult:
        """Try to admit a new session for an authenticated principal.

        Args:
            principal: Principal that passed credential verification
            context: Per-attempt options

        Returns:
            AdmissionResult; rejections by limit are returned, not raised

        Raises:
            AdmissionCancelled: Cancelled before evaluation started
            AdmissionTimeout: Principal's lock not acquired in time
            StoreUnavailable: Store failed; nothing was left half-applied
        """
        context = context or LoginContext()
        policy = self.policy

        with self.locks.hold(principal, context.cancel_event, self.lock_timeout):
            bypassed = self.hooks.is_bypassed(principal)
            count = self.store.count(principal)

            reached = None
            override = False
            if not bypassed:
                reached = self.hooks.adjust_reached(
                    count >= policy.maximum_sessions, principal, count
                )
                if reached and policy.strategy is LimitStrategy.SEMI_BLOCK:
                    override = self._override_present(principal, policy, context)

            decision = policy.decide(
                count,
                bypassed=bypassed,
                semi_block_override_present=override,
                reached=reached,
            )
            result = self._apply(principal, policy, decision, context, count)
            result.bypassed = bypassed

        self._log_result(result, policy, override)
        self._fire_result_events(result)
        return result

    def _override_present(self, principal: str, policy: LimitPolicy, context: LoginContext) -> bool:
        """Check whether the caller opted in to a SemiBlock override."""
        if context.semi_block_override:
            return True

        token = context.override_token
        if not token:
            return False

        static = policy.semi_block_override_token
        if static and hmac.compare_digest(static.encode(), token.encode()):
            return True

        if self.override_tokens is not None:
            return self.override_tokens.consume(principal, token)
        return False

    def _apply(
        self,
        principal: str,
        policy: LimitPolicy,
        decision: Decision,
        context: LoginContext,
        count: int,
    ) -> AdmissionResult:
        """Apply a decision. Runs inside the principal's critical section."""
        if decision is Decision.REJECT:
            return AdmissionResult(
                principal=principal,
                admitted=False,
                decision=decision,
                rejection=self._rejection(principal, policy, count),
                count=count,
            )

        ttl = context.ttl if context.ttl is not None else self.default_ttl
        session = self.store.create(principal, ttl=ttl, metadata=context.metadata)

        evicted = 0
        if decision is Decision.ADMIT_AND_EVICT_OTHERS:
            try:
                evicted = self.store.revoke_all_except(principal, session.session_id)
            except StoreUnavailable:
                self._rollback(session)
                raise

        return AdmissionResult(
            principal=principal,
            admitted=True,
            decision=decision,
            session=session,
            evicted=evicted,
            count=count,
        )

    def _rollback(self, session: SessionRecord) -> None:
        """Remove a session created for a failed admission."""
        try:
            self.store.revoke(session.session_id)
        except StoreUnavailable as e:
            logger.error(
                f"Failed to roll back session {session.session_id} "
                f"for principal {session.principal}: {e}"
            )

    def _rejection(self, principal: str, policy: LimitPolicy, count: int) -> RejectionReason:
        strategy = policy.strategy
        message = LIMIT_REACHED_MESSAGE
        if strategy is LimitStrategy.SEMI_BLOCK:
            message += SEMI_BLOCK_HINT

        return RejectionReason(
            kind=RejectionKind.LIMIT_REACHED,
            message=self.hooks.filter_message(message, principal, strategy),
            count=count,
            maximum=policy.maximum_sessions,
            strategy=strategy,
        )

    def _log_result(self, result: AdmissionResult, policy: LimitPolicy, override: bool) -> None:
        if not result.admitted:
            logger.warning(
                f"Session limit reached for principal {result.principal}: "
                f"{result.count}/{policy.maximum_sessions} "
                f"({policy.strategy.value})"
            )
            return

        detail = ""
        if result.bypassed:
            detail = " (bypassed)"
        elif override:
            detail = " (override)"
        elif result.evicted:
            detail = f" (evicted {result.evicted})"

        logger.info(
            f"Session admitted for principal {result.principal}: "
            f"{result.session_id}{detail}"
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def on(self, event: AdmissionEvent, handler: Callable[[AdmissionResult], None]) -> None:
        """Register event handler.

        Args:
            event: Event type
            handler: Handler function
        """
        self._event_handlers[event].append(handler)

    def _fire_result_events(self, result: AdmissionResult) -> None:
        if not result.admitted:
            self._fire_event(AdmissionEvent.REJECTED, result)
            return

        if result.bypassed:
            self._fire_event(AdmissionEvent.BYPASSED, result)
        if result.evicted:
            self._fire_event(AdmissionEvent.EVICTED, result)
        self._fire_event(AdmissionEvent.ADMITTED, result)

    def _fire_event(self, event: AdmissionEvent, result: AdmissionResult) -> None:
        """Fire event to handlers."""
        for handler in self._event_handlers[event]:
            try:
                handler(result)
            except Exception as e:
                logger.error(f"Event handler error: {e}")


__all__ = [
    "AdmissionCoordinator",
    "AdmissionEvent",
    "AdmissionResult",
    "LoginContext",
    "RejectionKind",
    "RejectionReason",
    "LIMIT_REACHED_MESSAGE",
    "SEMI_BLOCK_HINT",
]
