"""RoadLimit - Concurrent Session Limiting for BlackRoad OS.

RoadLimit decides whether a freshly authenticated login may become a session,
given a maximum number of concurrent sessions per account:
- Block: reject new logins once the limit is reached
- SemiBlock: reject, unless the user opts in with a one-time override
- EvictOldest: admit the new login and sign out every other session
- Per-account serialization so racing logins cannot both slip past the limit
- Pluggable bypass and decision hooks
- In-memory and Redis session stores

Architecture:
    ┌─────────────────────────────────────────────────────────────────────┐
    │                        RoadLimit Engine                            │
    ├─────────────────────────────────────────────────────────────────────┤
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐                 │
    │  │  Principal  │  │  Admission  │  │   Limit     │                 │
    │  │  Lock Table │──│ Coordinator │──│   Policy    │                 │
    │  └─────────────┘  └─────────────┘  └─────────────┘                 │
    │                          │                                          │
    │  ┌─────────────┐  ┌─────────────┐  ┌─────────────┐                 │
    │  │    Hook     │  │   Session   │  │  Override   │                 │
    │  │  Registry   │──│    Store    │──│   Tokens    │                 │
    │  └─────────────┘  └─────────────┘  └─────────────┘                 │
    └─────────────────────────────────────────────────────────────────────┘

Usage:
    from roadlimit_core import RoadLimit, LimitConfig, LoginContext

    limiter = RoadLimit(LimitConfig(maximum_sessions=2, strategy="block"))

    # After the password check succeeded
    result = limiter.attempt_login("user-42", LoginContext(metadata={"ip": ip}))
    if result.admitted:
        session_id = result.session_id
    else:
        show_error(result.rejection.message)

    # Exempt administrators
    limiter.add_bypass(lambda principal: principal in admins)

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

__version__ = "1.0.0"
__author__ = "BlackRoad OS, Inc."
__email__ = "engineering@blackroad.io"

# Core exports
from roadlimit_core.engine import RoadLimit, LimitConfig, create_limiter
from roadlimit_core.coordinator import (
    AdmissionCoordinator,
    AdmissionEvent,
    AdmissionResult,
    LoginContext,
    RejectionKind,
    RejectionReason,
)

# Policy exports
from roadlimit_core.policy import Decision, LimitPolicy, LimitStrategy, decide

# Session exports
from roadlimit_core.sessions import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionRecord,
    SessionStore,
)

# Extension exports
from roadlimit_core.hooks import HookRegistry
from roadlimit_core.locks import PrincipalLockTable
from roadlimit_core.overrides import OverrideTokenRegistry

# Error exports
from roadlimit_core.errors import (
    AdmissionCancelled,
    AdmissionTimeout,
    InvalidConfiguration,
    RoadLimitError,
    StoreUnavailable,
)

__all__ = [
    # Version
    "__version__",

    # Core
    "RoadLimit",
    "LimitConfig",
    "create_limiter",
    "AdmissionCoordinator",
    "AdmissionEvent",
    "AdmissionResult",
    "LoginContext",
    "RejectionKind",
    "RejectionReason",

    # Policy
    "Decision",
    "LimitPolicy",
    "LimitStrategy",
    "decide",

    # Sessions
    "SessionRecord",
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",

    # Extensions
    "HookRegistry",
    "PrincipalLockTable",
    "OverrideTokenRegistry",

    # Errors
    "RoadLimitError",
    "StoreUnavailable",
    "InvalidConfiguration",
    "AdmissionCancelled",
    "AdmissionTimeout",
]
