"""RoadLimit Policy - Concurrent session limit evaluation.

Defines the limit strategies and the pure decision function that maps a
session count snapshot to an admission decision. Nothing in this module
touches a session store.

Copyright (c) 2024-2026 BlackRoad OS, Inc. All rights reserved.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from roadlimit_core.errors import InvalidConfiguration


class LimitStrategy(Enum):
    """What to do with a new login once the limit is reached."""

    BLOCK = "block"
    SEMI_BLOCK = "semi_block"
    EVICT_OLDEST = "evict_oldest"

    @classmethod
    def parse(cls, value: Union[str, LimitStrategy]) -> LimitStrategy:
        """Parse a strategy name, accepting the legacy option values.

        Args:
            value: Strategy, strategy value, or legacy name
                ("block", "semiBlock", "allow")

        Returns:
            Matching strategy

        Raises:
            InvalidConfiguration: Unknown strategy name
        """
        if isinstance(value, cls):
            return value

        name = str(value).strip()
        strategy = _STRATEGY_ALIASES.get(name.lower().replace("-", "_"))
        if strategy is None:
            raise InvalidConfiguration(f"Unknown limit strategy: {value!r}")
        return strategy


_STRATEGY_ALIASES: Dict[str, LimitStrategy] = {
    "block": LimitStrategy.BLOCK,
    "semi_block": LimitStrategy.SEMI_BLOCK,
    "semiblock": LimitStrategy.SEMI_BLOCK,
    "evict_oldest": LimitStrategy.EVICT_OLDEST,
    "evictoldest": LimitStrategy.EVICT_OLDEST,
    "allow": LimitStrategy.EVICT_OLDEST,
}


class Decision(Enum):
    """Admission decision."""

    ADMIT = "admit"
    ADMIT_AND_EVICT_OTHERS = "admit_and_evict_others"
    REJECT = "reject"

    @property
    def admits(self) -> bool:
        """Check if the decision lets the login in."""
        return self is not Decision.REJECT


def decide(
    current_count: int,
    maximum: int,
    strategy: LimitStrategy,
    bypassed: bool = False,
    semi_block_override_present: bool = False,
    reached: Optional[bool] = None,
) -> Decision:
    """Decide whether a new session may be admitted.

    Rules, in order:
        1. A bypassed principal is always admitted, without eviction.
        2. Below the limit, the login is admitted.
        3. At or over the limit, the strategy decides: EVICT_OLDEST admits
           and evicts every other session, BLOCK rejects, SEMI_BLOCK rejects
           unless the caller opted in with an override.

    Args:
        current_count: Active sessions for the principal right now
        maximum: Configured maximum sessions
        strategy: Configured strategy
        bypassed: An extension exempted the principal
        semi_block_override_present: Caller presented a SemiBlock opt-in
        reached: Limit determination adjusted by extensions; computed
            from ``current_count >= maximum`` when None

    Returns:
        Decision
    """
    if bypassed:
        return Decision.ADMIT

    if reached is None:
        reached = current_count >= maximum

    if not reached:
        return Decision.ADMIT

    if strategy is LimitStrategy.EVICT_OLDEST:
        return Decision.ADMIT_AND_EVICT_OTHERS

    if strategy is LimitStrategy.SEMI_BLOCK and semi_block_override_present:
        return Decision.ADMIT

    return Decision.REJECT


@dataclass(frozen=True)
class LimitPolicy:
    """Concurrent session limit configuration."""

    maximum_sessions: int = 1
    strategy: LimitStrategy = LimitStrategy.EVICT_OLDEST
    semi_block_override_token: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.maximum_sessions, bool) or not isinstance(self.maximum_sessions, int):
            raise InvalidConfiguration(
                f"maximum_sessions must be an integer, got {self.maximum_sessions!r}"
            )
        if self.maximum_sessions < 1:
            raise InvalidConfiguration(
                f"maximum_sessions must be at least 1, got {self.maximum_sessions}"
            )
        if not isinstance(self.strategy, LimitStrategy):
            object.__setattr__(self, "strategy", LimitStrategy.parse(self.strategy))

    def decide(
        self,
        current_count: int,
        bypassed: bool = False,
        semi_block_override_present: bool = False,
        reached: Optional[bool] = None,
    ) -> Decision:
        """Decide using this policy's maximum and strategy."""
        return decide(
            current_count,
            self.maximum_sessions,
            self.strategy,
            bypassed=bypassed,
            semi_block_override_present=semi_block_override_present,
            reached=reached,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "maximum_sessions": self.maximum_sessions,
            "strategy": self.strategy.value,
            "semi_block_override_token": self.semi_block_override_token,
        }


__all__ = [
    "LimitStrategy",
    "LimitPolicy",
    "Decision",
    "decide",
]
