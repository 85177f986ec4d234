from __future__ import annotations

import pytest

from roadlimit_core.coordinator import AdmissionCoordinator
from roadlimit_core.hooks import HookRegistry
from roadlimit_core.overrides import OverrideTokenRegistry
from roadlimit_core.policy import LimitPolicy, LimitStrategy
from roadlimit_core.sessions import InMemorySessionStore
from tests.helpers.fakes import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemorySessionStore(clock=clock)


@pytest.fixture
def make_coordinator(store, clock):
    """
    Builds a coordinator over the shared store; keyword args override the policy.
    """

    def _make(maximum: int = 1, strategy=LimitStrategy.EVICT_OLDEST, **kwargs):  # noqa: ANN001
        policy = LimitPolicy(
            maximum_sessions=maximum,
            strategy=strategy,
            semi_block_override_token=kwargs.pop("override_token", None),
        )
        kwargs.setdefault("hooks", HookRegistry())
        kwargs.setdefault("override_tokens", OverrideTokenRegistry(clock=clock))
        return AdmissionCoordinator(store=kwargs.pop("store", store), policy=policy, **kwargs)

    return _make
