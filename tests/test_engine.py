from __future__ import annotations

import pytest
import yaml

from roadlimit_core import (
    AdmissionEvent,
    InvalidConfiguration,
    LimitConfig,
    LimitStrategy,
    LoginContext,
    RoadLimit,
    create_limiter,
)


@pytest.fixture
def limiter(store):
    return RoadLimit(config=LimitConfig(maximum_sessions=1, strategy="semi_block"), store=store)


def test_config_defaults():
    cfg = LimitConfig()
    assert cfg.maximum_sessions == 1
    assert cfg.strategy == "evict_oldest"
    assert cfg.to_policy().strategy is LimitStrategy.EVICT_OLDEST


def test_config_from_file_accepts_legacy_option_names(tmp_path):
    path = tmp_path / "limits.yaml"
    path.write_text(yaml.safe_dump({"loggedin_maximum": "3", "loggedin_logic": "semiBlock", "unknown": 1}))

    cfg = LimitConfig.from_file(path)

    assert cfg.maximum_sessions == 3
    assert cfg.strategy == "semi_block"


def test_config_missing_file_gives_defaults(tmp_path):
    assert LimitConfig.from_file(tmp_path / "nope.yaml") == LimitConfig()


def test_config_round_trip_through_yaml(tmp_path):
    path = tmp_path / "sub" / "limits.yaml"
    cfg = LimitConfig(maximum_sessions=4, strategy="block", session_ttl=0, lock_timeout=2.5)
    cfg.to_file(path)
    assert LimitConfig.from_file(path) == cfg


@pytest.mark.parametrize(
    "values",
    [
        {"maximum_sessions": 0},
        {"maximum_sessions": "many"},
        {"strategy": "random"},
        {"session_ttl": -1},
        {"cleanup_interval": 0},
        {"lock_timeout": 0},
        {"lock_timeout": "5"},
        {"lock_timeout": True},
        {"session_ttl": True},
        {"override_token_ttl": "600"},
        {"cleanup_interval": True},
    ],
)
def test_invalid_config_is_rejected_eagerly(values):
    with pytest.raises(InvalidConfiguration):
        LimitConfig.from_dict(values)


def test_config_file_must_be_a_mapping(tmp_path):
    path = tmp_path / "limits.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(InvalidConfiguration):
        LimitConfig.from_file(path)


def test_semi_block_flow_with_issued_token(limiter):
    first = limiter.attempt_login("alice")
    assert first.admitted

    blocked = limiter.attempt_login("alice")
    assert not blocked.admitted

    token = limiter.issue_override_token("alice")
    retried = limiter.attempt_login("alice", override_token=token)
    assert retried.admitted
    assert limiter.count_sessions("alice") == 2


def test_logout_variants(limiter):
    limiter.add_bypass(lambda p: True)
    a = limiter.attempt_login("alice").session
    b = limiter.attempt_login("alice").session
    limiter.attempt_login("alice")

    assert limiter.logout(a.session_id) is True
    assert limiter.logout(a.session_id) is False
    assert limiter.logout_others("alice", b.session_id) == 1
    assert [s.session_id for s in limiter.list_sessions("alice")] == [b.session_id]
    assert limiter.logout_all("alice") == 1
    assert limiter.count_sessions("alice") == 0


def test_touch_and_get_session(limiter, clock):
    session = limiter.attempt_login("alice", LoginContext()).session
    clock.advance(30)
    assert limiter.touch(session.session_id).last_activity_at == clock()
    assert limiter.get_session(session.session_id) is session


def test_cleanup_expired_sweeps_sessions(store, clock):
    limiter = RoadLimit(config=LimitConfig(maximum_sessions=5, session_ttl=60), store=store)
    limiter.attempt_login("alice")
    limiter.attempt_login("bob", ttl=600)

    clock.advance(61)
    assert limiter.cleanup_expired() == 1
    assert limiter.count_sessions("alice") == 0
    assert limiter.count_sessions("bob") == 1


def test_reconfigure_switches_strategy(limiter):
    limiter.attempt_login("alice")
    limiter.reconfigure(LimitConfig(maximum_sessions=1, strategy="allow"))

    result = limiter.attempt_login("alice")
    assert result.admitted
    assert result.evicted == 1
    assert limiter.get_stats()["strategy"] == "evict_oldest"


def test_events_are_forwarded(limiter):
    rejected = []
    limiter.on(AdmissionEvent.REJECTED, rejected.append)
    limiter.attempt_login("alice")
    limiter.attempt_login("alice")
    assert [r.principal for r in rejected] == ["alice"]


def test_cleanup_thread_starts_and_stops(limiter):
    limiter.start_cleanup()
    limiter.start_cleanup()
    assert limiter.get_stats()["cleanup_running"] is True
    limiter.stop_cleanup()
    assert limiter.get_stats()["cleanup_running"] is False


def test_create_limiter_merges_file_and_kwargs(tmp_path, store):
    path = tmp_path / "limits.yaml"
    LimitConfig(maximum_sessions=3, strategy="block").to_file(path)

    limiter = create_limiter(config_path=path, store=store, strategy="semiBlock")

    assert limiter.policy.maximum_sessions == 3
    assert limiter.policy.strategy is LimitStrategy.SEMI_BLOCK
    assert limiter.store is store


def test_limiter_shares_its_registries_with_the_coordinator(limiter):
    assert limiter.hooks is limiter.coordinator.hooks
    assert limiter.locks is limiter.coordinator.locks
    assert limiter.store is limiter.coordinator.store


def test_hooks_registered_on_limiter_apply_to_logins(store):
    limiter = RoadLimit(config=LimitConfig(maximum_sessions=1, strategy="block"), store=store)
    limiter.add_bypass(lambda p: p == "admin")
    limiter.add_message_filter(lambda m, p, s: f"{p} is at the limit")

    limiter.attempt_login("admin")
    second = limiter.attempt_login("admin")
    assert second.admitted is True
    assert second.bypassed is True
    assert limiter.count_sessions("admin") == 2

    limiter.attempt_login("alice")
    rejected = limiter.attempt_login("alice")
    assert rejected.rejection.message == "alice is at the limit"


def test_stats_report_principals_locked_for_admission(limiter):
    with limiter.coordinator.locks.hold("alice"):
        assert limiter.get_stats()["locked_principals"] == 1


def test_attempt_login_refuses_context_and_keywords_together(limiter):
    with pytest.raises(TypeError):
        limiter.attempt_login("alice", LoginContext(), ttl=60)
    assert limiter.count_sessions("alice") == 0
