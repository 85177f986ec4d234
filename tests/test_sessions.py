from __future__ import annotations

from datetime import timedelta

from roadlimit_core.sessions import SessionRecord


def test_create_assigns_unique_ids_across_principals(store):
    ids = {store.create(p).session_id for p in ("alice", "bob", "carol") for _ in range(20)}
    assert len(ids) == 60
    assert store.total == 60


def test_create_sets_timestamps_and_expiry(store, clock):
    rec = store.create("alice", ttl=60, metadata={"ip": "10.0.0.1"})
    assert rec.created_at == clock()
    assert rec.last_activity_at == clock()
    assert rec.expires_at == clock() + timedelta(seconds=60)
    assert rec.metadata == {"ip": "10.0.0.1"}

    no_ttl = store.create("alice")
    assert no_ttl.expires_at is None


def test_list_and_count_for_unknown_principal_are_empty(store):
    assert store.list("nobody") == []
    assert store.count("nobody") == 0
    assert store.revoke_all("nobody") == 0
    assert store.revoke_all_except("nobody", "missing") == 0


def test_list_is_ordered_by_creation(store, clock):
    first = store.create("alice")
    clock.advance(1)
    second = store.create("alice")
    clock.advance(1)
    third = store.create("alice")
    store.create("bob")

    assert [r.session_id for r in store.list("alice")] == [
        first.session_id,
        second.session_id,
        third.session_id,
    ]
    assert store.count("alice") == 3


def test_revoke_is_idempotent(store):
    rec = store.create("alice")
    assert store.revoke(rec.session_id) is True
    assert store.revoke(rec.session_id) is False
    assert store.revoke("never-existed") is False
    assert store.list("alice") == []


def test_revoke_all_except_keeps_only_the_given_session(store):
    keep = store.create("alice")
    store.create("alice")
    store.create("alice")
    other = store.create("bob")

    assert store.revoke_all_except("alice", keep.session_id) == 2
    assert store.list("alice") == [keep]
    assert store.list("bob") == [other]


def test_revoke_all_removes_everything_for_principal(store):
    store.create("alice")
    store.create("alice")
    bob = store.create("bob")

    assert store.revoke_all("alice") == 2
    assert store.count("alice") == 0
    assert store.get(bob.session_id) is bob


def test_expired_sessions_are_hidden_then_swept(store, clock):
    short = store.create("alice", ttl=10)
    long = store.create("alice", ttl=100)

    clock.advance(10)
    assert store.get(short.session_id) is None
    assert store.list("alice") == [long]
    assert store.count("alice") == 1

    assert store.cleanup_expired() == 1
    assert store.total == 1
    assert store.revoke(short.session_id) is False


def test_touch_never_moves_activity_backwards(store, clock):
    rec = store.create("alice")
    clock.advance(5)
    touched = store.touch(rec.session_id)
    assert touched.last_activity_at == clock()

    later = touched.last_activity_at
    rec.touch(later - timedelta(seconds=30))
    assert rec.last_activity_at == later

    assert store.touch("missing") is None


def test_record_dict_round_trip_preserves_optional_expiry(clock):
    rec = SessionRecord.create("alice", now=clock(), metadata={"device": "phone"})
    restored = SessionRecord.from_dict(rec.to_dict())
    assert restored == rec
    assert restored.expires_at is None


def test_revoking_counts_only_unexpired_sessions(store, clock):
    store.create("alice", ttl=10)
    keep = store.create("alice")
    store.create("alice")
    store.create("bob", ttl=10)
    store.create("bob")

    clock.advance(10)

    assert store.revoke_all_except("alice", keep.session_id) == 1
    assert store.list("alice") == [keep]
    assert store.revoke_all("bob") == 1
    assert store.total == 1
