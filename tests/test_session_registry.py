from __future__ import annotations

import pytest

from adminguard.core.config.models import SessionsConfig
from adminguard.core.errors import SessionInvalidError, ValidationError
from adminguard.core.sessions.models import LogoutReason
from adminguard.core.sessions.registry import SessionRegistry


def _login(reg, pid="u1", ip="10.0.0.1", now=None):
    return reg.create_session(pid, f"{pid}@example.com", "User", "admin", source_address=ip, user_agent="pytest", now=now)


def test_create_session_records_login_audit(registry, audit, clock):
    rec = _login(registry)
    assert rec.principal_id == "u1"
    assert rec.login_at == clock.time()
    assert rec.last_activity_at == rec.login_at
    assert rec.key == ("u1", "10.0.0.1", clock.time())

    logins = audit.by_action("login")
    assert len(logins) == 1
    assert logins[0].section == "auth"
    assert logins[0].new_data["email"] == "u1@example.com"
    assert logins[0].new_data["ip_address"] == "10.0.0.1"


@pytest.mark.parametrize("pid,email", [("", "a@example.com"), ("   ", "a@example.com"), ("u1", ""), (None, "a@example.com")])
def test_create_session_rejects_blank_identity(registry, audit, pid, email):
    with pytest.raises(ValidationError):
        registry.create_session(pid, email, source_address="10.0.0.1")
    assert registry.active_sessions() == []
    assert audit.entries == []


def test_concurrent_limit_evicts_least_recently_active(clock, audit):
    reg = SessionRegistry(cfg=SessionsConfig(max_concurrent_sessions=2), audit=audit, now=clock)
    _login(reg, ip="A")
    clock.advance(1)
    _login(reg, ip="B")
    clock.advance(1)
    _login(reg, ip="C")

    active = reg.active_sessions("u1")
    assert sorted(r.source_address for r in active) == ["B", "C"]

    forced = audit.logouts(LogoutReason.concurrent_session_limit.value)
    assert len(forced) == 1
    assert forced[0].old_data["ip_address"] == "A"
    assert forced[0].metadata["forced_logout"] is True


def test_touched_sessions_survive_eviction(clock, audit):
    reg = SessionRegistry(cfg=SessionsConfig(max_concurrent_sessions=2), audit=audit, now=clock)
    _login(reg, ip="A")
    clock.advance(1)
    _login(reg, ip="B")
    clock.advance(1)
    reg.touch("u1")  # both A and B now share the same last activity
    clock.advance(1)
    _login(reg, ip="C")

    survivors = {r.source_address for r in reg.active_sessions("u1")}
    assert len(survivors) == 2
    assert "C" in survivors


def test_bound_holds_for_many_logins(clock, audit):
    reg = SessionRegistry(cfg=SessionsConfig(max_concurrent_sessions=3), audit=audit, now=clock)
    for i in range(20):
        clock.advance(1)
        _login(reg, ip=f"10.0.0.{i}")
    active = reg.active_sessions("u1")
    assert len(active) == 3
    assert [r.source_address for r in active] == ["10.0.0.19", "10.0.0.18", "10.0.0.17"]
    assert len(audit.logouts("concurrent_session_limit")) == 17


def test_bound_is_per_principal(registry):
    for i in range(3):
        _login(registry, pid="u1", ip=f"a{i}")
        _login(registry, pid="u2", ip=f"b{i}")
    assert len(registry.active_sessions("u1")) == 3
    assert len(registry.active_sessions("u2")) == 3
    assert len(registry.active_sessions()) == 6


def test_same_identity_key_replaces_record(registry, audit):
    _login(registry, ip="A")
    _login(registry, ip="A")
    assert len(registry.active_sessions("u1")) == 1
    assert audit.logouts() == []


def test_timeout_boundary(registry, clock):
    _login(registry)
    clock.advance(100)
    registry.touch("u1")
    t1 = clock.time()

    assert len(registry.active_sessions("u1", now=t1 + 1800 - 0.001)) == 1
    assert registry.active_sessions("u1", now=t1 + 1800 + 0.001) == []


def test_touch_unknown_principal_is_noop(registry, audit):
    assert registry.touch("ghost") == 0
    assert audit.entries == []


def test_touch_does_not_revive_expired_session(registry, audit, clock):
    _login(registry)
    clock.advance(1801)
    assert registry.touch("u1") == 0
    assert registry.active_sessions("u1") == []
    assert len(audit.logouts("session_timeout")) == 1


def test_remove_session_by_origin(registry, audit, clock):
    _login(registry, ip="A")
    _login(registry, ip="B")
    clock.advance(90)

    assert registry.remove_session("u1", "A") == 1
    assert [r.source_address for r in registry.active_sessions("u1")] == ["B"]

    explicit = audit.logouts("explicit")
    assert len(explicit) == 1
    assert explicit[0].old_data["session_duration_seconds"] == pytest.approx(90.0)


def test_remove_all_sessions_of_principal(registry, audit):
    _login(registry, ip="A")
    _login(registry, ip="B")
    _login(registry, pid="u2", ip="C")
    assert registry.remove_session("u1") == 2
    assert registry.active_sessions("u1") == []
    assert len(registry.active_sessions("u2")) == 1
    assert len(audit.logouts("explicit")) == 2


def test_remove_unknown_principal_is_noop(registry, audit):
    assert registry.remove_session("ghost") == 0
    assert registry.remove_session("ghost", "A") == 0
    assert audit.entries == []


def test_sweep_is_idempotent(registry, audit, clock):
    _login(registry, ip="A")
    _login(registry, pid="u2", ip="B")
    clock.advance(1000)
    registry.touch("u2")
    clock.advance(1000)

    now = clock.time()
    assert registry.sweep_expired(now) == 1
    first = [r.model_dump() for r in registry.active_sessions(now=now)]
    audits_after_first = len(audit.entries)

    assert registry.sweep_expired(now) == 0
    assert [r.model_dump() for r in registry.active_sessions(now=now)] == first
    assert len(audit.entries) == audits_after_first
    assert len(audit.logouts("session_timeout")) == 1


def test_active_sessions_sorted_newest_activity_first(registry, clock):
    _login(registry, ip="A")
    clock.advance(5)
    _login(registry, pid="u2", ip="B")
    clock.advance(5)
    registry.touch("u1")
    assert [r.principal_id for r in registry.active_sessions()] == ["u1", "u2"]


def test_snapshots_are_copies(registry):
    _login(registry)
    snap = registry.active_sessions("u1")[0]
    snap.last_activity_at = 0.0
    assert registry.active_sessions("u1")[0].last_activity_at != 0.0


def test_stats(registry, clock):
    _login(registry, ip="A")
    for _ in range(6):
        clock.advance(1200)
        registry.touch("u1")
    _login(registry, pid="u2", ip="B")
    clock.advance(60)

    st = registry.stats()
    assert st.total_active == 2
    assert st.unique_users == 2
    assert st.sessions_started_last_hour == 1
    assert st.average_session_duration_seconds == pytest.approx((7260 + 60) / 2)


def test_stats_empty(registry):
    st = registry.stats()
    assert st.total_active == 0
    assert st.average_session_duration_seconds == 0.0


def test_validate_and_touch(registry, clock):
    assert registry.validate_and_touch("u1") is False
    _login(registry)
    clock.advance(1000)
    assert registry.validate_and_touch("u1") is True
    assert registry.active_sessions("u1")[0].last_activity_at == clock.time()
    clock.advance(1801)
    assert registry.validate_and_touch("u1") is False
    assert registry.validate_and_touch("") is False


def test_require_session_raises_without_session(registry):
    with pytest.raises(SessionInvalidError):
        registry.require_session("u1")
    _login(registry)
    registry.require_session("u1")


def test_audit_failure_does_not_break_session_calls(registry, audit):
    audit.fail = True
    rec = _login(registry)
    assert rec.principal_id == "u1"
    assert registry.validate_and_touch("u1") is True
    assert registry.remove_session("u1") == 1


def test_padded_principal_id_reaches_the_same_sessions(registry, audit):
    _login(registry, pid=" u1 ")
    assert [r.principal_id for r in registry.active_sessions(" u1 ")] == ["u1"]
    assert registry.touch(" u1 ") == 1
    assert registry.validate_and_touch(" u1 ") is True
    assert registry.remove_session(" u1 ") == 1
    assert registry.validate_and_touch(" u1 ") is False
    assert len(audit.logouts("explicit")) == 1


def test_blank_principal_id_is_noop_everywhere(registry, audit):
    _login(registry)
    assert registry.touch("  ") == 0
    assert registry.remove_session("") == 0
    assert registry.remove_session(None) == 0
    assert len(registry.active_sessions("u1")) == 1
    assert audit.logouts() == []


def test_remove_session_after_timeout_records_timeout(registry, audit, clock):
    _login(registry, ip="A")
    clock.advance(1801)
    assert registry.remove_session("u1") == 0
    assert audit.logouts("explicit") == []
    timed_out = audit.logouts("session_timeout")
    assert len(timed_out) == 1
    assert timed_out[0].old_data["idle_seconds"] == pytest.approx(1801.0)


def test_remove_session_mixes_timeout_and_explicit(registry, audit, clock):
    _login(registry, ip="A")
    clock.advance(1000)
    _login(registry, ip="B")
    clock.advance(900)
    assert registry.remove_session("u1") == 1
    assert [e.old_data["ip_address"] for e in audit.logouts("session_timeout")] == ["A"]
    assert [e.old_data["ip_address"] for e in audit.logouts("explicit")] == ["B"]


def test_ended_sessions_are_published(clock, audit):
    class Bus:
        def __init__(self):
            self.events = []

        def publish(self, ev):  # noqa: ANN001
            self.events.append(ev)
            return True

    bus = Bus()
    reg = SessionRegistry(cfg=SessionsConfig(max_concurrent_sessions=1), audit=audit, event_bus=bus, now=clock)
    _login(reg, ip="A")
    clock.advance(1)
    _login(reg, ip="B")
    reg.remove_session("u1")

    assert [(e.event_type.value, e.payload["reason"], e.payload["ip_address"]) for e in bus.events] == [
        ("session.ended", "concurrent_session_limit", "A"),
        ("session.ended", "explicit", "B"),
    ]
    assert bus.events[0].payload["forced"] is True
