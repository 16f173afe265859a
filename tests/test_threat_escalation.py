from __future__ import annotations

from adminguard.core.config.models import ThreatsConfig
from adminguard.core.threats.models import AlertSeverity, AlertType
from adminguard.core.threats.monitor import ThreatMonitor


def _types(alerts):
    return [a.type for a in alerts]


def test_brute_force_raised_for_repeated_failures_from_one_origin(monitor, audit, clock):
    for email in ("a@example.com", "b@example.com", "c@example.com"):
        monitor.record_failed_login(email, "6.6.6.6")
        clock.advance(30)
    raised = monitor.sweep()
    assert _types(raised) == [AlertType.brute_force_attack]
    bf = raised[0]
    assert bf.severity == AlertSeverity.high
    assert bf.escalation_level == 1
    assert bf.metadata["ip_address"] == "6.6.6.6"
    assert bf.metadata["failed_attempts"] == 3
    assert bf.metadata["emails"] == ["a@example.com", "b@example.com", "c@example.com"]

    escalations = audit.by_action("security_event")
    assert len(escalations) == 1
    assert escalations[0].metadata["type"] == "brute_force_attack"


def test_failures_from_different_origins_do_not_correlate(monitor):
    monitor.record_failed_login("a@example.com", "1.1.1.1")
    monitor.record_failed_login("a@example.com", "2.2.2.2")
    monitor.record_failed_login("a@example.com", "3.3.3.3")
    assert monitor.sweep() == []


def test_unusual_activity_after_five_alerts(monitor):
    for i in range(5):
        monitor.record_suspicious_activity(AlertType.rate_limit_exceeded, f"burst {i}")
    raised = monitor.sweep()
    assert _types(raised) == [AlertType.unusual_activity_pattern]
    assert raised[0].severity == AlertSeverity.medium
    assert raised[0].metadata["alert_count"] == 5
    assert raised[0].metadata["by_type"] == {"rate_limit_exceeded": 5}


def test_sweep_is_idempotent_for_same_now(monitor, audit, clock):
    for _ in range(5):
        monitor.record_failed_login("a@example.com", "6.6.6.6")
    now = clock.time()
    first = monitor.sweep(now)
    assert sorted(a.type.value for a in first) == ["brute_force_attack", "unusual_activity_pattern"]
    retained = len(monitor)
    audits = len(audit.entries)

    assert monitor.sweep(now) == []
    assert len(monitor) == retained
    assert len(audit.entries) == audits


def test_escalation_alerts_do_not_escalate_again(monitor, clock):
    for _ in range(5):
        monitor.record_suspicious_activity(AlertType.suspicious_activity, "noise")
    assert len(monitor.sweep()) == 1
    clock.advance(60)
    # only escalation alerts are new; nothing further is derived from them
    assert monitor.sweep() == []


def test_new_contributing_alert_fires_rule_again(monitor, clock):
    for _ in range(3):
        monitor.record_failed_login("a@example.com", "6.6.6.6")
    assert _types(monitor.sweep()) == [AlertType.brute_force_attack]
    clock.advance(60)
    monitor.record_failed_login("a@example.com", "6.6.6.6")
    assert _types(monitor.sweep()) == [AlertType.brute_force_attack]


def test_alerts_older_than_window_are_ignored(monitor, clock):
    for _ in range(5):
        monitor.record_suspicious_activity(AlertType.suspicious_activity, "old")
    clock.advance(3601)
    assert monitor.sweep() == []


def test_depth_zero_disables_escalation(clock, audit):
    mon = ThreatMonitor(cfg=ThreatsConfig(max_escalation_depth=0), audit=audit, now=clock)
    for _ in range(10):
        mon.record_failed_login("a@example.com", "6.6.6.6")
    assert mon.sweep() == []


def test_depth_two_lets_escalations_feed_unusual_activity(clock, audit):
    mon = ThreatMonitor(cfg=ThreatsConfig(max_escalation_depth=2, unusual_activity_threshold=4), audit=audit, now=clock)
    for ip in ("1.1.1.1", "2.2.2.2"):
        for _ in range(3):
            mon.record_failed_login("a@example.com", ip)
    first = mon.sweep()
    assert sorted(a.type.value for a in first) == ["brute_force_attack", "brute_force_attack", "unusual_activity_pattern"]
    unusual = [a for a in first if a.type == AlertType.unusual_activity_pattern][0]
    assert unusual.escalation_level == 1

    clock.advance(1)
    second = mon.sweep()
    # level-1 escalations are newer than the inputs of the first firing
    assert _types(second) == [AlertType.unusual_activity_pattern]
    assert second[0].escalation_level == 2


def test_unusual_activity_includes_session_counts(clock, audit, registry):
    mon = ThreatMonitor(audit=audit, session_registry=registry, now=clock)
    registry.create_session("u1", "u1@example.com", source_address="A")
    for _ in range(5):
        mon.record_suspicious_activity(AlertType.unauthorized_access_attempt, "denied")
    raised = mon.sweep()
    assert raised[0].metadata["active_sessions"] == 1
    assert raised[0].metadata["active_users"] == 1
