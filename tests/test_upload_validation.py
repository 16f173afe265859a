from __future__ import annotations

import pytest

from adminguard.core.config.models import ThreatsConfig
from adminguard.core.threats.models import AlertSeverity, AlertType
from adminguard.core.threats.monitor import REASON_BAD_TYPE, REASON_SUSPICIOUS_NAME, REASON_TOO_LARGE, ThreatMonitor


def test_php_upload_rejected_for_type_only(monitor, audit):
    res = monitor.validate_upload("shell.php", 100, "application/x-php", ["jpg", "png"])
    assert res.valid is False
    assert res.reasons == [REASON_BAD_TYPE]

    alerts = monitor.recent_alerts(10)
    assert len(alerts) == 1
    assert alerts[0].severity == AlertSeverity.medium
    assert alerts[0].type == AlertType.unusual_upload_activity
    assert len(audit.by_action("access")) == 1


def test_safe_upload_passes(monitor, audit):
    res = monitor.validate_upload("portrait.JPG", 2048, "image/jpeg", [".jpg", "png"])
    assert res.valid is True
    assert res.reasons == []
    assert len(monitor) == 0
    assert audit.entries == []


def test_oversized_upload(monitor):
    res = monitor.validate_upload("big.png", 50 * 1024 * 1024 + 1, "image/png", ["png"])
    assert res.reasons == [REASON_TOO_LARGE]
    assert monitor.validate_upload("edge.png", 50 * 1024 * 1024, "image/png", ["png"]).valid is True


@pytest.mark.parametrize("name", ["README", ".htaccess", "noext."])
def test_missing_extension_is_invalid_type(monitor, name):
    res = monitor.validate_upload(name, 10, None, ["jpg"])
    assert REASON_BAD_TYPE in res.reasons


@pytest.mark.parametrize("name", ["photo.php.jpg", "../../etc/passwd.jpg", 'what?.jpg', "a<b>.jpg"])
def test_suspicious_names(monitor, name):
    res = monitor.validate_upload(name, 10, "image/jpeg", ["jpg"])
    assert res.reasons == [REASON_SUSPICIOUS_NAME]


def test_allowed_executable_extension_is_still_suspicious(monitor):
    res = monitor.validate_upload("deploy.sh", 10, "text/x-shellscript", ["sh"])
    assert res.reasons == [REASON_SUSPICIOUS_NAME]


def test_multiple_reasons_share_one_audit_entry(clock, audit):
    mon = ThreatMonitor(cfg=ThreatsConfig(max_upload_bytes=1000), audit=audit, now=clock)
    res = mon.validate_upload("../evil.exe", 5000, "application/octet-stream", ["jpg"])
    assert res.valid is False
    assert res.reasons == [REASON_TOO_LARGE, REASON_BAD_TYPE, REASON_SUSPICIOUS_NAME]
    assert len(mon) == 3
    assert all(a.severity == AlertSeverity.medium for a in mon.recent_alerts(10))

    entries = audit.by_action("access")
    assert len(entries) == 1
    assert entries[0].metadata["event"] == "upload_rejected"
    assert entries[0].metadata["reasons"] == res.reasons
    assert len(entries[0].metadata["alert_ids"]) == 3


def test_default_allowed_extensions_from_config(clock, audit):
    mon = ThreatMonitor(cfg=ThreatsConfig(default_allowed_extensions=[".PDF"]), audit=audit, now=clock)
    assert mon.validate_upload("cv.pdf", 10).valid is True
    assert mon.validate_upload("cv.docx", 10).reasons == [REASON_BAD_TYPE]
