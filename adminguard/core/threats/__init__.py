from adminguard.core.threats.models import (
    AlertSeverity,
    AlertStats,
    AlertType,
    SecurityAlert,
    StatsWindow,
    UploadValidation,
    severity_for,
)
from adminguard.core.threats.monitor import ThreatMonitor

__all__ = [
    "AlertSeverity",
    "AlertStats",
    "AlertType",
    "SecurityAlert",
    "StatsWindow",
    "UploadValidation",
    "severity_for",
    "ThreatMonitor",
]
