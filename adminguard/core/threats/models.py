from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from adminguard.core.sessions.models import SessionStats


class AlertSeverity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class AlertType(str, Enum):
    failed_login_attempt = "failed_login_attempt"
    multiple_failed_logins = "multiple_failed_logins"
    suspicious_activity = "suspicious_activity"
    unauthorized_access_attempt = "unauthorized_access_attempt"
    session_hijacking_attempt = "session_hijacking_attempt"
    unusual_upload_activity = "unusual_upload_activity"
    rate_limit_exceeded = "rate_limit_exceeded"
    sql_injection_attempt = "sql_injection_attempt"
    xss_attempt = "xss_attempt"
    brute_force_attack = "brute_force_attack"
    unusual_activity_pattern = "unusual_activity_pattern"


_SEVERITY_BY_TYPE: Dict[AlertType, AlertSeverity] = {
    AlertType.sql_injection_attempt: AlertSeverity.critical,
    AlertType.session_hijacking_attempt: AlertSeverity.critical,
    AlertType.multiple_failed_logins: AlertSeverity.high,
    AlertType.unauthorized_access_attempt: AlertSeverity.high,
    AlertType.xss_attempt: AlertSeverity.high,
    AlertType.brute_force_attack: AlertSeverity.high,
    AlertType.unusual_upload_activity: AlertSeverity.medium,
    AlertType.rate_limit_exceeded: AlertSeverity.medium,
    AlertType.unusual_activity_pattern: AlertSeverity.medium,
    AlertType.failed_login_attempt: AlertSeverity.low,
    AlertType.suspicious_activity: AlertSeverity.low,
}

FAILED_LOGIN_TYPES = frozenset({AlertType.failed_login_attempt, AlertType.multiple_failed_logins})


def severity_for(alert_type: AlertType) -> AlertSeverity:
    return _SEVERITY_BY_TYPE.get(AlertType(alert_type), AlertSeverity.low)


def new_alert_id() -> str:
    return f"alert_{uuid.uuid4().hex}"


class SecurityAlert(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    id: str = Field(default_factory=new_alert_id)
    type: AlertType
    severity: AlertSeverity
    message: str
    timestamp: float = Field(default_factory=lambda: time.time())
    metadata: Dict[str, Any] = Field(default_factory=dict)
    escalation_level: int = Field(default=0, ge=0)


class StatsWindow(str, Enum):
    hour = "hour"
    day = "day"
    week = "week"

    @property
    def seconds(self) -> float:
        return {"hour": 3600.0, "day": 86400.0, "week": 7 * 86400.0}[self.value]


class AlertStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    window: StatsWindow
    total_alerts: int = 0
    by_type: Dict[str, int] = Field(default_factory=dict)
    by_severity: Dict[str, int] = Field(default_factory=dict)
    critical_count: int = 0
    high_count: int = 0
    session_stats: Optional[SessionStats] = None


class UploadValidation(BaseModel):
    model_config = ConfigDict(extra="forbid")

    valid: bool
    reasons: List[str] = Field(default_factory=list)
