from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from adminguard.core.audit.redaction import redact_value

if TYPE_CHECKING:
    from adminguard.core.sessions.models import LogoutReason, SessionRecord
    from adminguard.core.threats.models import SecurityAlert


class EventType(str, Enum):
    alert_raised = "alert.raised"
    session_ended = "session.ended"


class EventSeverity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class SourceSubsystem(str, Enum):
    sessions = "sessions"
    threats = "threats"


# alert severity value -> event severity
_ALERT_SEVERITY = {
    "low": EventSeverity.INFO,
    "medium": EventSeverity.WARN,
    "high": EventSeverity.ERROR,
    "critical": EventSeverity.CRITICAL,
}


class GuardEvent(BaseModel):
    """
    Notification put on the bus when an alert is raised or a session ends.

    Build instances with ``alert_raised_event`` / ``session_ended_event``;
    the payload is redacted like audit metadata.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    event_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    event_type: EventType
    source_subsystem: SourceSubsystem
    severity: EventSeverity = EventSeverity.INFO
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("payload", mode="before")
    @classmethod
    def _redact_payload(cls, v: Any) -> Dict[str, Any]:
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("payload must be an object")
        return redact_value(v)


def alert_raised_event(alert: "SecurityAlert", *, trace_id: Optional[str] = None) -> GuardEvent:
    return GuardEvent(
        event_type=EventType.alert_raised,
        source_subsystem=SourceSubsystem.threats,
        severity=_ALERT_SEVERITY.get(alert.severity.value, EventSeverity.INFO),
        timestamp=alert.timestamp,
        trace_id=trace_id,
        payload={
            "alert_id": alert.id,
            "type": alert.type.value,
            "severity": alert.severity.value,
            "message": alert.message,
            "escalation_level": alert.escalation_level,
            "metadata": alert.metadata,
        },
    )


def session_ended_event(record: "SessionRecord", reason: "LogoutReason", ended_at: float, *, trace_id: Optional[str] = None) -> GuardEvent:
    """Forced logouts (concurrent-session eviction) are published at WARN."""
    forced = reason.value == "concurrent_session_limit"
    return GuardEvent(
        event_type=EventType.session_ended,
        source_subsystem=SourceSubsystem.sessions,
        severity=EventSeverity.WARN if forced else EventSeverity.INFO,
        timestamp=float(ended_at),
        trace_id=trace_id,
        payload={
            "principal_id": record.principal_id,
            "ip_address": record.source_address,
            "reason": reason.value,
            "forced": forced,
            "session_duration_seconds": record.duration_seconds(ended_at),
        },
    )
