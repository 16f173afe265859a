"""
In-process event bus used to surface alerts and session terminations.
"""

from adminguard.core.events.models import (
    EventSeverity,
    EventType,
    GuardEvent,
    SourceSubsystem,
    alert_raised_event,
    session_ended_event,
)
from adminguard.core.events.bus import EventBus, EventBusConfig, OverflowPolicy

__all__ = [
    "EventSeverity",
    "EventType",
    "GuardEvent",
    "SourceSubsystem",
    "alert_raised_event",
    "session_ended_event",
    "EventBus",
    "EventBusConfig",
    "OverflowPolicy",
]
