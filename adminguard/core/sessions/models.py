from __future__ import annotations

from enum import Enum
from typing import Tuple

from pydantic import BaseModel, ConfigDict


SessionKey = Tuple[str, str, float]


class LogoutReason(str, Enum):
    concurrent_session_limit = "concurrent_session_limit"
    session_timeout = "session_timeout"
    explicit = "explicit"


class SessionRecord(BaseModel):
    """
    One active login of a principal from one origin.

    Only ``last_activity_at`` changes during the record's life, and only inside
    the registry; callers always receive copies.
    """

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    principal_id: str
    email: str
    display_name: str = ""
    role: str = ""
    login_at: float
    last_activity_at: float
    source_address: str = "unknown"
    user_agent: str = "unknown"

    @property
    def key(self) -> SessionKey:
        return (self.principal_id, self.source_address, self.login_at)

    def idle_seconds(self, now: float) -> float:
        return float(now) - float(self.last_activity_at)

    def duration_seconds(self, now: float) -> float:
        return max(0.0, float(now) - float(self.login_at))


class SessionStats(BaseModel):
    model_config = ConfigDict(extra="forbid")

    total_active: int = 0
    unique_users: int = 0
    average_session_duration_seconds: float = 0.0
    sessions_started_last_hour: int = 0
