from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from adminguard.core.events.bus import EventBusConfig


class SessionsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_concurrent_sessions: int = Field(default=3, ge=1, le=1000)
    session_timeout_seconds: float = Field(default=30 * 60, gt=0)


class ThreatsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_alerts: int = Field(default=1000, ge=1, le=1_000_000)
    failed_login_threshold: int = Field(default=5, ge=1, le=1000)
    failed_login_window_seconds: float = Field(default=15 * 60, gt=0)
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, ge=1)
    max_logged_input_chars: int = Field(default=200, ge=1, le=10_000)
    default_allowed_extensions: List[str] = Field(default_factory=lambda: ["jpg", "jpeg", "png", "gif", "webp", "svg", "pdf"])

    # escalation pass
    escalation_window_seconds: float = Field(default=60 * 60, gt=0)
    brute_force_threshold: int = Field(default=3, ge=1, le=1000)
    unusual_activity_threshold: int = Field(default=5, ge=1, le=100_000)
    max_escalation_depth: int = Field(default=1, ge=0, le=5)

    @field_validator("default_allowed_extensions", mode="before")
    @classmethod
    def _normalize_extensions(cls, v):  # noqa: ANN001
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        return sorted({str(x).strip().lstrip(".").lower() for x in v if str(x).strip().lstrip(".")})


class SweeperConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    interval_seconds: float = Field(default=5 * 60, gt=0)
    join_timeout_seconds: float = Field(default=2.0, gt=0, le=60.0)


class AuditConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    max_queue_size: int = Field(default=1000, ge=1, le=1_000_000)
    shutdown_grace_seconds: float = Field(default=2.0, ge=0.0, le=60.0)
    section_auth: str = "auth"
    section_security: str = "security"


class GuardConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    threats: ThreatsConfig = Field(default_factory=ThreatsConfig)
    sweeper: SweeperConfig = Field(default_factory=SweeperConfig)
    audit: AuditConfig = Field(default_factory=AuditConfig)
    events: EventBusConfig = Field(default_factory=EventBusConfig)

    @model_validator(mode="after")
    def _check_windows(self) -> "GuardConfig":
        if self.threats.failed_login_threshold > self.threats.max_alerts:
            raise ValueError("threats.failed_login_threshold cannot exceed threats.max_alerts")
        return self
