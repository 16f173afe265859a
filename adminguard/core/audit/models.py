from __future__ import annotations

import time
import uuid
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from adminguard.core.audit.redaction import redact_value


class AuditAction(str, Enum):
    login = "login"
    logout = "logout"
    access = "access"
    security_event = "security_event"


class AuditEntry(BaseModel):
    """
    One structured record handed to the audit sink.

    ``old_data``/``new_data`` follow the admin audit log shape: the state that
    ended (logout) or began (login); ``metadata`` carries everything else.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    audit_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    action: AuditAction
    section: str
    user_id: Optional[str] = None
    old_data: Optional[Dict[str, Any]] = None
    new_data: Optional[Dict[str, Any]] = None
    timestamp: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("old_data", "new_data", "metadata")
    @classmethod
    def _redacted(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is None:
            return None
        return redact_value(v)
