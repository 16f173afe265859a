from __future__ import annotations

import time
from typing import Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field


class RequestContext(BaseModel):
    """Origin details of the request that triggered a call into the core."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    source_address: str = "unknown"
    user_agent: str = "unknown"
    now: float = Field(default_factory=lambda: time.time())
    trace_id: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], *, now: Optional[float] = None, trace_id: Optional[str] = None) -> "RequestContext":
        """
        Builds a context from request headers, preferring the first
        ``x-forwarded-for`` hop, then ``x-real-ip``.
        """
        lowered = {str(k).lower(): str(v) for k, v in (headers or {}).items()}
        forwarded = lowered.get("x-forwarded-for", "")
        ip = forwarded.split(",")[0].strip() if forwarded else ""
        ip = ip or lowered.get("x-real-ip", "").strip() or "unknown"
        kwargs = {"source_address": ip, "user_agent": lowered.get("user-agent", "").strip() or "unknown", "trace_id": trace_id}
        if now is not None:
            kwargs["now"] = float(now)
        return cls(**kwargs)
