from __future__ import annotations

import re
from typing import Any, Dict


_SECRET_KEYS = {
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "token",
    "access_token",
    "refresh_token",
    "authorization",
    "secret",
    "cookie",
    "session_token",
}

_BEARER_RE = re.compile(r"(authorization:\s*bearer\s+)([A-Za-z0-9\-\._~\+/]+=*)", re.IGNORECASE)
_KV_RE = re.compile(r"(?i)\b(password|passphrase|token|api[_-]?key|secret)\s*=\s*([^\s,;&]+)")

MAX_STRING = 500
MAX_ITEMS = 100


def redact_value(v: Any) -> Any:
    if v is None:
        return None
    if isinstance(v, (bool, int, float)):
        return v
    if isinstance(v, (bytes, bytearray)):
        return "<bytes>"
    if isinstance(v, str):
        s = _BEARER_RE.sub(r"\1<redacted>", v)
        s = _KV_RE.sub(r"\1=<redacted>", s)
        if len(s) > MAX_STRING:
            s = s[:MAX_STRING] + "…"
        return s
    if isinstance(v, (list, tuple, set, frozenset)):
        return [redact_value(x) for x in list(v)[:MAX_ITEMS]]
    if isinstance(v, dict):
        out: Dict[str, Any] = {}
        for k, vv in list(v.items())[:MAX_ITEMS]:
            kk = str(k)
            if kk.lower() in _SECRET_KEYS:
                out[kk] = "<redacted>"
                continue
            out[kk] = redact_value(vv)
        return out
    if hasattr(v, "value") and isinstance(getattr(v, "value"), str):
        # Enum members
        return v.value
    return str(v)[:MAX_STRING]
