from adminguard.core.sessions.models import LogoutReason, SessionKey, SessionRecord, SessionStats
from adminguard.core.sessions.registry import SessionRegistry

__all__ = ["LogoutReason", "SessionKey", "SessionRecord", "SessionStats", "SessionRegistry"]
