from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Tuple

from adminguard.core.audit.models import AuditAction, AuditEntry
from adminguard.core.config.models import SessionsConfig
from adminguard.core.errors import SessionInvalidError, ValidationError
from adminguard.core.events.models import session_ended_event
from adminguard.core.sessions.models import LogoutReason, SessionKey, SessionRecord, SessionStats
from adminguard.core.trace import current_trace_id

_Ended = Tuple[SessionRecord, LogoutReason]


class SessionRegistry:
    """
    In-memory bookkeeping of authenticated sessions.

    Records are indexed per principal so the per-request path only looks at the
    caller's own sessions. All mutation happens under one lock; audit entries
    and events for ended sessions are emitted after the lock is released.
    """

    def __init__(
        self,
        *,
        cfg: Optional[SessionsConfig] = None,
        audit: Any = None,
        event_bus: Any = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
        section: str = "auth",
    ) -> None:
        self.cfg = cfg or SessionsConfig()
        self.audit = audit
        self.event_bus = event_bus
        self.logger = logger or logging.getLogger("adminguard.sessions")
        self.section = section
        self._now = now or time.time
        self._lock = threading.Lock()
        self._by_principal: Dict[str, Dict[SessionKey, SessionRecord]] = {}

    # ---- lifecycle ----
    def create_session(
        self,
        principal_id: str,
        email: str,
        display_name: str = "",
        role: str = "",
        *,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[float] = None,
    ) -> SessionRecord:
        pid = _principal(principal_id)
        mail = str(email or "").strip()
        if not pid:
            raise ValidationError("principal_id is required.", field="principal_id")
        if not mail:
            raise ValidationError("email is required.", field="email", principal_id=pid)
        ts = self._resolve_now(now)
        rec = SessionRecord(
            principal_id=pid,
            email=mail,
            display_name=str(display_name or ""),
            role=str(role or ""),
            login_at=ts,
            last_activity_at=ts,
            source_address=str(source_address or "unknown"),
            user_agent=str(user_agent or "unknown"),
        )

        limit = int(self.cfg.max_concurrent_sessions)
        with self._lock:
            ended = self._expire_principal_locked(pid, ts)
            sessions = self._by_principal.setdefault(pid, {})
            replaced = sessions.pop(rec.key, None)
            while len(sessions) >= limit:
                oldest = min(sessions, key=lambda k: (sessions[k].last_activity_at, sessions[k].login_at))
                ended.append((sessions.pop(oldest), LogoutReason.concurrent_session_limit))
            sessions[rec.key] = rec
            snapshot = rec.model_copy()

        if replaced is not None:
            self.logger.info("Session for %s from %s re-created at the same instant; previous record replaced", pid, rec.source_address)
        self._emit_ended(ended, ts)
        self._audit(
            AuditEntry(
                action=AuditAction.login,
                section=self.section,
                user_id=pid,
                new_data={
                    "user_id": pid,
                    "email": mail,
                    "ip_address": rec.source_address,
                    "user_agent": rec.user_agent,
                },
                timestamp=ts,
                trace_id=current_trace_id(),
                metadata={"role": rec.role, "display_name": rec.display_name},
            )
        )
        return snapshot

    def touch(self, principal_id: str, now: Optional[float] = None) -> int:
        """Bumps activity on every live session of the principal; unknown principals are a no-op."""
        pid = _principal(principal_id)
        if not pid:
            return 0
        ts = self._resolve_now(now)
        with self._lock:
            ended = self._expire_principal_locked(pid, ts)
            touched = self._touch_locked(pid, ts)
        self._emit_ended(ended, ts)
        return touched

    def remove_session(self, principal_id: str, source_address: Optional[str] = None, now: Optional[float] = None) -> int:
        """
        Explicit logout. Sessions already past the idle timeout end as timed
        out instead; the return value counts explicit logouts only.
        """
        pid = _principal(principal_id)
        if not pid:
            return 0
        ts = self._resolve_now(now)
        with self._lock:
            ended = self._expire_principal_locked(pid, ts)
            removed = 0
            sessions = self._by_principal.get(pid)
            if sessions:
                for key in [k for k, r in sessions.items() if source_address is None or r.source_address == source_address]:
                    ended.append((sessions.pop(key), LogoutReason.explicit))
                    removed += 1
                if not sessions:
                    self._by_principal.pop(pid, None)
        self._emit_ended(ended, ts)
        return removed

    def sweep_expired(self, now: Optional[float] = None) -> int:
        ts = self._resolve_now(now)
        ended: List[_Ended] = []
        with self._lock:
            for pid in list(self._by_principal.keys()):
                ended.extend(self._expire_principal_locked(pid, ts))
        self._emit_ended(ended, ts)
        if ended:
            self.logger.info("Session sweep expired %d session(s)", len(ended))
        return len(ended)

    # ---- queries ----
    def active_sessions(self, principal_id: Optional[str] = None, now: Optional[float] = None) -> List[SessionRecord]:
        self.sweep_expired(now)
        with self._lock:
            if principal_id is None:
                records = [r for sessions in self._by_principal.values() for r in sessions.values()]
            else:
                records = list((self._by_principal.get(_principal(principal_id)) or {}).values())
            out = [r.model_copy() for r in records]
        out.sort(key=lambda r: r.last_activity_at, reverse=True)
        return out

    def stats(self, now: Optional[float] = None) -> SessionStats:
        ts = self._resolve_now(now)
        self.sweep_expired(ts)
        with self._lock:
            records = [r for sessions in self._by_principal.values() for r in sessions.values()]
            users = len(self._by_principal)
        if not records:
            return SessionStats()
        return SessionStats(
            total_active=len(records),
            unique_users=users,
            average_session_duration_seconds=sum(r.duration_seconds(ts) for r in records) / len(records),
            sessions_started_last_hour=sum(1 for r in records if ts - r.login_at < 3600),
        )

    def validate_and_touch(self, principal_id: str, now: Optional[float] = None) -> bool:
        """
        Per-request check: True when the principal still holds a live session,
        in which case that activity is recorded.
        """
        pid = _principal(principal_id)
        if not pid:
            return False
        return self.touch(pid, now) > 0

    def require_session(self, principal_id: str, now: Optional[float] = None) -> None:
        if not self.validate_and_touch(principal_id, now):
            raise SessionInvalidError(principal_id=_principal(principal_id))

    # ---- internals ----
    def _resolve_now(self, now: Optional[float]) -> float:
        return float(self._now() if now is None else now)

    def _expire_principal_locked(self, principal_id: str, now: float) -> List[_Ended]:
        sessions = self._by_principal.get(principal_id)
        if not sessions:
            return []
        timeout = float(self.cfg.session_timeout_seconds)
        expired = [k for k, r in sessions.items() if r.idle_seconds(now) > timeout]
        ended = [(sessions.pop(k), LogoutReason.session_timeout) for k in expired]
        if not sessions:
            self._by_principal.pop(principal_id, None)
        return ended

    def _touch_locked(self, principal_id: str, now: float) -> int:
        sessions = self._by_principal.get(principal_id) or {}
        for rec in sessions.values():
            if now > rec.last_activity_at:
                rec.last_activity_at = now
        return len(sessions)

    def _emit_ended(self, ended: List[_Ended], now: float) -> None:
        for rec, reason in ended:
            old_data: Dict[str, Any] = {
                "user_id": rec.principal_id,
                "email": rec.email,
                "ip_address": rec.source_address,
                "session_duration_seconds": rec.duration_seconds(now),
            }
            metadata: Dict[str, Any] = {"reason": reason.value}
            if reason == LogoutReason.concurrent_session_limit:
                metadata["forced_logout"] = True
            elif reason == LogoutReason.session_timeout:
                old_data["idle_seconds"] = rec.idle_seconds(now)
            self._audit(
                AuditEntry(
                    action=AuditAction.logout,
                    section=self.section,
                    user_id=rec.principal_id,
                    old_data=old_data,
                    timestamp=now,
                    trace_id=current_trace_id(),
                    metadata=metadata,
                )
            )
            self._publish(rec, reason, now)

    def _audit(self, entry: AuditEntry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.submit(entry)
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Audit submit failed for %s: %s", entry.action.value, e)

    def _publish(self, rec: SessionRecord, reason: LogoutReason, now: float) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(session_ended_event(rec, reason, now, trace_id=current_trace_id()))
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Session event publish failed: %s", e)


def _principal(principal_id: Any) -> str:
    return str(principal_id or "").strip()
