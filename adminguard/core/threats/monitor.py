from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Sequence, Tuple

from adminguard.core.audit.models import AuditAction, AuditEntry
from adminguard.core.config.models import ThreatsConfig
from adminguard.core.events.models import alert_raised_event
from adminguard.core.threats.models import (
    FAILED_LOGIN_TYPES,
    AlertSeverity,
    AlertStats,
    AlertType,
    SecurityAlert,
    StatsWindow,
    UploadValidation,
    severity_for,
)
from adminguard.core.threats.patterns import file_extension, match_injection, suspicious_name_hits
from adminguard.core.trace import current_trace_id

REASON_TOO_LARGE = "File size exceeds maximum limit"
REASON_BAD_TYPE = "Invalid file type"
REASON_SUSPICIOUS_NAME = "Suspicious file name"


_Stored = Tuple[int, SecurityAlert]


class ThreatMonitor:
    """
    Classifies security signals into alerts kept in a bounded FIFO ring.

    The ring drops the oldest alert once ``max_alerts`` is reached, whatever its
    severity. ``sweep`` derives escalation alerts from what the ring holds.
    """

    def __init__(
        self,
        *,
        cfg: Optional[ThreatsConfig] = None,
        audit: Any = None,
        event_bus: Any = None,
        session_registry: Any = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
        auth_section: str = "auth",
        security_section: str = "security",
    ) -> None:
        self.cfg = cfg or ThreatsConfig()
        self.audit = audit
        self.event_bus = event_bus
        self.session_registry = session_registry
        self.logger = logger or logging.getLogger("adminguard.threats")
        self.auth_section = auth_section
        self.security_section = security_section
        self._now = now or time.time
        self._lock = threading.Lock()
        self._alerts: Deque[_Stored] = collections.deque()
        self._seq = 0
        # (rule, correlation key) -> newest contributing seq when the rule last fired
        self._escalated: Dict[Tuple[str, str], int] = {}

    # ---- signals ----
    def record_failed_login(
        self,
        email: str,
        source_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[float] = None,
    ) -> SecurityAlert:
        ts = self._resolve_now(now)
        mail = str(email or "").strip().lower()
        ip = str(source_address or "unknown")
        cutoff = ts - float(self.cfg.failed_login_window_seconds)
        with self._lock:
            prior = sum(
                1
                for _, a in self._alerts
                if a.type == AlertType.failed_login_attempt
                and a.timestamp > cutoff
                and a.metadata.get("email") == mail
                and a.metadata.get("ip_address") == ip
            )
            attempts = prior + 1
            meta: Dict[str, Any] = {"email": mail, "ip_address": ip, "user_agent": str(user_agent or "unknown")}
            if attempts >= int(self.cfg.failed_login_threshold):
                alert = self._insert_locked(
                    AlertType.multiple_failed_logins,
                    f"Multiple failed login attempts detected for {mail} from {ip}",
                    {**meta, "attempt_count": attempts},
                    ts,
                )
            else:
                alert = self._insert_locked(AlertType.failed_login_attempt, f"Failed login attempt for {mail}", meta, ts)
        self._announce(alert)
        self._audit(
            AuditEntry(
                action=AuditAction.access,
                section=self.auth_section,
                timestamp=ts,
                trace_id=current_trace_id(),
                metadata={
                    "event": "failed_login",
                    "email": mail,
                    "ip_address": ip,
                    "user_agent": str(user_agent or "unknown"),
                    "attempt_count": attempts,
                    "alert_id": alert.id,
                    "alert_type": alert.type.value,
                },
            )
        )
        return alert

    def record_suspicious_activity(
        self,
        alert_type: AlertType,
        description: str,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[float] = None,
    ) -> SecurityAlert:
        ts = self._resolve_now(now)
        alert = self._raise(AlertType(alert_type), description, dict(metadata or {}), ts)
        self._audit_suspicious(alert, description, alert.metadata, ts)
        return alert

    def scan_for_injection(
        self,
        text: str,
        context: str,
        *,
        source_address: Optional[str] = None,
        now: Optional[float] = None,
    ) -> bool:
        """
        Checks ``text`` against the SQL and script pattern families.

        Returns True (and raises one alert) on the first family that matches, so
        the caller can reject the request.
        """
        if text is None:
            return False
        text = str(text)
        found = match_injection(text)
        if found is None:
            return False
        family, hits = found
        ts = self._resolve_now(now)
        label = "SQL injection" if family.alert_type == AlertType.sql_injection_attempt else "XSS"
        description = f"Potential {label} attempt detected in {context}"
        meta = {
            "input": text[: int(self.cfg.max_logged_input_chars)],
            "context": str(context),
            "ip_address": str(source_address or "unknown"),
            "family": family.name,
            "patterns": hits,
        }
        alert = self._raise(family.alert_type, description, meta, ts)
        self._audit_suspicious(alert, description, meta, ts)
        return True

    def validate_upload(
        self,
        file_name: str,
        file_size_bytes: int,
        mime_type: Optional[str] = None,
        allowed_extensions: Optional[Iterable[str]] = None,
        *,
        source_address: Optional[str] = None,
        now: Optional[float] = None,
    ) -> UploadValidation:
        ts = self._resolve_now(now)
        name = str(file_name or "")
        size = max(0, int(file_size_bytes or 0))
        allowed = _normalize_extensions(self.cfg.default_allowed_extensions if allowed_extensions is None else allowed_extensions)
        ip = str(source_address or "unknown")

        reasons: List[str] = []
        alerts: List[SecurityAlert] = []

        if size > int(self.cfg.max_upload_bytes):
            reasons.append(REASON_TOO_LARGE)
            alerts.append(
                self._raise(
                    AlertType.unusual_upload_activity,
                    "Unusually large file upload attempt",
                    {"file_name": name, "file_size": size, "mime_type": mime_type, "max_upload_bytes": int(self.cfg.max_upload_bytes), "ip_address": ip},
                    ts,
                )
            )

        ext = file_extension(name)
        type_rejected = ext is None or ext not in allowed
        if type_rejected:
            reasons.append(REASON_BAD_TYPE)
            alerts.append(
                self._raise(
                    AlertType.unusual_upload_activity,
                    "Upload of disallowed file type",
                    {"file_name": name, "file_extension": ext, "mime_type": mime_type, "allowed_extensions": allowed, "ip_address": ip},
                    ts,
                )
            )

        rules = suspicious_name_hits(name, extension_rejected=type_rejected)
        if rules:
            reasons.append(REASON_SUSPICIOUS_NAME)
            alerts.append(
                self._raise(
                    AlertType.unusual_upload_activity,
                    "Upload with suspicious file name",
                    {"file_name": name, "rules": rules, "ip_address": ip},
                    ts,
                )
            )

        if reasons:
            self._audit(
                AuditEntry(
                    action=AuditAction.access,
                    section=self.security_section,
                    timestamp=ts,
                    trace_id=current_trace_id(),
                    metadata={
                        "event": "upload_rejected",
                        "file_name": name,
                        "file_size": size,
                        "mime_type": mime_type,
                        "ip_address": ip,
                        "reasons": reasons,
                        "alert_ids": [a.id for a in alerts],
                        "severity": AlertSeverity.medium.value,
                    },
                )
            )
        return UploadValidation(valid=not reasons, reasons=reasons)

    # ---- queries ----
    def recent_alerts(self, limit: int = 50, severity: Optional[AlertSeverity] = None) -> List[SecurityAlert]:
        if int(limit) <= 0:
            return []
        sev = AlertSeverity(severity) if severity is not None else None
        with self._lock:
            items = [(seq, a) for seq, a in self._alerts if sev is None or a.severity == sev]
        items.sort(key=lambda it: (it[1].timestamp, it[0]), reverse=True)
        return [a for _, a in items[: int(limit)]]

    def get_alert(self, alert_id: str) -> Optional[SecurityAlert]:
        with self._lock:
            for _, a in self._alerts:
                if a.id == alert_id:
                    return a
        return None

    def stats(self, window: StatsWindow = StatsWindow.day, now: Optional[float] = None) -> AlertStats:
        ts = self._resolve_now(now)
        win = StatsWindow(window)
        with self._lock:
            recent = [a for _, a in self._alerts if ts - a.timestamp < win.seconds]
        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for a in recent:
            by_type[a.type.value] = by_type.get(a.type.value, 0) + 1
            by_severity[a.severity.value] = by_severity.get(a.severity.value, 0) + 1
        return AlertStats(
            window=win,
            total_alerts=len(recent),
            by_type=by_type,
            by_severity=by_severity,
            critical_count=by_severity.get(AlertSeverity.critical.value, 0),
            high_count=by_severity.get(AlertSeverity.high.value, 0),
            session_stats=self._session_stats(ts),
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._alerts)

    # ---- escalation ----
    def sweep(self, now: Optional[float] = None) -> List[SecurityAlert]:
        """
        Escalation pass over the last ``escalation_window_seconds`` of alerts.

        Only alerts below ``max_escalation_depth`` feed the rules, so escalation
        alerts do not escalate again at the default depth of 1. A rule re-fires
        for a key only once a newer contributing alert has arrived.
        """
        ts = self._resolve_now(now)
        session_stats = self._session_stats(ts)
        window = float(self.cfg.escalation_window_seconds)
        depth = int(self.cfg.max_escalation_depth)
        raised: List[SecurityAlert] = []
        with self._lock:
            candidates = [(seq, a) for seq, a in self._alerts if 0 <= ts - a.timestamp < window and a.escalation_level < depth]

            by_origin: Dict[str, List[_Stored]] = {}
            for seq, a in candidates:
                if a.type in FAILED_LOGIN_TYPES:
                    by_origin.setdefault(str(a.metadata.get("ip_address") or "unknown"), []).append((seq, a))
            for ip in sorted(by_origin):
                group = by_origin[ip]
                if len(group) < int(self.cfg.brute_force_threshold) or not self._should_fire_locked("brute_force", ip, group):
                    continue
                raised.append(
                    self._insert_locked(
                        AlertType.brute_force_attack,
                        f"Possible brute force attack: {len(group)} failed logins from {ip} in the last hour",
                        {
                            "ip_address": ip,
                            "failed_attempts": len(group),
                            "emails": sorted({str(a.metadata.get("email") or "") for _, a in group}),
                            "window_seconds": window,
                        },
                        ts,
                        level=_next_level(group),
                    )
                )

            if len(candidates) >= int(self.cfg.unusual_activity_threshold) and self._should_fire_locked("unusual_activity", "*", candidates):
                by_type: Dict[str, int] = {}
                for _, a in candidates:
                    by_type[a.type.value] = by_type.get(a.type.value, 0) + 1
                meta: Dict[str, Any] = {"alert_count": len(candidates), "by_type": by_type, "window_seconds": window}
                if session_stats is not None:
                    meta["active_sessions"] = session_stats.total_active
                    meta["active_users"] = session_stats.unique_users
                raised.append(
                    self._insert_locked(
                        AlertType.unusual_activity_pattern,
                        f"Unusual activity pattern: {len(candidates)} security alerts in the last hour",
                        meta,
                        ts,
                        level=_next_level(candidates),
                    )
                )
            self._prune_escalations_locked()

        for alert in raised:
            self._announce(alert)
            self._audit(
                AuditEntry(
                    action=AuditAction.security_event,
                    section=self.security_section,
                    timestamp=ts,
                    trace_id=current_trace_id(),
                    metadata={
                        "event": "alert_escalated",
                        "alert_id": alert.id,
                        "type": alert.type.value,
                        "severity": alert.severity.value,
                        "description": alert.message,
                        **alert.metadata,
                    },
                )
            )
        return raised

    # ---- internals ----
    def _resolve_now(self, now: Optional[float]) -> float:
        return float(self._now() if now is None else now)

    def _raise(self, alert_type: AlertType, message: str, metadata: Dict[str, Any], ts: float) -> SecurityAlert:
        with self._lock:
            alert = self._insert_locked(alert_type, message, metadata, ts)
        self._announce(alert)
        return alert

    def _insert_locked(self, alert_type: AlertType, message: str, metadata: Dict[str, Any], ts: float, *, level: int = 0) -> SecurityAlert:
        alert = SecurityAlert(
            type=alert_type,
            severity=severity_for(alert_type),
            message=message,
            timestamp=ts,
            metadata=metadata,
            escalation_level=level,
        )
        self._seq += 1
        self._alerts.append((self._seq, alert))
        while len(self._alerts) > int(self.cfg.max_alerts):
            self._alerts.popleft()
        return alert

    def _should_fire_locked(self, rule: str, key: str, contributing: Sequence[_Stored]) -> bool:
        newest = max(seq for seq, _ in contributing)
        if newest <= self._escalated.get((rule, key), 0):
            return False
        self._escalated[(rule, key)] = newest
        return True

    def _prune_escalations_locked(self) -> None:
        if not self._alerts:
            self._escalated.clear()
            return
        oldest = self._alerts[0][0]
        for k in [k for k, seq in self._escalated.items() if seq < oldest]:
            del self._escalated[k]

    def _session_stats(self, ts: float):  # noqa: ANN202
        if self.session_registry is None:
            return None
        try:
            return self.session_registry.stats(ts)
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Session statistics unavailable: %s", e)
            return None

    def _announce(self, alert: SecurityAlert) -> None:
        if alert.severity in (AlertSeverity.high, AlertSeverity.critical):
            self.logger.warning("Security alert [%s]: %s", alert.severity.value.upper(), alert.message)
        else:
            self.logger.info("Security alert [%s]: %s", alert.severity.value.upper(), alert.message)
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(alert_raised_event(alert, trace_id=current_trace_id()))
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Alert event publish failed: %s", e)

    def _audit_suspicious(self, alert: SecurityAlert, description: str, metadata: Dict[str, Any], ts: float) -> None:
        self._audit(
            AuditEntry(
                action=AuditAction.access,
                section=self.security_section,
                timestamp=ts,
                trace_id=current_trace_id(),
                metadata={
                    "event": "suspicious_activity",
                    "alert_id": alert.id,
                    "type": alert.type.value,
                    "description": description,
                    "severity": alert.severity.value,
                    **metadata,
                },
            )
        )

    def _audit(self, entry: AuditEntry) -> None:
        if self.audit is None:
            return
        try:
            self.audit.submit(entry)
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Audit submit failed for %s: %s", entry.action.value, e)


def _next_level(items: Sequence[_Stored]) -> int:
    return max(a.escalation_level for _, a in items) + 1


def _normalize_extensions(exts: Iterable[str]) -> List[str]:
    if isinstance(exts, str):
        exts = [exts]
    return sorted({str(e).strip().lstrip(".").lower() for e in exts if str(e).strip().lstrip(".")})
