from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from adminguard.core.audit.dispatcher import AuditDispatcher
from adminguard.core.audit.sink import AuditSink
from adminguard.core.config.models import GuardConfig
from adminguard.core.context import RequestContext
from adminguard.core.events.bus import EventBus
from adminguard.core.sessions.models import SessionRecord
from adminguard.core.sessions.registry import SessionRegistry
from adminguard.core.sweeper import PeriodicSweeper, SweepTask
from adminguard.core.threats.models import UploadValidation
from adminguard.core.threats.monitor import ThreatMonitor
from adminguard.core.trace import trace_context


class SecurityCore:
    """
    Composition root: one registry, one monitor, their audit dispatcher, the
    event bus and the periodic sweeper, built from a single ``GuardConfig``.

    Inbound methods take the caller's ``RequestContext``; read APIs are reached
    through ``sessions`` and ``threats`` directly.
    """

    def __init__(
        self,
        *,
        cfg: GuardConfig,
        audit: AuditDispatcher,
        event_bus: EventBus,
        sessions: SessionRegistry,
        threats: ThreatMonitor,
        sweeper: PeriodicSweeper,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.cfg = cfg
        self.audit = audit
        self.event_bus = event_bus
        self.sessions = sessions
        self.threats = threats
        self.sweeper = sweeper
        self.logger = logger or logging.getLogger("adminguard")

    @classmethod
    def from_config(
        cls,
        cfg: Optional[GuardConfig] = None,
        *,
        sink: AuditSink,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ) -> "SecurityCore":
        cfg = cfg or GuardConfig()
        base = logger or logging.getLogger("adminguard")
        audit = AuditDispatcher(sink, cfg=cfg.audit, logger=base.getChild("audit"))
        bus = EventBus(cfg=cfg.events, logger=base.getChild("events"))
        sessions = SessionRegistry(
            cfg=cfg.sessions,
            audit=audit,
            event_bus=bus,
            logger=base.getChild("sessions"),
            now=now,
            section=cfg.audit.section_auth,
        )
        threats = ThreatMonitor(
            cfg=cfg.threats,
            audit=audit,
            event_bus=bus,
            session_registry=sessions,
            logger=base.getChild("threats"),
            now=now,
            auth_section=cfg.audit.section_auth,
            security_section=cfg.audit.section_security,
        )
        sweeper = PeriodicSweeper(
            cfg=cfg.sweeper,
            tasks=[SweepTask("sessions", sessions.sweep_expired), SweepTask("threats", threats.sweep)],
            logger=base.getChild("sweeper"),
            now=now,
        )
        return cls(cfg=cfg, audit=audit, event_bus=bus, sessions=sessions, threats=threats, sweeper=sweeper, logger=base)

    # ---- lifecycle ----
    def start(self) -> None:
        # restartable after shutdown(); no-ops while running
        self.audit.start()
        if self.cfg.events.enabled:
            self.event_bus.start()
        self.sweeper.start()
        self.logger.info("adminguard started (sweep every %ss)", self.cfg.sweeper.interval_seconds)

    def shutdown(self) -> None:
        self.sweeper.stop()
        self.event_bus.shutdown()
        self.audit.stop()
        self.logger.info("adminguard stopped")

    def __enter__(self) -> "SecurityCore":
        self.start()
        return self

    def __exit__(self, *_exc: Any) -> None:
        self.shutdown()

    # ---- inbound calls ----
    def create_session(self, ctx: RequestContext, *, principal_id: str, email: str, display_name: str = "", role: str = "") -> SessionRecord:
        with trace_context(ctx.trace_id):
            return self.sessions.create_session(
                principal_id,
                email,
                display_name,
                role,
                source_address=ctx.source_address,
                user_agent=ctx.user_agent,
                now=ctx.now,
            )

    def validate_and_touch(self, ctx: RequestContext, principal_id: str) -> bool:
        with trace_context(ctx.trace_id):
            return self.sessions.validate_and_touch(principal_id, now=ctx.now)

    def require_session(self, ctx: RequestContext, principal_id: str) -> None:
        with trace_context(ctx.trace_id):
            self.sessions.require_session(principal_id, now=ctx.now)

    def remove_session(self, ctx: RequestContext, principal_id: str, *, this_origin_only: bool = False) -> int:
        with trace_context(ctx.trace_id):
            return self.sessions.remove_session(
                principal_id,
                source_address=ctx.source_address if this_origin_only else None,
                now=ctx.now,
            )

    def record_failed_login(self, ctx: RequestContext, email: str) -> None:
        with trace_context(ctx.trace_id):
            self.threats.record_failed_login(email, ctx.source_address, ctx.user_agent, now=ctx.now)

    def scan_for_injection(self, ctx: RequestContext, text: str, context: str) -> bool:
        with trace_context(ctx.trace_id):
            return self.threats.scan_for_injection(text, context, source_address=ctx.source_address, now=ctx.now)

    def scan_fields(self, ctx: RequestContext, fields: Dict[str, Any], *, prefix: str = "") -> List[str]:
        """Scans every string value of a submitted form; returns the offending field names."""
        flagged: List[str] = []
        for name, value in (fields or {}).items():
            if isinstance(value, str) and self.scan_for_injection(ctx, value, f"{prefix}{name}"):
                flagged.append(str(name))
        return flagged

    def validate_upload(
        self,
        ctx: RequestContext,
        *,
        file_name: str,
        file_size_bytes: int,
        mime_type: Optional[str] = None,
        allowed_extensions: Optional[Iterable[str]] = None,
    ) -> UploadValidation:
        with trace_context(ctx.trace_id):
            return self.threats.validate_upload(
                file_name,
                file_size_bytes,
                mime_type,
                allowed_extensions,
                source_address=ctx.source_address,
                now=ctx.now,
            )

    # ---- operator view ----
    def status(self) -> Dict[str, Any]:
        return {
            "sweeper": self.sweeper.status(),
            "audit": self.audit.stats(),
            "events": self.event_bus.get_stats(),
            "alerts_retained": len(self.threats),
        }
