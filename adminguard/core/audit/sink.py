from __future__ import annotations

from typing import Protocol, runtime_checkable

from adminguard.core.audit.models import AuditEntry


@runtime_checkable
class AuditSink(Protocol):
    """Durable append-only recorder provided by the host application."""

    def append(self, entry: AuditEntry) -> None: ...
