from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Deque, Dict, Optional

from adminguard.core.audit.models import AuditEntry
from adminguard.core.audit.sink import AuditSink
from adminguard.core.config.models import AuditConfig


class AuditDispatcher:
    """
    Non-blocking front for an ``AuditSink``.

    ``submit`` only enqueues; a single drain thread performs the sink writes.
    The queue is bounded and drops the oldest pending entry when full. Sink
    failures are logged and counted, never raised to the submitter.
    """

    def __init__(self, sink: AuditSink, *, cfg: Optional[AuditConfig] = None, logger: Optional[logging.Logger] = None, autostart: bool = True):
        self.sink = sink
        self.cfg = cfg or AuditConfig()
        self.logger = logger or logging.getLogger("adminguard.audit")

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._queue: Deque[AuditEntry] = collections.deque()
        self._in_flight = 0
        self._running = False
        self._accepting = True
        self._counts: Dict[str, int] = {"submitted_total": 0, "written_total": 0, "failed_total": 0, "dropped_total": 0}
        self._thread: Optional[threading.Thread] = None
        if autostart:
            self.start()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._accepting = True
            self._thread = threading.Thread(target=self._drain_loop, name="adminguard-audit", daemon=True)
        self._thread.start()

    def submit(self, entry: AuditEntry) -> bool:
        with self._lock:
            if not self._accepting:
                return False
            dropped: Optional[AuditEntry] = None
            if len(self._queue) >= int(self.cfg.max_queue_size):
                dropped = self._queue.popleft()
                self._counts["dropped_total"] += 1
            self._queue.append(entry)
            self._counts["submitted_total"] += 1
            self._cv.notify_all()
        if dropped is not None:
            self.logger.warning("Audit queue full; dropped %s entry %s", dropped.action.value, dropped.audit_id)
        return True

    def flush(self, timeout: float = 2.0) -> bool:
        """Waits until every queued entry has been handed to the sink."""
        deadline = time.monotonic() + max(0.0, float(timeout))
        with self._lock:
            while self._queue or self._in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0 or not self._running:
                    return False
                self._cv.wait(timeout=min(remaining, 0.1))
            return True

    def stop(self, grace_seconds: Optional[float] = None) -> None:
        if grace_seconds is None:
            grace_seconds = float(self.cfg.shutdown_grace_seconds)
        with self._lock:
            self._accepting = False
        self.flush(timeout=grace_seconds)
        with self._lock:
            self._running = False
            pending = len(self._queue)
            self._cv.notify_all()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=max(0.1, float(grace_seconds)))
        if pending:
            self.logger.warning("Audit dispatcher stopped with %d unwritten entries", pending)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            out = dict(self._counts)
            out["queue_depth"] = len(self._queue)
            return out

    # ---- internals ----
    def _drain_loop(self) -> None:
        while True:
            with self._lock:
                while self._running and not self._queue:
                    self._cv.wait(timeout=0.2)
                if not self._running:
                    return
                entry = self._queue.popleft()
                self._in_flight += 1
            ok = self._write(entry)
            with self._lock:
                self._in_flight -= 1
                self._counts["written_total" if ok else "failed_total"] += 1
                self._cv.notify_all()

    def _write(self, entry: AuditEntry) -> bool:
        try:
            self.sink.append(entry)
            return True
        except Exception as e:  # noqa: BLE001
            self.logger.warning("Audit sink append failed for %s/%s: %s", entry.action.value, entry.section, e)
            return False
