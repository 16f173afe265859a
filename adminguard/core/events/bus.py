from __future__ import annotations

import collections
import logging
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from adminguard.core.events.models import GuardEvent


class OverflowPolicy(str, Enum):
    DROP_OLDEST = "DROP_OLDEST"
    DROP_NEWEST = "DROP_NEWEST"


class EventBusConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    max_queue_size: int = Field(default=1000, ge=10, le=100_000)
    overflow_policy: OverflowPolicy = OverflowPolicy.DROP_OLDEST
    shutdown_grace_seconds: float = Field(default=2.0, ge=0.1, le=60.0)
    keep_recent: int = Field(default=200, ge=0, le=10_000)


@dataclass
class _Sub:
    event_type: str
    handler: Callable[[GuardEvent], None]
    priority: int


class EventBus:
    """
    In-process event bus for alert and session notifications.

    - publish never blocks; overflow drops per policy
    - one dispatcher thread delivers events in publish order
    - handler failures are logged and isolated from other subscribers
    """

    def __init__(self, *, cfg: Optional[EventBusConfig] = None, logger: Optional[logging.Logger] = None):
        self.cfg = cfg or EventBusConfig()
        self.logger = logger or logging.getLogger("adminguard.events")

        self._lock = threading.Lock()
        self._cv = threading.Condition(self._lock)
        self._queue: Deque[GuardEvent] = collections.deque()
        self._subs: List[_Sub] = []
        self._running = False
        self._accepting = True
        self._stats: Dict[str, int] = {"published_total": 0, "dropped_total": 0, "delivered_total": 0, "handler_errors_total": 0}
        self._recent: Deque[Dict[str, Any]] = collections.deque(maxlen=max(1, int(self.cfg.keep_recent)))
        self._thread = threading.Thread(target=self._dispatch_loop, name="adminguard-events", daemon=True)
        if self.cfg.enabled:
            self.start()

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._accepting = True
            if self._thread.ident is not None:
                # a stopped thread cannot be restarted
                self._thread = threading.Thread(target=self._dispatch_loop, name="adminguard-events", daemon=True)
        self._thread.start()

    def subscribe(self, event_type: str, handler: Callable[[GuardEvent], None], priority: int = 50) -> None:
        """
        event_type supports exact ("alert.raised"), prefix ("alert.*") and "*".
        """
        if not callable(handler):
            raise ValueError("handler must be callable")
        with self._lock:
            self._subs.append(_Sub(event_type=str(event_type), handler=handler, priority=int(priority)))
            self._subs.sort(key=lambda s: s.priority)

    def unsubscribe(self, handler: Callable[[GuardEvent], None]) -> int:
        with self._lock:
            before = len(self._subs)
            self._subs = [s for s in self._subs if s.handler is not handler]
            return before - len(self._subs)

    def publish(self, ev: GuardEvent) -> bool:
        if not self._accepting or not self.cfg.enabled:
            return False
        with self._lock:
            if len(self._queue) >= int(self.cfg.max_queue_size):
                self._stats["dropped_total"] += 1
                if self.cfg.overflow_policy == OverflowPolicy.DROP_NEWEST:
                    return False
                self._queue.popleft()
            self._queue.append(ev)
            self._stats["published_total"] += 1
            if self.cfg.keep_recent:
                self._recent.appendleft({"event_type": ev.event_type.value, "severity": ev.severity.value, "timestamp": ev.timestamp})
            self._cv.notify()
            return True

    def get_stats(self) -> Dict[str, Any]:
        with self._lock:
            out: Dict[str, Any] = dict(self._stats)
            out["queue_depth"] = len(self._queue)
            out["subscribers"] = len(self._subs)
            out["recent"] = list(self._recent)[:50]
        out["enabled"] = bool(self.cfg.enabled) and self._running
        return out

    def shutdown(self, grace_seconds: Optional[float] = None) -> None:
        self._accepting = False
        if grace_seconds is None:
            grace_seconds = float(self.cfg.shutdown_grace_seconds)
        deadline = time.time() + float(grace_seconds)
        while time.time() < deadline:
            with self._lock:
                if not self._queue:
                    break
            time.sleep(0.02)
        with self._lock:
            self._running = False
            self._cv.notify_all()
        if self._thread.is_alive():
            self._thread.join(timeout=max(0.1, float(grace_seconds)))

    # ---- internals ----
    def _dispatch_loop(self) -> None:
        while True:
            with self._lock:
                while self._running and not self._queue:
                    self._cv.wait(timeout=0.2)
                if not self._running:
                    return
                ev = self._queue.popleft()
                subs = list(self._subs)
            for s in subs:
                if _match(s.event_type, ev.event_type.value):
                    self._safe_handle(s.handler, ev)

    def _safe_handle(self, handler: Callable[[GuardEvent], None], ev: GuardEvent) -> None:
        try:
            handler(ev)
        except Exception as e:  # noqa: BLE001
            with self._lock:
                self._stats["handler_errors_total"] += 1
            self.logger.warning("Event handler %s failed for %s: %s", getattr(handler, "__name__", "handler"), ev.event_type.value, e)
            return
        with self._lock:
            self._stats["delivered_total"] += 1


def _match(subscribed: str, event_type: str) -> bool:
    if subscribed == "*":
        return True
    if subscribed.endswith(".*"):
        return event_type.startswith(subscribed[:-1])
    return subscribed == event_type
