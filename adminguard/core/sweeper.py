from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from adminguard.core.config.models import SweeperConfig


@dataclass
class SweepTask:
    name: str
    fn: Callable[[float], Any]


class PeriodicSweeper:
    """
    Background timer that runs the session-expiry and alert-escalation passes.

    Tasks receive the sweep timestamp. A failing task is logged and does not
    stop the loop; ``stop`` wakes the thread immediately and joins it.
    """

    def __init__(
        self,
        *,
        cfg: Optional[SweeperConfig] = None,
        tasks: Optional[List[SweepTask]] = None,
        logger: Optional[logging.Logger] = None,
        now: Optional[Callable[[], float]] = None,
    ) -> None:
        self.cfg = cfg or SweeperConfig()
        self.tasks: List[SweepTask] = list(tasks or [])
        self.logger = logger or logging.getLogger("adminguard.sweeper")
        self._now = now or time.time
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._runs = 0
        self._failures = 0
        self._last_run_at: Optional[float] = None

    def add_task(self, name: str, fn: Callable[[float], Any]) -> None:
        self.tasks.append(SweepTask(name=name, fn=fn))

    def start(self) -> None:
        if not self.cfg.enabled:
            return
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="adminguard-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=float(self.cfg.join_timeout_seconds))
        self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self, now: Optional[float] = None) -> Dict[str, Any]:
        ts = float(self._now() if now is None else now)
        results: Dict[str, Any] = {}
        for task in list(self.tasks):
            try:
                results[task.name] = task.fn(ts)
            except Exception:  # noqa: BLE001
                with self._lock:
                    self._failures += 1
                self.logger.exception("Sweep task %s failed", task.name)
                results[task.name] = None
        with self._lock:
            self._runs += 1
            self._last_run_at = ts
        return results

    def status(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "running": self.is_running(),
                "interval_seconds": float(self.cfg.interval_seconds),
                "runs": self._runs,
                "failures": self._failures,
                "last_run_at": self._last_run_at,
            }

    def _loop(self) -> None:
        interval = float(self.cfg.interval_seconds)
        while not self._stop.wait(interval):
            self.run_once()
