# pipeline/scheduler.py
from __future__ import annotations

import logging
import threading
from typing import Optional

from common.schemas import PipelineRun, RunMode

_LOG = logging.getLogger(__name__)


class PeriodicScheduler:
    """
    Starts a run every `interval_secs` on one daemon thread.

    A tick that lands while a run is active is skipped, not queued. Stopping the
    orchestrator stops the scheduler too.
    """

    def __init__(self, orchestrator, interval_secs: float, mode: RunMode = RunMode.PERIODIC):
        if interval_secs <= 0:
            raise ValueError("interval_secs must be > 0")
        self.orchestrator = orchestrator
        self.interval_secs = interval_secs
        self.mode = mode
        self.ticks = 0
        self.skipped = 0
        self._halt = threading.Event()
        self._thread: Optional[threading.Thread] = None
        orchestrator.on_stop(self.stop)

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._halt.clear()
        self._thread = threading.Thread(target=self._loop, name="periodic-scheduler", daemon=True)
        self._thread.start()
        _LOG.info("scheduler started: %s run every %.0fs", self.mode.value, self.interval_secs)

    def _loop(self) -> None:
        while not self._halt.wait(self.interval_secs):
            self.tick()

    def tick(self) -> Optional[PipelineRun]:
        if self.orchestrator.active:
            self.skipped += 1
            _LOG.info("scheduler tick skipped: run in progress")
            return None
        self.ticks += 1
        try:
            return self.orchestrator.start(self.mode)
        except Exception:
            _LOG.exception("scheduled run raised")
            return None

    def stop(self) -> None:
        self._halt.set()

    def join(self, timeout: Optional[float] = None) -> None:
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
