from __future__ import annotations

import signal

from common.config import Settings
from common.logging import get_logger
from common.schemas import RunMode
from pipeline.orchestrator import PipelineOrchestrator
from pipeline.scheduler import PeriodicScheduler
from storage.adapter import MentionStore

log = get_logger("orchestrator")


def main():
    settings = Settings.from_env()
    store = MentionStore.from_settings(settings)
    orch = PipelineOrchestrator(store)
    scheduler = PeriodicScheduler(orch, settings.periodic_interval_secs)

    def _shutdown(signum, _frame):
        log.info("signal %s: stopping after the current stage", signum)
        orch.stop()

    signal.signal(signal.SIGINT, _shutdown)
    signal.signal(signal.SIGTERM, _shutdown)

    log.info("orchestrator starting (full run, then periodic every %.0fs)...", settings.periodic_interval_secs)
    run = orch.start(RunMode.FULL)
    log.info("initial run %s: %s", run.run_id, run.status.value)
    if orch.stop_requested:
        return

    scheduler.start()
    while scheduler.running:
        scheduler.join(1.0)
    log.info("orchestrator stopped")


if __name__ == "__main__":
    main()
