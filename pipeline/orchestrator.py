# pipeline/orchestrator.py
"""
Pipeline orchestrator: one run at a time, stages strictly in order.

States: IDLE -> INITIALIZING -> RUNNING(stage) -> COMPLETED | DEGRADED | FAILED

- start() while INITIALIZING/RUNNING returns the in-flight run unchanged.
- INITIALIZING validates settings, opens the stage context and picks the strategy.
  Any error there fails the run before a stage runs.
- Each stage error is caught at the stage boundary and recorded; later stages still run.
  The run ends COMPLETED when no stage failed, DEGRADED otherwise.
- stop() is cooperative: the current stage finishes, the rest are recorded as skipped,
  the run ends STOPPED and the orchestrator returns to IDLE.

The run report is saved to the store after every stage.
"""
from __future__ import annotations

import functools
import logging
import threading
import uuid
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from common.config import Settings
from common.errors import ConfigurationError, StoreError, StrategyUnavailableError, TransientSourceError
from common.retry import RetryPolicy
from common.schemas import PipelineRun, RunMode, RunStatus, StageResult, StageStatus, Strategy, utcnow
from storage.adapter import MentionStore

from .stages import STAGES, PipelineContext, Toolkit, check_registry, stage_order
from .strategies import AgentStrategy, ManualStrategy, load_agent_executor

_LOG = logging.getLogger(__name__)


class OrchestratorState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    RUNNING = "running"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"


_ACTIVE = (OrchestratorState.INITIALIZING, OrchestratorState.RUNNING)


def new_run_id(mode: RunMode) -> str:
    return f"{mode.value}-{utcnow().strftime('%Y%m%dT%H%M%SZ')}-{uuid.uuid4().hex[:6]}"


class PipelineOrchestrator:
    def __init__(
        self,
        store: MentionStore,
        *,
        settings_loader: Callable[[], Settings] = Settings.from_env,
        tools: Optional[Toolkit] = None,
        stages: Optional[Dict[str, Callable[[PipelineContext], Dict[str, Any]]]] = None,
        executor_loader: Callable[[Optional[str]], Any] = load_agent_executor,
        stage_retry: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.settings_loader = settings_loader
        self.tools = tools or Toolkit()
        self.stages = dict(stages or STAGES)
        self.executor_loader = executor_loader
        self.stage_retry = stage_retry or RetryPolicy(max_attempts=2, base_delay=5.0, retryable=(TransientSourceError,))

        self._lock = threading.Lock()
        self._state = OrchestratorState.IDLE
        self._stage: Optional[str] = None
        self._run: Optional[PipelineRun] = None
        self._stop = threading.Event()
        self._stop_hooks: List[Callable[[], None]] = []

    # ---- state ------------------------------------------------------------

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def current_stage(self) -> Optional[str]:
        return self._stage

    @property
    def active(self) -> bool:
        return self._state in _ACTIVE

    @property
    def current_run(self) -> Optional[PipelineRun]:
        return self._run

    @property
    def stop_requested(self) -> bool:
        return self._stop.is_set()

    def status(self) -> Dict[str, Any]:
        run = self._run
        return {
            "state": self._state.value,
            "stage": self._stage,
            "stop_requested": self._stop.is_set(),
            "run_id": run.run_id if run else None,
            "run_status": run.status.value if run else None,
        }

    # ---- control ----------------------------------------------------------

    def on_stop(self, hook: Callable[[], None]) -> None:
        self._stop_hooks.append(hook)

    def stop(self) -> None:
        """Honoured at the next stage boundary; an in-flight stage is never interrupted."""
        self._stop.set()
        for hook in self._stop_hooks:
            hook()
        with self._lock:
            if not self.active:
                self._state = OrchestratorState.IDLE
        _LOG.info("stop requested (state=%s stage=%s)", self._state.value, self._stage)

    def start(self, mode: RunMode = RunMode.FULL) -> PipelineRun:
        with self._lock:
            if self.active and self._run is not None:
                _LOG.info("run %s already in progress; start ignored", self._run.run_id)
                return self._run
            self._stop.clear()
            run = PipelineRun(run_id=new_run_id(mode), mode=mode)
            self._run = run
            self._state = OrchestratorState.INITIALIZING
            self._stage = None
        _LOG.info("run %s starting (mode=%s)", run.run_id, mode.value)
        try:
            return self._execute(run)
        finally:
            self._stage = None

    # ---- run --------------------------------------------------------------

    def _initialize(self, run: PipelineRun) -> tuple:
        settings = self.settings_loader()
        settings.validate(run.mode)
        order = stage_order(run.mode)
        check_registry(self.stages, order)
        if not self.store.known_symbols():
            raise ConfigurationError("no known symbols: fill SYMBOLS_FILE or the tokens table")
        ctx = PipelineContext(settings=settings, store=self.store, mode=run.mode, run_id=run.run_id, tools=self.tools)
        return ctx, order, self._choose_strategy(settings, run)

    def _choose_strategy(self, settings: Settings, run: PipelineRun) -> Any:
        if not settings.agent_executor:
            run.strategy = Strategy.MANUAL
            return ManualStrategy()
        try:
            strategy: Any = AgentStrategy(self.executor_loader(settings.agent_executor))
            run.strategy = Strategy.AGENT
        except StrategyUnavailableError as e:
            _LOG.warning("agent strategy unavailable, running manual: %s", e)
            run.strategy = Strategy.MANUAL
            run.fallback_reason = str(e)
            strategy = ManualStrategy()
        return strategy

    def _execute(self, run: PipelineRun) -> PipelineRun:
        try:
            ctx, order, strategy = self._initialize(run)
        except Exception as e:
            _LOG.error("run %s failed to initialize: %s", run.run_id, e)
            return self._finish(run, RunStatus.FAILED, OrchestratorState.FAILED, f"{type(e).__name__}: {e}")

        self._state = OrchestratorState.RUNNING
        for i, name in enumerate(order):
            if self._stop.is_set():
                for rest in order[i:]:
                    run.record_stage(rest, StageResult(status=StageStatus.SKIPPED, error="stopped"))
                _LOG.info("run %s stopped before %s", run.run_id, name)
                return self._finish(run, RunStatus.STOPPED, OrchestratorState.IDLE)
            self._stage = name
            result, strategy = self._run_stage(ctx, run, name, strategy)
            run.record_stage(name, result)
            self._save(run)

        if run.failed_stages():
            return self._finish(run, RunStatus.DEGRADED, OrchestratorState.DEGRADED)
        return self._finish(run, RunStatus.COMPLETED, OrchestratorState.COMPLETED)

    def _run_stage(self, ctx: PipelineContext, run: PipelineRun, name: str, strategy: Any) -> tuple:
        started = utcnow()
        tool = functools.partial(self.stages[name], ctx)
        attempts = [0]

        def call(s: Any) -> Dict[str, Any]:
            attempts[0] = 1

            def on_retry(n: int, exc: BaseException, delay: float) -> None:
                attempts[0] = n + 1

            return self.stage_retry.call(lambda: s.run_stage(name, tool), sleep=self.tools.sleep, on_retry=on_retry)

        try:
            try:
                summary = call(strategy)
            except StrategyUnavailableError as e:
                if strategy.kind != Strategy.AGENT:
                    raise
                _LOG.warning("agent strategy lost at %s, switching to manual: %s", name, e)
                run.strategy = Strategy.MANUAL
                run.fallback_reason = f"{name}: {e}"
                strategy = ManualStrategy()
                summary = call(strategy)
        except Exception as e:
            _LOG.warning("stage %s failed: %s: %s", name, type(e).__name__, e)
            _LOG.debug("stage %s traceback", name, exc_info=True)
            return StageResult(
                status=StageStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
                attempts=attempts[0],
                started_at=started,
                ended_at=utcnow(),
            ), strategy

        status = StageStatus.SKIPPED if summary.get("skipped") else StageStatus.SUCCEEDED
        _LOG.info("stage %s %s", name, status.value)
        return StageResult(status=status, summary=summary, attempts=attempts[0], started_at=started, ended_at=utcnow()), strategy

    def _finish(self, run: PipelineRun, status: RunStatus, state: OrchestratorState, error: Optional[str] = None) -> PipelineRun:
        run.finish(status, error)
        self._save(run)
        with self._lock:
            self._state = state
        _LOG.info("run %s %s (failed stages: %s)", run.run_id, status.value, ", ".join(run.failed_stages()) or "none")
        return run

    def _save(self, run: PipelineRun) -> None:
        try:
            self.store.save_run(run)
        except StoreError as e:
            _LOG.error("could not persist run %s: %s", run.run_id, e)
