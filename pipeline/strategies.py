# pipeline/strategies.py
"""
Two ways to run the same stage sequence.

manual  call the stage function directly
agent   hand the stage to a pluggable StageExecutor (an LLM-agent framework, a remote
        worker, ...). The executor decides how to run it; the tool it receives is the
        manual stage call, so an executor can always fall through to it.

The executor is named by AGENT_EXECUTOR="package.module:attr", where attr is a
StageExecutor instance or a zero-argument factory (class or function) returning one.
"""
from __future__ import annotations

import importlib
import inspect
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from common.errors import StrategyUnavailableError
from common.schemas import Strategy

_LOG = logging.getLogger(__name__)

Tool = Callable[[], Dict[str, Any]]


class StageExecutor(Protocol):
    def invoke(self, stage_name: str, tool: Tool) -> Dict[str, Any]: ...


class ManualStrategy:
    kind = Strategy.MANUAL

    def run_stage(self, name: str, tool: Tool) -> Dict[str, Any]:
        return tool()


class AgentStrategy:
    kind = Strategy.AGENT

    def __init__(self, executor: StageExecutor):
        self.executor = executor

    def run_stage(self, name: str, tool: Tool) -> Dict[str, Any]:
        out = self.executor.invoke(name, tool)
        if not isinstance(out, dict):
            raise StrategyUnavailableError(f"agent returned {type(out).__name__} for {name}, expected a summary dict")
        return out


def load_agent_executor(ref: Optional[str]) -> StageExecutor:
    if not ref:
        raise StrategyUnavailableError("AGENT_EXECUTOR is not set")
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise StrategyUnavailableError(f"AGENT_EXECUTOR must look like 'module:attr', got {ref!r}")
    try:
        obj = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as e:
        raise StrategyUnavailableError(f"cannot load {ref}: {e}") from e

    if inspect.isclass(obj) or inspect.isfunction(obj):
        try:
            obj = obj()
        except Exception as e:
            raise StrategyUnavailableError(f"{ref} factory failed: {type(e).__name__}: {e}") from e
    _LOG.info("agent executor loaded from %s", ref)
    return obj
