# alert_engine/sinks/base.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Protocol

import requests

from common.retry import RetryPolicy
from common.schemas import Alert

_LOG = logging.getLogger(__name__)


@dataclass
class SinkMetrics:
    """Per-sink counters for one process run."""
    attempted: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0


class AlertSink(Protocol):
    """Protocol for all sinks. Concrete sinks should update self.metrics."""
    name: str
    dry_run: bool
    metrics: SinkMetrics

    def emit(self, alert: Alert) -> bool: ...
    def flush(self) -> None: ...


class RetryableHTTPError(requests.HTTPError):
    """429 / 5xx from a sink endpoint."""


class BaseSink:
    """Common bookkeeping plus a JSON POST with retries for HTTP sinks."""
    name: str = "base"

    def __init__(
        self,
        *,
        dry_run: bool = True,
        session: Optional[requests.Session] = None,
        timeout_secs: float = 5.0,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.dry_run = dry_run
        self.metrics = SinkMetrics()
        self.session = session or requests.Session()
        self.timeout_secs = timeout_secs
        self.retry = retry or RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0.2, retryable=(requests.ConnectionError, requests.Timeout, RetryableHTTPError))
        self.sleep = sleep

    def emit(self, alert: Alert) -> bool:  # pragma: no cover (interface)
        raise NotImplementedError

    def flush(self) -> None:
        # Most sinks will be fire-and-forget; override if batching.
        pass

    # Utilities for subclasses
    def _on_attempt(self) -> None:
        self.metrics.attempted += 1

    def _on_sent(self) -> None:
        self.metrics.sent += 1

    def _on_skip(self) -> None:
        self.metrics.skipped += 1

    def _on_error(self) -> None:
        self.metrics.errors += 1

    def _post_json(self, url: str, payload: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> bool:
        """POST with retries on connection errors, 429 and 5xx. Other 4xx fail at once."""

        def attempt() -> Any:
            resp = self.session.post(url, json=payload, headers=headers, timeout=self.timeout_secs)
            if resp.status_code == 429 or resp.status_code >= 500:
                raise RetryableHTTPError(f"HTTP {resp.status_code}: {resp.text[:200]}")
            return resp

        try:
            resp = self.retry.call(attempt, sleep=self.sleep)
        except requests.RequestException as e:
            _LOG.error("[%s] ERROR %s", self.name, e)
            self._on_error()
            return False
        if 200 <= resp.status_code < 300:
            self._on_sent()
            return True
        _LOG.error("[%s] ERROR non-retriable HTTP %s: %s", self.name, resp.status_code, resp.text[:200])
        self._on_error()
        return False
