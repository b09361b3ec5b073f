# alert_engine/dispatch.py
"""
Sink wiring shared by the alerting stage and the alert_engine CLI.

Sinks are DRY-RUN unless SINKS_LIVE=1 (or --sinks-live); test-mode runs force DRY-RUN.
A sink that raises is counted as an error and delivery moves on; it never aborts a run.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from common.schemas import Alert

from .sinks import BaseSink, SlackSink, XSink

_LOG = logging.getLogger(__name__)


def build_sinks(settings: Any, *, live: Optional[bool] = None, **kwargs: Any) -> List[BaseSink]:
    live = settings.sinks_live if live is None else live
    return [
        SlackSink.from_settings(settings, dry_run=not live, **kwargs),
        XSink.from_settings(settings, dry_run=not live, **kwargs),
    ]


def preflight_errors(sinks: Iterable[BaseSink]) -> List[str]:
    """Live-mode configuration problems; empty when every live sink can post."""
    errs: List[str] = []
    live = [s for s in sinks if not s.dry_run]
    if not live:
        return errs
    configured = 0
    for s in live:
        if s.name == "slack" and getattr(s, "webhook_url", None):
            configured += 1
        elif s.name == "x" and getattr(s, "bearer_token", None):
            configured += 1
    if not configured:
        errs.append("no live sink configured (set SLACK_WEBHOOK_URL and/or X_BEARER_TOKEN).")
    return errs


def deliver(alerts: Iterable[Alert], sinks: Iterable[BaseSink]) -> Dict[str, Dict[str, int]]:
    sinks = list(sinks)
    for a in alerts:
        for s in sinks:
            try:
                s.emit(a)
            except Exception:
                s.metrics.errors += 1
                _LOG.exception("[%s] emit failed for %s", s.name, a.ticker)
    for s in sinks:
        try:
            s.flush()
        except Exception:
            s.metrics.errors += 1
            _LOG.exception("[%s] flush failed", s.name)
    return {s.name: metrics_dict(s) for s in sinks}


def metrics_dict(sink: BaseSink) -> Dict[str, int]:
    m = sink.metrics
    return {"attempted": m.attempted, "sent": m.sent, "skipped": m.skipped, "errors": m.errors}
