# alert_engine/gate.py
"""
Alert gate: correlation results -> alerts.

A ticker alerts when any threshold is crossed:
  - absolute volume growth  >= min_usd_per_hour   (default $10K/hour)
  - relative volume growth  >= min_growth_rate    (default 1.0 == +100%)
  - score                   >= min_score          (only when configured)
and it has not alerted within the cooldown. Cooldown state lives in the store
(alert_cooldowns) so a restart does not re-alert; it is written at emit time.
With persist=False (test runs) the cooldown is read but never written.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Optional, Set

from common.schemas import Alert, CorrelationResult, utcnow
from shared.datetime_utils import ensure_utc

from .formatter import DISCLAIMER, summary

_LOG = logging.getLogger(__name__)


class AlertGate:
    def __init__(
        self,
        store: Any,
        *,
        min_usd_per_hour: float = 10_000.0,
        min_growth_rate: float = 1.0,
        min_score: Optional[float] = None,
        cooldown: timedelta = timedelta(hours=2),
        persist: bool = True,
    ):
        self.store = store
        self.min_usd_per_hour = min_usd_per_hour
        self.min_growth_rate = min_growth_rate
        self.min_score = min_score
        self.cooldown = cooldown
        self.persist = persist

    @classmethod
    def from_settings(cls, store: Any, settings: Any, *, persist: bool = True) -> "AlertGate":
        return cls(
            store,
            min_usd_per_hour=settings.alert_min_usd_per_hour,
            min_growth_rate=settings.alert_min_growth_rate,
            min_score=settings.alert_min_score,
            cooldown=timedelta(minutes=settings.alert_cooldown_minutes),
            persist=persist,
        )

    def reasons(self, r: CorrelationResult) -> List[str]:
        out: List[str] = []
        if r.volume_growth_usd_per_hour >= self.min_usd_per_hour:
            out.append(f"volume +${r.volume_growth_usd_per_hour:,.0f}/h >= ${self.min_usd_per_hour:,.0f}/h")
        if r.volume_growth_rate >= self.min_growth_rate:
            out.append(f"volume growth {r.volume_growth_rate:+.0%} >= {self.min_growth_rate:+.0%}")
        if self.min_score is not None and r.score >= self.min_score:
            out.append(f"score {r.score:.2f} >= {self.min_score:.2f}")
        return out

    def cooling_down(self, ticker: str, now: datetime) -> bool:
        last = self.store.last_alert_at(ticker)
        return last is not None and now - last < self.cooldown

    def evaluate(self, results: Iterable[CorrelationResult], now: Optional[datetime] = None) -> List[Alert]:
        now = ensure_utc(now or utcnow())
        results = list(results)
        alerts: List[Alert] = []
        seen: Set[str] = set()
        for r in results:
            if r.token_symbol in seen:
                continue
            why = self.reasons(r)
            if not why:
                continue
            if self.cooling_down(r.token_symbol, now):
                _LOG.info("alert for %s suppressed: cooldown", r.token_symbol)
                continue
            alerts.append(Alert(
                ticker=r.token_symbol,
                score=r.score,
                risk_tag=r.risk_tag,
                volume_growth_rate=r.volume_growth_rate,
                volume_growth_usd_per_hour=r.volume_growth_usd_per_hour,
                mention_count=r.mention_count,
                price_usd=r.price_usd,
                summary=summary(r),
                disclaimer=DISCLAIMER,
                reasons=why,
                triggered_at=now,
            ))
            if self.persist:
                self.store.set_last_alert_at(r.token_symbol, now)
            seen.add(r.token_symbol)
        _LOG.info("alert gate: %d alert(s) from %d result(s)", len(alerts), len(results))
        return alerts
