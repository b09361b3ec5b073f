"""
Mention/volume correlation engine.

For each ticker mentioned in the analysis window:
- mention_count: in-window mention total
- trailing_average: mean per-window count over the N equal windows before it
- mention_delta = (count - trailing_average) / max(trailing_average, 1)
- volume_growth_rate from the two most recent in-window market samples
- score = weighted sum (ScoreWeights), risk_tag from RiskBuckets

Reads only; the store adapter owns every write.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import numpy as np
import pandas as pd

from common.schemas import CorrelationResult, MarketSample, utcnow
from shared.datetime_utils import ensure_utc, hours_between
from signal_detect.scorer import RiskBuckets, ScoreWeights

_LOG = logging.getLogger(__name__)

ROUND_TO = 6


@dataclass(frozen=True)
class AnalysisWindow:
    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if ensure_utc(self.end) <= ensure_utc(self.start):
            raise ValueError("window end must be after start")

    @classmethod
    def trailing(cls, hours: float, now: Optional[datetime] = None) -> "AnalysisWindow":
        end = ensure_utc(now or utcnow())
        return cls(start=end - timedelta(hours=hours), end=end)

    @property
    def length(self) -> timedelta:
        return self.end - self.start

    def lookback_start(self, n: int) -> datetime:
        return self.start - n * self.length


def volume_growth(samples: List[MarketSample]) -> Tuple[float, float]:
    """
    (growth rate, USD per hour) from the two most recent samples with a volume.
    (0, 0) with fewer than two samples or a zero baseline.
    """
    usable = sorted((s for s in samples if s.volume_24h is not None), key=lambda s: s.sampled_at)
    if len(usable) < 2:
        return 0.0, 0.0
    base, cur = usable[-2], usable[-1]
    if not base.volume_24h:
        return 0.0, 0.0
    delta = float(cur.volume_24h) - float(base.volume_24h)
    rate = delta / float(base.volume_24h)
    hours = hours_between(base.sampled_at, cur.sampled_at)
    per_hour = delta / hours if hours > 0 else 0.0
    return rate, per_hour


@dataclass
class CorrelationEngine:
    store: object
    weights: ScoreWeights = field(default_factory=ScoreWeights)
    risk: RiskBuckets = field(default_factory=RiskBuckets)
    trailing_windows: int = 6
    min_mentions: int = 3

    @classmethod
    def from_settings(cls, store: object, settings: object) -> "CorrelationEngine":
        return cls(
            store=store,
            weights=ScoreWeights.from_settings(settings),
            risk=RiskBuckets.from_settings(settings),
            trailing_windows=settings.trailing_windows,  # type: ignore[attr-defined]
            min_mentions=settings.min_mentions,  # type: ignore[attr-defined]
        )

    def mention_frame(self, window: AnalysisWindow) -> pd.DataFrame:
        rows = [
            {"ticker": m.ticker, "count": m.count, "observed_at": m.observed_at}
            for m in self.store.mentions(window.lookback_start(self.trailing_windows), window.end)  # type: ignore[attr-defined]
        ]
        if not rows:
            return pd.DataFrame(columns=["ticker", "count", "observed_at"])
        df = pd.DataFrame(rows)
        df["observed_at"] = pd.to_datetime(df["observed_at"], utc=True)
        return df

    def analyze(self, window: AnalysisWindow) -> List[CorrelationResult]:
        df = self.mention_frame(window)
        if df.empty:
            _LOG.info("no mentions between %s and %s", window.start, window.end)
            return []

        start = pd.Timestamp(ensure_utc(window.start))
        in_window = df[df["observed_at"] >= start]
        counts = in_window.groupby("ticker")["count"].sum()

        n = max(self.trailing_windows, 0)
        if n:
            before = df[df["observed_at"] < start]
            trailing_avg = before.groupby("ticker")["count"].sum() / float(n)
        else:
            trailing_avg = pd.Series(dtype=float)

        results: List[CorrelationResult] = []
        for ticker, count in counts.items():
            count = int(count)
            if count < self.min_mentions:
                continue
            avg = float(trailing_avg.get(ticker, 0.0))
            delta = (count - avg) / max(avg, 1.0)

            samples = [
                s for s in self.store.market_samples(ticker, since=window.start)  # type: ignore[attr-defined]
                if s.sampled_at < ensure_utc(window.end)
            ]
            rate, per_hour = volume_growth(samples)
            price = samples[-1].price_usd if samples else None

            score = float(np.round(self.weights.score(delta, rate, count), ROUND_TO))
            results.append(CorrelationResult(
                token_symbol=ticker,
                window_start=window.start,
                window_end=window.end,
                mention_count=count,
                trailing_average=round(avg, ROUND_TO),
                mention_delta=round(delta, ROUND_TO),
                volume_growth_rate=round(rate, ROUND_TO),
                volume_growth_usd_per_hour=round(per_hour, ROUND_TO),
                price_usd=price,
                score=score,
                risk_tag=self.risk.tag(score),
            ))

        results.sort(key=lambda r: (-r.score, r.token_symbol))
        _LOG.info("correlation: %d ticker(s) above %d mention(s)", len(results), self.min_mentions)
        return results
