# pipeline/stages.py
"""
Stage functions and stage orders.

A stage is a plain function of the run's PipelineContext returning a JSON-safe summary
dict. It raises on failure; the orchestrator catches at the stage boundary and records
the error. A summary carrying "skipped": True is recorded as a skipped stage.

Full run:      market_data -> video_scraping -> channel_scraping -> discovery_scraping
               -> correlation_analysis -> alerting -> downstream_sync
Periodic run:  discovery_scraping -> correlation_analysis -> alerting -> downstream_sync
Test run:      full order, ScrapeLimits.for_mode(TEST), sinks forced to DRY-RUN
"""
from __future__ import annotations

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

import requests

from alert_engine.dispatch import build_sinks, deliver
from alert_engine.gate import AlertGate
from common.config import Settings
from common.errors import MarketDataError, SourceError
from common.queue import publish
from common.schemas import ChannelTarget, RunMode, SourceRecord, utcnow
from data_ingest.base import BaseScraper, ScrapeLimits
from data_ingest.browser import Browser, PlaywrightBrowser
from data_ingest.channel_scraper import ChannelScraper
from data_ingest.discovery_scraper import DiscoveryScraper
from data_ingest.market_data import MarketDataService
from data_ingest.video_scraper import CommentFetcher, VideoScraper, video_targets
from normalize_enrich.ticker_extractor import extract
from shared.datetime_utils import floor_to_hour
from signal_detect.correlation_engine import AnalysisWindow, CorrelationEngine
from storage.adapter import MentionStore

_LOG = logging.getLogger(__name__)

MARKET_DATA = "market_data"
VIDEO_SCRAPING = "video_scraping"
CHANNEL_SCRAPING = "channel_scraping"
DISCOVERY_SCRAPING = "discovery_scraping"
CORRELATION_ANALYSIS = "correlation_analysis"
ALERTING = "alerting"
DOWNSTREAM_SYNC = "downstream_sync"

FULL_ORDER: Tuple[str, ...] = (
    MARKET_DATA,
    VIDEO_SCRAPING,
    CHANNEL_SCRAPING,
    DISCOVERY_SCRAPING,
    CORRELATION_ANALYSIS,
    ALERTING,
    DOWNSTREAM_SYNC,
)
PERIODIC_ORDER: Tuple[str, ...] = (DISCOVERY_SCRAPING, CORRELATION_ANALYSIS, ALERTING, DOWNSTREAM_SYNC)

DASHBOARD_STREAM = "dashboard.updates"
TOP_N = 10


def stage_order(mode: RunMode) -> Tuple[str, ...]:
    return PERIODIC_ORDER if mode == RunMode.PERIODIC else FULL_ORDER


@dataclass(frozen=True)
class Toolkit:
    """External capabilities a run needs. Tests swap in fakes."""
    browser_factory: Callable[[Settings], Browser] = PlaywrightBrowser.from_settings
    session_factory: Callable[[], requests.Session] = requests.Session
    market_factory: Callable[[], MarketDataService] = MarketDataService.default
    sinks_factory: Callable[..., List[Any]] = build_sinks
    publish: Callable[..., Any] = publish
    now: Callable[[], datetime] = utcnow
    clock: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep


@dataclass
class PipelineContext:
    settings: Settings
    store: MentionStore
    mode: RunMode
    run_id: str
    tools: Toolkit = field(default_factory=Toolkit)
    artifacts: Dict[str, Any] = field(default_factory=dict)

    @property
    def limits(self) -> ScrapeLimits:
        return ScrapeLimits.for_mode(self.mode)

    @property
    def sinks_live(self) -> bool:
        return self.settings.sinks_live and self.mode != RunMode.TEST

    def scraper_kwargs(self) -> Dict[str, Any]:
        return {"clock": self.tools.clock, "sleep": self.tools.sleep}


# ---- ingest ---------------------------------------------------------------

@dataclass
class Ingested:
    records: int = 0
    mentions: int = 0
    tickers: Counter = field(default_factory=Counter)

    def as_dict(self) -> Dict[str, Any]:
        return {"records": self.records, "mentions": self.mentions, "tickers": dict(sorted(self.tickers.items()))}


def ingest(ctx: PipelineContext, records: Iterable[SourceRecord]) -> Ingested:
    """
    Persist each record, extract ticker counts from its text, record mentions.
    Mentions are observed at the current hour, not at the post time: an old video
    with fresh comments counts now, and a re-run within the hour upserts in place.
    """
    known = ctx.store.known_symbols()
    observed_at = floor_to_hour(ctx.tools.now())
    out = Ingested()
    for rec in records:
        ctx.store.upsert_records([rec])
        out.records += 1
        counts = extract(rec.raw_text, known_symbols=known)
        if not counts:
            continue
        events = ctx.store.record_mentions(
            rec.external_id, counts, source_kind=rec.source_kind, observed_at=observed_at,
        )
        for ev in events:
            out.mentions += ev.count
            out.tickers[ev.ticker] += ev.count
    return out


def scrape_summary(scraper: BaseScraper, ingested: Ingested) -> Dict[str, Any]:
    st = scraper.stats
    if st.targets and len(st.failures) >= st.targets and not ingested.records:
        raise SourceError(f"{scraper.name}: all {st.targets} target(s) failed")
    out = ingested.as_dict()
    out.update({
        "targets": st.targets,
        "pages": st.pages,
        "duplicates": st.duplicates,
        "budget_exhausted": st.budget_exhausted,
        "failures": [{"target": f.target, "error": f.error, "permanent": f.permanent} for f in st.failures],
    })
    return out


# ---- stages -----------------------------------------------------------------

def market_data(ctx: PipelineContext) -> Dict[str, Any]:
    symbols = sorted(ctx.store.known_symbols())
    if ctx.mode == RunMode.TEST:
        symbols = symbols[: ctx.limits.max_items]
    if not symbols:
        return {"skipped": True, "reason": "no known symbols"}
    service = ctx.tools.market_factory()
    samples = service.sample_all(symbols)
    if not samples:
        raise MarketDataError("all", ",".join(symbols[:5]), "no provider priced any symbol")
    ctx.store.append_market_samples(samples)
    return {
        "symbols": len(symbols),
        "samples": len(samples),
        "providers": dict(Counter(s.provider or "unknown" for s in samples)),
        "misses": sorted(service.misses),
    }


def video_scraping(ctx: PipelineContext) -> Dict[str, Any]:
    s = ctx.settings
    targets = video_targets(s.video_search_terms, s.video_hashtags)
    fetcher = CommentFetcher(ctx.tools.session_factory(), max_comments=5 if ctx.mode == RunMode.TEST else 20, user_agent=s.user_agent)
    with VideoScraper(ctx.tools.browser_factory(s), comment_fetcher=fetcher, **ctx.scraper_kwargs()) as scraper:
        ingested = ingest(ctx, scraper.scrape(targets, ctx.limits))
        return scrape_summary(scraper, ingested)


def _discovery_scraper(ctx: PipelineContext) -> DiscoveryScraper:
    s = ctx.settings
    return DiscoveryScraper(
        browser=ctx.tools.browser_factory(s),
        session=ctx.tools.session_factory(),
        user_agent=s.user_agent,
        scrolls=1 if ctx.mode == RunMode.TEST else 3,
        **ctx.scraper_kwargs(),
    )


def discover_channels(ctx: PipelineContext) -> List[ChannelTarget]:
    """Discovery pass for channel targets only; its records are ingested by the discovery stage."""
    with _discovery_scraper(ctx) as scraper:
        for _ in scraper.scrape([ctx.settings.discovery_url], ctx.limits):
            pass
        found = scraper.channel_targets()
    ctx.artifacts["discovered_targets"] = found
    return found


def channel_scraping(ctx: PipelineContext) -> Dict[str, Any]:
    s = ctx.settings
    discovered = ctx.artifacts.get("discovered_targets")
    with ChannelScraper(
        session=ctx.tools.session_factory(),
        user_agent=s.user_agent,
        feed_url_template=s.channel_feed_url_template,
        **ctx.scraper_kwargs(),
    ) as scraper:
        targets = scraper.prepare_targets(
            ctx.store,
            discovered=discovered or (),
            seeds=s.channel_seed_handles,
            discover=None if discovered is not None else (lambda: discover_channels(ctx)),
            limits=ctx.limits,
        )
        if not targets:
            return {"skipped": True, "reason": "no channel targets"}
        ingested = ingest(ctx, scraper.scrape(targets, ctx.limits))

        failed = {f.target: f for f in scraper.failures}
        for t in targets[: scraper.stats.targets]:
            f = failed.get(t.handle)
            if f is None:
                ctx.store.touch_channel_target(t.handle, ctx.tools.now())
            elif f.permanent:
                ctx.store.mark_channel_target(t.handle, validated=False, stale=True)

        summary = scrape_summary(scraper, ingested)
        summary["ready_targets"] = len(targets)
        return summary


def discovery_scraping(ctx: PipelineContext) -> Dict[str, Any]:
    with _discovery_scraper(ctx) as scraper:
        ingested = ingest(ctx, scraper.scrape([ctx.settings.discovery_url], ctx.limits))
        summary = scrape_summary(scraper, ingested)
        found: List[ChannelTarget] = scraper.channel_targets()
        added = ctx.store.add_channel_targets(found)
        ctx.artifacts["discovered_targets"] = found
        summary.update({
            "channels_found": len(found),
            "channels_new": [t.handle for t in added],
            "strategy_errors": dict(scraper.strategy_errors),
        })
        return summary


def correlation_analysis(ctx: PipelineContext) -> Dict[str, Any]:
    window = AnalysisWindow.trailing(ctx.settings.analysis_window_hours, ctx.tools.now())
    engine = CorrelationEngine.from_settings(ctx.store, ctx.settings)
    results = engine.analyze(window)
    ctx.store.save_correlation_results(ctx.run_id, results)
    ctx.artifacts["correlation_results"] = results
    return {
        "window_start": window.start.isoformat(),
        "window_end": window.end.isoformat(),
        "results": len(results),
        "top": [{"ticker": r.token_symbol, "score": r.score, "risk": r.risk_tag.value} for r in results[:TOP_N]],
    }


def alerting(ctx: PipelineContext) -> Dict[str, Any]:
    if "correlation_results" in ctx.artifacts:
        results = ctx.artifacts["correlation_results"]
    else:
        results = ctx.store.latest_correlation_results()
    # test runs never write cooldowns
    gate = AlertGate.from_settings(ctx.store, ctx.settings, persist=ctx.mode != RunMode.TEST)
    alerts = gate.evaluate(results, ctx.tools.now())
    ctx.artifacts["alerts"] = alerts
    sinks = ctx.tools.sinks_factory(ctx.settings, live=ctx.sinks_live)
    metrics = deliver(alerts, sinks)
    return {
        "evaluated": len(results),
        "alerts": [a.ticker for a in alerts],
        "live": ctx.sinks_live,
        "sinks": metrics,
    }


def downstream_sync(ctx: PipelineContext) -> Dict[str, Any]:
    url = ctx.settings.redis_url
    if not url:
        return {"skipped": True, "reason": "REDIS_URL not set"}
    results = ctx.artifacts.get("correlation_results", [])
    payload = {
        "run_id": ctx.run_id,
        "mode": ctx.mode.value,
        "published_at": ctx.tools.now().isoformat(),
        "trending": [r.model_dump(mode="json") for r in results[:TOP_N]],
        "alerts": [a.model_dump(mode="json") for a in ctx.artifacts.get("alerts", [])],
    }
    msg_id = ctx.tools.publish(DASHBOARD_STREAM, payload, url=url)
    return {"stream": DASHBOARD_STREAM, "message_id": msg_id, "trending": len(payload["trending"])}


STAGES: Dict[str, Callable[[PipelineContext], Dict[str, Any]]] = {
    MARKET_DATA: market_data,
    VIDEO_SCRAPING: video_scraping,
    CHANNEL_SCRAPING: channel_scraping,
    DISCOVERY_SCRAPING: discovery_scraping,
    CORRELATION_ANALYSIS: correlation_analysis,
    ALERTING: alerting,
    DOWNSTREAM_SYNC: downstream_sync,
}


def check_registry(stages: Dict[str, Any], order: Sequence[str]) -> None:
    missing = [n for n in order if n not in stages]
    if missing:
        raise KeyError(f"no stage function for: {', '.join(missing)}")
