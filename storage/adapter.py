# storage/adapter.py
"""
MentionStore: the only writer to persisted tables.

Everything the pipeline persists (scraped records, mention counts, channel targets,
market samples, correlation output, alert cooldowns, run history) goes through here,
serialized to JSON-safe dicts so MemoryStore and RedisStore hold identical rows.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from pydantic import BaseModel

from common.errors import StoreError, StoreWriteError
from common.schemas import (
    ChannelTarget,
    CorrelationResult,
    MarketSample,
    MentionEvent,
    PipelineRun,
    SourceKind,
    SourceRecord,
    utcnow,
)
from shared.datetime_utils import ensure_utc, parse_to_utc, to_iso_utc
from shared.symbols import SymbolTable, canon_symbol, infer_symbol_table
from storage.backends import StoreBackend, make_backend

_LOG = logging.getLogger(__name__)

SOURCE_RECORDS = "source_records"
MENTIONS = "mentions"
TOKENS = "tokens"
CHANNEL_TARGETS = "channel_targets"
MARKET_SAMPLES = "market_samples"
CORRELATION_RESULTS = "correlation_results"
ALERT_COOLDOWNS = "alert_cooldowns"
PIPELINE_RUNS = "pipeline_runs"

CONFLICT_KEYS: Dict[str, Sequence[str]] = {
    SOURCE_RECORDS: ("source_kind", "external_id"),
    MENTIONS: ("source_id", "ticker", "observed_at"),
    TOKENS: ("symbol",),
    CHANNEL_TARGETS: ("handle",),
    ALERT_COOLDOWNS: ("ticker",),
    PIPELINE_RUNS: ("run_id",),
}


def _dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")


def _load(cls: Any, rows: Iterable[Mapping[str, Any]]) -> List[Any]:
    # extra columns (run_id on correlation rows) are ignored by the models
    return [cls.model_validate(row) for row in rows]


class MentionStore:
    def __init__(self, backend: StoreBackend, symbols: Optional[SymbolTable] = None):
        self.backend = backend
        self.symbols = symbols or SymbolTable()

    @classmethod
    def from_settings(cls, settings: Any) -> "MentionStore":
        backend = make_backend(settings.store_backend, settings.redis_url, settings.redis_prefix)
        try:
            symbols = infer_symbol_table(settings.symbols_file)
        except FileNotFoundError as e:
            _LOG.warning("%s; relying on the tokens table", e)
            symbols = SymbolTable()
        return cls(backend, symbols)

    # ---- write plumbing --------------------------------------------------

    def _write(self, table: str, fn: Callable[[], Any]) -> Any:
        try:
            return fn()
        except StoreError:
            raise
        except Exception as e:
            raise StoreWriteError(table, f"{type(e).__name__}: {e}") from e

    def _upsert(self, table: str, row: Mapping[str, Any]) -> Dict[str, Any]:
        return self._write(table, lambda: self.backend.upsert(table, row, CONFLICT_KEYS[table]))

    def _insert(self, table: str, rows: List[Mapping[str, Any]]) -> int:
        if not rows:
            return 0
        return self._write(table, lambda: self.backend.insert(table, rows))

    # ---- source records + mentions ----------------------------------------

    def upsert_records(self, records: Iterable[SourceRecord]) -> int:
        """Re-scraping an item refreshes its metadata in place."""
        n = 0
        for rec in records:
            self._upsert(SOURCE_RECORDS, _dump(rec))
            n += 1
        return n

    def get_record(self, source_kind: SourceKind, external_id: str) -> Optional[SourceRecord]:
        rows = self.backend.query(SOURCE_RECORDS, {"source_kind": source_kind.value, "external_id": external_id})
        return SourceRecord.model_validate(rows[0]) if rows else None

    def upsert_tokens(self, symbols: Iterable[str], source: str = "manual") -> int:
        n = 0
        for s in symbols:
            sym = canon_symbol(s)
            if not sym:
                continue
            self._upsert(TOKENS, {"symbol": sym, "source": source})
            n += 1
        return n

    def known_symbols(self) -> Set[str]:
        stored = {canon_symbol(r.get("symbol")) for r in self.backend.query(TOKENS)}
        return {s for s in stored if s} | set(self.symbols.symbols)

    def record_mentions(
        self,
        source_id: str,
        ticker_counts: Mapping[str, int],
        *,
        source_kind: SourceKind,
        observed_at: datetime,
    ) -> List[MentionEvent]:
        """
        Persist mention counts for one source item. Tickers outside the known-symbol
        table are dropped without error; re-recording the same (source_id, ticker,
        observed_at) overwrites the count instead of adding a row.
        """
        if not ticker_counts:
            return []
        known = self.known_symbols()
        observed_at = ensure_utc(observed_at).replace(microsecond=0)
        events: List[MentionEvent] = []
        for raw_sym, count in ticker_counts.items():
            sym = canon_symbol(raw_sym)
            if not sym or sym not in known or count < 1:
                continue
            ev = MentionEvent(
                source_id=source_id,
                source_kind=source_kind,
                ticker=sym,
                count=int(count),
                observed_at=observed_at,
            )
            self._upsert(MENTIONS, _dump(ev))
            events.append(ev)
        return events

    def mentions(self, start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[MentionEvent]:
        """Mentions with start <= observed_at < end."""
        out = _load(MentionEvent, self.backend.query(MENTIONS))
        if start is not None:
            out = [m for m in out if m.observed_at >= ensure_utc(start)]
        if end is not None:
            out = [m for m in out if m.observed_at < ensure_utc(end)]
        return sorted(out, key=lambda m: (m.observed_at, m.ticker, m.source_id))

    # ---- channel targets ------------------------------------------------

    def channel_targets(self, include_stale: bool = False) -> List[ChannelTarget]:
        targets = _load(ChannelTarget, self.backend.query(CHANNEL_TARGETS))
        if not include_stale:
            targets = [t for t in targets if not t.stale]
        return sorted(targets, key=lambda t: t.handle)

    def add_channel_targets(self, targets: Iterable[ChannelTarget]) -> List[ChannelTarget]:
        """Insert targets whose handle is not stored yet. Returns the new ones."""
        existing = {t.handle for t in self.channel_targets(include_stale=True)}
        added: List[ChannelTarget] = []
        for t in targets:
            if t.handle in existing:
                continue
            self._upsert(CHANNEL_TARGETS, _dump(t))
            existing.add(t.handle)
            added.append(t)
        return added

    def _has_target(self, handle: str) -> bool:
        if self.backend.query(CHANNEL_TARGETS, {"handle": handle}):
            return True
        _LOG.warning("channel target %s is not stored; ignoring update", handle)
        return False

    def mark_channel_target(self, handle: str, *, validated: bool, stale: bool) -> None:
        if self._has_target(handle):
            self._upsert(CHANNEL_TARGETS, {"handle": handle, "validated": validated, "stale": stale})

    def touch_channel_target(self, handle: str, when: Optional[datetime] = None) -> None:
        if self._has_target(handle):
            self._upsert(CHANNEL_TARGETS, {"handle": handle, "last_scraped_at": to_iso_utc(when or utcnow())})

    # ---- market data ----------------------------------------------------

    def append_market_samples(self, samples: Iterable[MarketSample]) -> int:
        return self._insert(MARKET_SAMPLES, [_dump(s) for s in samples])

    def market_samples(self, symbol: Optional[str] = None, since: Optional[datetime] = None) -> List[MarketSample]:
        filters = {"token_symbol": symbol} if symbol else None
        out = _load(MarketSample, self.backend.query(MARKET_SAMPLES, filters))
        if since is not None:
            out = [s for s in out if s.sampled_at >= ensure_utc(since)]
        return sorted(out, key=lambda s: (s.sampled_at, s.token_symbol))

    # ---- correlation output ---------------------------------------------

    def save_correlation_results(self, run_id: str, results: Iterable[CorrelationResult]) -> int:
        rows = []
        for r in results:
            row = _dump(r)
            row["run_id"] = run_id
            rows.append(row)
        return self._insert(CORRELATION_RESULTS, rows)

    def latest_correlation_results(self) -> List[CorrelationResult]:
        """Rows of the most recently saved run, in saved order."""
        rows = self.backend.query(CORRELATION_RESULTS)
        if not rows:
            return []
        last_run = rows[-1].get("run_id")
        return _load(CorrelationResult, [r for r in rows if r.get("run_id") == last_run])

    # ---- cooldown -------------------------------------------------------

    def last_alert_at(self, ticker: str) -> Optional[datetime]:
        rows = self.backend.query(ALERT_COOLDOWNS, {"ticker": ticker})
        if not rows or not rows[0].get("last_alert_at"):
            return None
        return parse_to_utc(rows[0]["last_alert_at"])

    def set_last_alert_at(self, ticker: str, when: datetime) -> None:
        self._upsert(ALERT_COOLDOWNS, {"ticker": ticker, "last_alert_at": ensure_utc(when).isoformat()})

    # ---- run history ----------------------------------------------------

    def save_run(self, run: PipelineRun) -> None:
        self._upsert(PIPELINE_RUNS, _dump(run))

    def runs(self) -> List[PipelineRun]:
        return sorted(_load(PipelineRun, self.backend.query(PIPELINE_RUNS)), key=lambda r: r.started_at)

    def last_run(self) -> Optional[PipelineRun]:
        runs = self.runs()
        return runs[-1] if runs else None
