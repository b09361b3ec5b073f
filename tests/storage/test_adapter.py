# tests/storage/test_adapter.py
from datetime import timedelta

import pytest

from common.config import Settings
from common.errors import StoreWriteError
from common.schemas import (
    ChannelTarget,
    CorrelationResult,
    MarketSample,
    PipelineRun,
    RiskTag,
    RunMode,
    RunStatus,
    SourceKind,
    SourceRecord,
)
from storage.adapter import MENTIONS, SOURCE_RECORDS, MentionStore


def _video(views: int) -> SourceRecord:
    return SourceRecord(
        external_id="7300000000000000000",
        source_kind=SourceKind.VIDEO,
        url="https://tiktok.com/@a/video/7300000000000000000",
        engagement_metrics={"views": views},
        raw_text="$BONK",
    )


def test_upsert_records_is_idempotent_and_refreshes_metadata(store, backend):
    store.upsert_records([_video(100)])
    store.upsert_records([_video(250)])
    assert backend.count(SOURCE_RECORDS) == 1
    rec = store.get_record(SourceKind.VIDEO, "7300000000000000000")
    assert rec.engagement_metrics == {"views": 250}


def test_record_mentions_drops_unknown_and_never_duplicates(store, backend, now):
    for _ in range(3):
        events = store.record_mentions(
            "7300000000000000000", {"BONK": 2, "FOO": 5, "wif": 1},
            source_kind=SourceKind.VIDEO, observed_at=now,
        )
    assert sorted(e.ticker for e in events) == ["BONK", "WIF"]
    assert backend.count(MENTIONS) == 2

    # a later observation of the same source is a new point in the series
    store.record_mentions("7300000000000000000", {"BONK": 4}, source_kind=SourceKind.VIDEO, observed_at=now + timedelta(hours=1))
    assert backend.count(MENTIONS) == 3
    assert [m.count for m in store.mentions(start=now + timedelta(minutes=30))] == [4]


def test_known_symbols_include_tokens_table(store, now):
    assert store.record_mentions("x", {"MYRO": 1}, source_kind=SourceKind.DISCOVERY, observed_at=now) == []
    store.upsert_tokens(["$myro", "not valid!"], source="dexscreener")
    assert "MYRO" in store.known_symbols()
    assert len(store.record_mentions("x", {"MYRO": 1}, source_kind=SourceKind.DISCOVERY, observed_at=now)) == 1


def test_mentions_window_is_half_open(store, now):
    store.record_mentions("a", {"BONK": 1}, source_kind=SourceKind.VIDEO, observed_at=now)
    store.record_mentions("b", {"BONK": 1}, source_kind=SourceKind.VIDEO, observed_at=now + timedelta(hours=2))
    got = store.mentions(start=now, end=now + timedelta(hours=2))
    assert [m.source_id for m in got] == ["a"]


def test_channel_targets_never_deleted_only_marked(store, now):
    added = store.add_channel_targets([
        ChannelTarget(handle="bonkchat", url="https://t.me/bonkchat", discovered_at=now),
        ChannelTarget(handle="wifroom", url="https://t.me/wifroom", discovered_at=now),
    ])
    assert [t.handle for t in added] == ["bonkchat", "wifroom"]
    assert store.add_channel_targets([ChannelTarget(handle="bonkchat", url="https://t.me/bonkchat")]) == []

    store.mark_channel_target("wifroom", validated=False, stale=True)
    store.touch_channel_target("bonkchat", now)
    store.mark_channel_target("ghost", validated=True, stale=False)  # not stored: ignored

    assert [t.handle for t in store.channel_targets()] == ["bonkchat"]
    every = {t.handle: t for t in store.channel_targets(include_stale=True)}
    assert set(every) == {"bonkchat", "wifroom"}
    assert every["wifroom"].stale is True
    assert every["bonkchat"].last_scraped_at == now


def test_market_samples_append_only(store, now):
    store.append_market_samples([
        MarketSample(token_symbol="BONK", volume_24h=1000.0, sampled_at=now),
        MarketSample(token_symbol="BONK", volume_24h=1000.0, sampled_at=now),
        MarketSample(token_symbol="WIF", volume_24h=50.0, sampled_at=now - timedelta(hours=5)),
    ])
    assert len(store.market_samples("BONK")) == 2
    assert [s.token_symbol for s in store.market_samples(since=now - timedelta(hours=1))] == ["BONK", "BONK"]


def test_latest_correlation_results_returns_last_run_only(store, now):
    def res(sym, score):
        return CorrelationResult(token_symbol=sym, window_start=now, window_end=now, mention_count=3,
                                 score=score, risk_tag=RiskTag.LOW)

    assert store.latest_correlation_results() == []
    store.save_correlation_results("run-1", [res("BONK", 1.0)])
    store.save_correlation_results("run-2", [res("WIF", 2.0), res("BONK", 0.5)])
    assert [r.token_symbol for r in store.latest_correlation_results()] == ["WIF", "BONK"]


def test_cooldown_roundtrip(store, now):
    assert store.last_alert_at("BONK") is None
    store.set_last_alert_at("BONK", now)
    assert store.last_alert_at("BONK") == now


def test_run_history(store):
    run = PipelineRun(run_id="r1", mode=RunMode.TEST)
    store.save_run(run)
    run.finish(RunStatus.COMPLETED)
    store.save_run(run)
    assert len(store.runs()) == 1
    assert store.last_run().status == RunStatus.COMPLETED


class _BrokenBackend:
    def upsert(self, table, record, conflict_key):
        raise ConnectionError("store unreachable")

    def query(self, table, filters=None):
        return []

    def insert(self, table, records):
        raise OSError("disk full")


def test_backend_failures_surface_as_store_write_error():
    s = MentionStore(_BrokenBackend())
    with pytest.raises(StoreWriteError) as ei:
        s.upsert_records([_video(1)])
    assert ei.value.table == "source_records"
    with pytest.raises(StoreWriteError):
        s.append_market_samples([MarketSample(token_symbol="BONK")])


def test_from_settings_loads_the_symbol_file(tmp_path):
    p = tmp_path / "symbols.txt"
    p.write_text("BONK\nWIF\tdogwifhat\n", encoding="utf-8")
    s = MentionStore.from_settings(Settings(symbols_file=str(p)))
    assert s.known_symbols() == {"BONK", "WIF"}


def test_from_settings_without_symbol_file_uses_tokens_only(tmp_path):
    s = MentionStore.from_settings(Settings(symbols_file=str(tmp_path / "missing.txt")))
    assert s.known_symbols() == set()
    s.upsert_tokens(["popcat"])
    assert s.known_symbols() == {"POPCAT"}
