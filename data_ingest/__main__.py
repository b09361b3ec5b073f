import argparse
import json
import os
import sys
import time
from pathlib import Path

from common.config import Settings
from common.errors import ConfigurationError
from common.logging import get_logger
from common.schemas import RunMode
from normalize_enrich.ticker_extractor import extract
from shared.datetime_utils import floor_to_hour
from storage.adapter import MentionStore

from .base import ScrapeLimits
from .browser import PlaywrightBrowser
from .channel_scraper import ChannelScraper
from .discovery_scraper import DiscoveryScraper
from .market_data import MarketDataService
from .video_scraper import CommentFetcher, VideoScraper, video_targets

log = get_logger("data_ingest")


def _out_path(source: str) -> Path:
    # resolve env at runtime (not import time)
    out_dir = Path(os.getenv("RAW_QUEUE_DIR", "queue/raw_records"))
    out_dir.mkdir(parents=True, exist_ok=True)
    return out_dir / f"{source}.{time.strftime('%Y%m%dT%H%M%SZ', time.gmtime())}.jsonl"


def _drain(scraper, targets, limits, source: str, store=None) -> int:
    out = _out_path(source)
    known = store.known_symbols() if store else set()
    n = mentions = 0
    with out.open("w", encoding="utf-8") as f:
        for rec in scraper.scrape(targets, limits):
            f.write(json.dumps(rec.model_dump(mode="json"), ensure_ascii=False) + "\n")
            n += 1
            if store is not None:
                store.upsert_records([rec])
                counts = extract(rec.raw_text, known_symbols=known)
                if counts:
                    observed = floor_to_hour(rec.scraped_at)
                    events = store.record_mentions(rec.external_id, counts, source_kind=rec.source_kind, observed_at=observed)
                    mentions += sum(ev.count for ev in events)
    failed = len(scraper.failures)
    note = f"; mentions={mentions}" if store is not None else ""
    print(f"[{source.upper()}] {out.name}: records={n} targets={scraper.stats.targets} failed={failed}{note}")
    for fail in scraper.failures:
        print(f"[{source.upper()}]   skipped {fail.target} after {fail.attempts} attempt(s): {fail.error}")
    return n


def main():
    ap = argparse.ArgumentParser(prog="python -m data_ingest")
    ap.add_argument("--test", action="store_true", help="Small scrape limits (test mode)")
    ap.add_argument("--persist", action="store_true", help="Also upsert records and mentions into the store")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("video", help="Scrape short-video search and hashtag pages")
    p.add_argument("--term", action="append", help="Search term (repeatable; default VIDEO_SEARCH_TERMS)")
    p.add_argument("--tag", action="append", help="Hashtag (repeatable; default VIDEO_HASHTAGS)")
    p.add_argument("--no-comments", action="store_true", help="Skip the comment endpoint")

    p = sub.add_parser("channel", help="Scrape public channel previews")
    p.add_argument("handles", nargs="*", help="Channel handles (default: stored targets + CHANNEL_SEED_HANDLES)")

    p = sub.add_parser("discovery", help="Discover channel links on the aggregator page")
    p.add_argument("--url", default=None, help="Page URL (default DISCOVERY_URL)")

    sub.add_parser("market", help="Sample market data for known symbols")

    args = ap.parse_args()

    try:
        settings = Settings.from_env()
        store = MentionStore.from_settings(settings)
    except (ConfigurationError, ValueError) as e:
        print(f"[INGEST] configuration error: {e}", file=sys.stderr)
        raise SystemExit(2)

    limits = ScrapeLimits.for_mode(RunMode.TEST if args.test else RunMode.FULL)
    sink = store if args.persist else None

    if args.cmd == "video":
        targets = video_targets(args.term or settings.video_search_terms, args.tag or settings.video_hashtags)
        fetcher = None if args.no_comments else CommentFetcher(user_agent=settings.user_agent)
        with VideoScraper(PlaywrightBrowser.from_settings(settings), comment_fetcher=fetcher) as s:
            _drain(s, targets, limits, "video", sink)

    elif args.cmd == "channel":
        with ChannelScraper(user_agent=settings.user_agent, feed_url_template=settings.channel_feed_url_template) as s:
            targets = s.prepare_targets(store, seeds=list(args.handles) or settings.channel_seed_handles, limits=limits)
            if args.handles:
                wanted = set(args.handles)
                targets = [t for t in targets if t.handle in wanted]
            _drain(s, targets, limits, "channel", sink)

    elif args.cmd == "discovery":
        url = args.url or settings.discovery_url
        with DiscoveryScraper(browser=PlaywrightBrowser.from_settings(settings), user_agent=settings.user_agent) as s:
            _drain(s, [url], limits, "discovery", sink)
            found = s.channel_targets()
            added = store.add_channel_targets(found) if args.persist else []
            print(f"[DISCOVERY] channels found={len(found)} new={len(added)}")
            for h, err in sorted(s.strategy_errors.items()):
                print(f"[DISCOVERY]   strategy {h} failed: {err}")

    elif args.cmd == "market":
        symbols = sorted(store.known_symbols())
        if not symbols:
            print("[MARKET] no known symbols (SYMBOLS_FILE / tokens table)", file=sys.stderr)
            raise SystemExit(2)
        service = MarketDataService.default()
        samples = service.sample_all(symbols)
        out = _out_path("market")
        with out.open("w", encoding="utf-8") as f:
            for smp in samples:
                f.write(json.dumps(smp.model_dump(mode="json"), ensure_ascii=False) + "\n")
        if args.persist:
            store.append_market_samples(samples)
        print(f"[MARKET] {out.name}: samples={len(samples)} misses={len(service.misses)}")
        log.info("market misses: %s", ", ".join(sorted(service.misses)) or "none")


if __name__ == "__main__":
    main()
