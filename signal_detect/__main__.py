import argparse
import json
import sys
from pathlib import Path

from common.config import Settings
from common.errors import ConfigurationError, StoreError
from storage.adapter import MentionStore

from .correlation_engine import AnalysisWindow, CorrelationEngine


def main():
    ap = argparse.ArgumentParser(description="Correlate stored mentions with market volume.")
    ap.add_argument("--hours", type=float, default=None, help="Analysis window length (default: ANALYSIS_WINDOW_HOURS)")
    ap.add_argument("--min-mentions", type=int, default=None, help="Drop tickers below this many in-window mentions")
    ap.add_argument("--out", metavar="PATH", help="Also write results as JSONL")
    ap.add_argument("--save", action="store_true", help="Persist results to the store under a cli run id")
    args = ap.parse_args()

    # resolve env at runtime (not import time)
    try:
        settings = Settings.from_env()
        store = MentionStore.from_settings(settings)
    except (ConfigurationError, ValueError) as e:
        print(f"[CORRELATION] configuration error: {e}", file=sys.stderr)
        raise SystemExit(2)

    engine = CorrelationEngine.from_settings(store, settings)
    if args.min_mentions is not None:
        engine.min_mentions = args.min_mentions
    window = AnalysisWindow.trailing(args.hours or settings.analysis_window_hours)

    try:
        results = engine.analyze(window)
    except StoreError as e:
        print(f"[CORRELATION] store error: {e}", file=sys.stderr)
        raise SystemExit(1)

    print(f"[CORRELATION] window {window.start.isoformat()} -> {window.end.isoformat()}: {len(results)} ticker(s)")
    for r in results:
        print(
            f"[CORRELATION] {r.token_symbol:<10} mentions={r.mention_count} delta={r.mention_delta:+.2f} "
            f"vol_growth={r.volume_growth_rate:+.1%} usd/h={r.volume_growth_usd_per_hour:,.0f} "
            f"score={r.score:.3f} risk={r.risk_tag.value}"
        )

    if args.out:
        out = Path(args.out)
        out.parent.mkdir(parents=True, exist_ok=True)
        with out.open("w", encoding="utf-8") as f:
            for r in results:
                f.write(json.dumps(r.model_dump(mode="json"), ensure_ascii=False) + "\n")
        print(f"[CORRELATION] wrote {out}")

    if args.save and results:
        run_id = f"cli-{window.end.strftime('%Y%m%dT%H%M%SZ')}"
        store.save_correlation_results(run_id, results)
        print(f"[CORRELATION] saved as {run_id}")


if __name__ == "__main__":
    main()
