# alert_engine/__main__.py
"""
Alert engine CLI.

- Default: gate the latest stored correlation results and print alerts to console.
- --results PATH: gate results from a JSONL file (signal_detect --out) instead.
- --csv: also append CSV rows to queue/alerts/alerts.csv
- Slack / X sinks are DRY-RUN unless --sinks-live (or SINKS_LIVE=1). Live mode runs a
  preflight that exits with code 2 when no sink is configured.
- Cooldown state is shared with the pipeline through the store.
"""
from __future__ import annotations

import argparse
import csv
import json
import os
from pathlib import Path
from typing import Iterable, List

from pydantic import ValidationError

from common.config import Settings
from common.errors import ConfigurationError, StoreError
from common.schemas import Alert, CorrelationResult
from storage.adapter import MentionStore

from .dispatch import build_sinks, deliver, preflight_errors
from .formatter import one_line
from .gate import AlertGate

CSV_COLUMNS = [
    "triggered_at",
    "ticker",
    "score",
    "risk_tag",
    "volume_growth_rate",
    "volume_growth_usd_per_hour",
    "mention_count",
    "summary",
    "reasons",
]


def load_results(path: Path) -> List[CorrelationResult]:
    out: List[CorrelationResult] = []
    with path.open("r", encoding="utf-8") as f:
        for ln, line in enumerate(f, 1):
            line = line.strip()
            if not line:
                continue
            try:
                out.append(CorrelationResult.model_validate(json.loads(line)))
            except (json.JSONDecodeError, ValidationError) as e:
                print(f"[alert_engine] WARN: {path.name}:{ln} invalid result: {e}")
    return out


def write_csv(alerts: Iterable[Alert], csv_path: str) -> int:
    out_path = Path(csv_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    is_new = not out_path.exists() or out_path.stat().st_size == 0

    with out_path.open("a", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=CSV_COLUMNS, extrasaction="ignore")
        if is_new:
            w.writeheader()
        rows = 0
        for a in alerts:
            row = a.model_dump(mode="json")
            row["reasons"] = "; ".join(a.reasons)
            w.writerow({k: row.get(k, "") for k in CSV_COLUMNS})
            rows += 1
    return rows


def parse_args(argv: List[str] | None = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="python -m alert_engine",
        description="Alert gate over correlation results (console/CSV + optional Slack/X sinks).",
    )
    p.add_argument("--results", metavar="PATH", help="Correlation results JSONL (default: latest stored run)")
    p.add_argument("--csv", action="store_true", help="Append alerts to CSV sink")
    p.add_argument("--alerts-csv", default=os.getenv("ALERTS_CSV_PATH", "queue/alerts/alerts.csv"), help="CSV path")
    p.add_argument(
        "--sinks-live",
        action="store_true",
        help="Enable LIVE sends (Slack POST / X post). Default is DRY-RUN without this flag or SINKS_LIVE=1.",
    )
    p.add_argument(
        "--fail-on-sink-error",
        action="store_true",
        help="Exit non-zero if any sink errors during send (applies to dry-run or live).",
    )
    return p.parse_args(argv)


def main(argv: List[str] | None = None) -> int:
    args = parse_args(argv)
    try:
        settings = Settings.from_env()
        store = MentionStore.from_settings(settings)
    except (ConfigurationError, ValueError) as e:
        print(f"[alert_engine] configuration error: {e}")
        raise SystemExit(2)

    sinks = build_sinks(settings, live=args.sinks_live or settings.sinks_live)
    errs = preflight_errors(sinks)
    if errs:
        print("[alert_engine] LIVE mode preflight failed:")
        for e in errs:
            print(" - " + e)
        raise SystemExit(2)

    # 1) Results
    try:
        results = load_results(Path(args.results)) if args.results else store.latest_correlation_results()
    except (OSError, StoreError) as e:
        print(f"[alert_engine] cannot load results: {e}")
        return 1
    if not results:
        print("[alert_engine] No correlation results (nothing to do).")
        return 0

    # 2) Gate
    alerts = AlertGate.from_settings(store, settings).evaluate(results)
    for a in alerts:
        print(one_line(a))
    print(f"[alert_engine] {len(alerts)} alert(s) from {len(results)} result(s).")

    # 3) CSV (optional)
    if args.csv and alerts:
        nrows = write_csv(alerts, args.alerts_csv)
        print(f"[alert_engine] Appended {nrows} row(s) to {args.alerts_csv}.")

    # 4) Sinks
    if any(not s.dry_run for s in sinks):
        print("[alert_engine] LIVE sink mode enabled.")
    else:
        print("[alert_engine] DRY-RUN sink mode (no network).")
    metrics = deliver(alerts, sinks)

    print("\n=== Sink metrics ===")
    any_errors = False
    for name, m in metrics.items():
        print(f"{name}: attempted={m['attempted']} sent={m['sent']} skipped={m['skipped']} errors={m['errors']}")
        any_errors = any_errors or m["errors"] > 0

    if any_errors and args.fail_on_sink_error:
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
