import argparse
import json
import sys

from common.config import Settings
from common.errors import ConfigurationError
from common.logging import get_logger
from common.schemas import PipelineRun, RunMode, RunStatus
from storage.adapter import MentionStore

from .orchestrator import PipelineOrchestrator

log = get_logger("pipeline")


def _print_run(run: PipelineRun) -> None:
    print(f"[PIPELINE] run {run.run_id} mode={run.mode.value} status={run.status.value} strategy={run.strategy.value if run.strategy else '-'}")
    if run.fallback_reason:
        print(f"[PIPELINE]   fallback: {run.fallback_reason}")
    if run.error:
        print(f"[PIPELINE]   error: {run.error}")
    for name, r in run.stage_results.items():
        err = f" ({r.error})" if r.error else ""
        print(f"[PIPELINE]   {name:<22} {r.status.value}{err}")


def cmd_once(args, store: MentionStore) -> int:
    log.info("single %s run", args.mode)
    run = PipelineOrchestrator(store).start(RunMode(args.mode))
    _print_run(run)
    if args.json:
        print(json.dumps(run.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 1 if run.status == RunStatus.FAILED else 0


def cmd_status(args, store: MentionStore) -> int:
    runs = store.runs()
    if not runs:
        print("[PIPELINE] no runs recorded")
        return 0
    for run in runs[-args.last:]:
        _print_run(run)
    return 0


def main(argv=None) -> int:
    ap = argparse.ArgumentParser(prog="python -m pipeline", description="Run or inspect the signal pipeline.")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p = sub.add_parser("once", help="Run the stage sequence once in the foreground")
    p.add_argument("--mode", choices=[m.value for m in RunMode], default=RunMode.FULL.value)
    p.add_argument("--json", action="store_true", help="Also print the run report as JSON")

    p = sub.add_parser("status", help="Show recorded runs (needs a persistent store backend)")
    p.add_argument("--last", type=int, default=5)

    args = ap.parse_args(argv)

    # resolve env at runtime (not import time)
    try:
        store = MentionStore.from_settings(Settings.from_env())
    except (ConfigurationError, ValueError) as e:
        print(f"[PIPELINE] configuration error: {e}", file=sys.stderr)
        return 2

    if args.cmd == "once":
        return cmd_once(args, store)
    return cmd_status(args, store)


if __name__ == "__main__":
    raise SystemExit(main())
