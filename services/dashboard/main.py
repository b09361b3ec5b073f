from __future__ import annotations
from common.logging import get_logger
from common.queue import consume_forever
from common.schemas import Alert, CorrelationResult

log = get_logger("dashboard")
STREAM_IN = "dashboard.updates"
GROUP = "dashboard_group"
CONSUMER = "dashboard_1"


def handle(payload: dict):
    trending = [CorrelationResult.model_validate(r) for r in payload.get("trending", [])]
    alerts = [Alert.model_validate(a) for a in payload.get("alerts", [])]
    log.info("UPDATE ▷ run=%s mode=%s trending=%d alerts=%d", payload.get("run_id"), payload.get("mode"), len(trending), len(alerts))
    for r in trending:
        log.info("  %-10s score=%.3f risk=%s mentions=%d", r.token_symbol, r.score, r.risk_tag.value, r.mention_count)
    for a in alerts:
        log.info("  ALERT %s: %s", a.ticker, a.summary)


def main():
    log.info("dashboard consumer starting...")
    consume_forever(STREAM_IN, GROUP, CONSUMER, handle)


if __name__ == "__main__":
    main()
