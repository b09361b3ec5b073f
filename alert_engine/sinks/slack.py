# alert_engine/sinks/slack.py
from __future__ import annotations

from typing import Any, Dict, Optional

from common.schemas import Alert

from ..formatter import one_line
from .base import BaseSink


class SlackSink(BaseSink):
    """
    Slack incoming-webhook sink.

    DRY-RUN prints the message it would post. Live mode POSTs blocks + fallback text,
    retrying transient failures through the shared RetryPolicy.
    """
    name = "slack"

    def __init__(self, *, webhook_url: Optional[str], mention: Optional[str] = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.webhook_url = webhook_url
        self.mention = mention

    @classmethod
    def from_settings(cls, settings: Any, *, dry_run: bool, **kwargs: Any) -> "SlackSink":
        return cls(webhook_url=settings.slack_webhook_url, dry_run=dry_run, **kwargs)

    # --- Formatting helpers ---

    def _format_preview(self, alert: Alert) -> str:
        mention_s = f" mention={self.mention}" if self.mention else ""
        return f"{one_line(alert)}\n  {alert.summary}\n  {alert.disclaimer}{mention_s}"

    def _build_payload(self, alert: Alert) -> Dict[str, Any]:
        mention = f"\n{self.mention}" if self.mention else ""
        header = f"${alert.ticker} - {alert.risk_tag.value} risk (score {alert.score:.2f})"
        text = f"{header}\n{alert.summary}\n{alert.disclaimer}{mention}"
        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": header}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"{alert.summary}{mention}"}},
        ]
        if alert.reasons:
            blocks.append({
                "type": "context",
                "elements": [{"type": "mrkdwn", "text": "triggers: " + "; ".join(alert.reasons)}],
            })
        blocks.append({"type": "context", "elements": [{"type": "mrkdwn", "text": f"_{alert.disclaimer}_"}]})
        return {"text": text, "blocks": blocks}

    # --- Main ---

    def emit(self, alert: Alert) -> bool:
        self._on_attempt()

        if not self.webhook_url:
            # Config missing -> treat as skip (preflight in live mode should catch this)
            self._on_skip()
            print("[Slack]" + ("[DRY-RUN]" if self.dry_run else "") + " SKIP (no webhook configured)")
            return False

        if self.dry_run:
            print(f"[Slack][DRY-RUN] Would POST to {self.webhook_url}:\n{self._format_preview(alert)}\n")
            self._on_sent()
            return True

        return self._post_json(self.webhook_url, self._build_payload(alert))
