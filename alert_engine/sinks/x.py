# alert_engine/sinks/x.py
from __future__ import annotations

from typing import Any, Optional

from common.schemas import Alert

from ..formatter import tweet_text
from .base import BaseSink

X_TWEETS_URL = "https://api.x.com/2/tweets"


class XSink(BaseSink):
    """Posts one tweet per alert (v2 create-tweet endpoint, user-context bearer token)."""
    name = "x"

    def __init__(self, *, bearer_token: Optional[str], endpoint: str = X_TWEETS_URL, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.bearer_token = bearer_token
        self.endpoint = endpoint

    @classmethod
    def from_settings(cls, settings: Any, *, dry_run: bool, **kwargs: Any) -> "XSink":
        return cls(bearer_token=settings.x_bearer_token, dry_run=dry_run, **kwargs)

    def emit(self, alert: Alert) -> bool:
        self._on_attempt()

        if not self.bearer_token:
            self._on_skip()
            print("[X]" + ("[DRY-RUN]" if self.dry_run else "") + " SKIP (no bearer token configured)")
            return False

        text = tweet_text(alert)
        if self.dry_run:
            print(f"[X][DRY-RUN] Would post ({len(text)} chars):\n{text}\n")
            self._on_sent()
            return True

        headers = {"Authorization": f"Bearer {self.bearer_token}", "Content-Type": "application/json"}
        return self._post_json(self.endpoint, {"text": text}, headers=headers)
