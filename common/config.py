from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from common.errors import ConfigurationError
from common.schemas import RunMode

DEFAULT_TERMS = ["memecoin", "pumpfun", "solana", "crypto", "meme", "bags", "bonk"]


def _env_bool(name: str, default: bool) -> bool:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    return v.strip().lower() in ("1", "true", "yes", "on")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    v = os.environ.get(name)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {v!r}")


def _env_int(name: str, default: int) -> int:
    v = _env_float(name, float(default))
    return int(v)


def _env_list(name: str, default: List[str]) -> List[str]:
    v = os.environ.get(name)
    if v is None:
        return list(default)
    return [s.strip() for s in v.replace(";", ",").split(",") if s.strip()]


@dataclass(frozen=True)
class Settings:
    # storage
    store_backend: str = "memory"
    redis_url: Optional[str] = None
    redis_prefix: str = "iris"
    symbols_file: str = "ref/symbols.txt"

    # sources
    video_search_terms: List[str] = field(default_factory=lambda: list(DEFAULT_TERMS))
    video_hashtags: List[str] = field(default_factory=lambda: list(DEFAULT_TERMS))
    discovery_url: str = "https://outlight.fun/"
    channel_seed_handles: List[str] = field(default_factory=list)
    channel_feed_url_template: Optional[str] = None
    headless: bool = True
    nav_timeout_ms: int = 60000
    user_agent: str = "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0 Safari/537.36"

    # correlation
    analysis_window_hours: float = 2.0
    trailing_windows: int = 6
    min_mentions: int = 3
    score_w_mentions: float = 0.6
    score_w_volume: float = 0.4
    score_w_buzz: float = 0.0
    risk_medium_at: float = 1.0
    risk_high_at: float = 3.0

    # alerting
    alert_min_usd_per_hour: float = 10_000.0
    alert_min_growth_rate: float = 1.0
    alert_min_score: Optional[float] = None
    alert_cooldown_minutes: float = 120.0
    sinks_live: bool = False
    slack_webhook_url: Optional[str] = None
    x_bearer_token: Optional[str] = None

    # orchestration
    periodic_interval_secs: float = 7200.0
    agent_executor: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        """Resolve every setting from the environment at call time (never at import time)."""
        return cls(
            store_backend=os.environ.get("STORE_BACKEND", "memory").strip().lower(),
            redis_url=os.environ.get("REDIS_URL") or None,
            redis_prefix=os.environ.get("REDIS_PREFIX", "iris"),
            symbols_file=os.environ.get("SYMBOLS_FILE", "ref/symbols.txt"),
            video_search_terms=_env_list("VIDEO_SEARCH_TERMS", DEFAULT_TERMS),
            video_hashtags=_env_list("VIDEO_HASHTAGS", DEFAULT_TERMS),
            discovery_url=os.environ.get("DISCOVERY_URL", "https://outlight.fun/"),
            channel_seed_handles=_env_list("CHANNEL_SEED_HANDLES", []),
            channel_feed_url_template=os.environ.get("CHANNEL_FEED_URL_TEMPLATE") or None,
            headless=_env_bool("HEADLESS", True),
            nav_timeout_ms=_env_int("NAV_TIMEOUT_MS", 60000),
            analysis_window_hours=_env_float("ANALYSIS_WINDOW_HOURS", 2.0),
            trailing_windows=_env_int("TRAILING_WINDOWS", 6),
            min_mentions=_env_int("MIN_MENTIONS", 3),
            score_w_mentions=_env_float("SCORE_W_MENTIONS", 0.6),
            score_w_volume=_env_float("SCORE_W_VOLUME", 0.4),
            score_w_buzz=_env_float("SCORE_W_BUZZ", 0.0),
            risk_medium_at=_env_float("RISK_MEDIUM_AT", 1.0),
            risk_high_at=_env_float("RISK_HIGH_AT", 3.0),
            alert_min_usd_per_hour=_env_float("ALERT_MIN_USD_PER_HOUR", 10_000.0),
            alert_min_growth_rate=_env_float("ALERT_MIN_GROWTH_RATE", 1.0),
            alert_min_score=_env_float("ALERT_MIN_SCORE", None),
            alert_cooldown_minutes=_env_float("ALERT_COOLDOWN_MINUTES", 120.0),
            sinks_live=_env_bool("SINKS_LIVE", False),
            slack_webhook_url=os.environ.get("SLACK_WEBHOOK_URL") or None,
            x_bearer_token=os.environ.get("X_BEARER_TOKEN") or None,
            periodic_interval_secs=_env_float("PERIODIC_INTERVAL_SECS", 7200.0),
            agent_executor=os.environ.get("AGENT_EXECUTOR") or None,
        )

    def validate(self, mode: RunMode) -> None:
        """
        Fail fast on settings a run cannot start without.
        Test mode never posts live, so sink credentials are only checked otherwise.
        """
        errs: List[str] = []
        if self.store_backend not in ("memory", "redis"):
            errs.append(f"STORE_BACKEND must be 'memory' or 'redis', got {self.store_backend!r}")
        if self.store_backend == "redis" and not self.redis_url:
            errs.append("STORE_BACKEND=redis requires REDIS_URL")
        if self.sinks_live and mode != RunMode.TEST:
            if not (self.slack_webhook_url or self.x_bearer_token):
                errs.append("SINKS_LIVE=1 requires SLACK_WEBHOOK_URL or X_BEARER_TOKEN")
        if self.risk_high_at < self.risk_medium_at:
            errs.append("RISK_HIGH_AT must be >= RISK_MEDIUM_AT")
        if self.analysis_window_hours <= 0:
            errs.append("ANALYSIS_WINDOW_HOURS must be > 0")
        if errs:
            raise ConfigurationError("; ".join(errs))
