from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SourceKind(str, Enum):
    VIDEO = "video"
    CHANNEL_MESSAGE = "channel_message"
    DISCOVERY = "discovery"


class RunMode(str, Enum):
    FULL = "full"
    PERIODIC = "periodic"
    TEST = "test"


class RunStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    DEGRADED = "degraded"
    FAILED = "failed"
    STOPPED = "stopped"


class StageStatus(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


class Strategy(str, Enum):
    AGENT = "agent"
    MANUAL = "manual"


class RiskTag(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SourceRecord(BaseModel):
    """One scraped item. Frozen: consumed once by the extractor, never mutated."""
    model_config = ConfigDict(frozen=True)

    schema_version: str = Field(default="sourcerecord/1")
    external_id: str
    source_kind: SourceKind
    url: Optional[str] = None
    author: Optional[str] = None
    timestamp: Optional[datetime] = None
    engagement_metrics: Dict[str, int] = Field(default_factory=dict)
    raw_text: str = ""
    media_url: Optional[str] = None
    scraped_at: datetime = Field(default_factory=utcnow)


class MentionEvent(BaseModel):
    schema_version: str = Field(default="mention/1")
    source_id: str
    source_kind: SourceKind
    ticker: str
    count: int = Field(ge=1)
    observed_at: datetime


class ChannelTarget(BaseModel):
    schema_version: str = Field(default="channeltarget/1")
    handle: str
    url: str
    discovered_at: datetime = Field(default_factory=utcnow)
    validated: bool = False
    stale: bool = False
    last_scraped_at: Optional[datetime] = None
    source: Optional[str] = None


class MarketSample(BaseModel):
    schema_version: str = Field(default="marketsample/1")
    token_symbol: str
    price_usd: Optional[float] = None
    volume_24h: Optional[float] = None
    market_cap: Optional[float] = None
    sampled_at: datetime = Field(default_factory=utcnow)
    provider: Optional[str] = None


class CorrelationResult(BaseModel):
    schema_version: str = Field(default="correlation/1")
    token_symbol: str
    window_start: datetime
    window_end: datetime
    mention_count: int
    trailing_average: float = 0.0
    mention_delta: float = 0.0
    volume_growth_rate: float = 0.0
    volume_growth_usd_per_hour: float = 0.0
    price_usd: Optional[float] = None
    score: float
    risk_tag: RiskTag


class Alert(BaseModel):
    schema_version: str = Field(default="alert/1")
    ticker: str
    score: float
    risk_tag: RiskTag
    volume_growth_rate: float = 0.0
    volume_growth_usd_per_hour: float = 0.0
    mention_count: int = 0
    price_usd: Optional[float] = None
    summary: str
    disclaimer: str
    reasons: List[str] = Field(default_factory=list)
    triggered_at: datetime = Field(default_factory=utcnow)


class StageResult(BaseModel):
    status: StageStatus
    error: Optional[str] = None
    summary: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = 0
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class PipelineRun(BaseModel):
    """
    Report of one orchestration run.

    stage_results keeps insertion order (stage execution order). Once finish() has
    been called the run is closed and record_stage() refuses further writes.
    """
    schema_version: str = Field(default="pipelinerun/1")
    run_id: str
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    mode: RunMode
    status: RunStatus = RunStatus.RUNNING
    strategy: Optional[Strategy] = None
    fallback_reason: Optional[str] = None
    error: Optional[str] = None
    stage_results: Dict[str, StageResult] = Field(default_factory=dict)

    @property
    def closed(self) -> bool:
        return self.ended_at is not None

    def record_stage(self, name: str, result: StageResult) -> None:
        if self.closed:
            raise RuntimeError(f"run {self.run_id} is closed")
        self.stage_results[name] = result

    def finish(self, status: RunStatus, error: Optional[str] = None) -> None:
        if self.closed:
            raise RuntimeError(f"run {self.run_id} is closed")
        self.status = status
        if error:
            self.error = error
        self.ended_at = utcnow()

    def failed_stages(self) -> List[str]:
        return [n for n, r in self.stage_results.items() if r.status == StageStatus.FAILED]

    def succeeded_stages(self) -> List[str]:
        return [n for n, r in self.stage_results.items() if r.status == StageStatus.SUCCEEDED]
