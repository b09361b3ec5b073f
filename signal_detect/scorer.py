import math
from dataclasses import dataclass
from typing import Any

from common.schemas import RiskTag

# Defaults; override per deployment with SCORE_W_* / RISK_*_AT.
DEFAULT_W_MENTIONS = 0.6
DEFAULT_W_VOLUME = 0.4
DEFAULT_W_BUZZ = 0.0


@dataclass(frozen=True)
class ScoreWeights:
    mentions: float = DEFAULT_W_MENTIONS
    volume: float = DEFAULT_W_VOLUME
    buzz: float = DEFAULT_W_BUZZ

    @classmethod
    def from_settings(cls, settings: Any) -> "ScoreWeights":
        return cls(settings.score_w_mentions, settings.score_w_volume, settings.score_w_buzz)

    def score(self, mention_delta: float, volume_growth_rate: float, mention_count: int) -> float:
        return (
            self.mentions * mention_delta
            + self.volume * volume_growth_rate
            + self.buzz * math.log1p(max(mention_count, 0))
        )


@dataclass(frozen=True)
class RiskBuckets:
    medium_at: float = 1.0
    high_at: float = 3.0

    @classmethod
    def from_settings(cls, settings: Any) -> "RiskBuckets":
        return cls(settings.risk_medium_at, settings.risk_high_at)

    def tag(self, score: float) -> RiskTag:
        # higher score = louder, faster move = riskier entry
        if score >= self.high_at:
            return RiskTag.HIGH
        if score >= self.medium_at:
            return RiskTag.MEDIUM
        return RiskTag.LOW
