from __future__ import annotations

from typing import Optional


class PipelineError(Exception):
    """Base class for every error the pipeline raises on purpose."""


class SourceError(PipelineError):
    """A scrape target could not be read."""

    def __init__(self, message: str, target: Optional[str] = None):
        super().__init__(message)
        self.target = target


class TransientSourceError(SourceError):
    """Navigation/selector timeout or 5xx. Retried with back-off, then the target is skipped."""


class PermanentSourceError(SourceError):
    """Target unreachable or invalid. Marked and skipped until the next discovery cycle."""


class StoreError(PipelineError):
    pass


class StoreWriteError(StoreError):
    """A persisted write failed. The stage is marked failed; the pipeline continues."""

    def __init__(self, table: str, message: str):
        super().__init__(f"{table}: {message}")
        self.table = table


class StrategyUnavailableError(PipelineError):
    """The agent strategy cannot run; the orchestrator switches to the manual strategy."""


class ConfigurationError(PipelineError):
    """A required setting or credential is missing. Fatal at initialization."""


class MarketDataError(PipelineError):
    """A market-data provider returned nothing usable for a symbol."""

    def __init__(self, provider: str, symbol: str, message: str):
        super().__init__(f"{provider}/{symbol}: {message}")
        self.provider = provider
        self.symbol = symbol
