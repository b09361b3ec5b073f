# data_ingest/market_data.py
"""
Market data for known symbols.

Primary provider: DexScreener pair search (requests). The pair whose base token matches
the symbol with the deepest USD liquidity wins. Fallback provider: yfinance "<SYMBOL>-USD".
Both produce the same MarketSample; the store keeps every sample (append-only).
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

import requests
import yfinance as yf

from common.errors import MarketDataError
from common.retry import RetryPolicy
from common.schemas import MarketSample, utcnow

_LOG = logging.getLogger(__name__)

DEXSCREENER_SEARCH = "https://api.dexscreener.com/latest/dex/search"


def _num(v: Any) -> Optional[float]:
    try:
        return float(v) if v is not None else None
    except (TypeError, ValueError):
        return None


class DexScreenerProvider:
    name = "dexscreener"

    def __init__(self, session: Optional[requests.Session] = None, timeout: float = 15.0, retry: Optional[RetryPolicy] = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.retry = retry or RetryPolicy(max_attempts=2, base_delay=1.0, retryable=(requests.RequestException,))

    def _search(self, symbol: str) -> Dict[str, Any]:
        resp = self.session.get(DEXSCREENER_SEARCH, params={"q": symbol}, timeout=self.timeout)
        resp.raise_for_status()
        return resp.json()

    def sample(self, symbol: str) -> MarketSample:
        try:
            data = self.retry.call(lambda: self._search(symbol))
        except (requests.RequestException, ValueError) as e:
            raise MarketDataError(self.name, symbol, str(e)) from e
        if not isinstance(data, dict):
            raise MarketDataError(self.name, symbol, "unexpected response shape")

        pairs = [p for p in (data.get("pairs") or []) if (p.get("baseToken") or {}).get("symbol", "").upper() == symbol]
        if not pairs:
            raise MarketDataError(self.name, symbol, "no matching pair")
        best = max(pairs, key=lambda p: _num((p.get("liquidity") or {}).get("usd")) or 0.0)
        return MarketSample(
            token_symbol=symbol,
            price_usd=_num(best.get("priceUsd")),
            volume_24h=_num((best.get("volume") or {}).get("h24")),
            market_cap=_num(best.get("marketCap") or best.get("fdv")),
            sampled_at=utcnow(),
            provider=self.name,
        )


class YFinanceProvider:
    name = "yfinance"

    def sample(self, symbol: str) -> MarketSample:
        try:
            t = yf.Ticker(f"{symbol}-USD")
            hist = t.history(period="1d")
        except Exception as e:
            raise MarketDataError(self.name, symbol, str(e)) from e
        if hist is None or len(hist) == 0:
            raise MarketDataError(self.name, symbol, "no data")
        last = hist.iloc[-1]
        close = _num(last.get("Close"))
        volume = _num(last.get("Volume"))
        market_cap = None
        try:
            market_cap = _num(t.fast_info.get("marketCap"))
        except Exception as e:
            _LOG.debug("yfinance market cap for %s unavailable: %s", symbol, e)
        return MarketSample(
            token_symbol=symbol,
            price_usd=close,
            # Yahoo quotes crypto volume in the quote currency (USD)
            volume_24h=volume,
            market_cap=market_cap,
            sampled_at=utcnow(),
            provider=self.name,
        )


class MarketDataService:
    """Tries providers in order per symbol; a symbol no provider can price is reported, not raised."""

    def __init__(self, providers: Sequence[Any]):
        if not providers:
            raise ValueError("at least one provider required")
        self.providers = list(providers)
        self.misses: Dict[str, List[str]] = {}

    @classmethod
    def default(cls) -> "MarketDataService":
        return cls([DexScreenerProvider(), YFinanceProvider()])

    def sample(self, symbol: str) -> Optional[MarketSample]:
        errors: List[str] = []
        for p in self.providers:
            try:
                return p.sample(symbol)
            except MarketDataError as e:
                errors.append(str(e))
                _LOG.info("market data: %s", e)
        self.misses[symbol] = errors
        return None

    def sample_all(self, symbols: Iterable[str]) -> List[MarketSample]:
        self.misses = {}
        out: List[MarketSample] = []
        for s in sorted(set(symbols)):
            got = self.sample(s)
            if got is not None:
                out.append(got)
        return out
