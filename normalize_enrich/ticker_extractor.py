# normalize_enrich/ticker_extractor.py
"""
Ticker mention extraction.

extract(text) -> {TICKER: count}

- "$bonk", "$BONK" and "$Bonk" are one ticker (uppercased) and every repeat counts
- with a known-symbol table, bare words that are known symbols count too
  ("bonk is pumping"), minus a stop-word list of crypto/finance slang
- anything that is not usable text (None, numbers, undecodable bytes, "") gives {}

The cashtag pattern can be overridden with TICKER_PATTERN (read per call). The first
capture group is the symbol; a pattern without groups uses the whole match.
"""
from __future__ import annotations

import logging
import os
import re
from collections import Counter
from typing import Dict, Iterable, Optional, Pattern, Union

from shared.symbols import canon_symbol

_LOG = logging.getLogger(__name__)

DEFAULT_PATTERN = re.compile(r"\$([A-Za-z][A-Za-z0-9]{1,9})\b")

# words not preceded by "$" (the cashtag pass owns those)
_BARE_WORD = re.compile(r"(?<![$\w])([A-Za-z][A-Za-z0-9]{1,9})\b")

# Look like tickers, almost never are
STOP_WORDS = {
    'A', 'I', 'DD', 'CEO', 'CFO', 'IPO', 'ATH', 'ATL', 'YTD', 'EOD', 'AH', 'PM',
    'EPS', 'PE', 'EV', 'IV', 'US', 'USA', 'EU', 'UK', 'IMO', 'IMHO', 'TLDR',
    'YOLO', 'FD', 'TA', 'FOMO', 'FUD', 'HOD', 'HODL', 'ETF', 'SEC', 'API',
    'FOR', 'THE', 'AND', 'ARE', 'NOT', 'CA', 'DEX', 'CEX', 'NFT', 'RUG', 'GM',
    'GN', 'LFG', 'WAGMI', 'NGMI', 'DYOR', 'NFA', 'MC', 'MCAP', 'LP', 'TG', 'DM',
    'AI', 'ON', 'IN', 'IS', 'IT', 'TO', 'OF', 'GO', 'UP', 'NEW', 'NOW', 'ALL',
}

_bad_env_pattern_warned = set()


def _resolve_pattern(pattern: Union[str, Pattern[str], None]) -> Pattern[str]:
    if pattern is not None and not isinstance(pattern, str):
        return pattern
    raw = pattern if pattern is not None else os.environ.get("TICKER_PATTERN")
    if not raw:
        return DEFAULT_PATTERN
    try:
        return re.compile(raw)
    except re.error as e:
        if raw not in _bad_env_pattern_warned:
            _bad_env_pattern_warned.add(raw)
            _LOG.warning("invalid ticker pattern %r (%s); using default", raw, e)
        return DEFAULT_PATTERN


def _as_text(text: object) -> Optional[str]:
    if isinstance(text, str):
        return text
    if isinstance(text, (bytes, bytearray)):
        try:
            return bytes(text).decode("utf-8")
        except UnicodeDecodeError:
            return None
    return None


def extract(
    text: object,
    *,
    known_symbols: Optional[Iterable[str]] = None,
    pattern: Union[str, Pattern[str], None] = None,
) -> Dict[str, int]:
    s = _as_text(text)
    if not s:
        return {}

    rx = _resolve_pattern(pattern)
    counts: Counter = Counter()

    for m in rx.finditer(s):
        tok = m.group(1) if rx.groups else m.group(0)
        sym = canon_symbol(tok)
        if sym:
            counts[sym] += 1

    if known_symbols:
        known = {c for c in (canon_symbol(k) for k in known_symbols) if c}
        for m in _BARE_WORD.finditer(s):
            sym = m.group(1).upper()
            if sym in known and sym not in STOP_WORDS:
                counts[sym] += 1

    return dict(counts)
