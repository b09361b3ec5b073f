from __future__ import annotations

import os
import re
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Iterator, Optional, Set

_LOG = logging.getLogger(__name__)

_SYMBOL_RE = re.compile(r"^[A-Z][A-Z0-9]{1,9}$")


def canon_symbol(tok: object) -> Optional[str]:
    """'$bonk ' -> 'BONK'; anything that is not a plausible ticker -> None."""
    if tok is None:
        return None
    t = str(tok).strip().lstrip("$").upper()
    if not t:
        return None
    if _SYMBOL_RE.match(t):
        return t
    return None


@dataclass
class SymbolTable:
    """Known ticker symbols. Mentions of anything outside the table cannot be joined to market data."""
    symbols: Set[str] = field(default_factory=set)  # canonical uppercase

    @classmethod
    def from_file(cls, path: Path) -> "SymbolTable":
        symbols: Set[str] = set()
        invalid: Set[str] = set()

        text = path.read_text(encoding="utf-8", errors="ignore").splitlines()
        for raw in text:
            line = raw.split("#", 1)[0].strip()
            if not line:
                continue
            # allow "SYMBOL<TAB>name" rows
            tok = line.split("\t", 1)[0].strip()
            s = canon_symbol(tok)
            if s:
                symbols.add(s)
            else:
                invalid.add(tok)

        if invalid:
            # Log only once with a compact preview
            preview = ", ".join(sorted(invalid)[:10])
            more = "" if len(invalid) <= 10 else f" (+{len(invalid)-10} more)"
            _LOG.warning("SymbolTable: ignored %d invalid tokens: %s%s", len(invalid), preview, more)
        _LOG.info("SymbolTable loaded: %d symbols from %s", len(symbols), path)
        return cls(symbols=symbols)

    @classmethod
    def of(cls, symbols: Iterable[str]) -> "SymbolTable":
        return cls(symbols={s for s in (canon_symbol(x) for x in symbols) if s})

    def __contains__(self, tok: object) -> bool:
        s = canon_symbol(tok)
        return s is not None and s in self.symbols

    def __len__(self) -> int:
        return len(self.symbols)

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.symbols))


def load_symbol_table(path: str) -> SymbolTable:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Symbol file not found: {p}")
    return SymbolTable.from_file(p)


def infer_symbol_table(cli_path: Optional[str] = None) -> SymbolTable:
    """
    Resolution:
      - cli_path if given (must exist)
      - else SYMBOLS_FILE env (must exist)
      - else 'ref/symbols.txt' if present
      - else an empty table (the store's tokens table may still supply symbols)
    """
    path = cli_path or os.environ.get("SYMBOLS_FILE")
    if path:
        return load_symbol_table(path)
    default = Path("ref/symbols.txt")
    if default.exists():
        return SymbolTable.from_file(default)
    return SymbolTable()
