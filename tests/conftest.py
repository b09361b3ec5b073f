# Make the repository root importable during tests
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# tests/ is one level below the repo root; tests/ itself holds the shared fakes module
REPO_ROOT = Path(__file__).resolve().parents[1]
for p in (REPO_ROOT, REPO_ROOT / "tests"):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from shared.symbols import SymbolTable  # noqa: E402
from storage.adapter import MentionStore  # noqa: E402
from storage.backends import MemoryStore  # noqa: E402
from fakes import FakeClock  # noqa: E402

NOW = datetime(2025, 10, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # settings are read from the environment per call; keep a developer's shell out of tests
    for name in ("TICKER_PATTERN", "SINKS_LIVE", "SLACK_WEBHOOK_URL", "X_BEARER_TOKEN", "REDIS_URL",
                 "STORE_BACKEND", "AGENT_EXECUTOR", "SYMBOLS_FILE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def backend():
    return MemoryStore()


@pytest.fixture
def store(backend):
    return MentionStore(backend, SymbolTable.of(["BONK", "WIF", "POPCAT"]))


@pytest.fixture
def clock():
    return FakeClock()
