# data_ingest/base.py
"""
Scraper base: the paginate-until-limit loop every source shares.

A subclass only says how to read one page of one target (fetch_page). The loop owns:
  - per-invocation dedupe by external_id
  - max_items / max_items_per_target / max_pages / max_idle_pages
  - wall-clock budget (max_seconds) checked before every page
  - fixed delays between pages and between targets
  - per-page retry through RetryPolicy, then skip the target and record a TargetFailure

scrape() is a generator: nothing happens until it is iterated, and a fresh call starts
over from the first target.
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional, Sequence

from common.errors import PermanentSourceError, SourceError
from common.retry import RetryPolicy
from common.schemas import RunMode, SourceKind, SourceRecord
from shared.dedupe import SeenIds

_LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScrapeLimits:
    max_items: int = 200
    max_seconds: float = 900.0
    page_delay: float = 2.0
    target_delay: float = 2.0
    max_pages: int = 10
    max_idle_pages: int = 2
    max_items_per_target: Optional[int] = None
    max_targets: Optional[int] = None

    @classmethod
    def for_mode(cls, mode: RunMode) -> "ScrapeLimits":
        if mode == RunMode.TEST:
            return cls(max_items=5, max_seconds=120.0, max_pages=2, max_idle_pages=1, max_targets=2)
        return cls()


@dataclass
class Page:
    records: List[SourceRecord]
    cursor: Any = None
    has_more: bool = True


@dataclass
class TargetFailure:
    target: str
    error: str
    permanent: bool
    attempts: int


@dataclass
class ScrapeStats:
    targets: int = 0
    pages: int = 0
    items: int = 0
    duplicates: int = 0
    budget_exhausted: bool = False
    failures: List[TargetFailure] = field(default_factory=list)


class BaseScraper:
    name = "base"
    source_kind: SourceKind = SourceKind.VIDEO

    def __init__(
        self,
        retry: Optional[RetryPolicy] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.retry = retry or RetryPolicy(max_attempts=3, base_delay=1.0)
        self.clock = clock
        self.sleep = sleep
        self.stats = ScrapeStats()
        self._attempts = 0

    # ---- subclass hooks -------------------------------------------------

    def target_label(self, target: Any) -> str:
        return str(target)

    def fetch_page(self, target: Any, page_no: int, cursor: Any) -> Page:
        raise NotImplementedError

    def close(self) -> None:
        pass

    # ---- context manager ------------------------------------------------

    def __enter__(self):
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def failures(self) -> List[TargetFailure]:
        return self.stats.failures

    # ---- the loop -------------------------------------------------------

    def _fetch_with_retry(self, target: Any, page_no: int, cursor: Any) -> Page:
        self._attempts = 1

        def on_retry(attempt: int, exc: BaseException, delay: float) -> None:
            self._attempts = attempt + 1

        return self.retry.call(lambda: self.fetch_page(target, page_no, cursor), sleep=self.sleep, on_retry=on_retry)

    def scrape(self, targets: Sequence[Any], limits: Optional[ScrapeLimits] = None) -> Iterator[SourceRecord]:
        limits = limits or ScrapeLimits()
        self.stats = ScrapeStats()
        seen = SeenIds()
        deadline = self.clock() + limits.max_seconds
        todo = list(targets)
        if limits.max_targets is not None:
            todo = todo[: limits.max_targets]

        for t_idx, target in enumerate(todo):
            if self.stats.items >= limits.max_items:
                break
            if t_idx > 0 and limits.target_delay:
                self.sleep(limits.target_delay)
            if self.clock() >= deadline:
                self.stats.budget_exhausted = True
                _LOG.warning("%s: %.0fs budget spent, %d target(s) not visited", self.name, limits.max_seconds, len(todo) - t_idx)
                break

            label = self.target_label(target)
            self.stats.targets += 1
            per_target = 0
            idle = 0
            cursor: Any = None

            for page_no in range(limits.max_pages):
                if page_no > 0 and limits.page_delay:
                    self.sleep(limits.page_delay)
                if self.clock() >= deadline:
                    self.stats.budget_exhausted = True
                    _LOG.warning("%s: budget spent on %s page %d", self.name, label, page_no)
                    break
                try:
                    page = self._fetch_with_retry(target, page_no, cursor)
                except SourceError as e:
                    failure = TargetFailure(
                        target=label,
                        error=str(e),
                        permanent=isinstance(e, PermanentSourceError),
                        attempts=self._attempts,
                    )
                    self.stats.failures.append(failure)
                    _LOG.warning("%s: skipping %s after %d attempt(s): %s", self.name, label, failure.attempts, e)
                    break
                except Exception as e:
                    self.stats.failures.append(TargetFailure(target=label, error=f"{type(e).__name__}: {e}", permanent=False, attempts=self._attempts))
                    _LOG.exception("%s: unexpected error on %s", self.name, label)
                    break

                self.stats.pages += 1
                new = 0
                for rec in page.records:
                    if not seen.add_if_new(rec.external_id):
                        self.stats.duplicates += 1
                        continue
                    new += 1
                    per_target += 1
                    self.stats.items += 1
                    yield rec
                    if self.stats.items >= limits.max_items:
                        return
                    if limits.max_items_per_target is not None and per_target >= limits.max_items_per_target:
                        break

                if limits.max_items_per_target is not None and per_target >= limits.max_items_per_target:
                    break
                if not page.has_more:
                    break
                idle = 0 if new else idle + 1
                if idle >= limits.max_idle_pages:
                    _LOG.debug("%s: %s stopped yielding new items", self.name, label)
                    break
                cursor = page.cursor

            _LOG.info("%s: %s -> %d item(s)", self.name, label, per_target)
