# storage/backends.py
"""
Store backends: the opaque upsert/query/insert service the MentionStore writes through.

    upsert(table, record, conflict_key)  merge on the conflict key, never duplicate
    query(table, filters)                 equality filters, insertion order
    insert(table, records)                append-only

MemoryStore is the default for tests and one-shot runs; RedisStore persists across
processes (one hash per table for keyed rows, one list per table for appended rows).
Concurrent writers on RedisStore rely on WATCH/MULTI so a merge never loses a field.
"""
from __future__ import annotations

import json
import logging
import threading
from typing import Any, Dict, Iterable, List, Mapping, Optional, Protocol, Sequence

import redis

from common.errors import StoreWriteError

_LOG = logging.getLogger(__name__)

Record = Dict[str, Any]


class StoreBackend(Protocol):
    def upsert(self, table: str, record: Mapping[str, Any], conflict_key: Sequence[str]) -> Record: ...

    def query(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> List[Record]: ...

    def insert(self, table: str, records: Iterable[Mapping[str, Any]]) -> int: ...


def key_of(record: Mapping[str, Any], conflict_key: Sequence[str]) -> str:
    missing = [k for k in conflict_key if record.get(k) in (None, "")]
    if missing:
        raise ValueError(f"record missing conflict key field(s): {', '.join(missing)}")
    return "|".join(str(record[k]) for k in conflict_key)


def _matches(row: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    if not filters:
        return True
    return all(row.get(k) == v for k, v in filters.items())


class MemoryStore:
    """Process-local store. Thread-safe; contents vanish with the process."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._keyed: Dict[str, Dict[str, Record]] = {}
        self._rows: Dict[str, List[Record]] = {}

    def upsert(self, table: str, record: Mapping[str, Any], conflict_key: Sequence[str]) -> Record:
        k = key_of(record, conflict_key)
        with self._lock:
            rows = self._keyed.setdefault(table, {})
            merged = dict(rows.get(k, {}))
            merged.update(record)
            rows[k] = merged
            return dict(merged)

    def query(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> List[Record]:
        with self._lock:
            rows = list(self._keyed.get(table, {}).values()) + list(self._rows.get(table, []))
        return [dict(r) for r in rows if _matches(r, filters)]

    def insert(self, table: str, records: Iterable[Mapping[str, Any]]) -> int:
        batch = [dict(r) for r in records]
        with self._lock:
            self._rows.setdefault(table, []).extend(batch)
        return len(batch)

    def count(self, table: str) -> int:
        with self._lock:
            return len(self._keyed.get(table, {})) + len(self._rows.get(table, []))


class RedisStore:
    """
    Redis-backed store.

    keyed rows:    HSET {prefix}:{table}  <conflict key> -> json
    appended rows: RPUSH {prefix}:{table}:rows json
    """

    def __init__(self, url: str, prefix: str = "iris", client: Optional[Any] = None, max_watch_retries: int = 5):
        self.prefix = prefix
        self.max_watch_retries = max_watch_retries
        self.r = client if client is not None else redis.Redis.from_url(url, decode_responses=True)

    def _hkey(self, table: str) -> str:
        return f"{self.prefix}:{table}"

    def _lkey(self, table: str) -> str:
        return f"{self.prefix}:{table}:rows"

    def upsert(self, table: str, record: Mapping[str, Any], conflict_key: Sequence[str]) -> Record:
        k = key_of(record, conflict_key)
        hkey = self._hkey(table)
        for _ in range(self.max_watch_retries):
            try:
                with self.r.pipeline() as pipe:
                    pipe.watch(hkey)
                    current = pipe.hget(hkey, k)
                    merged = json.loads(current) if current else {}
                    merged.update(record)
                    pipe.multi()
                    pipe.hset(hkey, k, json.dumps(merged, default=str))
                    pipe.execute()
                    return merged
            except redis.WatchError:
                _LOG.debug("upsert %s/%s raced, retrying", table, k)
                continue
            except redis.RedisError as e:
                raise StoreWriteError(table, str(e)) from e
        raise StoreWriteError(table, f"upsert of {k!r} kept conflicting after {self.max_watch_retries} attempts")

    def query(self, table: str, filters: Optional[Mapping[str, Any]] = None) -> List[Record]:
        keyed = self.r.hvals(self._hkey(table)) or []
        appended = self.r.lrange(self._lkey(table), 0, -1) or []
        rows = [json.loads(x) for x in list(keyed) + list(appended)]
        return [r for r in rows if _matches(r, filters)]

    def insert(self, table: str, records: Iterable[Mapping[str, Any]]) -> int:
        batch = [json.dumps(dict(r), default=str) for r in records]
        if not batch:
            return 0
        try:
            self.r.rpush(self._lkey(table), *batch)
        except redis.RedisError as e:
            raise StoreWriteError(table, str(e)) from e
        return len(batch)


def make_backend(kind: str, redis_url: Optional[str] = None, prefix: str = "iris") -> StoreBackend:
    if kind == "redis":
        if not redis_url:
            raise ValueError("redis backend requires a URL")
        return RedisStore(redis_url, prefix)
    return MemoryStore()
