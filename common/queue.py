from __future__ import annotations
import json, os, time
from typing import Callable, Optional
import redis

from common.logging import get_logger

log = get_logger("common.queue")


def _client(url: Optional[str] = None):
    url = url or os.environ.get("REDIS_URL", "redis://localhost:6379/0")
    return redis.Redis.from_url(url, decode_responses=True)


def publish(stream: str, payload: dict, url: Optional[str] = None, maxlen: int = 10_000) -> str:
    r = _client(url)
    return r.xadd(stream, {"data": json.dumps(payload, default=str)}, maxlen=maxlen, approximate=True)


def consume_forever(stream: str, group: str, consumer: str,
                    handler: Callable[[dict], None], block_ms: int = 5000,
                    url: Optional[str] = None):
    r = _client(url)
    # create group if missing
    try:
        r.xgroup_create(stream, group, id="$", mkstream=True)
    except redis.exceptions.ResponseError as e:
        if "BUSYGROUP" not in str(e):
            raise
    while True:
        resp = r.xreadgroup(group, consumer, {stream: ">"}, count=10, block=block_ms)
        if not resp:
            continue
        for _s, msgs in resp:
            for msg_id, fields in msgs:
                raw = fields.get("data")
                try:
                    payload = json.loads(raw) if raw else {}
                    handler(payload)
                except Exception:
                    log.exception("[%s] handler error on %s", stream, msg_id)
                finally:
                    r.xack(stream, group, msg_id)
        time.sleep(0.05)
