# tests/fakes.py
# In-process stand-ins for the browser, HTTP and clock capabilities. No network, no chromium.
from typing import Any, Dict, List, Optional


class FakeClock:
    """Manual clock for budgets and delays: sleep() advances time instead of blocking."""

    def __init__(self, start: float = 1000.0):
        self.t = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.t

    def sleep(self, secs: float) -> None:
        self.sleeps.append(secs)
        self.t += secs


class FakeElement:
    """children are matched by substring of the selector asked for."""

    def __init__(self, text: str = "", attrs: Optional[Dict[str, str]] = None, children: Optional[Dict[str, "FakeElement"]] = None):
        self._text = text
        self.attrs = attrs or {}
        self.children = children or {}

    def attr(self, name: str) -> Optional[str]:
        return self.attrs.get(name)

    def text(self) -> str:
        return self._text

    def query(self, selector: str) -> Optional["FakeElement"]:
        for key, child in self.children.items():
            if key in selector:
                return child
        return None


def video_item(video_id: str, caption: str = "", views: str = "1K", author: str = "degen") -> FakeElement:
    return FakeElement(children={
        "/video/": FakeElement(attrs={"href": f"https://www.tiktok.com/@{author}/video/{video_id}"}),
        "video-caption": FakeElement(text=caption),
        "video-views": FakeElement(text=views),
        "img": FakeElement(attrs={"src": f"https://cdn.example/{video_id}.jpg", "alt": caption}),
    })


class FakeBrowser:
    """
    pages: url -> list of element batches, one per scroll depth (last batch repeats).
    errors: url -> exception (always raised) or list of exceptions (raised one per open()).
    """

    def __init__(self, pages: Optional[Dict[str, List[List[Any]]]] = None, errors: Optional[Dict[str, Any]] = None):
        self.pages = pages or {}
        self.errors = errors or {}
        self.url: Optional[str] = None
        self.depth = 0
        self.opened: List[str] = []
        self.closed = 0

    def open(self, url: str, wait_policy: str = "networkidle") -> None:
        self.opened.append(url)
        err = self.errors.get(url)
        if isinstance(err, list):
            if err:
                raise err.pop(0)
        elif err is not None:
            raise err
        self.url = url
        self.depth = 0

    def query_selector_all(self, selector: str) -> List[Any]:
        batches = self.pages.get(self.url or "", [])
        if not batches:
            return []
        return list(batches[min(self.depth, len(batches) - 1)])

    def scroll_to_bottom(self) -> None:
        self.depth += 1

    def content(self) -> str:
        return ""

    def close(self) -> None:
        self.closed += 1


class FakeResponse:
    def __init__(self, status_code: int = 200, text: str = "", json_data: Any = None):
        self.status_code = status_code
        self.text = text
        self._json = json_data

    def json(self) -> Any:
        if self._json is None:
            raise ValueError("no json")
        return self._json

    def raise_for_status(self) -> None:
        import requests

        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")


class FakeSession:
    """routes: url -> FakeResponse | Exception | list of those (consumed in order, last repeats)."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes = routes or {}
        self.headers: Dict[str, str] = {}
        self.calls: List[Dict[str, Any]] = []
        self.closed = 0

    def _resolve(self, url: str) -> Any:
        r = self.routes.get(url)
        if isinstance(r, list):
            return r.pop(0) if len(r) > 1 else r[0]
        return r

    def get(self, url: str, params: Any = None, timeout: Any = None, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": "GET", "url": url, "params": params})
        r = self._resolve(url)
        if r is None:
            return FakeResponse(404, "")
        if isinstance(r, Exception):
            raise r
        return r

    def close(self) -> None:
        self.closed += 1

    def post(self, url: str, json: Any = None, headers: Any = None, timeout: Any = None, **kwargs: Any) -> FakeResponse:
        self.calls.append({"method": "POST", "url": url, "json": json, "headers": headers})
        r = self._resolve(url)
        if r is None:
            return FakeResponse(200, "ok")
        if isinstance(r, Exception):
            raise r
        return r


class RecordingExecutor:
    """StageExecutor that runs the tool it is handed. fail_at: stage name that loses the agent."""

    def __init__(self, fail_at: Optional[str] = None):
        self.fail_at = fail_at
        self.invoked: List[str] = []

    def invoke(self, stage_name: str, tool: Any) -> Dict[str, Any]:
        from common.errors import StrategyUnavailableError

        if stage_name == self.fail_at:
            raise StrategyUnavailableError("agent session expired")
        self.invoked.append(stage_name)
        return tool()


class FakeMarketProvider:
    name = "fake"

    def __init__(self, volumes: Dict[str, float], at: Any):
        self.volumes = volumes
        self.at = at

    def sample(self, symbol: str) -> Any:
        from common.errors import MarketDataError
        from common.schemas import MarketSample

        if symbol not in self.volumes:
            raise MarketDataError(self.name, symbol, "unlisted")
        return MarketSample(token_symbol=symbol, price_usd=0.00002, volume_24h=self.volumes[symbol], sampled_at=self.at, provider=self.name)


class PublishRecorder:
    def __init__(self):
        self.messages: List[Dict[str, Any]] = []

    def __call__(self, stream: str, payload: Dict[str, Any], url: Optional[str] = None) -> str:
        self.messages.append({"stream": stream, "payload": payload, "url": url})
        return f"{len(self.messages)}-0"
