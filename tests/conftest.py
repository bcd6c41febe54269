"""Shared fixtures: a fake origin standing in for the requests session."""

import json
from collections.abc import Iterator
from pathlib import Path
from urllib.parse import urljoin

import pytest
import requests
from requests.structures import CaseInsensitiveDict

from assetsync.builder import GenerationBuilder
from assetsync.config import Config, NotifyConfig, OriginConfig, ServerConfig, StoreConfig, SyncConfig
from assetsync.fetcher import ConnectivityTracker, Fetcher
from assetsync.notifier import Notifier
from assetsync.store import GenerationStore

BASE_URL = "https://app.example.com/app/"

BOOTSTRAP = ("./", "index.html", "style.css")


class FakeResponse:
    """Just enough of requests.Response for the fetcher."""

    def __init__(self, url: str, status_code: int, body: bytes, headers: dict | None = None,
                 final_url: str | None = None, redirected: bool = False) -> None:
        self.status_code = status_code
        self.content = body
        self.headers = CaseInsensitiveDict(headers or {})
        self.url = final_url or url
        self.history = [object()] if redirected else []
        self.closed = False

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for start in range(0, len(self.content), chunk_size):
            yield self.content[start:start + chunk_size]

    def close(self) -> None:
        self.closed = True


class FakeOrigin:
    """In-memory origin answering requests.Session.get calls.

    Unknown URLs answer 404. With ``online`` set to False every request
    raises requests.ConnectionError.
    """

    def __init__(self, base_url: str = BASE_URL) -> None:
        self.base_url = base_url
        self.online = True
        self.routes: dict[str, dict] = {}
        self.calls: list[str] = []
        self.request_headers: list[dict] = []

    def url(self, path: str) -> str:
        return urljoin(self.base_url, path)

    def serve(self, path: str, body: bytes | str, status: int = 200, headers: dict | None = None,
              final_url: str | None = None, redirected: bool = False) -> str:
        if isinstance(body, str):
            body = body.encode("utf-8")
        url = self.url(path)
        self.routes[url] = {
            "status_code": status,
            "body": body,
            "headers": headers or {},
            "final_url": final_url,
            "redirected": redirected,
        }
        return url

    def serve_descriptor(self, version: str, files: list[str], path: str = "version.json") -> str:
        body = json.dumps({"version": version, "files": files})
        return self.serve(path, body, headers={"Content-Type": "application/json"})

    def remove(self, path: str) -> None:
        self.routes.pop(self.url(path), None)

    def calls_to(self, path: str) -> int:
        return self.calls.count(self.url(path))

    def get(self, url: str, headers: dict | None = None, timeout: float | None = None,
            allow_redirects: bool = True, stream: bool = False) -> FakeResponse:
        self.calls.append(url)
        self.request_headers.append(dict(headers or {}))
        if not self.online:
            raise requests.ConnectionError(f"Connection refused: {url}")
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(url, 404, b"Not Found")
        return FakeResponse(
            url,
            route["status_code"],
            route["body"],
            route["headers"],
            final_url=route["final_url"],
            redirected=route["redirected"],
        )


@pytest.fixture
def origin() -> FakeOrigin:
    """Fake origin serving the app resources."""
    return FakeOrigin()


@pytest.fixture
def store(tmp_path: Path) -> GenerationStore:
    """Generation store backed by a temporary database."""
    store = GenerationStore.open(str(tmp_path / "cache.db"))
    yield store
    store.close()


@pytest.fixture
def origin_config() -> OriginConfig:
    return OriginConfig(base_url=BASE_URL)


@pytest.fixture
def fetcher(origin_config: OriginConfig, origin: FakeOrigin) -> Fetcher:
    """Fetcher wired to the fake origin."""
    return Fetcher(origin_config, session=origin, connectivity=ConnectivityTracker(BASE_URL))


@pytest.fixture
def notifier() -> Notifier:
    return Notifier(NotifyConfig())


@pytest.fixture
def builder(store: GenerationStore, fetcher: Fetcher, notifier: Notifier) -> GenerationBuilder:
    return GenerationBuilder(store, fetcher, notifier, cache_name="app-v1")


@pytest.fixture
def make_config(tmp_path: Path):
    """Factory building a Config pointing at the fake origin."""

    def _make(mode: str = "descriptor", check_interval: int = 600) -> Config:
        return Config(
            origin=OriginConfig(base_url=BASE_URL),
            sync=SyncConfig(mode=mode, cache_name="app-v1", check_interval=check_interval, bootstrap=BOOTSTRAP),
            store=StoreConfig(path=str(tmp_path / "cache.db")),
            server=ServerConfig(enabled=False),
        )

    return _make
