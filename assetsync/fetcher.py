"""Origin access: resource fetching, descriptor parsing and connectivity tracking."""

import json
import logging
import socket
import time
from urllib.parse import urldefrag, urljoin, urlparse

import requests
from requests.structures import CaseInsensitiveDict

from .config import OriginConfig
from .models import FetchResult, VersionDescriptor

logger = logging.getLogger(__name__)

# Headers forcing intermediaries to revalidate with the origin.
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}

# Timeout for the origin reachability probe in seconds.
CONNECTIVITY_CHECK_TIMEOUT = 3

# How long a known connectivity status is trusted before probing again.
CONNECTIVITY_CACHE_SECONDS = 30

READ_CHUNK_SIZE = 64 * 1024


class FetchError(Exception):
    """Base class for origin fetch failures."""

    pass


class NetworkUnavailable(FetchError):
    """Raised when the origin cannot be reached (connection error or timeout)."""

    pass


class OriginError(FetchError):
    """Raised when the origin answers with a non-success status."""

    def __init__(self, url: str, status_code: int) -> None:
        super().__init__(f"HTTP {status_code} for {url}")
        self.url = url
        self.status_code = status_code


class DescriptorMalformed(FetchError):
    """Raised when the version descriptor is not valid JSON of the expected shape."""

    pass


def parse_descriptor(body: bytes) -> VersionDescriptor:
    """Parse a version descriptor document.

    Expected shape: {"version": "<dotted numeric>", "files": ["<path>", ...]}.
    A missing "files" key means an empty file list.

    Raises:
        DescriptorMalformed: If the body is not JSON or has the wrong shape.
    """
    try:
        data = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise DescriptorMalformed(f"Version descriptor is not valid JSON: {e}")

    if not isinstance(data, dict):
        raise DescriptorMalformed("Version descriptor must be a JSON object")

    version = data.get("version")
    if not isinstance(version, str) or not version:
        raise DescriptorMalformed("Version descriptor is missing a 'version' string")

    files = data.get("files", [])
    if not isinstance(files, list) or not all(isinstance(f, str) for f in files):
        raise DescriptorMalformed("Version descriptor 'files' must be a list of strings")

    return VersionDescriptor(version=version, files=tuple(files))


class ConnectivityTracker:
    """Tracks whether the origin is reachable.

    Fetch outcomes update the status directly; when nothing has been observed
    for CONNECTIVITY_CACHE_SECONDS a TCP probe to the origin refreshes it.
    """

    def __init__(
        self,
        base_url: str,
        cache_seconds: int = CONNECTIVITY_CACHE_SECONDS,
        timeout: int = CONNECTIVITY_CHECK_TIMEOUT,
    ) -> None:
        parsed = urlparse(base_url)
        self._host = parsed.hostname or ""
        self._port = parsed.port or (443 if parsed.scheme == "https" else 80)
        self._cache_seconds = cache_seconds
        self._timeout = timeout
        self._last_update: float | None = None
        self._online: bool | None = None

    def record(self, online: bool) -> None:
        if self._online is not None and self._online != online:
            logger.info("Origin is now %s", "reachable" if online else "unreachable")
        self._online = online
        self._last_update = time.monotonic()

    def get_cached(self) -> bool | None:
        """Return the last known status if still fresh, None otherwise."""
        if self._last_update is None:
            return None
        if time.monotonic() - self._last_update > self._cache_seconds:
            return None
        return self._online

    def is_online(self, use_cache: bool = True) -> bool:
        """Return True if the origin is reachable, probing it when the cache is stale."""
        if use_cache:
            cached = self.get_cached()
            if cached is not None:
                return cached

        try:
            with socket.create_connection((self._host, self._port), timeout=self._timeout):
                result = True
        except (TimeoutError, OSError):
            result = False

        self.record(result)
        return result


class Fetcher:
    """Fetches resources and the version descriptor from the origin.

    Example:
        fetcher = Fetcher(config.origin)
        result = fetcher.fetch("index.html")
    """

    def __init__(
        self,
        config: OriginConfig,
        session: requests.Session | None = None,
        connectivity: ConnectivityTracker | None = None,
    ) -> None:
        self._config = config
        self._session = session or requests.Session()
        self._connectivity = connectivity or ConnectivityTracker(config.base_url)
        self._origin = self._origin_of(config.base_url)

    @property
    def connectivity(self) -> ConnectivityTracker:
        return self._connectivity

    @staticmethod
    def _origin_of(url: str) -> tuple[str, str]:
        parsed = urlparse(url)
        return parsed.scheme.lower(), parsed.netloc.lower()

    def resolve(self, resource: str) -> str:
        """Return the canonical absolute form of a resource path, used as cache key."""
        absolute, _fragment = urldefrag(urljoin(self._config.base_url, resource))
        return absolute

    @property
    def descriptor_url(self) -> str:
        return self.resolve(self._config.descriptor_path)

    def is_same_origin(self, url: str) -> bool:
        return self._origin_of(url) == self._origin

    def fetch(self, resource: str, bypass_cache: bool = True) -> FetchResult:
        """Fetch a resource from the origin.

        Any HTTP status is returned as a FetchResult; only transport failures raise.

        Raises:
            NetworkUnavailable: If the origin cannot be reached or the request times out.
        """
        url = self.resolve(resource)
        headers = {"User-Agent": self._config.user_agent}
        if bypass_cache:
            headers.update(NO_CACHE_HEADERS)

        deadline = time.monotonic() + self._config.fetch_timeout
        try:
            response = self._session.get(
                url,
                headers=headers,
                timeout=self._config.fetch_timeout,
                allow_redirects=True,
                stream=True,
            )
        except requests.Timeout as e:
            self._connectivity.record(False)
            raise NetworkUnavailable(f"Timed out fetching {url}: {e}")
        except requests.RequestException as e:
            self._connectivity.record(False)
            raise NetworkUnavailable(f"Failed to fetch {url}: {e}")

        body = self._read_body(response, url, deadline)
        self._connectivity.record(True)
        final_url = response.url or url
        return FetchResult(
            url=url,
            status_code=response.status_code,
            body=body,
            headers=CaseInsensitiveDict(response.headers),
            redirected=bool(response.history),
            opaque=not self.is_same_origin(final_url),
        )

    def _read_body(self, response: requests.Response, url: str, deadline: float) -> bytes:
        """Read a streamed body, giving up once the whole fetch passes deadline.

        The requests timeout only bounds each socket read, so a server
        trickling bytes is cut off here instead.

        Raises:
            NetworkUnavailable: If the deadline passes or the connection drops mid-body.
        """
        chunks: list[bytes] = []
        try:
            for chunk in response.iter_content(chunk_size=READ_CHUNK_SIZE):
                chunks.append(chunk)
                if time.monotonic() > deadline:
                    raise NetworkUnavailable(
                        f"Timed out reading {url}: exceeded {self._config.fetch_timeout}s"
                    )
        except requests.RequestException as e:
            self._connectivity.record(False)
            raise NetworkUnavailable(f"Failed to read {url}: {e}")
        finally:
            response.close()
        return b"".join(chunks)

    def fetch_ok(self, resource: str, bypass_cache: bool = True) -> FetchResult:
        """Fetch a resource, treating any non-2xx status as an error.

        Raises:
            NetworkUnavailable: If the origin cannot be reached.
            OriginError: If the origin answers with a non-success status.
        """
        result = self.fetch(resource, bypass_cache=bypass_cache)
        if not result.ok:
            raise OriginError(result.url, result.status_code)
        return result

    def fetch_descriptor(self) -> tuple[VersionDescriptor, FetchResult]:
        """Fetch and parse the version descriptor, always bypassing caches.

        Returns:
            The parsed descriptor and the raw response it came from.

        Raises:
            NetworkUnavailable: If the origin cannot be reached.
            OriginError: If the origin answers with a non-success status.
            DescriptorMalformed: If the document cannot be parsed.
        """
        result = self.fetch_ok(self._config.descriptor_path, bypass_cache=True)
        return parse_descriptor(result.body), result
