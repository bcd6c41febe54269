"""Read path: serve resources from the active generation, falling back to the origin."""

import json
import logging
from collections.abc import Callable

from .fetcher import DescriptorMalformed, Fetcher, NetworkUnavailable, parse_descriptor
from .models import FetchResult, InterceptedResponse, ResourceEntry, VersionDescriptor
from .store import GenerationStore, StoreError
from .version import FALLBACK_DESCRIPTOR_VERSION, VersionParseError, parse_version

logger = logging.getLogger(__name__)

# Invoked when a freshly fetched descriptor announces a different version.
DescriptorCallback = Callable[[VersionDescriptor, FetchResult], None]

# Response headers forwarded from the origin or the cache to the reader.
FORWARDED_HEADERS = ("Content-Type", "ETag", "Last-Modified", "Cache-Control")

OFFLINE_BODY = b"Offline: resource not cached and origin unreachable"

FORBIDDEN_BODY = b"Forbidden: resource is outside the origin"


def _response_from_entry(entry: ResourceEntry) -> InterceptedResponse:
    headers = {"X-From-Cache": "true"}
    if entry.content_type:
        headers["Content-Type"] = entry.content_type
    if entry.etag:
        headers["ETag"] = entry.etag
    if entry.last_modified:
        headers["Last-Modified"] = entry.last_modified
    return InterceptedResponse(
        status_code=entry.status_code,
        body=entry.body,
        headers=headers,
        source="cache",
    )


def _response_from_fetch(result: FetchResult) -> InterceptedResponse:
    headers = {name: result.headers[name] for name in FORWARDED_HEADERS if name in result.headers}
    headers["X-From-Cache"] = "false"
    return InterceptedResponse(
        status_code=result.status_code,
        body=result.body,
        headers=headers,
        source="network",
    )


def fallback_descriptor_response() -> InterceptedResponse:
    """Minimal descriptor served when neither network nor cache can answer."""
    body = json.dumps({"version": FALLBACK_DESCRIPTOR_VERSION}).encode("utf-8")
    return InterceptedResponse(
        status_code=200,
        body=body,
        headers={"Content-Type": "application/json", "X-From-Cache": "false"},
        source="fallback",
    )


def offline_response() -> InterceptedResponse:
    """Response for a cache miss while the origin is unreachable."""
    return InterceptedResponse(
        status_code=503,
        body=OFFLINE_BODY,
        headers={"Content-Type": "text/plain; charset=utf-8", "X-From-Cache": "false"},
        source="fallback",
    )


def forbidden_response() -> InterceptedResponse:
    """Response for a request resolving outside the configured origin."""
    return InterceptedResponse(
        status_code=403,
        body=FORBIDDEN_BODY,
        headers={"Content-Type": "text/plain; charset=utf-8", "X-From-Cache": "false"},
        source="fallback",
    )


def _usable_descriptor(result: FetchResult) -> VersionDescriptor | None:
    """Parse a fetched descriptor, returning None when it is malformed or its version is not comparable."""
    try:
        descriptor = parse_descriptor(result.body)
    except DescriptorMalformed as e:
        logger.warning("Ignoring malformed version descriptor: %s", e)
        return None

    try:
        parse_version(descriptor.version)
    except VersionParseError as e:
        logger.warning("Ignoring version descriptor with unparseable version: %s", e)
        return None
    return descriptor


def _cached_version(entry: ResourceEntry | None) -> str | None:
    if entry is None:
        return None
    try:
        return parse_descriptor(entry.body).version
    except DescriptorMalformed:
        return None


class RequestInterceptor:
    """Answers every read from the active generation or the origin.

    ``handle`` never raises: network failures, store failures and a missing
    active generation all resolve to a cached copy, a network copy or a
    synthesized fallback response.
    """

    def __init__(
        self,
        store: GenerationStore,
        fetcher: Fetcher,
        on_descriptor_change: DescriptorCallback | None = None,
        on_request: Callable[[], object] | None = None,
        on_network_status: Callable[[bool], None] | None = None,
    ) -> None:
        """Initialize the interceptor.

        Args:
            store: Generation store to read from and populate.
            fetcher: Origin access.
            on_descriptor_change: Called (without waiting) when a fetched descriptor
                reports a version different from the cached one.
            on_request: Called for every same-origin read (update check gating).
            on_network_status: Called with True/False after every origin fetch.
        """
        self._store = store
        self._fetcher = fetcher
        self._on_descriptor_change = on_descriptor_change
        self._on_request = on_request
        self._on_network_status = on_network_status

    def handle(self, resource: str) -> InterceptedResponse:
        """Serve one read request for resource (a path or absolute URL).

        Resources outside the origin are refused without touching the cache
        or the network.
        """
        resource_id = self._fetcher.resolve(resource)
        if not self._fetcher.is_same_origin(resource_id):
            logger.warning("Refusing cross-origin request: %s", resource_id)
            return forbidden_response()

        if resource_id == self._fetcher.descriptor_url:
            response = self._handle_descriptor(resource_id)
            # Poked after the change check so a descriptor rebuild is submitted first
            self._notify_request()
            return response

        self._notify_request()

        cached = self._lookup(resource_id)
        if cached is not None:
            logger.debug("Cache hit: %s", resource_id)
            return _response_from_entry(cached)

        try:
            result = self._fetcher.fetch(resource_id, bypass_cache=False)
        except NetworkUnavailable as e:
            self._report_network(False)
            logger.info("Cache miss while offline: %s (%s)", resource_id, e)
            return offline_response()
        except Exception as e:
            logger.error("Unexpected error fetching %s: %s", resource_id, e)
            return offline_response()

        self._report_network(True)
        if result.status_code == 200 and not result.opaque and not result.redirected:
            self._store_active(result)
        return _response_from_fetch(result)

    def _handle_descriptor(self, resource_id: str) -> InterceptedResponse:
        """Network-first handling of the version descriptor.

        Only a descriptor that parses and carries a comparable version is
        cached and forwarded; anything else is answered like a failed fetch.
        """
        cached = self._lookup(resource_id)

        try:
            result = self._fetcher.fetch(resource_id, bypass_cache=True)
        except NetworkUnavailable as e:
            self._report_network(False)
            logger.info("Version descriptor unavailable from network: %s", e)
            result = None
        except Exception as e:
            logger.error("Unexpected error fetching version descriptor: %s", e)
            result = None
        else:
            self._report_network(True)

        if result is not None and result.ok:
            descriptor = _usable_descriptor(result)
            if descriptor is not None:
                self._store_active(result)
                self._check_descriptor_change(descriptor, result, _cached_version(cached))
                return _response_from_fetch(result)
        elif result is not None:
            logger.warning("Version descriptor fetch returned HTTP %d", result.status_code)

        if cached is not None:
            return _response_from_entry(cached)

        logger.info("No version descriptor available, serving fallback")
        return fallback_descriptor_response()

    def _check_descriptor_change(
        self, descriptor: VersionDescriptor, result: FetchResult, cached_version: str | None
    ) -> None:
        if descriptor.version == cached_version:
            return

        logger.info("Version descriptor changed: %s -> %s", cached_version, descriptor.version)
        if self._on_descriptor_change is not None:
            try:
                self._on_descriptor_change(descriptor, result)
            except Exception as e:
                logger.error("Failed to schedule rebuild for version %s: %s", descriptor.version, e)

    def _lookup(self, resource_id: str) -> ResourceEntry | None:
        try:
            return self._store.match(resource_id)
        except StoreError as e:
            logger.warning("Cache lookup failed for %s, treating as miss: %s", resource_id, e)
            return None

    def _store_active(self, result: FetchResult) -> None:
        try:
            if not self._store.put_active(result.to_entry()):
                logger.debug("No active generation, not caching %s", result.url)
        except StoreError as e:
            logger.warning("Failed to cache %s: %s", result.url, e)

    def _notify_request(self) -> None:
        if self._on_request is None:
            return
        try:
            self._on_request()
        except Exception as e:
            logger.error("Request hook failed: %s", e)

    def _report_network(self, online: bool) -> None:
        if self._on_network_status is None:
            return
        try:
            self._on_network_status(online)
        except Exception as e:
            logger.error("Network status hook failed: %s", e)
