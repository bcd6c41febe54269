"""Data models for cached resources, origin responses and update events."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from requests.structures import CaseInsensitiveDict


@dataclass(frozen=True)
class ResourceEntry:
    """A single resource stored in a cache generation.

    Attributes:
        resource_id: Absolute URL of the resource (fragment stripped).
        body: Raw response bytes.
        status_code: HTTP status code the origin answered with.
        content_type: Response Content-Type header, or None if not provided.
        etag: Strong validator (ETag header), or None if not provided.
        last_modified: Weak validator (Last-Modified header), or None if not provided.
        content_length: Size of the stored body in bytes.
        stored_at: Timestamp when the entry was written.
    """

    resource_id: str
    body: bytes
    status_code: int = 200
    content_type: str | None = None
    etag: str | None = None
    last_modified: str | None = None
    content_length: int = 0
    stored_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class FetchResult:
    """Response received from the origin.

    Attributes:
        url: Absolute URL that was requested.
        status_code: HTTP status code.
        body: Response body bytes.
        headers: Response headers (case-insensitive lookup).
        redirected: Whether the response was reached through a redirect.
        opaque: Whether the final response came from another origin.
    """

    url: str
    status_code: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=CaseInsensitiveDict)
    redirected: bool = False
    opaque: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def etag(self) -> str | None:
        return self.headers.get("ETag") or None

    @property
    def last_modified(self) -> str | None:
        return self.headers.get("Last-Modified") or None

    @property
    def content_type(self) -> str | None:
        return self.headers.get("Content-Type") or None

    def to_entry(self) -> ResourceEntry:
        """Build the cache entry for this response."""
        return ResourceEntry(
            resource_id=self.url,
            body=self.body,
            status_code=self.status_code,
            content_type=self.content_type,
            etag=self.etag,
            last_modified=self.last_modified,
            content_length=len(self.body),
        )


@dataclass(frozen=True)
class VersionDescriptor:
    """Version descriptor published by the origin (version.json)."""

    version: str
    files: tuple[str, ...] = ()


@dataclass(frozen=True)
class BuildResult:
    """Outcome of a committed generation build.

    Attributes:
        generation: Canonical name the generation was published under.
        stored: Number of entries written to the new generation.
        failed: Resources that could not be fetched and were skipped.
        deleted: Generations removed by the commit.
    """

    generation: str
    stored: int
    failed: tuple[str, ...] = ()
    deleted: tuple[str, ...] = ()


@dataclass(frozen=True)
class UpdateEvent:
    """Notification broadcast after a committed generation swap."""

    generation: str
    version: str | None = None
    changed_count: int | None = None
    applied_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict:
        return {
            "type": "UPDATE_AVAILABLE",
            "version": self.version,
            "changed": self.changed_count,
            "generation": self.generation,
            "applied_at": self.applied_at.isoformat(),
        }


@dataclass(frozen=True)
class InterceptedResponse:
    """Response handed back to a reader by the request interceptor.

    Attributes:
        status_code: HTTP status code to send.
        body: Response body bytes.
        headers: Headers to send along with the body.
        source: Where the response came from ("cache", "network" or "fallback").
    """

    status_code: int
    body: bytes
    headers: Mapping[str, str] = field(default_factory=dict)
    source: str = "network"

    @property
    def from_cache(self) -> bool:
        return self.source == "cache"

    def json(self) -> object:
        return json.loads(self.body.decode("utf-8"))
