"""Tests for the differential refresher module."""

from unittest.mock import patch

import pytest

from assetsync.builder import BuildError, GenerationBuilder
from assetsync.models import FetchResult, ResourceEntry
from assetsync.refresher import DifferentialRefresher, is_unchanged
from assetsync.store import GenerationStore, StoreError

from conftest import BASE_URL, FakeOrigin

URL = BASE_URL + "index.html"


def cached(body: bytes, etag: str | None = None, last_modified: str | None = None) -> ResourceEntry:
    return ResourceEntry(
        resource_id=URL, body=body, etag=etag, last_modified=last_modified, content_length=len(body)
    )


def fresh(body: bytes, etag: str | None = None, last_modified: str | None = None) -> FetchResult:
    headers = {}
    if etag:
        headers["ETag"] = etag
    if last_modified:
        headers["Last-Modified"] = last_modified
    return FetchResult(url=URL, status_code=200, body=body, headers=headers)


class TestIsUnchanged:
    """Tests for is_unchanged function."""

    def test_size_difference_is_change(self) -> None:
        """A size difference wins even over matching ETags."""
        assert not is_unchanged(cached(b"abc", etag='"1"'), fresh(b"abcd", etag='"1"'))

    def test_etag_decides(self) -> None:
        assert is_unchanged(cached(b"abc", etag='"1"'), fresh(b"xyz", etag='"1"'))
        assert not is_unchanged(cached(b"abc", etag='"1"'), fresh(b"abc", etag='"2"'))

    def test_last_modified_when_no_etag(self) -> None:
        lm = "Mon, 19 Oct 2026 10:00:00 GMT"
        assert is_unchanged(cached(b"abc", last_modified=lm), fresh(b"xyz", last_modified=lm))
        assert not is_unchanged(
            cached(b"abc", last_modified=lm), fresh(b"abc", last_modified="Tue, 20 Oct 2026 10:00:00 GMT")
        )

    def test_etag_on_one_side_only_falls_through(self) -> None:
        assert not is_unchanged(cached(b"abc", etag='"1"'), fresh(b"xyz"))
        assert is_unchanged(cached(b"abc", etag='"1"'), fresh(b"abc"))

    def test_byte_comparison(self) -> None:
        assert is_unchanged(cached(b"abc"), fresh(b"abc"))
        assert not is_unchanged(cached(b"abc"), fresh(b"abd"))


@pytest.fixture
def refresher(store: GenerationStore, fetcher, builder: GenerationBuilder) -> DifferentialRefresher:
    return DifferentialRefresher(store, fetcher, builder)


@pytest.fixture
def installed(builder: GenerationBuilder, origin: FakeOrigin, store: GenerationStore) -> None:
    """Install index.html and style.css with ETags, then reset call tracking."""
    origin.serve("index.html", "<html>v1</html>", headers={"ETag": '"i1"'})
    origin.serve("style.css", "body{}", headers={"ETag": '"s1"'})
    builder.build(["index.html", "style.css"], label="1.0.0")
    origin.calls.clear()


BOOTSTRAP = ("index.html",)


class TestRefresh:
    """Tests for DifferentialRefresher.refresh."""

    def test_no_changes_no_swap(
        self, refresher: DifferentialRefresher, store: GenerationStore, installed: None
    ) -> None:
        """Zero changes: no swap, staging discarded, marker untouched."""
        store.save_installed_version("1.3.0")
        with patch.object(store, "commit_generation", wraps=store.commit_generation) as commit:
            changed = refresher.refresh(BOOTSTRAP)

        assert changed == 0
        commit.assert_not_called()
        assert store.list_generations() == ["app-v1"]
        assert store.installed_version() == "1.3.0"

    def test_matching_etag_keeps_old_bytes(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        """An unchanged entry is copied from the old generation, not from the network copy."""
        origin.serve("index.html", "<html>v2</html>", headers={"ETag": '"i1"'})
        origin.serve("style.css", "body{color:red}", headers={"ETag": '"s2"'})

        changed = refresher.refresh(BOOTSTRAP)

        assert changed == 1
        assert store.match(URL).body == b"<html>v1</html>"
        assert store.match(BASE_URL + "style.css").body == b"body{color:red}"

    def test_refetches_every_cached_and_bootstrap_resource(
        self, refresher: DifferentialRefresher, origin: FakeOrigin, installed: None
    ) -> None:
        origin.serve("manifest.json", "{}")
        refresher.refresh(("index.html", "manifest.json"))
        assert origin.calls_to("index.html") == 1
        assert origin.calls_to("style.css") == 1
        assert origin.calls_to("manifest.json") == 1

    def test_new_bootstrap_resource_counts_as_change(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        origin.serve("manifest.json", "{}")
        assert refresher.refresh(("manifest.json",)) == 1
        assert store.match(BASE_URL + "manifest.json").body == b"{}"
        assert store.match(URL) is not None

    def test_gone_resource_is_dropped(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        origin.remove("style.css")
        assert refresher.refresh(BOOTSTRAP) == 1
        assert store.match(BASE_URL + "style.css") is None

    def test_server_error_keeps_cached_copy(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        origin.serve("style.css", "oops", status=503)
        assert refresher.refresh(BOOTSTRAP) == 0
        assert store.match(BASE_URL + "style.css").body == b"body{}"

    def test_offline_is_no_change(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        origin.online = False
        assert refresher.refresh(BOOTSTRAP) == 0
        assert store.count("app-v1") == 2

    def test_first_refresh_without_active_generation(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin
    ) -> None:
        origin.serve("index.html", "<html>")
        assert refresher.refresh(BOOTSTRAP) == 1
        assert store.active_generation() == "app-v1"

    def test_store_failure_raises_build_error(
        self, refresher: DifferentialRefresher, store: GenerationStore, origin: FakeOrigin, installed: None
    ) -> None:
        origin.serve("index.html", "<html>v2</html>", headers={"ETag": '"i2"'})
        with patch.object(store, "commit_generation", side_effect=StoreError("disk full")):
            with pytest.raises(BuildError):
                refresher.refresh(BOOTSTRAP)
        assert store.list_generations() == ["app-v1"]
        assert store.match(URL).body == b"<html>v1</html>"

    def test_unexpected_error_discards_staging(
        self, refresher: DifferentialRefresher, builder: GenerationBuilder, store: GenerationStore, installed: None
    ) -> None:
        """A non-store failure mid-refresh still becomes BuildError and leaves no staging generation."""
        with patch.object(builder, "fetch_all", side_effect=RuntimeError("worker crashed")):
            with pytest.raises(BuildError, match="worker crashed"):
                refresher.refresh(BOOTSTRAP)
        assert store.list_generations() == ["app-v1"]
        assert store.active_generation() == "app-v1"

    def test_copy_failure_removes_leftover_temporaries(
        self, refresher: DifferentialRefresher, store: GenerationStore, installed: None
    ) -> None:
        store.create_generation("app-v1-temp-1-1")
        with patch.object(store, "copy_entry", side_effect=ValueError("bad row")):
            with pytest.raises(BuildError):
                refresher.refresh(BOOTSTRAP)
        assert store.list_generations() == ["app-v1"]
        assert store.match(URL).body == b"<html>v1</html>"
