"""Generation builder: fetches a file list into a fresh generation and publishes it."""

import itertools
import logging
import time
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor

from .fetcher import FetchError, Fetcher
from .models import BuildResult, FetchResult, UpdateEvent
from .notifier import Notifier
from .store import TEMP_TAG, GenerationStore, StoreError

logger = logging.getLogger(__name__)

# Concurrent fetches while filling a generation.
MAX_WORKERS = 3

_staging_counter = itertools.count(1)


class BuildError(Exception):
    """Raised when a generation build is aborted."""

    pass


def new_staging_name(cache_name: str) -> str:
    """Return a generation name never handed out before in this process.

    The nanosecond timestamp keeps names unique across restarts, the counter
    keeps them unique between builds started within the same clock tick.
    """
    return f"{cache_name}{TEMP_TAG}{time.time_ns()}-{next(_staging_counter)}"


class GenerationBuilder:
    """Builds complete cache generations and swaps them in.

    Example:
        builder = GenerationBuilder(store, fetcher, notifier, cache_name="app-v1")
        result = builder.build(["index.html", "style.css"], label="1.2.0")
    """

    def __init__(
        self,
        store: GenerationStore,
        fetcher: Fetcher,
        notifier: Notifier,
        cache_name: str,
        max_workers: int = MAX_WORKERS,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._notifier = notifier
        self._cache_name = cache_name
        self._max_workers = max_workers

    @property
    def cache_name(self) -> str:
        return self._cache_name

    def new_staging(self, label: str | None = None) -> str:
        """Create an empty staging generation and return its name."""
        staging = new_staging_name(self._cache_name)
        self._store.create_generation(staging, label=label)
        logger.debug("Created staging generation %s", staging)
        return staging

    def fetch_all(self, resources: Iterable[str]) -> Iterable[tuple[str, FetchResult | FetchError]]:
        """Fetch resources concurrently, bypassing caches.

        Yields (resource_id, result) in input order, where result is either the
        FetchResult or the FetchError that prevented it.
        """
        resource_ids = list(resources)

        def _fetch(resource_id: str) -> FetchResult | FetchError:
            try:
                return self._fetcher.fetch(resource_id, bypass_cache=True)
            except FetchError as e:
                return e

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            yield from zip(resource_ids, executor.map(_fetch, resource_ids))

    def build(self, files: Sequence[str], label: str, seed: Sequence[FetchResult] = ()) -> BuildResult:
        """Build a new generation from files and make it the active one.

        Resources that fail to fetch are logged and skipped; the generation is
        published with whatever succeeded. The installed version marker is set
        to label and observers are notified.

        Args:
            files: Resource paths to cache (relative to the origin base URL or absolute).
            label: Version the new generation represents.
            seed: Responses already fetched (e.g. the descriptor) to store as-is.

        Raises:
            BuildError: If a store operation fails; the staging generation is removed
                and the active generation is left as it was.
        """
        staging: str | None = None
        try:
            staging = self.new_staging(label=label)

            stored = 0
            seeded: set[str] = set()
            for response in seed:
                self._store.put(staging, response.to_entry())
                seeded.add(response.url)
                stored += 1

            resource_ids: list[str] = []
            for path in files:
                resource_id = self._fetcher.resolve(path)
                if resource_id not in seeded and resource_id not in resource_ids:
                    resource_ids.append(resource_id)

            failed: list[str] = []
            for resource_id, result in self.fetch_all(resource_ids):
                if isinstance(result, FetchError):
                    logger.warning("Skipping %s: %s", resource_id, result)
                    failed.append(resource_id)
                elif not result.ok:
                    logger.warning("Skipping %s: HTTP %d", resource_id, result.status_code)
                    failed.append(resource_id)
                else:
                    self._store.put(staging, result.to_entry())
                    stored += 1

            if failed:
                logger.warning("Generation %s built with %d of %d resources", label, stored, stored + len(failed))

            return self.commit(staging, version=label, stored=stored, failed=failed)

        except Exception as e:
            self.discard(staging)
            raise BuildError(f"Build of generation {label} failed: {e}") from e

    def commit(
        self,
        staging: str,
        version: str | None = None,
        changed_count: int | None = None,
        stored: int | None = None,
        failed: Sequence[str] = (),
    ) -> BuildResult:
        """Publish a filled staging generation, record the version and notify.

        Raises:
            StoreError: If the swap fails.
        """
        if stored is None:
            stored = self._store.count(staging)

        deleted = self._store.commit_generation(staging, self._cache_name)
        for name in deleted:
            logger.debug("Deleted generation %s", name)

        if version is not None:
            try:
                self._store.save_installed_version(version)
            except StoreError as e:
                # The new generation is already live; only the marker is stale.
                logger.error("Failed to record installed version %s: %s", version, e)

        logger.info("Generation %s is now active (%d entries)", version or self._cache_name, stored)

        self._notifier.broadcast(
            UpdateEvent(generation=self._cache_name, version=version, changed_count=changed_count)
        )

        return BuildResult(
            generation=self._cache_name,
            stored=stored,
            failed=tuple(failed),
            deleted=tuple(deleted),
        )

    def discard(self, staging: str | None) -> None:
        """Remove the staging generation and any other temporary leftovers."""
        try:
            if staging is not None:
                self._store.delete_generation(staging)
            self._store.delete_temporary_generations()
        except StoreError as e:
            logger.error("Failed to clean up staging generations: %s", e)
