"""Differential refresh: rebuild the active generation from what actually changed."""

import logging
from collections.abc import Sequence

from .builder import BuildError, GenerationBuilder
from .fetcher import FetchError, Fetcher
from .models import FetchResult, ResourceEntry
from .store import GenerationStore

logger = logging.getLogger(__name__)

# Statuses meaning the origin no longer serves a resource.
GONE_STATUSES = (404, 410)


def is_unchanged(cached: ResourceEntry, fresh: FetchResult) -> bool:
    """Decide whether a freshly fetched resource matches its cached copy.

    A size difference is a change on its own. Otherwise the strongest
    signal available on both sides decides: ETag, then Last-Modified,
    then a byte-for-byte comparison.
    """
    if cached.content_length != len(fresh.body):
        return False
    if cached.etag and fresh.etag:
        return cached.etag == fresh.etag
    if cached.last_modified and fresh.last_modified:
        return cached.last_modified == fresh.last_modified
    return cached.body == fresh.body


def _status_of(result: FetchResult | FetchError) -> int | None:
    if isinstance(result, FetchResult):
        return result.status_code
    return getattr(result, "status_code", None)


def _describe(result: FetchResult | FetchError) -> str:
    if isinstance(result, FetchResult):
        return f"HTTP {result.status_code}"
    return str(result)


class DifferentialRefresher:
    """Re-fetches every cached and bootstrap resource and keeps only real changes.

    Unchanged entries are copied forward inside the store; changed and new
    ones are written from the fresh response. A new generation is published
    only when something changed.
    """

    def __init__(self, store: GenerationStore, fetcher: Fetcher, builder: GenerationBuilder) -> None:
        self._store = store
        self._fetcher = fetcher
        self._builder = builder

    def _candidates(self, bootstrap: Sequence[str], active: str | None) -> list[str]:
        """Ordered union of the resolved bootstrap list and the active generation's keys."""
        candidates: list[str] = []
        seen: set[str] = set()
        cached_keys = self._store.keys(active) if active else []
        for resource_id in [self._fetcher.resolve(path) for path in bootstrap] + cached_keys:
            if resource_id not in seen:
                seen.add(resource_id)
                candidates.append(resource_id)
        return candidates

    def refresh(self, bootstrap: Sequence[str]) -> int:
        """Run one differential check.

        Returns:
            Number of resources that were new, changed or removed. Zero means
            the active generation was left untouched.

        Raises:
            BuildError: If the refresh fails for any reason; staging generations are removed
                and the active generation is left as it was.
        """
        staging: str | None = None
        try:
            active = self._store.active_generation()
            candidates = self._candidates(bootstrap, active)
            staging = self._builder.new_staging(label="differential")

            changed = 0
            for resource_id, result in self._builder.fetch_all(candidates):
                cached = self._store.get(active, resource_id) if active else None

                if isinstance(result, FetchError) or not result.ok:
                    if _status_of(result) in GONE_STATUSES:
                        if cached is not None:
                            logger.info("%s is gone from origin, dropping it", resource_id)
                            changed += 1
                        continue
                    if cached is not None:
                        logger.debug("Keeping cached %s: %s", resource_id, _describe(result))
                        self._store.copy_entry(active, staging, resource_id)
                    else:
                        logger.warning("Skipping %s: %s", resource_id, _describe(result))
                    continue

                if cached is None:
                    logger.debug("New resource %s", resource_id)
                    self._store.put(staging, result.to_entry())
                    changed += 1
                elif is_unchanged(cached, result):
                    self._store.copy_entry(active, staging, resource_id)
                else:
                    logger.debug("Changed resource %s", resource_id)
                    self._store.put(staging, result.to_entry())
                    changed += 1

            if changed == 0:
                logger.info("No changes detected in %d resources", len(candidates))
                self._store.delete_generation(staging)
                return 0

            logger.info("%d of %d resources changed, rebuilding cache", changed, len(candidates))
            self._builder.commit(staging, changed_count=changed)
            return changed

        except Exception as e:
            self._builder.discard(staging)
            raise BuildError(f"Differential refresh failed: {e}") from e
