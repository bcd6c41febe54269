"""Sync engine: wires store, fetcher, builder, refresher, interceptor and scheduler."""

import logging

import requests

from .builder import BuildError, GenerationBuilder
from .config import Config
from .fetcher import DescriptorMalformed, Fetcher, NetworkUnavailable, OriginError
from .interceptor import RequestInterceptor
from .models import BuildResult, FetchResult, InterceptedResponse, VersionDescriptor
from .notifier import Notifier
from .refresher import DifferentialRefresher
from .scheduler import SchedulerState, UpdateScheduler
from .store import GenerationStore, StoreError
from .version import VersionParseError, is_newer, parse_version

logger = logging.getLogger(__name__)


class SyncEngine:
    """Keeps the local cache in sync with the origin and serves reads from it.

    Example:
        store = GenerationStore.open(config.store.path)
        engine = SyncEngine(config, store)
        engine.start()
        response = engine.handle_request("/app/index.html")
    """

    def __init__(
        self,
        config: Config,
        store: GenerationStore,
        session: requests.Session | None = None,
        notifier: Notifier | None = None,
        state: SchedulerState | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            config: Application configuration.
            store: Generation store holding the cache.
            session: HTTP session used to reach the origin.
            notifier: Update notifier; built from config.notify when omitted.
            state: Scheduler state; a fresh one is created when omitted.
        """
        self._config = config
        self._store = store
        self.fetcher = Fetcher(config.origin, session=session)
        self.notifier = notifier or Notifier(config.notify)
        self.builder = GenerationBuilder(
            store,
            self.fetcher,
            self.notifier,
            cache_name=config.sync.cache_name,
            max_workers=config.sync.max_workers,
        )
        self.refresher = DifferentialRefresher(store, self.fetcher, self.builder)
        self.scheduler = UpdateScheduler(
            self.check_for_updates,
            startup=self.startup,
            state=state,
            interval=config.sync.check_interval,
        )
        self.interceptor = RequestInterceptor(
            store,
            self.fetcher,
            on_descriptor_change=self._schedule_descriptor_build,
            on_request=self.scheduler.on_request,
            on_network_status=self.scheduler.set_online,
        )

    @property
    def store(self) -> GenerationStore:
        return self._store

    def start(self) -> bool:
        """Run the start-up sequence (activate, install or check) in the background."""
        return self.scheduler.start()

    def startup(self) -> None:
        """Prune stray generations, then install if nothing is cached or check for updates."""
        self.activate()
        if self._store.active_generation() is None:
            self.install()
        else:
            self.check_for_updates()

    def activate(self) -> list[str]:
        """Delete every generation other than the active one."""
        try:
            deleted = self._store.prune()
        except StoreError as e:
            logger.error("Failed to prune stale generations: %s", e)
            return []
        for name in deleted:
            logger.info("Deleted stale generation %s", name)
        return deleted

    def install(self) -> BuildResult | None:
        """Build the first generation.

        Uses the descriptor's file list when the origin serves one, otherwise
        the configured bootstrap list.
        """
        files: tuple[str, ...] = self._config.sync.bootstrap
        label = self._store.installed_version()
        seed: list[FetchResult] = []

        try:
            descriptor, response = self.fetcher.fetch_descriptor()
            parse_version(descriptor.version)
        except NetworkUnavailable as e:
            logger.info("Version descriptor unavailable, installing bootstrap resources: %s", e)
        except (OriginError, DescriptorMalformed, VersionParseError) as e:
            logger.warning("Version descriptor unusable, installing bootstrap resources: %s", e)
        else:
            files = descriptor.files or files
            label = descriptor.version
            seed.append(response)

        try:
            result = self.builder.build(files, label=label, seed=seed)
        except BuildError as e:
            logger.error("Install failed: %s", e)
            return None

        logger.info("Installed version %s (%d resources)", label, result.stored)
        return result

    def check_for_updates(self) -> bool:
        """Run one update check using the configured strategy.

        Returns:
            True if a new generation was committed.
        """
        if self._config.sync.mode == "differential":
            return self._check_differential()
        return self._check_descriptor()

    def _check_descriptor(self) -> bool:
        current = self._store.installed_version()
        logger.debug("Current installed version: %s", current)

        try:
            descriptor, response = self.fetcher.fetch_descriptor()
        except NetworkUnavailable as e:
            logger.info("Version check skipped (offline): %s", e)
            return False
        except OriginError as e:
            logger.warning("Version check failed, keeping cached version: %s", e)
            return False
        except DescriptorMalformed as e:
            logger.warning("Version check aborted: %s", e)
            return False

        logger.debug("Server version: %s", descriptor.version)
        if not is_newer(descriptor.version, current):
            logger.info("No update needed (installed %s, server %s)", current, descriptor.version)
            return False

        logger.info("New version available: %s", descriptor.version)
        return self.apply_descriptor(descriptor, response)

    def _check_differential(self) -> bool:
        try:
            changed = self.refresher.refresh(self._config.sync.bootstrap)
        except BuildError as e:
            logger.error("Differential refresh failed: %s", e)
            return False
        return changed > 0

    def apply_descriptor(self, descriptor: VersionDescriptor, response: FetchResult | None = None) -> bool:
        """Build and publish the generation described by descriptor.

        Returns:
            True if the generation was committed.
        """
        try:
            parse_version(descriptor.version)
        except VersionParseError as e:
            logger.warning("Not building unparseable version %r: %s", descriptor.version, e)
            return False

        seed = [response] if response is not None else []
        try:
            self.builder.build(descriptor.files, label=descriptor.version, seed=seed)
        except BuildError as e:
            logger.error("Cache update failed: %s", e)
            return False
        return True

    def _schedule_descriptor_build(self, descriptor: VersionDescriptor, response: FetchResult) -> None:
        started = self.scheduler.submit(
            lambda: self.apply_descriptor(descriptor, response),
            reason="descriptor",
        )
        if not started:
            logger.debug("Rebuild for version %s not started, a check is already running", descriptor.version)

    def check_now(self) -> bool:
        """Signal an immediate update check."""
        return self.scheduler.check_now()

    def handle_request(self, resource: str) -> InterceptedResponse:
        return self.interceptor.handle(resource)

    def status(self) -> dict:
        """Summarize the cache state for the status endpoint and CLI."""
        active = self._store.active_generation()
        state = self.scheduler.state
        last_event = self.notifier.last_event
        return {
            "installed_version": self._store.installed_version(),
            "active_generation": active,
            "entries": self._store.count(active) if active else 0,
            "generations": self._store.list_generations(),
            "mode": self._config.sync.mode,
            "scheduler": {
                "status": state.status.value,
                "online": state.online,
                "checks_run": state.checks_run,
                "last_reason": state.last_reason,
            },
            "last_event": last_event.to_dict() if last_event else None,
        }
