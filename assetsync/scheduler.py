"""Update scheduling: decides when a refresh runs and keeps runs from overlapping."""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from .config import DEFAULT_CHECK_INTERVAL

logger = logging.getLogger(__name__)

Job = Callable[[], object]


class SchedulerStatus(Enum):
    IDLE = "idle"
    CHECKING = "checking"


@dataclass
class SchedulerState:
    """Mutable scheduling state, owned by one UpdateScheduler.

    Attributes:
        status: Whether a check is currently running.
        last_check_started: Monotonic time the last check began, None if never.
        online: Last known origin reachability; request-triggered checks need it.
        checks_run: Number of checks started since the process began.
        last_reason: What triggered the most recent check.
    """

    status: SchedulerStatus = SchedulerStatus.IDLE
    last_check_started: float | None = None
    online: bool = True
    checks_run: int = 0
    last_reason: str | None = None


class UpdateScheduler:
    """Runs refresh jobs in background threads, at most one at a time.

    Checks start on ``start()``, on an explicit ``check_now()`` signal, or on
    ``on_request()`` when the origin is reachable and more than ``interval``
    seconds passed since the previous check began. A trigger arriving while a
    check is running is dropped.

    Example:
        scheduler = UpdateScheduler(engine.check_for_updates)
        scheduler.start()
        scheduler.check_now()
    """

    def __init__(
        self,
        check: Job,
        startup: Job | None = None,
        state: SchedulerState | None = None,
        interval: float = DEFAULT_CHECK_INTERVAL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the scheduler.

        Args:
            check: Refresh job run by check_now() and on_request().
            startup: Job run by start(); defaults to check.
            state: Scheduling state; a fresh one is created when omitted.
            interval: Minimum seconds between request-triggered checks.
            clock: Monotonic time source.
        """
        self._check = check
        self._startup = startup or check
        self._state = state or SchedulerState()
        self._interval = interval
        self._clock = clock
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()
        self._thread: threading.Thread | None = None

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def is_checking(self) -> bool:
        return self._state.status is SchedulerStatus.CHECKING

    def set_online(self, online: bool) -> None:
        self._state.online = online

    def start(self) -> bool:
        """Trigger the start-up job."""
        return self.submit(self._startup, reason="startup")

    def check_now(self) -> bool:
        """Trigger a check on explicit request from a collaborator."""
        return self.submit(self._check, reason="requested")

    def on_request(self) -> bool:
        """Trigger a check if online and the minimum interval has elapsed."""
        if not self._state.online:
            return False
        last = self._state.last_check_started
        if last is not None and self._clock() - last <= self._interval:
            return False
        return self.submit(self._check, reason="interval")

    def submit(self, job: Job, reason: str) -> bool:
        """Run job in a background thread unless a check is already running.

        Returns:
            True if the job was started, False if it was dropped.
        """
        with self._lock:
            if self._state.status is SchedulerStatus.CHECKING:
                logger.debug("Check already running, dropping %s trigger", reason)
                return False
            self._state.status = SchedulerStatus.CHECKING
            self._state.last_check_started = self._clock()
            self._state.checks_run += 1
            self._state.last_reason = reason
            self._idle.clear()

        logger.debug("Starting update check (%s)", reason)
        self._thread = threading.Thread(
            target=self._run,
            args=(job, reason),
            name=f"update-check-{reason}",
            daemon=True,
        )
        self._thread.start()
        return True

    def _run(self, job: Job, reason: str) -> None:
        try:
            job()
        except Exception as e:
            logger.exception("Update check (%s) failed: %s", reason, e)
        finally:
            with self._lock:
                self._state.status = SchedulerStatus.IDLE
                self._idle.set()
            logger.debug("Update check (%s) finished", reason)

    def wait_idle(self, timeout: float | None = None) -> bool:
        """Block until no check is running.

        Returns:
            True if idle, False if the timeout expired first.
        """
        return self._idle.wait(timeout)
