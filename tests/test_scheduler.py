"""Tests for the update scheduler module."""

import threading

import pytest

from assetsync.scheduler import SchedulerState, SchedulerStatus, UpdateScheduler


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class BlockingJob:
    """Job that runs until released, counting invocations."""

    def __init__(self) -> None:
        self.started = threading.Event()
        self.release = threading.Event()
        self.calls = 0

    def __call__(self) -> None:
        self.calls += 1
        self.started.set()
        self.release.wait(timeout=5)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


class TestSchedulerState:
    """Tests for the SchedulerState dataclass."""

    def test_defaults(self) -> None:
        state = SchedulerState()
        assert state.status is SchedulerStatus.IDLE
        assert state.last_check_started is None
        assert state.online is True
        assert state.checks_run == 0


class TestUpdateScheduler:
    """Tests for UpdateScheduler triggers and single-flight behavior."""

    def test_start_runs_startup_job(self) -> None:
        startup = BlockingJob()
        startup.release.set()
        check = BlockingJob()
        scheduler = UpdateScheduler(check, startup=startup)

        assert scheduler.start() is True
        assert scheduler.wait_idle(timeout=5)

        assert startup.calls == 1
        assert check.calls == 0
        assert scheduler.state.last_reason == "startup"

    def test_check_now_runs_check(self) -> None:
        check = BlockingJob()
        check.release.set()
        scheduler = UpdateScheduler(check)

        assert scheduler.check_now() is True
        assert scheduler.wait_idle(timeout=5)

        assert check.calls == 1
        assert scheduler.state.status is SchedulerStatus.IDLE

    def test_trigger_while_checking_is_dropped(self) -> None:
        """Only one check runs at a time; concurrent triggers are dropped."""
        check = BlockingJob()
        scheduler = UpdateScheduler(check)

        assert scheduler.check_now() is True
        assert check.started.wait(timeout=5)
        assert scheduler.is_checking

        assert scheduler.check_now() is False
        assert scheduler.submit(check, reason="descriptor") is False

        check.release.set()
        assert scheduler.wait_idle(timeout=5)
        assert check.calls == 1
        assert scheduler.state.checks_run == 1

    def test_failing_job_returns_to_idle(self) -> None:
        def boom() -> None:
            raise RuntimeError("boom")

        scheduler = UpdateScheduler(boom)
        scheduler.check_now()

        assert scheduler.wait_idle(timeout=5)
        assert scheduler.state.status is SchedulerStatus.IDLE
        assert scheduler.check_now() is True
        scheduler.wait_idle(timeout=5)

    def test_on_request_first_time(self, clock: FakeClock) -> None:
        check = BlockingJob()
        check.release.set()
        scheduler = UpdateScheduler(check, interval=600, clock=clock)

        assert scheduler.on_request() is True
        scheduler.wait_idle(timeout=5)
        assert scheduler.state.last_check_started == 1000.0
        assert scheduler.state.last_reason == "interval"

    def test_on_request_respects_interval(self, clock: FakeClock) -> None:
        check = BlockingJob()
        check.release.set()
        scheduler = UpdateScheduler(check, interval=600, clock=clock)
        scheduler.check_now()
        scheduler.wait_idle(timeout=5)

        clock.now += 600
        assert scheduler.on_request() is False

        clock.now += 1
        assert scheduler.on_request() is True
        scheduler.wait_idle(timeout=5)
        assert check.calls == 2

    def test_on_request_requires_online(self, clock: FakeClock) -> None:
        check = BlockingJob()
        check.release.set()
        scheduler = UpdateScheduler(check, clock=clock)

        scheduler.set_online(False)
        assert scheduler.on_request() is False

        scheduler.set_online(True)
        assert scheduler.on_request() is True
        scheduler.wait_idle(timeout=5)

    def test_injected_state_is_used(self, clock: FakeClock) -> None:
        """Restored state gates the interval just like a live one."""
        state = SchedulerState(last_check_started=clock.now - 10)
        check = BlockingJob()
        scheduler = UpdateScheduler(check, state=state, interval=600, clock=clock)

        assert scheduler.state is state
        assert scheduler.on_request() is False
        assert check.calls == 0

    def test_wait_idle_times_out(self) -> None:
        check = BlockingJob()
        scheduler = UpdateScheduler(check)
        scheduler.check_now()
        check.started.wait(timeout=5)

        assert scheduler.wait_idle(timeout=0.05) is False

        check.release.set()
        assert scheduler.wait_idle(timeout=5) is True
