"""Functional tests for TrackerPoller - backoff, health budget, pruning."""

import asyncio

from roomtracker.config import TrackerConfig
from roomtracker.errors import SweepTimeoutError, TransportError
from roomtracker.poller import TrackerPoller
from roomtracker.sweep import SweepResult


class FakeRunner:
    """Plays back queued outcomes: SweepResult or an exception."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def run_sweep(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class MonotonicClock:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


class RecordingStore:
    def __init__(self):
        self.pruned = []

    def clean_old_data(self, days):
        self.pruned.append(days)
        return {'activity_log': 0, 'room_snapshots': 0}


def _poller(runner, clock, **kwargs):
    kwargs.setdefault('interval', 60)
    kwargs.setdefault('max_failures', 3)
    kwargs.setdefault('backoff_max', 300)
    return TrackerPoller(runner, clock=clock, **kwargs)


class TestBackoff:
    def test_delay_doubles_and_caps(self):
        """interval * 2**(n-1), capped at backoff_max."""
        poller = _poller(FakeRunner(), MonotonicClock())
        assert [poller.backoff_delay(n) for n in range(0, 6)] == [0, 60, 120, 240, 300, 300]

    def test_failure_defers_next_attempt(self):
        """After a failure, ticks inside the backoff window are skipped."""
        clock = MonotonicClock()
        runner = FakeRunner(TransportError("down"), SweepResult())
        poller = _poller(runner, clock)

        assert asyncio.run(poller.tick()) == 'failed'
        clock.value += 30
        assert asyncio.run(poller.tick()) == 'backoff'
        assert runner.calls == 1

        clock.value += 31
        assert asyncio.run(poller.tick()) == 'ok'
        assert poller.consecutive_failures == 0

    def test_sweep_timeout_counts_as_failure(self):
        """A timed-out sweep backs off like a transport failure."""
        poller = _poller(FakeRunner(SweepTimeoutError("late")), MonotonicClock())
        assert asyncio.run(poller.tick()) == 'failed'
        assert 'SweepTimeoutError' in poller.last_error

    def test_busy_tick_skipped(self):
        """A tick while a sweep is running does nothing."""
        runner = FakeRunner(SweepResult())
        poller = _poller(runner, MonotonicClock())
        poller.running = True
        assert asyncio.run(poller.tick()) == 'busy'
        assert runner.calls == 0


class TestHealth:
    def test_unhealthy_after_budget_then_recovers(self):
        """max_failures consecutive failures flip health; one success restores it."""
        clock = MonotonicClock()
        runner = FakeRunner(*[TransportError("down")] * 3, SweepResult(rooms=4))
        poller = _poller(runner, clock)

        for expected_healthy in (True, True, False):
            assert asyncio.run(poller.tick()) == 'failed'
            assert poller.healthy is expected_healthy
            clock.value += 10_000

        assert asyncio.run(poller.tick()) == 'ok'
        assert poller.healthy is True
        status = poller.status()
        assert status['sweeps'] == 1
        assert status['total_failures'] == 3
        assert status['last_result']['rooms'] == 4

    def test_status_shape(self):
        """Status carries health and retry information."""
        poller = _poller(FakeRunner(TransportError("x")), MonotonicClock())
        asyncio.run(poller.tick())
        status = poller.status()
        assert status['healthy'] is True
        assert status['consecutive_failures'] == 1
        assert status['next_retry_in'] == 60
        assert status['last_success'] is None


class TestPruning:
    def test_prunes_once_per_day(self):
        """Successful sweeps prune at most daily."""
        clock = MonotonicClock()
        store = RecordingStore()
        poller = _poller(FakeRunner(SweepResult(), SweepResult(), SweepResult()), clock,
                         store=store, retention_days=30)

        asyncio.run(poller.tick())
        clock.value += 60
        asyncio.run(poller.tick())
        assert store.pruned == [30]

        clock.value += 86400
        asyncio.run(poller.tick())
        assert store.pruned == [30, 30]


class TestFromConfig:
    def test_from_config(self):
        """Settings come from TrackerConfig."""
        config = TrackerConfig(poll_interval=15, max_failures=2, backoff_max=120, retention_days=7)
        poller = TrackerPoller.from_config(config, FakeRunner())
        assert poller.interval_seconds == 15
        assert poller.max_failures == 2
        assert poller.backoff_max == 120
        assert poller.retention_days == 7
