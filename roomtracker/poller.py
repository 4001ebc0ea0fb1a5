"""Background sweep scheduler using Tornado PeriodicCallback."""

import asyncio
import logging
import time
from datetime import datetime, timezone

from .errors import TransportError

log = logging.getLogger('roomtracker')

PRUNE_INTERVAL_SECONDS = 86400


class TrackerPoller:
    """Runs a sweep every ``interval`` seconds with backoff on failure.

    Consecutive failures back off exponentially (interval * 2**(n-1), capped
    at ``backoff_max``). Once ``max_failures`` sweeps in a row have failed the
    poller reports itself unhealthy; one success resets it.
    """

    def __init__(self, runner, interval=60, max_failures=5, backoff_max=900,
                 store=None, retention_days=None, clock=time.monotonic):
        self.runner = runner
        self.interval_seconds = interval
        self.max_failures = max_failures
        self.backoff_max = backoff_max
        self.store = store
        self.retention_days = retention_days
        self._clock = clock

        self.periodic_callback = None
        self.running = False
        self.sweeps = 0
        self.consecutive_failures = 0
        self.total_failures = 0
        self.retry_at = 0.0
        self.last_success = None
        self.last_error = None
        self.last_result = None
        self._last_prune = None
        log.info(f"[TrackerPoller] Initialized with interval={self.interval_seconds}s")

    @classmethod
    def from_config(cls, config, runner, store=None):
        return cls(
            runner,
            interval=config.poll_interval,
            max_failures=config.max_failures,
            backoff_max=config.backoff_max,
            store=store,
            retention_days=config.retention_days,
        )

    @property
    def healthy(self):
        return self.consecutive_failures < self.max_failures

    def start(self):
        """Start the periodic poller."""
        from tornado.ioloop import IOLoop, PeriodicCallback

        if self.periodic_callback is not None:
            log.info("[TrackerPoller] Already running")
            return

        interval_ms = self.interval_seconds * 1000
        self.periodic_callback = PeriodicCallback(self._tick, interval_ms)
        self.periodic_callback.start()
        log.info(f"[TrackerPoller] Started - sweeping every {self.interval_seconds}s")

        IOLoop.current().add_callback(self._tick)

    def stop(self):
        if self.periodic_callback is not None:
            self.periodic_callback.stop()
            self.periodic_callback = None
            log.info("[TrackerPoller] Stopped")

    def _tick(self):
        asyncio.ensure_future(self.tick())

    def backoff_delay(self, failures):
        if failures <= 0:
            return 0
        return min(self.interval_seconds * 2 ** (failures - 1), self.backoff_max)

    async def tick(self):
        """Run one sweep unless one is in flight or backoff is pending. Returns the outcome."""
        if self.running:
            log.info("[TrackerPoller] Previous sweep still running, skipping tick")
            return 'busy'
        if self._clock() < self.retry_at:
            return 'backoff'

        self.running = True
        try:
            result = await self.runner.run_sweep()
        except TransportError as e:
            self._record_failure(f"transport: {e}")
            return 'failed'
        except Exception as e:
            self._record_failure(f"{type(e).__name__}: {e}")
            return 'failed'
        finally:
            self.running = False

        self._record_success(result)
        await self._maybe_prune()
        return 'ok'

    def _record_success(self, result):
        if self.consecutive_failures:
            log.info(f"[TrackerPoller] Recovered after {self.consecutive_failures} failed sweeps")
        self.sweeps += 1
        self.consecutive_failures = 0
        self.retry_at = 0.0
        self.last_success = datetime.now(timezone.utc)
        self.last_result = result.as_dict()

    def _record_failure(self, message):
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = message
        delay = self.backoff_delay(self.consecutive_failures)
        self.retry_at = self._clock() + delay
        log.error(
            f"[TrackerPoller] Sweep failed ({self.consecutive_failures} in a row): {message} "
            f"- next attempt in {delay}s"
        )
        if self.consecutive_failures == self.max_failures:
            log.error(f"[TrackerPoller] Failure budget of {self.max_failures} exhausted, reporting unhealthy")

    async def _maybe_prune(self):
        if self.store is None or not self.retention_days:
            return
        now = self._clock()
        if self._last_prune is not None and now - self._last_prune < PRUNE_INTERVAL_SECONDS:
            return
        self._last_prune = now
        try:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.store.clean_old_data, self.retention_days)
        except Exception as e:
            log.warning(f"[TrackerPoller] Pruning failed: {e}")

    def status(self):
        return {
            'healthy': self.healthy,
            'running': self.running,
            'sweeps': self.sweeps,
            'consecutive_failures': self.consecutive_failures,
            'total_failures': self.total_failures,
            'max_failures': self.max_failures,
            'last_success': self.last_success.isoformat() if self.last_success else None,
            'last_error': self.last_error,
            'last_result': self.last_result,
            'next_retry_in': max(0, round(self.retry_at - self._clock())) if self.retry_at else 0,
        }
