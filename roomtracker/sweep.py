"""SweepRunner - one full pass: fetch, normalize, reconcile every room, mark stale rooms."""

import asyncio
import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field

from .errors import SweepTimeoutError
from .index import OpenSessionIndex
from .locks import KeyedLocks
from .normalizer import normalize
from .reconciler import SessionReconciler
from .rooms import RoomStateUpserter
from .store import utc_now

log = logging.getLogger('roomtracker')


@dataclass
class SweepResult:
    rooms: int = 0
    opened: int = 0
    closed: int = 0
    failed_users: int = 0
    failed_rooms: list = field(default_factory=list)
    parse_errors: int = 0
    deactivated: int = 0
    deactivation_closed: int = 0
    complete: bool = True
    timed_out: bool = False

    def as_dict(self):
        return {
            'rooms': self.rooms,
            'opened': self.opened,
            'closed': self.closed,
            'failed_users': self.failed_users,
            'failed_rooms': len(self.failed_rooms),
            'parse_errors': self.parse_errors,
            'deactivated': self.deactivated,
            'deactivation_closed': self.deactivation_closed,
            'complete': self.complete,
            'timed_out': self.timed_out,
        }


class SweepRunner:
    """Drives one sweep at a time over a shared store.

    Usage:
        runner = SweepRunner.build(config, store, fetcher)
        result = await runner.run_sweep()
    """

    def __init__(self, store, fetcher, reconciler, upserter, index=None, workers=4,
                 sweep_timeout=120, record_snapshots=True, clock=utc_now):
        self.store = store
        self.fetcher = fetcher
        self.reconciler = reconciler
        self.upserter = upserter
        self.index = index
        self.sweep_timeout = sweep_timeout
        self.record_snapshots = record_snapshots
        self._clock = clock
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='reconcile')

    @classmethod
    def build(cls, config, store, fetcher, clock=utc_now):
        index = OpenSessionIndex(store) if config.use_session_index else None
        room_locks = KeyedLocks()
        return cls(
            store,
            fetcher,
            SessionReconciler(store, index, room_locks, clock=clock),
            RoomStateUpserter(store, index, room_locks, clock=clock),
            index=index,
            workers=config.workers,
            sweep_timeout=config.sweep_timeout,
            record_snapshots=config.record_snapshots,
            clock=clock,
        )

    def shutdown(self):
        self._executor.shutdown(wait=False)

    async def run_sweep(self):
        """Fetch a capture and process it. TransportError propagates (no state is touched)."""
        capture = await self.fetcher.fetch()
        return await self.process_capture(capture)

    async def process_capture(self, capture):
        loop = asyncio.get_running_loop()
        counters = Counter()
        snapshots = normalize(capture, counters)
        now = self._clock()

        result = SweepResult(
            rooms=len(snapshots),
            parse_errors=counters['rooms_skipped'] + counters['users_skipped'] + counters['payloads_unrecognized'],
            complete=capture.complete,
        )
        if result.parse_errors:
            log.warning(
                f"[SweepRunner] Skipped {counters['rooms_skipped']} rooms and "
                f"{counters['users_skipped']} users that failed to parse"
            )

        if self.index is not None:
            await loop.run_in_executor(self._executor, self.index.initialize)

        futures = [
            loop.run_in_executor(self._executor, self._process_room, snapshot, now)
            for snapshot in snapshots
        ]
        try:
            await asyncio.wait_for(
                asyncio.gather(*futures, return_exceptions=True),
                timeout=self.sweep_timeout,
            )
        except asyncio.TimeoutError:
            result.timed_out = True

        for snapshot, future in zip(snapshots, futures):
            if not future.done() or future.cancelled():
                result.failed_rooms.append(snapshot.room_id)
                continue
            error = future.exception()
            if error is not None:
                log.error(f"[SweepRunner] Room {snapshot.room_id} failed: {error}")
                result.failed_rooms.append(snapshot.room_id)
                continue
            outcome = future.result()
            result.opened += outcome.opened
            result.closed += outcome.closed
            result.failed_users += outcome.failed

        if result.timed_out:
            log.warning(
                f"[SweepRunner] Sweep exceeded {self.sweep_timeout}s: "
                f"{len(snapshots) - len(result.failed_rooms)}/{len(snapshots)} rooms processed, "
                f"skipping inactivity marking"
            )
            raise SweepTimeoutError(f"Sweep exceeded {self.sweep_timeout}s deadline")

        if result.complete:
            observed_ids = [snapshot.room_id for snapshot in snapshots]
            deactivation = await loop.run_in_executor(
                self._executor, self.upserter.mark_inactive, observed_ids, now,
            )
            result.deactivated = len(deactivation.deactivated)
            result.deactivation_closed = deactivation.closed_sessions
        else:
            log.info("[SweepRunner] Partial capture, skipping inactivity marking")

        log.info(
            f"[SweepRunner] Sweep: {result.rooms} rooms | +{result.opened} joins, -{result.closed} leaves | "
            f"failed: {result.failed_users} users, {len(result.failed_rooms)} rooms | "
            f"parse errors: {result.parse_errors} | deactivated: {result.deactivated}"
        )
        return result

    def _process_room(self, snapshot, now):
        self.upserter.upsert_snapshot(snapshot, now)
        outcome = self.reconciler.reconcile(snapshot.room_id, snapshot.present_users, now)
        if self.record_snapshots:
            try:
                self.store.record_room_snapshot(snapshot.room_id, snapshot.present_users, now)
            except Exception as e:
                log.warning(f"[SweepRunner] Snapshot record failed for room {snapshot.room_id}: {e}")
        return outcome
