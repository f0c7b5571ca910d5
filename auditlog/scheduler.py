from __future__ import annotations
import asyncio, logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncIterator, Callable, Set

from auditlog.config import DEFAULT_CLEANUP_INTERVAL_SECONDS, DEFAULT_INSERT_INTERVAL_SECONDS
from auditlog.retention import RetentionSweeper
from auditlog.writer import BatchWriter

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _interval(value: float, default: float) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return default
    return v if 0 < v < float("inf") else default


@dataclass
class SchedulerStats:
    batches_written: int = 0
    rows_written: int = 0
    batch_failures: int = 0
    sweeps_run: int = 0
    sweeps_skipped: int = 0
    sweep_failures: int = 0
    partitions_dropped: int = 0


class Scheduler:
    """Runs the insertion task and the retention task side by side.

    Blocking database work runs in worker threads. Each retention tick gets
    its own task, so a slow sweep does not delay the next tick; the sweep
    guard turns such overlapping ticks into skips.
    """

    def __init__(self, writer: BatchWriter, sweeper: RetentionSweeper,
                 insert_interval_seconds: float = DEFAULT_INSERT_INTERVAL_SECONDS,
                 batch_size: int = 10,
                 cleanup_interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
                 clock: Callable[[], datetime] = _now_utc):
        self.writer = writer
        self.sweeper = sweeper
        self.insert_interval = _interval(insert_interval_seconds, DEFAULT_INSERT_INTERVAL_SECONDS)
        self.cleanup_interval = _interval(cleanup_interval_seconds, DEFAULT_CLEANUP_INTERVAL_SECONDS)
        self.batch_size = batch_size
        self.clock = clock
        self.stats = SchedulerStats()

        self._stopping = asyncio.Event()
        self._sweeps: Set[asyncio.Task] = set()

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("shutdown requested, draining in-flight work")
            self._stopping.set()

    async def _ticks(self, interval: float) -> AsyncIterator[int]:
        loop = asyncio.get_running_loop()
        n = 0
        next_at = loop.time() + interval
        while not self._stopping.is_set():
            delay = next_at - loop.time()
            if delay > 0:
                try:
                    await asyncio.wait_for(self._stopping.wait(), timeout=delay)
                    return
                except asyncio.TimeoutError:
                    pass
            n += 1
            yield n
            now = loop.time()
            next_at += interval
            if next_at <= now:
                missed = int((now - next_at) // interval) + 1
                logger.debug("dropping %d missed tick(s)", missed)
                next_at += missed * interval

    async def insert_once(self) -> None:
        ts = self.clock()
        try:
            written = await asyncio.to_thread(self.writer.write_batch, self.batch_size, ts)
        except Exception:
            self.stats.batch_failures += 1
            logger.exception("batch insert failed")
            return
        self.stats.batches_written += 1
        self.stats.rows_written += written

    async def sweep_once(self) -> None:
        try:
            outcome = await asyncio.to_thread(self.sweeper.sweep, self.clock())
        except Exception:
            self.stats.sweep_failures += 1
            logger.exception("cleanup failed")
            return
        if outcome.skipped:
            self.stats.sweeps_skipped += 1
            return
        self.stats.sweeps_run += 1
        self.stats.partitions_dropped += len(outcome.dropped)

    def _spawn_sweep(self) -> None:
        task = asyncio.create_task(self.sweep_once())
        self._sweeps.add(task)
        task.add_done_callback(self._sweeps.discard)

    async def _insert_loop(self) -> None:
        async for _ in self._ticks(self.insert_interval):
            await self.insert_once()

    async def _retention_loop(self) -> None:
        async for _ in self._ticks(self.cleanup_interval):
            self._spawn_sweep()

    async def run(self) -> SchedulerStats:
        logger.info("audit log scheduler started: insert every %.1fs, cleanup every %.1fs",
                    self.insert_interval, self.cleanup_interval)
        try:
            await asyncio.gather(self._insert_loop(), self._retention_loop())
        finally:
            if self._sweeps:
                await asyncio.gather(*list(self._sweeps), return_exceptions=True)
        logger.info("audit log scheduler stopped: %s", self.stats)
        return self.stats
