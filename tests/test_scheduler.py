import asyncio, logging, threading, time
from datetime import datetime, timezone
from auditlog.retention import RetentionSweeper
from auditlog.scheduler import Scheduler
from auditlog.schemas import RetireResult

NOW = datetime(2024, 1, 1, 12, 10, 0, tzinfo=timezone.utc)


class FakeWriter:
    def __init__(self, fail_first=0, delay=0.0):
        self.calls = 0
        self.fail_first = fail_first
        self.delay = delay
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def write_batch(self, size, ts):
        with self._lock:
            self.calls += 1
            call = self.calls
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if call <= self.fail_first:
                raise RuntimeError("could not connect to server")
            return size
        finally:
            with self._lock:
                self.active -= 1


class SlowStore:
    granularity_seconds = 60

    def __init__(self, delay=0.5, fail=False):
        self.delay = delay
        self.fail = fail
        self.retired = []

    def retire(self, key):
        time.sleep(self.delay)
        if self.fail:
            raise RuntimeError("permission denied")
        self.retired.append(key.identifier)
        return RetireResult.DROPPED


def _run(scheduler, seconds):
    async def main():
        asyncio.get_running_loop().call_later(seconds, scheduler.stop)
        return await scheduler.run()
    return asyncio.run(main())


def test_insert_failures_do_not_stop_the_task():
    writer = FakeWriter(fail_first=2)
    sweeper = RetentionSweeper(SlowStore(delay=0), max_age_seconds=30)
    s = Scheduler(writer, sweeper, insert_interval_seconds=0.05, batch_size=5,
                  cleanup_interval_seconds=10, clock=lambda: NOW)
    stats = _run(s, 0.5)

    assert stats.batch_failures == 2
    assert stats.batches_written >= 3
    assert stats.rows_written == stats.batches_written * 5


def test_overlapping_retention_tick_is_skipped(caplog):
    store = SlowStore(delay=0.5)
    sweeper = RetentionSweeper(store, max_age_seconds=30)
    s = Scheduler(FakeWriter(), sweeper, insert_interval_seconds=10,
                  cleanup_interval_seconds=0.1, clock=lambda: NOW)
    with caplog.at_level(logging.INFO, logger="auditlog.retention"):
        stats = _run(s, 0.25)

    assert stats.sweeps_run == 1
    assert stats.sweeps_skipped >= 1
    assert store.retired == ["20240101_1209"]
    assert "skipping" in caplog.text
    assert not sweeper.guard.running


def test_failed_sweep_releases_guard_and_keeps_ticking():
    store = SlowStore(delay=0.0, fail=True)
    sweeper = RetentionSweeper(store, max_age_seconds=30)
    s = Scheduler(FakeWriter(), sweeper, insert_interval_seconds=10,
                  cleanup_interval_seconds=0.05, clock=lambda: NOW)
    stats = _run(s, 0.3)

    assert stats.sweep_failures >= 2
    assert not sweeper.guard.running


def test_stop_drains_in_flight_batch():
    writer = FakeWriter(delay=0.3)
    sweeper = RetentionSweeper(SlowStore(delay=0), max_age_seconds=30)
    s = Scheduler(writer, sweeper, insert_interval_seconds=0.05,
                  cleanup_interval_seconds=10, clock=lambda: NOW)
    stats = _run(s, 0.1)

    assert writer.calls == 1
    assert stats.batches_written == 1
    assert writer.max_active == 1


def test_invalid_intervals_fall_back_to_defaults():
    sweeper = RetentionSweeper(SlowStore(delay=0), max_age_seconds=30)
    s = Scheduler(FakeWriter(), sweeper, insert_interval_seconds=0, cleanup_interval_seconds=-3)
    assert s.insert_interval == 5.0
    assert s.cleanup_interval == 60.0
