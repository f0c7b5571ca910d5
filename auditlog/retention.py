from __future__ import annotations
import logging, threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone, timedelta
from typing import Callable, Iterator, List, Optional

from auditlog.partitioning import PartitionKey, derive
from auditlog.schemas import RetentionPolicy, RetireResult
from auditlog.store import PartitionStore

logger = logging.getLogger(__name__)


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


class SweepGuard:
    """Running flag for the retention sweep.

    The lock only protects the flag flip; the sweep itself runs outside it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._running = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._running

    def try_acquire(self) -> bool:
        with self._lock:
            if self._running:
                return False
            self._running = True
            return True

    def release(self) -> None:
        with self._lock:
            self._running = False

    @contextmanager
    def hold(self) -> Iterator[bool]:
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()


@dataclass
class SweepOutcome:
    cutoff: datetime
    skipped: bool = False
    target: Optional[PartitionKey] = None
    dropped: List[str] = field(default_factory=list)
    not_found: List[str] = field(default_factory=list)


def retention_cutoff(now: datetime, max_age_seconds: int) -> datetime:
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now - timedelta(seconds=max_age_seconds)


class RetentionSweeper:
    def __init__(self, store: PartitionStore, max_age_seconds: int,
                 policy: RetentionPolicy = RetentionPolicy.SINGLE,
                 guard: Optional[SweepGuard] = None,
                 clock: Callable[[], datetime] = _now_utc):
        if max_age_seconds <= 0:
            raise ValueError("max_age_seconds must be positive")
        self.store = store
        self.max_age_seconds = max_age_seconds
        self.policy = RetentionPolicy(policy)
        self.guard = guard or SweepGuard()
        self.clock = clock

    def _targets(self, cutoff_key: PartitionKey) -> List[PartitionKey]:
        if self.policy is RetentionPolicy.SINGLE:
            return [cutoff_key]
        return [k for k in self.store.list_partitions() if k.identifier <= cutoff_key.identifier]

    def sweep(self, now: Optional[datetime] = None) -> SweepOutcome:
        now = now or self.clock()
        cutoff = retention_cutoff(now, self.max_age_seconds)
        with self.guard.hold() as acquired:
            if not acquired:
                logger.info("cleanup already running, skipping")
                return SweepOutcome(cutoff=cutoff, skipped=True)

            key = derive(cutoff, self.store.granularity_seconds)
            outcome = SweepOutcome(cutoff=cutoff, target=key)
            logger.info("running cleanup job: cutoff=%s policy=%s", cutoff.isoformat(), self.policy.value)
            for target in self._targets(key):
                if self.store.retire(target) is RetireResult.DROPPED:
                    outcome.dropped.append(target.identifier)
                else:
                    outcome.not_found.append(target.identifier)
            return outcome
