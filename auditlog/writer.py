from __future__ import annotations
import logging, random
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import Table, insert
from sqlalchemy.engine import Engine

from auditlog.models import AuditLogRow
from auditlog.partitioning import derive
from auditlog.schemas import METHODS, LogRecord
from auditlog.store import PartitionStore

logger = logging.getLogger(__name__)


class BatchWriter:
    def __init__(self, engine: Engine, store: PartitionStore,
                 rng: Optional[random.Random] = None, table: Optional[Table] = None):
        self.engine = engine
        self.store = store
        self.methods = METHODS
        self.rng = rng or random.Random()
        self.table = table if table is not None else AuditLogRow.__table__

    def _record(self, ts: datetime) -> LogRecord:
        return LogRecord(method=self.rng.choice(self.methods), created_at=ts)

    def write_batch(self, size: int, ts: Optional[datetime] = None) -> int:
        """Insert ``size`` records stamped ``ts`` into their partition.

        The partition is ensured (and committed) before the insert
        transaction starts; the rows themselves commit all together or not
        at all.
        """
        if isinstance(size, bool) or not isinstance(size, int) or size <= 0:
            raise ValueError(f"batch size must be a positive integer, got {size!r}")
        if ts is None:
            ts = datetime.now(timezone.utc)
        elif ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)

        key = derive(ts, self.store.granularity_seconds)
        self.store.ensure(key)

        rows = [{"method": r.method, "created_at": r.created_at}
                for r in (self._record(ts) for _ in range(size))]
        with self.engine.begin() as conn:
            conn.execute(insert(self.table), rows)
        logger.info("inserted %d logs in batch into partition %s", size, key.identifier)
        return size
