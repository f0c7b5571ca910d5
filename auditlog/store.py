from __future__ import annotations
import logging
from datetime import datetime, timezone
from typing import List
from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError

from auditlog.partitioning import (
    DEFAULT_GRANULARITY_SECONDS, PARENT_TABLE, PartitionKey,
    parse_partition_name, partition_table_name, safe_identifier,
)
from auditlog.schemas import EnsureResult, RetireResult

logger = logging.getLogger(__name__)

# duplicate_table, unique_violation (concurrent CREATE of the same relation)
_ALREADY_EXISTS_SQLSTATES = {"42P07", "23505"}


def _bound_literal(ts: datetime) -> str:
    if not isinstance(ts, datetime):
        raise TypeError(f"partition bound must be a datetime, got {type(ts).__name__}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return "'" + ts.astimezone(timezone.utc).isoformat(sep=" ") + "'"


def create_partition_sql(key: PartitionKey, parent: str = PARENT_TABLE) -> str:
    return (
        f"CREATE TABLE {partition_table_name(key, parent)} "
        f"PARTITION OF {safe_identifier(parent)} "
        f"FOR VALUES FROM ({_bound_literal(key.start)}) TO ({_bound_literal(key.end)})"
    )


def drop_partition_sql(key: PartitionKey, parent: str = PARENT_TABLE) -> str:
    return f"DROP TABLE IF EXISTS {partition_table_name(key, parent)} CASCADE"


def _sqlstate(exc: DBAPIError):
    orig = exc.orig
    return getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)


class PartitionStore:
    def __init__(self, engine: Engine, parent: str = PARENT_TABLE,
                 granularity_seconds: int = DEFAULT_GRANULARITY_SECONDS):
        self.engine = engine
        self.parent = safe_identifier(parent)
        self.granularity_seconds = granularity_seconds

    def _exists(self, conn: Connection, name: str) -> bool:
        return conn.execute(text("SELECT to_regclass(:name) IS NOT NULL"), {"name": name}).scalar_one()

    def ensure(self, key: PartitionKey) -> EnsureResult:
        """Create the partition for ``key`` unless it is already there.

        Commits before returning, so a writer that calls this first can rely
        on the partition being visible to its own transaction.
        """
        name = partition_table_name(key, self.parent)
        ddl = create_partition_sql(key, self.parent)
        try:
            with self.engine.begin() as conn:
                if self._exists(conn, name):
                    logger.debug("partition already exists: %s", name)
                    return EnsureResult.ALREADY_EXISTS
                conn.execute(text(ddl))
        except DBAPIError as e:
            if _sqlstate(e) in _ALREADY_EXISTS_SQLSTATES:
                logger.debug("partition created concurrently: %s", name)
                return EnsureResult.ALREADY_EXISTS
            raise
        logger.info("partition ensured: %s [%s, %s)", name, key.start.isoformat(), key.end.isoformat())
        return EnsureResult.CREATED

    def retire(self, key: PartitionKey) -> RetireResult:
        name = partition_table_name(key, self.parent)
        with self.engine.begin() as conn:
            if not self._exists(conn, name):
                logger.info("partition not found, nothing to drop: %s", name)
                return RetireResult.NOT_FOUND
            conn.execute(text(drop_partition_sql(key, self.parent)))
        logger.info("dropped old partition: %s", name)
        return RetireResult.DROPPED

    def list_partitions(self) -> List[PartitionKey]:
        sql = text("""
        SELECT c.relname
        FROM pg_catalog.pg_inherits i
        JOIN pg_catalog.pg_class c ON c.oid = i.inhrelid
        JOIN pg_catalog.pg_class p ON p.oid = i.inhparent
        WHERE p.relname = :parent
        ORDER BY c.relname;
        """)
        with self.engine.connect() as conn:
            names = conn.execute(sql, {"parent": self.parent}).scalars().all()
        keys = []
        for name in names:
            key = parse_partition_name(name, self.parent, self.granularity_seconds)
            if key is None:
                logger.debug("ignoring child table with foreign name: %s", name)
                continue
            keys.append(key)
        return sorted(keys, key=lambda k: k.start)
