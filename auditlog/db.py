from __future__ import annotations
import logging
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase
from auditlog.partitioning import PARENT_TABLE, safe_identifier

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def make_engine(url: str) -> Engine:
    return create_engine(url, pool_pre_ping=True)


def ping(engine: Engine) -> None:
    with engine.connect() as conn:
        conn.execute(text("SELECT 1"))


def init_schema(engine: Engine, reset: bool = False) -> None:
    """Create the partitioned parent table, optionally dropping it first.

    Dropping cascades to every child partition.
    """
    from auditlog import models  # noqa
    if reset:
        with engine.begin() as conn:
            conn.execute(text(f"DROP TABLE IF EXISTS {safe_identifier(PARENT_TABLE)} CASCADE"))
        logger.info("dropped table %s", PARENT_TABLE)
    Base.metadata.create_all(bind=engine)
    logger.info("ensured partitioned parent table %s", PARENT_TABLE)
