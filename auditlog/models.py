from sqlalchemy import Column, BigInteger, Text, DateTime
from sqlalchemy.sql import func
from auditlog.db import Base
from auditlog.partitioning import PARENT_TABLE


class AuditLogRow(Base):
    __tablename__ = PARENT_TABLE
    id = Column(BigInteger, primary_key=True, autoincrement=True)
    method = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), primary_key=True, nullable=False, server_default=func.now())

    __table_args__ = {"postgresql_partition_by": "RANGE (created_at)"}
