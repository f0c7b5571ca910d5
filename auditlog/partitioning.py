from __future__ import annotations
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from typing import Optional
import re

DEFAULT_GRANULARITY_SECONDS = 60
PARENT_TABLE = "audit_logs"

_IDENT_RE = re.compile(r"^[a-z_][a-z0-9_]*$")
_MAX_IDENT_BYTES = 63

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class InvalidIdentifierError(ValueError):
    pass


@dataclass(frozen=True)
class PartitionKey:
    identifier: str
    start: datetime
    end: datetime

    def contains(self, ts: datetime) -> bool:
        return self.start <= _as_utc(ts) < self.end


def _as_utc(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def _identifier_format(granularity_seconds: int) -> str:
    return "%Y%m%d_%H%M" if granularity_seconds % 60 == 0 else "%Y%m%d_%H%M%S"


def _identifier(start: datetime, granularity_seconds: int) -> str:
    # strftime does not zero-pad years below 1000 on every platform
    ident = f"{start.year:04d}{start.month:02d}{start.day:02d}_{start.hour:02d}{start.minute:02d}"
    if granularity_seconds % 60:
        ident += f"{start.second:02d}"
    return ident


def derive(ts: datetime, granularity_seconds: int = DEFAULT_GRANULARITY_SECONDS) -> PartitionKey:
    """Map a timestamp to the partition bucket that holds it.

    The bucket start is the UTC epoch floored to ``granularity_seconds``; the
    identifier is a fixed-width encoding of the start, so string order and
    chronological order agree. The bucket has to lie inside the range of
    ``datetime``, so the last bucket of year 9999 raises ``ValueError``.
    """
    if granularity_seconds <= 0:
        raise ValueError("granularity_seconds must be positive")
    ts = _as_utc(ts)
    epoch = (ts - EPOCH) // timedelta(seconds=1)
    try:
        start = EPOCH + timedelta(seconds=epoch - epoch % granularity_seconds)
        end = start + timedelta(seconds=granularity_seconds)
    except OverflowError:
        raise ValueError(f"timestamp {ts.isoformat()} is outside the supported range") from None
    return PartitionKey(_identifier(start, granularity_seconds), start, end)


def safe_identifier(name: str) -> str:
    if not isinstance(name, str) or not _IDENT_RE.match(name):
        raise InvalidIdentifierError(f"invalid SQL identifier: {name!r}")
    if len(name.encode("utf-8")) > _MAX_IDENT_BYTES:
        raise InvalidIdentifierError(f"SQL identifier too long: {name!r}")
    return name


def partition_table_name(key: PartitionKey, parent: str = PARENT_TABLE) -> str:
    return safe_identifier(f"{safe_identifier(parent)}_{key.identifier}")


def parse_partition_name(name: str, parent: str = PARENT_TABLE,
                         granularity_seconds: int = DEFAULT_GRANULARITY_SECONDS) -> Optional[PartitionKey]:
    prefix = parent + "_"
    if not name.startswith(prefix):
        return None
    ident = name[len(prefix):]
    try:
        start = datetime.strptime(ident, _identifier_format(granularity_seconds)).replace(tzinfo=timezone.utc)
    except ValueError:
        return None
    key = derive(start, granularity_seconds)
    if key.identifier != ident:
        return None
    return key
