from __future__ import annotations
from datetime import datetime
from enum import Enum
from typing import Literal, Tuple
from pydantic import BaseModel, ConfigDict

Method = Literal["POST", "GET", "DELETE", "PUT", "PATCH"]
METHODS: Tuple[str, ...] = ("POST", "GET", "DELETE", "PUT", "PATCH")


class LogRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    method: Method
    created_at: datetime


class EnsureResult(str, Enum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"


class RetireResult(str, Enum):
    DROPPED = "dropped"
    NOT_FOUND = "not_found"


class RetentionPolicy(str, Enum):
    SINGLE = "single"
    ALL = "all"
