"""SQLModel table for optimistic writes that survive an app restart."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel

from datetime_utils import utc_now


class PendingOp(SQLModel, table=True):
    correlation_id: str = Field(primary_key=True)
    seq: int = Field(default=0, index=True)
    kind: str
    collection: str = Field(index=True)
    payload: str
    status: str = Field(default="pending", index=True)
    attempt: int = Field(default=0)
    last_error: Optional[str] = None
    failure_kind: Optional[str] = None
    remote_record: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


__all__ = ["PendingOp"]
