"""Contract of the remote data store the tracker submits optimistic writes to."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional, Protocol, Union


@dataclass(frozen=True)
class Success:
    confirmed_record: dict = field(default_factory=dict)


@dataclass(frozen=True)
class TransientFailure:
    reason: str = "temporarily unavailable"


@dataclass(frozen=True)
class ConflictFailure:
    remote_record: Optional[dict] = None
    reason: str = "record was changed by someone else"


@dataclass(frozen=True)
class ValidationFailure:
    reason: str = "rejected as invalid"


Outcome = Union[Success, TransientFailure, ConflictFailure, ValidationFailure]


# HTTP-like status codes the backend reports, grouped the same way as outcomes.
RETRYABLE_STATUS = {408, 425, 429, 500, 502, 503, 504}
CONFLICT_STATUS = {409, 412}


def outcome_from_status(status: int, body: Optional[dict] = None, reason: str = "") -> Outcome:
    """Classify a status code returned by an HTTP/RPC adapter."""
    body = body or {}
    if 200 <= status < 300:
        return Success(confirmed_record=body)
    if status in CONFLICT_STATUS:
        return ConflictFailure(remote_record=body or None, reason=reason or f"conflict ({status})")
    if status in RETRYABLE_STATUS or status >= 500 or status == 0:
        return TransientFailure(reason=reason or f"server unavailable ({status})")
    return ValidationFailure(reason=reason or f"rejected ({status})")


class RemoteDataStore(Protocol):
    async def submit(
        self,
        kind: str,
        collection: str,
        payload: dict,
        correlation_id: str,
    ) -> Outcome:
        ...


__all__ = [
    "CONFLICT_STATUS",
    "ConflictFailure",
    "Outcome",
    "RETRYABLE_STATUS",
    "RemoteDataStore",
    "Success",
    "TransientFailure",
    "ValidationFailure",
    "outcome_from_status",
]
