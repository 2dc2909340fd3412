from __future__ import annotations

import copy
import uuid
from collections import OrderedDict
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from core.settings import SYNC
from core.sync_status import FailureKind, SyncStatus
from datetime_utils import utc_now


VALID_KINDS = {"create", "update", "delete"}


@dataclass
class PendingOperation:
    correlation_id: str
    kind: str
    collection: str
    payload: dict
    status: SyncStatus = SyncStatus.PENDING
    attempt: int = 0
    last_error: Optional[str] = None
    failure_kind: Optional[FailureKind] = None
    remote_record: Optional[dict] = None
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    next_retry_at: Optional[datetime] = None

    def snapshot(self) -> "PendingOperation":
        return replace(
            self,
            payload=copy.deepcopy(self.payload),
            remote_record=copy.deepcopy(self.remote_record),
        )


def new_correlation_id() -> str:
    return uuid.uuid4().hex


class PendingOpsQueue:
    """In-memory queue of optimistic writes keyed by correlation id.

    Readers get snapshot copies. Status and attempt counters are changed only
    through :meth:`update`, which the reconciler owns.
    """

    def __init__(self, max_size: Optional[int] = None) -> None:
        self.max_size = SYNC.max_queue_size if max_size is None else max_size
        self._entries: "OrderedDict[str, PendingOperation]" = OrderedDict()

    def enqueue(self, kind: str, payload: dict, collection: str = "records") -> str:
        if kind not in VALID_KINDS:
            raise ValueError(f"Unsupported kind: {kind}")
        correlation_id = new_correlation_id()
        while correlation_id in self._entries:
            correlation_id = new_correlation_id()
        self._make_room()
        now = utc_now()
        self._entries[correlation_id] = PendingOperation(
            correlation_id=correlation_id,
            kind=kind,
            collection=collection,
            payload=copy.deepcopy(payload),
            created_at=now,
            updated_at=now,
        )
        return correlation_id

    def restore(self, op: PendingOperation) -> None:
        """Put back an entry loaded from storage, keeping its id and counters."""
        if op.correlation_id in self._entries:
            return
        self._make_room()
        self._entries[op.correlation_id] = op.snapshot()

    def get(self, correlation_id: str) -> Optional[PendingOperation]:
        entry = self._entries.get(correlation_id)
        return entry.snapshot() if entry else None

    def __contains__(self, correlation_id: object) -> bool:
        return correlation_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def list_by_status(self, status: SyncStatus) -> List[PendingOperation]:
        wanted = SyncStatus(status)
        return [entry.snapshot() for entry in self._entries.values() if entry.status is wanted]

    def all(self) -> List[PendingOperation]:
        return [entry.snapshot() for entry in self._entries.values()]

    def count(self) -> int:
        return len(self._entries)

    def counts(self) -> Dict[str, int]:
        result = {status.value: 0 for status in SyncStatus}
        for entry in self._entries.values():
            result[entry.status.value] += 1
        return result

    def remove(self, correlation_id: str) -> None:
        self._entries.pop(correlation_id, None)

    def update(self, correlation_id: str, **changes: Any) -> Optional[PendingOperation]:
        entry = self._entries.get(correlation_id)
        if entry is None:
            return None
        for key, value in changes.items():
            if not hasattr(entry, key) or key == "correlation_id":
                raise AttributeError(f"PendingOperation has no writable field {key!r}")
            setattr(entry, key, value)
        entry.updated_at = utc_now()
        return entry.snapshot()

    def is_full(self) -> bool:
        return self.max_size > 0 and len(self._entries) >= self.max_size

    def _make_room(self) -> None:
        if not self.is_full():
            return
        # Only confirmed entries may go; unconfirmed writes are never dropped.
        for correlation_id, entry in self._entries.items():
            if entry.status is SyncStatus.SYNCED:
                del self._entries[correlation_id]
                return


__all__ = ["PendingOpsQueue", "PendingOperation", "VALID_KINDS", "new_correlation_id"]
