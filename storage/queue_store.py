"""Keeps the pending operation queue across sessions."""
from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, List, Optional

from sqlmodel import Session, select
from sqlalchemy import func

from core.logging_setup import LOGGER_NAME
from core.sync_status import FailureKind, SyncStatus
from datetime_utils import ensure_utc, utc_now
from models.pending_op import PendingOp
from services.pending_ops_queue import PendingOperation, PendingOpsQueue
from storage.db import get_session


logger = logging.getLogger(LOGGER_NAME)


def _serialise(data: Optional[Dict[str, Any]]) -> Optional[str]:
    if data is None:
        return None
    return json.dumps(data, ensure_ascii=False, sort_keys=True, default=str)


def _deserialise(payload: Optional[str]) -> Optional[Dict[str, Any]]:
    if not payload:
        return None
    data = json.loads(payload)
    if not isinstance(data, dict):
        raise ValueError("stored payload is not an object")
    return data


def _to_row(op: PendingOperation, seq: int) -> PendingOp:
    return PendingOp(
        correlation_id=op.correlation_id,
        seq=seq,
        kind=op.kind,
        collection=op.collection,
        payload=_serialise(op.payload) or "{}",
        status=op.status.value,
        attempt=op.attempt,
        last_error=op.last_error[:1000] if op.last_error else None,
        failure_kind=op.failure_kind.value if op.failure_kind else None,
        remote_record=_serialise(op.remote_record),
        created_at=op.created_at,
        updated_at=op.updated_at,
    )


def _from_row(row: PendingOp) -> PendingOperation:
    status = SyncStatus(row.status)
    # a submission that was in flight when the app stopped never got its answer
    if status is SyncStatus.SYNCING:
        status = SyncStatus.PENDING
    return PendingOperation(
        correlation_id=row.correlation_id,
        kind=row.kind,
        collection=row.collection,
        payload=_deserialise(row.payload) or {},
        status=status,
        attempt=row.attempt,
        last_error=row.last_error,
        failure_kind=FailureKind(row.failure_kind) if row.failure_kind else None,
        remote_record=_deserialise(row.remote_record),
        created_at=ensure_utc(row.created_at) or utc_now(),
        updated_at=ensure_utc(row.updated_at) or utc_now(),
    )


class QueueStore:
    """Snapshot persistence of a :class:`PendingOpsQueue` in SQLite."""

    def __init__(self, session_factory: Callable[[], Session] = get_session):
        self._session_factory = session_factory

    def save(self, queue: PendingOpsQueue) -> int:
        entries = queue.all()
        with self._session_factory() as session:
            for row in session.exec(select(PendingOp)).all():
                session.delete(row)
            session.flush()
            for seq, op in enumerate(entries):
                session.add(_to_row(op, seq))
            session.commit()
        return len(entries)

    def load(self) -> List[PendingOperation]:
        with self._session_factory() as session:
            rows = list(session.exec(select(PendingOp).order_by(PendingOp.seq.asc())))

        result: List[PendingOperation] = []
        for row in rows:
            try:
                result.append(_from_row(row))
            except (ValueError, TypeError) as exc:
                logger.warning("Skipping unreadable pending op %s: %s", row.correlation_id, exc)
        return result

    def restore_into(self, queue: PendingOpsQueue) -> int:
        restored = 0
        for op in self.load():
            if op.correlation_id in queue:
                continue
            queue.restore(op)
            restored += 1
        return restored

    def count(self) -> int:
        with self._session_factory() as session:
            return int(session.exec(select(func.count()).select_from(PendingOp)).one())

    def clear(self) -> None:
        with self._session_factory() as session:
            for row in session.exec(select(PendingOp)).all():
                session.delete(row)
            session.commit()


__all__ = ["QueueStore"]
