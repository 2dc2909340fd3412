"""Sync states of an optimistic write and the transitions between them."""
from __future__ import annotations

from enum import Enum
from typing import Dict, Optional, Tuple


class SyncStatus(str, Enum):
    PENDING = "pending"      # queued, not yet sent
    SYNCING = "syncing"      # in flight
    SYNCED = "synced"        # confirmed, shown briefly before removal
    ERROR = "error"          # submission failed
    CONFLICT = "conflict"    # remote diverged, needs a decision


class SyncTrigger(str, Enum):
    DISPATCH = "dispatch"
    SUCCEED = "succeed"
    FAIL_TRANSIENT = "fail_transient"
    FAIL_VALIDATION = "fail_validation"
    FAIL_CONFLICT = "fail_conflict"
    RETRY = "retry"
    AMEND = "amend"
    RESOLVE = "resolve"
    CONNECTIVITY_LOST = "connectivity_lost"


class FailureKind(str, Enum):
    TRANSIENT = "transient"
    VALIDATION = "validation"
    CONFLICT = "conflict"


TRANSITIONS: Dict[Tuple[SyncStatus, SyncTrigger], SyncStatus] = {
    (SyncStatus.PENDING, SyncTrigger.DISPATCH): SyncStatus.SYNCING,
    (SyncStatus.SYNCING, SyncTrigger.SUCCEED): SyncStatus.SYNCED,
    (SyncStatus.SYNCING, SyncTrigger.FAIL_TRANSIENT): SyncStatus.ERROR,
    (SyncStatus.SYNCING, SyncTrigger.FAIL_VALIDATION): SyncStatus.ERROR,
    (SyncStatus.SYNCING, SyncTrigger.FAIL_CONFLICT): SyncStatus.CONFLICT,
    (SyncStatus.SYNCING, SyncTrigger.CONNECTIVITY_LOST): SyncStatus.PENDING,
    (SyncStatus.ERROR, SyncTrigger.RETRY): SyncStatus.SYNCING,
    (SyncStatus.ERROR, SyncTrigger.AMEND): SyncStatus.SYNCING,
    (SyncStatus.CONFLICT, SyncTrigger.RESOLVE): SyncStatus.SYNCING,
}

# Triggers that count as another attempt within the same submission cycle.
COUNTED_TRIGGERS = frozenset({SyncTrigger.DISPATCH, SyncTrigger.RETRY})

# Triggers that put a new submission on the wire.
SUBMITTING_TRIGGERS = frozenset(
    {SyncTrigger.DISPATCH, SyncTrigger.RETRY, SyncTrigger.AMEND, SyncTrigger.RESOLVE}
)

# States from which a user may drop the entry for good.
DISCARDABLE = frozenset({SyncStatus.ERROR, SyncStatus.CONFLICT})


def next_status(status: SyncStatus, trigger: SyncTrigger) -> Optional[SyncStatus]:
    """Return the target state, or ``None`` when ``trigger`` is undefined for ``status``."""
    return TRANSITIONS.get((SyncStatus(status), SyncTrigger(trigger)))


def is_terminal_success(status: SyncStatus) -> bool:
    return status is SyncStatus.SYNCED


__all__ = [
    "COUNTED_TRIGGERS",
    "DISCARDABLE",
    "FailureKind",
    "SUBMITTING_TRIGGERS",
    "SyncStatus",
    "SyncTrigger",
    "TRANSITIONS",
    "is_terminal_success",
    "next_status",
]
