"""Status -> badge mapping consumed by presentational layers."""
from __future__ import annotations

from dataclasses import dataclass

from core.sync_status import FailureKind, SyncStatus
from services.pending_ops_queue import PendingOperation


@dataclass(frozen=True)
class Projection:
    label: str
    visual_category: str
    retryable: bool
    short_label: str = ""
    icon: str = ""


def project(status: SyncStatus) -> Projection:
    match SyncStatus(status):
        case SyncStatus.PENDING:
            return Projection("Pending sync", "waiting", False, "Pending", "schedule")
        case SyncStatus.SYNCING:
            return Projection("Syncing...", "active", False, "Syncing", "sync")
        case SyncStatus.SYNCED:
            return Projection("Synced", "success", False, "Synced", "check")
        case SyncStatus.ERROR:
            return Projection("Sync failed", "danger", True, "Failed", "error_outline")
        case SyncStatus.CONFLICT:
            return Projection("Needs review", "attention", False, "Conflict", "warning_amber")
    raise AssertionError(f"unhandled sync status: {status!r}")


def project_operation(op: PendingOperation) -> Projection:
    """Projection for a concrete queue entry.

    A validation failure cannot be fixed by resubmitting the same payload, so
    it is shown as needing an edit and is not retryable.
    """
    base = project(op.status)
    if op.status is SyncStatus.ERROR and op.failure_kind is FailureKind.VALIDATION:
        return Projection("Needs edit", base.visual_category, False, "Edit", "edit")
    return base


def display_label(projection: Projection, *, short: bool = False) -> str:
    if short and projection.short_label:
        return projection.short_label
    return projection.label


__all__ = ["Projection", "display_label", "project", "project_operation"]
