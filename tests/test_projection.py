import pytest

from core.sync_status import FailureKind, SyncStatus
from services.pending_ops_queue import PendingOperation
from services.projection import display_label, project, project_operation


@pytest.mark.parametrize(
    "status, label, category",
    [
        (SyncStatus.PENDING, "Pending sync", "waiting"),
        (SyncStatus.SYNCING, "Syncing...", "active"),
        (SyncStatus.SYNCED, "Synced", "success"),
        (SyncStatus.ERROR, "Sync failed", "danger"),
        (SyncStatus.CONFLICT, "Needs review", "attention"),
    ],
)
def test_every_status_has_a_badge(status, label, category):
    projection = project(status)
    assert projection.label == label
    assert projection.visual_category == category


def test_only_error_is_retryable():
    assert [s for s in SyncStatus if project(s).retryable] == [SyncStatus.ERROR]


def test_validation_error_is_shown_as_needing_an_edit():
    op = PendingOperation(
        correlation_id="abc",
        kind="create",
        collection="milk_records",
        payload={"liters": -1},
        status=SyncStatus.ERROR,
        failure_kind=FailureKind.VALIDATION,
    )
    projection = project_operation(op)
    assert projection.label == "Needs edit"
    assert projection.retryable is False

    op.failure_kind = FailureKind.TRANSIENT
    assert project_operation(op) == project(SyncStatus.ERROR)


def test_short_labels():
    assert display_label(project(SyncStatus.ERROR), short=True) == "Failed"
    assert display_label(project(SyncStatus.CONFLICT), short=True) == "Conflict"
    assert display_label(project(SyncStatus.SYNCING)) == "Syncing..."


def test_unknown_status_is_refused():
    with pytest.raises(ValueError):
        project("archived")
