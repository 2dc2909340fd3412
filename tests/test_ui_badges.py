import flet as ft
import pytest

from core.settings import UI
from core.sync_status import SyncStatus
from services.projection import project
from services.remote import ConflictFailure, Success, TransientFailure
from ui.queue_status import QueueStatusPanel
from ui.sync_badge import build_badge, build_status_dot, category_colors


class _Event:
    def __init__(self, data):
        self.control = type("Control", (), {"data": data})()


def _texts(control):
    found = []
    stack = [control]
    while stack:
        current = stack.pop()
        if isinstance(current, ft.Text):
            found.append(current.value)
        content = getattr(current, "content", None)
        if content is not None:
            stack.append(content)
        stack.extend(getattr(current, "controls", None) or [])
    return found


def test_badge_without_retry_is_a_plain_container():
    badge = build_badge(project(SyncStatus.PENDING), on_retry=lambda e: None)
    assert isinstance(badge, ft.Container)
    assert badge.data == "waiting"
    assert "Pending sync" in _texts(badge)


def test_failed_badge_carries_retry_button():
    row = build_badge(project(SyncStatus.ERROR), on_retry=lambda e: None, data="abc")
    assert isinstance(row, ft.Row)
    badge, button = row.controls
    assert badge.data == "danger"
    assert button.text == "Retry"
    assert button.data == "abc"


def test_small_badge_uses_short_label():
    badge = build_badge(project(SyncStatus.CONFLICT), small=True)
    assert "Conflict" in _texts(badge)


def test_status_dot_uses_category_colour():
    dot = build_status_dot(SyncStatus.SYNCED)
    assert dot.bgcolor == UI.badges.success[0]
    assert dot.tooltip == "Synced"


def test_unknown_category_falls_back_to_waiting():
    assert category_colors("nope") == UI.badges.waiting


def test_panel_summarises_queue(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    panel.refresh()
    assert "Everything is synced" in _texts(panel.view)

    first = reconciler.record("create", {"weight": 350}, collection="weight_records")
    reconciler.record("update", {"liters": 12}, collection="milk_records")
    reconciler.mark_dispatched(first)
    reconciler.apply_outcome(first, TransientFailure("offline"))

    assert "1 waiting to sync, 1 need attention" in _texts(panel.view)
    assert len(panel._list_holder.controls) == 2

    panel.dispose()
    reconciler.record("delete", {"id": "x"})
    assert len(panel._list_holder.controls) == 2


@pytest.mark.asyncio
async def test_panel_discard_handler_drops_entry(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    cid = reconciler.record("create", {"weight": 350})
    reconciler.mark_dispatched(cid)
    reconciler.apply_outcome(cid, TransientFailure("offline"))

    await panel._on_discard(_Event(cid))

    assert cid not in reconciler.queue
    assert "Everything is synced" in _texts(panel.view)


@pytest.mark.asyncio
async def test_panel_cancel_handler_only_touches_pending(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    cid = reconciler.record("create", {"weight": 350})

    await panel._on_cancel(_Event(cid))
    assert cid not in reconciler.queue
    panel.dispose()

def _buttons(control):
    found = []
    stack = [control]
    while stack:
        current = stack.pop()
        if isinstance(current, ft.TextButton):
            found.append(current)
        content = getattr(current, "content", None)
        if content is not None:
            stack.append(content)
        stack.extend(getattr(current, "controls", None) or [])
    return found


def test_conflict_row_offers_merge(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    cid = reconciler.record("update", {"weight": 405})
    reconciler.mark_dispatched(cid)
    reconciler.apply_outcome(cid, ConflictFailure({"weight": 410}))

    labels = [b.text for b in _buttons(panel._list_holder) if b.data == cid]
    assert sorted(labels) == ["Keep mine", "Keep theirs", "Merge"]
    panel.dispose()


def test_bulk_buttons_follow_queue_contents(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    panel.refresh()
    assert panel._retry_all_btn.disabled is True
    assert panel._clear_btn.disabled is True

    cid = reconciler.record("create", {"weight": 350})
    reconciler.mark_dispatched(cid)
    reconciler.apply_outcome(cid, Success())
    assert panel._clear_btn.disabled is False
    assert panel._retry_all_btn.disabled is True
    panel.dispose()


@pytest.mark.asyncio
async def test_clear_completed_handler_empties_synced_rows(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    cid = reconciler.record("create", {"weight": 350})
    reconciler.mark_dispatched(cid)
    reconciler.apply_outcome(cid, Success())

    await panel._on_clear_synced(_Event(None))

    assert cid not in reconciler.queue
    assert "Everything is synced" in _texts(panel.view)
    await reconciler.aclose()


@pytest.mark.asyncio
async def test_retry_all_handler_resubmits_failures(make_reconciler):
    reconciler = make_reconciler()
    panel = QueueStatusPanel(reconciler)
    cid = reconciler.record("create", {"weight": 350})
    reconciler.mark_dispatched(cid)
    reconciler.apply_outcome(cid, TransientFailure("offline"))

    await panel._on_retry_all(_Event(None))
    await reconciler.wait_idle()

    assert reconciler.remote.calls[-1][3] == cid
    panel.dispose()
    await reconciler.aclose()
