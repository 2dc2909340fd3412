from __future__ import annotations

from typing import Optional

import flet as ft

from core.sync_status import DISCARDABLE, SyncStatus
from services.pending_ops_queue import PendingOperation
from services.projection import project_operation
from services.reconciler import Reconciler, ResolutionChoice
from ui.sync_badge import build_badge


class QueueStatusPanel:
    """Lists optimistic writes that are not confirmed yet.

    Handlers are coroutines so flet runs them on its event loop, where the
    reconciler schedules its submissions.
    """

    def __init__(self, reconciler: Reconciler, page: Optional[ft.Page] = None, *, title: str = "Pending changes"):
        self.reconciler = reconciler
        self.page = page
        self._summary = ft.Text("", size=12, color=ft.Colors.BLUE_GREY_400)
        self._list_holder = ft.Column(spacing=8)
        self._retry_all_btn = ft.TextButton(
            text="Retry all failed", icon=ft.Icons.REFRESH, on_click=self._on_retry_all
        )
        self._clear_btn = ft.TextButton(
            text="Clear completed", icon=ft.Icons.CLEAR_ALL, on_click=self._on_clear_synced
        )
        self.view = ft.Card(
            content=ft.Container(
                padding=12,
                content=ft.Column(
                    [
                        ft.Text(title, size=18, weight=ft.FontWeight.W_600),
                        self._summary,
                        ft.Row([self._retry_all_btn, self._clear_btn], spacing=8),
                        self._list_holder,
                    ],
                    spacing=12,
                ),
            )
        )
        self._unsubscribe = reconciler.subscribe(self._on_status_change)

    def refresh(self) -> None:
        entries = self.reconciler.queue.all()
        counts = self.reconciler.queue.counts()
        waiting = counts[SyncStatus.PENDING.value] + counts[SyncStatus.SYNCING.value]
        needs_action = counts[SyncStatus.ERROR.value] + counts[SyncStatus.CONFLICT.value]
        self._summary.value = f"{waiting} waiting to sync, {needs_action} need attention"
        self._retry_all_btn.disabled = counts[SyncStatus.ERROR.value] == 0
        self._clear_btn.disabled = counts[SyncStatus.SYNCED.value] == 0
        if entries:
            self._list_holder.controls = [self._build_item(op) for op in entries]
        else:
            self._list_holder.controls = [self._empty_state()]
        if self.page is not None:
            self.page.update()

    def dispose(self) -> None:
        self._unsubscribe()

    # ---------- Rendering ----------
    def _build_item(self, op: PendingOperation) -> ft.Control:
        projection = project_operation(op)
        title = ft.Text(f"{op.kind} · {op.collection}", size=14, weight=ft.FontWeight.W_600)
        subtitle = ft.Text(
            op.last_error or f"attempt {op.attempt}",
            size=12,
            color=ft.Colors.BLUE_GREY_400,
            max_lines=1,
            overflow=ft.TextOverflow.ELLIPSIS,
        )

        actions: list[ft.Control] = []
        if op.status is SyncStatus.CONFLICT:
            actions.append(
                ft.TextButton(text="Keep mine", data=op.correlation_id, on_click=self._on_keep_local)
            )
            actions.append(
                ft.TextButton(text="Keep theirs", data=op.correlation_id, on_click=self._on_keep_remote)
            )
            actions.append(
                ft.TextButton(text="Merge", data=op.correlation_id, on_click=self._on_merge)
            )
        if op.status in DISCARDABLE:
            actions.append(
                ft.IconButton(
                    icon=ft.Icons.DELETE_OUTLINE,
                    tooltip="Discard",
                    data=op.correlation_id,
                    on_click=self._on_discard,
                )
            )
        elif op.status is SyncStatus.PENDING:
            actions.append(
                ft.IconButton(
                    icon=ft.Icons.CLOSE,
                    tooltip="Cancel",
                    data=op.correlation_id,
                    on_click=self._on_cancel,
                )
            )

        return ft.Container(
            content=ft.Row(
                [
                    ft.Column([title, subtitle], spacing=4, expand=True),
                    build_badge(projection, self._on_retry, op.correlation_id, small=True),
                    ft.Row(actions, spacing=4, alignment=ft.MainAxisAlignment.END),
                ],
                vertical_alignment=ft.CrossAxisAlignment.CENTER,
                alignment=ft.MainAxisAlignment.SPACE_BETWEEN,
            ),
            padding=ft.padding.symmetric(horizontal=12, vertical=10),
            bgcolor=ft.Colors.SURFACE,
            border_radius=10,
            border=ft.border.all(1, ft.Colors.with_opacity(0.05, ft.Colors.ON_SURFACE)),
            data=op.correlation_id,
        )

    def _empty_state(self) -> ft.Control:
        return ft.Row(
            [
                ft.Icon(ft.Icons.CHECK_CIRCLE_OUTLINE, color=ft.Colors.BLUE_GREY_300),
                ft.Text("Everything is synced", color=ft.Colors.BLUE_GREY_400),
            ],
            spacing=8,
        )

    # ---------- Events ----------
    def _on_status_change(self, correlation_id, old, new) -> None:
        self.refresh()

    async def _on_retry(self, e) -> None:
        self.reconciler.retry(e.control.data)

    async def _on_discard(self, e) -> None:
        self.reconciler.discard(e.control.data)

    async def _on_cancel(self, e) -> None:
        self.reconciler.cancel(e.control.data)

    async def _on_keep_local(self, e) -> None:
        self.reconciler.resolve(e.control.data, ResolutionChoice.KEEP_LOCAL)

    async def _on_keep_remote(self, e) -> None:
        self.reconciler.resolve(e.control.data, ResolutionChoice.KEEP_REMOTE)

    async def _on_merge(self, e) -> None:
        self.reconciler.resolve(e.control.data, ResolutionChoice.MERGED)

    async def _on_retry_all(self, e) -> None:
        self.reconciler.retry_all_failed()

    async def _on_clear_synced(self, e) -> None:
        self.reconciler.clear_synced()


__all__ = ["QueueStatusPanel"]
