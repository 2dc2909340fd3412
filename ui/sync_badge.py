# herdsync/ui/sync_badge.py
from __future__ import annotations

from typing import Callable, Optional

import flet as ft

from core.settings import UI
from core.sync_status import SyncStatus
from services.projection import Projection, display_label, project


def category_colors(category: str) -> tuple[str, str, str]:
    """(foreground, background, border) for a visual category."""
    return getattr(UI.badges, category, UI.badges.waiting)


def _icon(projection: Projection):
    return getattr(ft.Icons, projection.icon.upper(), ft.Icons.INFO_OUTLINE)


def build_badge(
    projection: Projection,
    on_retry: Optional[Callable] = None,
    data=None,
    *,
    small: bool = False,
) -> ft.Control:
    fg, bg, border = category_colors(projection.visual_category)
    badge = ft.Container(
        content=ft.Row(
            controls=[
                ft.Icon(_icon(projection), size=UI.small_icon_size if small else UI.icon_size, color=fg),
                ft.Text(
                    display_label(projection, short=small),
                    size=UI.small_text_size if small else UI.text_size,
                    weight=ft.FontWeight.W_500,
                    color=fg,
                ),
            ],
            spacing=4,
            tight=True,
            vertical_alignment=ft.CrossAxisAlignment.CENTER,
        ),
        bgcolor=bg,
        border=ft.border.all(1, border),
        border_radius=999,
        padding=ft.padding.symmetric(horizontal=6 if small else 10, vertical=2 if small else 4),
        data=projection.visual_category,
    )
    if not (projection.retryable and on_retry):
        return badge
    # only failed submissions get a retry button next to the badge
    return ft.Row(
        controls=[
            badge,
            ft.TextButton(
                text="Retry",
                data=data,
                on_click=on_retry,
                style=ft.ButtonStyle(padding=ft.padding.symmetric(horizontal=8, vertical=0)),
            ),
        ],
        spacing=4,
        tight=True,
        vertical_alignment=ft.CrossAxisAlignment.CENTER,
    )


def build_status_dot(status: SyncStatus) -> ft.Control:
    projection = project(status)
    fg, _, _ = category_colors(projection.visual_category)
    size = UI.badges.dot_size
    return ft.Container(
        width=size,
        height=size,
        bgcolor=fg,
        border_radius=size,
        tooltip=projection.label,
    )


__all__ = ["build_badge", "build_status_dot", "category_colors"]
