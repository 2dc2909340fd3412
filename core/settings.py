"""Centralized application configuration."""
from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os
import sys


def get_default_data_dir(
    app_name: str,
    *,
    platform: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    home: Optional[Path] = None,
) -> Path:
    """Return an OS-specific user data directory for ``app_name``."""

    platform_id = (platform or sys.platform).lower()
    environ = dict(env or os.environ)
    home_dir = Path(home or Path.home())
    sanitized = app_name.strip() or "app"
    sanitized = sanitized.replace("/", "-").replace("\\", "-")

    if platform_id.startswith("win"):
        base = Path(environ.get("APPDATA") or home_dir / "AppData" / "Roaming")
    elif platform_id == "darwin":
        base = Path(environ.get("APPDATA") or home_dir / "Library" / "Application Support")
    else:
        base = Path(environ.get("XDG_DATA_HOME") or home_dir / ".local" / "share")

    return (base.expanduser() / sanitized)


APP_NAME = "HerdSync"


DATA_DIR = get_default_data_dir(APP_NAME)
STORAGE_DIR = DATA_DIR / "storage"
LOG_DIR = DATA_DIR / "logs"

for _dir in (DATA_DIR, STORAGE_DIR, LOG_DIR):
    _dir.mkdir(parents=True, exist_ok=True)


QUEUE_DB_PATH = STORAGE_DIR / "pending_ops.db"
SYNC_LOG_PATH = LOG_DIR / "sync.log"


@dataclass(frozen=True)
class SyncSettings:
    # seconds a confirmed entry stays visible as "synced" before removal
    grace_period_sec: float = 2.0
    max_attempts: int = 3
    retry_delays_sec: tuple[float, ...] = (1.0, 2.0, 4.0)
    submit_timeout_sec: float = 30.0
    max_queue_size: int = 50
    auto_retry: bool = True
    persist_queue: bool = True

    def backoff_delay(self, attempt: int) -> float:
        """Delay before the automatic retry that follows ``attempt`` failures."""
        if not self.retry_delays_sec:
            return 0.0
        index = max(attempt, 1) - 1
        if index >= len(self.retry_delays_sec):
            return self.retry_delays_sec[-1]
        return self.retry_delays_sec[index]


SYNC = SyncSettings()


@dataclass(frozen=True)
class BadgeColors:
    # (foreground, background, border), matching the badge palette of the web app
    waiting: tuple[str, str, str] = ("#B45309", "#FFFBEB", "#FDE68A")      # amber
    active: tuple[str, str, str] = ("#1D4ED8", "#EFF6FF", "#BFDBFE")      # blue
    success: tuple[str, str, str] = ("#15803D", "#F0FDF4", "#BBF7D0")       # green
    danger: tuple[str, str, str] = ("#DC2626", "#FEF2F2", "#FECACA")        # red
    attention: tuple[str, str, str] = ("#C2410C", "#FFF7ED", "#FED7AA")     # orange
    dot_size: int = 8


@dataclass(frozen=True)
class UISettings:
    badges: BadgeColors = BadgeColors()
    small_text_size: int = 11
    text_size: int = 13
    icon_size: int = 14
    small_icon_size: int = 12


UI = UISettings()


__all__ = [
    "APP_NAME",
    "DATA_DIR",
    "STORAGE_DIR",
    "LOG_DIR",
    "QUEUE_DB_PATH",
    "SYNC_LOG_PATH",
    "SYNC",
    "UI",
    "BadgeColors",
    "SyncSettings",
    "UISettings",
    "get_default_data_dir",
]
