"""Field-level merge of a local write with the server copy it conflicted with."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from datetime_utils import ensure_utc, parse_iso_utc


TIMESTAMP_FIELDS = ("updated_at", "modified_at")


def record_timestamp(record: Optional[Dict[str, Any]]) -> Optional[datetime]:
    """Last-modified time carried by a server record, if it has one."""
    if not record:
        return None
    for key in TIMESTAMP_FIELDS:
        value = record.get(key)
        if isinstance(value, datetime):
            return ensure_utc(value)
        if isinstance(value, str):
            parsed = parse_iso_utc(value)
            if parsed is not None:
                return parsed
    return None


def merge_records(
    local: Dict[str, Any],
    remote: Dict[str, Any],
    local_time: Optional[datetime] = None,
    remote_time: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Server record as the base, newer non-null local fields on top.

    Local fields win unless the server copy is known to be newer. With either
    timestamp missing the local edit is taken as the newer one.
    """
    merged = dict(remote)
    local_time = ensure_utc(local_time)
    remote_time = ensure_utc(remote_time)
    if local_time is not None and remote_time is not None and local_time <= remote_time:
        return merged
    for key, value in local.items():
        if value is not None:
            merged[key] = value
    return merged


__all__ = ["TIMESTAMP_FIELDS", "merge_records", "record_timestamp"]
