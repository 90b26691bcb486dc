from datetime import datetime, timezone
from typing import Any, Dict, Mapping


def to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def touch(record: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    """Return a copy of record with updated_at set to now. The input is left untouched."""
    stamped = dict(record)
    stamped["updated_at"] = to_iso(now)
    return stamped


def stamp_new(record: Mapping[str, Any], now: datetime) -> Dict[str, Any]:
    stamped = touch(record, now)
    stamped.setdefault("created_at", stamped["updated_at"])
    return stamped
