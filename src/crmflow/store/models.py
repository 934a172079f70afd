"""Pydantic models for records returned by the record store."""

import re
from typing import Any

from pydantic import BaseModel, Field

# 8-4-4-4-12 hex, the store's record identifier format
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)

_ID_KEYS = ("record_id", "task_id", "note_id", "email_id", "id")


def is_valid_record_id(value: Any) -> bool:
    """Structural validity check for a record identifier."""
    return isinstance(value, str) and bool(_UUID_RE.match(value))


def extract_record_id(raw: Any) -> str | None:
    """Unwrap the store's nested id structure (``{"record_id": "..."}``)."""
    if isinstance(raw, str):
        return raw
    if isinstance(raw, dict):
        for key in _ID_KEYS:
            value = raw.get(key)
            if isinstance(value, str):
                return value
    return None


class Record(BaseModel):
    """A stored record: identifier plus attribute values."""

    id: str
    values: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_api(cls, raw: dict[str, Any]) -> "Record":
        """Build from a store response item.

        Schema-backed records nest attributes under ``values``; auxiliary
        resources are flat, so every non-id key is treated as a value.
        """
        record_id = extract_record_id(raw.get("id")) or ""
        if isinstance(raw.get("values"), dict):
            values = raw["values"]
        else:
            values = {k: v for k, v in raw.items() if k != "id"}
        return cls(id=record_id, values=values)
