"""Placeholder references and the run-scoped creation map."""

import logging
from typing import Any

from pydantic import BaseModel

from crmflow.resolve.matching import contains_either_way
from crmflow.store.models import is_valid_record_id

logger = logging.getLogger(__name__)

PLACEHOLDER_ID = "PLACEHOLDER_UUID"


class PlaceholderReference(BaseModel):
    """Link-by-name to a record that may not exist yet."""

    target_object: str
    lookup_value: str

    @classmethod
    def from_value(cls, value: Any, default_target: str | None = None) -> "PlaceholderReference | None":
        """Recognise a wire placeholder.

        A dict is a placeholder when it carries a ``lookup_value`` and its
        ``target_record_id`` is the placeholder marker, missing, or not a
        structurally valid id.
        """
        if not isinstance(value, dict):
            return None
        lookup = value.get("lookup_value")
        if not isinstance(lookup, str) or not lookup.strip():
            return None
        record_id = value.get("target_record_id")
        if record_id != PLACEHOLDER_ID and is_valid_record_id(record_id):
            return None
        target = value.get("target_object") or default_target
        if not target:
            return None
        return cls(target_object=target, lookup_value=lookup.strip())

    def to_wire(self) -> dict[str, str]:
        return {
            "target_object": self.target_object,
            "target_record_id": PLACEHOLDER_ID,
            "lookup_value": self.lookup_value,
        }


def is_placeholder(value: Any) -> bool:
    """True for any dict that still needs resolution before dispatch."""
    return (
        isinstance(value, dict)
        and "lookup_value" in value
        and not is_valid_record_id(value.get("target_record_id"))
    )


class CreationMap:
    """``object_slug:search_key -> record_id`` for one ``process_text`` call.

    Never shared between invocations.
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def get(self, key: str) -> str | None:
        return self._entries.get(key)

    def record(self, object_slug: str, search_key: str, record_id: str) -> None:
        self._entries[f"{object_slug}:{search_key}"] = record_id
        logger.debug(f"Creation map: {object_slug}:{search_key} -> {record_id}")

    def find(self, object_slug: str, lookup_value: str) -> str | None:
        """First entry for ``object_slug`` whose key contains, or is
        contained in, ``lookup_value``."""
        prefix = f"{object_slug}:"
        for key, record_id in self._entries.items():
            if key.startswith(prefix) and contains_either_way(key[len(prefix):], lookup_value):
                return record_id
        return None

    def items(self) -> list[tuple[str, str]]:
        return list(self._entries.items())
