"""Payload shape normalization.

Model output arrives in several wrappings (``{"data": {"values": ...}}``,
``{"values": ...}``, flat). Actions carry bare attribute values; the store
client adds the wire wrapper. Auxiliary resources additionally get their
required fields defaulted so the store never sees an invalid body.
"""

import logging
import re
from typing import Any

from crmflow.store.models import extract_record_id, is_valid_record_id

logger = logging.getLogger(__name__)

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Fields a task's primary text can be synthesized from, in order
_TASK_TEXT_SOURCES = ("content", "title", "name", "subject", "description", "body")


def hoist_values(payload: Any) -> tuple[dict[str, Any], list[dict[str, Any]] | None]:
    """Unwrap a model payload into ``(values, linked_records)``."""
    if not isinstance(payload, dict):
        return {}, None
    body = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    linked = body.get("linked_records")
    if isinstance(body.get("values"), dict):
        values = dict(body["values"])
    else:
        values = {k: v for k, v in body.items() if k != "linked_records"}
    return values, linked if isinstance(linked, list) else None


def normalize_auxiliary_values(slug: str, values: dict[str, Any]) -> dict[str, Any]:
    """Inject required defaults for fixed-shape resources. Idempotent."""
    data = dict(values)
    data.pop("values", None)
    if slug != "tasks":
        return data

    content = data.get("content")
    if not isinstance(content, str) or not content.strip():
        content = next(
            (data[k].strip() for k in _TASK_TEXT_SOURCES if isinstance(data.get(k), str) and data[k].strip()),
            "Follow up",
        )
    data["content"] = content

    due_date = data.pop("due_date", None)
    deadline = data.get("deadline_at") or due_date
    if isinstance(deadline, str) and _DATE_ONLY_RE.match(deadline):
        deadline = f"{deadline}T00:00:00Z"
    data["deadline_at"] = deadline or None

    data["format"] = "plaintext"
    if not isinstance(data.get("is_completed"), bool):
        data["is_completed"] = False
    if not isinstance(data.get("linked_records"), list):
        data["linked_records"] = []
    if not isinstance(data.get("assignees"), list):
        data["assignees"] = []

    # Fallback-template fields the task body has no slot for
    related = data.pop("related_record", None)
    if isinstance(related, dict):
        data["linked_records"].append(related)
    elif isinstance(related, list):
        data["linked_records"].extend(r for r in related if isinstance(r, dict))
    for key in ("title", "name", "subject", "description", "body"):
        data.pop(key, None)
    return data


def strip_lookup_values(value: Any) -> Any:
    """Remove every ``lookup_value`` key, recursively."""
    if isinstance(value, list):
        return [strip_lookup_values(v) for v in value]
    if isinstance(value, dict):
        return {k: strip_lookup_values(v) for k, v in value.items() if k != "lookup_value"}
    return value


def finalize_auxiliary_values(slug: str, values: dict[str, Any]) -> dict[str, Any]:
    """Post-resolution pass: keep only resolved links, without lookup values."""
    data = normalize_auxiliary_values(slug, values)
    if slug == "tasks":
        links = []
        for link in data["linked_records"]:
            if not isinstance(link, dict) or not link.get("target_object"):
                continue
            record_id = extract_record_id(link.get("target_record_id"))
            if not is_valid_record_id(record_id):
                logger.debug(f"Dropping unresolved task link to {link.get('target_object')}")
                continue
            links.append({"target_object": link["target_object"], "target_record_id": record_id})
        data["linked_records"] = links
    return strip_lookup_values(data)
