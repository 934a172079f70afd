"""Value coercion from model output to template-conformant shapes.

One handler per ValueKind. ``coerce_field`` returns ``None`` when a value
cannot be made to fit, in which case the caller drops the field.
"""

import logging
import re
from collections.abc import Callable
from datetime import date
from typing import Any

from crmflow.resolve.models import PLACEHOLDER_ID, PlaceholderReference
from crmflow.schema.models import TemplateField, ValueKind
from crmflow.store.models import is_valid_record_id

logger = logging.getLogger(__name__)

# Keyword table for pipeline stages the store may call something else
STAGE_KEYWORDS: dict[str, tuple[str, ...]] = {
    "Lead": ("lead", "qualified", "first call", "initial discussion", "introduction", "prospect"),
    "In Progress": (
        "in progress", "discovery", "demo", "demonstration", "presentation",
        "proposal", "negotiation", "contract", "terms",
    ),
    "Won": ("won", "closed won", "signed", "closed", "deal done", "approved"),
    "Lost": ("lost", "closed lost", "went with", "chose", "not moving forward", "lost to"),
}

_MULTIPLIERS = {"k": 1_000, "m": 1_000_000, "mm": 1_000_000, "b": 1_000_000_000, "bn": 1_000_000_000}
_NUMBER_RE = re.compile(r"(-?\d+(?:\.\d+)?)\s*(k|mm|m|bn|b)?\b", re.IGNORECASE)
_QUARTER_RE = re.compile(r"\bq([1-4])\b", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(20\d{2})\b")
_QUARTER_END = {1: (3, 31), 2: (6, 30), 3: (9, 30), 4: (12, 31)}


# ----------------------------------------------------------------------
# Scalar parsers
# ----------------------------------------------------------------------


def parse_number(value: Any) -> float | None:
    """``"$150K"`` -> 150000.0, ``"1.2m"`` -> 1200000.0, ``"150,000"`` -> 150000.0."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, dict):
        for key in ("value", "currency_value", "amount"):
            if key in value:
                return parse_number(value[key])
        return None
    if not isinstance(value, str):
        return None
    match = _NUMBER_RE.search(value.replace(",", ""))
    if not match:
        return None
    number = float(match.group(1))
    suffix = (match.group(2) or "").lower()
    return number * _MULTIPLIERS.get(suffix, 1)


def parse_date(value: Any, today: date | None = None) -> str | None:
    """Quarter mentions become the quarter's last day; ISO dates pass through.

    ``"Q1"`` -> ``"<this year>-03-31"``, ``"Q3 next year"`` -> next year's
    ``09-30``. An explicit year (``"Q2 2027"``) wins over "next year".
    """
    if not isinstance(value, str) or not value.strip():
        return None
    today = today or date.today()
    text = value.strip()

    quarter = _QUARTER_RE.search(text)
    if quarter:
        explicit_year = _YEAR_RE.search(text)
        if explicit_year:
            year = int(explicit_year.group(1))
        else:
            year = today.year + (1 if "next year" in text.lower() else 0)
        month, day = _QUARTER_END[int(quarter.group(1))]
        return date(year, month, day).isoformat()

    try:
        date.fromisoformat(text[:10])
    except ValueError:
        logger.debug(f"Unparseable date {text!r}")
        return None
    return text


def map_to_option(value: Any, options: list[str]) -> str | None:
    """Map a free-form option string onto one of ``options``.

    Exact (case-insensitive), then containment either way, then the stage
    keyword table, then a discovery/qualified stage if one exists.
    """
    if isinstance(value, dict):
        value = value.get("title") or value.get("option") or value.get("status")
    if not isinstance(value, str) or not value.strip():
        return None
    if not options:
        return value.strip()

    wanted = value.lower().strip()
    for option in options:
        if option.lower() == wanted:
            return option
    for option in options:
        lower = option.lower()
        if lower in wanted or wanted in lower:
            return option

    # Longest indicator first so "closed lost" isn't read as "closed"
    indicators = sorted(
        ((ind, stage) for stage, inds in STAGE_KEYWORDS.items() for ind in inds),
        key=lambda pair: len(pair[0]),
        reverse=True,
    )
    by_lower = {o.lower(): o for o in options}
    for indicator, stage in indicators:
        if indicator in wanted and stage.lower() in by_lower:
            return by_lower[stage.lower()]

    for option in options:
        if "discovery" in option.lower() or "qualified" in option.lower():
            logger.debug(f"Using fallback option {option!r} for {value!r}")
            return option
    return None


def split_person_name(full_name: str) -> dict[str, str]:
    parts = full_name.strip().split()
    first = parts[0] if parts else ""
    last = " ".join(parts[1:])
    return {"first_name": first, "last_name": last, "full_name": full_name.strip()}


# ----------------------------------------------------------------------
# Per-kind handlers
# ----------------------------------------------------------------------


def _text(field: TemplateField, value: Any, today: date) -> Any:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    return value


def _email(field: TemplateField, value: Any, today: date) -> Any:
    if isinstance(value, str):
        return {"email_address": value.strip()} if "@" in value else None
    if isinstance(value, dict) and value.get("email_address"):
        return value
    return None


def _phone(field: TemplateField, value: Any, today: date) -> Any:
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        return {"original_phone_number": str(value).strip()}
    if isinstance(value, dict) and value.get("original_phone_number"):
        return value
    return None


def _person_name(field: TemplateField, value: Any, today: date) -> Any:
    if isinstance(value, str):
        return split_person_name(value) if value.strip() else None
    if isinstance(value, dict):
        if value.get("full_name"):
            return {**split_person_name(value["full_name"]), **{k: v for k, v in value.items() if v}}
        full = " ".join(p for p in (value.get("first_name"), value.get("last_name")) if p)
        return {**value, "full_name": full} if full else None
    return None


def _location(field: TemplateField, value: Any, today: date) -> Any:
    if isinstance(value, str):
        return {"line_1": value.strip()} if value.strip() else None
    if isinstance(value, dict):
        return value
    return None


def _reference(field: TemplateField, value: Any, today: date) -> Any:
    """References always leave as placeholders or already-valid links."""
    if isinstance(value, str):
        if not value.strip() or not field.reference_target:
            return None
        return PlaceholderReference(
            target_object=field.reference_target, lookup_value=value.strip()
        ).to_wire()
    if not isinstance(value, dict):
        return None
    if is_valid_record_id(value.get("target_record_id")) and value.get("target_record_id") != PLACEHOLDER_ID:
        return value
    ref = PlaceholderReference.from_value(value, default_target=field.reference_target)
    return ref.to_wire() if ref else None


def _select(field: TemplateField, value: Any, today: date) -> Any:
    return map_to_option(value, field.options)


def _number(field: TemplateField, value: Any, today: date) -> Any:
    return parse_number(value)


def _date(field: TemplateField, value: Any, today: date) -> Any:
    return parse_date(value, today)


def _other(field: TemplateField, value: Any, today: date) -> Any:
    return value


COERCERS: dict[ValueKind, Callable[[TemplateField, Any, date], Any]] = {
    ValueKind.TEXT: _text,
    ValueKind.EMAIL: _email,
    ValueKind.PHONE: _phone,
    ValueKind.PERSON_NAME: _person_name,
    ValueKind.LOCATION: _location,
    ValueKind.REFERENCE: _reference,
    ValueKind.SELECT: _select,
    ValueKind.NUMBER: _number,
    ValueKind.DATE: _date,
    ValueKind.OTHER: _other,
}


def coerce_field(field: TemplateField, value: Any, today: date | None = None) -> Any:
    """Coerce one attribute value to its template shape.

    Multivalue fields always come back as lists; single-valued fields given
    a list keep their first coercible item. Returns ``None`` to mean "drop".
    """
    today = today or date.today()
    handler = COERCERS[field.kind]
    if field.multivalue:
        items = value if isinstance(value, list) else [value]
        coerced = [c for c in (handler(field, item, today) for item in items) if c is not None]
        return coerced or None
    if isinstance(value, list):
        for item in value:
            coerced = handler(field, item, today)
            if coerced is not None:
                return coerced
        return None
    return handler(field, value, today)
