"""Name matching helpers shared by the planner, resolver and executor.

All comparisons are case-insensitive. Containment is bidirectional, so a
short name can match inside a longer one ("Al" inside "Alice"); callers
that need stricter matching should prefer exact hits first.
"""

import re
from typing import Any

from unidecode import unidecode

# Words that mark a group of people rather than an individual
TEAM_INDICATORS = frozenset({
    "team", "teams", "department", "dept", "group", "division", "unit",
    "committee", "board", "panel", "squad", "crew", "staff", "workforce",
})

# Titles that, on their own, name a role rather than a person
ROLE_TITLES = frozenset({
    "cto", "ceo", "cfo", "cmo", "coo", "cpo", "ciso", "vp", "svp", "evp",
    "director", "manager", "lead", "head", "president", "founder",
    "cofounder", "co-founder", "owner",
})

_DETERMINERS = frozenset({"the", "a", "an", "their", "our", "your", "his", "her", "its", "my"})

_PUNCT_RE = re.compile(r"[^\w\s-]")


def normalize_name(name: str) -> str:
    """Transliterate, lowercase, drop punctuation, collapse whitespace."""
    text = _PUNCT_RE.sub("", unidecode(name).lower())
    return " ".join(text.split())


def is_team_or_role(name: Any) -> bool:
    """True for conversational team/role mentions that must not become people.

    "Engineering Team", "Legal Department" and a bare "CTO" (or "their CTO")
    are all rejected; "Lisa from marketing" is not.
    """
    if not isinstance(name, str) or not name.strip():
        return False
    words = normalize_name(name).split()
    if any(w in TEAM_INDICATORS for w in words):
        return True
    words = [w for w in words if w not in _DETERMINERS]
    return bool(words) and all(w in ROLE_TITLES or w in ("of", "and") for w in words)


def contains_either_way(a: str, b: str) -> bool:
    a, b = a.lower().strip(), b.lower().strip()
    if not a or not b:
        return False
    return a in b or b in a


def plain_text(value: Any) -> str | None:
    """Best scalar string for a store value (strings, name/email/domain objects)."""
    if isinstance(value, str):
        return value
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, dict):
        for key in ("full_name", "email_address", "domain", "value", "title", "name"):
            inner = value.get(key)
            if isinstance(inner, str) and inner:
                return inner
    if isinstance(value, list) and value:
        return plain_text(value[0])
    return None


def build_search_key(criteria: dict[str, Any] | None) -> str:
    """Join criteria values into the creation-map/cache key component."""
    if not criteria:
        return "unknown"
    parts = [plain_text(v) for v in criteria.values()]
    return "|".join(p for p in parts if p) or "unknown"


def _strings_in(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value]
    if isinstance(value, dict):
        return [v for v in value.values() if isinstance(v, str)]
    return []


def value_matches(field_value: Any, search_value: Any) -> bool:
    """Deep containment of ``search_value`` in a stored field value.

    Strings match by substring; lists match if any item does; objects match
    if any of their string members does.
    """
    needle = plain_text(search_value)
    if not field_value or not needle:
        return False
    needle = needle.lower()
    items = field_value if isinstance(field_value, list) else [field_value]
    for item in items:
        for text in _strings_in(item):
            if needle in text.lower():
                return True
    return False


def record_matches_name(
    values: dict[str, Any],
    fields: list[str],
    term: str,
    exact: bool = False,
) -> bool:
    """Does any searchable field of a record match ``term``?"""
    term_lower = (term or "").lower().strip()
    if not term_lower:
        return False
    for field in fields:
        value = values.get(field)
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            text = plain_text(candidate) if isinstance(candidate, (str, dict)) else None
            if not text:
                continue
            text_lower = text.lower().strip()
            if exact:
                if text_lower == term_lower:
                    return True
            elif contains_either_way(text_lower, term_lower):
                return True
    return False
