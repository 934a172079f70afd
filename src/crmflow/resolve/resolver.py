"""Placeholder resolution: link-by-name to real record identifiers.

Resolution order, each tried only if the previous missed:
  1. the run's CreationMap (bidirectional containment on search keys)
  2. the process-wide resolution cache (direct key, then containment)
  3. a live search of the target object, exact matches before partial ones

Only structurally valid identifiers are accepted. An unresolvable
reference drops its field with a warning; it never fails the action.
"""

import logging
from typing import Any

from crmflow.cache import ResponseCache
from crmflow.resolve.matching import (
    build_search_key,
    contains_either_way,
    plain_text,
    record_matches_name,
)
from crmflow.resolve.models import CreationMap, PlaceholderReference, is_placeholder
from crmflow.schema.catalog import SchemaCatalog
from crmflow.schema.models import Template
from crmflow.store.base import RecordStore, RecordStoreError
from crmflow.store.models import is_valid_record_id

logger = logging.getLogger(__name__)


class ReferenceResolver:
    """Resolves placeholders and owns the resolution cache's key scheme.

    Cache keys are ``object_slug:value``; values are record ids.
    """

    def __init__(
        self,
        store: RecordStore,
        catalog: SchemaCatalog,
        cache: ResponseCache,
        query_limit: int = 100,
    ):
        self.store = store
        self.catalog = catalog
        self.cache = cache
        self.query_limit = query_limit
        self.live_searches = 0

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, placeholder: PlaceholderReference, creation_map: CreationMap) -> str | None:
        """Record id for ``placeholder``, or None if it can't be resolved."""
        target, lookup = placeholder.target_object, placeholder.lookup_value

        for source, find in (("creation map", creation_map.find), ("cache", self.find_cached)):
            record_id = find(target, lookup)
            if is_valid_record_id(record_id):
                logger.debug(f"Resolved {target}:{lookup} from {source}")
                return record_id
            if record_id:
                logger.warning(f"Ignoring invalid record id {record_id!r} in {source} for {target}:{lookup}")

        record_id = await self.search_by_terms(target, [lookup])
        if not is_valid_record_id(record_id):
            if record_id:
                logger.warning(f"Rejecting invalid record id {record_id!r} for {target}:{lookup}")
            return None
        self.remember(target, lookup, record_id)
        return record_id

    async def resolve_value(self, value: Any, creation_map: CreationMap, default_target: str | None = None) -> Any:
        """Resolve a single placeholder or a list containing placeholders.

        Returns None when nothing usable is left.
        """
        if isinstance(value, list):
            if not any(is_placeholder(v) for v in value):
                return value
            resolved = []
            for item in value:
                result = await self.resolve_value(item, creation_map, default_target)
                if result is not None:
                    resolved.append(result)
            return resolved or None

        if not is_placeholder(value):
            return value
        ref = PlaceholderReference.from_value(value, default_target=default_target)
        if ref is None:
            return None
        record_id = await self.resolve(ref, creation_map)
        if record_id is None:
            return None
        return {"target_object": ref.target_object, "target_record_id": record_id}

    async def resolve_payload(
        self,
        values: dict[str, Any],
        creation_map: CreationMap,
        template: Template | None = None,
    ) -> dict[str, Any]:
        """Copy of ``values`` with every placeholder resolved or its field dropped."""
        template = template or {}
        resolved: dict[str, Any] = {}
        for field_slug, value in values.items():
            if value is None:
                resolved[field_slug] = None
                continue
            field = template.get(field_slug)
            default_target = field.reference_target if field else None
            result = await self.resolve_value(value, creation_map, default_target)
            if result is None:
                logger.warning(f"Could not resolve reference for {field_slug}, skipping field")
                continue
            resolved[field_slug] = result
        return resolved

    # ------------------------------------------------------------------
    # Live search
    # ------------------------------------------------------------------

    async def search_by_terms(self, object_slug: str, terms: list[str]) -> str | None:
        """Score records of ``object_slug`` against ``terms``.

        Exact matches on any searchable field win over containment.
        Store errors count as a miss.
        """
        terms = [t for t in terms if isinstance(t, str) and t.strip()]
        if not terms:
            return None
        self.live_searches += 1
        try:
            records = await self.store.query_records(object_slug, limit=self.query_limit)
        except RecordStoreError as e:
            logger.warning(f"Search of {object_slug} failed: {e}")
            return None

        fields = self.catalog.searchable_fields(object_slug)
        for exact in (True, False):
            for term in terms:
                for record in records:
                    if record_matches_name(record.values, fields, term, exact=exact):
                        logger.debug(f"{'Exact' if exact else 'Partial'} {object_slug} match for {term!r}: {record.id}")
                        return record.id
        logger.debug(f"No {object_slug} found matching {terms}")
        return None

    # ------------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------------

    def find_cached(self, object_slug: str, lookup_value: str) -> str | None:
        direct = self.cache.get(f"{object_slug}:{lookup_value}")
        if direct:
            return direct
        prefix = f"{object_slug}:"
        for key, record_id in self.cache.items():
            if key.startswith(prefix) and contains_either_way(key[len(prefix):], lookup_value):
                return record_id
        return None

    def find_by_criteria(self, object_slug: str, criteria: dict[str, Any]) -> str | None:
        if not criteria:
            return None
        return self.cache.get(f"{object_slug}:{build_search_key(criteria)}")

    def remember(self, object_slug: str, value: str, record_id: str) -> None:
        if not value or not is_valid_record_id(record_id):
            return
        self.cache.set(f"{object_slug}:{value}", record_id)
        logger.debug(f"Cached {object_slug}:{value} -> {record_id}")

    def remember_criteria(self, object_slug: str, criteria: dict[str, Any], record_id: str) -> None:
        if criteria:
            self.remember(object_slug, build_search_key(criteria), record_id)

    def cache_record_values(self, object_slug: str, values: dict[str, Any], record_id: str) -> None:
        """Cache a record under every searchable-field value it carries."""
        if not is_valid_record_id(record_id):
            logger.warning(f"Invalid record id for caching: {record_id!r}")
            return
        for field in self.catalog.searchable_fields(object_slug):
            value = values.get(field)
            items = value if isinstance(value, list) else [value]
            for item in items:
                text = plain_text(item) if isinstance(item, (str, dict)) else None
                if text:
                    self.remember(object_slug, text, record_id)
