"""Dependency-respecting execution of an action list.

Actions run one at a time in non-decreasing priority (stable, so equal
priorities keep their generation order). Each action is an upsert step:
existence checks feed the creation map and resolution cache; creates
consult both, re-check the store, resolve references, then patch or
create. A failing action is recorded and the batch carries on.
"""

import logging
from collections.abc import Awaitable, Callable
from typing import Any

from crmflow.execute.payloads import finalize_auxiliary_values
from crmflow.extract.models import Action, ActionResult, ActionType
from crmflow.resolve.matching import build_search_key, value_matches
from crmflow.resolve.models import CreationMap
from crmflow.resolve.resolver import ReferenceResolver
from crmflow.schema.catalog import SchemaCatalog
from crmflow.schema.models import is_auxiliary
from crmflow.store.base import RecordStore
from crmflow.store.models import Record, is_valid_record_id

logger = logging.getLogger(__name__)

Handler = Callable[[Action, CreationMap], Awaitable[dict[str, Any]]]


def order_actions(actions: list[Action]) -> list[Action]:
    """Stable sort by priority."""
    return sorted(actions, key=lambda a: a.priority)


def record_matches_criteria(record: Record, criteria: dict[str, Any]) -> bool:
    """Any criteria key whose stored value contains the wanted value."""
    return any(value_matches(record.values.get(key), wanted) for key, wanted in criteria.items())


class ActionExecutor:
    """Applies actions to the record store."""

    def __init__(
        self,
        store: RecordStore,
        catalog: SchemaCatalog,
        resolver: ReferenceResolver,
        query_limit: int = 100,
    ):
        self.store = store
        self.catalog = catalog
        self.resolver = resolver
        self.query_limit = query_limit
        self.handlers: dict[ActionType, Handler] = {
            ActionType.CHECK_EXISTING: self.check_existing,
            ActionType.SMART_CHECK_EXISTING: self.smart_check_existing,
            ActionType.CREATE_RECORD: self.create_record,
        }

    async def execute(self, actions: list[Action], creation_map: CreationMap | None = None) -> list[ActionResult]:
        """Run every action; one failure never stops the rest."""
        creation_map = creation_map if creation_map is not None else CreationMap()
        results = []
        for action in order_actions(actions):
            logger.info(f"Executing {action.action_type.value} on {action.object_slug}")
            try:
                outcome = await self.handlers[action.action_type](action, creation_map)
            except Exception as e:
                logger.error(f"Action failed: {action.action_type.value} on {action.object_slug}: {e}")
                results.append(ActionResult(
                    action=action.action_type,
                    object=action.object_slug,
                    success=False,
                    error=str(e),
                    reasoning=action.reasoning or "Action failed",
                ))
                continue
            results.append(ActionResult(
                action=action.action_type,
                object=action.object_slug,
                success=True,
                result=outcome,
                reasoning=action.reasoning or "Action completed",
            ))
        return results

    # ------------------------------------------------------------------
    # Existence checks
    # ------------------------------------------------------------------

    async def find_existing(self, object_slug: str, criteria: dict[str, Any]) -> list[Record]:
        if not criteria:
            return []
        records = await self.store.query_records(object_slug, limit=self.query_limit)
        return [r for r in records if r.id and record_matches_criteria(r, criteria)]

    def _remember_found(self, action: Action, record: Record, creation_map: CreationMap) -> None:
        creation_map.record(action.object_slug, build_search_key(action.search_criteria), record.id)
        self.resolver.remember_criteria(action.object_slug, action.search_criteria, record.id)
        self.resolver.cache_record_values(action.object_slug, record.values, record.id)

    async def check_existing(self, action: Action, creation_map: CreationMap) -> dict[str, Any]:
        matches = await self.find_existing(action.object_slug, action.search_criteria)
        if matches:
            self._remember_found(action, matches[0], creation_map)
        return {
            "found": bool(matches),
            "count": len(matches),
            "record_ids": [r.id for r in matches],
            "method": "criteria",
        }

    async def smart_check_existing(self, action: Action, creation_map: CreationMap) -> dict[str, Any]:
        result = await self.check_existing(action, creation_map)
        if result["found"] or not action.search_terms:
            return result

        record_id = await self.resolver.search_by_terms(action.object_slug, action.search_terms)
        if not record_id:
            return {"found": False, "count": 0, "record_ids": [], "method": "smart_check"}

        creation_map.record(action.object_slug, build_search_key(action.search_criteria), record_id)
        self.resolver.remember_criteria(action.object_slug, action.search_criteria, record_id)
        for term in action.search_terms:
            self.resolver.remember(action.object_slug, term, record_id)
        return {"found": True, "count": 1, "record_ids": [record_id], "method": "smart_name_search"}

    # ------------------------------------------------------------------
    # Upsert
    # ------------------------------------------------------------------

    async def create_record(self, action: Action, creation_map: CreationMap) -> dict[str, Any]:
        slug = action.object_slug
        criteria = action.search_criteria
        search_key = build_search_key(criteria)

        existing_id = None
        if criteria:
            existing_id = creation_map.get(f"{slug}:{search_key}") or self.resolver.find_by_criteria(slug, criteria)
        if not existing_id and criteria:
            # Re-check the store so earlier actions in this run are visible
            matches = await self.find_existing(slug, criteria)
            if matches:
                existing_id = matches[0].id
                self.resolver.remember_criteria(slug, criteria, existing_id)
                logger.info(f"Found existing {slug} record: {existing_id}")

        template = self.catalog.get_template(slug)
        values = await self.resolver.resolve_payload(action.payload, creation_map, template)
        linked = None
        if action.linked_records:
            linked = await self.resolver.resolve_value(action.linked_records, creation_map)
        if is_auxiliary(slug):
            values = finalize_auxiliary_values(slug, values)

        if existing_id and action.update_if_exists:
            creation_map.record(slug, search_key, existing_id)
            if not values:
                return {"operation": "unchanged", "record_id": existing_id}
            logger.info(f"Updating existing {slug} record: {existing_id}")
            record = await self.store.patch_record(slug, existing_id, values, linked)
            self.resolver.cache_record_values(slug, values, existing_id)
            return {"operation": "updated", "record_id": existing_id, "values": record.values}

        logger.info(f"Creating new {slug} record")
        record = await self.store.create_record(slug, values, linked)
        if not is_valid_record_id(record.id):
            logger.warning(f"Store returned no usable id for new {slug} record: {record.id!r}")
            return {"operation": "created", "record_id": record.id or None, "values": record.values}

        if criteria:
            creation_map.record(slug, search_key, record.id)
            self.resolver.remember_criteria(slug, criteria, record.id)
        self.resolver.cache_record_values(slug, values, record.id)
        logger.info(f"Created {slug} record {record.id}")
        return {"operation": "created", "record_id": record.id, "values": record.values}
