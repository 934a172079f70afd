"""Phase 2: turn each ordered entity candidate into concrete actions.

The model sees one object's filtered template at a time. Whatever it
emits is then normalized deterministically: payloads unwrapped to bare
values, unknown and protected fields removed, values coerced to their
template kind, references forced into placeholders, task bodies
defaulted, and create actions given search criteria for dedup.
"""

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from pydantic import ValidationError

from crmflow.execute.payloads import hoist_values, normalize_auxiliary_values
from crmflow.extract.coercion import coerce_field
from crmflow.extract.llm_client import LLMClient, parse_llm_json_or
from crmflow.extract.models import Action, ActionPlan, ActionType, EntityCandidate, EntityPlan
from crmflow.extract.ordering import DependencyOrderer
from crmflow.extract.prompts import GENERATION_SYSTEM, build_generation_prompt
from crmflow.resolve.matching import build_search_key, is_team_or_role, plain_text
from crmflow.schema.catalog import SchemaCatalog
from crmflow.schema.models import PROTECTED_FIELDS, Template, is_auxiliary

logger = logging.getLogger(__name__)

# Objects whose generated payloads must not name an owner
_OWNER_MANAGED = frozenset({"deals"})


class ActionGenerator:
    """Generate template-constrained actions per entity candidate."""

    def __init__(
        self,
        llm: LLMClient,
        catalog: SchemaCatalog,
        today: Callable[[], date] = date.today,
    ):
        self.llm = llm
        self.catalog = catalog
        self.orderer = DependencyOrderer(catalog)
        self.today = today

    async def generate_plan(self, text: str, plan: EntityPlan) -> ActionPlan:
        """Order the plan's entities and generate actions for each in turn."""
        ordered = self.orderer.order(plan.entities)
        actions: list[Action] = []
        for entity in ordered:
            actions.extend(await self.generate(text, entity, batch=plan.entities))
        logger.info(f"Generated {len(actions)} actions for {len(ordered)} entities")
        return ActionPlan(
            analysis={
                "entities_found": [f"{e.object_slug}: {e.label or e.extracted_info}" for e in ordered],
                "sentiment": plan.sentiment,
                "urgency": plan.urgency,
                "follow_up_needed": plan.follow_up_needed,
            },
            actions=actions,
        )

    async def generate(
        self,
        text: str,
        entity: EntityCandidate,
        template: Template | None = None,
        batch: list[EntityCandidate] | None = None,
    ) -> list[Action]:
        """Actions for one entity. Returns [] if the model call fails."""
        slug = entity.object_slug
        if template is None:
            template = self.catalog.filtered_template(slug)
        dependencies = self.orderer.dependencies(entity, batch or [])

        prompt = build_generation_prompt(
            text,
            entity,
            {k: f.prompt_view() for k, f in template.items()},
            dependencies,
            self.today().isoformat(),
            auxiliary=is_auxiliary(slug),
        )
        logger.info(f"Generating actions for {slug}")
        try:
            response = await self.llm.acomplete(GENERATION_SYSTEM, prompt, json_mode=True)
        except RuntimeError as e:
            logger.warning(f"Action generation failed for {slug}: {e}")
            return []

        raw = parse_llm_json_or(response, [])
        items = raw.get("actions") if isinstance(raw, dict) else raw
        actions = []
        for item in items or []:
            action = self._parse_action(item, slug)
            if action is None:
                continue
            action = self.normalize(action, template if action.object_slug == slug else None)
            if action is not None:
                actions.append(action)
        return actions

    def _parse_action(self, item: Any, default_slug: str) -> Action | None:
        if not isinstance(item, dict):
            return None
        item = dict(item)
        item.setdefault("object_slug", default_slug)
        values, linked = hoist_values(item.get("payload"))
        item["payload"] = values
        if linked is not None and item.get("linked_records") is None:
            item["linked_records"] = linked
        try:
            return Action.model_validate(item)
        except ValidationError as e:
            logger.debug(f"Skipping malformed action {item.get('action_type')}: {e}")
            return None

    def normalize(self, action: Action, template: Template | None = None) -> Action | None:
        """Deterministic post-generation cleanup. Returns None to drop."""
        slug = action.object_slug
        auxiliary = is_auxiliary(slug)
        if template is None:
            template = self.catalog.filtered_template(slug)

        values: dict[str, Any] = {}
        for key, value in action.payload.items():
            if key in PROTECTED_FIELDS:
                continue
            field = template.get(key)
            if field is None:
                if not auxiliary and template:
                    logger.debug(f"Dropping unknown attribute {slug}.{key}")
                    continue
                values[key] = value
                continue
            coerced = coerce_field(field, value, self.today())
            if coerced is None:
                logger.debug(f"Dropping {slug}.{key}: could not coerce {value!r}")
                continue
            values[key] = coerced

        if slug in _OWNER_MANAGED and values.pop("owner", None) is not None:
            logger.debug(f"Removed owner from {slug} payload")

        linked_records = action.linked_records
        if auxiliary and action.action_type == ActionType.CREATE_RECORD:
            # Flat bodies carry their links inline
            if linked_records:
                existing = values.get("linked_records")
                values["linked_records"] = (existing if isinstance(existing, list) else []) + linked_records
                linked_records = None
            values = normalize_auxiliary_values(slug, values)

        criteria = {k: v for k, v in action.search_criteria.items() if plain_text(v)}
        if action.action_type == ActionType.CREATE_RECORD and not criteria:
            criteria = self._derive_criteria(slug, values)

        if self.catalog.is_person_object(slug):
            name = self._identifying_name(values, criteria, action.search_terms)
            if is_team_or_role(name):
                logger.info(f"Dropping {action.action_type.value} for team/role {name!r}")
                return None

        search_terms = action.search_terms
        if action.action_type == ActionType.SMART_CHECK_EXISTING and not search_terms and criteria:
            search_terms = [build_search_key(criteria)]

        return action.model_copy(update={
            "payload": values,
            "search_criteria": criteria,
            "search_terms": search_terms,
            "linked_records": linked_records,
        })

    def _derive_criteria(self, slug: str, values: dict[str, Any]) -> dict[str, Any]:
        for field in self.catalog.searchable_fields(slug):
            text = plain_text(values.get(field))
            if text:
                return {field: text}
        return {}

    @staticmethod
    def _identifying_name(values: dict[str, Any], criteria: dict[str, Any], terms: list[str]) -> str:
        for source in (values.get("name"), criteria.get("name"), *(criteria.values()), *terms):
            text = plain_text(source)
            if text:
                return text
        return ""
