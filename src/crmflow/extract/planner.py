"""Phase 1: detect which record objects a transcript implies.

One lightweight LLM call per distinct input, cached by a hash of the
normalized text. Person-type candidates that name a team or a bare role
are filtered out before the plan is returned, so callers can rely on it.
"""

import logging
from collections.abc import Callable
from datetime import date

from pydantic import ValidationError

from crmflow.cache import ResponseCache, normalize_text, stable_hash
from crmflow.extract.llm_client import LLMClient, parse_llm_json_or
from crmflow.extract.models import EntityCandidate, EntityPlan
from crmflow.extract.prompts import DETECTION_SYSTEM, build_detection_prompt
from crmflow.resolve.matching import is_team_or_role
from crmflow.schema.catalog import SchemaCatalog

logger = logging.getLogger(__name__)


def detection_cache_key(text: str) -> str:
    return f"entity_detection:{stable_hash(normalize_text(text))}"


class EntityPlanner:
    """Ask the model which objects are implicated, with extracted fields."""

    def __init__(
        self,
        llm: LLMClient,
        catalog: SchemaCatalog,
        cache: ResponseCache | None = None,
        catalog_limit: int = 10,
        today: Callable[[], date] = date.today,
    ):
        self.llm = llm
        self.catalog = catalog
        self.cache = cache
        self.catalog_limit = catalog_limit
        self.today = today

    async def detect(self, text: str, recent_names: list[str] | None = None) -> EntityPlan:
        """Detect entity candidates in ``text``. Never raises on model failure."""
        key = detection_cache_key(text)
        if self.cache is not None:
            cached = self.cache.get(key)
            if cached is not None:
                logger.info("Using cached entity detection result")
                return cached.model_copy(deep=True)

        prompt = build_detection_prompt(
            text,
            self.catalog.condensed_catalog(self.catalog_limit),
            self.today().isoformat(),
            recent_names,
        )
        logger.info("Phase 1: detecting entities")
        try:
            response = await self.llm.acomplete(DETECTION_SYSTEM, prompt, json_mode=True)
        except RuntimeError as e:
            logger.warning(f"Entity detection failed: {e}")
            return EntityPlan()

        raw = parse_llm_json_or(response, {})
        if isinstance(raw, list):
            raw = {"entities": raw}
        if not isinstance(raw, dict):
            raw = {}

        plan = self._build_plan(raw)
        if self.cache is not None:
            self.cache.set(key, plan.model_copy(deep=True))
        logger.info(
            f"Detected {len(plan.entities)} entities: "
            + ", ".join(f"{e.object_slug}({e.label})" for e in plan.entities)
        )
        return plan

    def _build_plan(self, raw: dict) -> EntityPlan:
        entities = []
        for item in raw.get("entities") or []:
            if not isinstance(item, dict):
                continue
            try:
                candidate = EntityCandidate.model_validate(item)
            except ValidationError as e:
                logger.debug(f"Skipping malformed entity {item}: {e}")
                continue
            if self.catalog.objects and candidate.object_slug not in self.catalog.objects:
                logger.warning(f"Skipping entity for unknown object {candidate.object_slug!r}")
                continue
            if self.catalog.is_person_object(candidate.object_slug) and is_team_or_role(candidate.label):
                logger.info(f"Skipping team/role as person: {candidate.label!r}")
                continue
            entities.append(candidate)

        follow_up = raw.get("follow_up_needed")
        return EntityPlan(
            entities=entities,
            sentiment=str(raw.get("sentiment") or "neutral"),
            urgency=str(raw.get("urgency") or "low"),
            follow_up_needed=follow_up if isinstance(follow_up, bool) else False,
            business_context=str(raw.get("business_context") or ""),
        )
