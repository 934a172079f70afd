"""Library-usable pipeline: text in, reconciled CRM records out.

``CRMProcessor`` runs the phases strictly in sequence (detect -> order ->
generate per entity -> execute per action) against one EngineContext.
``run_process`` is the synchronous entry point for scripts and notebooks.
"""

import asyncio
import logging
from typing import Any

from crmflow.config import CrmflowConfig
from crmflow.context import EngineContext
from crmflow.execute.executor import ActionExecutor
from crmflow.extract.generator import ActionGenerator
from crmflow.extract.models import ProcessResult, ProcessSummary
from crmflow.extract.planner import EntityPlanner
from crmflow.resolve.models import CreationMap
from crmflow.resolve.resolver import ReferenceResolver
from crmflow.schema.catalog import SchemaDiscoveryError
from crmflow.schema.models import SchemaSnapshot

logger = logging.getLogger(__name__)


class CRMProcessor:
    """Reconciles transcripts against a record store."""

    def __init__(self, context: EngineContext):
        self.context = context
        self.catalog = context.catalog
        self.planner = EntityPlanner(
            context.llm, context.catalog, context.llm_cache, catalog_limit=context.catalog_limit
        )
        self.generator = ActionGenerator(context.llm, context.catalog)
        self.resolver = ReferenceResolver(
            context.store, context.catalog, context.resolution_cache, query_limit=context.query_limit
        )
        self.executor = ActionExecutor(
            context.store, context.catalog, self.resolver, query_limit=context.query_limit
        )

    async def initialize_schema(self) -> SchemaSnapshot:
        """Discover the store's schema. Idempotent; call before ``process_text``."""
        return await self.catalog.discover()

    async def process_text(self, text: str) -> ProcessResult:
        """Detect, generate and execute actions for one transcript.

        Only catastrophic failures (schema never discoverable, unexpected
        errors outside per-action handling) return ``success=False``.
        """
        try:
            await self.initialize_schema()
        except SchemaDiscoveryError as e:
            logger.error(f"Schema discovery failed: {e}")
            return ProcessResult(success=False, error=str(e))

        try:
            entity_plan = await self.planner.detect(text, self.context.history.recent_names())
            self.context.history.add(entity_plan)
            action_plan = await self.generator.generate_plan(text, entity_plan)
            results = await self.executor.execute(action_plan.actions, CreationMap())
        except Exception as e:
            logger.error(f"Text processing failed: {e}")
            return ProcessResult(success=False, error=str(e))

        summary = ProcessSummary.from_results(results)
        logger.info(summary.message)
        return ProcessResult(
            success=True,
            entity_plan=entity_plan,
            action_plan=action_plan,
            results=results,
            summary=summary,
        )

    def schema_info(self) -> dict[str, Any]:
        """Discovered objects with attribute counts and kinds."""
        return {
            "initialized": self.catalog.initialized,
            "objects": [
                {
                    "slug": obj.slug,
                    "name": obj.display_name,
                    "kind": obj.kind.value,
                    "attributes": len(self.catalog.attributes.get(obj.slug) or {}),
                    "template_fields": len(self.catalog.templates.get(obj.slug) or {}),
                }
                for obj in self.catalog.objects.values()
            ],
        }

    async def aclose(self) -> None:
        await self.context.store.aclose()


async def _arun_process(texts: list[str], context: EngineContext) -> list[ProcessResult]:
    processor = CRMProcessor(context)
    try:
        return [await processor.process_text(text) for text in texts]
    finally:
        await processor.aclose()


def run_process(
    text: str | list[str],
    config: CrmflowConfig | None = None,
    model: str | None = None,
    context: EngineContext | None = None,
) -> ProcessResult | list[ProcessResult]:
    """Process one transcript (or several, in order) synchronously.

    Several texts share one context, so caches carry across them.

    Args:
        text: Transcript, or list of transcripts
        config: Settings (loaded from the environment if omitted)
        model: LLM override
        context: Pre-built context (skips construction from config)

    Returns:
        One ProcessResult per input text
    """
    if context is None:
        config = config or CrmflowConfig()
        context = EngineContext.from_config(config, model=model)
    texts = [text] if isinstance(text, str) else list(text)
    results = asyncio.run(_arun_process(texts, context))
    return results[0] if isinstance(text, str) else results
