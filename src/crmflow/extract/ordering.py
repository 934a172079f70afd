"""Dependency ordering of entity candidates.

A candidate whose object has a reference attribute pointing at another
object goes after every candidate of that object in the same batch.
Candidates are tracked by position, so several candidates of one object
are fine. Self-references are ignored. If a full pass places nothing (a
reference cycle) the remainder is appended in its original order.
"""

import logging
from collections.abc import Callable

from crmflow.extract.models import EntityCandidate
from crmflow.schema.catalog import SchemaCatalog

logger = logging.getLogger(__name__)


def order_entities(
    entities: list[EntityCandidate],
    reference_targets: Callable[[str], set[str]],
) -> list[EntityCandidate]:
    """Topologically sort ``entities`` by their objects' reference targets."""
    n = len(entities)
    targets_by_slug: dict[str, set[str]] = {}
    for e in entities:
        if e.object_slug not in targets_by_slug:
            targets_by_slug[e.object_slug] = reference_targets(e.object_slug) - {e.object_slug}

    deps: list[set[int]] = [
        {j for j, other in enumerate(entities) if other.object_slug in targets_by_slug[e.object_slug]}
        for e in entities
    ]

    placed = [False] * n
    ordered: list[EntityCandidate] = []
    while len(ordered) < n:
        progress = False
        for i in range(n):
            if placed[i] or not all(placed[j] for j in deps[i]):
                continue
            placed[i] = True
            ordered.append(entities[i])
            progress = True
        if not progress:
            remaining = [entities[i] for i in range(n) if not placed[i]]
            logger.warning(
                "Reference cycle between "
                + ", ".join(e.object_slug for e in remaining)
                + "; keeping their original order"
            )
            ordered.extend(remaining)
            break
    return ordered


class DependencyOrderer:
    """Orders candidates using the catalog's reference metadata."""

    def __init__(self, catalog: SchemaCatalog):
        self.catalog = catalog

    def order(self, entities: list[EntityCandidate]) -> list[EntityCandidate]:
        return order_entities(entities, self.catalog.reference_targets)

    def dependencies(self, entity: EntityCandidate, batch: list[EntityCandidate]) -> dict[str, dict]:
        """Reference fields of ``entity`` whose target is in ``batch``."""
        deps: dict[str, dict] = {}
        for field_slug, field in self.catalog.get_template(entity.object_slug).items():
            target = field.reference_target
            if not target:
                continue
            referenced = next((e for e in batch if e.object_slug == target), None)
            if referenced is not None:
                deps[field_slug] = {
                    "target_object": target,
                    "extracted_info": referenced.extracted_info,
                }
        return deps
