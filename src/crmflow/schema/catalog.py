"""Runtime schema discovery.

Lists the store's record objects, fetches attribute metadata for each one
and derives a Template per object. Auxiliary fixed-shape resources are
registered alongside with a fallback template so every known resource has
one. Discovery runs once per catalog; later calls return the cached tables.
"""

import asyncio
import logging
from typing import Any

from crmflow.schema.models import (
    AUXILIARY_RESOURCES,
    PROTECTED_FIELDS,
    AttributeDefinition,
    ObjectDefinition,
    ObjectKind,
    SchemaSnapshot,
    Template,
    TemplateField,
    ValueKind,
    is_auxiliary,
    is_reference_type,
)
from crmflow.schema.openapi import extract_openapi_template
from crmflow.store.base import RecordStore, RecordStoreError

logger = logging.getLogger(__name__)

# Name-search fields for resources without attribute metadata
FALLBACK_SEARCH_FIELDS = ("name", "title", "subject", "content", "body", "description", "full_name")

# Slugs that identify a person-type object regardless of attribute types
_PERSON_SLUGS = frozenset({"people", "persons", "contacts"})

_PLACEHOLDER_FORMAT = {
    "target_object": "object_slug",
    "target_record_id": "PLACEHOLDER_UUID",
    "lookup_value": "entity_name",
}

_FORMAT_HINTS: dict[ValueKind, dict[str, str]] = {
    ValueKind.EMAIL: {"email_address": "email@domain.com"},
    ValueKind.PHONE: {"original_phone_number": "+1234567890", "country_code": "US"},
    ValueKind.PERSON_NAME: {"first_name": "First", "last_name": "Last", "full_name": "First Last"},
    ValueKind.LOCATION: {"line_1": "Street Address", "city": "City", "country_code": "US"},
    ValueKind.REFERENCE: _PLACEHOLDER_FORMAT,
}


class SchemaDiscoveryError(RuntimeError):
    """The store's object list could not be fetched."""


def fallback_template() -> Template:
    """Template for an auxiliary resource with no richer description."""
    text = {"kind": ValueKind.TEXT, "attribute_type": "text"}
    return {
        "title": TemplateField(name="Title", **text),
        "subject": TemplateField(name="Subject", **text),
        "content": TemplateField(name="Content", **text),
        "body": TemplateField(name="Body", **text),
        "description": TemplateField(name="Description", **text),
        "due_date": TemplateField(name="Due date", **text),
        "related_record": TemplateField(
            kind=ValueKind.REFERENCE,
            attribute_type="record-reference",
            name="Related",
            reference_target="deals",
            format_hint=_PLACEHOLDER_FORMAT,
        ),
    }


def _format_hint(kind: ValueKind, multivalue: bool) -> Any:
    hint = _FORMAT_HINTS.get(kind)
    if hint is None:
        return None
    return [hint] if multivalue else hint


def _option_title(option: dict[str, Any]) -> str | None:
    title = option.get("title") or option.get("name") or option.get("value")
    return str(title) if title else None


class SchemaCatalog:
    """Objects, attributes and templates discovered from a record store.

    Shared across ``process_text`` invocations; discovery is serialized
    with a lock so concurrent callers trigger it only once.
    """

    def __init__(self, store: RecordStore, openapi_spec: dict[str, Any] | None = None):
        self.store = store
        self.openapi_spec = openapi_spec
        self.objects: dict[str, ObjectDefinition] = {}
        self.attributes: dict[str, dict[str, AttributeDefinition]] = {}
        self.templates: dict[str, Template] = {}
        self.initialized = False
        self._lock = asyncio.Lock()

    async def discover(self) -> SchemaSnapshot:
        """Populate the catalog from the store. Idempotent.

        Raises:
            SchemaDiscoveryError: If the object list cannot be fetched
        """
        if self.initialized:
            return self.snapshot
        async with self._lock:
            if self.initialized:
                return self.snapshot

            try:
                objects = await self.store.list_objects()
            except RecordStoreError as e:
                raise SchemaDiscoveryError(f"Could not list record objects: {e}") from e

            for obj in objects:
                self.objects[obj.slug] = obj
                try:
                    attrs = await self.store.list_attributes(obj.id)
                except RecordStoreError as e:
                    logger.warning(f"Failed to load attributes for {obj.slug}: {e}")
                    attrs = []
                self.attributes[obj.slug] = {a.slug: a for a in attrs}
                logger.debug(f"{obj.slug}: {len(attrs)} attributes")

            for slug in AUXILIARY_RESOURCES:
                if slug not in self.objects:
                    self.objects[slug] = ObjectDefinition(
                        slug=slug,
                        id=slug,
                        name=slug,
                        kind=ObjectKind.AUXILIARY,
                        description=f"Top-level resource: {slug}",
                    )
                self.attributes.setdefault(slug, {})

            # Reference targets can point at any object, so templates come last
            for slug in self.objects:
                self.templates[slug] = self._build_template(slug)

            self.initialized = True
            logger.info(
                f"Schema loaded: {len(self.objects)} objects "
                f"({len(AUXILIARY_RESOURCES)} auxiliary)"
            )
            return self.snapshot

    @property
    def snapshot(self) -> SchemaSnapshot:
        return SchemaSnapshot(
            objects=dict(self.objects),
            attributes={k: dict(v) for k, v in self.attributes.items()},
            templates={k: dict(v) for k, v in self.templates.items()},
        )

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def _build_template(self, slug: str) -> Template:
        if self.openapi_spec:
            template = extract_openapi_template(self.openapi_spec, slug)
            if template:
                for field in template.values():
                    if field.kind == ValueKind.REFERENCE and not field.reference_target:
                        field.reference_target = self.target_object_for(field.attribute_type, {})
                logger.debug(f"Using OpenAPI template for {slug}")
                return template

        attributes = self.attributes.get(slug) or {}
        if not attributes and is_auxiliary(slug):
            return fallback_template()
        return self.template_from_attributes(attributes)

    def template_from_attributes(self, attributes: dict[str, AttributeDefinition]) -> Template:
        template: Template = {}
        for slug, attr in attributes.items():
            kind = attr.kind
            target = self.target_object_for(attr.type, attr.config) if kind == ValueKind.REFERENCE else None
            template[slug] = TemplateField(
                kind=kind,
                attribute_type=attr.type,
                name=attr.name,
                required=attr.required,
                multivalue=attr.multivalue,
                reference_target=target,
                options=[t for t in (_option_title(o) for o in attr.options) if t],
                format_hint=_format_hint(kind, attr.multivalue),
                description=attr.description,
            )
        return template

    def get_template(self, slug: str) -> Template:
        """Template for an object; built from attributes if not discovered."""
        template = self.templates.get(slug)
        if template is None:
            template = self.template_from_attributes(self.attributes.get(slug) or {})
        return template

    def filtered_template(self, slug: str) -> Template:
        """Template with protected system fields removed, for the model."""
        return {k: v for k, v in self.get_template(slug).items() if k not in PROTECTED_FIELDS}

    # ------------------------------------------------------------------
    # Reference metadata
    # ------------------------------------------------------------------

    def target_object_for(self, attribute_type: str | None, config: dict[str, Any] | None) -> str | None:
        """Object slug a reference attribute points at.

        Checks explicit config first (target slug, object id, allowed ids),
        then infers from the type string, then falls back to the first known
        object with a warning.
        """
        config = config or {}
        if config.get("target_object"):
            return config["target_object"]

        by_id = {obj.id: slug for slug, obj in self.objects.items()}
        if config.get("object_id") in by_id:
            return by_id[config["object_id"]]

        allowed = config.get("allowed_object_ids") or (config.get("record_reference") or {}).get(
            "allowed_object_ids"
        ) or []
        for candidate in allowed:
            if candidate in by_id:
                return by_id[candidate]
            if candidate in self.objects:
                return candidate

        lower_type = (attribute_type or "").lower()
        for slug in self.objects:
            if slug in lower_type or slug[:-1] in lower_type:
                return slug

        if not self.objects:
            return None
        first = next(iter(self.objects))
        logger.warning(f"Could not determine target object for type {attribute_type}, using {first}")
        return first

    def reference_targets(self, slug: str) -> set[str]:
        """Object slugs this object's reference fields point at."""
        targets = {
            self.target_object_for(attr.type, attr.config)
            for attr in (self.attributes.get(slug) or {}).values()
            if is_reference_type(attr.type)
        }
        if not targets:
            targets = {
                field.reference_target
                for field in self.get_template(slug).values()
                if field.kind == ValueKind.REFERENCE
            }
        targets.discard(None)
        return targets

    # ------------------------------------------------------------------
    # Lookup helpers
    # ------------------------------------------------------------------

    def searchable_fields(self, slug: str) -> list[str]:
        """Attribute slugs worth matching names against."""
        attributes = self.attributes.get(slug) or {}
        if not attributes:
            return list(FALLBACK_SEARCH_FIELDS)
        return [
            attr_slug
            for attr_slug, attr in attributes.items()
            if attr.kind in (ValueKind.TEXT, ValueKind.PERSON_NAME)
            or any(token in attr_slug for token in ("name", "title", "domain"))
        ]

    def is_person_object(self, slug: str) -> bool:
        if slug in _PERSON_SLUGS:
            return True
        return any(
            attr.kind == ValueKind.PERSON_NAME for attr in (self.attributes.get(slug) or {}).values()
        )

    def condensed_catalog(self, limit: int = 10) -> list[str]:
        """Short ``slug: name (description)`` lines for the planner prompt."""
        lines = []
        for obj in list(self.objects.values())[:limit]:
            line = f"{obj.slug}: {obj.display_name}"
            if obj.description:
                line += f" ({obj.description})"
            lines.append(line)
        return lines
