"""Template extraction from an OpenAPI description of the record store.

When an authoritative request schema for an object's creation endpoint is
available it is preferred over the template derived from attribute
metadata. Accepts JSON or YAML documents.
"""

import json
import logging
from pathlib import Path
from typing import Any

import yaml

from crmflow.schema.models import Template, TemplateField, is_auxiliary, value_kind_for

logger = logging.getLogger(__name__)


def load_openapi_spec(path: Path) -> dict[str, Any]:
    """Load an OpenAPI document from a JSON or YAML file.

    Raises:
        ValueError: If the file is missing or not a mapping
    """
    path = Path(path)
    if not path.exists():
        raise ValueError(f"OpenAPI spec not found: {path}")

    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        raw = json.loads(text)
    else:
        raw = yaml.safe_load(text)

    if not isinstance(raw, dict):
        raise ValueError(f"OpenAPI spec is not a mapping: {path}")
    logger.info(f"Loaded OpenAPI spec: {path} ({len(raw.get('paths') or {})} paths)")
    return raw


def _request_schema(spec: dict[str, Any], endpoint: str) -> dict[str, Any] | None:
    path_spec = (spec.get("paths") or {}).get(endpoint) or {}
    return (
        path_spec.get("post", {})
        .get("requestBody", {})
        .get("content", {})
        .get("application/json", {})
        .get("schema")
    )


def _field_from_property(slug: str, prop: dict[str, Any], required: set[str]) -> TemplateField:
    schema_type = prop.get("type") or "text"
    attribute_type = prop.get("x-attribute-type") or prop.get("format") or schema_type
    if schema_type == "array":
        item_type = (prop.get("items") or {}).get("type") or "text"
        attribute_type = prop.get("x-attribute-type") or item_type
    return TemplateField(
        kind=value_kind_for(attribute_type),
        attribute_type=attribute_type,
        name=prop.get("title") or slug,
        required=slug in required,
        multivalue=schema_type == "array",
        options=[str(v) for v in prop.get("enum") or []],
        description=prop.get("description") or "",
    )


def _template_from_properties(properties: dict[str, Any], required: list[str] | None) -> Template:
    required_set = set(required or [])
    return {
        slug: _field_from_property(slug, prop if isinstance(prop, dict) else {}, required_set)
        for slug, prop in properties.items()
    }


def extract_openapi_template(spec: dict[str, Any], object_slug: str) -> Template | None:
    """Find the creation-body template for one object in an OpenAPI spec.

    Looks at the POST request body of the object's create endpoint first,
    then at ``components/schemas`` entries whose name contains the slug.
    """
    endpoint = f"/{object_slug}" if is_auxiliary(object_slug) else f"/objects/{object_slug}/records"
    schema = _request_schema(spec, endpoint)
    if schema:
        data = (schema.get("properties") or {}).get("data") or {}
        data_props = data.get("properties") or {}
        values = data_props.get("values") or {}
        if values.get("properties"):
            logger.debug(f"Extracted template for {object_slug} from {endpoint}")
            return _template_from_properties(values["properties"], values.get("required"))
        if is_auxiliary(object_slug) and data_props:
            logger.debug(f"Extracted flat template for {object_slug} from {endpoint}")
            return _template_from_properties(data_props, data.get("required"))

    components = (spec.get("components") or {}).get("schemas") or {}
    for key, component in components.items():
        if object_slug.lower() not in key.lower() or not isinstance(component, dict):
            continue
        values = (component.get("properties") or {}).get("values") or {}
        if values.get("properties"):
            logger.debug(f"Found {object_slug} template in components/schemas/{key}")
            return _template_from_properties(values["properties"], values.get("required"))
    return None
