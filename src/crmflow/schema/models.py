"""Pydantic models for the discovered record-store schema.

Objects and their attributes are discovered at runtime; a Template is the
per-object map of attribute slug to expected value shape, used both to
constrain what the model may emit and to coerce what it did emit.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

# Fixed-shape resources that live at /{slug} with a flat body
AUXILIARY_RESOURCES = ("tasks", "notes", "emails")

# System fields that must never be generated or sent
PROTECTED_FIELDS = frozenset({
    "id",
    "record_id",
    "object_id",
    "workspace_id",
    "created_at",
    "updated_at",
    "created_by",
    "updated_by",
})


def is_auxiliary(slug: str) -> bool:
    return slug in AUXILIARY_RESOURCES


class ObjectKind(str, Enum):
    SCHEMA = "schema"  # attributes discovered from the store
    AUXILIARY = "auxiliary"  # hard-coded body shape


class ValueKind(str, Enum):
    """Value shape of an attribute, derived from its type string."""

    TEXT = "text"
    EMAIL = "email"
    PHONE = "phone"
    PERSON_NAME = "person_name"
    LOCATION = "location"
    REFERENCE = "reference"
    SELECT = "select"
    NUMBER = "number"
    DATE = "date"
    OTHER = "other"


_KIND_BY_TYPE = {
    "text": ValueKind.TEXT,
    "string": ValueKind.TEXT,
    "email": ValueKind.EMAIL,
    "email-address": ValueKind.EMAIL,
    "email_address": ValueKind.EMAIL,
    "phone": ValueKind.PHONE,
    "phone-number": ValueKind.PHONE,
    "phone_number": ValueKind.PHONE,
    "personal-name": ValueKind.PERSON_NAME,
    "person_name": ValueKind.PERSON_NAME,
    "location": ValueKind.LOCATION,
    "select": ValueKind.SELECT,
    "status": ValueKind.SELECT,
    "number": ValueKind.NUMBER,
    "integer": ValueKind.NUMBER,
    "currency": ValueKind.NUMBER,
    "rating": ValueKind.NUMBER,
    "date": ValueKind.DATE,
    "timestamp": ValueKind.DATE,
    "date-time": ValueKind.DATE,
}


def is_reference_type(attribute_type: str | None) -> bool:
    t = (attribute_type or "").lower()
    return "reference" in t or "relation" in t


def value_kind_for(attribute_type: str | None) -> ValueKind:
    """Map a store attribute type string onto a ValueKind."""
    if is_reference_type(attribute_type):
        return ValueKind.REFERENCE
    return _KIND_BY_TYPE.get((attribute_type or "").lower(), ValueKind.OTHER)


class ObjectDefinition(BaseModel):
    """A record object (or auxiliary resource) known to the store."""

    slug: str
    id: str
    name: str = ""
    kind: ObjectKind = ObjectKind.SCHEMA
    description: str = ""

    @property
    def display_name(self) -> str:
        return self.name or self.slug


class AttributeDefinition(BaseModel):
    """One attribute of an object, as reported by the store."""

    slug: str
    id: str = ""
    name: str = ""
    type: str = "text"
    required: bool = False
    multivalue: bool = False
    config: dict[str, Any] = Field(default_factory=dict)
    options: list[dict[str, Any]] = Field(default_factory=list)
    description: str = ""

    @property
    def kind(self) -> ValueKind:
        return value_kind_for(self.type)


class TemplateField(BaseModel):
    """Expected shape of one attribute value."""

    kind: ValueKind = ValueKind.OTHER
    attribute_type: str = "text"
    name: str = ""
    required: bool = False
    multivalue: bool = False
    reference_target: str | None = None
    options: list[str] = Field(default_factory=list)
    format_hint: Any = None
    description: str = ""

    def prompt_view(self) -> dict[str, Any]:
        """Compact dict shown to the model for this field."""
        view: dict[str, Any] = {"type": self.attribute_type}
        if self.name:
            view["name"] = self.name
        if self.required:
            view["required"] = True
        if self.multivalue:
            view["multivalue"] = True
        if self.description:
            view["description"] = self.description
        if self.options:
            view["options"] = self.options
        if self.reference_target:
            view["reference_target"] = self.reference_target
        if self.format_hint is not None:
            view["format"] = self.format_hint
        return view


Template = dict[str, TemplateField]


class SchemaSnapshot(BaseModel):
    """Result of schema discovery."""

    objects: dict[str, ObjectDefinition] = Field(default_factory=dict)
    attributes: dict[str, dict[str, AttributeDefinition]] = Field(default_factory=dict)
    templates: dict[str, Template] = Field(default_factory=dict)
