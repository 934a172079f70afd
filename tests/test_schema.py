"""Tests for crmflow.schema: discovery, templates and OpenAPI extraction."""

import asyncio
import json

import pytest

from conftest import FakeRecordStore
from crmflow.schema.catalog import SchemaCatalog, SchemaDiscoveryError
from crmflow.schema.models import ObjectKind, ValueKind, value_kind_for
from crmflow.schema.openapi import extract_openapi_template, load_openapi_spec

OPENAPI_SPEC = {
    "paths": {
        "/objects/companies/records": {
            "post": {
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "properties": {
                                    "data": {
                                        "properties": {
                                            "values": {
                                                "required": ["name"],
                                                "properties": {
                                                    "name": {"type": "string", "title": "Name"},
                                                    "employee_count": {"type": "integer"},
                                                    "categories": {
                                                        "type": "array",
                                                        "items": {"type": "string"},
                                                    },
                                                },
                                            }
                                        }
                                    }
                                }
                            }
                        }
                    }
                }
            }
        },
        "/tasks": {
            "post": {
                "requestBody": {
                    "content": {
                        "application/json": {
                            "schema": {
                                "properties": {
                                    "data": {
                                        "required": ["content"],
                                        "properties": {
                                            "content": {"type": "string"},
                                            "deadline_at": {"type": "string", "format": "date-time"},
                                        },
                                    }
                                }
                            }
                        }
                    }
                }
            }
        },
    },
    "components": {
        "schemas": {
            "DealsCreate": {
                "properties": {
                    "values": {
                        "properties": {"name": {"type": "string"}, "value": {"type": "number"}},
                    }
                }
            }
        }
    },
}


class TestValueKinds:
    """Test type string classification."""

    def test_known_types(self):
        """Store type strings map to value kinds."""
        assert value_kind_for("email-address") == ValueKind.EMAIL
        assert value_kind_for("personal-name") == ValueKind.PERSON_NAME
        assert value_kind_for("status") == ValueKind.SELECT
        assert value_kind_for("currency") == ValueKind.NUMBER

    def test_reference_types(self):
        """Anything mentioning a reference or relation is a reference."""
        assert value_kind_for("record-reference") == ValueKind.REFERENCE
        assert value_kind_for("actor-reference") == ValueKind.REFERENCE
        assert value_kind_for("relation") == ValueKind.REFERENCE

    def test_unknown_type(self):
        """Unknown types fall back to OTHER."""
        assert value_kind_for("interaction") == ValueKind.OTHER
        assert value_kind_for(None) == ValueKind.OTHER


class TestSchemaCatalog:
    """Test discovery and template derivation."""

    def test_discover_registers_objects_and_auxiliary(self, store):
        """Schema objects and the fixed auxiliary resources are known."""
        catalog = SchemaCatalog(store)
        snapshot = asyncio.run(catalog.discover())
        assert {"companies", "people", "deals", "tasks", "notes", "emails"} <= set(snapshot.objects)
        assert snapshot.objects["tasks"].kind == ObjectKind.AUXILIARY
        assert catalog.initialized

    def test_discover_is_idempotent(self, store):
        """A second discovery makes no store calls."""
        catalog = SchemaCatalog(store)

        async def run():
            await catalog.discover()
            await catalog.discover()

        asyncio.run(run())
        assert store.calls_of("list_objects") == [""]

    def test_list_failure_raises(self):
        """Failing to list objects is fatal."""
        store = FakeRecordStore()
        store.fail_list_objects = True
        catalog = SchemaCatalog(store)
        with pytest.raises(SchemaDiscoveryError):
            asyncio.run(catalog.discover())
        assert not catalog.initialized

    def test_attribute_failure_degrades(self):
        """One object's attribute failure leaves it with an empty set."""
        store = FakeRecordStore()
        store.fail_attributes_for = {"obj-people"}
        catalog = SchemaCatalog(store)
        asyncio.run(catalog.discover())
        assert catalog.attributes["people"] == {}
        assert catalog.templates["people"] == {}
        assert "name" in catalog.templates["companies"]

    def test_template_shapes(self, catalog):
        """Templates carry kinds, options, multivalue and reference targets."""
        deals = catalog.templates["deals"]
        assert deals["stage"].kind == ValueKind.SELECT
        assert deals["stage"].options == ["Lead", "In Progress", "Won", "Lost"]
        assert deals["associated_company"].reference_target == "companies"
        assert deals["associated_people"].reference_target == "people"
        assert deals["associated_people"].multivalue
        assert deals["name"].required
        people = catalog.templates["people"]
        assert people["email_addresses"].format_hint == [{"email_address": "email@domain.com"}]

    def test_auxiliary_fallback_template(self, catalog):
        """Auxiliary resources without attributes get the fallback template."""
        tasks = catalog.templates["tasks"]
        assert "content" in tasks
        assert tasks["related_record"].reference_target == "deals"

    def test_filtered_template_hides_protected(self, store):
        """System fields never reach the model."""
        store.attributes["obj-companies"] = store.attributes["obj-companies"] + [
            store.attributes["obj-companies"][0].model_copy(update={"slug": "record_id"}),
            store.attributes["obj-companies"][0].model_copy(update={"slug": "created_at"}),
        ]
        catalog = SchemaCatalog(store)
        asyncio.run(catalog.discover())
        assert "record_id" in catalog.get_template("companies")
        filtered = catalog.filtered_template("companies")
        assert "record_id" not in filtered
        assert "created_at" not in filtered

    def test_reference_targets(self, catalog):
        """Reference targets come from attribute config."""
        assert catalog.reference_targets("people") == {"companies"}
        assert {"companies", "people"} <= catalog.reference_targets("deals")
        assert catalog.reference_targets("companies") == set()
        assert catalog.reference_targets("tasks") == {"deals"}

    def test_target_inference_from_type(self, catalog):
        """Without config the type string names the target."""
        assert catalog.target_object_for("deal-reference", {}) == "deals"
        assert catalog.target_object_for("record-reference", {"object_id": "obj-deals"}) == "deals"

    def test_target_fallback_is_first_object(self, catalog):
        """Unknown targets fall back to the first object."""
        assert catalog.target_object_for("record-reference", {}) == "companies"

    def test_person_detection(self, catalog):
        """Person-type objects by slug or personal-name attribute."""
        assert catalog.is_person_object("people")
        assert not catalog.is_person_object("companies")

    def test_searchable_fields(self, catalog):
        """Name-like and text fields are searchable."""
        fields = catalog.searchable_fields("companies")
        assert "name" in fields
        assert "domains" in fields
        assert "content" in catalog.searchable_fields("tasks")

    def test_condensed_catalog_is_bounded(self, catalog):
        """The planner sees at most ``limit`` objects."""
        lines = catalog.condensed_catalog(limit=2)
        assert lines == ["companies: Companies (Organizations)", "people: People (Individuals)"]

    def test_openapi_template_preferred(self, store):
        """An OpenAPI request schema wins over attribute metadata."""
        catalog = SchemaCatalog(store, openapi_spec=OPENAPI_SPEC)
        asyncio.run(catalog.discover())
        companies = catalog.templates["companies"]
        assert set(companies) == {"name", "employee_count", "categories"}
        assert catalog.templates["tasks"]["deadline_at"].kind == ValueKind.DATE
        assert "email_addresses" in catalog.templates["people"]


class TestOpenApi:
    """Test OpenAPI template extraction."""

    def test_values_schema(self):
        """Values properties of the create endpoint become the template."""
        template = extract_openapi_template(OPENAPI_SPEC, "companies")
        assert template["name"].required
        assert template["name"].kind == ValueKind.TEXT
        assert template["employee_count"].kind == ValueKind.NUMBER
        assert template["categories"].multivalue

    def test_flat_auxiliary_schema(self):
        """Auxiliary resources use the flat data properties."""
        template = extract_openapi_template(OPENAPI_SPEC, "tasks")
        assert template["content"].required
        assert set(template) == {"content", "deadline_at"}

    def test_components_fallback(self):
        """Component schemas named after the object are used when no path matches."""
        template = extract_openapi_template(OPENAPI_SPEC, "deals")
        assert set(template) == {"name", "value"}

    def test_missing_object(self):
        """Unknown objects have no OpenAPI template."""
        assert extract_openapi_template(OPENAPI_SPEC, "notes") is None

    def test_load_json_and_yaml(self, tmp_path):
        """Specs load from JSON or YAML files."""
        json_path = tmp_path / "spec.json"
        json_path.write_text(json.dumps(OPENAPI_SPEC))
        yaml_path = tmp_path / "spec.yaml"
        yaml_path.write_text("paths: {}\n")
        assert "paths" in load_openapi_spec(json_path)
        assert load_openapi_spec(yaml_path) == {"paths": {}}

    def test_load_missing_raises(self, tmp_path):
        """Missing files raise ValueError."""
        with pytest.raises(ValueError, match="not found"):
            load_openapi_spec(tmp_path / "nope.yaml")
