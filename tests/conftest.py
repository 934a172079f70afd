"""Shared test fixtures for crmflow."""

import json
import uuid
from typing import Any

import pytest

from crmflow.cache import ResponseCache
from crmflow.context import ConversationHistory, EngineContext
from crmflow.schema.catalog import SchemaCatalog
from crmflow.schema.models import AttributeDefinition, ObjectDefinition, is_auxiliary
from crmflow.store.base import RecordStore, RecordStoreError
from crmflow.store.models import Record

COMPANY_ID = "11111111-1111-4111-8111-111111111111"
PERSON_ID = "22222222-2222-4222-8222-222222222222"
DEAL_ID = "33333333-3333-4333-8333-333333333333"


def _attr(slug: str, type_: str, **kwargs: Any) -> AttributeDefinition:
    return AttributeDefinition(slug=slug, id=f"attr-{slug}", name=slug.replace("_", " ").title(), type=type_, **kwargs)


SAMPLE_OBJECTS = [
    ObjectDefinition(slug="companies", id="obj-companies", name="Companies", description="Organizations"),
    ObjectDefinition(slug="people", id="obj-people", name="People", description="Individuals"),
    ObjectDefinition(slug="deals", id="obj-deals", name="Deals", description="Sales opportunities"),
]

SAMPLE_ATTRIBUTES = {
    "obj-companies": [
        _attr("name", "text"),
        _attr("domains", "domain", multivalue=True),
        _attr("description", "text"),
    ],
    "obj-people": [
        _attr("name", "personal-name"),
        _attr("email_addresses", "email-address", multivalue=True),
        _attr("job_title", "text"),
        _attr("company", "record-reference", config={"target_object": "companies"}),
    ],
    "obj-deals": [
        _attr("name", "text", required=True),
        _attr(
            "stage",
            "status",
            options=[{"title": "Lead"}, {"title": "In Progress"}, {"title": "Won"}, {"title": "Lost"}],
        ),
        _attr("value", "currency"),
        _attr("close_date", "date"),
        _attr("owner", "actor-reference", config={"target_object": "workspace_members"}),
        _attr("associated_company", "record-reference", config={"target_object": "companies"}),
        _attr(
            "associated_people",
            "record-reference",
            multivalue=True,
            config={"record_reference": {"allowed_object_ids": ["obj-people"]}},
        ),
    ],
}


def _contains_placeholder(value: Any) -> bool:
    return "PLACEHOLDER_UUID" in json.dumps(value, default=str) or "lookup_value" in json.dumps(value, default=str)


class FakeRecordStore(RecordStore):
    """In-memory record store. Rejects any body that still carries a placeholder."""

    def __init__(
        self,
        objects: list[ObjectDefinition] | None = None,
        attributes: dict[str, list[AttributeDefinition]] | None = None,
    ):
        self.objects = list(SAMPLE_OBJECTS if objects is None else objects)
        self.attributes = dict(SAMPLE_ATTRIBUTES if attributes is None else attributes)
        self.records: dict[str, list[Record]] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_list_objects = False
        self.fail_attributes_for: set[str] = set()
        self.fail_create_for: set[str] = set()
        self.fail_query_for: set[str] = set()

    def add(self, slug: str, values: dict[str, Any], record_id: str | None = None) -> str:
        record_id = record_id or str(uuid.uuid4())
        self.records.setdefault(slug, []).append(Record(id=record_id, values=values))
        return record_id

    def count(self, slug: str) -> int:
        return len(self.records.get(slug, []))

    def calls_of(self, kind: str) -> list[str]:
        return [slug for k, slug in self.calls if k == kind]

    async def list_objects(self) -> list[ObjectDefinition]:
        self.calls.append(("list_objects", ""))
        if self.fail_list_objects:
            raise RecordStoreError("API error (500): boom", status_code=500)
        return list(self.objects)

    async def get_object(self, slug: str) -> ObjectDefinition:
        for obj in self.objects:
            if obj.slug == slug:
                return obj
        raise RecordStoreError(f"Cannot resolve object slug: {slug}", status_code=404)

    async def list_attributes(self, object_id: str) -> list[AttributeDefinition]:
        self.calls.append(("list_attributes", object_id))
        if object_id in self.fail_attributes_for:
            raise RecordStoreError("API error (500): attributes unavailable", status_code=500)
        return list(self.attributes.get(object_id, []))

    async def query_records(self, object_slug, filter=None, limit=100) -> list[Record]:
        self.calls.append(("query", object_slug))
        if object_slug in self.fail_query_for:
            raise RecordStoreError("API error (503): unavailable", status_code=503)
        return [r.model_copy(deep=True) for r in self.records.get(object_slug, [])][:limit]

    async def create_record(self, object_slug, values, linked_records=None) -> Record:
        self.calls.append(("create", object_slug))
        if object_slug in self.fail_create_for:
            raise RecordStoreError("API error (400): invalid body", status_code=400)
        if _contains_placeholder(values) or _contains_placeholder(linked_records or []):
            raise RecordStoreError("API error (400): unresolved reference", status_code=400)
        record_id = self.add(object_slug, dict(values))
        return Record(id=record_id, values=dict(values))

    async def patch_record(self, object_slug, record_id, values, linked_records=None) -> Record:
        self.calls.append(("patch", object_slug))
        if _contains_placeholder(values):
            raise RecordStoreError("API error (400): unresolved reference", status_code=400)
        for record in self.records.get(object_slug, []):
            if record.id == record_id:
                record.values.update(values)
                return record.model_copy(deep=True)
        raise RecordStoreError(f"API error (404): no {object_slug} record {record_id}", status_code=404)


class ScriptedLLM:
    """Stands in for LLMClient: detection and per-object generation replies."""

    def __init__(self, detection: Any = None, generation: dict[str, Any] | None = None):
        self.model = "test-model"
        self.total_cost_usd = 0.0
        self.detection = detection if detection is not None else {"entities": []}
        self.generation = generation or {}
        self.prompts: list[str] = []
        self.fail_with: Exception | None = None

    @staticmethod
    def _text(reply: Any) -> str:
        return reply if isinstance(reply, str) else json.dumps(reply)

    @property
    def detection_calls(self) -> int:
        return sum(1 for p in self.prompts if "AVAILABLE CRM OBJECTS" in p)

    def generation_calls(self, slug: str) -> int:
        return sum(1 for p in self.prompts if f"OBJECT: {slug}\n" in p)

    async def acomplete(self, system_prompt, user_prompt, temperature=0.1, json_mode=False) -> str:
        self.prompts.append(user_prompt)
        if self.fail_with is not None:
            raise self.fail_with
        if "AVAILABLE CRM OBJECTS" in user_prompt:
            return self._text(self.detection)
        for slug, reply in self.generation.items():
            if f"OBJECT: {slug}\n" in user_prompt:
                return self._text(reply)
        return '{"actions": []}'


def check(slug: str, criteria: dict, terms: list[str] | None = None, priority: int = 1) -> dict:
    return {
        "action_type": "smart_check_existing",
        "object_slug": slug,
        "search_criteria": criteria,
        "search_terms": terms or list(criteria.values()),
        "priority": priority,
    }


def create(slug: str, criteria: dict, values: dict, priority: int = 2, wrap: bool = True) -> dict:
    payload = {"data": {"values": values}} if wrap and not is_auxiliary(slug) else {"data": values}
    return {
        "action_type": "create_record",
        "object_slug": slug,
        "update_if_exists": True,
        "search_criteria": criteria,
        "payload": payload,
        "priority": priority,
    }


def placeholder(target: str, lookup: str) -> dict:
    return {"target_object": target, "target_record_id": "PLACEHOLDER_UUID", "lookup_value": lookup}


@pytest.fixture
def store() -> FakeRecordStore:
    return FakeRecordStore()


@pytest.fixture
def catalog(store) -> SchemaCatalog:
    """Catalog discovered from the sample store."""
    import asyncio

    cat = SchemaCatalog(store)
    asyncio.run(cat.discover())
    return cat


@pytest.fixture
def make_context():
    """Build an EngineContext around a store and a scripted LLM."""

    def _make(store: RecordStore, llm: Any) -> EngineContext:
        return EngineContext(
            store=store,
            llm=llm,
            catalog=SchemaCatalog(store),
            llm_cache=ResponseCache(600.0, name="llm"),
            resolution_cache=ResponseCache(3600.0, name="resolution"),
            history=ConversationHistory(10),
        )

    return _make


@pytest.fixture
def acme_llm() -> ScriptedLLM:
    """Replies for "Acme approved $150K budget for Q1, talk to their CTO ..."."""
    return ScriptedLLM(
        detection={
            "entities": [
                {
                    "object_slug": "deals",
                    "reason": "Budget approved",
                    "extracted_info": {"name": "Acme integration", "value": "$150K", "close_date": "Q1"},
                    "confidence": "high",
                },
                {
                    "object_slug": "people",
                    "reason": "Role mentioned",
                    "extracted_info": {"name": "CTO"},
                    "confidence": "low",
                },
                {
                    "object_slug": "companies",
                    "reason": "Named company",
                    "extracted_info": {"name": "Acme"},
                    "confidence": "high",
                },
                {
                    "object_slug": "tasks",
                    "reason": "Follow-up implied",
                    "extracted_info": {"title": "Talk to the CTO about integration concerns"},
                    "confidence": "medium",
                },
            ],
            "sentiment": "positive",
            "urgency": "medium",
            "follow_up_needed": True,
            "business_context": "deal_opportunity",
        },
        generation={
            "companies": {
                "actions": [
                    check("companies", {"name": "Acme"}),
                    create("companies", {"name": "Acme"}, {"name": "Acme", "id": "bogus"}),
                ]
            },
            "deals": "```json\n" + json.dumps({
                "actions": [
                    check("deals", {"name": "Acme integration"}),
                    create(
                        "deals",
                        {"name": "Acme integration"},
                        {
                            "name": "Acme integration",
                            "stage": "Budget approved",
                            "value": "$150K",
                            "close_date": "Q1",
                            "owner": "someone@example.com",
                            "associated_company": placeholder("companies", "Acme"),
                        },
                    ),
                ]
            }) + "\n```\nThese actions create the deal.",
            "people": {"actions": [create("people", {"name": "CTO"}, {"name": "CTO"})]},
            "tasks": {
                "actions": [
                    create(
                        "tasks",
                        {},
                        {
                            "title": "Talk to the CTO about integration concerns",
                            "deadline_at": "2026-01-15",
                            "linked_records": [placeholder("companies", "Acme")],
                        },
                        priority=3,
                    )
                ]
            },
        },
    )
