"""Pydantic models for detection, generation and execution results.

Generic models: ``object_slug`` is whatever the store's schema calls the
object, not a fixed Company/Person/Deal hierarchy.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class EntityCandidate(BaseModel):
    """An object the planner believes the text implies."""

    object_slug: str
    extracted_info: dict[str, Any] = Field(default_factory=dict)
    reason: str = ""
    confidence: str = "medium"  # high | medium | low

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, v: Any) -> str:
        if v is None:
            return "medium"
        return str(v)

    @field_validator("extracted_info", mode="before")
    @classmethod
    def _coerce_info(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @property
    def label(self) -> str:
        """Best human-readable name from the extracted info."""
        info = self.extracted_info
        for key in ("name", "full_name", "title", "content", "subject"):
            value = info.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict) and value.get("full_name"):
                return str(value["full_name"])
        return ""


class EntityPlan(BaseModel):
    """Phase 1 output for one input text."""

    entities: list[EntityCandidate] = Field(default_factory=list)
    sentiment: str = "neutral"
    urgency: str = "low"
    follow_up_needed: bool = False
    business_context: str = ""


class ActionType(str, Enum):
    CHECK_EXISTING = "check_existing"
    SMART_CHECK_EXISTING = "smart_check_existing"
    CREATE_RECORD = "create_record"


class Action(BaseModel):
    """One store operation emitted by the generator.

    ``payload`` holds attribute values only; the store client wraps them
    in whatever body shape the target object needs.
    """

    action_type: ActionType
    object_slug: str
    search_criteria: dict[str, Any] = Field(default_factory=dict)
    search_terms: list[str] = Field(default_factory=list)
    payload: dict[str, Any] = Field(default_factory=dict)
    linked_records: list[dict[str, Any]] | None = None
    update_if_exists: bool = True
    priority: int = 999
    reasoning: str = ""

    @field_validator("priority", mode="before")
    @classmethod
    def _default_priority(cls, v: Any) -> int:
        if v is None or v == "":
            return 999
        return v

    @field_validator("search_criteria", "payload", mode="before")
    @classmethod
    def _dict_or_empty(cls, v: Any) -> dict[str, Any]:
        return v if isinstance(v, dict) else {}

    @field_validator("search_terms", mode="before")
    @classmethod
    def _terms(cls, v: Any) -> list[str]:
        if isinstance(v, str):
            return [v]
        if not isinstance(v, list):
            return []
        return [str(t) for t in v if t]


class ActionPlan(BaseModel):
    """Phase 2 output: every action for one input, in execution order."""

    analysis: dict[str, Any] = Field(default_factory=dict)
    actions: list[Action] = Field(default_factory=list)


class ActionResult(BaseModel):
    action: ActionType
    object: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    reasoning: str = ""


class ProcessSummary(BaseModel):
    total: int = 0
    successful: int = 0
    failed: int = 0
    actions: list[str] = Field(default_factory=list)
    message: str = ""

    @classmethod
    def from_results(cls, results: list[ActionResult]) -> "ProcessSummary":
        successful = sum(1 for r in results if r.success)
        return cls(
            total=len(results),
            successful=successful,
            failed=len(results) - successful,
            actions=[f"{r.action.value} on {r.object}" for r in results],
            message=f"Processed {successful}/{len(results)} actions successfully",
        )


class ProcessResult(BaseModel):
    """What ``process_text`` hands back to its host."""

    success: bool
    entity_plan: EntityPlan | None = None
    action_plan: ActionPlan | None = None
    results: list[ActionResult] = Field(default_factory=list)
    summary: ProcessSummary | None = None
    error: str | None = None
