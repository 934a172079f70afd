"""LLM prompts for the two extraction phases.

Detection is deliberately lightweight: a bounded object catalog and the
text. Generation sees one object's filtered template at a time.
"""

import json
from typing import Any

from crmflow.extract.models import EntityCandidate

DETECTION_SYSTEM = (
    "You are a CRM intelligence assistant. You read business conversation "
    "transcripts and decide which CRM records they imply. Respond with JSON only."
)

GENERATION_SYSTEM = (
    "You are a CRM intelligence assistant. You turn one detected entity into "
    "concrete CRM actions that match the given attribute template exactly. "
    "Respond with JSON only."
)


def build_detection_prompt(
    text: str,
    catalog: list[str],
    today: str,
    recent_names: list[str] | None = None,
) -> str:
    """Build the phase 1 prompt.

    Args:
        text: Transcript to analyse
        catalog: ``slug: name (description)`` lines, already bounded
        today: ISO date used to anchor relative dates
        recent_names: Names detected in recent calls, for continuity
    """
    catalog_section = "\n".join(catalog)
    history_section = ""
    if recent_names:
        history_section = (
            "\nRECENTLY MENTIONED (may be referred to again):\n"
            + ", ".join(recent_names)
            + "\n"
        )

    return f"""CURRENT DATE: {today}

RULES:
- Only suggest a person-type object for NAMED individuals ("Lisa from marketing").
  Never for teams, departments or bare role titles ("Engineering Team", "CTO",
  "Legal Department"); put role information in notes or a related task instead.
- Only suggest a company if a specific company is named.
- Only suggest a deal when there are clear buying signals (budget, timeline,
  negotiation, procurement, evaluation, contract review).
- Suggest tasks or notes when follow-ups, to-dos or annotations are implied.
- Deal stages must be one of the stages the CRM defines.
{history_section}
AVAILABLE CRM OBJECTS:
{catalog_section}

INPUT:
"{text}"

OUTPUT SCHEMA:
{{
  "entities": [
    {{
      "object_slug": "companies",
      "reason": "why this object is implied",
      "extracted_info": {{"name": "Acme Corp"}},
      "confidence": "high|medium|low"
    }}
  ],
  "sentiment": "positive|neutral|negative",
  "urgency": "high|medium|low",
  "follow_up_needed": true,
  "business_context": "contact_update|deal_opportunity|relationship_building|support"
}}

OUTPUT JSON:"""


def build_generation_prompt(
    text: str,
    entity: EntityCandidate,
    template: dict[str, Any],
    dependencies: dict[str, Any],
    today: str,
    auxiliary: bool = False,
) -> str:
    """Build the phase 2 prompt for one entity.

    Args:
        text: Original transcript
        entity: The candidate being turned into actions
        template: ``slug -> prompt view`` of the object's filtered template
        dependencies: Reference fields whose targets are in the same batch
        today: ISO date used to anchor relative dates
        auxiliary: Whether the object takes a flat fixed-shape body
    """
    slug = entity.object_slug
    task_section = ""
    if auxiliary and slug == "tasks":
        task_section = """
TASK PAYLOADS:
- "content" is required and must be a non-empty sentence describing the task.
- "deadline_at" is an ISO timestamp (YYYY-MM-DDThh:mm:ssZ) when a date is implied.
- Link related records through "linked_records", a list of reference placeholders.
- "assignees" is a list (empty if unknown).
"""

    return f"""CURRENT DATE: {today}

OBJECT: {slug}
EXTRACTED INFO: {json.dumps(entity.extracted_info, ensure_ascii=False)}
REASON: {entity.reason}
DEPENDENCIES: {json.dumps(dependencies, ensure_ascii=False)}

ATTRIBUTE TEMPLATE (system fields already removed):
{json.dumps(template, indent=2, ensure_ascii=False)}

RULES:
- Use only attribute names from the template, with value shapes from its "format".
- Reference fields are ALWAYS placeholders, never guessed ids:
  {{"target_object": "<slug>", "target_record_id": "PLACEHOLDER_UUID", "lookup_value": "<name from the text>"}}
- Multivalue attributes are arrays, even for one value.
- Every create_record carries "update_if_exists": true and the same "search_criteria"
  as its existence check, using the most unique identifier available.
- Do not create person records for teams, departments or bare role titles.
- Do not invent attributes.
{task_section}
INPUT TEXT:
"{text}"

OUTPUT SCHEMA:
{{
  "actions": [
    {{
      "action_type": "smart_check_existing",
      "object_slug": "{slug}",
      "search_criteria": {{"most_unique_field": "value"}},
      "search_terms": ["names", "from", "input"],
      "priority": 1
    }},
    {{
      "action_type": "create_record",
      "object_slug": "{slug}",
      "update_if_exists": true,
      "search_criteria": {{"most_unique_field": "value"}},
      "payload": {{"exact_field_name": "value matching the template"}},
      "priority": 2
    }}
  ]
}}

OUTPUT JSON:"""
