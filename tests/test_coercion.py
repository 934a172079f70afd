"""Tests for value coercion, name matching and payload normalization."""

from datetime import date

from crmflow.execute.payloads import (
    finalize_auxiliary_values,
    hoist_values,
    normalize_auxiliary_values,
    strip_lookup_values,
)
from crmflow.extract.coercion import coerce_field, map_to_option, parse_date, parse_number
from crmflow.resolve.matching import (
    build_search_key,
    is_team_or_role,
    normalize_name,
    plain_text,
    record_matches_name,
    value_matches,
)
from crmflow.resolve.models import PLACEHOLDER_ID, CreationMap, PlaceholderReference, is_placeholder
from crmflow.schema.models import TemplateField, ValueKind

TODAY = date(2026, 10, 19)
VALID_ID = "55555555-5555-4555-8555-555555555555"
STAGES = ["Lead", "In Progress", "Won", "Lost"]


class TestParsers:
    """Test scalar parsing."""

    def test_numbers_with_suffixes(self):
        """Currency shorthand becomes a float."""
        assert parse_number("$150K") == 150000.0
        assert parse_number("1.2m") == 1200000.0
        assert parse_number("150,000") == 150000.0
        assert parse_number(42) == 42.0
        assert parse_number({"currency_value": "3k"}) == 3000.0

    def test_non_numbers(self):
        """Booleans and text without digits are not numbers."""
        assert parse_number(True) is None
        assert parse_number("a lot") is None

    def test_quarter_dates(self):
        """Quarters resolve to their last day."""
        assert parse_date("Q1", TODAY) == "2026-03-31"
        assert parse_date("end of q3 next year", TODAY) == "2027-09-30"
        assert parse_date("Q2 2028", TODAY) == "2028-06-30"

    def test_iso_dates_pass_through(self):
        """ISO dates and timestamps are kept as given."""
        assert parse_date("2026-12-01", TODAY) == "2026-12-01"
        assert parse_date("2026-12-01T09:00:00Z", TODAY) == "2026-12-01T09:00:00Z"

    def test_unparseable_date_dropped(self):
        """Free text without a date is dropped."""
        assert parse_date("sometime soon", TODAY) is None
        assert parse_date("", TODAY) is None


class TestStageMapping:
    """Test option/stage mapping."""

    def test_exact_and_case(self):
        """Exact matches win, case-insensitively."""
        assert map_to_option("won", STAGES) == "Won"
        assert map_to_option({"title": "Lead"}, STAGES) == "Lead"

    def test_keywords(self):
        """Free-form stage language maps through the keyword table."""
        assert map_to_option("Budget approved", STAGES) == "Won"
        assert map_to_option("negotiation", STAGES) == "In Progress"
        assert map_to_option("first call", STAGES) == "Lead"

    def test_closed_lost_is_not_won(self):
        """Longer indicators are tried first."""
        assert map_to_option("closed lost", STAGES) == "Lost"
        assert map_to_option("they went with a competitor", STAGES) == "Lost"

    def test_discovery_fallback(self):
        """Unknown stages fall back to a discovery stage if one exists."""
        assert map_to_option("hmm", ["Discovery", "Closed"]) == "Discovery"
        assert map_to_option("hmm", STAGES) is None


class TestCoerceField:
    """Test per-kind coercion."""

    def test_email_multivalue(self):
        """Multivalue email fields become lists of objects."""
        field = TemplateField(kind=ValueKind.EMAIL, multivalue=True)
        assert coerce_field(field, "a@b.com", TODAY) == [{"email_address": "a@b.com"}]
        assert coerce_field(field, "not an email", TODAY) is None

    def test_person_name(self):
        """Names are split into first/last/full."""
        field = TemplateField(kind=ValueKind.PERSON_NAME)
        assert coerce_field(field, "Lisa van Dyke", TODAY) == {
            "first_name": "Lisa",
            "last_name": "van Dyke",
            "full_name": "Lisa van Dyke",
        }

    def test_reference_string_becomes_placeholder(self):
        """A bare name in a reference field becomes a placeholder."""
        field = TemplateField(kind=ValueKind.REFERENCE, reference_target="companies")
        assert coerce_field(field, "Acme", TODAY) == {
            "target_object": "companies",
            "target_record_id": PLACEHOLDER_ID,
            "lookup_value": "Acme",
        }

    def test_reference_guessed_id_forced_to_placeholder(self):
        """A made-up id with a lookup value is replaced by the marker."""
        field = TemplateField(kind=ValueKind.REFERENCE, reference_target="companies")
        value = {"target_object": "companies", "target_record_id": "acme-123", "lookup_value": "Acme"}
        assert coerce_field(field, value, TODAY)["target_record_id"] == PLACEHOLDER_ID

    def test_reference_valid_id_kept(self):
        """Real ids are left alone."""
        field = TemplateField(kind=ValueKind.REFERENCE, reference_target="companies")
        value = {"target_object": "companies", "target_record_id": VALID_ID}
        assert coerce_field(field, value, TODAY) == value

    def test_single_value_from_list(self):
        """Single-valued fields keep the first usable list item."""
        field = TemplateField(kind=ValueKind.NUMBER)
        assert coerce_field(field, ["n/a", "$2k"], TODAY) == 2000.0

    def test_select_unmapped_dropped(self):
        """An option that maps nowhere is dropped."""
        field = TemplateField(kind=ValueKind.SELECT, options=STAGES)
        assert coerce_field(field, "hmm", TODAY) is None


class TestMatching:
    """Test name matching helpers."""

    def test_team_and_role_rejected(self):
        """Teams, departments and bare roles are not people."""
        assert is_team_or_role("Engineering Team")
        assert is_team_or_role("Legal Department")
        assert is_team_or_role("CTO")
        assert is_team_or_role("their CTO")

    def test_named_people_accepted(self):
        """Named individuals pass, including ones near a team word."""
        assert not is_team_or_role("Lisa from marketing")
        assert not is_team_or_role("Sarah Chen")
        assert not is_team_or_role("Steamboat Willie")

    def test_normalize_name(self):
        """Accents and punctuation are dropped."""
        assert normalize_name("  José  Núñez, Jr. ") == "jose nunez jr"

    def test_plain_text_and_keys(self):
        """Store value objects flatten to strings for keys."""
        assert plain_text({"email_address": "a@b.com"}) == "a@b.com"
        assert plain_text([{"value": "Acme"}]) == "Acme"
        assert build_search_key({"name": "Acme", "domain": "acme.com"}) == "Acme|acme.com"
        assert build_search_key({}) == "unknown"

    def test_value_matches_deep(self):
        """Containment reaches into lists and objects."""
        stored = [{"email_address": "lisa@acme.com", "domain": "acme.com"}]
        assert value_matches(stored, "lisa@acme.com")
        assert value_matches("Acme Corporation", "acme")
        assert not value_matches(stored, "globex")

    def test_record_matches_exact_vs_partial(self):
        """Exact mode requires equality; partial allows containment."""
        values = {"name": [{"value": "Acme Corp"}]}
        assert record_matches_name(values, ["name"], "acme corp", exact=True)
        assert not record_matches_name(values, ["name"], "Acme", exact=True)
        assert record_matches_name(values, ["name"], "Acme", exact=False)

    def test_shared_words_are_not_a_match(self):
        """Names that only share a word never match."""
        values = {"name": [{"value": "Acme Corp"}]}
        assert not record_matches_name(values, ["name"], "Globex Corp", exact=False)
        people = {"name": {"full_name": "John Smith"}}
        assert not record_matches_name(people, ["name"], "Jane Smith", exact=False)


class TestPlaceholdersAndCreationMap:
    """Test placeholder detection and the run-scoped map."""

    def test_placeholder_detection(self):
        """Unresolved dicts with a lookup value are placeholders."""
        value = {"target_object": "companies", "target_record_id": PLACEHOLDER_ID, "lookup_value": "Acme"}
        assert is_placeholder(value)
        assert not is_placeholder({"target_object": "companies", "target_record_id": VALID_ID})
        ref = PlaceholderReference.from_value(value)
        assert ref.target_object == "companies"
        assert ref.to_wire() == value

    def test_placeholder_needs_target(self):
        """Without a target object (or default) there is nothing to resolve."""
        assert PlaceholderReference.from_value({"lookup_value": "Acme"}) is None
        ref = PlaceholderReference.from_value({"lookup_value": "Acme"}, default_target="companies")
        assert ref.target_object == "companies"

    def test_creation_map_containment(self):
        """Lookups match keys containing, or contained in, the value."""
        cmap = CreationMap()
        cmap.record("companies", "Acme Corp", VALID_ID)
        assert cmap.get("companies:Acme Corp") == VALID_ID
        assert cmap.find("companies", "acme") == VALID_ID
        assert cmap.find("companies", "The Acme Corp group") == VALID_ID
        assert cmap.find("people", "Acme") is None
        assert len(cmap) == 1


class TestPayloads:
    """Test payload unwrapping and auxiliary defaults."""

    def test_hoist_wrapped(self):
        """data.values wrappers are removed, links split off."""
        links = [{"target_object": "deals", "target_record_id": VALID_ID}]
        values, linked = hoist_values({"data": {"values": {"name": "Acme"}, "linked_records": links}})
        assert values == {"name": "Acme"}
        assert linked == links

    def test_hoist_flat(self):
        """Flat payloads are already values."""
        assert hoist_values({"values": {"name": "Acme"}}) == ({"name": "Acme"}, None)
        assert hoist_values({"name": "Acme"}) == ({"name": "Acme"}, None)
        assert hoist_values(None) == ({}, None)

    def test_task_defaults(self):
        """Tasks get content, format, completion and list fields."""
        data = normalize_auxiliary_values("tasks", {"title": "Send proposal", "due_date": "2026-11-01"})
        assert data == {
            "content": "Send proposal",
            "deadline_at": "2026-11-01T00:00:00Z",
            "format": "plaintext",
            "is_completed": False,
            "linked_records": [],
            "assignees": [],
        }

    def test_task_without_text(self):
        """A task with nothing to say still gets content."""
        data = normalize_auxiliary_values("tasks", {})
        assert data["content"] == "Follow up"
        assert data["deadline_at"] is None

    def test_normalize_is_idempotent(self):
        """Normalizing twice changes nothing."""
        once = normalize_auxiliary_values("tasks", {"content": "Call Lisa", "related_record": {"target_object": "deals"}})
        assert normalize_auxiliary_values("tasks", once) == once

    def test_finalize_drops_unresolved_links(self):
        """Only links with valid ids survive; lookup values are stripped."""
        data = finalize_auxiliary_values("tasks", {
            "content": "Call",
            "linked_records": [
                {"target_object": "companies", "target_record_id": VALID_ID, "lookup_value": "Acme"},
                {"target_object": "deals", "target_record_id": PLACEHOLDER_ID, "lookup_value": "Big deal"},
            ],
        })
        assert data["linked_records"] == [{"target_object": "companies", "target_record_id": VALID_ID}]

    def test_strip_lookup_values(self):
        """lookup_value keys are removed at any depth."""
        value = {"a": [{"lookup_value": "x", "b": 1}], "lookup_value": "y"}
        assert strip_lookup_values(value) == {"a": [{"b": 1}]}
