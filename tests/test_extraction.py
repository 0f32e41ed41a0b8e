"""
Tests for action item validation, assignee resolution and the extraction stage.
"""
from datetime import date, datetime, timezone

import pytest

from meeting_followup.exceptions import MalformedOutputError, ParseError, UnusableTranscriptError
from meeting_followup.models import IntegrationKind, User
from meeting_followup.stages import resolve_assignee, validate_action_item


@pytest.mark.unit
class TestValidateActionItem:
    """Test per-item validation of model output."""

    def test_full_item(self):
        """Test a complete, well-formed item."""
        item = validate_action_item({
            "description": "  Send the report ",
            "assignee": "Alice",
            "dueDate": "2026-03-20",
            "priority": "HIGH",
        })

        assert item.description == "Send the report"
        assert item.assignee == "Alice"
        assert item.due_date == date(2026, 3, 20)
        assert item.priority == "high"

    def test_optional_fields_default_to_none(self):
        """Test that only the description is required."""
        item = validate_action_item({"description": "Review budget"})

        assert item.assignee is None
        assert item.due_date is None
        assert item.priority is None

    @pytest.mark.parametrize("raw", [{}, {"description": ""}, {"description": "   "}, {"assignee": "Bob"}])
    def test_missing_description_is_parse_error(self, raw):
        """Test that items without a description are rejected."""
        with pytest.raises(ParseError):
            validate_action_item(raw)

    @pytest.mark.parametrize("raw", ["Send the report", 42, None, ["a"]])
    def test_non_object_is_parse_error(self, raw):
        """Test that non-object items are rejected."""
        with pytest.raises(ParseError):
            validate_action_item(raw)

    def test_unparseable_due_date_becomes_none(self):
        """Test that a bad date is dropped without rejecting the item."""
        item = validate_action_item({"description": "Ship it", "dueDate": "next Friday"})
        assert item.due_date is None

    def test_datetime_due_date_is_truncated(self):
        """Test that a timestamp is accepted as its date."""
        item = validate_action_item({"description": "Ship it", "due_date": "2026-03-20T17:00:00Z"})
        assert item.due_date == date(2026, 3, 20)

    @pytest.mark.parametrize("assignee", ["", "null", "Unassigned", "TBD", None, 7])
    def test_placeholder_assignee_becomes_none(self, assignee):
        """Test that placeholder assignees are treated as unassigned."""
        item = validate_action_item({"description": "Ship it", "assignee": assignee})
        assert item.assignee is None

    def test_unknown_priority_becomes_none(self):
        """Test that unrecognized priorities are dropped."""
        assert validate_action_item({"description": "Ship it", "priority": "urgent"}).priority is None

    def test_task_key_is_accepted(self):
        """Test the alternate 'task' key for the description."""
        assert validate_action_item({"task": "Ship it"}).description == "Ship it"


def _users():
    return [
        User(id=1, name="Alice Smith", email="alice@example.com"),
        User(id=2, name="Alice", email="a.jones@example.com"),
        User(id=3, name="Bob", email="bob@example.com"),
    ]


@pytest.mark.unit
class TestResolveAssignee:
    """Test deterministic assignee resolution."""

    def test_exact_email_wins(self):
        """Test that an exact email beats everything else."""
        assert resolve_assignee("A.JONES@example.com", _users()).id == 2

    def test_exact_name_beats_substring(self):
        """Test that an exact name match beats an earlier substring match."""
        assert resolve_assignee("alice", _users()).id == 2

    def test_case_insensitive(self):
        """Test that resolution ignores case."""
        assert resolve_assignee("ALICE", _users()).id == 2
        assert resolve_assignee("bob", _users()).id == 3

    def test_substring_match_lowest_id(self):
        """Test that substring matches fall back to user id order."""
        assert resolve_assignee("smith", _users()).id == 1
        assert resolve_assignee("example.com", _users()).id == 1

    def test_no_match(self):
        """Test that unknown names resolve to nobody."""
        assert resolve_assignee("Carol", _users()) is None
        assert resolve_assignee(None, _users()) is None
        assert resolve_assignee("   ", _users()) is None

    def test_same_result_for_same_input(self):
        """Test that resolution is stable across calls."""
        users = _users()
        assert {resolve_assignee("Alice", users).id for _ in range(10)} == {2}


@pytest.mark.unit
class TestExtractionStage:
    """Test transcript -> action items and summary."""

    async def test_items_and_summary_persisted(self, factory, database, extraction_stage, extraction_model,
                                               integration_log, decryptor):
        """Test that valid items are stored with resolved assignees and bad ones dropped."""
        alice = await factory.user("Alice", "alice@example.com")
        meeting_id = await factory.meeting()
        await factory.transcript(meeting_id)
        extraction_model.items = [
            {"description": "Send the report", "assignee": "ALICE", "dueDate": "2026-03-20", "priority": "high"},
            {"description": "Book the room", "assignee": "Zed"},
            {"assignee": "Alice"},
            "not an object",
        ]

        await extraction_stage.run(meeting_id)

        items = await factory.get_action_items(meeting_id)
        assert [i.description for i in items] == ["Send the report", "Book the room"]
        assert items[0].assignee_id == alice
        assert items[0].due_date == date(2026, 3, 20)
        assert items[1].assignee_id is None
        assert items[1].assignee_text == "Zed"
        assert all(not i.notified for i in items)

        meeting = await factory.get_meeting(meeting_id)
        assert meeting.summary == "The team agreed on next steps."

        entries = await integration_log.entries_for("meeting", meeting_id, IntegrationKind.EXTRACTION)
        assert [e.details["operation"] for e in entries] == ["extract_action_items", "summarize"]
        assert entries[0].details["received"] == 4
        assert entries[0].details["accepted"] == 2
        assert len(entries[0].details["dropped"]) == 2

    async def test_empty_extraction_still_summarizes(self, factory, extraction_stage):
        """Test that no action items is a valid outcome."""
        meeting_id = await factory.meeting()
        await factory.transcript(meeting_id)

        await extraction_stage.run(meeting_id)

        assert await factory.get_action_items(meeting_id) == []
        assert (await factory.get_meeting(meeting_id)).summary

    async def test_meeting_date_anchors_relative_deadlines(self, factory, extraction_stage, extraction_model):
        """Test that the meeting date reaches the model so "by Friday" can be resolved."""
        meeting_id = await factory.meeting(created_at=datetime(2026, 3, 16, 14, 30, tzinfo=timezone.utc))
        await factory.transcript(meeting_id, "John: send report by Friday.")
        extraction_model.items = [{"description": "Send report", "assignee": "John", "dueDate": "2026-03-20"}]

        await extraction_stage.run(meeting_id)

        assert extraction_model.meeting_dates == [date(2026, 3, 16)]
        assert (await factory.get_action_items(meeting_id))[0].due_date == date(2026, 3, 20)

    async def test_rerun_keeps_existing_items(self, factory, extraction_stage, extraction_model):
        """Test that a second run neither duplicates items nor regenerates the summary."""
        meeting_id = await factory.meeting()
        await factory.transcript(meeting_id)
        extraction_model.items = [{"description": "Send the report"}]
        await extraction_stage.run(meeting_id)

        extraction_model.items = [{"description": "Something else"}]
        await extraction_stage.run(meeting_id)

        items = await factory.get_action_items(meeting_id)
        assert [i.description for i in items] == ["Send the report"]
        assert extraction_model.extract_calls == 1
        assert extraction_model.summarize_calls == 1

    async def test_missing_transcript(self, factory, extraction_stage):
        """Test that extraction needs a transcript."""
        meeting_id = await factory.meeting()

        with pytest.raises(UnusableTranscriptError):
            await extraction_stage.run(meeting_id)

    async def test_blank_transcript(self, factory, extraction_stage, extraction_model):
        """Test that a whitespace transcript is unusable and the model is not called."""
        meeting_id = await factory.meeting()
        await factory.transcript(meeting_id, text="   ")

        with pytest.raises(UnusableTranscriptError):
            await extraction_stage.run(meeting_id)
        assert extraction_model.extract_calls == 0

    async def test_malformed_response_logged_and_raised(self, factory, extraction_stage, extraction_model,
                                                        integration_log):
        """Test that a malformed whole response is logged and surfaces as retryable."""
        meeting_id = await factory.meeting()
        await factory.transcript(meeting_id)
        extraction_model.extract_errors.append(MalformedOutputError("not JSON"))

        with pytest.raises(MalformedOutputError):
            await extraction_stage.run(meeting_id)

        entries = await integration_log.entries_for("meeting", meeting_id, IntegrationKind.EXTRACTION)
        assert [e.outcome for e in entries] == ["error"]
        assert await factory.get_action_items(meeting_id) == []
