"""
Tests for the timeline model.
"""
import pytest

from cello_chat.timeline import (
    WELCOME_MESSAGE_ID,
    Message,
    Timeline,
    TimelineInvariantError,
    find_last_assistant,
    message_from_record,
    validate_messages,
)

from conftest import make_record


@pytest.fixture
def records():
    return [
        make_record("1", "user", "Highlight the totals", context_range="A1:D20"),
        make_record("2", "assistant", "Done!", tool_calls=[{"kind": "highlight", "range": "D2:D20"}]),
        make_record("3", "user", "Thanks"),
    ]


def test_timeline_starts_with_welcome():
    timeline = Timeline("Hi there")

    assert len(timeline) == 1
    assert timeline[0].id == WELCOME_MESSAGE_ID
    assert timeline[0].content == "Hi there"
    assert timeline[0].role == "assistant"
    assert timeline.is_welcome_only
    assert timeline.live_message is None


def test_message_from_record_maps_fields(records):
    message = message_from_record(records[1])

    assert message.id == "2"
    assert message.role == "assistant"
    assert message.content == "Done!"
    assert message.timestamp == records[1].created_at
    assert message.tool_calls == tuple(records[1].tool_calls)
    assert message.is_streaming is False


def test_load_history_replaces_wholesale(records):
    timeline = Timeline("Hi")
    timeline.load_history(records)

    assert [m.id for m in timeline] == ["1", "2", "3"]
    assert timeline[0].context_range == "A1:D20"
    assert not timeline.is_welcome_only


def test_load_history_is_idempotent(records):
    timeline = Timeline("Hi")
    timeline.load_history(records)
    first = timeline.messages
    timeline.load_history(records)

    assert timeline.messages == first


def test_empty_history_gives_exactly_welcome():
    timeline = Timeline("Hi")
    welcome = timeline.welcome
    timeline.load_history([])
    timeline.load_history([])

    assert timeline.messages == (welcome,)
    assert timeline[0] is welcome


def test_find_last_assistant(records):
    assert find_last_assistant(records).id == "2"
    assert find_last_assistant(records[:1]) is None
    assert find_last_assistant([]) is None


def test_duplicate_ids_rejected():
    messages = [Message(id="a", role="user"), Message(id="a", role="assistant")]

    with pytest.raises(TimelineInvariantError):
        validate_messages(messages)


def test_two_streaming_messages_rejected():
    messages = [
        Message(id="a", role="assistant", is_streaming=True),
        Message(id="b", role="assistant", is_streaming=True),
    ]

    with pytest.raises(TimelineInvariantError):
        validate_messages(messages)


def test_streaming_message_must_be_latest_assistant():
    messages = [
        Message(id="a", role="assistant", is_streaming=True),
        Message(id="b", role="assistant"),
    ]

    with pytest.raises(TimelineInvariantError):
        validate_messages(messages)


def test_streaming_message_followed_by_user_is_allowed():
    validate_messages([
        Message(id="a", role="assistant", is_streaming=True),
        Message(id="b", role="user"),
    ])


def test_rejected_replace_leaves_timeline_unchanged():
    timeline = Timeline("Hi")
    before = timeline.messages

    with pytest.raises(TimelineInvariantError):
        timeline.replace([Message(id="x", role="user"), Message(id="x", role="user")])

    assert timeline.messages == before


def test_message_evolve_keeps_original():
    message = Message(id="a", role="assistant", content="draft", tool_calls=[])

    updated = message.evolve(content="final")

    assert message.content == "draft"
    assert updated.content == "final"
    assert updated.tool_calls == ()
    assert message.timestamp.tzinfo is not None
