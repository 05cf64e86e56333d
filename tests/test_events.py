"""
Tests for the chat stream protocol.
"""
from datetime import timezone

import pytest

from cello_chat.exceptions import InvalidEventError
from cello_chat.protocol import (
    ChatRequest,
    ChatResponse,
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    HistoryRecord,
    ToolCall,
    ToolCallEvent,
    ToolCallKind,
    ToolCallStatus,
    is_terminal,
    parse_event,
)


class TestParseEvent:
    """Test decoding stream objects into events."""

    def test_delta(self):
        event = parse_event({"type": "delta", "text": "Hello"})

        assert isinstance(event, DeltaEvent)
        assert event.text == "Hello"
        assert not is_terminal(event)

    def test_empty_delta(self):
        event = parse_event({"type": "delta"})

        assert isinstance(event, DeltaEvent)
        assert event.text == ""

    def test_tool_call_camel_case(self):
        event = parse_event({
            "type": "tool_call",
            "toolCall": {
                "kind": "read",
                "status": "ok",
                "sheetId": "sheet-1",
                "sheetName": "Sales",
                "rowCount": 12,
                "sql": "SELECT * FROM sales",
            },
        })

        assert isinstance(event, ToolCallEvent)
        call = event.tool_call
        assert call.kind is ToolCallKind.READ
        assert call.sheet_id == "sheet-1"
        assert call.sheet_name == "Sales"
        assert call.row_count == 12

    def test_tool_call_snake_case_alias(self):
        event = parse_event({"type": "tool_call", "tool_call": {"kind": "highlight", "range": "A1:B2"}})

        assert event.tool_call.kind is ToolCallKind.HIGHLIGHT
        assert event.tool_call.target == "A1:B2"

    def test_error_event(self):
        event = parse_event({"type": "error", "error": "Model overloaded"})

        assert isinstance(event, ErrorEvent)
        assert event.message == "Model overloaded"
        assert is_terminal(event)

    def test_error_event_message_alias(self):
        event = parse_event({"type": "error", "message": "Boom"})

        assert event.message == "Boom"

    def test_done_event(self):
        event = parse_event({
            "type": "done",
            "assistantMessage": {
                "id": "msg-9",
                "role": "assistant",
                "content": "All done.",
                "created_at": "2024-05-01T12:00:00Z",
                "tool_calls": [{"kind": "write", "changes": 3}],
            },
            "messages": [
                {"id": "msg-8", "role": "user", "content": "Fix it", "created_at": "2024-05-01T11:59:00Z"},
            ],
        })

        assert isinstance(event, DoneEvent)
        assert is_terminal(event)
        assert event.final_message.id == "msg-9"
        assert event.final_message.content == "All done."
        assert event.final_message.created_at.tzinfo is not None
        assert event.final_message.tool_calls[0].changes == 3
        assert not hasattr(event, "messages")

    def test_done_without_payload(self):
        event = parse_event({"type": "done", "assistantMessage": None})

        assert event.final_message.content is None
        assert event.final_message.tool_calls is None
        assert event.final_message.id is None

    def test_unknown_type_rejected(self):
        with pytest.raises(InvalidEventError) as exc_info:
            parse_event({"type": "thinking", "text": "hmm"})

        assert exc_info.value.payload == {"type": "thinking", "text": "hmm"}

    def test_missing_type_rejected(self):
        with pytest.raises(InvalidEventError):
            parse_event({"text": "orphan"})

    def test_non_object_rejected(self):
        with pytest.raises(InvalidEventError):
            parse_event(["delta", "text"])

    def test_malformed_tool_call_rejected(self):
        with pytest.raises(InvalidEventError):
            parse_event({"type": "tool_call"})


class TestToolCall:
    """Test ToolCall model."""

    def test_unknown_kind_maps_to_other(self):
        call = ToolCall.model_validate({"kind": "temp_sql"})

        assert call.kind is ToolCallKind.OTHER

    def test_missing_status_is_ok(self):
        call = ToolCall.model_validate({"kind": "read", "status": None})

        assert call.status is ToolCallStatus.OK

    def test_error_status(self):
        call = ToolCall.model_validate({"kind": "write", "status": "error", "error": "Read-only sheet"})

        assert call.status is ToolCallStatus.ERROR
        assert call.error == "Read-only sheet"

    def test_unknown_attributes_preserved(self):
        call = ToolCall.model_validate({"kind": "highlight", "rowIds": ["r1", "r2"]})

        assert call.model_extra["rowIds"] == ["r1", "r2"]
        assert call.to_wire()["rowIds"] == ["r1", "r2"]

    def test_frozen(self):
        call = ToolCall(kind=ToolCallKind.READ)

        with pytest.raises(Exception):
            call.kind = ToolCallKind.WRITE

    def test_to_wire_uses_camel_case(self):
        call = ToolCall(kind=ToolCallKind.FILTER_CLEAR, cleared_count=2)

        assert call.to_wire() == {"kind": "filter_clear", "status": "ok", "clearedCount": 2}


class TestWireModels:
    """Test request/response models."""

    def test_history_record_naive_timestamp_is_utc(self):
        record = HistoryRecord.model_validate({
            "id": "1",
            "role": "user",
            "content": None,
            "created_at": "2024-05-01 09:30:00",
        })

        assert record.content == ""
        assert record.created_at.tzinfo == timezone.utc
        assert record.created_at.hour == 9

    def test_chat_request_wire_shape(self):
        request = ChatRequest(query="Sum B", selected_context={"coords": "B1:B9"}, active_view="sheet-2")

        assert request.to_wire() == {
            "query": "Sum B",
            "selection": {"coords": "B1:B9"},
            "activeSheetId": "sheet-2",
        }

    def test_chat_request_without_view(self):
        assert ChatRequest(query="hi").to_wire() == {"query": "hi", "selection": None}

    def test_chat_response_null_messages(self):
        response = ChatResponse.model_validate({"response": "ok", "assistantMessage": None, "messages": None})

        assert response.messages == []
