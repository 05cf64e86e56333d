"""
Tests for TUI functionality.
"""
from datetime import datetime, timezone

import pytest
from textual.widgets import Button, Input

from cello_chat.config import Config
from cello_chat.protocol import DeltaEvent, DoneEvent, ToolCall, ToolCallEvent, ToolCallKind, ToolCallStatus
from cello_chat.protocol.models import FinalMessage
from cello_chat.timeline import Message
from cello_chat.tui import CelloChatApp, ChatMessage, ToolStatus, format_tool_call
from cello_chat.tui.widgets import STREAMING_CURSOR, render_message

from conftest import FakeBackend, make_record


READ_CALL = ToolCall(kind=ToolCallKind.READ, sheet_name="Sales", row_count=12, truncated=True)


async def settle(app, pilot):
    """Let mount handlers and background workers finish."""
    await pilot.pause()
    await app.workers.wait_for_complete()
    await pilot.pause()


class TestFormatToolCall:
    """Test tool call summaries."""

    def test_read_call(self):
        lines = format_tool_call(READ_CALL)

        assert lines[0] == "🔨 Data query in Sales [OK]"
        assert "  Rows: 12 (truncated)" in lines

    def test_highlight(self):
        call = ToolCall(kind=ToolCallKind.HIGHLIGHT, range="A1:B4", color="#ffeb3b")

        lines = format_tool_call(call)

        assert lines[0] == "✨ Highlighted cells A1:B4 [OK]"
        assert lines[1] == "  Color: #ffeb3b"

    def test_highlight_by_condition(self):
        call = ToolCall(kind=ToolCallKind.HIGHLIGHT, condition="total > 100")

        assert format_tool_call(call)[0] == "✨ Highlighted cells where total > 100 [OK]"

    def test_highlight_clear(self):
        call = ToolCall(kind=ToolCallKind.HIGHLIGHT_CLEAR, cleared_count=4)

        assert format_tool_call(call)[0] == "✖ Cleared all highlights (4) [OK]"

    def test_write_with_error(self):
        call = ToolCall(
            kind=ToolCallKind.WRITE,
            status=ToolCallStatus.ERROR,
            changes=0,
            sql="UPDATE  sales\n  SET total = 0",
            error="Sheet is read-only",
        )

        lines = format_tool_call(call)

        assert lines[0].endswith("[Error]")
        assert "  Changes: 0" in lines
        assert "  SQL: UPDATE sales SET total = 0" in lines
        assert lines[-1] == "  Error: Sheet is read-only"

    def test_columns_truncated_after_six(self):
        call = ToolCall(kind=ToolCallKind.READ, columns=list("abcdefgh"))

        assert "  Columns: a, b, c, d, e, f…" in format_tool_call(call)


class TestRenderMessage:

    def test_streaming_cursor(self):
        message = Message(id="m", role="assistant", content="Thinking", is_streaming=True)

        assert render_message(message).plain.endswith(STREAMING_CURSOR)

    def test_user_message_with_range(self):
        message = Message(
            id="u",
            role="user",
            content="Sum it",
            context_range="B1:B9",
            timestamp=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )

        plain = render_message(message, show_timestamps=False).plain

        assert plain == "You  [B1:B9]\nSum it"

    def test_tool_calls_hidden_when_disabled(self):
        message = Message(id="a", role="assistant", content="Done", tool_calls=[READ_CALL])

        assert "Data query" in render_message(message).plain
        assert "Data query" not in render_message(message, show_tool_calls=False).plain


class TestCelloChatApp:
    """Test the app against a fake backend."""

    @pytest.mark.asyncio
    async def test_history_rendered_on_mount(self):
        backend = FakeBackend(history=[make_record("1", "user", "q"), make_record("2", "assistant", "a")])
        app = CelloChatApp(backend, Config(), conversation_id="sheet-1")

        async with app.run_test() as pilot:
            await settle(app, pilot)

            widgets = list(app.query(ChatMessage))
            assert backend.initialized
            assert [w.entry.id for w in widgets] == ["1", "2"]
            assert app.sub_title == "Spreadsheet sheet-1"

        assert backend.cleaned_up

    @pytest.mark.asyncio
    async def test_send_message_streams_into_timeline(self):
        backend = FakeBackend(events=[
            DeltaEvent(text="Checking"),
            ToolCallEvent(tool_call=READ_CALL),
            DoneEvent(final_message=FinalMessage(content="12 rows.", tool_calls=[READ_CALL])),
        ])
        app = CelloChatApp(backend, Config(), conversation_id="sheet-1")

        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.send_message("How many rows?")
            await app.workers.wait_for_complete()
            await pilot.pause()

            contents = [w.entry.content for w in app.query(ChatMessage)]
            assert contents[1:] == ["How many rows?", "Checking", "12 rows."]
            assert app.command_log == ["How many rows?"]
            assert app.active_tool_calls == [READ_CALL]
            assert not app.query_one("#tool-status", ToolStatus).has_class("hidden")

    @pytest.mark.asyncio
    async def test_input_disabled_while_busy(self):
        backend = FakeBackend(events=[DeltaEvent(text="a"), DoneEvent()])
        backend.pause_at = 1
        app = CelloChatApp(backend, Config(), conversation_id="sheet-1")

        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.send_message("Hello")
            await backend.paused.wait()
            await pilot.pause()

            assert app.query_one("#message-input", Input).disabled
            assert app.query_one("#send-button", Button).disabled
            assert any(w.has_class("streaming") for w in app.query(ChatMessage))

            backend.resume.set()
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert not app.query_one("#message-input", Input).disabled
            assert not any(w.has_class("streaming") for w in app.query(ChatMessage))

    @pytest.mark.asyncio
    async def test_typed_message_submitted(self):
        backend = FakeBackend(events=[DoneEvent(final_message=FinalMessage(content="Hi!"))])
        app = CelloChatApp(backend, Config(), conversation_id="sheet-1")

        async with app.run_test() as pilot:
            await settle(app, pilot)
            app.query_one("#message-input", Input).focus()
            await pilot.press("h", "i", "enter")
            await pilot.pause()
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert backend.requests[0].query == "hi"
            assert app.query_one("#message-input", Input).value == ""

    @pytest.mark.asyncio
    async def test_clear_command(self):
        backend = FakeBackend(history=[make_record("1", "user", "q")])
        app = CelloChatApp(backend, Config(), conversation_id="sheet-1")

        async with app.run_test() as pilot:
            await settle(app, pilot)
            await app.handle_command("/clear")
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert backend.cleared == ["sheet-1"]
            assert app.session.timeline.is_welcome_only
            assert len(app.query(ChatMessage)) == 1

    @pytest.mark.asyncio
    async def test_open_command_switches_conversation(self):
        backend = FakeBackend(history=[make_record("9", "assistant", "Other sheet")])
        app = CelloChatApp(backend, Config(), conversation_id=None)

        async with app.run_test() as pilot:
            await settle(app, pilot)
            assert app.sub_title == "No spreadsheet open"

            await app.handle_command("/open sheet-9")
            await app.workers.wait_for_complete()
            await pilot.pause()

            assert app.session.conversation_id == "sheet-9"
            assert app.sub_title == "Spreadsheet sheet-9"
            assert [w.entry.id for w in app.query(ChatMessage)] == ["9"]
