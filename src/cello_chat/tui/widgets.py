from __future__ import annotations

from typing import List

from rich.text import Text
from textual.widgets import Static

from ..protocol.models import ToolCall, ToolCallKind, ToolCallStatus
from ..timeline import Message

STREAMING_CURSOR = "▌"

_KIND_LABELS = {
    ToolCallKind.READ: "Data query",
    ToolCallKind.WRITE: "Data mutation",
    ToolCallKind.EXECUTE: "SQL execution",
    ToolCallKind.FILTER: "Filter",
    ToolCallKind.FILTER_CLEAR: "Cleared filters",
    ToolCallKind.OTHER: "Tool call",
}

_KIND_ICONS = {
    ToolCallKind.HIGHLIGHT: "✨",
    ToolCallKind.HIGHLIGHT_CLEAR: "✖",
    ToolCallKind.FILTER: "⏷",
    ToolCallKind.FILTER_CLEAR: "✖",
}


def _location(call: ToolCall) -> str:
    if call.sheet_name:
        return f" in {call.sheet_name}"
    if call.sheet_id:
        return f" in sheet {call.sheet_id}"
    return ""


def format_tool_call(call: ToolCall) -> List[str]:
    """Summarise a tool call as display lines; the first line is the headline."""
    if call.kind is ToolCallKind.HIGHLIGHT_CLEAR:
        headline = "Cleared all highlights"
        if call.cleared_count is not None:
            headline += f" ({call.cleared_count})"
    elif call.kind is ToolCallKind.HIGHLIGHT:
        where = call.range or (f"where {call.condition}" if call.condition else "unknown")
        headline = f"Highlighted cells {where}{_location(call)}"
    else:
        headline = _KIND_LABELS.get(call.kind, "Tool call")
        if call.name and call.kind is ToolCallKind.OTHER:
            headline = f"{headline}: {call.name}"
        if call.target:
            headline += f" {call.target}"
        headline += _location(call)

    badge = "Error" if call.status is ToolCallStatus.ERROR else "OK"
    lines = [f"{_KIND_ICONS.get(call.kind, '🔨')} {headline} [{badge}]"]

    if call.kind is ToolCallKind.HIGHLIGHT and call.color:
        lines.append(f"  Color: {call.color}")
    if call.kind is not ToolCallKind.WRITE and (call.row_count is not None or call.truncated):
        rows = call.row_count if call.row_count is not None else "unknown"
        lines.append(f"  Rows: {rows}{' (truncated)' if call.truncated else ''}")
    if call.columns:
        shown = call.columns[:6]
        more = "…" if len(call.columns) > len(shown) else ""
        lines.append(f"  Columns: {', '.join(shown)}{more}")
    if call.changes is not None:
        lines.append(f"  Changes: {call.changes}")
    if call.total_filters is not None:
        lines.append(f"  Active filters: {call.total_filters}")
    if call.sql:
        lines.append(f"  SQL: {' '.join(call.sql.split())}")
    if call.message:
        lines.append(f"  {call.message}")
    if call.error:
        lines.append(f"  Error: {call.error}")
    return lines


def render_message(message: Message, show_tool_calls: bool = True, show_timestamps: bool = True) -> Text:
    text = Text()
    if message.role == "user":
        text.append("You", style="bold blue")
    else:
        text.append("Cello", style="bold green")
    if show_timestamps:
        text.append(f"  {message.timestamp.astimezone().strftime('%H:%M')}", style="dim")
    if message.context_range:
        text.append(f"  [{message.context_range}]", style="dim cyan")
    text.append("\n")
    text.append(message.content)
    if message.is_streaming:
        text.append(STREAMING_CURSOR, style="bold")

    if show_tool_calls and message.tool_calls:
        for call in message.tool_calls:
            style = "red" if call.status is ToolCallStatus.ERROR else "dim"
            for line in format_tool_call(call):
                text.append("\n")
                text.append(line, style=style)
    return text


class ChatMessage(Static):
    """One timeline entry."""

    def __init__(self, message: Message, show_tool_calls: bool = True, show_timestamps: bool = True):
        super().__init__()
        self.show_tool_calls = show_tool_calls
        self.show_timestamps = show_timestamps
        self.entry = message
        self.set_entry(message)

    def set_entry(self, message: Message) -> None:
        self.entry = message
        self.set_class(message.role == "user", "message-user")
        self.set_class(message.role == "assistant", "message-assistant")
        self.set_class(message.is_streaming, "streaming")
        self.update(render_message(message, self.show_tool_calls, self.show_timestamps))


class ToolStatus(Static):
    """Shows the tool calls most recently published for the open conversation."""

    def show_tool_calls(self, tool_calls) -> None:
        if not tool_calls:
            self.update("")
            self.add_class("hidden")
            return
        self.remove_class("hidden")
        headlines = [format_tool_call(call)[0] for call in tool_calls]
        self.update(Text("Last tools: " + " · ".join(headlines), style="dim"))
