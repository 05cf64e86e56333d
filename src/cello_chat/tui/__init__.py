"""TUI components for Cello Chat."""

from .app import CelloChatApp
from .input_panel import InputPanel
from .widgets import ChatMessage, ToolStatus, format_tool_call

__all__ = [
    "CelloChatApp",
    "InputPanel",
    "ChatMessage",
    "ToolStatus",
    "format_tool_call",
]
