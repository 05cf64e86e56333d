"""Chat stream protocol: events and wire models."""

from .events import (
    DeltaEvent,
    DoneEvent,
    ErrorEvent,
    Event,
    ToolCallEvent,
    is_terminal,
    parse_event,
)
from .models import (
    ChatRequest,
    ChatResponse,
    FinalMessage,
    HistoryRecord,
    ToolCall,
    ToolCallKind,
    ToolCallStatus,
)

__all__ = [
    "ChatRequest",
    "ChatResponse",
    "DeltaEvent",
    "DoneEvent",
    "ErrorEvent",
    "Event",
    "FinalMessage",
    "HistoryRecord",
    "ToolCall",
    "ToolCallEvent",
    "ToolCallKind",
    "ToolCallStatus",
    "is_terminal",
    "parse_event",
]
