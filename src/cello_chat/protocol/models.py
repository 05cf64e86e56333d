"""Wire models shared by the history endpoints and the chat stream."""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Literal, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class ToolCallKind(str, Enum):
    """Categories of assistant tool invocations."""
    READ = "read"
    WRITE = "write"
    EXECUTE = "execute"
    HIGHLIGHT = "highlight"
    HIGHLIGHT_CLEAR = "highlight_clear"
    FILTER = "filter"
    FILTER_CLEAR = "filter_clear"
    OTHER = "other"


_KNOWN_KINDS = frozenset(kind.value for kind in ToolCallKind)


class ToolCallStatus(str, Enum):
    OK = "ok"
    ERROR = "error"


class ToolCall(BaseModel):
    """One completed tool invocation performed by the assistant.

    Attributes arrive camelCased on the wire (``sheetId``, ``rowCount``); any
    attribute not modelled here is preserved as an extra field.
    """

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
        alias_generator=to_camel,
    )

    kind: ToolCallKind = ToolCallKind.OTHER
    status: ToolCallStatus = ToolCallStatus.OK

    name: Optional[str] = None
    sheet_id: Optional[str] = None
    sheet_name: Optional[str] = None
    reference: Optional[str] = None
    range: Optional[str] = None
    column: Optional[str] = None
    sql: Optional[str] = None
    operation: Optional[str] = None
    row_count: Optional[int] = None
    truncated: Optional[bool] = None
    columns: Optional[Tuple[str, ...]] = None
    changes: Optional[int] = None
    color: Optional[str] = None
    condition: Optional[str] = None
    message: Optional[str] = None
    error: Optional[str] = None
    cleared_count: Optional[int] = None
    total_filters: Optional[int] = None

    @field_validator("kind", mode="before")
    @classmethod
    def coerce_unknown_kind(cls, v: Any) -> Any:
        if v is None:
            return ToolCallKind.OTHER
        if isinstance(v, str) and v not in _KNOWN_KINDS:
            return ToolCallKind.OTHER
        return v

    @field_validator("status", mode="before")
    @classmethod
    def default_status(cls, v: Any) -> Any:
        return ToolCallStatus.OK if v is None else v

    @property
    def target(self) -> Optional[str]:
        """Spreadsheet location this call operated on, if any."""
        return self.range or self.reference or self.condition

    def to_wire(self) -> dict:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _parse_timestamp(v: Any) -> Any:
    # SQLite emits "YYYY-MM-DD HH:MM:SS" without an offset; those are UTC.
    if isinstance(v, str) and v:
        v = datetime.fromisoformat(v.replace("Z", "+00:00"))
    if isinstance(v, datetime) and v.tzinfo is None:
        v = v.replace(tzinfo=timezone.utc)
    return v


class HistoryRecord(BaseModel):
    """A persisted chat message as served by the backend."""

    model_config = ConfigDict(extra="ignore")

    id: str
    role: Literal["user", "assistant"]
    content: str = ""
    created_at: datetime
    context_range: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    spreadsheet_id: Optional[str] = None

    @field_validator("content", mode="before")
    @classmethod
    def none_content_is_empty(cls, v: Any) -> Any:
        return "" if v is None else v

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> Any:
        return _parse_timestamp(v)


class FinalMessage(BaseModel):
    """The backend's canonical record for a finished turn.

    Every field is optional: the merge falls back to locally accumulated
    state for whatever is missing.
    """

    model_config = ConfigDict(extra="ignore")

    id: Optional[str] = None
    role: Optional[Literal["user", "assistant"]] = None
    content: Optional[str] = None
    created_at: Optional[datetime] = None
    context_range: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v: Any) -> Any:
        return _parse_timestamp(v) or None


class ChatRequest(BaseModel):
    """Payload for one user turn."""

    query: str
    selected_context: Optional[Any] = Field(default=None, description="Selection snapshot")
    active_view: Optional[str] = Field(default=None, description="Active sheet id")

    def to_wire(self) -> dict:
        payload = {"query": self.query, "selection": self.selected_context}
        if self.active_view is not None:
            payload["activeSheetId"] = self.active_view
        return payload


class ChatResponse(BaseModel):
    """Result of the non-streaming chat call."""

    model_config = ConfigDict(extra="ignore")

    messages: List[HistoryRecord] = Field(default_factory=list)

    @field_validator("messages", mode="before")
    @classmethod
    def none_messages_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v
