"""
Timeline model for the chat panel.

The timeline is the ordered sequence of messages the user sees. Messages are
immutable values; the timeline swaps in whole new tuples so a renderer never
observes a half-applied change.
"""
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Iterator, Literal, Optional, Sequence, Tuple

from .exceptions import CelloChatError
from .protocol.models import HistoryRecord, ToolCall


Role = Literal["user", "assistant"]

WELCOME_MESSAGE_ID = "welcome"


class TimelineInvariantError(CelloChatError):
    """A proposed timeline breaks the one-live-message or unique-id rules."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id(prefix: str = "") -> str:
    return f"{prefix}{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True)
class Message:
    """A single timeline entry."""
    id: str
    role: Role
    content: str = ""
    timestamp: datetime = None
    context_range: Optional[str] = None
    tool_calls: Optional[Tuple[ToolCall, ...]] = None
    is_streaming: bool = False

    def __post_init__(self):
        if self.timestamp is None:
            object.__setattr__(self, "timestamp", utcnow())
        if self.tool_calls is not None and not isinstance(self.tool_calls, tuple):
            object.__setattr__(self, "tool_calls", tuple(self.tool_calls))

    def evolve(self, **changes) -> "Message":
        return replace(self, **changes)

    @property
    def is_welcome(self) -> bool:
        return self.id == WELCOME_MESSAGE_ID


def message_from_record(record: HistoryRecord) -> Message:
    """Map a persisted history record 1:1 into a timeline message."""
    return Message(
        id=record.id,
        role=record.role,
        content=record.content,
        timestamp=record.created_at,
        context_range=record.context_range,
        tool_calls=tuple(record.tool_calls) if record.tool_calls is not None else None,
        is_streaming=False,
    )


def messages_from_history(records: Iterable[HistoryRecord]) -> Tuple[Message, ...]:
    return tuple(message_from_record(record) for record in records)


def find_last_assistant(records: Sequence[HistoryRecord]) -> Optional[HistoryRecord]:
    """Most recent assistant-authored entry, scanning from the end."""
    for record in reversed(records):
        if record.role == "assistant":
            return record
    return None


def validate_messages(messages: Sequence[Message]) -> None:
    """Check the timeline invariants.

    Raises:
        TimelineInvariantError: on duplicate ids, more than one streaming
            message, or a streaming message that is not the latest assistant entry.
    """
    seen = set()
    for message in messages:
        if message.id in seen:
            raise TimelineInvariantError(
                "Duplicate message id in timeline", context={"message_id": message.id}
            )
        seen.add(message.id)

    streaming = [m for m in messages if m.is_streaming]
    if len(streaming) > 1:
        raise TimelineInvariantError(
            "More than one streaming message in timeline",
            context={"count": len(streaming)},
        )
    if streaming:
        live = streaming[0]
        assistants = [m for m in messages if m.role == "assistant"]
        if live.role != "assistant" or assistants[-1] is not live:
            raise TimelineInvariantError(
                "Streaming message is not the latest assistant message",
                context={"message_id": live.id},
            )


class Timeline:
    """Ordered, validated sequence of chat messages owned by one panel."""

    def __init__(self, welcome_text: str, messages: Optional[Sequence[Message]] = None):
        # Created once so repeated resets yield identical timelines.
        self.welcome = Message(id=WELCOME_MESSAGE_ID, role="assistant", content=welcome_text)
        self._messages: Tuple[Message, ...] = (self.welcome,)
        if messages is not None:
            self.replace(messages)

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self._messages

    def __len__(self) -> int:
        return len(self._messages)

    def __iter__(self) -> Iterator[Message]:
        return iter(self._messages)

    def __getitem__(self, index: int) -> Message:
        return self._messages[index]

    @property
    def live_message(self) -> Optional[Message]:
        for message in reversed(self._messages):
            if message.is_streaming:
                return message
        return None

    @property
    def is_welcome_only(self) -> bool:
        return self._messages == (self.welcome,)

    def get(self, message_id: str) -> Optional[Message]:
        for message in self._messages:
            if message.id == message_id:
                return message
        return None

    def replace(self, messages: Sequence[Message]) -> None:
        """Swap in a whole new message sequence after validating it."""
        proposed = tuple(messages)
        validate_messages(proposed)
        self._messages = proposed

    def append(self, message: Message) -> None:
        self.replace(self._messages + (message,))

    def seed_welcome(self) -> None:
        self._messages = (self.welcome,)

    def load_history(self, records: Sequence[HistoryRecord]) -> None:
        """Replace the timeline with persisted history; empty seeds the welcome entry."""
        if not records:
            self.seed_welcome()
        else:
            self.replace(messages_from_history(records))
