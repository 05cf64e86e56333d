"""
Chat stream events.

A streaming turn yields ``delta`` and ``tool_call`` events in emission order
and ends with exactly one ``error`` or ``done``. Events are a closed tagged
union discriminated by ``type``.
"""
from typing import Annotated, Any, Literal, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)

from ..exceptions import InvalidEventError
from .models import FinalMessage, ToolCall


class DeltaEvent(BaseModel):
    """A fragment of assistant text. May be empty."""

    model_config = ConfigDict(frozen=True)

    type: Literal["delta"] = "delta"
    text: str = ""


class ToolCallEvent(BaseModel):
    """One completed tool invocation."""

    model_config = ConfigDict(frozen=True)

    type: Literal["tool_call"] = "tool_call"
    tool_call: ToolCall = Field(validation_alias=AliasChoices("toolCall", "tool_call"))


class ErrorEvent(BaseModel):
    """Terminal failure."""

    model_config = ConfigDict(frozen=True)

    type: Literal["error"] = "error"
    message: str = Field(validation_alias=AliasChoices("error", "message"))


class DoneEvent(BaseModel):
    """Terminal success carrying the canonical record for the turn."""

    model_config = ConfigDict(frozen=True)

    type: Literal["done"] = "done"
    final_message: FinalMessage = Field(
        default_factory=FinalMessage,
        validation_alias=AliasChoices("assistantMessage", "final_message", "message"),
    )

    @field_validator("final_message", mode="before")
    @classmethod
    def missing_final_message(cls, v: Any) -> Any:
        return {} if v is None else v


Event = Annotated[
    Union[DeltaEvent, ToolCallEvent, ErrorEvent, DoneEvent],
    Field(discriminator="type"),
]

TERMINAL_EVENTS = (ErrorEvent, DoneEvent)

_event_adapter: TypeAdapter = TypeAdapter(Event)


def parse_event(data: Any) -> Event:
    """Validate one decoded stream object into an event.

    Raises:
        InvalidEventError: if the object is not a known, well-formed event.
    """
    if not isinstance(data, dict):
        raise InvalidEventError(
            f"Stream event must be a JSON object, got {type(data).__name__}",
            payload=data,
        )
    try:
        return _event_adapter.validate_python(data)
    except ValidationError as e:
        raise InvalidEventError(
            f"Invalid stream event of type {data.get('type')!r}",
            payload=data,
            cause=e,
        ) from e


def is_terminal(event: Event) -> bool:
    return isinstance(event, TERMINAL_EVENTS)
