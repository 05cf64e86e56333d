"""
Streaming conversation reconciliation.

Folds the events of one streaming turn into the chat timeline. The state for
a turn lives in a frozen :class:`TurnAccumulator` that is threaded through
:func:`apply_event`, a pure function of ``(turn, messages, event)``. The
:class:`TurnReconciler` drives it against a :class:`~cello_chat.timeline.Timeline`
and notifies the tool-call observer.

Once the first tool call arrives, the text streamed so far is frozen as the
acknowledgement snapshot and stays on the live message; prose streamed after
that belongs to the post-tool answer, which only appears on ``done``, as a
separate message.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, List, Optional, Sequence, Tuple

from .logging import get_main_logger
from .protocol.events import DeltaEvent, DoneEvent, ErrorEvent, Event, ToolCallEvent
from .protocol.models import ToolCall
from .timeline import Message, Timeline, new_message_id, utcnow


class TurnState(str, Enum):
    """Lifecycle of one streaming turn."""
    IDLE = "idle"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"


FINISHED_STATES = frozenset({TurnState.COMPLETED, TurnState.FAILED, TurnState.INTERRUPTED})


class _NoChange:
    def __repr__(self) -> str:
        return "NO_CHANGE"

    def __bool__(self) -> bool:
        return False


NO_CHANGE: Any = _NoChange()


@dataclass(frozen=True)
class TurnAccumulator:
    """Working state for one streaming request."""
    live_message_id: str
    aggregated_text: str = ""
    tool_calls: Tuple[ToolCall, ...] = ()
    ack_snapshot: Optional[str] = None
    tool_calls_seen: bool = False
    state: TurnState = TurnState.IDLE

    @property
    def finished(self) -> bool:
        return self.state in FINISHED_STATES


@dataclass(frozen=True)
class Transition:
    """Result of applying one step to a turn.

    ``tool_calls`` is ``NO_CHANGE`` when the observer need not be told
    anything, otherwise the list to publish (``None`` meaning "no tool calls").
    """
    turn: TurnAccumulator
    messages: Tuple[Message, ...]
    tool_calls: Any = field(default=NO_CHANGE)

    @property
    def notifies(self) -> bool:
        return self.tool_calls is not NO_CHANGE


def _stripped_or_raw(text: str) -> str:
    return text.strip() or text


def _find(messages: Sequence[Message], message_id: str) -> Optional[Message]:
    for message in messages:
        if message.id == message_id:
            return message
    return None


def _update(messages: Sequence[Message], message_id: str, **changes) -> Tuple[Message, ...]:
    return tuple(
        message.evolve(**changes) if message.id == message_id else message
        for message in messages
    )


def start_turn(
    messages: Sequence[Message],
    live_message_id: Optional[str] = None,
    context_range: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Transition:
    """Append an empty live assistant message and open the turn."""
    live = Message(
        id=live_message_id or new_message_id("assistant-"),
        role="assistant",
        content="",
        timestamp=now or utcnow(),
        context_range=context_range,
        tool_calls=(),
        is_streaming=True,
    )
    turn = TurnAccumulator(live_message_id=live.id, state=TurnState.STREAMING)
    return Transition(turn, tuple(messages) + (live,))


def apply_event(
    turn: TurnAccumulator,
    messages: Sequence[Message],
    event: Event,
    now: Optional[datetime] = None,
) -> Transition:
    """Apply one stream event to the turn and the timeline.

    Events reaching a turn that is not streaming leave everything unchanged.
    """
    messages = tuple(messages)
    if turn.state is not TurnState.STREAMING:
        return Transition(turn, messages)

    if isinstance(event, DeltaEvent):
        return _on_delta(turn, messages, event)
    if isinstance(event, ToolCallEvent):
        return _on_tool_call(turn, messages, event)
    if isinstance(event, ErrorEvent):
        return _on_error(turn, messages, event.message)
    if isinstance(event, DoneEvent):
        return _on_done(turn, messages, event, now or utcnow())
    raise TypeError(f"Unhandled stream event: {event!r}")


def _on_delta(turn: TurnAccumulator, messages: Tuple[Message, ...], event: DeltaEvent) -> Transition:
    text = turn.aggregated_text + event.text
    turn = replace(turn, aggregated_text=text)
    if not turn.tool_calls_seen and turn.ack_snapshot is None:
        messages = _update(messages, turn.live_message_id, content=text)
    return Transition(turn, messages)


def _on_tool_call(turn: TurnAccumulator, messages: Tuple[Message, ...], event: ToolCallEvent) -> Transition:
    ack = turn.ack_snapshot
    if ack is None:
        ack = _stripped_or_raw(turn.aggregated_text)
    calls = turn.tool_calls + (event.tool_call,)
    turn = replace(turn, ack_snapshot=ack, tool_calls=calls, tool_calls_seen=True)

    live = _find(messages, turn.live_message_id)
    if live is not None:
        messages = _update(
            messages,
            live.id,
            content=ack or live.content,
            tool_calls=calls,
        )
    return Transition(turn, messages, tool_calls=list(calls))


def _on_error(turn: TurnAccumulator, messages: Tuple[Message, ...], error_text: str) -> Transition:
    messages = _update(
        messages,
        turn.live_message_id,
        content=error_text,
        tool_calls=None,
        is_streaming=False,
    )
    return Transition(replace(turn, state=TurnState.FAILED), messages, tool_calls=None)


def _on_done(
    turn: TurnAccumulator,
    messages: Tuple[Message, ...],
    event: DoneEvent,
    now: datetime,
) -> Transition:
    final = event.final_message
    if final.tool_calls is not None:
        final_calls = tuple(final.tool_calls)
    else:
        final_calls = turn.tool_calls or None
    final_content = final.content or ""
    final_timestamp = final.created_at or now

    live = _find(messages, turn.live_message_id)
    if live is None:
        return Transition(replace(turn, state=TurnState.COMPLETED), messages, tool_calls=_as_list(final_calls))

    if not turn.tool_calls_seen:
        resolved = final_content if final_content.strip() else (turn.aggregated_text or "")
        final_id = final.id or live.id
        messages = _update(
            messages,
            live.id,
            id=final_id,
            content=resolved,
            tool_calls=final_calls,
            is_streaming=False,
            context_range=final.context_range,
            timestamp=final_timestamp,
        )
        turn = replace(turn, live_message_id=final_id, state=TurnState.COMPLETED)
        return Transition(turn, messages, tool_calls=_as_list(final_calls))

    if final.tool_calls is None:
        get_main_logger().warning(
            "Canonical tool-call list missing; keeping locally accumulated calls",
            message_id=live.id,
            local_tool_calls=len(turn.tool_calls),
        )

    ack = turn.ack_snapshot or _stripped_or_raw(turn.aggregated_text)
    messages = _update(
        messages,
        live.id,
        content=ack or live.content,
        tool_calls=final_calls if final_calls is not None else live.tool_calls,
        is_streaming=False,
    )

    if final_content.strip():
        answer = Message(
            id=final.id or f"{live.id}-final",
            role="assistant",
            content=final_content,
            timestamp=final_timestamp,
            context_range=final.context_range,
            tool_calls=None,
            is_streaming=False,
        )
        messages = messages + (answer,)

    return Transition(replace(turn, state=TurnState.COMPLETED), messages, tool_calls=_as_list(final_calls))


def _as_list(calls: Optional[Tuple[ToolCall, ...]]) -> Optional[List[ToolCall]]:
    return list(calls) if calls is not None else None


def fail_turn(turn: TurnAccumulator, messages: Sequence[Message], error_text: str) -> Transition:
    """End the turn because the transport failed; same shape as an error event."""
    messages = tuple(messages)
    if turn.state is not TurnState.STREAMING:
        return Transition(turn, messages)
    return _on_error(turn, messages, error_text)


def interrupt_turn(turn: TurnAccumulator, messages: Sequence[Message], suffix: str) -> Transition:
    """End the turn at the user's request, keeping what was shown so far."""
    messages = tuple(messages)
    if turn.state is not TurnState.STREAMING:
        return Transition(turn, messages)

    live = _find(messages, turn.live_message_id)
    if live is not None:
        messages = _update(
            messages,
            live.id,
            content=(turn.aggregated_text or live.content) + suffix,
            is_streaming=False,
        )
    return Transition(replace(turn, state=TurnState.INTERRUPTED), messages)


ToolCallObserver = Callable[[Optional[List[ToolCall]]], None]


class TurnReconciler:
    """Applies one turn's stream events to a timeline."""

    def __init__(
        self,
        timeline: Timeline,
        on_tool_calls: Optional[ToolCallObserver] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.timeline = timeline
        self.on_tool_calls = on_tool_calls
        self.clock = clock
        self.logger = get_main_logger()
        self._turn: Optional[TurnAccumulator] = None

    @property
    def turn(self) -> Optional[TurnAccumulator]:
        return self._turn

    @property
    def state(self) -> TurnState:
        return self._turn.state if self._turn else TurnState.IDLE

    @property
    def finished(self) -> bool:
        return self._turn is not None and self._turn.finished

    def begin(self, context_range: Optional[str] = None, live_message_id: Optional[str] = None) -> Message:
        """Open the turn by appending the live assistant message."""
        if self._turn is not None:
            raise RuntimeError("Turn already started")
        transition = start_turn(
            self.timeline.messages,
            live_message_id=live_message_id,
            context_range=context_range,
            now=self.clock(),
        )
        self._commit(transition)
        return self.timeline.messages[-1]

    def feed(self, event: Event) -> TurnState:
        """Apply one event; returns the turn state afterwards."""
        if self._turn is None:
            raise RuntimeError("Turn not started")
        if self._turn.finished:
            self.logger.debug("Ignoring event after turn ended",
                              event_type=event.type,
                              state=self._turn.state.value)
            return self._turn.state

        self._commit(apply_event(self._turn, self.timeline.messages, event, now=self.clock()))
        if self._turn.finished:
            self.logger.info("Stream turn finished",
                             state=self._turn.state.value,
                             tool_calls=len(self._turn.tool_calls),
                             text_length=len(self._turn.aggregated_text))
        return self._turn.state

    def fail(self, error_text: str) -> None:
        if self._turn is not None:
            self._commit(fail_turn(self._turn, self.timeline.messages, error_text))

    def interrupt(self, suffix: str) -> None:
        if self._turn is not None:
            self._commit(interrupt_turn(self._turn, self.timeline.messages, suffix))

    def _commit(self, transition: Transition) -> None:
        self.timeline.replace(transition.messages)
        self._turn = transition.turn
        if transition.notifies and self.on_tool_calls is not None:
            self.on_tool_calls(transition.tool_calls)
