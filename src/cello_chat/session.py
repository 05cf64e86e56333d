"""
Chat session controller for Cello Chat.

Owns one conversation's timeline and runs turns against a chat backend:
streaming when the backend supports it, request/response otherwise. Only one
turn, history load or clear is outstanding at a time. Every piece of work
carries a generation token; once the session is closed or switched to another
conversation, results arriving for an older token are dropped.
"""
from typing import Callable, List, Optional, Tuple

from .backends.base import ChatBackend
from .config import Config, get_config
from .exceptions import CelloChatError, SessionBusyError, format_error_for_user, get_error_details
from .logging import get_main_logger, log_context
from .protocol.models import ChatRequest, ToolCall
from .reconciler import TurnReconciler
from .timeline import Message, Timeline, find_last_assistant, new_message_id

UNKNOWN_FAILURE_MESSAGE = "Uh oh! 😅 I ran into an issue. Could you try that again?"
CLEARED_NOTICE = "✨ Conversation cleared! Let's start fresh!"
CLEAR_FAILED_NOTICE = "Unable to clear the conversation. Please try again."
CLEAR_WITHOUT_CONVERSATION_NOTICE = "Open a spreadsheet to clear its conversation."
STREAM_ENDED_EARLY = "Chat stream ended before the response completed"


class ChatSession:
    """One chat panel's conversation state and turn runner."""

    def __init__(
        self,
        backend: ChatBackend,
        config: Optional[Config] = None,
        conversation_id: Optional[str] = None,
        on_tool_calls: Optional[Callable[[Optional[List[ToolCall]]], None]] = None,
        on_command: Optional[Callable[[str], None]] = None,
        on_change: Optional[Callable[[Tuple[Message, ...]], None]] = None,
        on_notice: Optional[Callable[[str], None]] = None,
        on_busy: Optional[Callable[[bool], None]] = None,
    ):
        self.backend = backend
        self.config = config or get_config()
        self.conversation_id = conversation_id
        self.on_tool_calls = on_tool_calls
        self.on_command = on_command
        self.on_change = on_change
        self.on_notice = on_notice
        self.on_busy = on_busy
        self.logger = get_main_logger()

        self.timeline = Timeline(self.config.chat.welcome_message)
        self._generation = 0
        self._busy = False
        self._stop_requested = False
        self._reconciler: Optional[TurnReconciler] = None
        self._closed = False

    @property
    def messages(self) -> Tuple[Message, ...]:
        return self.timeline.messages

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def streaming(self) -> bool:
        return self._reconciler is not None

    @property
    def use_streaming(self) -> bool:
        return self.config.backend.streaming and self.backend.supports_streaming

    # Token and callback plumbing

    def _is_current(self, token: int) -> bool:
        return not self._closed and token == self._generation

    def _set_busy(self, value: bool) -> None:
        if self._busy == value:
            return
        self._busy = value
        if self.on_busy:
            self.on_busy(value)

    def _begin(self) -> int:
        if self._closed:
            raise CelloChatError("Chat session is closed")
        if self._busy:
            raise SessionBusyError(
                "A response is already in progress",
                context={"conversation_id": self.conversation_id},
            )
        self._stop_requested = False
        self._set_busy(True)
        return self._generation

    def _end(self, token: int) -> None:
        if self._is_current(token):
            self._set_busy(False)

    def _abandon(self) -> None:
        """Invalidate all outstanding work."""
        self._generation += 1
        self._stop_requested = False
        self._reconciler = None
        self._set_busy(False)

    def _changed(self) -> None:
        if self.on_change:
            self.on_change(self.timeline.messages)

    def _notice(self, text: str) -> None:
        self.logger.info("Session notice", notice=text)
        if self.on_notice:
            self.on_notice(text)

    def _publish_tool_calls(self, tool_calls: Optional[List[ToolCall]]) -> None:
        if self.on_tool_calls:
            self.on_tool_calls(tool_calls)

    def _failure_text(self, error: Exception) -> str:
        reason = format_error_for_user(error)
        if not reason:
            return UNKNOWN_FAILURE_MESSAGE
        return f"{self.config.chat.error_prefix}{reason}"

    def _append_assistant(self, content: str) -> None:
        self.timeline.append(Message(id=new_message_id("assistant-"), role="assistant", content=content))
        self._changed()

    # Turns

    async def send(
        self,
        text: str,
        context_range: Optional[str] = None,
        selection: Optional[object] = None,
        active_view: Optional[str] = None,
    ) -> None:
        """
        Run one user turn.

        Blank input is ignored. Raises SessionBusyError while another turn,
        load or clear is outstanding.
        """
        trimmed = text.strip()
        if not trimmed:
            return

        token = self._begin()
        try:
            with log_context(conversation_id=self.conversation_id) as ctx_logger:
                self.timeline.append(Message(
                    id=new_message_id("user-"),
                    role="user",
                    content=trimmed,
                    context_range=context_range,
                ))
                self._changed()

                if not self.conversation_id:
                    ctx_logger.info("No conversation open; replying with notice")
                    self._append_assistant(self.config.chat.no_conversation_message)
                else:
                    request = ChatRequest(query=trimmed, selected_context=selection, active_view=active_view)
                    ctx_logger.info("Chat turn started",
                                    streaming=self.use_streaming,
                                    query_length=len(trimmed),
                                    context_range=context_range)
                    if self.use_streaming:
                        await self._run_stream(token, request, context_range)
                    else:
                        await self._run_fallback(token, request)
        finally:
            self._end(token)

        if self._is_current(token) and self.on_command:
            self.on_command(trimmed)

    async def _run_stream(self, token: int, request: ChatRequest, context_range: Optional[str]) -> None:
        reconciler = TurnReconciler(self.timeline, on_tool_calls=self._publish_tool_calls)
        self._reconciler = reconciler
        reconciler.begin(context_range=context_range)
        self._changed()

        stream = self.backend.send_message_stream(self.conversation_id, request)
        try:
            async for event in stream:
                if not self._is_current(token):
                    self.logger.info("Dropping events of abandoned turn", event_type=event.type)
                    return
                if self._stop_requested:
                    self.logger.info("Response interrupted by user")
                    reconciler.interrupt(self.config.chat.interrupted_suffix)
                    self._changed()
                    return

                reconciler.feed(event)
                self._changed()
                if reconciler.finished:
                    return

            if self._is_current(token) and not reconciler.finished:
                self.logger.warning("Stream ended without a terminal event")
                reconciler.fail(f"{self.config.chat.error_prefix}{STREAM_ENDED_EARLY}")
                self._changed()

        except Exception as e:
            if not self._is_current(token):
                return
            self.logger.error("Chat stream failed", **get_error_details(e))
            reconciler.fail(self._failure_text(e))
            self._changed()
        finally:
            if self._reconciler is reconciler:
                self._reconciler = None
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _run_fallback(self, token: int, request: ChatRequest) -> None:
        try:
            response = await self.backend.send_message(self.conversation_id, request)
        except Exception as e:
            if not self._is_current(token):
                return
            self.logger.error("Chat request failed", **get_error_details(e))
            self._append_assistant(self._failure_text(e))
            self._publish_tool_calls(None)
            return

        if not self._is_current(token):
            self.logger.info("Dropping response of abandoned turn")
            return

        self.timeline.load_history(response.messages)
        self._changed()

        last = find_last_assistant(response.messages)
        if last is not None:
            self._publish_tool_calls(list(last.tool_calls) if last.tool_calls is not None else None)

    def stop(self) -> bool:
        """Ask the in-flight stream to stop before its next event is applied."""
        if self._reconciler is None or self._reconciler.finished:
            return False
        self._stop_requested = True
        self.logger.debug("Stop requested")
        return True

    # History

    async def load_history(self) -> None:
        """Replace the timeline with the conversation's persisted history."""
        token = self._begin()
        conversation_id = self.conversation_id
        try:
            if not conversation_id:
                self.timeline.seed_welcome()
                self._changed()
                return

            try:
                records = await self.backend.get_history(conversation_id)
            except Exception as e:
                if self._is_current(token):
                    self.logger.warning("Failed to load chat history",
                                        conversation_id=conversation_id,
                                        **get_error_details(e))
                    self.timeline.seed_welcome()
                    self._changed()
                return

            if not self._is_current(token):
                self.logger.debug("Dropping history of abandoned load", conversation_id=conversation_id)
                return

            self.timeline.load_history(records)
            self.logger.info("Chat history loaded",
                             conversation_id=conversation_id,
                             messages=len(records))
            self._changed()
        finally:
            self._end(token)

    async def clear_history(self) -> bool:
        """Delete the persisted history and reset to the welcome entry."""
        if not self.conversation_id:
            self._notice(CLEAR_WITHOUT_CONVERSATION_NOTICE)
            return False

        token = self._begin()
        try:
            await self.backend.clear_history(self.conversation_id)
        except Exception as e:
            if self._is_current(token):
                self.logger.error("Failed to clear conversation", **get_error_details(e))
                self._notice(format_error_for_user(e) or CLEAR_FAILED_NOTICE)
            return False
        else:
            if not self._is_current(token):
                return False
            self.timeline.seed_welcome()
            self._changed()
            self._notice(CLEARED_NOTICE)
            return True
        finally:
            self._end(token)

    async def set_conversation(self, conversation_id: Optional[str]) -> None:
        """Switch to another conversation, abandoning outstanding work."""
        self.logger.info("Switching conversation",
                         previous=self.conversation_id,
                         conversation_id=conversation_id)
        self._abandon()
        self.conversation_id = conversation_id
        await self.load_history()

    def close(self) -> None:
        """Abandon outstanding work; later results are ignored and no callbacks fire."""
        self._closed = True
        self._generation += 1
        self._stop_requested = False
        self._reconciler = None
        self._busy = False
