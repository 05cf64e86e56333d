"""
Main TUI application for Cello Chat.

A terminal rendition of the spreadsheet chat panel: the conversation timeline,
a line summarising the assistant's latest tool calls, and the input box.
"""
from typing import List, Optional, Sequence

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import ScrollableContainer, Vertical
from textual.css.query import NoMatches
from textual.widgets import Footer, Header

from ..backends.base import ChatBackend
from ..config import Config
from ..exceptions import CelloChatError, SessionBusyError, format_error_for_user
from ..logging import get_main_logger
from ..protocol.models import ToolCall
from ..session import ChatSession
from ..timeline import Message
from .input_panel import InputPanel
from .widgets import ChatMessage, ToolStatus

HELP_TEXT = """Keyboard shortcuts:
• Escape: Stop the current response
• Ctrl+L: Clear conversation
• Ctrl+R: Reload history
• Ctrl+H: Show this help
• Ctrl+C: Quit

Chat commands:
• /clear: Clear conversation
• /reload: Reload history
• /open <id>: Open another spreadsheet's conversation
• /stop: Stop the current response
• /help: Show help
• /quit: Quit"""


class CelloChatApp(App):
    """Cello chat panel application."""

    TITLE = "Cello Chat"
    SUB_TITLE = "Your spreadsheet assistant"

    CSS = """
    #chat-area {
        height: 1fr;
    }
    #chat-scroll {
        height: 1fr;
        padding: 0 1;
    }
    ChatMessage {
        margin: 1 0 0 0;
    }
    ChatMessage.message-user {
        border-left: thick $accent;
        padding-left: 1;
    }
    ChatMessage.message-assistant {
        border-left: thick $success;
        padding-left: 1;
    }
    ChatMessage.streaming {
        border-left: thick $warning;
    }
    #tool-status {
        height: auto;
        padding: 0 1;
    }
    #input-panel {
        height: auto;
    }
    #message-input {
        width: 1fr;
    }
    .hidden {
        display: none;
    }
    """

    BINDINGS = [
        Binding("ctrl+c", "quit", "Quit"),
        Binding("escape", "stop", "Stop"),
        Binding("ctrl+l", "clear_conversation", "Clear"),
        Binding("ctrl+r", "reload_history", "Reload"),
        Binding("ctrl+h", "show_help", "Help"),
    ]

    def __init__(self, backend: ChatBackend, config: Config, conversation_id: Optional[str] = None):
        super().__init__()
        self.backend = backend
        self.config = config
        self.logger = get_main_logger()

        self.active_tool_calls: Optional[List[ToolCall]] = None
        self.command_log: List[str] = []
        self._message_widgets: List[ChatMessage] = []

        self.session = ChatSession(
            backend,
            config,
            conversation_id=conversation_id,
            on_tool_calls=self._on_tool_calls,
            on_command=self._on_command,
            on_change=self._on_timeline_change,
            on_notice=self._on_notice,
            on_busy=self._on_busy,
        )

    def compose(self) -> ComposeResult:
        """Compose the UI layout."""
        yield Header()
        with Vertical(id="chat-area"):
            yield ScrollableContainer(id="chat-scroll")
            yield ToolStatus("", id="tool-status", classes="hidden")
            yield InputPanel(id="input-panel")
        yield Footer()

    async def on_mount(self) -> None:
        """Connect the backend and load the conversation."""
        self.logger.info("Cello Chat application starting",
                         conversation_id=self.session.conversation_id)
        self._update_subtitle()
        self.render_timeline(self.session.messages)

        try:
            await self.backend.initialize()
        except CelloChatError as e:
            self.logger.error("Failed to initialize backend", error=str(e))
            self.notify(format_error_for_user(e), title="Backend unavailable", severity="error")

        self.run_worker(self._run_session_call(self.session.load_history), group="history")

    async def on_unmount(self) -> None:
        self.session.close()
        await self.backend.cleanup()

    def _update_subtitle(self) -> None:
        conversation_id = self.session.conversation_id
        self.sub_title = f"Spreadsheet {conversation_id}" if conversation_id else "No spreadsheet open"

    # Session callbacks

    def _on_timeline_change(self, messages: Sequence[Message]) -> None:
        self.render_timeline(messages)

    def _on_tool_calls(self, tool_calls: Optional[List[ToolCall]]) -> None:
        self.active_tool_calls = tool_calls
        self.query_one("#tool-status", ToolStatus).show_tool_calls(tool_calls)

    def _on_command(self, command: str) -> None:
        self.command_log.append(command)
        self.logger.debug("Command completed", command=command)

    def _on_notice(self, text: str) -> None:
        self.notify(text)

    def _on_busy(self, busy: bool) -> None:
        try:
            self.query_one("#input-panel", InputPanel).set_enabled(not busy)
        except NoMatches:
            self.logger.debug("Input panel not mounted yet", busy=busy)

    def render_timeline(self, messages: Sequence[Message]) -> None:
        """Sync the message widgets with the timeline, position by position."""
        chat_scroll = self.query_one("#chat-scroll", ScrollableContainer)
        ui = self.config.ui

        for index, message in enumerate(messages):
            if index < len(self._message_widgets):
                widget = self._message_widgets[index]
                if widget.entry != message:
                    widget.set_entry(message)
            else:
                widget = ChatMessage(message, ui.show_tool_calls, ui.show_timestamps)
                self._message_widgets.append(widget)
                chat_scroll.mount(widget)

        for widget in self._message_widgets[len(messages):]:
            widget.remove()
        del self._message_widgets[len(messages):]

        if ui.auto_scroll:
            chat_scroll.scroll_end(animate=False)

    # Chat actions

    def send_message(self, text: str) -> None:
        """Start a turn in the background."""
        if self.session.busy:
            self.notify("Cello is still working on the last message.", severity="warning")
            return
        self.run_worker(self._send(text), group="chat")

    async def _send(self, text: str) -> None:
        try:
            await self.session.send(text)
        except SessionBusyError:
            self.notify("Cello is still working on the last message.", severity="warning")
        except Exception as e:
            self.logger.error("Chat turn failed", error=str(e), error_type=type(e).__name__)
            self.notify(format_error_for_user(e), title="Chat error", severity="error")

    async def handle_command(self, command: str) -> None:
        parts = command[1:].split()
        if not parts:
            return
        cmd = parts[0].lower()
        args = parts[1:]
        if cmd == "help":
            self.action_show_help()
        elif cmd == "clear":
            self.action_clear_conversation()
        elif cmd == "reload":
            self.action_reload_history()
        elif cmd == "stop":
            self.action_stop()
        elif cmd == "open" and args:
            self.run_worker(self._open_conversation(args[0]), group="history")
        elif cmd == "quit":
            self.exit()
        else:
            self.notify(f"Unknown command: /{cmd}", severity="warning")

    async def _open_conversation(self, conversation_id: str) -> None:
        await self.session.set_conversation(conversation_id)
        self._on_tool_calls(None)
        self._update_subtitle()

    async def _run_session_call(self, call) -> None:
        try:
            await call()
        except SessionBusyError:
            self.notify("Please wait for the current response to finish.", severity="warning")

    def action_stop(self) -> None:
        """Stop the streaming response."""
        if self.session.stop():
            self.notify("Stopping response...")

    def action_clear_conversation(self) -> None:
        """Delete the conversation history."""
        self.run_worker(self._run_session_call(self.session.clear_history), group="history")

    def action_reload_history(self) -> None:
        """Reload the conversation history from the backend."""
        self.run_worker(self._run_session_call(self.session.load_history), group="history")

    def action_show_help(self) -> None:
        self.notify(HELP_TEXT, title="Cello Chat help", timeout=15)

    def action_quit(self) -> None:
        """Handle quit action."""
        self.logger.info("Application quit requested")
        self.exit()
