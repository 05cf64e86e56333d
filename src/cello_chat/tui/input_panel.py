from __future__ import annotations

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.widgets import Button, Input


class InputPanel(Container):
    """Input panel for user messages."""

    def compose(self) -> ComposeResult:
        with Horizontal():
            yield Input(placeholder="Ask Cello about your data...", id="message-input")
            yield Button("Send", id="send-button", variant="primary")

    def set_enabled(self, enabled: bool) -> None:
        self.query_one("#message-input", Input).disabled = not enabled
        self.query_one("#send-button", Button).disabled = not enabled
        if enabled:
            self.query_one("#message-input", Input).focus()

    async def _submit(self, input_widget: Input) -> None:
        message = input_widget.value.strip()
        if not message:
            return
        input_widget.value = ""
        if message.startswith("/"):
            await self.app.handle_command(message)
        else:
            self.app.send_message(message)

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Handle input submission."""
        await self._submit(event.input)

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        """Handle send button press."""
        if event.button.id == "send-button":
            await self._submit(self.query_one("#message-input", Input))
