"""
Shared fixtures for Cello Chat tests.
"""
import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pytest

from cello_chat.backends.base import ChatBackend
from cello_chat.config import Config
from cello_chat.protocol.models import ChatRequest, ChatResponse, HistoryRecord


class FakeBackend(ChatBackend):
    """In-memory backend that replays scripted stream events."""

    def __init__(
        self,
        events: Optional[List[Any]] = None,
        history: Optional[List[HistoryRecord]] = None,
        response: Optional[ChatResponse] = None,
        streaming: bool = True,
    ):
        super().__init__({}, "fake")
        self.events = list(events or [])
        self.history = list(history or [])
        self.response = response or ChatResponse()
        self.streaming = streaming

        self.stream_error: Optional[Exception] = None
        self.history_error: Optional[Exception] = None
        self.clear_error: Optional[Exception] = None
        self.send_error: Optional[Exception] = None

        # Pause the stream just before yielding events[pause_at]
        self.pause_at: Optional[int] = None
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()

        self.requests: List[ChatRequest] = []
        self.cleared: List[str] = []
        self.initialized = False
        self.cleaned_up = False

    @property
    def backend_type(self) -> str:
        return "fake"

    @property
    def supports_streaming(self) -> bool:
        return self.streaming

    async def initialize(self) -> None:
        self.initialized = True

    async def cleanup(self) -> None:
        self.cleaned_up = True

    async def health_check(self) -> bool:
        return True

    async def send_message_stream(self, conversation_id, request):
        self.requests.append(request)
        for index, event in enumerate(self.events):
            if index == self.pause_at:
                self.paused.set()
                await self.resume.wait()
            yield event
        if self.stream_error is not None:
            raise self.stream_error

    async def send_message(self, conversation_id, request):
        self.requests.append(request)
        if self.send_error is not None:
            raise self.send_error
        return self.response

    async def get_history(self, conversation_id):
        if self.history_error is not None:
            raise self.history_error
        return list(self.history)

    async def clear_history(self, conversation_id):
        if self.clear_error is not None:
            raise self.clear_error
        self.cleared.append(conversation_id)
        self.history = []


def make_record(
    id: str,
    role: str,
    content: str,
    tool_calls: Optional[List[Dict[str, Any]]] = None,
    context_range: Optional[str] = None,
) -> HistoryRecord:
    return HistoryRecord.model_validate({
        "id": id,
        "role": role,
        "content": content,
        "created_at": datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc).isoformat(),
        "context_range": context_range,
        "tool_calls": tool_calls,
    })


@pytest.fixture
def config():
    """Create a test configuration."""
    return Config()


@pytest.fixture
def fake_backend():
    return FakeBackend()
