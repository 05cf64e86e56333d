"""Chat backend implementations for Cello Chat."""

from .base import ChatBackend, BackendStatus
from .http import HttpChatBackend, decode_event_stream

__all__ = [
    "ChatBackend",
    "BackendStatus",
    "HttpChatBackend",
    "decode_event_stream",
]
