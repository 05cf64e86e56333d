"""
Base backend interface for Cello Chat.

Defines the abstract interface the chat panel consumes: a streaming chat
call, a non-streaming fallback, and history load/clear.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Optional

from ..logging import get_backend_logger
from ..protocol.events import Event
from ..protocol.models import ChatRequest, ChatResponse, HistoryRecord


class BackendStatus(str, Enum):
    """Backend status enumeration."""
    UNKNOWN = "unknown"
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"
    ERROR = "error"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


class ChatBackend(ABC):
    """
    Abstract base class for chat backends.

    ``send_message_stream`` returns a single-consumer, non-restartable async
    iterator of events that ends with exactly one ``error`` or ``done``.
    """

    def __init__(self, config: Dict[str, Any], name: Optional[str] = None):
        self.config = config
        self.name = name or self.backend_type
        self.logger = get_backend_logger(self.name)
        self._status = BackendStatus.UNKNOWN
        self._connection_timeout = config.get("connect_timeout", 30)
        self._request_timeout = config.get("timeout", 300)

    @property
    @abstractmethod
    def backend_type(self) -> str:
        """Return the backend type identifier."""
        pass

    @property
    def status(self) -> BackendStatus:
        return self._status

    @property
    def supports_streaming(self) -> bool:
        """Whether ``send_message_stream`` may be used."""
        return True

    @abstractmethod
    async def initialize(self) -> None:
        pass

    @abstractmethod
    async def cleanup(self) -> None:
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        pass

    @abstractmethod
    def send_message_stream(self, conversation_id: str, request: ChatRequest) -> AsyncIterator[Event]:
        """Start a streaming turn and yield its events in emission order."""
        pass

    @abstractmethod
    async def send_message(self, conversation_id: str, request: ChatRequest) -> ChatResponse:
        """Run a turn without streaming; returns the full updated history."""
        pass

    @abstractmethod
    async def get_history(self, conversation_id: str) -> List[HistoryRecord]:
        pass

    @abstractmethod
    async def clear_history(self, conversation_id: str) -> None:
        pass

    async def test_connection(self) -> Dict[str, Any]:
        """
        Test connection to the backend.

        Returns:
            Dictionary with test results including timing and status
        """
        start_time = time.time()

        try:
            self.logger.info("Testing backend connection", backend=self.name)

            is_healthy = await asyncio.wait_for(
                self.health_check(),
                timeout=self._connection_timeout
            )
            response_time = time.time() - start_time

            if is_healthy:
                self._status = BackendStatus.AVAILABLE
                self.logger.info("Backend connection test successful",
                                 backend=self.name,
                                 response_time=response_time)
                return {
                    "success": True,
                    "response_time": response_time,
                    "message": f"Backend {self.name} is healthy",
                    "backend": self.name
                }

            self._status = BackendStatus.UNAVAILABLE
            self.logger.warning("Backend connection test failed", backend=self.name)
            return {
                "success": False,
                "response_time": response_time,
                "error": f"Backend {self.name} health check failed",
                "backend": self.name
            }

        except asyncio.TimeoutError:
            self._status = BackendStatus.ERROR
            self.logger.error("Backend connection timeout", backend=self.name)
            return {
                "success": False,
                "response_time": time.time() - start_time,
                "error": f"Backend {self.name} connection timeout",
                "backend": self.name
            }

        except Exception as e:
            self._status = BackendStatus.ERROR
            self.logger.error("Backend connection error",
                              backend=self.name,
                              error=str(e),
                              error_type=type(e).__name__)
            return {
                "success": False,
                "response_time": time.time() - start_time,
                "error": f"Backend {self.name} connection error: {str(e)}",
                "backend": self.name
            }

    async def __aenter__(self) -> "ChatBackend":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cleanup()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name={self.name}, status={self.status.value})"
