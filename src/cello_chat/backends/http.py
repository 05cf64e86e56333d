"""
HTTP backend for Cello Chat.

Talks to the spreadsheet server's chat endpoints. The streaming endpoint
answers with newline-delimited JSON, one event object per line.
"""
import asyncio
import json
from typing import Any, AsyncIterator, Dict, List, Optional
from urllib.parse import quote

import aiohttp
from pydantic import ValidationError

from .base import BackendStatus, ChatBackend
from ..config import BackendConfig
from ..exceptions import (
    BackendConnectionError,
    BackendRequestError,
    BackendTimeoutError,
    BackendUnavailableError,
    InvalidEventError,
    ProtocolError,
    StreamProtocolError,
)
from ..logging import CelloChatLogger, get_backend_logger
from ..protocol.events import Event, is_terminal, parse_event
from ..protocol.models import ChatRequest, ChatResponse, HistoryRecord


async def decode_event_stream(
    chunks: AsyncIterator[bytes],
    logger: Optional[CelloChatLogger] = None,
) -> AsyncIterator[Event]:
    """Decode NDJSON chunks into events.

    Lines may be split across chunks. Blank lines, ``data:`` prefixes and
    keep-alive comments are tolerated; lines that are not JSON or not a known
    event are logged and skipped.
    """
    logger = logger or get_backend_logger("stream")
    buffer = b""

    async for chunk in chunks:
        buffer += chunk
        while b"\n" in buffer:
            line, buffer = buffer.split(b"\n", 1)
            event = _decode_line(line, logger)
            if event is not None:
                yield event

    if buffer.strip():
        event = _decode_line(buffer, logger)
        if event is not None:
            yield event


def _decode_line(raw: bytes, logger: CelloChatLogger) -> Optional[Event]:
    line = raw.decode("utf-8", errors="replace").strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        line = line[len("data:"):].strip()

    try:
        data = json.loads(line)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse stream line", chunk=line[:200], error=str(e))
        return None

    try:
        event = parse_event(data)
    except InvalidEventError as e:
        logger.warning("Skipping unrecognised stream event", error=str(e), event_type=data.get("type") if isinstance(data, dict) else None)
        return None

    logger.log_stream_event(event.type)
    return event


class HttpChatBackend(ChatBackend):
    """Chat backend served by the spreadsheet HTTP API."""

    def __init__(self, config: BackendConfig, name: str = "http"):
        super().__init__(config.model_dump(), name)
        self.backend_config = config
        self.base_url = config.api_url
        self.session: Optional[aiohttp.ClientSession] = None

    @property
    def backend_type(self) -> str:
        return "http"

    @property
    def supports_streaming(self) -> bool:
        return self.backend_config.streaming

    async def initialize(self) -> None:
        """Open the HTTP session."""
        if self.session is not None:
            return
        self.logger.info("Initializing HTTP chat backend", api_url=self.base_url)
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._connection_timeout)
        self.session = aiohttp.ClientSession(timeout=timeout, trust_env=True)
        self._status = BackendStatus.CONNECTED

    async def cleanup(self) -> None:
        if self.session:
            await self.session.close()
            self.session = None
        self._status = BackendStatus.DISCONNECTED
        self.logger.info("HTTP chat backend cleaned up")

    async def health_check(self) -> bool:
        if not self.session:
            return False
        try:
            async with self.session.get(f"{self.base_url}/spreadsheets") as response:
                healthy = response.status == 200
                self._status = BackendStatus.AVAILABLE if healthy else BackendStatus.UNAVAILABLE
                return healthy
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self.logger.debug("Health check failed", error=str(e))
            self._status = BackendStatus.ERROR
            return False

    def _require_session(self) -> aiohttp.ClientSession:
        if not self.session:
            raise BackendUnavailableError("Backend not initialized", backend_name=self.name)
        return self.session

    def _chat_path(self, conversation_id: str, suffix: str = "") -> str:
        return f"/spreadsheets/{quote(conversation_id, safe='')}/chat{suffix}"

    async def _raise_for_status(self, response: aiohttp.ClientResponse) -> None:
        """Raise BackendRequestError carrying the server's own message."""
        if response.status < 400:
            return

        message = f"Request failed with status {response.status}"
        details: Any = None
        text = await response.text(errors="replace")
        if text:
            try:
                details = json.loads(text)
            except json.JSONDecodeError:
                message = text
            else:
                if isinstance(details, dict) and "error" in details:
                    message = str(details["error"])
                else:
                    message = text

        self.logger.warning("Backend request rejected",
                            status=response.status,
                            error=message,
                            url=str(response.url))
        raise BackendRequestError(
            message,
            status=response.status,
            backend_name=self.name,
            details=details,
        )

    async def _request(self, method: str, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        session = self._require_session()
        self.logger.log_request(method, path)

        try:
            async with session.request(
                method,
                f"{self.base_url}{path}",
                json=payload,
                timeout=aiohttp.ClientTimeout(total=self._request_timeout),
            ) as response:
                await self._raise_for_status(response)
                if response.status == 204:
                    return None
                return await response.json(content_type=None)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ProtocolError(
                "Backend returned a response that is not JSON",
                context={"method": method, "path": path},
                cause=e
            )
        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"Request timed out after {self._request_timeout}s",
                backend_name=self.name,
                cause=e
            )
        except aiohttp.ClientError as e:
            raise BackendConnectionError(
                f"Failed to connect to {self.base_url}: {str(e)}",
                backend_name=self.name,
                cause=e
            )

    async def get_history(self, conversation_id: str) -> List[HistoryRecord]:
        data = await self._request("GET", self._chat_path(conversation_id))
        messages = (data or {}).get("messages") or []
        try:
            return [HistoryRecord.model_validate(message) for message in messages]
        except ValidationError as e:
            raise ProtocolError("Malformed chat history from backend", context={"conversation_id": conversation_id}, cause=e)

    async def send_message(self, conversation_id: str, request: ChatRequest) -> ChatResponse:
        data = await self._request("POST", self._chat_path(conversation_id), request.to_wire())
        try:
            return ChatResponse.model_validate(data or {})
        except ValidationError as e:
            raise ProtocolError("Malformed chat response from backend", context={"conversation_id": conversation_id}, cause=e)

    async def clear_history(self, conversation_id: str) -> None:
        await self._request("DELETE", self._chat_path(conversation_id))

    async def send_message_stream(self, conversation_id: str, request: ChatRequest) -> AsyncIterator[Event]:
        """Stream one turn; raises StreamProtocolError if no terminal event arrives."""
        session = self._require_session()
        path = self._chat_path(conversation_id, "/stream")
        self.logger.log_request("POST", path, streaming=True)

        try:
            async with session.post(
                f"{self.base_url}{path}",
                json=request.to_wire(),
                headers={"Accept": "application/x-ndjson"},
                # Bounds the gap between chunks, not the whole stream
                timeout=aiohttp.ClientTimeout(total=None, sock_read=self._request_timeout),
            ) as response:
                await self._raise_for_status(response)

                async for event in decode_event_stream(response.content.iter_any(), self.logger):
                    yield event
                    if is_terminal(event):
                        return

        except asyncio.TimeoutError as e:
            raise BackendTimeoutError(
                f"Chat stream stalled for {self._request_timeout}s",
                backend_name=self.name,
                cause=e
            )
        except aiohttp.ClientError as e:
            raise BackendConnectionError(
                f"Failed to connect to {self.base_url}: {str(e)}",
                backend_name=self.name,
                cause=e
            )

        raise StreamProtocolError(
            "Chat stream ended before the response completed",
            context={"conversation_id": conversation_id},
        )
