"""
Custom exception hierarchy for Cello Chat.

Provides specific exceptions for backend transport, stream protocol and
chat session failures, carrying context for logging and user-facing notices.
"""
from typing import Any, Dict, Optional


class CelloChatError(Exception):
    """Base exception for all Cello Chat errors."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.cause = cause
        super().__init__(self.message)

    def __str__(self) -> str:
        """Return formatted error message."""
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# Backend Errors
class BackendError(CelloChatError):
    """Base class for chat backend errors."""

    def __init__(
        self,
        message: str,
        backend_name: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ):
        self.backend_name = backend_name
        context = context or {}
        if backend_name:
            context["backend"] = backend_name
        super().__init__(message, context, cause)


class BackendUnavailableError(BackendError):
    """Backend is not configured or cannot serve the request."""
    pass


class BackendConnectionError(BackendError):
    """Error connecting to the backend service."""
    pass


class BackendTimeoutError(BackendError):
    """Backend request timed out."""
    pass


class BackendRequestError(BackendError):
    """Backend answered with a non-success HTTP status."""

    def __init__(
        self,
        message: str,
        status: Optional[int] = None,
        backend_name: Optional[str] = None,
        details: Any = None,
        cause: Optional[Exception] = None
    ):
        self.status = status
        self.details = details
        super().__init__(message, backend_name=backend_name, cause=cause)

    def __str__(self) -> str:
        # The backend's own message is what users get to see.
        return self.message


# Protocol Errors
class ProtocolError(CelloChatError):
    """Base class for chat stream protocol violations."""
    pass


class InvalidEventError(ProtocolError):
    """A stream event could not be decoded into a known event type."""

    def __init__(
        self,
        message: str,
        payload: Any = None,
        cause: Optional[Exception] = None
    ):
        self.payload = payload
        super().__init__(message, cause=cause)


class StreamProtocolError(ProtocolError):
    """The stream broke its contract, e.g. ended without a terminal event."""
    pass


# Session Errors
class SessionError(CelloChatError):
    """Base class for chat session errors."""
    pass


class SessionBusyError(SessionError):
    """A turn, history load or clear is already in flight."""
    pass


def format_error_for_user(error: Exception) -> str:
    """Format error message for display in the chat timeline."""
    if isinstance(error, CelloChatError):
        return error.message
    return str(error) or type(error).__name__


def get_error_details(error: Exception) -> Dict[str, Any]:
    """Extract detailed error information for logging."""
    details = {
        "error_type": type(error).__name__,
        "error_message": str(error),
    }

    if isinstance(error, CelloChatError):
        details.update({
            "context": error.context,
            "cause": str(error.cause) if error.cause else None,
        })

        if isinstance(error, BackendRequestError) and error.status is not None:
            details["status"] = error.status
        elif isinstance(error, BackendError) and error.backend_name:
            details["backend"] = error.backend_name

    return details
