"""
Logging infrastructure for Cello Chat.

Provides structured logging with correlation IDs per chat turn, multiple
output formats, and backend-specific log channels.
"""
import logging
import logging.handlers
import os
import sys
import tempfile
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import Any, Dict, Optional

import structlog

from .config import LoggingConfig


# Context variable for correlation ID tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)


class CorrelationIDProcessor:
    """Add correlation ID to log records."""

    def __call__(self, logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        """Add correlation ID to the event dictionary."""
        if cid := correlation_id.get():
            event_dict['correlation_id'] = cid
        return event_dict


def setup_logging(config: LoggingConfig, tui_mode: bool = False) -> None:
    """Setup structured logging based on configuration."""
    structlog.reset_defaults()
    level = getattr(logging, config.level.value)

    if tui_mode:
        # Nothing may be written to stdout while Textual owns the terminal
        if not config.file:
            log_dir = os.path.join(tempfile.gettempdir(), "cello-chat")
            os.makedirs(log_dir, exist_ok=True)
            config.file = os.path.join(log_dir, "cello-chat.log")

        logging.basicConfig(
            format="%(message)s",
            level=level,
            handlers=[],
            force=True,
        )
    else:
        logging.basicConfig(
            format="%(message)s",
            stream=sys.stderr,
            level=level,
            force=True,
        )

    if config.file:
        file_path = Path(config.file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            filename=config.file,
            maxBytes=config.max_size,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(level)

        root_logger = logging.getLogger()
        root_logger.addHandler(file_handler)
        root_logger.setLevel(level)

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        CorrelationIDProcessor(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if config.format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=not tui_mode))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: Optional[str] = None, backend: Optional[str] = None) -> structlog.BoundLogger:
    """Get a configured logger instance."""
    logger = structlog.get_logger(name or "cello_chat")

    if backend:
        logger = logger.bind(backend=backend)

    return logger


@contextmanager
def log_context(
    correlation_id_value: Optional[str] = None,
    **context_data: Any
):
    """
    Context manager binding a correlation ID and extra context to logs.

    Every log line emitted inside the block, from any logger, carries the
    correlation ID; the yielded logger also carries ``context_data``.

    Args:
        correlation_id_value: Correlation ID to use. If None, generates a new one.
        **context_data: Additional context data to include in logs.
    """
    if correlation_id_value is None:
        correlation_id_value = str(uuid.uuid4())[:8]

    token = correlation_id.set(correlation_id_value)
    logger = get_logger().bind(**context_data)

    try:
        yield logger
    finally:
        correlation_id.reset(token)


class CelloChatLogger:
    """
    Specialized logger for Cello Chat with convenience methods.
    """

    def __init__(self, name: str = "cello_chat", backend: Optional[str] = None):
        self.name = name
        self.backend = backend
        self._logger = get_logger(name, backend)

    def debug(self, message: str, **kwargs: Any) -> None:
        self._logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs: Any) -> None:
        self._logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self._logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self._logger.error(message, **kwargs)

    def critical(self, message: str, **kwargs: Any) -> None:
        self._logger.critical(message, **kwargs)

    def log_request(self, method: str, path: str, **kwargs: Any) -> None:
        """Log an outgoing backend request."""
        self._logger.info("Backend request sent",
                          backend=self.backend,
                          request_type="backend_request",
                          method=method,
                          path=path,
                          **kwargs)

    def log_stream_event(self, event_type: str, **kwargs: Any) -> None:
        """Log a decoded chat stream event."""
        self._logger.debug("Stream event received",
                           backend=self.backend,
                           request_type="stream_event",
                           event_type=event_type,
                           **kwargs)


# Global logger instances
_main_logger: Optional[CelloChatLogger] = None
_backend_loggers: Dict[str, CelloChatLogger] = {}


def get_main_logger() -> CelloChatLogger:
    """Get the main application logger."""
    global _main_logger
    if _main_logger is None:
        _main_logger = CelloChatLogger("cello_chat")
    return _main_logger


def get_backend_logger(backend_name: str) -> CelloChatLogger:
    """Get a backend-specific logger."""
    if backend_name not in _backend_loggers:
        _backend_loggers[backend_name] = CelloChatLogger(f"cello_chat.{backend_name}", backend_name)
    return _backend_loggers[backend_name]


def configure_logging(config: LoggingConfig, tui_mode: bool = False) -> None:
    """Configure logging system with the provided configuration."""
    setup_logging(config, tui_mode)

    logger = get_main_logger()
    logger.info("Logging system configured",
                level=config.level.value,
                format=config.format,
                file=config.file)


def log_startup(version: str, api_url: Optional[str] = None) -> None:
    """Log application startup."""
    with log_context() as ctx_logger:
        ctx_logger.info("Cello Chat starting up",
                        version=version,
                        api_url=api_url,
                        request_type="startup")


def log_shutdown() -> None:
    """Log application shutdown."""
    with log_context() as ctx_logger:
        ctx_logger.info("Cello Chat shutting down",
                        request_type="shutdown")
