"""
Cello Chat: the spreadsheet assistant's chat panel.

Folds the backend's streamed chat events into a consistent message timeline
and renders it in the terminal.
"""

__version__ = "0.1.0"
__author__ = "Cello Chat Contributors"
__description__ = "Streaming chat client for the Cello spreadsheet assistant"

from .config import Config, get_config, reload_config
from .logging import get_main_logger, configure_logging
from .exceptions import CelloChatError

__all__ = [
    "__version__",
    "__author__",
    "__description__",
    "Config",
    "get_config",
    "reload_config",
    "get_main_logger",
    "configure_logging",
    "CelloChatError"
]
