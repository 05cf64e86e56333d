"""
Configuration management for Cello Chat.

Provides type-safe configuration loading from YAML/TOML files and environment variables.
"""
import os
from pathlib import Path
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator
import yaml


DEFAULT_WELCOME_MESSAGE = (
    "Hey! 🎻 I'm **Cello**, your AI assistant in this interactive 2D canvas. "
    "Select cells, ask questions, and I'll help you analyze, transform, and visualize your data."
)

DEFAULT_NO_CONVERSATION_MESSAGE = (
    "Hey! 👋 To save our chat history, you'll need to open a spreadsheet first. "
    "Then we can keep track of all our conversations!"
)


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class BackendConfig(BaseModel):
    """Spreadsheet chat backend configuration."""
    api_url: str = Field(default="http://localhost:4000", description="Backend base URL")
    timeout: int = Field(default=300, description="Request timeout in seconds")
    connect_timeout: int = Field(default=30, description="Connection timeout in seconds")
    streaming: bool = Field(default=True, description="Use the streaming chat endpoint")

    @field_validator("api_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize the base URL so paths can be appended."""
        return v.rstrip("/")


class ChatConfig(BaseModel):
    """Chat panel behaviour."""
    welcome_message: str = Field(default=DEFAULT_WELCOME_MESSAGE, description="Seeded welcome entry")
    no_conversation_message: str = Field(
        default=DEFAULT_NO_CONVERSATION_MESSAGE,
        description="Reply used when no spreadsheet is open"
    )
    error_prefix: str = Field(
        default="Whoops! 😬 Something went wrong: ",
        description="Prefix for transport failure messages"
    )
    interrupted_suffix: str = Field(
        default="\n\n_[Response interrupted by user]_",
        description="Suffix appended when the user stops a response"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: LogLevel = Field(default=LogLevel.INFO, description="Log level")
    format: str = Field(default="human", description="Log format: human, json")
    file: Optional[str] = Field(default=None, description="Log file path")
    max_size: int = Field(default=10_000_000, description="Max log file size in bytes")
    backup_count: int = Field(default=5, description="Number of backup files to keep")


class UIConfig(BaseModel):
    """TUI configuration."""
    theme: str = Field(default="dark", description="UI theme")
    auto_scroll: bool = Field(default=True, description="Auto-scroll chat")
    show_tool_calls: bool = Field(default=True, description="Show tool call summaries under messages")
    show_timestamps: bool = Field(default=True, description="Show message times")


class Config(BaseModel):
    """Main configuration model."""
    backend: BackendConfig = Field(default_factory=BackendConfig)
    chat: ChatConfig = Field(default_factory=ChatConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    ui: UIConfig = Field(default_factory=UIConfig)

    default_conversation: Optional[str] = Field(
        default=None, description="Spreadsheet id to open on start"
    )


def _user_config_dir() -> Path:
    if config_home := os.getenv("XDG_CONFIG_HOME"):
        return Path(config_home) / "cello-chat"
    return Path.home() / ".config" / "cello-chat"


def get_config_paths() -> List[Path]:
    """Get possible configuration file paths in order of preference."""
    paths = []

    # Current directory
    for ext in ['yaml', 'yml', 'toml']:
        paths.append(Path(f"cello-chat.{ext}"))
        paths.append(Path(f"config.{ext}"))

    # User config directory
    config_dir = _user_config_dir()
    for ext in ['yaml', 'yml', 'toml']:
        paths.append(config_dir / f"config.{ext}")

    # System config directory
    for ext in ['yaml', 'yml', 'toml']:
        paths.append(Path(f"/etc/cello-chat/config.{ext}"))

    return paths


def _read_config_file(config_path: Path) -> dict:
    if config_path.suffix in ['.yaml', '.yml']:
        with open(config_path, 'r') as f:
            return yaml.safe_load(f) or {}

    try:
        import tomllib  # Python 3.11+
    except ImportError:
        import tomli as tomllib

    with open(config_path, 'rb') as f:
        return tomllib.load(f)


def _env_overrides() -> dict:
    env_overrides = {}

    if api_url := os.getenv("CELLO_CHAT_API_URL"):
        env_overrides.setdefault("backend", {})["api_url"] = api_url
    if streaming := os.getenv("CELLO_CHAT_STREAMING"):
        env_overrides.setdefault("backend", {})["streaming"] = streaming.lower() in ("1", "true", "yes", "on")
    if timeout := os.getenv("CELLO_CHAT_TIMEOUT"):
        try:
            env_overrides.setdefault("backend", {})["timeout"] = int(timeout)
        except ValueError:
            print(f"Warning: Invalid timeout in CELLO_CHAT_TIMEOUT: {timeout}")
            print("Using default timeout instead.")

    if log_level := os.getenv("CELLO_CHAT_LOG_LEVEL"):
        env_overrides.setdefault("logging", {})["level"] = log_level.upper()
    if log_file := os.getenv("CELLO_CHAT_LOG_FILE"):
        env_overrides.setdefault("logging", {})["file"] = log_file

    if conversation := os.getenv("CELLO_CHAT_CONVERSATION"):
        env_overrides["default_conversation"] = conversation

    return env_overrides


def _merge(base: dict, overrides: dict) -> dict:
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_config(paths: Optional[List[Path]] = None) -> Config:
    """Load configuration from files and environment variables."""
    config_data = {}

    for config_path in paths if paths is not None else get_config_paths():
        if not config_path.exists():
            continue
        try:
            config_data = _read_config_file(config_path)
            break
        except yaml.YAMLError as e:
            print(f"Warning: Invalid YAML syntax in {config_path}: {e}")
            print("Using default configuration instead.")
        except PermissionError:
            print(f"Warning: No permission to read config file {config_path}")
        except Exception as e:
            print(f"Warning: Failed to load config from {config_path}: {e}")
            print("Using default configuration instead.")

    # Merge configurations: defaults < file < environment
    final_config = _merge(config_data, _env_overrides())

    try:
        return Config(**final_config)
    except Exception as e:
        print(f"Error: Invalid configuration data: {e}")
        print("Using default configuration. Please check your config file and environment variables.")
        return Config()


def save_config(config: Config, path: Optional[Path] = None) -> Path:
    """Save configuration to file."""
    if path is None:
        config_dir = _user_config_dir()
        config_dir.mkdir(parents=True, exist_ok=True)
        path = config_dir / "config.yaml"

    config_dict = config.model_dump(mode="json")

    with open(path, 'w') as f:
        yaml.dump(config_dict, f, default_flow_style=False, sort_keys=False, allow_unicode=True)

    return path


# Global configuration instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reload_config() -> Config:
    """Reload configuration from files."""
    global _config
    _config = load_config()
    return _config
