"""Configuration for the bot and its sessions."""

import os
import json
from pathlib import Path
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field, asdict

from pydantic import ValidationError

from .exceptions import ConfigurationError
from .logging import LogLevel
from .models import SessionConfig, normalize_chat_id

DEFAULT_READY_MESSAGE = "🤖 WhatsApp bot is now ready and operational!"

DEFAULT_BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-gpu",
    "--no-first-run",
    "--disable-blink-features=AutomationControlled",
]


def default_sessions() -> List[SessionConfig]:
    """Single session used when nothing is configured."""
    return [SessionConfig(id="default", name="Default")]


@dataclass
class BotConfig:
    """Bot configuration."""

    # Sessions, started in this order
    sessions: List[SessionConfig] = field(default_factory=list)

    # Startup
    startup_delay_seconds: float = 5.0

    # Browser
    headless: bool = True
    browser_args: List[str] = field(default_factory=lambda: list(DEFAULT_BROWSER_ARGS))
    qr_timeout_seconds: int = 120
    poll_interval_seconds: float = 2.0

    # Behaviour
    ready_message: str = DEFAULT_READY_MESSAGE
    command_prefix: str = "!"

    # Logging
    log_level: LogLevel = LogLevel.INFO
    log_file: Optional[str] = None

    def get_sessions(self) -> List[SessionConfig]:
        """Configured sessions, falling back to the single default session."""
        return list(self.sessions) if self.sessions else default_sessions()

    def get_session(self, session_id: str) -> Optional[SessionConfig]:
        """Find a configured session by id."""
        for session in self.get_sessions():
            if session.id == session_id:
                return session
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        data = asdict(self)
        data["sessions"] = [
            s.model_dump(by_alias=True, exclude_none=True) for s in self.sessions
        ]
        data["log_level"] = self.log_level.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BotConfig":
        """
        Create config from dictionary.

        Raises:
            ConfigurationError: If a session entry or an enum value is invalid
        """
        data = dict(data)
        known = set(cls.__dataclass_fields__)
        unknown = set(data) - known
        if unknown:
            raise ConfigurationError(
                f"Unknown configuration key(s): {', '.join(sorted(unknown))}"
            )

        try:
            if "sessions" in data:
                data["sessions"] = [
                    s if isinstance(s, SessionConfig) else SessionConfig(**s)
                    for s in data["sessions"] or []
                ]
            if "log_level" in data:
                data["log_level"] = LogLevel(str(data["log_level"]).upper())
        except (ValidationError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        ids = [s.id for s in data.get("sessions", [])]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate session id(s): {', '.join(duplicates)}"
            )

        return cls(**data)


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manage bot configuration."""

    _instance: Optional["ConfigManager"] = None
    _config: BotConfig

    def __new__(cls) -> "ConfigManager":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        """Initialize config manager."""
        if self._initialized:
            return

        self._initialized = True
        self._config = BotConfig()
        self._config_file: Optional[Path] = None

    def load_config(self, config_file: str) -> None:
        """
        Load configuration from JSON file.

        Args:
            config_file: Path to config JSON file

        Raises:
            FileNotFoundError: If the file does not exist
            ConfigurationError: If the file is not valid configuration
        """
        config_path = Path(config_file).expanduser()

        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_file}")

        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ConfigurationError(f"Invalid JSON in {config_file}: {e}") from e

        # A bare list is shorthand for {"sessions": [...]}
        if isinstance(data, list):
            data = {"sessions": data}
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config root must be an object: {config_file}")

        self._config = BotConfig.from_dict(data)
        self._config_file = config_path

    def save_config(self, config_file: Optional[str] = None) -> None:
        """
        Save configuration to JSON file.

        Args:
            config_file: Path to save config (uses loaded path if not provided)
        """
        if config_file:
            self._config_file = Path(config_file).expanduser()
        elif not self._config_file:
            raise ValueError("No config file path specified")

        self._config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(self._config_file, "w", encoding="utf-8") as f:
            json.dump(self._config.to_dict(), f, indent=2, ensure_ascii=False)

    def load_config_from_env(self) -> None:
        """
        Load configuration from environment variables.

        Raises:
            ConfigurationError: If a variable holds an invalid value
        """
        try:
            if "WABOT_STARTUP_DELAY" in os.environ:
                self._config.startup_delay_seconds = float(os.environ["WABOT_STARTUP_DELAY"])

            if "WABOT_HEADLESS" in os.environ:
                self._config.headless = _parse_bool(os.environ["WABOT_HEADLESS"])

            if "WABOT_LOG_LEVEL" in os.environ:
                self._config.log_level = LogLevel(os.environ["WABOT_LOG_LEVEL"].upper())

            if "WABOT_LOG_FILE" in os.environ:
                self._config.log_file = os.environ["WABOT_LOG_FILE"]

            if "WABOT_SESSIONS" in os.environ and not self._config.sessions:
                ids = [s.strip() for s in os.environ["WABOT_SESSIONS"].split(",") if s.strip()]
                self._config.sessions = [SessionConfig(id=i) for i in ids]

            if "WABOT_NOTIFY_NUMBER" in os.environ:
                number = os.environ["WABOT_NOTIFY_NUMBER"]
                self._config.sessions = [
                    s if s.notify_number else s.model_copy(
                        update={"notify_number": normalize_chat_id(number)}
                    )
                    for s in self._config.get_sessions()
                ]
        except (ValidationError, ValueError) as e:
            raise ConfigurationError(f"Invalid environment configuration: {e}") from e

    def get_config(self) -> BotConfig:
        """Get current configuration."""
        return self._config

    def update_config(self, **kwargs: Any) -> None:
        """
        Update specific configuration values.

        Args:
            **kwargs: Configuration keys and values to update
        """
        for key, value in kwargs.items():
            if hasattr(self._config, key):
                setattr(self._config, key, value)
            else:
                raise ValueError(f"Unknown configuration key: {key}")

    def reset_to_defaults(self) -> None:
        """Reset configuration to defaults."""
        self._config = BotConfig()
        self._config_file = None


# Global config manager instance
_config_manager = ConfigManager()


def get_config_manager() -> ConfigManager:
    """Get global config manager instance."""
    return _config_manager


def get_config() -> BotConfig:
    """Get current bot configuration."""
    return _config_manager.get_config()


def load_config(config_file: str) -> None:
    """Load configuration from file."""
    _config_manager.load_config(config_file)


def load_config_from_env() -> None:
    """Load configuration from environment variables."""
    _config_manager.load_config_from_env()
