"""
wabot

Multi-session WhatsApp Web bot. Starts one browser-backed session per
configured account, notifies an operator number when each session is ready
and answers a few text commands (!ping, !status, !sessions).
"""

from .session_manager import WhatsAppSessionManager
from .commands import CommandBot
from .config import BotConfig, ConfigManager, get_config, load_config, load_config_from_env
from .models import SessionConfig, SessionInfo, SessionStatus, IncomingMessage
from .exceptions import (
    BotError,
    ConfigurationError,
    SessionError,
    SessionNotFoundError,
    SessionExistsError,
    ClientError,
    AuthenticationError,
    SendError,
    ClientClosedError,
)

__version__ = "0.1.0"
__all__ = [
    "WhatsAppSessionManager",
    "CommandBot",
    "BotConfig",
    "ConfigManager",
    "get_config",
    "load_config",
    "load_config_from_env",
    "SessionConfig",
    "SessionInfo",
    "SessionStatus",
    "IncomingMessage",
    "BotError",
    "ConfigurationError",
    "SessionError",
    "SessionNotFoundError",
    "SessionExistsError",
    "ClientError",
    "AuthenticationError",
    "SendError",
    "ClientClosedError",
]
