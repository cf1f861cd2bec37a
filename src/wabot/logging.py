"""Logging setup and error bookkeeping for the bot."""

import logging
import sys
import traceback
from pathlib import Path
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    ClientError,
    SessionError,
)

LOGGER_NAME = "wabot"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class LogLevel(str, Enum):
    """Logging level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @property
    def level(self) -> int:
        """Numeric level understood by the logging module."""
        return getattr(logging, self.value)


def default_severity(exception: BaseException) -> LogLevel:
    """Severity used for an exception when the caller does not choose one."""
    if isinstance(exception, (AuthenticationError, ConfigurationError)):
        return LogLevel.WARNING
    if isinstance(exception, (SessionError, ClientError)):
        return LogLevel.ERROR
    return LogLevel.CRITICAL


def session_of(context: Optional[str]) -> Optional[str]:
    """Session id at the end of an error context (``notify:main`` -> ``main``)."""
    if not context:
        return None
    return context.rsplit(":", 1)[-1]


class ErrorHandler:
    """
    Owns the ``wabot`` logger and remembers recent errors.

    Every failure the bot swallows (a notification that could not be sent,
    a browser that would not close, a command reply that failed) goes through
    :meth:`handle_exception`, so ``!status`` and the shutdown summary can
    report it later.
    """

    _instance: Optional["ErrorHandler"] = None

    def __new__(cls) -> "ErrorHandler":
        """Implement singleton pattern."""
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self.logger = logging.getLogger(LOGGER_NAME)
        self.error_history: List[Dict[str, Any]] = []
        self.max_history = 1000
        self.log_level = LogLevel.INFO

        if not self.logger.handlers:
            console = logging.StreamHandler(sys.stdout)
            console.setLevel(self.log_level.level)
            console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            self.logger.addHandler(console)
        self.logger.setLevel(logging.DEBUG)

    def set_log_level(self, level: LogLevel) -> None:
        """Set the level of the console handlers; log files keep everything."""
        self.log_level = level
        for handler in self.logger.handlers:
            if not isinstance(handler, logging.FileHandler):
                handler.setLevel(level.level)

    def add_file_handler(self, log_file: str) -> None:
        """Also write every record to ``log_file``. Adding the same file twice is a no-op."""
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        for handler in self.logger.handlers:
            if isinstance(handler, logging.FileHandler) and Path(
                handler.baseFilename
            ) == log_path.resolve():
                return

        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        self.logger.addHandler(file_handler)

    def handle_exception(
        self,
        exception: BaseException,
        context: Optional[str] = None,
        severity: Optional[LogLevel] = None,
    ) -> Dict[str, Any]:
        """
        Record and log an exception.

        Args:
            exception: Exception to handle
            context: ``<operation>:<session id>``, e.g. ``notify:main``
            severity: Level to log and record at; by default it follows the
                exception family (see :func:`default_severity`)

        Returns:
            The recorded entry
        """
        level = severity or default_severity(exception)
        name = type(exception).__name__
        entry = {
            "timestamp": datetime.now().isoformat(),
            "type": name,
            "message": str(exception),
            "context": context,
            "session_id": session_of(context),
            "severity": level.value,
            "traceback": traceback.format_exc(),
        }

        self.error_history.append(entry)
        if len(self.error_history) > self.max_history:
            del self.error_history[: -self.max_history]

        label = name if level != LogLevel.CRITICAL else f"Unexpected error: {name}"
        self.logger.log(level.level, f"[{context}] {label}: {exception}")
        return entry

    def get_error_history(
        self,
        count: int = 10,
        severity: Optional[LogLevel] = None,
        session_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Most recent errors, oldest first.

        Args:
            count: Number of errors to return (0 for all)
            severity: Only errors recorded at this level
            session_id: Only errors raised for this session
        """
        history = [
            e for e in self.error_history
            if (severity is None or e["severity"] == severity.value)
            and (session_id is None or e["session_id"] == session_id)
        ]
        return history[-count:] if count else history

    def get_error_summary(self) -> Dict[str, Any]:
        """Error counts by exception type and by session."""
        by_type: Dict[str, int] = {}
        by_session: Dict[str, int] = {}
        for error in self.error_history:
            by_type[error["type"]] = by_type.get(error["type"], 0) + 1
            session = error["session_id"] or "-"
            by_session[session] = by_session.get(session, 0) + 1

        return {
            "total_errors": len(self.error_history),
            "by_type": by_type,
            "by_session": by_session,
        }


_error_handler = ErrorHandler()


def get_error_handler() -> ErrorHandler:
    """Get global error handler instance."""
    return _error_handler


def configure_logging(
    log_level: LogLevel = LogLevel.INFO, log_file: Optional[str] = None
) -> None:
    """
    Configure logging globally.

    Args:
        log_level: Console logging level
        log_file: Optional log file path
    """
    _error_handler.set_log_level(log_level)
    if log_file:
        _error_handler.add_file_handler(log_file)


def handle_exception(
    exception: BaseException,
    context: Optional[str] = None,
    severity: Optional[LogLevel] = None,
) -> Dict[str, Any]:
    """Record and log an exception with the global error handler."""
    return _error_handler.handle_exception(exception, context, severity)
