"""Custom exceptions for the wabot package."""


class BotError(Exception):
    """Base exception for all bot errors."""

    pass


class ConfigurationError(BotError):
    """Invalid or unreadable configuration."""

    pass


class SessionError(BotError):
    """Session lifecycle operation failed."""

    pass


class SessionNotFoundError(SessionError):
    """No session registered under the given id."""

    pass


class SessionExistsError(SessionError):
    """A session with the given id is already registered."""

    pass


class ClientError(BotError):
    """WhatsApp Web client failure."""

    pass


class AuthenticationError(ClientError):
    """Pairing or login failed."""

    pass


class SendError(ClientError):
    """Outgoing message could not be delivered to WhatsApp Web."""

    pass


class ClientClosedError(ClientError):
    """Operation attempted on a destroyed client."""

    pass
