"""Transport layer: the WhatsApp Web client behind each session."""

from .web import WebClient, ConnectionState, MessageKey, parse_message_id, EVENTS

__all__ = ["WebClient", "ConnectionState", "MessageKey", "parse_message_id", "EVENTS"]
