"""Data models for the bot."""

import re
from enum import Enum
from pathlib import Path
from typing import Optional, Callable, Awaitable, Any
from pydantic import BaseModel, Field, field_validator, model_validator, ConfigDict

CHAT_SUFFIX = "@c.us"

_SESSION_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")
_PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")


def normalize_chat_id(value: Optional[str]) -> Optional[str]:
    """
    Turn a phone number or chat id into a WhatsApp chat id.

    A bare number such as ``+91 93709-28324`` becomes ``919370928324@c.us``;
    anything already containing ``@`` is returned unchanged.
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if "@" in value:
        return value
    if not _PHONE_RE.match(value):
        raise ValueError(f"Not a phone number or chat id: {value!r}")
    digits = re.sub(r"\D", "", value)
    if not digits:
        raise ValueError(f"Not a phone number or chat id: {value!r}")
    return f"{digits}{CHAT_SUFFIX}"


def chat_id_to_phone(chat_id: str) -> str:
    """Strip the server suffix from a chat id (``123@c.us`` -> ``123``)."""
    return chat_id.split("@", 1)[0]


class SessionStatus(str, Enum):
    """Last lifecycle signal observed for a session."""

    CREATED = "created"
    QR = "qr"
    AUTHENTICATED = "authenticated"
    READY = "ready"
    AUTH_FAILURE = "auth_failure"
    DISCONNECTED = "disconnected"
    STOPPED = "stopped"


class SessionConfig(BaseModel):
    """Operator-supplied configuration for one WhatsApp account."""

    id: str
    name: str = ""
    data_path: str = Field(default="./sessions", alias="dataPath")
    notify_number: Optional[str] = Field(default=None, alias="notifyNumber")
    enabled: bool = True

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Session id cannot be empty")
        if not _SESSION_ID_RE.match(v):
            raise ValueError(
                "Session id may only contain letters, digits, '_' and '-'"
            )
        return v

    @field_validator("notify_number")
    @classmethod
    def validate_notify_number(cls, v: Optional[str]) -> Optional[str]:
        return normalize_chat_id(v)

    @model_validator(mode="before")
    @classmethod
    def default_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("name"):
            data = {**data, "name": str(data.get("id", "")).strip()}
        return data

    @property
    def profile_dir(self) -> str:
        """Directory holding the persistent browser profile."""
        return str(Path(self.data_path) / f"session-{self.id}")


class IncomingMessage(BaseModel):
    """
    Text message received by a session.

    ``timestamp`` is the send time in epoch seconds when the transport knows
    it. Messages read from the WhatsApp Web page leave it ``None``, since the
    page only shows a rounded clock time.
    """

    id: str
    chat_id: str
    sender: Optional[str] = None
    body: str = ""
    timestamp: Optional[int] = None
    from_me: bool = False

    _reply: Optional[Callable[[str], Awaitable[Any]]] = None

    def bind_reply(self, reply: Callable[[str], Awaitable[Any]]) -> "IncomingMessage":
        """Attach the coroutine used by :meth:`reply`."""
        self._reply = reply
        return self

    async def reply(self, text: str) -> Any:
        """Send ``text`` back to the chat this message came from."""
        if self._reply is None:
            raise RuntimeError("Message is not bound to a client")
        return await self._reply(text)


class SessionInfo(BaseModel):
    """Point-in-time view of a session used for status reporting."""

    id: str
    name: str
    status: SessionStatus
    active: bool = False
    enabled: bool = True
