"""Text command handling for incoming messages."""

import logging
from typing import Any, Awaitable, Callable, Dict

from .logging import get_error_handler, handle_exception
from .models import IncomingMessage, SessionStatus

logger = logging.getLogger(__name__)

PONG = "pong 🏓"


class CommandBot:
    """
    Answers ``!ping``, ``!status`` and ``!sessions``.

    Commands are matched by exact equality on the stripped message body, so
    ``!ping now`` or ``!PING`` are ignored like any other text.
    """

    def __init__(self, manager: Any, prefix: str = "!"):
        """
        Initialize bot.

        Args:
            manager: Session manager queried for status replies
            prefix: Command prefix
        """
        self.manager = manager
        self.prefix = prefix
        self.commands: Dict[str, Callable[[str], Awaitable[str]]] = {
            f"{prefix}ping": self.cmd_ping,
            f"{prefix}status": self.cmd_status,
            f"{prefix}sessions": self.cmd_sessions,
        }

    async def handle_message(self, session_id: str, message: IncomingMessage) -> bool:
        """
        Reply to ``message`` if it is a known command.

        Returns:
            True if a reply was sent
        """
        if message.from_me:
            return False

        handler = self.commands.get(message.body.strip())
        if handler is None:
            return False

        logger.info(f"[{session_id}] Command {message.body.strip()} from {message.sender or message.chat_id}")
        try:
            response = await handler(session_id)
            await message.reply(response)
        except Exception as e:
            handle_exception(e, context=f"command:{session_id}")
            return False
        return True

    async def cmd_ping(self, session_id: str) -> str:
        return PONG

    async def cmd_status(self, session_id: str) -> str:
        """Status of the session that received the command."""
        info = self.manager.get_session_info(session_id)
        active = len(self.manager.get_active_sessions())
        total = len(self.manager.list_sessions())
        state = "🟢 online" if info.active else f"🔴 {info.status.value}"
        errors = get_error_handler().get_error_history(count=0, session_id=session_id)
        lines = [
            "🤖 Bot status",
            f"Session: {info.name} ({info.id})",
            f"State: {state}",
            f"Active sessions: {active}/{total}",
            f"Errors: {len(errors)}",
        ]
        if errors:
            last = errors[-1]
            lines.append(f"Last error: {last['type']}: {last['message']}")
        return "\n".join(lines)

    async def cmd_sessions(self, session_id: str) -> str:
        """One line per configured session."""
        sessions = self.manager.list_sessions()
        if not sessions:
            return "No sessions configured"

        lines = [f"📱 Sessions ({len(sessions)}):"]
        for info in sessions:
            mark = "✅" if info.active else "❌"
            status = info.status.value
            if not info.enabled and info.status == SessionStatus.STOPPED:
                status = "disabled"
            lines.append(f"{mark} {info.name} ({info.id}): {status}")
        return "\n".join(lines)
