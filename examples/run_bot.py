"""
Run Bot Example - Starts sessions from code and adds an extra command.

This example demonstrates:
- Building a BotConfig without a config file
- Extending CommandBot with a custom command
- Starting and stopping sessions with WhatsAppSessionManager

Usage:
    python run_bot.py --session main --notify 919370928324
    python run_bot.py --session main --session support --delay 10

Available commands:
    !ping       - Check bot responsiveness
    !status     - Show this session's status
    !sessions   - List all sessions
    !uptime     - Show how long the bot has been running
"""

import asyncio
import argparse
import logging
import time

from wabot import BotConfig, CommandBot, SessionConfig, WhatsAppSessionManager

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class UptimeBot(CommandBot):
    """CommandBot with an extra !uptime command."""

    def __init__(self, manager, prefix: str = "!"):
        super().__init__(manager, prefix)
        self.started_at = time.monotonic()
        self.commands[f"{prefix}uptime"] = self.cmd_uptime

    async def cmd_uptime(self, session_id: str) -> str:
        elapsed = int(time.monotonic() - self.started_at)
        hours, rest = divmod(elapsed, 3600)
        minutes, seconds = divmod(rest, 60)
        return f"⏱️ Up for {hours}h {minutes}m {seconds}s"


async def main():
    parser = argparse.ArgumentParser(description="WhatsApp bot example")
    parser.add_argument("--session", action="append", default=[], help="Session id (repeatable)")
    parser.add_argument("--notify", help="Number that receives the ready message")
    parser.add_argument("--data-path", default="./sessions", help="Browser profile directory")
    parser.add_argument("--delay", type=float, default=5.0, help="Seconds between session startups")
    args = parser.parse_args()

    config = BotConfig(
        sessions=[
            SessionConfig(id=sid, dataPath=args.data_path, notifyNumber=args.notify)
            for sid in args.session or ["main"]
        ],
        startup_delay_seconds=args.delay,
    )

    manager = WhatsAppSessionManager(config)
    manager.command_bot = UptimeBot(manager, prefix=config.command_prefix)

    try:
        started = await manager.start_all()
        logger.info(f"Started: {', '.join(started) or 'nothing'}")
        while True:
            await asyncio.sleep(60)
            logger.info(f"Active sessions: {manager.get_active_sessions()}")
    except asyncio.CancelledError:
        pass
    finally:
        await manager.stop_all()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped")
