"""WhatsApp Web client driven by a headless Chromium through Playwright."""

import asyncio
import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Optional, Callable, Dict, List, Set, Any

from playwright.async_api import async_playwright, Error as PlaywrightError

from ..async_utils import TaskManager, call_handler
from ..exceptions import ClientError, ClientClosedError, SendError
from ..models import IncomingMessage, SessionConfig, chat_id_to_phone

logger = logging.getLogger(__name__)

WHATSAPP_WEB_URL = "https://web.whatsapp.com"

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

# Page selectors
CHAT_LIST_SELECTOR = '#pane-side, [data-testid="chat-list"]'
QR_SELECTOR = "div[data-ref]"
UNREAD_BADGE_SELECTOR = '#pane-side span[aria-label*="unread message"]'
CHAT_ROW_XPATH = 'xpath=ancestor::div[@role="listitem" or @role="row"][1]'
CONVERSATION_SELECTOR = "#main"
COMPOSE_BOX_SELECTOR = (
    '#main footer div[contenteditable="true"][role="textbox"], '
    '#main footer div[contenteditable="true"]'
)

READ_MESSAGES_JS = """
() => Array.from(document.querySelectorAll('#main [data-id]')).map(el => {
    const text = el.querySelector('span.selectable-text');
    return {id: el.getAttribute('data-id'), body: text ? text.innerText : ''};
})
"""

EVENTS = ("qr", "authenticated", "auth_failure", "ready", "message", "disconnected")

_MESSAGE_ID_RE = re.compile(
    r"^(?P<from_me>true|false)_(?P<chat>[^_]+@[a-z.]+)_(?P<key>[^_]+)(?:_(?P<participant>[^_]+@[a-z.]+))?$"
)


class ConnectionState(Enum):
    """WhatsApp Web connection states."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    QR = "qr"
    CONNECTED = "connected"
    CLOSED = "closed"


@dataclass
class MessageKey:
    """Parsed WhatsApp Web message id (``false_<chat>_<key>[_<participant>]``)."""
    from_me: bool
    chat_id: str
    key: str
    participant: Optional[str] = None


def parse_message_id(data_id: str) -> Optional[MessageKey]:
    """Parse the ``data-id`` attribute of a rendered message, or None."""
    if not data_id:
        return None
    match = _MESSAGE_ID_RE.match(data_id)
    if not match:
        return None
    return MessageKey(
        from_me=match.group("from_me") == "true",
        chat_id=match.group("chat"),
        key=match.group("key"),
        participant=match.group("participant"),
    )


def parse_unread_count(label: str) -> int:
    """Read the number shown on an unread badge, at least 1."""
    match = re.search(r"\d+", label or "")
    return max(int(match.group()), 1) if match else 1


class WebClient:
    """
    One WhatsApp Web session.

    Emits ``qr``, ``authenticated``, ``auth_failure``, ``ready``, ``message``
    and ``disconnected``. The browser profile in the session's data path keeps
    the login between runs.

    Example:
        >>> client = WebClient(SessionConfig(id="main"))
        >>> @client.on("ready")
        ... async def ready():
        ...     await client.send_message("15551234567@c.us", "up")
        >>> await client.initialize()
    """

    def __init__(
        self,
        session: SessionConfig,
        headless: bool = True,
        browser_args: Optional[List[str]] = None,
        qr_timeout_seconds: float = 120,
        poll_interval_seconds: float = 2.0,
    ):
        self.session = session
        self.headless = headless
        self.browser_args = list(browser_args or [])
        self.qr_timeout_seconds = qr_timeout_seconds
        self.poll_interval_seconds = poll_interval_seconds

        self._handlers: Dict[str, List[Callable]] = {event: [] for event in EVENTS}
        self._tasks = TaskManager()
        self._page_lock = asyncio.Lock()

        self._playwright: Any = None
        self._context: Any = None
        self._page: Any = None
        self._monitor_task: Optional[asyncio.Task] = None

        self._state = ConnectionState.DISCONNECTED
        self._closed = False
        self._last_qr: Optional[str] = None
        self._open_chat: Optional[str] = None
        self._seen_ids: Set[str] = set()
        self._known_chats: Set[str] = set()

    @property
    def session_id(self) -> str:
        return self.session.id

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    def on(self, event: str, handler: Optional[Callable] = None) -> Callable:
        """
        Register an event handler. Usable directly or as a decorator.

        Raises:
            ValueError: For an unknown event name
        """
        if event not in self._handlers:
            raise ValueError(f"Unknown event: {event}")

        def register(func: Callable) -> Callable:
            self._handlers[event].append(func)
            return func

        if handler is None:
            return register
        return register(handler)

    async def emit(self, event: str, *args: Any) -> None:
        """Run every handler registered for ``event``; handler errors are logged."""
        for handler in list(self._handlers.get(event, ())):
            try:
                await call_handler(handler, *args)
            except Exception as e:
                logger.error(f"[{self.session_id}] {event} handler error: {e}")

    async def initialize(self) -> None:
        """
        Launch the browser, open WhatsApp Web and start monitoring the page.

        Raises:
            ClientClosedError: If the client was destroyed
            ClientError: If the browser cannot be launched or the page not loaded
        """
        if self._closed:
            raise ClientClosedError(f"Client for session {self.session_id} is closed")
        if self._state != ConnectionState.DISCONNECTED:
            logger.debug(f"[{self.session_id}] Already initialized")
            return

        self._state = ConnectionState.CONNECTING
        profile_dir = Path(self.session.profile_dir).expanduser()
        profile_dir.mkdir(parents=True, exist_ok=True)
        logger.info(f"[{self.session_id}] Launching browser (profile: {profile_dir})")

        try:
            self._playwright = await async_playwright().start()
            self._context = await self._playwright.chromium.launch_persistent_context(
                user_data_dir=str(profile_dir),
                headless=self.headless,
                args=self.browser_args,
                user_agent=USER_AGENT,
                viewport={"width": 1280, "height": 800},
                locale="en-US",
            )
            pages = self._context.pages
            self._page = pages[0] if pages else await self._context.new_page()
            await self._page.goto(WHATSAPP_WEB_URL, wait_until="domcontentloaded", timeout=60000)
        except PlaywrightError as e:
            await self._teardown()
            self._state = ConnectionState.DISCONNECTED
            raise ClientError(f"Failed to open WhatsApp Web for session {self.session_id}: {e}") from e

        self._last_qr = None
        self._monitor_task = await self._tasks.create_task(
            self._monitor(), name=f"monitor-{self.session_id}"
        )

    async def send_message(self, chat_id: str, text: str) -> None:
        """
        Send a text message.

        Args:
            chat_id: Recipient chat id (``<number>@c.us``)
            text: Message body; newlines are kept

        Raises:
            ClientClosedError: If the client was destroyed
            ClientError: If the session is not ready
            SendError: If WhatsApp Web did not accept the message
        """
        if self._closed:
            raise ClientClosedError(f"Client for session {self.session_id} is closed")
        if not self.is_ready:
            raise ClientError(f"Session {self.session_id} is not ready")

        async with self._page_lock:
            try:
                if self._open_chat != chat_id:
                    phone = chat_id_to_phone(chat_id)
                    await self._page.goto(
                        f"{WHATSAPP_WEB_URL}/send?phone={phone}",
                        wait_until="domcontentloaded",
                        timeout=60000,
                    )
                box = self._page.locator(COMPOSE_BOX_SELECTOR).first
                await box.wait_for(state="visible", timeout=30000)
                await box.click()
                for i, line in enumerate(text.split("\n")):
                    if i:
                        await self._page.keyboard.press("Shift+Enter")
                    await self._page.keyboard.insert_text(line)
                await self._page.keyboard.press("Enter")
                self._open_chat = chat_id
            except PlaywrightError as e:
                self._open_chat = None
                raise SendError(f"Failed to send message to {chat_id}: {e}") from e

        logger.debug(f"[{self.session_id}] Sent message to {chat_id}")

    async def destroy(self) -> None:
        """Stop monitoring and close the browser. Safe to call twice."""
        if self._closed:
            return

        self._closed = True
        self._state = ConnectionState.CLOSED
        await self._tasks.cancel_all()
        await self._teardown()
        logger.info(f"[{self.session_id}] Client destroyed")

    async def _teardown(self) -> None:
        if self._context is not None:
            try:
                await self._context.close()
            except PlaywrightError as e:
                logger.warning(f"[{self.session_id}] Error closing browser: {e}")
            self._context = None
            self._page = None
        if self._playwright is not None:
            try:
                await self._playwright.stop()
            except PlaywrightError as e:
                logger.warning(f"[{self.session_id}] Error stopping Playwright: {e}")
            self._playwright = None

    async def _monitor(self) -> None:
        """Translate page state into lifecycle and message events."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.qr_timeout_seconds

        while not self._closed:
            if self._page is None or self._page.is_closed():
                await self._stop_monitoring("disconnected", "PAGE_CLOSED")
                return

            messages: List[IncomingMessage] = []
            qr: Optional[str] = None
            try:
                async with self._page_lock:
                    logged_in = await self._page.locator(CHAT_LIST_SELECTOR).count() > 0
                    if logged_in and self.is_ready:
                        messages = await self._poll_messages()
                    elif not logged_in:
                        qr = await self._read_qr()
            except PlaywrightError as e:
                if self._closed:
                    return
                logger.warning(f"[{self.session_id}] Page check failed: {e}")
                await asyncio.sleep(self.poll_interval_seconds)
                continue

            if logged_in and not self.is_ready:
                self._state = ConnectionState.CONNECTED
                logger.info(f"[{self.session_id}] Logged in to WhatsApp Web")
                await self.emit("authenticated")
                await self.emit("ready")
            elif not logged_in and self.is_ready:
                await self._stop_monitoring("disconnected", "LOGOUT")
                return
            elif not logged_in:
                if qr and qr != self._last_qr:
                    self._last_qr = qr
                    self._state = ConnectionState.QR
                    await self.emit("qr", qr)
                if loop.time() >= deadline:
                    await self._stop_monitoring("auth_failure", "QR code was not scanned in time")
                    return

            for message in messages:
                await self.emit("message", message)

            await asyncio.sleep(self.poll_interval_seconds)

    async def _stop_monitoring(self, event: str, reason: str) -> None:
        """Close the browser so the profile can be reopened, then report why."""
        self._state = ConnectionState.DISCONNECTED
        await self._teardown()
        await self.emit(event, reason)

    async def _read_qr(self) -> Optional[str]:
        element = self._page.locator(QR_SELECTOR).first
        if await element.count() == 0:
            return None
        return await element.get_attribute("data-ref")

    async def _poll_messages(self) -> List[IncomingMessage]:
        """Open the next unread chat, if any, and collect new incoming messages."""
        unread: Optional[int] = None
        badge = self._page.locator(UNREAD_BADGE_SELECTOR).first
        if await badge.count() > 0:
            unread = parse_unread_count(await badge.get_attribute("aria-label") or "")
            await badge.locator(CHAT_ROW_XPATH).click()
            await self._page.wait_for_selector(CONVERSATION_SELECTOR, timeout=10000)

        if await self._page.locator(CONVERSATION_SELECTOR).count() == 0:
            return []

        entries = await self._page.evaluate(READ_MESSAGES_JS)
        return self._collect_new_messages(entries, unread)

    def _collect_new_messages(
        self, entries: List[Dict[str, str]], unread: Optional[int] = None
    ) -> List[IncomingMessage]:
        """
        Turn rendered message entries into new incoming messages.

        History already on screen the first time a chat is seen is skipped,
        except for the last ``unread`` messages of a chat opened from its
        unread badge.
        """
        fresh: Dict[str, List[IncomingMessage]] = {}
        chats: List[str] = []

        for entry in entries:
            data_id = entry.get("id") or ""
            key = parse_message_id(data_id)
            if key is None:
                continue
            if key.chat_id not in chats:
                chats.append(key.chat_id)
            if data_id in self._seen_ids:
                continue
            self._seen_ids.add(data_id)
            if key.from_me:
                continue

            message = IncomingMessage(
                id=data_id,
                chat_id=key.chat_id,
                sender=key.participant or key.chat_id,
                body=entry.get("body") or "",
                from_me=False,
            )
            message.bind_reply(partial(self.send_message, key.chat_id))
            fresh.setdefault(key.chat_id, []).append(message)

        result: List[IncomingMessage] = []
        for chat_id in chats:
            new = fresh.get(chat_id, [])
            if unread is not None:
                new = new[-unread:]
            elif chat_id not in self._known_chats:
                new = []
            self._known_chats.add(chat_id)
            result.extend(new)

        if chats:
            self._open_chat = chats[-1]
        return result
