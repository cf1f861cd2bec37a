"""Lifecycle management for multiple WhatsApp Web sessions."""

import asyncio
import logging
from typing import Optional, Callable, Dict, List, Set, Any

from .config import BotConfig
from .exceptions import (
    AuthenticationError,
    SessionError,
    SessionExistsError,
    SessionNotFoundError,
)
from .logging import LogLevel, handle_exception
from .models import IncomingMessage, SessionConfig, SessionInfo, SessionStatus
from .qr import render_qr

logger = logging.getLogger(__name__)

ClientFactory = Callable[[SessionConfig, BotConfig], Any]


def web_client_factory(session: SessionConfig, config: BotConfig) -> Any:
    """Build the default Playwright-backed client for a session."""
    from .transport import WebClient

    return WebClient(
        session,
        headless=config.headless,
        browser_args=config.browser_args,
        qr_timeout_seconds=config.qr_timeout_seconds,
        poll_interval_seconds=config.poll_interval_seconds,
    )


class WhatsAppSessionManager:
    """
    Registry of WhatsApp sessions keyed by session id.

    Each registered session maps to a client handle that exposes ``on(event,
    handler)``, ``initialize()``, ``send_message(chat_id, text)`` and
    ``destroy()``. A session id is active iff its last lifecycle signal was
    ``ready`` and no later ``disconnected`` was observed.

    Example:
        >>> manager = WhatsAppSessionManager(get_config())
        >>> await manager.start_all()
        >>> manager.get_active_sessions()
        ['main', 'support']
        >>> await manager.stop_all()
    """

    def __init__(
        self,
        config: BotConfig,
        client_factory: Optional[ClientFactory] = None,
        command_bot: Optional[Any] = None,
        qr_renderer: Optional[Callable[[str, Optional[str]], None]] = None,
    ) -> None:
        self.config = config
        self._client_factory = client_factory or web_client_factory
        self._qr_renderer = qr_renderer or render_qr

        if command_bot is None:
            from .commands import CommandBot

            command_bot = CommandBot(self, prefix=config.command_prefix)
        self.command_bot = command_bot

        self._clients: Dict[str, Any] = {}
        self._session_configs: Dict[str, SessionConfig] = {}
        self._active: Set[str] = set()
        self._status: Dict[str, SessionStatus] = {}

    # ----- registry -----

    def create_session(self, session: SessionConfig) -> Any:
        """
        Construct a client for ``session`` and bind its lifecycle callbacks.

        Returns:
            The client handle

        Raises:
            SessionExistsError: If the id is already registered
        """
        if session.id in self._clients:
            raise SessionExistsError(f"Session already exists: {session.id}")

        client = self._client_factory(session, self.config)
        sid = session.id

        client.on("qr", lambda qr: self._on_qr(sid, qr))
        client.on("authenticated", lambda *args: self._on_authenticated(sid))
        client.on("auth_failure", lambda reason=None: self._on_auth_failure(sid, reason))
        client.on("ready", lambda *args: self._on_ready(sid))
        client.on("message", lambda message: self._on_message(sid, message))
        client.on("disconnected", lambda reason=None: self._on_disconnected(sid, reason))

        self._clients[sid] = client
        self._session_configs[sid] = session
        self._status[sid] = SessionStatus.CREATED
        logger.info(f"Created session {sid} ({session.name})")
        return client

    async def start_session(self, session_id: str) -> None:
        """
        Initialize the client of a registered session.

        Raises:
            SessionNotFoundError: If the id is not registered
            SessionError: If the client fails to initialize
        """
        client = self.get_client(session_id)
        name = self._session_configs[session_id].name
        logger.info(f"Starting session {session_id} ({name})")

        try:
            await client.initialize()
        except Exception as e:
            handle_exception(e, context=f"start_session:{session_id}")
            self._active.discard(session_id)
            self._status[session_id] = SessionStatus.DISCONNECTED
            raise SessionError(f"Failed to start session {session_id}: {e}") from e

    async def start_all(self, session_ids: Optional[List[str]] = None) -> List[str]:
        """
        Create and start every enabled session, one after another.

        Sessions start in configuration order with ``startup_delay_seconds``
        between consecutive starts. A session that fails is logged and skipped.

        Args:
            session_ids: Restrict startup to these ids (still in config order)

        Returns:
            Ids of the sessions that started
        """
        sessions = [s for s in self.config.get_sessions() if s.enabled]
        if session_ids is not None:
            wanted = set(session_ids)
            unknown = wanted - {s.id for s in self.config.get_sessions()}
            for sid in sorted(unknown):
                logger.warning(f"Ignoring unknown session id: {sid}")
            sessions = [s for s in sessions if s.id in wanted]

        skipped = [s.id for s in self.config.get_sessions() if not s.enabled]
        if skipped:
            logger.info(f"Skipping disabled session(s): {', '.join(skipped)}")

        started: List[str] = []
        for index, session in enumerate(sessions):
            if index > 0 and self.config.startup_delay_seconds > 0:
                logger.debug(f"Waiting {self.config.startup_delay_seconds}s before next session")
                await asyncio.sleep(self.config.startup_delay_seconds)

            try:
                if session.id not in self._clients:
                    self.create_session(session)
                await self.start_session(session.id)
                started.append(session.id)
            except SessionError as e:
                logger.error(f"Session {session.id} did not start: {e}")
            except Exception as e:
                handle_exception(e, context=f"start_all:{session.id}")

        logger.info(f"Started {len(started)}/{len(sessions)} session(s)")
        return started

    async def stop_session(self, session_id: str) -> None:
        """
        Destroy a session's client and drop it from the registry.

        Raises:
            SessionNotFoundError: If the id is not registered
        """
        client = self.get_client(session_id)
        logger.info(f"Stopping session {session_id}")

        try:
            await client.destroy()
        except Exception as e:
            handle_exception(e, context=f"stop_session:{session_id}", severity=LogLevel.WARNING)
        finally:
            self._clients.pop(session_id, None)
            self._active.discard(session_id)
            self._status[session_id] = SessionStatus.STOPPED

    async def stop_all(self) -> None:
        """Stop every registered session."""
        session_ids = list(self._clients)
        if not session_ids:
            return

        logger.info(f"Stopping {len(session_ids)} session(s)")
        for session_id in session_ids:
            try:
                await self.stop_session(session_id)
            except SessionNotFoundError:
                # stopped concurrently
                continue
        logger.info("All sessions stopped")

    # ----- queries -----

    def get_client(self, session_id: str) -> Any:
        """
        Get the client handle of a registered session.

        Raises:
            SessionNotFoundError: If the id is not registered
        """
        try:
            return self._clients[session_id]
        except KeyError:
            raise SessionNotFoundError(f"Session not found: {session_id}") from None

    def get_session_ids(self) -> List[str]:
        """Ids of registered sessions, in registration order."""
        return list(self._clients)

    def get_active_sessions(self) -> List[str]:
        """Ids of sessions currently ready, in registration order."""
        return [sid for sid in self._clients if sid in self._active]

    def is_active(self, session_id: str) -> bool:
        return session_id in self._active

    def get_status(self, session_id: str) -> Optional[SessionStatus]:
        """Last lifecycle signal seen for a session, or None if never created."""
        return self._status.get(session_id)

    def get_session_config(self, session_id: str) -> Optional[SessionConfig]:
        return self._session_configs.get(session_id) or self.config.get_session(session_id)

    def get_session_info(self, session_id: str) -> SessionInfo:
        """
        Snapshot of one session.

        Raises:
            SessionNotFoundError: If the id is neither configured nor registered
        """
        session = self.get_session_config(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session not found: {session_id}")
        return SessionInfo(
            id=session.id,
            name=session.name,
            status=self._status.get(session.id, SessionStatus.STOPPED),
            active=session.id in self._active,
            enabled=session.enabled,
        )

    def list_sessions(self) -> List[SessionInfo]:
        """Snapshots of all configured sessions plus any registered ad hoc."""
        ids = [s.id for s in self.config.get_sessions()]
        ids += [sid for sid in self._session_configs if sid not in ids]
        return [self.get_session_info(sid) for sid in ids]

    # ----- lifecycle callbacks -----

    def _registered(self, session_id: str) -> bool:
        if session_id in self._clients:
            return True
        logger.debug(f"[{session_id}] Ignoring event for stopped session")
        return False

    def _on_qr(self, session_id: str, qr: str) -> None:
        if not self._registered(session_id):
            return
        self._status[session_id] = SessionStatus.QR
        name = self._session_configs[session_id].name
        logger.info(f"[{session_id}] QR code received, waiting for scan")
        try:
            self._qr_renderer(qr, name)
        except Exception as e:
            handle_exception(e, context=f"qr:{session_id}")

    def _on_authenticated(self, session_id: str) -> None:
        if not self._registered(session_id):
            return
        self._status[session_id] = SessionStatus.AUTHENTICATED
        logger.info(f"[{session_id}] Authenticated")

    def _on_auth_failure(self, session_id: str, reason: Optional[str]) -> None:
        if not self._registered(session_id):
            return
        self._active.discard(session_id)
        self._status[session_id] = SessionStatus.AUTH_FAILURE
        handle_exception(
            AuthenticationError(f"Authentication failed: {reason}"),
            context=f"auth:{session_id}",
            severity=LogLevel.WARNING,
        )

    async def _on_ready(self, session_id: str) -> None:
        if not self._registered(session_id):
            return
        self._active.add(session_id)
        self._status[session_id] = SessionStatus.READY
        session = self._session_configs[session_id]
        logger.info(f"✅ [{session_id}] {session.name} is ready")

        if not session.notify_number:
            return

        try:
            await self._clients[session_id].send_message(
                session.notify_number, self.config.ready_message
            )
            logger.info(f"📤 [{session_id}] Ready message sent to {session.notify_number}")
        except Exception as e:
            handle_exception(e, context=f"notify:{session_id}")

    async def _on_message(self, session_id: str, message: IncomingMessage) -> None:
        if not self._registered(session_id):
            return
        logger.info(f"📩 [{session_id}] Received: {message.body}")
        try:
            await self.command_bot.handle_message(session_id, message)
        except Exception as e:
            handle_exception(e, context=f"message:{session_id}")

    def _on_disconnected(self, session_id: str, reason: Optional[str]) -> None:
        if not self._registered(session_id):
            return
        self._active.discard(session_id)
        self._status[session_id] = SessionStatus.DISCONNECTED
        logger.warning(f"[{session_id}] Disconnected: {reason}")

    async def __aenter__(self) -> "WhatsAppSessionManager":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore
        await self.stop_all()
