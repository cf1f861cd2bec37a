"""Tests for WhatsAppSessionManager lifecycle and callbacks."""

import pytest
from unittest.mock import AsyncMock, patch

from wabot.config import BotConfig, DEFAULT_READY_MESSAGE
from wabot.exceptions import (
    ClientError,
    SendError,
    SessionError,
    SessionExistsError,
    SessionNotFoundError,
)
from wabot.logging import get_error_handler
from wabot.models import IncomingMessage, SessionConfig, SessionStatus
from wabot.session_manager import WhatsAppSessionManager


def incoming(body, chat_id="15550000000@c.us", from_me=False):
    message = IncomingMessage(id=f"false_{chat_id}_ABC", chat_id=chat_id, body=body, from_me=from_me)
    reply = AsyncMock()
    message.bind_reply(reply)
    return message, reply


class TestRegistry:
    """create_session and lookups."""

    def test_create_session_registers_client(self, manager, clients, bot_config):
        client = manager.create_session(bot_config.sessions[0])

        assert client is clients["main"]
        assert manager.get_client("main") is client
        assert manager.get_session_ids() == ["main"]
        assert manager.get_status("main") == SessionStatus.CREATED
        assert not manager.is_active("main")

    def test_create_session_binds_six_callbacks(self, manager, clients, bot_config):
        manager.create_session(bot_config.sessions[0])

        assert set(clients["main"].handlers) == {
            "qr",
            "authenticated",
            "auth_failure",
            "ready",
            "message",
            "disconnected",
        }

    def test_create_duplicate_session(self, manager, bot_config):
        manager.create_session(bot_config.sessions[0])

        with pytest.raises(SessionExistsError):
            manager.create_session(bot_config.sessions[0])

    def test_get_unknown_client(self, manager):
        with pytest.raises(SessionNotFoundError):
            manager.get_client("nope")

    def test_list_sessions_includes_unstarted(self, manager):
        infos = manager.list_sessions()

        assert [i.id for i in infos] == ["main", "support", "legacy"]
        assert all(i.status == SessionStatus.STOPPED for i in infos)
        assert infos[2].enabled is False

    def test_ad_hoc_session_listed(self, manager):
        manager.create_session(SessionConfig(id="extra"))

        assert [i.id for i in manager.list_sessions()][-1] == "extra"
        assert manager.get_session_info("extra").name == "extra"

    def test_session_info_unknown(self, manager):
        with pytest.raises(SessionNotFoundError):
            manager.get_session_info("nope")

    def test_default_session_when_unconfigured(self, client_factory, clients):
        manager = WhatsAppSessionManager(BotConfig(), client_factory=client_factory)

        assert [i.id for i in manager.list_sessions()] == ["default"]


class TestStartup:
    """start_session and start_all."""

    @pytest.mark.asyncio
    async def test_start_session_initializes_client(self, manager, clients, bot_config):
        manager.create_session(bot_config.sessions[0])
        await manager.start_session("main")

        assert clients["main"].initialized

    @pytest.mark.asyncio
    async def test_start_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.start_session("nope")

    @pytest.mark.asyncio
    async def test_start_session_failure(self, manager, clients, bot_config):
        client = manager.create_session(bot_config.sessions[0])
        client.init_error = ClientError("browser missing")

        with pytest.raises(SessionError):
            await manager.start_session("main")

        assert manager.get_status("main") == SessionStatus.DISCONNECTED
        assert not manager.is_active("main")
        history = get_error_handler().get_error_history()
        assert history[-1]["context"] == "start_session:main"

    @pytest.mark.asyncio
    async def test_start_all_skips_disabled(self, manager, clients):
        started = await manager.start_all()

        assert started == ["main", "support"]
        assert "legacy" not in clients
        assert clients["main"].initialized and clients["support"].initialized

    @pytest.mark.asyncio
    async def test_start_all_waits_between_sessions(self, client_factory, bot_config):
        bot_config.startup_delay_seconds = 7
        manager = WhatsAppSessionManager(bot_config, client_factory=client_factory)

        with patch("wabot.session_manager.asyncio.sleep", new=AsyncMock()) as sleep:
            await manager.start_all()

        # two enabled sessions, one gap
        sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_start_all_starts_in_order(self, bot_config, fake_client_class):
        order = []

        def factory(session, config):
            client = fake_client_class(session, config)
            original = client.initialize

            async def initialize():
                order.append(session.id)
                await original()

            client.initialize = initialize
            return client

        manager = WhatsAppSessionManager(bot_config, client_factory=factory)
        await manager.start_all()

        assert order == ["main", "support"]

    @pytest.mark.asyncio
    async def test_start_all_continues_after_failure(self, bot_config, fake_client_class):
        def factory(session, config):
            client = fake_client_class(session, config)
            if session.id == "main":
                client.init_error = ClientError("launch failed")
            return client

        manager = WhatsAppSessionManager(bot_config, client_factory=factory)
        started = await manager.start_all()

        assert started == ["support"]
        assert manager.get_status("main") == SessionStatus.DISCONNECTED

    @pytest.mark.asyncio
    async def test_start_all_with_selection(self, manager, clients):
        started = await manager.start_all(["support", "unknown"])

        assert started == ["support"]
        assert list(clients) == ["support"]

    @pytest.mark.asyncio
    async def test_start_all_reuses_registered_session(self, manager, clients, bot_config):
        first = manager.create_session(bot_config.sessions[0])
        await manager.start_all()

        assert clients["main"] is first
        assert first.initialized


class TestShutdown:
    """stop_session and stop_all."""

    @pytest.mark.asyncio
    async def test_stop_session(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("ready")

        await manager.stop_session("main")

        assert clients["main"].destroyed
        assert manager.get_session_ids() == ["support"]
        assert not manager.is_active("main")
        assert manager.get_status("main") == SessionStatus.STOPPED

    @pytest.mark.asyncio
    async def test_stop_unknown_session(self, manager):
        with pytest.raises(SessionNotFoundError):
            await manager.stop_session("nope")

    @pytest.mark.asyncio
    async def test_stop_session_destroy_error(self, manager, clients):
        await manager.start_all()
        clients["main"].destroy_error = RuntimeError("browser crashed")

        await manager.stop_session("main")

        assert "main" not in manager.get_session_ids()
        error = get_error_handler().get_error_history()[-1]
        assert error["context"] == "stop_session:main"
        # a browser that fails to close is not an unexpected error
        assert error["severity"] == "WARNING"

    @pytest.mark.asyncio
    async def test_stop_all(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("ready")

        await manager.stop_all()

        assert manager.get_session_ids() == []
        assert manager.get_active_sessions() == []
        assert all(c.destroyed for c in clients.values())

    @pytest.mark.asyncio
    async def test_stop_all_empty(self, manager):
        await manager.stop_all()
        assert manager.get_session_ids() == []

    @pytest.mark.asyncio
    async def test_context_manager_stops_sessions(self, bot_config, client_factory, clients):
        async with WhatsAppSessionManager(bot_config, client_factory=client_factory) as manager:
            await manager.start_all()

        assert clients["main"].destroyed and clients["support"].destroyed

    @pytest.mark.asyncio
    async def test_events_after_stop_ignored(self, manager, clients):
        await manager.start_all()
        client = clients["main"]
        await manager.stop_session("main")

        await client.emit("ready")

        assert not manager.is_active("main")
        assert manager.get_status("main") == SessionStatus.STOPPED
        assert client.sent == []


class TestCallbacks:
    """Lifecycle signals coming from the client."""

    @pytest.mark.asyncio
    async def test_qr_renders_code(self, manager, clients, qr_calls):
        await manager.start_all()
        await clients["support"].emit("qr", "2@payload")

        assert qr_calls == [("2@payload", "Support")]
        assert manager.get_status("support") == SessionStatus.QR

    @pytest.mark.asyncio
    async def test_qr_renderer_error_is_logged(self, bot_config, client_factory, clients):
        def broken(payload, name):
            raise RuntimeError("no terminal")

        manager = WhatsAppSessionManager(bot_config, client_factory=client_factory, qr_renderer=broken)
        await manager.start_all()
        await clients["main"].emit("qr", "2@payload")

        assert get_error_handler().get_error_history()[-1]["context"] == "qr:main"

    @pytest.mark.asyncio
    async def test_authenticated(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("authenticated")

        assert manager.get_status("main") == SessionStatus.AUTHENTICATED
        assert not manager.is_active("main")

    @pytest.mark.asyncio
    async def test_ready_marks_active_and_notifies(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("ready")

        assert manager.is_active("main")
        assert manager.get_active_sessions() == ["main"]
        assert manager.get_status("main") == SessionStatus.READY
        assert clients["main"].sent == [("15551234567@c.us", DEFAULT_READY_MESSAGE)]

    @pytest.mark.asyncio
    async def test_ready_without_notify_number(self, manager, clients):
        await manager.start_all()
        await clients["support"].emit("ready")

        assert manager.is_active("support")
        assert clients["support"].sent == []

    @pytest.mark.asyncio
    async def test_ready_notification_failure_keeps_session_active(self, manager, clients):
        await manager.start_all()
        clients["main"].send_error = SendError("chat not found")

        await clients["main"].emit("ready")

        assert manager.is_active("main")
        history = get_error_handler().get_error_history()
        assert history[-1]["type"] == "SendError"
        assert history[-1]["context"] == "notify:main"

    @pytest.mark.asyncio
    async def test_custom_ready_message(self, manager, clients, bot_config):
        bot_config.ready_message = "online"
        await manager.start_all()
        await clients["main"].emit("ready")

        assert clients["main"].sent == [("15551234567@c.us", "online")]

    @pytest.mark.asyncio
    async def test_disconnected_clears_active(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("ready")
        await clients["main"].emit("disconnected", "LOGOUT")

        assert not manager.is_active("main")
        assert manager.get_status("main") == SessionStatus.DISCONNECTED
        # still registered, only inactive
        assert "main" in manager.get_session_ids()

    @pytest.mark.asyncio
    async def test_ready_after_disconnect_is_active_again(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("ready")
        await clients["main"].emit("disconnected", "LOGOUT")
        await clients["main"].emit("ready")

        assert manager.is_active("main")

    @pytest.mark.asyncio
    async def test_auth_failure(self, manager, clients):
        await manager.start_all()
        await clients["main"].emit("auth_failure", "QR code was not scanned in time")

        assert manager.get_status("main") == SessionStatus.AUTH_FAILURE
        assert not manager.is_active("main")
        error = get_error_handler().get_error_history()[-1]
        assert error["type"] == "AuthenticationError"
        assert error["context"] == "auth:main"
        assert error["severity"] == "WARNING"

    @pytest.mark.asyncio
    async def test_message_dispatched_to_commands(self, manager, clients):
        await manager.start_all()
        message, reply = incoming("!ping")

        await clients["main"].emit("message", message)

        reply.assert_awaited_once_with("pong 🏓")

    @pytest.mark.asyncio
    async def test_command_bot_error_is_logged(self, bot_config, client_factory, clients):
        bot = AsyncMock()
        bot.handle_message.side_effect = RuntimeError("boom")
        manager = WhatsAppSessionManager(bot_config, client_factory=client_factory, command_bot=bot)
        await manager.start_all()

        message, _ = incoming("!ping")
        await clients["main"].emit("message", message)

        assert get_error_handler().get_error_history()[-1]["context"] == "message:main"
