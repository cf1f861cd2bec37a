"""Shared fixtures: an in-memory stand-in for the WhatsApp Web client."""

import pytest

from wabot.async_utils import call_handler
from wabot.config import BotConfig
from wabot.logging import get_error_handler
from wabot.models import SessionConfig


@pytest.fixture(autouse=True)
def clean_error_history():
    """Each test starts with no recorded errors."""
    get_error_handler().error_history.clear()
    yield
    get_error_handler().error_history.clear()


class FakeClient:
    """Records calls and lets tests fire lifecycle events by hand."""

    def __init__(self, session, config):
        self.session = session
        self.config = config
        self.handlers = {}
        self.initialized = False
        self.destroyed = False
        self.sent = []
        self.init_error = None
        self.send_error = None
        self.destroy_error = None

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)
        return handler

    async def emit(self, event, *args):
        for handler in self.handlers.get(event, []):
            await call_handler(handler, *args)

    async def initialize(self):
        if self.init_error:
            raise self.init_error
        self.initialized = True

    async def send_message(self, chat_id, text):
        if self.send_error:
            raise self.send_error
        self.sent.append((chat_id, text))

    async def destroy(self):
        self.destroyed = True
        if self.destroy_error:
            raise self.destroy_error


@pytest.fixture
def bot_config():
    """Three sessions, one of them disabled, no startup delay."""
    return BotConfig(
        sessions=[
            SessionConfig(id="main", name="Main", notifyNumber="+1 555 123 4567"),
            SessionConfig(id="support", name="Support"),
            SessionConfig(id="legacy", name="Legacy", enabled=False),
        ],
        startup_delay_seconds=0,
    )


@pytest.fixture
def clients():
    """Clients created by the factory, keyed by session id."""
    return {}


@pytest.fixture
def client_factory(clients):
    def factory(session, config):
        client = FakeClient(session, config)
        clients[session.id] = client
        return client

    return factory


@pytest.fixture
def qr_calls():
    return []


@pytest.fixture
def manager(bot_config, client_factory, qr_calls):
    from wabot.session_manager import WhatsAppSessionManager

    return WhatsAppSessionManager(
        bot_config,
        client_factory=client_factory,
        qr_renderer=lambda payload, name: qr_calls.append((payload, name)),
    )


@pytest.fixture
def fake_client_class():
    return FakeClient
