import mongomock
import pytest
from fastapi.testclient import TestClient

from solhub.config_manager import ConfigManager
from solhub.database import ChatStore
from solhub.fanout import MessageFanout
from solhub.main import create_app
from solhub.presence import PresenceCoordinator
from solhub.registry import ConnectionRegistry

ENV_VARS = ['HOST', 'PORT', 'MONGODB_URI', 'FRONTEND_URL', 'LOG_LEVEL', 'LOG_FILE']


class RecordingEmitter:
    """Stands in for the connection manager and remembers every event."""

    def __init__(self):
        self.sent = []
        self.broadcasts = []

    def emit(self, connection_id, event, data):
        self.sent.append((connection_id, event, data))

    def broadcast(self, event, data, exclude=None):
        self.broadcasts.append((event, data, exclude))

    def sent_to(self, connection_id):
        return [(event, data) for cid, event, data in self.sent if cid == connection_id]

    def broadcast_events(self, event):
        return [(data, exclude) for name, data, exclude in self.broadcasts if name == event]


@pytest.fixture
def config(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    ConfigManager.reset()
    yield ConfigManager()
    ConfigManager.reset()


@pytest.fixture
def store(config):
    store = ChatStore(mongomock.MongoClient()['solhub_test'])
    chat = config.get_chat_config()
    store.init_db(chat['channels'], chat['voice_channels'])
    return store


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def emitter():
    return RecordingEmitter()


@pytest.fixture
def presence(store, registry, emitter):
    return PresenceCoordinator(store, registry, emitter)


@pytest.fixture
def fanout(store, registry, emitter, config):
    return MessageFanout(store, registry, emitter, config.get_chat_config()['channels'])


@pytest.fixture
def app(store, config):
    return create_app(store=store, config=config)


@pytest.fixture
def client(app):
    with TestClient(app) as client:
        yield client
