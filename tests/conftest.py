"""
Pytest configuration and fixtures
"""
import pytest
import yaml
from fastapi.testclient import TestClient

from chatroom.core.config import AppSettings, ConfigLoader
from chatroom.main import create_app
from chatroom.orchestration import SessionManager, SessionRegistry, WebSocketHandler
from tests.mocks import MockWebSocket


@pytest.fixture
def relay_overrides():
    """Relay section written to the test config.yaml; override per test module"""
    return {}


@pytest.fixture
def config_dir(tmp_path, relay_overrides):
    """Temporary config directory"""
    config = {
        "api": {"host": "127.0.0.1", "port": 8081, "cors_origins": ["*"]},
        "relay": {"channel_size": 1, "idle_timeout": None, "on_conflict": "replace", **relay_overrides},
    }
    (tmp_path / "config.yaml").write_text(yaml.safe_dump(config))
    return tmp_path


@pytest.fixture
def test_config(config_dir):
    """Config loader reading the temporary directory, without a file watcher"""
    settings = AppSettings(environment="test", config_dir=str(config_dir), config_watch=False)
    return ConfigLoader(settings=settings)


@pytest.fixture
def registry():
    return SessionRegistry()


@pytest.fixture
def session_manager(registry):
    return SessionManager(registry)


@pytest.fixture
def websocket_handler(registry, test_config):
    return WebSocketHandler(registry, test_config)


@pytest.fixture
def mock_websocket():
    return MockWebSocket()


@pytest.fixture
def test_app(test_config):
    return create_app(test_config)


@pytest.fixture
def app_registry(test_app) -> SessionRegistry:
    """Registry owned by test_app"""
    return test_app.state.registry


@pytest.fixture
def test_client(test_app):
    """
    Test client running the app's lifespan.

    HTTP requests and stream connections share one event loop, as they do
    under uvicorn.
    """
    with TestClient(test_app) as client:
        yield client


@pytest.fixture
def login(test_client):
    """Log a user in over HTTP and return the token"""
    def _login(username: str) -> str:
        response = test_client.post("/login", json={"username": username})
        assert response.status_code == 200, response.text
        return response.json()["token"]
    return _login
