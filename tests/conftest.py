from unittest.mock import AsyncMock, MagicMock

import pytest

import gsc_server
from config import Settings
from gsc_client import GSCClient
from gsc_server import create_registry
from mcp_router import MessageRouter
from sessions import SessionStore


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def no_inspection_delay(monkeypatch):
    monkeypatch.setattr(gsc_server, "INSPECTION_DELAY_SECONDS", 0)


@pytest.fixture
def settings():
    return Settings(api_key=None, keepalive_seconds=3600)


@pytest.fixture
def registry():
    return create_registry()


@pytest.fixture
def gsc_client():
    """A GSC client whose API methods are all AsyncMocks."""
    return AsyncMock(spec=GSCClient)


@pytest.fixture
def client_factory(gsc_client):
    return MagicMock(return_value=gsc_client)


@pytest.fixture
def router(registry, client_factory, settings):
    return MessageRouter(registry, client_factory, settings)


@pytest.fixture
def store():
    return SessionStore(keepalive_seconds=3600)
