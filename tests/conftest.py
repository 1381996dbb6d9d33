"""Pytest configuration and fixtures for connector tests."""

import json
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from socialconnect.activity_types import Actor
from socialconnect.commands import CommandData, CommandEnum, TimelineType
from socialconnect.config import ConnectorConfig
from socialconnect.connections import OriginType, create_connection
from socialconnect.http_connection import (
    ConnectionData,
    InMemoryClientKeysStore,
    OAuthClientKeys,
)
from socialconnect.models import Base
from socialconnect.storage import InMemoryStorage


class MockServer:
    """Canned HTTP responses keyed by method and URL, with a request log."""

    def __init__(self):
        self.routes: dict[tuple[str, str, str], list[dict[str, Any]]] = {}
        self.requests: list[httpx.Request] = []

    def add(
        self,
        method: str,
        url: str,
        json_data: Any = None,
        status: int = 200,
        headers: dict[str, str] | None = None,
        content: bytes | None = None,
    ) -> None:
        """Queue a response; the last response of a route is repeated."""
        parsed = httpx.URL(url)
        key = (method.upper(), parsed.host, parsed.path)
        self.routes.setdefault(key, []).append({
            "status": status,
            "json": json_data,
            "headers": headers or {},
            "content": content,
        })

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        key = (request.method, request.url.host, request.url.path)
        responses = self.routes.get(key)
        if not responses:
            return httpx.Response(404, json={"error": f"No route for {key}"})
        canned = responses.pop(0) if len(responses) > 1 else responses[0]
        if canned["content"] is not None:
            return httpx.Response(canned["status"], content=canned["content"], headers=canned["headers"])
        if canned["json"] is None:
            return httpx.Response(canned["status"], headers=canned["headers"])
        return httpx.Response(canned["status"], json=canned["json"], headers=canned["headers"])

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handler))

    # === Inspecting requests ===

    def last(self, method: str | None = None) -> httpx.Request:
        for request in reversed(self.requests):
            if method is None or request.method == method:
                return request
        raise AssertionError(f"No {method or ''} request was made")

    def paths(self) -> list[str]:
        return [request.url.path for request in self.requests]


def form_of(request: httpx.Request) -> dict[str, list[str]]:
    """Decoded urlencoded form of a recorded request."""
    return parse_qs(request.content.decode(), keep_blank_values=True)


def json_of(request: httpx.Request) -> Any:
    return json.loads(request.content)


@pytest.fixture
def server() -> MockServer:
    """Mock HTTP server shared by a test's connections."""
    return MockServer()


@pytest.fixture
def keys_store() -> InMemoryClientKeysStore:
    return InMemoryClientKeysStore()


@pytest.fixture
def mastodon(server):
    """Mastodon connection of alice@mastodon.example."""
    data = ConnectionData(
        origin_url="https://mastodon.example",
        access_token="mastodon_token",
        client_keys=OAuthClientKeys("client_id", "client_secret"),
        account_name="alice@mastodon.example",
    )
    connection = create_connection(OriginType.MASTODON, data, http_client=server.client())
    connection.account_actor = Actor(
        oid="1", username="alice", host="mastodon.example", webfinger_id="alice@mastodon.example"
    )
    return connection


@pytest.fixture
def twitter(server):
    """Twitter connection of andstatus@api.twitter.com."""
    data = ConnectionData(
        origin_url="https://api.twitter.com",
        access_token="twitter_token",
        account_name="andstatus@twitter.com",
    )
    connection = create_connection(OriginType.TWITTER, data, http_client=server.client())
    connection.account_actor = Actor(oid="144771645", username="andstatus", host="api.twitter.com")
    return connection


@pytest.fixture
def pumpio(server, keys_store):
    """Pump.io connection of t131t@identi.ca with client keys for identi.ca."""
    data = ConnectionData(
        origin_url="https://identi.ca",
        client_keys=OAuthClientKeys("keyForThetestGetTimeline", "thisIsASecret02341"),
        access_token="pump_token",
        access_secret="pump_secret",
        account_name="t131t@identi.ca",
    )
    return create_connection(
        OriginType.PUMPIO, data, keys_store=keys_store, http_client=server.client()
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def config() -> ConnectorConfig:
    """Create test configuration."""
    return ConnectorConfig(
        queue={"workers": 1, "execution_timeout_seconds": 5, "max_retries": 3},
        http={"timeout": 5},
        database={"url": "sqlite+aiosqlite:///:memory:"},
        server={"host": "127.0.0.1", "port": 8080},
        accounts=[
            {
                "account_name": "alice@mastodon.example",
                "origin_type": "mastodon",
                "origin_url": "https://mastodon.example",
                "access_token": "mastodon_token",
                "client_key": "client_id",
                "client_secret": "client_secret",
            },
        ],
    )


@pytest_asyncio.fixture
async def session_maker():
    """Create in-memory database session maker for tests."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    maker = async_sessionmaker(engine, expire_on_commit=False)
    yield maker

    await engine.dispose()


@pytest.fixture
def home_timeline_command() -> CommandData:
    return CommandData.new_timeline_command(
        CommandEnum.GET_TIMELINE, "alice@mastodon.example", TimelineType.HOME
    )
