"""Tests for per-host connection resolution."""

import asyncio

import pytest

from socialconnect.activity_types import Actor
from socialconnect.api_routines import ApiRoutine
from socialconnect.errors import CapabilityError, MalformedRequestError, NoCredentialsError
from socialconnect.http_connection import OAuthClientKeys

REGISTER = "https://microca.st/api/client/register"


class TestResolve:
    """Tests for ConnectionResolver.resolve."""

    @pytest.mark.asyncio
    async def test_account_host(self, pumpio):
        conu = await pumpio.resolver.resolve(pumpio, ApiRoutine.GET_ACTOR, pumpio.account_actor)

        assert conu.uri == "https://identi.ca/api/user/t131t/profile"
        assert conu.http is pumpio.http
        assert conu.host == "identi.ca"

    @pytest.mark.asyncio
    async def test_other_host_registers_client(self, pumpio, server, keys_store):
        server.add("POST", REGISTER, {"client_id": "microcast_key", "client_secret": "microcast_secret"})

        conu = await pumpio.resolver.resolve(
            pumpio, ApiRoutine.GET_FRIENDS, Actor(oid="acct:atalsta@microca.st")
        )

        assert conu.uri == "https://microca.st/api/user/atalsta/following"
        assert conu.host == "microca.st"
        assert conu.http.data.client_keys == OAuthClientKeys("microcast_key", "microcast_secret")
        assert keys_store.load("microca.st") == OAuthClientKeys("microcast_key", "microcast_secret")
        assert conu.http.data.access_token == "pump_token"

    @pytest.mark.asyncio
    async def test_original_keys_stay_isolated(self, pumpio, server):
        server.add("POST", REGISTER, {"client_id": "microcast_key", "client_secret": "microcast_secret"})

        await pumpio.resolver.connection_for_host("microca.st")

        assert pumpio.http.data.client_keys == OAuthClientKeys(
            "keyForThetestGetTimeline", "thisIsASecret02341"
        )
        assert pumpio.http.data.origin_url == "https://identi.ca"

    @pytest.mark.asyncio
    async def test_stored_keys_skip_registration(self, pumpio, server, keys_store):
        keys_store.save("microca.st", OAuthClientKeys("stored", "keys"))

        http = await pumpio.resolver.connection_for_host("microca.st")

        assert http.data.client_keys == OAuthClientKeys("stored", "keys")
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_connection_is_cached(self, pumpio, server):
        server.add("POST", REGISTER, {"client_id": "k", "client_secret": "s"})

        first = await pumpio.resolver.connection_for_host("microca.st")
        second = await pumpio.resolver.connection_for_host("MICROCA.ST")

        assert first is second
        assert pumpio.resolver.cached("microca.st") is first
        assert server.paths() == ["/api/client/register"]

    @pytest.mark.asyncio
    async def test_concurrent_registration_once(self, pumpio, server):
        server.add("POST", REGISTER, {"client_id": "k", "client_secret": "s"})

        results = await asyncio.gather(*[
            pumpio.resolver.connection_for_host("microca.st") for _ in range(5)
        ])

        assert all(http is results[0] for http in results)
        assert server.paths() == ["/api/client/register"]

    @pytest.mark.asyncio
    async def test_failed_registration(self, pumpio, server):
        server.add("POST", REGISTER, {"error": "registration closed"})

        with pytest.raises(NoCredentialsError) as exc_info:
            await pumpio.resolver.resolve(
                pumpio, ApiRoutine.GET_ACTOR, Actor(oid="acct:atalsta@microca.st")
            )
        assert exc_info.value.host == "microca.st"

    @pytest.mark.asyncio
    async def test_actor_without_username(self, pumpio, server):
        with pytest.raises(CapabilityError):
            await pumpio.resolver.resolve(
                pumpio, ApiRoutine.GET_ACTOR, Actor(oid="https://identi.ca/user/t131t")
            )
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_empty_nickname(self, pumpio):
        with pytest.raises(MalformedRequestError):
            await pumpio.resolver.resolve(pumpio, ApiRoutine.GET_ACTOR, Actor(username="@identi.ca"))

    @pytest.mark.asyncio
    async def test_empty_host(self, pumpio):
        with pytest.raises(MalformedRequestError):
            await pumpio.resolver.resolve(pumpio, ApiRoutine.GET_ACTOR, Actor(username="t131t"))

    @pytest.mark.asyncio
    async def test_unsupported_routine(self, pumpio):
        with pytest.raises(CapabilityError):
            await pumpio.resolver.resolve(pumpio, ApiRoutine.SEARCH_ACTORS, pumpio.account_actor)

    @pytest.mark.asyncio
    async def test_empty_host_for_connection(self, pumpio):
        with pytest.raises(MalformedRequestError):
            await pumpio.resolver.connection_for_host("")
