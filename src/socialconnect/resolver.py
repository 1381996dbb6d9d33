"""Per-host connection resolution for federated backends.

An actor of a federated network may live on a host other than the
account's own. Requests about such an actor go to a connection bound to the
actor's host, created on first use from a copy of the account's connection
data and then cached. OAuth client keys for that host are registered on
demand before the first authenticated call.
"""

import asyncio
from dataclasses import dataclass
from typing import Protocol

import structlog

from .activity_types import Actor
from .api_routines import NICKNAME, ApiRoutine, join_url, substitute
from .errors import CapabilityError, MalformedRequestError, NoCredentialsError
from .http_connection import HttpConnection

logger = structlog.get_logger()


class FederatedConnection(Protocol):
    """What the resolver needs from an adapter."""

    def get_api_path(self, routine: ApiRoutine) -> str:
        ...

    def actor_username(self, actor: Actor) -> str:
        ...

    def username_to_nickname(self, username: str) -> str:
        ...

    def actor_oid_to_host(self, oid: str) -> str:
        ...


@dataclass
class ConnectionAndUrl:
    """Endpoint URL together with the HTTP connection to call it with."""
    uri: str
    http: HttpConnection

    @property
    def host(self) -> str:
        return self.http.data.host


class ConnectionResolver:
    """Resolves and caches one HTTP connection per remote host."""

    def __init__(self, http: HttpConnection):
        """Initialize resolver.

        Args:
            http: Connection of the account's own host
        """
        self.http = http
        self._connections: dict[str, HttpConnection] = {}
        if http.data.host:
            self._connections[http.data.host] = http
        self._locks: dict[str, asyncio.Lock] = {}

    def cached(self, host: str) -> HttpConnection | None:
        return self._connections.get(host.lower())

    def _lock_for(self, host: str) -> asyncio.Lock:
        lock = self._locks.get(host)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[host] = lock
        return lock

    async def connection_for_host(self, host: str) -> HttpConnection:
        """Cached connection to a host, registering an OAuth client if needed.

        Raises:
            MalformedRequestError: If host is empty
            NoCredentialsError: If registration yields no usable keys
        """
        host = host.lower()
        if not host:
            raise MalformedRequestError("Host is empty", self.http.data.host)

        http = self._connections.get(host)
        if http is None:
            data = self.http.data.for_host(host)
            if self.http.keys_store is not None:
                data.client_keys = self.http.keys_store.load(host)
            http = self.http.get_new_instance(data)
            self._connections[host] = http
            logger.info("Requesting data from another host", host=host)

        if http.needs_client_keys and not http.data.are_client_keys_present:
            async with self._lock_for(host):
                # Another task may have registered while we waited
                if not http.data.are_client_keys_present:
                    await http.register_client()
                    if not http.credentials_present:
                        raise NoCredentialsError("No credentials", host)
        return http

    async def resolve(
        self,
        connection: FederatedConnection,
        routine: ApiRoutine,
        actor: Actor,
    ) -> ConnectionAndUrl:
        """Endpoint URL and connection for an actor-scoped routine.

        Raises:
            CapabilityError: If the routine is unsupported or the actor has no username
            MalformedRequestError: If the nickname or the host cannot be derived
            NoCredentialsError: If client registration fails to produce keys
        """
        template = connection.get_api_path(routine)
        username = connection.actor_username(actor)
        if not username:
            raise CapabilityError(f"{routine.value}: username is required", self.http.data.host)
        nickname = connection.username_to_nickname(username)
        if not nickname:
            raise MalformedRequestError(
                f"{routine.value}: wrong username='{username}'", self.http.data.host
            )
        host = actor.get_host() or connection.actor_oid_to_host(actor.oid)
        if not host:
            raise MalformedRequestError(
                f"{routine.value}: host is empty for '{username}'", self.http.data.host
            )

        http = await self.connection_for_host(host)
        path = substitute(template, NICKNAME, nickname)
        uri = join_url(f"{http.data.origin_url.rstrip('/')}/api/", path)
        return ConnectionAndUrl(uri=uri, http=http)

    async def close(self) -> None:
        for http in self._connections.values():
            if http is not self.http:
                await http.close()
