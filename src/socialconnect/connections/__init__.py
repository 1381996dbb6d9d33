"""Protocol adapters, selected by origin type."""

from ..activity_types import Actor
from ..http_connection import (
    ClientKeysStore,
    ConnectionData,
    HttpConnection,
    MastodonHttpConnection,
    OAuth1HttpConnection,
    OAuth2HttpConnection,
)
from .base import Connection, OriginConfig, OriginType
from .local import LocalConnection
from .mastodon import MastodonConnection
from .pumpio import PumpioConnection
from .the_twitter import TheTwitterConnection
from .twitter_like import TwitterLikeConnection

CONNECTION_CLASSES: dict[OriginType, type[Connection]] = {
    OriginType.TWITTER: TheTwitterConnection,
    OriginType.MASTODON: MastodonConnection,
    OriginType.PUMPIO: PumpioConnection,
    OriginType.LOCAL: LocalConnection,
}

HTTP_CLASSES: dict[OriginType, type[HttpConnection]] = {
    OriginType.TWITTER: OAuth2HttpConnection,
    OriginType.MASTODON: MastodonHttpConnection,
    OriginType.PUMPIO: OAuth1HttpConnection,
    OriginType.LOCAL: HttpConnection,
}


def account_actor_for(origin_type: OriginType, account_name: str, host: str) -> Actor:
    """Actor of an account known only by its `username@host` name."""
    username, _, account_host = account_name.partition("@")
    host = (account_host or host).lower()
    webfinger_id = f"{username}@{host}" if username and host else ""
    oid = f"acct:{webfinger_id}" if origin_type is OriginType.PUMPIO and webfinger_id else ""
    return Actor(oid=oid, username=username, host=host, webfinger_id=webfinger_id)


def create_connection(
    origin_type: OriginType,
    data: ConnectionData,
    keys_store: ClientKeysStore | None = None,
    local: LocalConnection | None = None,
    **http_kwargs,
) -> Connection:
    """Build the adapter for an origin type.

    Args:
        origin_type: Backend family
        data: Connection data of the account's host
        keys_store: Where registered OAuth client keys are loaded from and saved to
        local: Local adapter supplying media bytes for upload
        **http_kwargs: Passed to the HttpConnection (timeout, user_agent, http_client...)
    """
    if data.client_keys is None and keys_store is not None and data.host:
        data.client_keys = keys_store.load(data.host)
    http = HTTP_CLASSES[origin_type](data, keys_store=keys_store, **http_kwargs)
    account_actor = account_actor_for(origin_type, data.account_name, data.host)
    if origin_type is OriginType.LOCAL:
        return LocalConnection(http, account_actor)
    local = local or LocalConnection()
    return CONNECTION_CLASSES[origin_type](http, account_actor, local.read_local)


__all__ = [
    "CONNECTION_CLASSES",
    "HTTP_CLASSES",
    "Connection",
    "LocalConnection",
    "MastodonConnection",
    "OriginConfig",
    "OriginType",
    "PumpioConnection",
    "TheTwitterConnection",
    "TwitterLikeConnection",
    "account_actor_for",
    "create_connection",
]
