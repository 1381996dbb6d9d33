"""HTTP connections to social network hosts.

Handles request authentication (OAuth 1.0a signing for Pump.io, bearer tokens
for Mastodon and Twitter), dynamic OAuth client registration, media upload,
downloads, and translation of httpx failures into connector errors.
"""

import base64
import copy
import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import parse_qsl, quote, urlsplit

import httpx
import structlog

from .errors import (
    ConnectorError,
    MalformedRequestError,
    NoCredentialsError,
    ParseError,
    StatusCode,
    TransportError,
)

logger = structlog.get_logger()

DEFAULT_TIMEOUT = 30.0
DEFAULT_USER_AGENT = "SocialConnect/0.1"
DEFAULT_APPLICATION_NAME = "SocialConnect"

# Out-of-band redirect for OAuth 2.0 apps without a web callback
OAUTH2_OOB_REDIRECT = "urn:ietf:wg:oauth:2.0:oob"


@dataclass
class OAuthClientKeys:
    """OAuth client (consumer) credentials registered at one host."""
    consumer_key: str = ""
    consumer_secret: str = ""

    @property
    def are_keys_present(self) -> bool:
        return bool(self.consumer_key) and bool(self.consumer_secret)


@dataclass
class RateLimitStatus:
    """Last rate limit numbers reported by a host."""
    remaining: int = 0
    limit: int = 0

    @property
    def is_known(self) -> bool:
        return self.limit > 0


@dataclass
class ConnectionData:
    """Connection configuration for one host."""
    origin_url: str
    is_ssl: bool = True
    client_keys: OAuthClientKeys | None = None
    access_token: str = ""
    access_secret: str = ""
    account_name: str = ""

    @property
    def host(self) -> str:
        return (urlsplit(self.origin_url).hostname or "").lower()

    @property
    def are_client_keys_present(self) -> bool:
        return self.client_keys is not None and self.client_keys.are_keys_present

    def copy(self) -> "ConnectionData":
        """Independent copy; changing keys of the copy leaves this one intact."""
        return copy.deepcopy(self)

    def for_host(self, host: str) -> "ConnectionData":
        """Copy pointed at another host, without the cached client keys."""
        data = self.copy()
        data.client_keys = None
        data.origin_url = build_origin_url(host, self.is_ssl)
        return data


def build_origin_url(host: str, is_ssl: bool = True) -> str:
    scheme = "https" if is_ssl else "http"
    return f"{scheme}://{host}"


class ClientKeysStore(Protocol):
    """Persistence of registered OAuth client keys, keyed by host."""

    def load(self, host: str) -> OAuthClientKeys | None:
        ...

    def save(self, host: str, keys: OAuthClientKeys) -> None:
        ...


@dataclass
class InMemoryClientKeysStore:
    """Keeps registered client keys for the lifetime of the process."""
    keys: dict[str, OAuthClientKeys] = field(default_factory=dict)

    def load(self, host: str) -> OAuthClientKeys | None:
        stored = self.keys.get(host.lower())
        return copy.copy(stored) if stored else None

    def save(self, host: str, keys: OAuthClientKeys) -> None:
        self.keys[host.lower()] = copy.copy(keys)


# === OAuth 1.0a ===

def percent_encode(value: Any) -> str:
    """RFC 3986 percent-encoding used by OAuth 1.0a."""
    return quote(str(value), safe="~")


def generate_nonce() -> str:
    return secrets.token_hex(16)


def oauth1_signature(
    method: str,
    url: str,
    params: list[tuple[str, str]],
    consumer_secret: str,
    token_secret: str = "",
) -> str:
    """HMAC-SHA1 signature of a request.

    Args:
        method: HTTP method
        url: Request URL, query string included
        params: OAuth and form parameters
        consumer_secret: Client secret
        token_secret: Access token secret

    Returns:
        Base64-encoded signature
    """
    parts = urlsplit(url)
    base_url = f"{parts.scheme.lower()}://{parts.netloc.lower()}{parts.path}"
    all_params = list(params) + parse_qsl(parts.query, keep_blank_values=True)
    encoded = sorted((percent_encode(k), percent_encode(v)) for k, v in all_params)
    param_string = "&".join(f"{k}={v}" for k, v in encoded)
    base_string = "&".join([
        method.upper(),
        percent_encode(base_url),
        percent_encode(param_string),
    ])
    key = f"{percent_encode(consumer_secret)}&{percent_encode(token_secret)}"
    digest = hmac.new(key.encode(), base_string.encode(), hashlib.sha1).digest()
    return base64.b64encode(digest).decode()


def oauth1_authorization_header(
    method: str,
    url: str,
    consumer_key: str,
    consumer_secret: str,
    token: str = "",
    token_secret: str = "",
    form: dict[str, Any] | None = None,
    nonce: str | None = None,
    timestamp: int | None = None,
) -> str:
    """Build the OAuth 1.0a Authorization header value."""
    oauth_params = {
        "oauth_consumer_key": consumer_key,
        "oauth_nonce": nonce or generate_nonce(),
        "oauth_signature_method": "HMAC-SHA1",
        "oauth_timestamp": str(timestamp if timestamp is not None else int(time.time())),
        "oauth_version": "1.0",
    }
    if token:
        oauth_params["oauth_token"] = token

    signed = list(oauth_params.items())
    if form:
        signed.extend((k, str(v)) for k, v in form.items())
    oauth_params["oauth_signature"] = oauth1_signature(
        method, url, signed, consumer_secret, token_secret
    )
    header_params = ", ".join(
        f'{percent_encode(k)}="{percent_encode(v)}"' for k, v in sorted(oauth_params.items())
    )
    return f"OAuth {header_params}"


def rate_limit_from_headers(headers: httpx.Headers) -> RateLimitStatus | None:
    """Read Twitter or Mastodon style rate limit headers."""
    for prefix in ("x-rate-limit-", "x-ratelimit-"):
        limit = headers.get(f"{prefix}limit")
        if limit is None:
            continue
        try:
            return RateLimitStatus(
                remaining=int(headers.get(f"{prefix}remaining", "0")),
                limit=int(limit),
            )
        except ValueError:
            return None
    return None


class HttpConnection:
    """Unauthenticated HTTP connection to one host.

    Subclasses add request authentication and client registration.
    """

    def __init__(
        self,
        data: ConnectionData,
        http_client: httpx.AsyncClient | None = None,
        keys_store: ClientKeysStore | None = None,
        timeout: float = DEFAULT_TIMEOUT,
        user_agent: str = DEFAULT_USER_AGENT,
        application_name: str = DEFAULT_APPLICATION_NAME,
    ):
        """Initialize connection.

        Args:
            data: Connection configuration
            http_client: Shared httpx client (created lazily if omitted)
            keys_store: Where registered client keys are kept
            timeout: Request timeout in seconds
            user_agent: User-Agent header value
            application_name: Name used when registering OAuth clients
        """
        self.data = data
        self.keys_store = keys_store
        self.timeout = timeout
        self.user_agent = user_agent
        self.application_name = application_name
        self.rate_limit: RateLimitStatus | None = None
        self._http_client = http_client
        self._owns_client = http_client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(
                timeout=self.timeout,
                headers={"User-Agent": self.user_agent},
                follow_redirects=True,
            )
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client if this connection created it."""
        if self._owns_client and self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    def get_new_instance(self, data: ConnectionData) -> "HttpConnection":
        """Connection of the same kind bound to other connection data."""
        return type(self)(
            data,
            http_client=self._http_client,
            keys_store=self.keys_store,
            timeout=self.timeout,
            user_agent=self.user_agent,
            application_name=self.application_name,
        )

    @property
    def credentials_present(self) -> bool:
        return True

    @property
    def needs_client_keys(self) -> bool:
        """Whether requests need client keys registered at the host."""
        return False

    def auth_headers(self, method: str, url: str, form: dict[str, Any] | None) -> dict[str, str]:
        return {}

    async def register_client(self) -> None:
        """Obtain OAuth client keys from the host."""
        raise NoCredentialsError("Client registration is not supported", self.data.host)

    # === Requests ===

    async def request(
        self,
        method: str,
        url: str,
        params: dict[str, Any] | None = None,
        json_data: Any = None,
        form: dict[str, Any] | None = None,
        files: dict[str, tuple[str, bytes, str]] | None = None,
        content: bytes | None = None,
        content_type: str = "",
    ) -> Any:
        """Make a request and return the decoded JSON body.

        Raises:
            TransportError: On network failure, 5xx or 429 responses
            NoCredentialsError: On 401/403
            ConnectorError: On other 4xx responses
            ParseError: If the body is not JSON
        """
        if not url:
            raise MalformedRequestError("URL is empty", self.data.host)
        client = await self._get_client()
        full_url = str(httpx.URL(url).copy_merge_params(params)) if params else url

        headers = {"Accept": "application/json"}
        headers.update(self.auth_headers(method, full_url, form if not files else None))
        if content is not None and content_type:
            headers["Content-Type"] = content_type

        logger.debug("HTTP request", method=method, url=full_url)
        try:
            response = await client.request(
                method,
                full_url,
                headers=headers,
                json=json_data,
                data=form,
                files=files,
                content=content,
            )
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout: {e}", self.data.host) from e
        except httpx.TransportError as e:
            raise TransportError(f"{type(e).__name__}: {e}", self.data.host) from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> Any:
        rate_limit = rate_limit_from_headers(response.headers)
        if rate_limit is not None:
            self.rate_limit = rate_limit

        status = response.status_code
        if status == 429 or status >= 500:
            raise TransportError(
                f"HTTP {status}: {response.text[:200]}", self.data.host
            )
        if status in (401, 403):
            raise NoCredentialsError(f"HTTP {status}: {response.text[:200]}", self.data.host)
        if status >= 400:
            code = StatusCode.NOT_FOUND if status in (404, 410) else StatusCode.BAD_REQUEST
            raise ConnectorError(
                code, f"HTTP {status}: {response.text[:200]}", self.data.host, is_hard=True
            )

        if not response.content or not response.content.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise ParseError("Response is not JSON", response.text[:2000], self.data.host) from e

    async def get_request(self, url: str, params: dict[str, Any] | None = None) -> Any:
        return await self.request("GET", url, params=params)

    async def post_request(
        self,
        url: str,
        json_data: Any = None,
        form: dict[str, Any] | None = None,
    ) -> Any:
        return await self.request("POST", url, json_data=json_data, form=form)

    async def post_multipart(
        self,
        url: str,
        field_name: str,
        filename: str,
        content: bytes,
        mime_type: str,
        form: dict[str, Any] | None = None,
    ) -> Any:
        """Upload media as a multipart form part."""
        return await self.request(
            "POST",
            url,
            form=form,
            files={field_name: (filename, content, mime_type or "application/octet-stream")},
        )

    async def post_raw(self, url: str, content: bytes, mime_type: str) -> Any:
        """Upload media as the raw request body."""
        return await self.request(
            "POST", url, content=content, content_type=mime_type or "application/octet-stream"
        )

    async def download_file(self, url: str, path: Path) -> int:
        """Download a URL to a file.

        Returns:
            Number of bytes written
        """
        client = await self._get_client()
        headers = self.auth_headers("GET", url, None)
        written = 0
        opened = False
        try:
            async with client.stream("GET", url, headers=headers) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._handle_response(response)
                with open(path, "wb") as f:
                    opened = True
                    async for chunk in response.aiter_bytes():
                        f.write(chunk)
                        written += len(chunk)
        except httpx.TransportError as e:
            if opened:
                path.unlink(missing_ok=True)
            raise TransportError(f"{type(e).__name__}: {e}", self.data.host) from e
        except OSError as e:
            if opened:
                path.unlink(missing_ok=True)
            raise TransportError(f"Writing '{path}': {e}", self.data.host, is_hard=True) from e
        return written

    def _store_client_keys(self, keys: OAuthClientKeys) -> None:
        self.data.client_keys = keys
        if self.keys_store is not None:
            self.keys_store.save(self.data.host, keys)
        logger.info("Registered OAuth client", host=self.data.host)


class OAuth2HttpConnection(HttpConnection):
    """Bearer token authentication (Mastodon, Twitter API with app/user token).

    Client registration posts to `registration_path` when it is set
    (Mastodon `/api/v1/apps`).
    """

    registration_path = ""

    @property
    def credentials_present(self) -> bool:
        return bool(self.data.access_token)

    @property
    def needs_client_keys(self) -> bool:
        return bool(self.registration_path)

    def auth_headers(self, method: str, url: str, form: dict[str, Any] | None) -> dict[str, str]:
        if not self.data.access_token:
            return {}
        return {"Authorization": f"Bearer {self.data.access_token}"}

    async def register_client(self) -> None:
        if not self.registration_path:
            await super().register_client()
            return
        url = f"{self.data.origin_url.rstrip('/')}/{self.registration_path.lstrip('/')}"
        result = await self.post_request(url, form={
            "client_name": self.application_name,
            "redirect_uris": OAUTH2_OOB_REDIRECT,
            "scopes": "read write follow",
        })
        keys = OAuthClientKeys(
            consumer_key=str((result or {}).get("client_id", "")),
            consumer_secret=str((result or {}).get("client_secret", "")),
        )
        if not keys.are_keys_present:
            raise NoCredentialsError("Registration returned no client keys", self.data.host)
        self._store_client_keys(keys)


class MastodonHttpConnection(OAuth2HttpConnection):
    registration_path = "api/v1/apps"


class OAuth1HttpConnection(HttpConnection):
    """OAuth 1.0a signed requests with dynamic client registration (Pump.io)."""

    registration_path = "api/client/register"

    @property
    def credentials_present(self) -> bool:
        return self.data.are_client_keys_present

    @property
    def needs_client_keys(self) -> bool:
        return True

    def auth_headers(self, method: str, url: str, form: dict[str, Any] | None) -> dict[str, str]:
        keys = self.data.client_keys
        if keys is None or not keys.are_keys_present:
            return {}
        return {
            "Authorization": oauth1_authorization_header(
                method,
                url,
                keys.consumer_key,
                keys.consumer_secret,
                token=self.data.access_token,
                token_secret=self.data.access_secret,
                form=form,
            )
        }

    async def register_client(self) -> None:
        url = f"{self.data.origin_url.rstrip('/')}/{self.registration_path}"
        result = await self.post_request(url, json_data={
            "type": "client_associate",
            "application_name": self.application_name,
            "application_type": "native",
        })
        keys = OAuthClientKeys(
            consumer_key=str((result or {}).get("client_id", "")),
            consumer_secret=str((result or {}).get("client_secret", "")),
        )
        if not keys.are_keys_present:
            raise NoCredentialsError("Registration returned no client keys", self.data.host)
        self._store_client_keys(keys)
