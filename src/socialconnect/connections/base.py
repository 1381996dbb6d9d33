"""Capability interface shared by all protocol adapters.

Unsupported operations raise CapabilityError before any request is made.
"""

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable

import structlog

from ..activity_types import Activity, Actor, Note, TimelinePosition
from ..api_routines import (
    ACTOR_ID,
    NOTE_ID,
    TAG,
    ApiRoutine,
    join_url,
    substitute,
)
from ..errors import CapabilityError, MalformedRequestError, ParseError
from ..http_connection import HttpConnection, RateLimitStatus

logger = structlog.get_logger()

BYTES_IN_MB = 1024 * 1024
DEFAULT_TEXT_LIMIT = 5000
DEFAULT_DOWNLOAD_LIMIT = 20

TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


class OriginType(str, Enum):
    """Backend families a connection can talk to."""
    TWITTER = "twitter"
    MASTODON = "mastodon"
    PUMPIO = "pumpio"
    LOCAL = "local"


@dataclass
class OriginConfig:
    """Limits advertised by (or known for) a host."""
    text_limit: int = DEFAULT_TEXT_LIMIT
    upload_limit: int = 10 * BYTES_IN_MB


# === Date parsing ===

def parse_iso_date(value: str | None) -> int:
    """Parse an ISO 8601 date to epoch millis; 0 if unparsable."""
    if not value:
        return 0
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        logger.debug("Unparsable date", value=value)
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def parse_twitter_date(value: str | None) -> int:
    """Parse `Wed Aug 27 13:08:45 +0000 2008` to epoch millis; 0 if unparsable."""
    if not value:
        return 0
    try:
        parsed = datetime.strptime(value.strip(), TWITTER_DATE_FORMAT)
    except ValueError:
        logger.debug("Unparsable date", value=value)
        return 0
    return int(parsed.timestamp() * 1000)


# === JSON helpers ===

def optional_str(obj: dict[str, Any], key: str) -> str:
    """String value of a key; null and missing become ""."""
    value = obj.get(key)
    if value is None:
        return ""
    return str(value)


def optional_int(obj: dict[str, Any], key: str) -> int:
    try:
        return int(obj.get(key) or 0)
    except (TypeError, ValueError):
        return 0


def optional_dict(obj: dict[str, Any], key: str) -> dict[str, Any] | None:
    value = obj.get(key)
    return value if isinstance(value, dict) else None


def optional_list(obj: dict[str, Any], key: str) -> list[Any]:
    """List value of a key; anything else becomes an empty list."""
    value = obj.get(key)
    return value if isinstance(value, list) else []


def require_dict(payload: Any, what: str, host: str = "") -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ParseError(f"{what} is not a JSON object", payload, host)
    return payload


def parse_list(
    items: Any,
    parse: Callable[[Any], Any],
    what: str,
    host: str = "",
) -> list[Any]:
    """Parse every item of a JSON array, skipping items that fail.

    Empty results of `parse` (EMPTY actors/activities) are skipped too.
    """
    if items is None:
        return []
    if not isinstance(items, list):
        raise ParseError(f"{what} is not a JSON array", items, host)
    parsed = []
    for index, item in enumerate(items):
        try:
            result = parse(item)
        except ParseError as e:
            logger.warning("Skipped malformed item", what=what, index=index, error=str(e))
            continue
        if not getattr(result, "is_empty", False):
            parsed.append(result)
    return parsed


_TAG_RE = re.compile(r"<[^>]+>")


def strip_html(text: str) -> str:
    return _TAG_RE.sub("", text or "").strip()


def first_tag_or_keyword(query: str) -> str:
    """First `#tag` of a search query, else its first keyword."""
    words = (query or "").split()
    for word in words:
        if word.startswith("#") and len(word) > 1:
            return word[1:]
    return words[0].lstrip("#") if words else ""


class Connection:
    """Default implementation of the adapter capability interface.

    Subclasses declare `api_paths` and override what their backend
    supports. Every default raises CapabilityError.
    """

    origin_type: OriginType = OriginType.LOCAL
    api_paths: dict[ApiRoutine, str] = {}
    # Maximum page size per routine; DEFAULT_DOWNLOAD_LIMIT caps anything else
    download_limits: dict[ApiRoutine, int] = {}
    default_download_limit = DEFAULT_DOWNLOAD_LIMIT
    origin_config = OriginConfig()

    def __init__(
        self,
        http: HttpConnection,
        account_actor: Actor | None = None,
        media_reader: Callable[[str], Any] | None = None,
    ):
        """Initialize connection.

        Args:
            http: Authenticated HTTP connection to the account's host
            account_actor: Actor of the account data is fetched for
            media_reader: Coroutine function returning bytes of a local URI
        """
        self.http = http
        self.account_actor = account_actor or Actor.empty()
        self.media_reader = media_reader

    @property
    def host(self) -> str:
        return self.http.data.host

    @property
    def api_base_url(self) -> str:
        return f"{self.http.data.origin_url.rstrip('/')}/api/"

    async def close(self) -> None:
        await self.http.close()

    # === Capability registry ===

    def has_api_endpoint(self, routine: ApiRoutine) -> bool:
        return bool(self.api_paths.get(routine))

    def get_api_path(self, routine: ApiRoutine) -> str:
        """Endpoint template of a routine.

        Raises:
            CapabilityError: If the routine is not supported
        """
        template = self.api_paths.get(routine, "")
        if not template:
            raise CapabilityError(
                f"{routine.value} is not supported by {self.origin_type.value}", self.host
            )
        return template

    def get_api_url(self, routine: ApiRoutine) -> str:
        return join_url(self.api_base_url, self.get_api_path(routine))

    def get_api_url_with_note_id(self, routine: ApiRoutine, note_oid: str) -> str:
        url = self.get_api_url(routine)
        if NOTE_ID in url:
            if not note_oid:
                raise MalformedRequestError(f"{routine.value}: note id is empty", self.host)
            url = substitute(url, NOTE_ID, note_oid)
        return url

    def get_api_url_with_actor_id(self, routine: ApiRoutine, actor_oid: str) -> str:
        url = self.get_api_url(routine)
        if ACTOR_ID in url:
            if not actor_oid:
                raise MalformedRequestError(f"{routine.value}: actor id is empty", self.host)
            url = substitute(url, ACTOR_ID, actor_oid)
        return url

    def get_api_url_with_tag(self, routine: ApiRoutine, tag: str) -> str:
        url = self.get_api_url(routine)
        if TAG in url:
            if not tag:
                raise MalformedRequestError(f"{routine.value}: tag is empty", self.host)
            url = substitute(url, TAG, tag)
        return url

    def fixed_download_limit(self, limit: int, routine: ApiRoutine) -> int:
        """Clamp a requested page size to the backend maximum."""
        maximum = self.download_limits.get(routine, self.default_download_limit)
        if limit <= 0:
            return maximum
        return min(limit, maximum)

    def _unsupported(self, routine: ApiRoutine) -> CapabilityError:
        return CapabilityError(
            f"{routine.value} is not supported by {self.origin_type.value}", self.host
        )

    # === Helpers ===

    def parse_date(self, value: str | None) -> int:
        return parse_iso_date(value)

    def oid_to_object_type(self, oid: str) -> str:
        return ""

    def actor_oid_to_host(self, oid: str) -> str:
        return ""

    # === Operations ===

    async def get_config(self) -> OriginConfig:
        return self.origin_config

    async def verify_credentials(self) -> Actor:
        raise self._unsupported(ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS)

    async def rate_limit_status(self) -> RateLimitStatus:
        raise self._unsupported(ApiRoutine.ACCOUNT_RATE_LIMIT_STATUS)

    async def get_timeline(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        actor: Actor,
    ) -> list[Activity]:
        raise self._unsupported(routine)

    async def search_notes(
        self,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        query: str,
    ) -> list[Activity]:
        raise self._unsupported(ApiRoutine.SEARCH_NOTES)

    async def get_note(self, note_oid: str) -> Activity:
        raise self._unsupported(ApiRoutine.GET_NOTE)

    async def get_conversation(self, note_oid: str) -> list[Activity]:
        raise self._unsupported(ApiRoutine.GET_CONVERSATION)

    async def update_note(self, note: Note) -> Activity:
        raise self._unsupported(ApiRoutine.UPDATE_NOTE)

    async def delete_note(self, note_oid: str) -> bool:
        raise self._unsupported(ApiRoutine.DELETE_NOTE)

    async def like(self, note_oid: str) -> Activity:
        raise self._unsupported(ApiRoutine.LIKE)

    async def undo_like(self, note_oid: str) -> Activity:
        raise self._unsupported(ApiRoutine.UNDO_LIKE)

    async def announce(self, note_oid: str) -> Activity:
        raise self._unsupported(ApiRoutine.ANNOUNCE)

    async def undo_announce(self, note_oid: str) -> bool:
        raise self._unsupported(ApiRoutine.UNDO_ANNOUNCE)

    async def follow(self, actor_oid: str, follow: bool) -> Activity:
        raise self._unsupported(ApiRoutine.FOLLOW if follow else ApiRoutine.UNDO_FOLLOW)

    async def get_friends(self, actor: Actor) -> list[Actor]:
        raise self._unsupported(ApiRoutine.GET_FRIENDS)

    async def get_followers(self, actor: Actor) -> list[Actor]:
        raise self._unsupported(ApiRoutine.GET_FOLLOWERS)

    async def get_actor(self, actor: Actor) -> Actor:
        raise self._unsupported(ApiRoutine.GET_ACTOR)

    async def search_actors(self, limit: int, query: str) -> list[Actor]:
        raise self._unsupported(ApiRoutine.SEARCH_ACTORS)

    async def download_attachment(self, uri: str, path: Path) -> int:
        """Download a remote attachment; returns the number of bytes written."""
        if not uri:
            raise MalformedRequestError("Attachment URI is empty", self.host)
        return await self.http.download_file(uri, path)

    async def read_media(self, uri: str) -> bytes:
        """Bytes of a not yet uploaded attachment."""
        if self.media_reader is None:
            raise CapabilityError(f"No reader for local media '{uri}'", self.host)
        return await self.media_reader(uri)
