"""Connection to device-local resources.

Supports nothing of a social network; it copies `file:` media to download
locations and reads media bytes for upload by the remote adapters.
"""

import asyncio
import shutil
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname

import structlog

from ..activity_types import Actor
from ..errors import MalformedRequestError, TransportError
from ..http_connection import ConnectionData, HttpConnection
from .base import Connection, OriginType

logger = structlog.get_logger()


def uri_to_path(uri: str) -> Path:
    """Local path of a `file:` URI or a plain path."""
    if not uri:
        raise MalformedRequestError("Media URI is empty")
    parsed = urlparse(uri)
    if parsed.scheme == "file":
        return Path(url2pathname(unquote(parsed.path)))
    if parsed.scheme and len(parsed.scheme) > 1:
        raise MalformedRequestError(f"Not a local URI: '{uri}'")
    return Path(uri)


class LocalConnection(Connection):
    """Adapter for media stored on this machine."""

    origin_type = OriginType.LOCAL
    api_paths = {}

    def __init__(self, http: HttpConnection | None = None, account_actor: Actor | None = None):
        super().__init__(http or HttpConnection(ConnectionData(origin_url="")), account_actor)
        self.media_reader = self.read_local

    async def read_local(self, uri: str) -> bytes:
        """Bytes of a local file.

        Raises:
            TransportError: Hard error if the file cannot be read
        """
        path = uri_to_path(uri)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            raise TransportError(f"mediaUri='{uri}': {e}", is_hard=True) from e

    async def download_attachment(self, uri: str, path: Path) -> int:
        source = uri_to_path(uri)
        try:
            await asyncio.to_thread(shutil.copyfile, source, path)
        except OSError as e:
            raise TransportError(f"mediaUri='{uri}': {e}", is_hard=True) from e
        size = path.stat().st_size
        logger.debug("Copied local media", uri=uri, path=str(path), size=size)
        return size
