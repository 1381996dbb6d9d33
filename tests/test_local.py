"""Tests for the local media connection."""

import pytest

from socialconnect.api_routines import ApiRoutine
from socialconnect.connections.local import LocalConnection, uri_to_path
from socialconnect.errors import CapabilityError, MalformedRequestError, StatusCode, TransportError


class TestUriToPath:
    """Tests for uri_to_path."""

    def test_file_uri(self, tmp_path):
        path = tmp_path / "a b.png"
        assert uri_to_path(path.as_uri()) == path

    def test_plain_path(self, tmp_path):
        assert uri_to_path(str(tmp_path)) == tmp_path

    def test_remote_uri_rejected(self):
        with pytest.raises(MalformedRequestError):
            uri_to_path("https://example.com/a.png")

    def test_empty(self):
        with pytest.raises(MalformedRequestError):
            uri_to_path("")


class TestLocalConnection:
    """Tests for LocalConnection."""

    @pytest.mark.asyncio
    async def test_read_local(self, tmp_path):
        path = tmp_path / "cat.png"
        path.write_bytes(b"cat")
        assert await LocalConnection().read_local(path.as_uri()) == b"cat"

    @pytest.mark.asyncio
    async def test_missing_file_is_hard_error(self, tmp_path):
        with pytest.raises(TransportError) as exc_info:
            await LocalConnection().read_local((tmp_path / "missing.png").as_uri())
        assert exc_info.value.is_hard
        assert exc_info.value.status_code is StatusCode.HARD_IO

    @pytest.mark.asyncio
    async def test_download_copies_file(self, tmp_path):
        source = tmp_path / "source.jpg"
        source.write_bytes(b"0123456789")
        target = tmp_path / "target.jpg"

        size = await LocalConnection().download_attachment(source.as_uri(), target)

        assert size == 10
        assert target.read_bytes() == b"0123456789"

    @pytest.mark.asyncio
    async def test_supports_no_network_operations(self):
        local = LocalConnection()
        assert not local.has_api_endpoint(ApiRoutine.HOME_TIMELINE)
        with pytest.raises(CapabilityError):
            await local.get_note("1")
