"""Tests for the capability registry."""

import pytest

from socialconnect.api_routines import NICKNAME, NOTE_ID, ApiRoutine, join_url, substitute
from socialconnect.connections.mastodon import MASTODON_API_PATHS
from socialconnect.connections.pumpio import PUMPIO_API_PATHS
from socialconnect.connections.the_twitter import TWITTER_API_PATHS
from socialconnect.errors import CapabilityError, MalformedRequestError, StatusCode


class TestApiRoutine:
    """Tests for ApiRoutine."""

    def test_timeline_routines(self):
        assert ApiRoutine.HOME_TIMELINE.is_timeline
        assert ApiRoutine.SEARCH_NOTES.is_timeline
        assert not ApiRoutine.GET_NOTE.is_timeline

    def test_actor_list_routines(self):
        assert ApiRoutine.GET_FRIENDS.is_actor_list
        assert not ApiRoutine.GET_ACTOR.is_actor_list

    @pytest.mark.parametrize("routine", [r for r in ApiRoutine if r.is_timeline])
    def test_every_timeline_has_a_backend(self, routine):
        tables = (MASTODON_API_PATHS, PUMPIO_API_PATHS, TWITTER_API_PATHS)
        assert any(routine in table for table in tables)


class TestTemplates:
    """Tests for endpoint template helpers."""

    def test_substitute_quotes_value(self):
        assert substitute("statuses/%noteId%", NOTE_ID, "a b/c") == "statuses/a%20b%2Fc"

    def test_substitute_keeps_webfinger(self):
        assert substitute("user/%nickname%", NICKNAME, "t131t") == "user/t131t"

    def test_join_url(self):
        assert join_url("https://identi.ca/api/", "whoami") == "https://identi.ca/api/whoami"
        assert join_url("https://identi.ca/api", "/whoami") == "https://identi.ca/api/whoami"

    def test_join_url_absolute_template(self):
        url = "https://upload.twitter.com/1.1/media/upload.json"
        assert join_url("https://api.twitter.com/1.1/", url) == url


class TestCapabilities:
    """Tests for capability checks made before any request."""

    def test_tables_have_no_empty_templates(self):
        for table in (MASTODON_API_PATHS, PUMPIO_API_PATHS, TWITTER_API_PATHS):
            assert all(table.values())

    def test_unsupported_routine(self, twitter, server):
        assert not twitter.has_api_endpoint(ApiRoutine.GET_CONVERSATION)
        with pytest.raises(CapabilityError) as exc_info:
            twitter.get_api_path(ApiRoutine.GET_CONVERSATION)
        assert exc_info.value.status_code is StatusCode.UNSUPPORTED_API
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_unsupported_operation_makes_no_request(self, twitter, server):
        with pytest.raises(CapabilityError):
            await twitter.get_conversation("123")
        assert server.requests == []

    def test_empty_note_id_is_malformed(self, mastodon):
        with pytest.raises(MalformedRequestError):
            mastodon.get_api_url_with_note_id(ApiRoutine.GET_NOTE, "")

    def test_url_with_note_id(self, mastodon):
        url = mastodon.get_api_url_with_note_id(ApiRoutine.LIKE, "109")
        assert url == "https://mastodon.example/api/v1/statuses/109/favourite"

    def test_fixed_download_limit(self, mastodon, twitter):
        assert mastodon.fixed_download_limit(0, ApiRoutine.HOME_TIMELINE) == 40
        assert mastodon.fixed_download_limit(500, ApiRoutine.GET_FOLLOWERS) == 80
        assert mastodon.fixed_download_limit(10, ApiRoutine.HOME_TIMELINE) == 10
        assert twitter.fixed_download_limit(1000, ApiRoutine.HOME_TIMELINE) == 200
        assert twitter.fixed_download_limit(1000, ApiRoutine.SEARCH_NOTES) == 100
