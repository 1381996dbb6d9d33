"""Tests for the Mastodon adapter."""

import pytest

from socialconnect.activity_types import (
    Activity,
    ActivityType,
    Actor,
    ActorEndpointType,
    Attachment,
    ContentType,
    Note,
    ObjectType,
    TimelinePosition,
    TriState,
)
from socialconnect.api_routines import ApiRoutine
from socialconnect.connections.mastodon import extract_summary
from socialconnect.errors import MalformedRequestError

from conftest import form_of

API = "https://mastodon.example/api/v1"


def account_json(oid="5962", username="AndStatus", acct=None, **extra):
    jso = {
        "id": oid,
        "username": username,
        "acct": acct if acct is not None else username,
        "display_name": "AndStatus@mastodon.social",
        "url": f"https://mastodon.example/@{username}",
        "avatar": f"https://files.mastodon.example/avatars/{oid}.png",
        "header": f"https://files.mastodon.example/headers/{oid}.png",
        "note": "Open source Android app",
        "statuses_count": 12,
        "following_count": 3,
        "followers_count": 7,
        "created_at": "2017-04-19T11:04:03.000Z",
    }
    jso.update(extra)
    return jso


def status_json(oid="22", account=None, **extra):
    jso = {
        "id": oid,
        "created_at": "2017-04-22T13:59:46.500Z",
        "in_reply_to_id": None,
        "in_reply_to_account_id": None,
        "sensitive": False,
        "spoiler_text": "",
        "visibility": "public",
        "application": {"name": "Web", "website": None},
        "account": account or account_json(),
        "media_attachments": [],
        "mentions": [],
        "tags": [],
        "uri": f"tag:mastodon.example,2017-04-22:objectId={oid}:objectType=Status",
        "content": "<p>Hello from the fediverse</p>",
        "url": f"https://mastodon.example/@AndStatus/{oid}",
        "reblogs_count": 0,
        "favourites_count": 0,
        "reblog": None,
        "favourited": False,
        "reblogged": False,
    }
    jso.update(extra)
    return jso


def notification_json(kind, oid="300", status=None, account=None):
    jso = {
        "id": oid,
        "type": kind,
        "created_at": "2017-04-23T10:00:00.000Z",
        "account": account or account_json("777", "bob", "bob@other.example"),
    }
    if status is not None:
        jso["status"] = status
    return jso


class TestParsing:
    """Tests for parsing statuses and accounts."""

    def test_status(self, mastodon):
        activity = mastodon.activity_from_json(status_json())

        assert activity.type is ActivityType.UPDATE
        assert activity.timeline_position == TimelinePosition("22")
        assert activity.actor.oid == "5962"
        assert activity.author.oid == "5962"
        note = activity.note
        assert note.oid == "22"
        assert note.content == "<p>Hello from the fediverse</p>"
        assert note.via == "Web"
        assert note.favorited is TriState.FALSE
        assert note.audience.is_public
        assert note.updated_date == 1492869586500
        assert activity.is_consistent()

    def test_private_status_has_no_public_audience(self, mastodon):
        mention = {"id": "1", "username": "alice", "acct": "alice", "url": "https://mastodon.example/@alice"}
        activity = mastodon.activity_from_json(
            status_json(visibility="direct", mentions=[mention])
        )

        audience = activity.note.audience
        assert not audience.is_public
        assert audience.first_non_public().webfinger_id == "alice@mastodon.example"

    def test_reply(self, mastodon):
        activity = mastodon.activity_from_json(
            status_json(in_reply_to_id="21", in_reply_to_account_id="1")
        )

        in_reply_to = activity.note.get_in_reply_to()
        assert in_reply_to.note.oid == "21"
        assert in_reply_to.author.oid == "1"

    def test_reblog(self, mastodon):
        original = status_json("20", account_json("8", "carol"))
        activity = mastodon.activity_from_json(status_json("23", reblog=original))

        assert activity.type is ActivityType.ANNOUNCE
        assert activity.object_type is ObjectType.ACTIVITY
        assert activity.actor.oid == "5962"
        assert activity.note.oid == "20"
        assert activity.author.oid == "8"
        assert activity.timeline_position == TimelinePosition("23")

    def test_account(self, mastodon):
        actor = mastodon.actor_from_json(account_json(
            fields=[
                {"name": "Website", "value": "https://andstatus.org"},
                {"name": "", "value": "just a value"},
            ],
        ))

        assert actor.oid == "5962"
        assert actor.username == "AndStatus"
        assert actor.webfinger_id == "AndStatus@mastodon.example"
        assert actor.notes_count == 12
        assert actor.followers_count == 7
        assert actor.endpoints[ActorEndpointType.BANNER].endswith("/headers/5962.png")
        assert actor.summary == (
            "Open source Android app\n<br>Website: https://andstatus.org\n<br>just a value"
        )

    def test_remote_account_keeps_acct(self, mastodon):
        actor = mastodon.actor_from_json(account_json(acct="bob@other.example"))
        assert actor.webfinger_id == "bob@other.example"

    def test_summary_without_note(self):
        assert extract_summary({"fields": [{"name": "a", "value": "b"}]}) == "a: b"
        assert extract_summary({}) == ""

    def test_attachments_with_previews(self, mastodon):
        activity = mastodon.activity_from_json(status_json(media_attachments=[
            {
                "id": "1",
                "type": "image",
                "url": "https://files.mastodon.example/media/original/cat.png",
                "preview_url": "https://files.mastodon.example/media/small/cat.png",
            },
            {
                "id": "2",
                "type": "unknown",
                "url": None,
                "remote_url": "https://remote.example/video.mp4",
            },
        ]))

        attachments = activity.note.attachments.items
        assert len(attachments) == 2
        image, remote = attachments
        assert image.uri == "https://files.mastodon.example/media/original/cat.png"
        assert image.content_type is ContentType.IMAGE
        assert image.preview.uri == "https://files.mastodon.example/media/small/cat.png"
        assert remote.uri == "https://remote.example/video.mp4"
        assert remote.content_type is ContentType.VIDEO


class TestNotifications:
    """Tests for notification envelopes."""

    def test_favourite(self, mastodon):
        activity = mastodon.activity_from_json(notification_json("favourite", status=status_json()))

        assert activity.type is ActivityType.LIKE
        assert activity.actor.webfinger_id == "bob@other.example"
        assert activity.object_type is ObjectType.ACTIVITY
        assert activity.note.oid == "22"
        assert activity.author.oid == "5962"
        assert activity.timeline_position == TimelinePosition("300")
        assert activity.is_consistent()

    def test_reblog(self, mastodon):
        activity = mastodon.activity_from_json(notification_json("reblog", status=status_json()))
        assert activity.type is ActivityType.ANNOUNCE
        assert activity.note.oid == "22"

    def test_follow(self, mastodon):
        activity = mastodon.activity_from_json(notification_json("follow"))

        assert activity.type is ActivityType.FOLLOW
        assert activity.obj_actor == mastodon.account_actor
        assert activity.is_consistent()

    def test_mention(self, mastodon):
        activity = mastodon.activity_from_json(notification_json("mention", status=status_json()))

        assert activity.type is ActivityType.UPDATE
        assert activity.object_type is ObjectType.NOTE
        assert activity.note.content == "<p>Hello from the fediverse</p>"

    def test_unknown_type_is_empty_activity(self, mastodon):
        activity = mastodon.activity_from_json(notification_json("poll"))
        assert activity.type is ActivityType.EMPTY


class TestTimelines:
    """Tests for timeline requests."""

    @pytest.mark.asyncio
    async def test_home_timeline_since(self, mastodon, server):
        server.add("GET", f"{API}/timelines/home", [status_json("25"), status_json("24")])

        activities = await mastodon.get_timeline(
            ApiRoutine.HOME_TIMELINE, TimelinePosition("23"), TimelinePosition.EMPTY, 0, Actor.empty()
        )

        assert [a.note.oid for a in activities] == ["25", "24"]
        params = server.last().url.params
        assert params["since_id"] == "23"
        assert params["limit"] == "40"
        assert "max_id" not in params
        assert server.last().headers["Authorization"] == "Bearer mastodon_token"

    @pytest.mark.asyncio
    async def test_older_page(self, mastodon, server):
        server.add("GET", f"{API}/timelines/public", [])

        await mastodon.get_timeline(
            ApiRoutine.PUBLIC_TIMELINE, TimelinePosition.EMPTY, TimelinePosition("10"), 20, Actor.empty()
        )

        assert server.last().url.params["max_id"] == "10"
        assert server.last().url.params["limit"] == "20"

    @pytest.mark.asyncio
    async def test_actor_timeline(self, mastodon, server):
        server.add("GET", f"{API}/accounts/5962/statuses", [status_json()])

        activities = await mastodon.get_timeline(
            ApiRoutine.ACTOR_TIMELINE, TimelinePosition.EMPTY, TimelinePosition.EMPTY, 0, Actor(oid="5962")
        )

        assert len(activities) == 1

    @pytest.mark.asyncio
    async def test_malformed_item_is_skipped(self, mastodon, server):
        broken = status_json("26", account={"id": "", "username": ""})
        server.add("GET", f"{API}/timelines/home", [status_json("27"), broken, "junk"])

        activities = await mastodon.get_timeline(
            ApiRoutine.HOME_TIMELINE, TimelinePosition.EMPTY, TimelinePosition.EMPTY, 0, Actor.empty()
        )

        assert [a.note.oid for a in activities] == ["27"]

    @pytest.mark.asyncio
    async def test_scalar_lists_do_not_break_the_page(self, mastodon, server):
        odd = status_json("28", mentions=5, media_attachments="none")
        server.add("GET", f"{API}/timelines/home", [status_json("27"), odd])

        activities = await mastodon.get_timeline(
            ApiRoutine.HOME_TIMELINE, TimelinePosition.EMPTY, TimelinePosition.EMPTY, 0, Actor.empty()
        )

        assert [a.note.oid for a in activities] == ["27", "28"]
        assert activities[1].note.attachments.is_empty

    @pytest.mark.asyncio
    async def test_tag_timeline_needs_query(self, mastodon, server):
        with pytest.raises(MalformedRequestError):
            await mastodon.get_timeline(
                ApiRoutine.TAG_TIMELINE, TimelinePosition.EMPTY, TimelinePosition.EMPTY, 0, Actor.empty()
            )
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_search_notes_uses_tag(self, mastodon, server):
        server.add("GET", f"{API}/timelines/tag/andstatus", [status_json()])

        activities = await mastodon.search_notes(
            TimelinePosition.EMPTY, TimelinePosition.EMPTY, 10, "hello #andstatus"
        )

        assert len(activities) == 1
        assert server.last().url.params["limit"] == "10"

    @pytest.mark.asyncio
    async def test_empty_search_makes_no_request(self, mastodon, server):
        assert await mastodon.search_notes(TimelinePosition.EMPTY, TimelinePosition.EMPTY, 10, "  ") == []
        assert server.requests == []


class TestOperations:
    """Tests for single requests."""

    @pytest.mark.asyncio
    async def test_get_config(self, mastodon, server):
        server.add("GET", f"{API}/instance", {"uri": "mastodon.example", "max_toot_chars": 1000})
        config = await mastodon.get_config()
        assert config.text_limit == 1000
        assert config.upload_limit == 10 * 1024 * 1024

    @pytest.mark.asyncio
    async def test_get_config_default(self, mastodon, server):
        server.add("GET", f"{API}/instance", {"uri": "mastodon.example"})
        assert (await mastodon.get_config()).text_limit == 500

    @pytest.mark.asyncio
    async def test_get_note(self, mastodon, server):
        server.add("GET", f"{API}/statuses/22", status_json())
        activity = await mastodon.get_note("22")
        assert activity.note.oid == "22"

    @pytest.mark.asyncio
    async def test_get_conversation(self, mastodon, server):
        server.add("GET", f"{API}/statuses/22/context", {
            "ancestors": [status_json("20")],
            "descendants": [status_json("23"), status_json("24")],
        })

        activities = await mastodon.get_conversation("22")

        assert [a.note.oid for a in activities] == ["20", "23", "24"]

    @pytest.mark.asyncio
    async def test_delete_note(self, mastodon, server):
        server.add("DELETE", f"{API}/statuses/22", {})
        assert await mastodon.delete_note("22") is True
        assert server.last().method == "DELETE"

    @pytest.mark.asyncio
    async def test_like(self, mastodon, server):
        server.add("POST", f"{API}/statuses/22/favourite", status_json(favourited=True))

        activity = await mastodon.like("22")

        assert activity.type is ActivityType.LIKE
        assert activity.actor == mastodon.account_actor
        assert activity.note.favorited is TriState.TRUE

    @pytest.mark.asyncio
    async def test_verify_credentials(self, mastodon, server):
        server.add("GET", f"{API}/accounts/verify_credentials", account_json("1", "alice"))
        actor = await mastodon.verify_credentials()
        assert actor.username == "alice"
        assert mastodon.account_actor is actor

    @pytest.mark.asyncio
    async def test_get_followers(self, mastodon, server):
        server.add("GET", f"{API}/accounts/1/followers", [account_json("2", "bob"), {"id": "3"}])

        followers = await mastodon.get_followers(Actor(oid="1"))

        assert [actor.username for actor in followers] == ["bob"]
        assert server.last().url.params["limit"] == "80"

    @pytest.mark.asyncio
    async def test_search_actors(self, mastodon, server):
        server.add("GET", f"{API}/accounts/search", [account_json()])

        actors = await mastodon.search_actors(5, "andstatus")

        assert len(actors) == 1
        assert server.last().url.params["q"] == "andstatus"
        assert server.last().url.params["resolve"] == "true"


class TestFollow:
    """Tests for follow and unfollow."""

    @pytest.mark.asyncio
    async def test_follow(self, mastodon, server):
        server.add("POST", f"{API}/accounts/5962/follow", {"id": "5962", "following": True})

        activity = await mastodon.follow("5962", True)

        assert activity.type is ActivityType.FOLLOW
        assert activity.obj_actor.oid == "5962"
        assert activity.obj_actor.is_my_friend is TriState.TRUE

    @pytest.mark.asyncio
    async def test_unfollow(self, mastodon, server):
        server.add("POST", f"{API}/accounts/5962/unfollow", {"id": "5962", "following": False})
        activity = await mastodon.follow("5962", False)
        assert activity.type is ActivityType.UNDO_FOLLOW

    @pytest.mark.asyncio
    async def test_follow_not_applied(self, mastodon, server):
        server.add("POST", f"{API}/accounts/5962/follow", {"id": "5962", "following": False})
        activity = await mastodon.follow("5962", True)
        assert activity.type is ActivityType.UPDATE
        assert activity.obj_actor.is_my_friend is TriState.FALSE

    @pytest.mark.asyncio
    async def test_unknown_relationship(self, mastodon, server):
        server.add("POST", f"{API}/accounts/5962/follow", {"id": "5962"})
        assert (await mastodon.follow("5962", True)).is_empty


class TestUpdateNote:
    """Tests for posting notes."""

    @pytest.mark.asyncio
    async def test_post_reply(self, mastodon, server):
        server.add("POST", f"{API}/statuses", status_json("30"))
        note = Note(content="Reply text", summary="cw", sensitive=True)
        note.audience.add(Actor.public())
        note.in_reply_to = Activity.new_partial_note(mastodon.account_actor, Actor(oid="8"), "20")

        activity = await mastodon.update_note(note)

        assert activity.note.oid == "30"
        form = form_of(server.last())
        assert form["status"] == ["Reply text"]
        assert form["spoiler_text"] == ["cw"]
        assert form["sensitive"] == ["true"]
        assert form["in_reply_to_id"] == ["20"]
        assert "visibility" not in form

    @pytest.mark.asyncio
    async def test_private_note_is_direct(self, mastodon, server):
        server.add("POST", f"{API}/statuses", status_json("31", visibility="direct"))
        note = Note(content="Only for bob")
        note.audience.add(Actor(oid="777", username="bob"))

        await mastodon.update_note(note)

        assert form_of(server.last())["visibility"] == ["direct"]

    @pytest.mark.asyncio
    async def test_media_uploaded_before_post(self, mastodon, server, tmp_path):
        image = tmp_path / "cat.png"
        image.write_bytes(b"\x89PNG cat")
        server.add("POST", f"{API}/media", {"id": "m1", "type": "image"})
        server.add("POST", f"{API}/statuses", status_json("32"))
        note = Note(content="A cat")
        note.attachments.add(Attachment.from_uri(image.as_uri()))

        await mastodon.update_note(note)

        assert server.paths() == ["/api/v1/media", "/api/v1/statuses"]
        upload = server.requests[0]
        assert b'name="file"' in upload.content
        assert b"\x89PNG cat" in upload.content
        assert form_of(server.last())["media_ids[]"] == ["m1"]

    @pytest.mark.asyncio
    async def test_remote_attachment_not_uploaded(self, mastodon, server):
        server.add("POST", f"{API}/statuses", status_json("33"))
        note = Note(content="Link")
        note.attachments.add(Attachment.from_uri("https://example.com/a.png"))

        await mastodon.update_note(note)

        assert server.paths() == ["/api/v1/statuses"]
