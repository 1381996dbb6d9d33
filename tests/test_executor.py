"""Tests for command execution against adapters and storage."""

import pytest

from socialconnect.activity_types import Note, TimelinePosition
from socialconnect.commands import CommandData, CommandEnum, Timeline, TimelineType
from socialconnect.errors import CapabilityError, MalformedRequestError
from socialconnect.executor import CommandExecutor
from socialconnect.storage import DownloadTarget

from conftest import form_of

API = "https://mastodon.example/api/v1"
ACCOUNT = "alice@mastodon.example"


def status(oid):
    return {
        "id": oid,
        "created_at": "2017-04-22T13:59:46.500Z",
        "visibility": "public",
        "content": f"<p>Status {oid}</p>",
        "account": {"id": "5962", "username": "AndStatus", "acct": "AndStatus"},
    }


@pytest.fixture
def executor(mastodon, storage):
    return CommandExecutor({ACCOUNT: mastodon}, storage)


def home_timeline(command=CommandEnum.GET_TIMELINE):
    return CommandData.new_timeline_command(command, ACCOUNT, TimelineType.HOME)


class TestTimelines:
    """Tests for timeline synchronization."""

    @pytest.mark.asyncio
    async def test_first_sync_sets_positions(self, executor, server, storage):
        server.add("GET", f"{API}/timelines/home", [status("30"), status("29"), status("28")])
        command = home_timeline()

        await executor.execute(command)

        assert command.result.downloaded_count == 3
        assert set(storage.activities) == {"30", "29", "28"}
        assert await storage.get_positions(ACCOUNT, command.timeline) == (
            TimelinePosition("30"), TimelinePosition("28"),
        )
        assert "since_id" not in server.last().url.params

    @pytest.mark.asyncio
    async def test_newer_sync_moves_youngest(self, executor, server, storage):
        timeline = Timeline(TimelineType.HOME)
        await storage.set_positions(ACCOUNT, timeline, TimelinePosition("30"), TimelinePosition("28"))
        server.add("GET", f"{API}/timelines/home", [status("32"), status("31")])

        await executor.execute(home_timeline())

        assert server.last().url.params["since_id"] == "30"
        assert await storage.get_positions(ACCOUNT, timeline) == (
            TimelinePosition("32"), TimelinePosition("28"),
        )

    @pytest.mark.asyncio
    async def test_older_sync_moves_oldest(self, executor, server, storage):
        timeline = Timeline(TimelineType.HOME)
        await storage.set_positions(ACCOUNT, timeline, TimelinePosition("30"), TimelinePosition("28"))
        server.add("GET", f"{API}/timelines/home", [status("27"), status("26")])

        await executor.execute(home_timeline(CommandEnum.GET_OLDER_TIMELINE))

        assert server.last().url.params["max_id"] == "28"
        assert await storage.get_positions(ACCOUNT, timeline) == (
            TimelinePosition("30"), TimelinePosition("26"),
        )

    @pytest.mark.asyncio
    async def test_empty_page_keeps_positions(self, executor, server, storage):
        server.add("GET", f"{API}/timelines/home", [])
        command = home_timeline()

        await executor.execute(command)

        assert command.result.downloaded_count == 0
        assert storage.positions == {}

    @pytest.mark.asyncio
    async def test_search(self, executor, server, storage):
        server.add("GET", f"{API}/timelines/tag/python", [status("40")])
        command = CommandData.new_search(ACCOUNT, "#python")

        await executor.execute(command)

        assert command.result.downloaded_count == 1

    @pytest.mark.asyncio
    async def test_followers_timeline(self, executor, server, storage):
        server.add("GET", f"{API}/accounts/1/followers", [
            {"id": "2", "username": "bob", "acct": "bob@other.example"},
        ])
        command = CommandData.new_timeline_command(CommandEnum.GET_TIMELINE, ACCOUNT, TimelineType.FOLLOWERS)

        await executor.execute(command)

        assert "2" in storage.actors
        assert command.result.downloaded_count == 1

    @pytest.mark.asyncio
    async def test_rate_limit_copied_to_result(self, executor, server):
        server.add(
            "GET", f"{API}/timelines/home", [],
            headers={"X-RateLimit-Limit": "300", "X-RateLimit-Remaining": "297"},
        )
        command = home_timeline()

        await executor.execute(command)

        assert (command.result.rate_limit_remaining, command.result.rate_limit_limit) == (297, 300)


class TestNotes:
    """Tests for note commands."""

    @pytest.mark.asyncio
    async def test_update_note_from_outbox(self, executor, server, storage):
        storage.outbox["draft1"] = Note(content="Hello world")
        server.add("POST", f"{API}/statuses", status("50"))
        command = CommandData.new_update_note(ACCOUNT, "draft1", "Hello world")

        await executor.execute(command)

        assert form_of(server.last())["status"] == ["Hello world"]
        assert "draft1" not in storage.outbox
        assert storage.sent["draft1"].note.oid == "50"
        assert command.result.downloaded_count == 1

    @pytest.mark.asyncio
    async def test_update_note_without_draft(self, executor, server):
        with pytest.raises(MalformedRequestError):
            await executor.execute(CommandData.new_update_note(ACCOUNT, "missing"))
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_delete_note(self, executor, server, storage):
        server.add("GET", f"{API}/statuses/50", status("50"))
        await executor.execute(CommandData.new_item_command(CommandEnum.GET_NOTE, ACCOUNT, "50"))
        server.add("DELETE", f"{API}/statuses/50", {})

        await executor.execute(CommandData.new_item_command(CommandEnum.DELETE_NOTE, ACCOUNT, "50"))

        assert storage.activities == {}

    @pytest.mark.asyncio
    async def test_like(self, executor, server, storage):
        server.add("POST", f"{API}/statuses/50/favourite", status("50"))
        command = CommandData.new_item_command(CommandEnum.LIKE, ACCOUNT, "50")

        await executor.execute(command)

        assert command.result.downloaded_count == 1

    @pytest.mark.asyncio
    async def test_follow(self, executor, server, storage):
        server.add("POST", f"{API}/accounts/5962/follow", {"id": "5962", "following": True})
        command = CommandData.new_actor_command(CommandEnum.FOLLOW, ACCOUNT, "5962", "AndStatus")

        await executor.execute(command)

        assert server.last().url.path == "/api/v1/accounts/5962/follow"
        assert command.result.downloaded_count == 1


class TestOther:
    """Tests for configuration, attachments and failures."""

    @pytest.mark.asyncio
    async def test_get_config(self, executor, server, storage):
        server.add("GET", f"{API}/instance", {"max_toot_chars": 700})

        await executor.execute(CommandData.new_account_command(CommandEnum.GET_CONFIG, ACCOUNT))

        assert storage.origin_configs[ACCOUNT].text_limit == 700

    @pytest.mark.asyncio
    async def test_unknown_account(self, executor):
        with pytest.raises(MalformedRequestError):
            await executor.execute(CommandData.new_account_command(
                CommandEnum.GET_CONFIG, "nobody@nowhere.example"
            ))

    @pytest.mark.asyncio
    async def test_unsupported_operation(self, twitter, storage):
        executor = CommandExecutor({"andstatus@twitter.com": twitter}, storage)
        command = CommandData.new_item_command(CommandEnum.GET_CONVERSATION, "andstatus@twitter.com", "1")

        with pytest.raises(CapabilityError):
            await executor.execute(command)

    @pytest.mark.asyncio
    async def test_remote_attachment(self, executor, server, storage, tmp_path):
        server.add("GET", "https://files.mastodon.example/media/cat.png", content=b"cat bytes")
        target = tmp_path / "media" / "cat.png"
        storage.downloads["7"] = DownloadTarget("https://files.mastodon.example/media/cat.png", target)
        command = CommandData.new_fetch_attachment(ACCOUNT, "7")

        await executor.execute(command)

        assert target.read_bytes() == b"cat bytes"
        assert storage.downloaded["7"] == len(b"cat bytes")
        assert command.result.downloaded_count == 1

    @pytest.mark.asyncio
    async def test_local_attachment_without_account(self, storage, tmp_path):
        source = tmp_path / "source.png"
        source.write_bytes(b"local")
        target = tmp_path / "copy.png"
        storage.downloads["8"] = DownloadTarget(source.as_uri(), target)
        executor = CommandExecutor({}, storage)

        await executor.execute(CommandData.new_fetch_attachment("", "8"))

        assert target.read_bytes() == b"local"

    @pytest.mark.asyncio
    async def test_missing_attachment(self, executor):
        with pytest.raises(MalformedRequestError):
            await executor.execute(CommandData.new_fetch_attachment(ACCOUNT, "404"))
