"""Executes one command against the adapter of its account.

Exactly one adapter call sequence runs per execution; parsed results go to
Storage and counters to the command's result.
"""

from pathlib import Path

import structlog

from .activity_types import Activity, Actor, TimelinePosition
from .api_routines import ApiRoutine
from .commands import CommandData, CommandEnum, TimelineType
from .connections import Connection, LocalConnection
from .errors import MalformedRequestError
from .storage import Storage

logger = structlog.get_logger()

TIMELINE_ROUTINES = {
    TimelineType.HOME: ApiRoutine.HOME_TIMELINE,
    TimelineType.NOTIFICATIONS: ApiRoutine.NOTIFICATIONS_TIMELINE,
    TimelineType.FAVORITES: ApiRoutine.LIKED_TIMELINE,
    TimelineType.PUBLIC: ApiRoutine.PUBLIC_TIMELINE,
    TimelineType.SENT: ApiRoutine.ACTOR_TIMELINE,
}


class CommandExecutor:
    """Maps commands to adapter operations."""

    def __init__(
        self,
        connections: dict[str, Connection],
        storage: Storage,
        local: LocalConnection | None = None,
        download_limit: int = 0,
    ):
        """Initialize executor.

        Args:
            connections: Adapters by account name
            storage: Where results are saved
            local: Adapter for local media
            download_limit: Requested page size; 0 for each backend's maximum
        """
        self.connections = connections
        self.storage = storage
        self.local = local or LocalConnection()
        self.download_limit = download_limit

    def connection_for(self, command: CommandData) -> Connection:
        connection = self.connections.get(command.account_name)
        if connection is None:
            raise MalformedRequestError(f"Unknown account '{command.account_name}'")
        return connection

    async def _actor_of(self, command: CommandData, connection: Connection) -> Actor:
        """Actor a command is about, as complete as storage knows it."""
        oid = command.timeline.actor_oid
        if not oid and not command.username:
            return connection.account_actor
        stored = await self.storage.get_actor(oid) if oid else None
        if stored is not None:
            return stored
        return Actor(oid=oid, username=command.username)

    async def execute(self, command: CommandData) -> None:
        """Run a command once.

        Raises:
            ConnectorError: If the command failed
        """
        if command.command is CommandEnum.GET_ATTACHMENT:
            await self._get_attachment(command)
            return

        connection = self.connection_for(command)
        try:
            await self._execute(command, connection)
        finally:
            rate_limit = connection.http.rate_limit
            reported = command.command is CommandEnum.RATE_LIMIT_STATUS
            if not reported and rate_limit is not None and rate_limit.is_known:
                command.result.rate_limit_remaining = rate_limit.remaining
                command.result.rate_limit_limit = rate_limit.limit

    async def _execute(self, command: CommandData, connection: Connection) -> None:
        handler = {
            CommandEnum.GET_TIMELINE: self._get_timeline,
            CommandEnum.GET_OLDER_TIMELINE: self._get_timeline,
            CommandEnum.GET_FRIENDS: self._get_actors,
            CommandEnum.GET_FOLLOWERS: self._get_actors,
            CommandEnum.GET_ACTOR: self._get_actor,
            CommandEnum.SEARCH_ACTORS: self._search_actors,
            CommandEnum.GET_NOTE: self._get_note,
            CommandEnum.GET_CONVERSATION: self._get_conversation,
            CommandEnum.UPDATE_NOTE: self._update_note,
            CommandEnum.DELETE_NOTE: self._delete_note,
            CommandEnum.LIKE: self._note_action,
            CommandEnum.UNDO_LIKE: self._note_action,
            CommandEnum.ANNOUNCE: self._note_action,
            CommandEnum.UNDO_ANNOUNCE: self._note_action,
            CommandEnum.FOLLOW: self._follow,
            CommandEnum.UNDO_FOLLOW: self._follow,
            CommandEnum.GET_CONFIG: self._get_config,
            CommandEnum.RATE_LIMIT_STATUS: self._rate_limit_status,
        }.get(command.command)
        if handler is None:
            raise MalformedRequestError(f"Cannot execute {command}")
        await handler(command, connection)

    async def _save(self, command: CommandData, activities: list[Activity]) -> None:
        activities = [a for a in activities if not a.is_empty]
        if activities:
            await self.storage.save_activities(command.account_name, activities)
        command.result.increment_downloaded(len(activities))

    async def _get_timeline(self, command: CommandData, connection: Connection) -> None:
        timeline = command.timeline
        if timeline.timeline_type in (TimelineType.FRIENDS, TimelineType.FOLLOWERS):
            await self._get_actors(command, connection)
            return

        youngest, oldest = await self.storage.get_positions(command.account_name, timeline)
        older = command.command is CommandEnum.GET_OLDER_TIMELINE
        since = TimelinePosition.EMPTY if older else youngest
        until = oldest if older else TimelinePosition.EMPTY

        if timeline.timeline_type is TimelineType.SEARCH:
            activities = await connection.search_notes(
                since, until, self.download_limit, timeline.search_query
            )
        else:
            routine = TIMELINE_ROUTINES.get(timeline.timeline_type)
            if routine is None:
                raise MalformedRequestError(f"Unsupported timeline '{timeline}'")
            actor = await self._actor_of(command, connection)
            activities = await connection.get_timeline(
                routine, since, until, self.download_limit, actor
            )

        await self._save(command, activities)
        positions = [a.timeline_position for a in activities if not a.timeline_position.is_empty]
        if positions:
            if older or oldest.is_empty:
                oldest = positions[-1]
            if not older or youngest.is_empty:
                youngest = positions[0]
            await self.storage.set_positions(command.account_name, timeline, youngest, oldest)
        logger.info(
            "Timeline synced",
            command_id=command.command_id,
            timeline=str(timeline),
            count=len(activities),
        )

    async def _get_actors(self, command: CommandData, connection: Connection) -> None:
        actor = await self._actor_of(command, connection)
        followers = (
            command.command is CommandEnum.GET_FOLLOWERS
            or command.timeline.timeline_type is TimelineType.FOLLOWERS
        )
        if followers:
            actors = await connection.get_followers(actor)
        else:
            actors = await connection.get_friends(actor)
        await self.storage.save_actors(command.account_name, actors)
        command.result.increment_downloaded(len(actors))

    async def _get_actor(self, command: CommandData, connection: Connection) -> None:
        actor = await connection.get_actor(await self._actor_of(command, connection))
        if not actor.is_empty:
            await self.storage.save_actors(command.account_name, [actor])
            command.result.increment_downloaded()

    async def _search_actors(self, command: CommandData, connection: Connection) -> None:
        query = command.username or command.timeline.search_query
        actors = await connection.search_actors(self.download_limit, query)
        await self.storage.save_actors(command.account_name, actors)
        command.result.increment_downloaded(len(actors))

    async def _get_note(self, command: CommandData, connection: Connection) -> None:
        await self._save(command, [await connection.get_note(command.item_id)])

    async def _get_conversation(self, command: CommandData, connection: Connection) -> None:
        await self._save(command, await connection.get_conversation(command.item_id))

    async def _update_note(self, command: CommandData, connection: Connection) -> None:
        note = await self.storage.note_to_send(command.item_id)
        if note is None:
            raise MalformedRequestError(f"No note to send for item '{command.item_id}'")
        activity = await connection.update_note(note)
        await self.storage.note_sent(command.item_id, activity)
        command.result.increment_downloaded()

    async def _delete_note(self, command: CommandData, connection: Connection) -> None:
        await connection.delete_note(command.item_id)
        await self.storage.note_deleted(command.item_id)

    async def _note_action(self, command: CommandData, connection: Connection) -> None:
        action = {
            CommandEnum.LIKE: connection.like,
            CommandEnum.UNDO_LIKE: connection.undo_like,
            CommandEnum.ANNOUNCE: connection.announce,
        }.get(command.command)
        if action is None:
            await connection.undo_announce(command.item_id)
            return
        await self._save(command, [await action(command.item_id)])

    async def _follow(self, command: CommandData, connection: Connection) -> None:
        actor_oid = command.timeline.actor_oid or command.item_id
        activity = await connection.follow(actor_oid, command.command is CommandEnum.FOLLOW)
        await self._save(command, [activity])

    async def _get_config(self, command: CommandData, connection: Connection) -> None:
        config = await connection.get_config()
        await self.storage.save_origin_config(command.account_name, config)

    async def _rate_limit_status(self, command: CommandData, connection: Connection) -> None:
        status = await connection.rate_limit_status()
        command.result.rate_limit_remaining = status.remaining
        command.result.rate_limit_limit = status.limit

    async def _get_attachment(self, command: CommandData) -> None:
        target = await self.storage.download_target(command.item_id)
        if target is None:
            raise MalformedRequestError(f"No attachment for item '{command.item_id}'")
        connection = self.connections.get(command.account_name) or self.local
        if not target.uri.startswith(("http://", "https://")):
            connection = self.local
        path = Path(target.path)
        path.parent.mkdir(parents=True, exist_ok=True)
        size = await connection.download_attachment(target.uri, path)
        await self.storage.download_finished(command.item_id, size)
        command.result.increment_downloaded()
        logger.info("Attachment downloaded", uri=target.uri, path=str(path), size=size)
