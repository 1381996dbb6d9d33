"""Shared logic of Twitter-like REST APIs (classic Twitter and Mastodon).

Timelines are paged with `since_id`/`max_id`, note actions are POSTs to a
per-note endpoint, and every status carries its author inline.
"""

from typing import Any

import structlog

from ..activity_types import (
    Activity,
    ActivityType,
    Actor,
    Note,
    TimelinePosition,
    TriState,
)
from ..api_routines import ApiRoutine
from ..errors import MalformedRequestError, ParseError
from .base import Connection, optional_str, parse_list, require_dict

logger = structlog.get_logger()


class TwitterLikeConnection(Connection):
    """Base adapter for APIs shaped like the classic Twitter REST API."""

    # Name of the page size query parameter
    limit_param = "count"
    # Extra query parameters sent with every note request
    note_params: dict[str, Any] = {}

    # === Parsing hooks ===

    def activity_from_json(self, obj: Any) -> Activity:
        """Parse one timeline item."""
        raise NotImplementedError

    def actor_from_json(self, obj: Any) -> Actor:
        raise NotImplementedError

    def activity_list_from_json(self, payload: Any, routine: ApiRoutine) -> list[Activity]:
        return parse_list(payload, self.activity_from_json, routine.value, self.host)

    def actor_list_from_json(self, payload: Any, routine: ApiRoutine) -> list[Actor]:
        return parse_list(payload, self.actor_from_json, routine.value, self.host)

    def new_update_activity(self, oid: str, updated_date: int) -> Activity:
        """UPDATE activity of a freshly loaded note, positioned at its id."""
        if not oid:
            raise ParseError("Note id is empty", None, self.host)
        return Activity(
            type=ActivityType.UPDATE,
            obj=Note(oid=oid, updated_date=updated_date),
            account_actor=self.account_actor,
            oid=oid,
            timeline_position=TimelinePosition(oid),
            updated_date=updated_date,
        )

    def set_in_reply_to(self, note: Note, actor_oid: str, note_oid: str, username: str = "") -> None:
        """Link a reply to a partial activity of the note it answers."""
        if actor_oid and note_oid:
            author = Actor(oid=actor_oid, username=username, host=self.host)
            note.in_reply_to = Activity.new_partial_note(self.account_actor, author, note_oid)

    # === Requests ===

    def pagination_params(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
    ) -> dict[str, Any]:
        params: dict[str, Any] = dict(self.note_params)
        if not youngest.is_empty:
            params["since_id"] = youngest.position
        elif not oldest.is_empty:
            params["max_id"] = oldest.position
        params[self.limit_param] = self.fixed_download_limit(limit, routine)
        return params

    def actor_params(self, routine: ApiRoutine, actor: Actor) -> dict[str, Any]:
        """Query parameters identifying the actor of an actor-scoped request."""
        return {}

    async def get_timeline(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        actor: Actor,
    ) -> list[Activity]:
        url = self.get_api_url_with_actor_id(routine, actor.oid)
        params = self.pagination_params(routine, youngest, oldest, limit)
        params.update(self.actor_params(routine, actor))
        payload = await self.http.get_request(url, params)
        activities = self.activity_list_from_json(payload, routine)
        logger.debug("Timeline loaded", routine=routine.value, host=self.host, count=len(activities))
        return activities

    async def get_note(self, note_oid: str) -> Activity:
        if not note_oid:
            raise MalformedRequestError("Note id is empty", self.host)
        url = self.get_api_url_with_note_id(ApiRoutine.GET_NOTE, note_oid)
        params = dict(self.note_params)
        if url == self.get_api_url(ApiRoutine.GET_NOTE):
            params["id"] = note_oid
        payload = await self.http.get_request(url, params)
        if not payload:
            return Activity.empty()
        return self.activity_from_json(payload)

    async def _post_note_action(self, routine: ApiRoutine, note_oid: str) -> Any:
        """POST to a per-note endpoint; the id goes in the form when the template has no slot."""
        if not note_oid:
            raise MalformedRequestError(f"{routine.value}: note id is empty", self.host)
        url = self.get_api_url_with_note_id(routine, note_oid)
        form = None
        if url == self.get_api_url(routine):
            form = {"id": note_oid}
        return await self.http.post_request(url, form=form)

    async def _note_action(self, routine: ApiRoutine, note_oid: str, activity_type: ActivityType) -> Activity:
        payload = await self._post_note_action(routine, note_oid)
        if not payload:
            return Activity.empty()
        inner = self.activity_from_json(payload)
        if inner.type is activity_type:
            return inner
        return Activity(
            type=activity_type,
            actor=self.account_actor,
            obj=inner,
            account_actor=self.account_actor,
            updated_date=inner.updated_date,
        )

    async def like(self, note_oid: str) -> Activity:
        return await self._note_action(ApiRoutine.LIKE, note_oid, ActivityType.LIKE)

    async def undo_like(self, note_oid: str) -> Activity:
        return await self._note_action(ApiRoutine.UNDO_LIKE, note_oid, ActivityType.UNDO_LIKE)

    async def announce(self, note_oid: str) -> Activity:
        return await self._note_action(ApiRoutine.ANNOUNCE, note_oid, ActivityType.ANNOUNCE)

    async def undo_announce(self, note_oid: str) -> bool:
        payload = await self._post_note_action(ApiRoutine.UNDO_ANNOUNCE, note_oid)
        return payload is not None

    async def delete_note(self, note_oid: str) -> bool:
        payload = await self._post_note_action(ApiRoutine.DELETE_NOTE, note_oid)
        return payload is not None

    async def follow(self, actor_oid: str, follow: bool) -> Activity:
        routine = ApiRoutine.FOLLOW if follow else ApiRoutine.UNDO_FOLLOW
        if not actor_oid:
            raise MalformedRequestError(f"{routine.value}: actor id is empty", self.host)
        url = self.get_api_url_with_actor_id(routine, actor_oid)
        form = None
        if url == self.get_api_url(routine):
            form = {"user_id": actor_oid}
        payload = await self.http.post_request(url, form=form)
        friend = self.actor_from_json(payload) if payload else Actor(oid=actor_oid, host=self.host)
        friend.is_my_friend = TriState.from_bool(follow)
        return Activity(
            type=ActivityType.FOLLOW if follow else ActivityType.UNDO_FOLLOW,
            actor=self.account_actor,
            obj=friend,
            account_actor=self.account_actor,
        )

    async def get_actor(self, actor: Actor) -> Actor:
        routine = ApiRoutine.GET_ACTOR
        actor_id = actor.oid or actor.username
        if not actor_id:
            raise MalformedRequestError("Actor has no id and no username", self.host)
        url = self.get_api_url_with_actor_id(routine, actor_id)
        params = self.actor_params(routine, actor) if url == self.get_api_url(routine) else {}
        payload = await self.http.get_request(url, params)
        if not payload:
            return Actor.empty()
        return self.actor_from_json(payload)

    async def _get_actors(self, routine: ApiRoutine, actor: Actor) -> list[Actor]:
        url = self.get_api_url_with_actor_id(routine, actor.oid)
        params = {self.limit_param: self.fixed_download_limit(0, routine)}
        params.update(self.actor_params(routine, actor))
        payload = await self.http.get_request(url, params)
        return self.actor_list_from_json(self.unwrap_actor_list(payload), routine)

    def unwrap_actor_list(self, payload: Any) -> Any:
        return payload

    async def get_friends(self, actor: Actor) -> list[Actor]:
        return await self._get_actors(ApiRoutine.GET_FRIENDS, actor)

    async def get_followers(self, actor: Actor) -> list[Actor]:
        return await self._get_actors(ApiRoutine.GET_FOLLOWERS, actor)

    async def verify_credentials(self) -> Actor:
        payload = await self.http.get_request(self.get_api_url(ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS))
        actor = self.actor_from_json(require_dict(payload, "Credentials", self.host))
        if not actor.is_empty:
            self.account_actor = actor
        return actor

    # === Media ===

    async def upload_media(self, uri: str, mime_type: str, field_name: str, id_key: str) -> str:
        """Upload raw bytes and return the remote media id.

        Args:
            uri: Local URI of the media
            mime_type: Media type sent with the part
            field_name: Multipart field carrying the bytes
            id_key: Response key holding the media id
        """
        content = await self.read_media(uri)
        filename = uri.rstrip("/").rsplit("/", 1)[-1] or "media"
        payload = await self.http.post_multipart(
            self.get_api_url(ApiRoutine.UPLOAD_MEDIA), field_name, filename, content, mime_type
        )
        media_id = optional_str(require_dict(payload, "Upload response", self.host), id_key)
        if not media_id:
            raise ParseError(f"Upload response has no '{id_key}'", payload, self.host)
        logger.info("Media uploaded", host=self.host, uri=uri, media_id=media_id)
        return media_id

    async def upload_attachments(self, note: Note, field_name: str, id_key: str) -> list[str]:
        """First phase of posting: upload attachments that are not on the network yet."""
        media_ids = []
        for attachment in note.attachments:
            if attachment.is_downloadable:
                logger.info("Skipped downloadable attachment", uri=attachment.uri)
                continue
            media_ids.append(
                await self.upload_media(attachment.uri, attachment.mime_type, field_name, id_key)
            )
        return media_ids
