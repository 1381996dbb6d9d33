"""Mastodon REST API adapter.

Notifications come as envelopes (`type` + `account` + optional `status`)
and are normalized to LIKE, ANNOUNCE, FOLLOW or UPDATE activities.
"""

from typing import Any

import structlog

from ..activity_types import (
    Activity,
    ActivityType,
    Actor,
    ActorEndpointType,
    Attachment,
    Attachments,
    ContentType,
    Note,
    TimelinePosition,
    TriState,
)
from ..api_routines import ApiRoutine
from ..errors import MalformedRequestError, ParseError
from .base import (
    BYTES_IN_MB,
    OriginConfig,
    OriginType,
    first_tag_or_keyword,
    optional_dict,
    optional_int,
    optional_list,
    optional_str,
    parse_list,
    require_dict,
)
from .twitter_like import TwitterLikeConnection

logger = structlog.get_logger()

MASTODON_TEXT_LIMIT_DEFAULT = 500
TEXT_LIMIT_KEY = "max_toot_chars"
SUMMARY_SEPARATOR = "\n<br>"

MASTODON_API_PATHS = {
    ApiRoutine.GET_CONFIG: "v1/instance",
    ApiRoutine.HOME_TIMELINE: "v1/timelines/home",
    ApiRoutine.NOTIFICATIONS_TIMELINE: "v1/notifications",
    ApiRoutine.LIKED_TIMELINE: "v1/favourites",
    ApiRoutine.PUBLIC_TIMELINE: "v1/timelines/public",
    ApiRoutine.TAG_TIMELINE: "v1/timelines/tag/%tag%",
    ApiRoutine.ACTOR_TIMELINE: "v1/accounts/%actorId%/statuses",
    ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS: "v1/accounts/verify_credentials",
    ApiRoutine.UPDATE_NOTE: "v1/statuses",
    ApiRoutine.UPDATE_PRIVATE_NOTE: "v1/statuses",
    ApiRoutine.UPLOAD_MEDIA: "v1/media",
    ApiRoutine.GET_NOTE: "v1/statuses/%noteId%",
    ApiRoutine.DELETE_NOTE: "v1/statuses/%noteId%",
    ApiRoutine.SEARCH_NOTES: "v1/timelines/tag/%tag%",
    ApiRoutine.SEARCH_ACTORS: "v1/accounts/search",
    ApiRoutine.GET_CONVERSATION: "v1/statuses/%noteId%/context",
    ApiRoutine.LIKE: "v1/statuses/%noteId%/favourite",
    ApiRoutine.UNDO_LIKE: "v1/statuses/%noteId%/unfavourite",
    ApiRoutine.FOLLOW: "v1/accounts/%actorId%/follow",
    ApiRoutine.UNDO_FOLLOW: "v1/accounts/%actorId%/unfollow",
    ApiRoutine.GET_FOLLOWERS: "v1/accounts/%actorId%/followers",
    ApiRoutine.GET_FRIENDS: "v1/accounts/%actorId%/following",
    ApiRoutine.GET_ACTOR: "v1/accounts/%actorId%",
    ApiRoutine.ANNOUNCE: "v1/statuses/%noteId%/reblog",
    ApiRoutine.UNDO_ANNOUNCE: "v1/statuses/%noteId%/unreblog",
}

NOTIFICATION_TYPES = {
    "favourite": ActivityType.LIKE,
    "reblog": ActivityType.ANNOUNCE,
    "follow": ActivityType.FOLLOW,
    "mention": ActivityType.UPDATE,
}


def is_notification(jso: dict[str, Any]) -> bool:
    return jso.get("type") is not None


def notification_type(jso: dict[str, Any]) -> ActivityType:
    if not is_notification(jso):
        return ActivityType.UPDATE
    return NOTIFICATION_TYPES.get(str(jso.get("type")), ActivityType.EMPTY)


def extract_summary(jso: dict[str, Any]) -> str:
    """Bio followed by `name: value` lines of the profile fields."""
    parts = []
    note = optional_str(jso, "note")
    if note:
        parts.append(note)
    for field in optional_list(jso, "fields"):
        if not isinstance(field, dict):
            continue
        name = optional_str(field, "name")
        value = optional_str(field, "value")
        if name or value:
            parts.append(f"{name}: {value}" if name else value)
    return SUMMARY_SEPARATOR.join(parts)


class MastodonConnection(TwitterLikeConnection):
    """Connection to a Mastodon instance."""

    origin_type = OriginType.MASTODON
    api_paths = MASTODON_API_PATHS
    limit_param = "limit"
    default_download_limit = 40
    download_limits = {
        ApiRoutine.GET_FRIENDS: 80,
        ApiRoutine.GET_FOLLOWERS: 80,
        ApiRoutine.SEARCH_ACTORS: 80,
    }

    # === Parsing ===

    def actor_from_json(self, obj: Any) -> Actor:
        if obj is None:
            return Actor.empty()
        jso = require_dict(obj, "Account", self.host)
        oid = optional_str(jso, "id")
        username = optional_str(jso, "username")
        if not oid or not username:
            raise ParseError("Id or username is empty", jso, self.host)
        actor = Actor(
            oid=oid,
            username=username,
            real_name=optional_str(jso, "display_name"),
            host=self.host,
            webfinger_id=self._webfinger_id(optional_str(jso, "acct")),
            profile_url=optional_str(jso, "url"),
            avatar_url=optional_str(jso, "avatar"),
            summary=extract_summary(jso),
            notes_count=optional_int(jso, "statuses_count"),
            following_count=optional_int(jso, "following_count"),
            followers_count=optional_int(jso, "followers_count"),
            created_date=self.parse_date(optional_str(jso, "created_at")),
        )
        actor.add_endpoint(ActorEndpointType.BANNER, optional_str(jso, "header"))
        return actor

    def _webfinger_id(self, acct: str) -> str:
        """Local accounts come without the host part."""
        if acct and "@" not in acct:
            return f"{acct}@{self.host}"
        return acct

    def activity_from_json(self, obj: Any) -> Activity:
        jso = require_dict(obj, "Timeline item", self.host)
        if not is_notification(jso):
            return self._status_from_json(jso)

        activity = Activity(
            type=notification_type(jso),
            actor=self.actor_from_json(jso.get("account")),
            account_actor=self.account_actor,
            oid=optional_str(jso, "id"),
            timeline_position=TimelinePosition(optional_str(jso, "id")),
            updated_date=self.parse_date(optional_str(jso, "created_at")),
        )
        status = optional_dict(jso, "status")
        note_activity = self._status_from_json(status) if status else Activity.empty()
        if activity.type in (ActivityType.LIKE, ActivityType.ANNOUNCE):
            activity.obj = note_activity
        elif activity.type is ActivityType.FOLLOW:
            activity.obj = self.account_actor
        elif activity.type is ActivityType.UPDATE:
            activity.obj = note_activity.note
        return activity

    def _status_from_json(self, jso: dict[str, Any]) -> Activity:
        oid = optional_str(jso, "id")
        updated_date = self.parse_date(optional_str(jso, "created_at"))
        actor = self.actor_from_json(jso.get("account"))

        reblog = optional_dict(jso, "reblog")
        if reblog is not None:
            return Activity(
                type=ActivityType.ANNOUNCE,
                actor=actor,
                obj=self._status_from_json(reblog),
                account_actor=self.account_actor,
                oid=oid,
                timeline_position=TimelinePosition(oid),
                updated_date=updated_date,
            )

        activity = self.new_update_activity(oid, updated_date)
        activity.actor = actor
        note = activity.note
        note.summary = optional_str(jso, "spoiler_text")
        note.sensitive = bool(jso.get("sensitive"))
        note.content = optional_str(jso, "content")
        note.url = optional_str(jso, "url")
        if optional_str(jso, "visibility") in ("", "public", "unlisted"):
            note.audience.add(Actor.public())
        for mention in optional_list(jso, "mentions"):
            if isinstance(mention, dict) and optional_str(mention, "id"):
                note.audience.add(Actor(
                    oid=optional_str(mention, "id"),
                    username=optional_str(mention, "username"),
                    webfinger_id=self._webfinger_id(optional_str(mention, "acct")),
                    profile_url=optional_str(mention, "url"),
                    host=self.host,
                ))
        application = optional_dict(jso, "application")
        if application is not None:
            note.via = optional_str(application, "name")
        if jso.get("favourited") is not None:
            note.favorited = TriState.from_bool(bool(jso.get("favourited")))

        self.set_in_reply_to(
            note,
            optional_str(jso, "in_reply_to_account_id"),
            optional_str(jso, "in_reply_to_id"),
        )
        note.attachments = self._attachments_from_json(optional_list(jso, "media_attachments"))
        return activity

    def _attachments_from_json(self, items: list[Any]) -> Attachments:
        attachments = Attachments()
        for item in items:
            if not isinstance(item, dict):
                continue
            media_type = optional_str(item, "type") or "unknown"
            if media_type == "unknown":
                # Only the remote URL is known for media not yet fetched by the instance
                remote = Attachment.from_uri(optional_str(item, "remote_url"))
                if remote.is_valid:
                    attachments.add(remote)
                    continue
                media_type = ""
            full = Attachment.from_uri_and_mime_type(optional_str(item, "url"), media_type)
            if not full.is_valid:
                logger.debug("Invalid attachment", host=self.host, attachment=item)
                continue
            attachments.add(full)
            preview = Attachment.from_uri_and_mime_type(
                optional_str(item, "preview_url"), ContentType.IMAGE.general_mime_type
            )
            attachments.add(preview.set_preview_of(full))
        return attachments.fold_previews()

    # === Operations ===

    async def get_config(self) -> OriginConfig:
        payload = await self.http.get_request(self.get_api_url(ApiRoutine.GET_CONFIG))
        text_limit = optional_int(payload, TEXT_LIMIT_KEY) if isinstance(payload, dict) else 0
        if text_limit < 1:
            text_limit = MASTODON_TEXT_LIMIT_DEFAULT
        return OriginConfig(text_limit=text_limit, upload_limit=10 * BYTES_IN_MB)

    async def search_notes(
        self,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        query: str,
    ) -> list[Activity]:
        routine = ApiRoutine.SEARCH_NOTES
        tag = first_tag_or_keyword(query)
        if not tag:
            return []
        url = self.get_api_url_with_tag(routine, tag)
        params = self.pagination_params(routine, youngest, oldest, limit)
        payload = await self.http.get_request(url, params)
        return self.activity_list_from_json(payload, routine)

    async def get_timeline(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        actor: Actor,
    ) -> list[Activity]:
        if routine is ApiRoutine.TAG_TIMELINE:
            raise MalformedRequestError("Tag timeline needs a search query", self.host)
        return await super().get_timeline(routine, youngest, oldest, limit, actor)

    async def search_actors(self, limit: int, query: str) -> list[Actor]:
        routine = ApiRoutine.SEARCH_ACTORS
        if not first_tag_or_keyword(query):
            return []
        params = {
            "q": query,
            "resolve": "true",
            "limit": self.fixed_download_limit(limit, routine),
        }
        payload = await self.http.get_request(self.get_api_url(routine), params)
        return self.actor_list_from_json(payload, routine)

    async def get_conversation(self, note_oid: str) -> list[Activity]:
        routine = ApiRoutine.GET_CONVERSATION
        url = self.get_api_url_with_note_id(routine, note_oid)
        payload = await self.http.get_request(url)
        if not payload:
            return []
        context = require_dict(payload, "Conversation context", self.host)
        activities = []
        for key in ("ancestors", "descendants"):
            activities.extend(parse_list(context.get(key), self.activity_from_json, key, self.host))
        return activities

    async def delete_note(self, note_oid: str) -> bool:
        if not note_oid:
            raise MalformedRequestError("Note id is empty", self.host)
        url = self.get_api_url_with_note_id(ApiRoutine.DELETE_NOTE, note_oid)
        await self.http.request("DELETE", url)
        return True

    async def update_note(self, note: Note) -> Activity:
        media_ids = await self.upload_attachments(note, "file", "id")
        form: dict[str, Any] = {
            "status": note.content,
            "spoiler_text": note.summary,
            "sensitive": "true" if note.sensitive else "false",
        }
        in_reply_to = note.get_in_reply_to().note
        if in_reply_to.oid:
            form["in_reply_to_id"] = in_reply_to.oid
        routine = ApiRoutine.UPDATE_NOTE
        if not note.audience.is_empty and not note.audience.is_public:
            form["visibility"] = "direct"
            routine = ApiRoutine.UPDATE_PRIVATE_NOTE
        if media_ids:
            form["media_ids[]"] = media_ids
        payload = await self.http.post_request(self.get_api_url(routine), form=form)
        return self.activity_from_json(payload)

    async def follow(self, actor_oid: str, follow: bool) -> Activity:
        routine = ApiRoutine.FOLLOW if follow else ApiRoutine.UNDO_FOLLOW
        url = self.get_api_url_with_actor_id(routine, actor_oid)
        relationship = await self.http.post_request(url)
        if not isinstance(relationship, dict) or relationship.get("following") is None:
            return Activity.empty()
        following = TriState.from_bool(bool(relationship.get("following")))
        friend = Actor(oid=actor_oid, host=self.host, is_my_friend=following)
        if following.to_bool(not follow) == follow:
            activity_type = ActivityType.FOLLOW if follow else ActivityType.UNDO_FOLLOW
        else:
            activity_type = ActivityType.UPDATE
        return Activity(
            type=activity_type,
            actor=self.account_actor,
            obj=friend,
            account_actor=self.account_actor,
        )

    async def undo_announce(self, note_oid: str) -> bool:
        payload = await self._post_note_action(ApiRoutine.UNDO_ANNOUNCE, note_oid)
        return isinstance(payload, dict)
