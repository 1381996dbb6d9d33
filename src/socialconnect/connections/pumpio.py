"""Pump.io (ActivityStreams 1.0) adapter.

Every actor lives on its own host, so actor-scoped requests are resolved
through ConnectionResolver. Mutations are activities POSTed to the
account's outbox (`feed`).
"""

from typing import Any
from urllib.parse import urlsplit

import structlog

from ..activity_types import (
    PUBLIC_COLLECTION_ID,
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
from ..api_routines import ApiRoutine, is_absolute
from ..errors import MalformedRequestError, ParseError
from ..resolver import ConnectionResolver
from .base import (
    BYTES_IN_MB,
    Connection,
    OriginConfig,
    OriginType,
    optional_dict,
    optional_int,
    optional_list,
    optional_str,
    parse_list,
    require_dict,
)

logger = structlog.get_logger()

PUMPIO_API_PATHS = {
    ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS: "whoami",
    ApiRoutine.GET_FRIENDS: "user/%nickname%/following",
    ApiRoutine.GET_FOLLOWERS: "user/%nickname%/followers",
    ApiRoutine.GET_ACTOR: "user/%nickname%/profile",
    ApiRoutine.HOME_TIMELINE: "user/%nickname%/inbox",
    ApiRoutine.NOTIFICATIONS_TIMELINE: "user/%nickname%/inbox/direct/major",
    ApiRoutine.LIKED_TIMELINE: "user/%nickname%/favorites",
    ApiRoutine.ACTOR_TIMELINE: "user/%nickname%/feed",
    ApiRoutine.GET_NOTE: "%noteId%",
    ApiRoutine.GET_CONVERSATION: "%noteId%",
    ApiRoutine.UPDATE_NOTE: "user/%nickname%/feed",
    ApiRoutine.UPDATE_PRIVATE_NOTE: "user/%nickname%/feed",
    ApiRoutine.DELETE_NOTE: "user/%nickname%/feed",
    ApiRoutine.LIKE: "user/%nickname%/feed",
    ApiRoutine.UNDO_LIKE: "user/%nickname%/feed",
    ApiRoutine.ANNOUNCE: "user/%nickname%/feed",
    ApiRoutine.FOLLOW: "user/%nickname%/feed",
    ApiRoutine.UNDO_FOLLOW: "user/%nickname%/feed",
    ApiRoutine.UPLOAD_MEDIA: "user/%nickname%/uploads",
}

VERB_TO_TYPE = {
    "post": ActivityType.CREATE,
    "update": ActivityType.UPDATE,
    "delete": ActivityType.DELETE,
    "share": ActivityType.ANNOUNCE,
    "unshare": ActivityType.UNDO_ANNOUNCE,
    "favorite": ActivityType.LIKE,
    "like": ActivityType.LIKE,
    "unfavorite": ActivityType.UNDO_LIKE,
    "unlike": ActivityType.UNDO_LIKE,
    "follow": ActivityType.FOLLOW,
    "stop-following": ActivityType.UNDO_FOLLOW,
}

NOTE_OBJECT_TYPES = frozenset({"note", "comment", "image", "video", "audio", "file"})

# Object id fragments and the object types they identify
_OID_PATTERNS = (
    ("/api/activity/", "activity"),
    ("/api/comment/", "comment"),
    ("/api/note/", "note"),
    ("/api/image/", "image"),
    ("/api/video/", "video"),
    ("/notice/", "note"),
)


def oid_to_object_type(oid: str) -> str:
    """Guess the ActivityStreams object type from an object id."""
    if oid == PUBLIC_COLLECTION_ID:
        return "collection"
    if oid.startswith("acct:"):
        return "person"
    for fragment, object_type in _OID_PATTERNS:
        if fragment in oid:
            return object_type
    if oid.endswith(("/followers", "/following", "/favorites")) or "/lists/" in oid:
        return "collection"
    if "/user/" in oid:
        return "person"
    return f"unknown object type: {oid}"


def actor_oid_to_host(oid: str) -> str:
    """Host part of a webfinger-style actor id; "" for URLs and bare hosts."""
    if not oid or is_absolute(oid):
        return ""
    value = oid[5:] if oid.startswith("acct:") else oid
    if "@" not in value:
        return ""
    return value.rsplit("@", 1)[1].lower()


def url_host(url: str) -> str:
    """Lowercased host of an absolute URL; "" for anything else."""
    if not is_absolute(url):
        return ""
    return (urlsplit(url).hostname or "").lower()


def username_to_nickname(username: str) -> str:
    """`t131t@identi.ca` -> `t131t`."""
    value = username[5:] if username.startswith("acct:") else username
    return value.split("@", 1)[0]


class PumpioConnection(Connection):
    """Connection to the Pump.io network through the account's host."""

    origin_type = OriginType.PUMPIO
    api_paths = PUMPIO_API_PATHS
    default_download_limit = 200
    origin_config = OriginConfig(text_limit=5000, upload_limit=10 * BYTES_IN_MB)

    def __init__(self, http, account_actor=None, media_reader=None, resolver=None):
        super().__init__(http, account_actor, media_reader)
        self.resolver = resolver or ConnectionResolver(http)

    async def close(self) -> None:
        await self.resolver.close()
        await super().close()

    # === Ids and hosts ===

    def oid_to_object_type(self, oid: str) -> str:
        return oid_to_object_type(oid)

    def actor_oid_to_host(self, oid: str) -> str:
        return actor_oid_to_host(oid)

    def actor_username(self, actor: Actor) -> str:
        if actor.webfinger_id:
            return actor.webfinger_id
        if actor.username:
            return actor.username
        if actor.oid.startswith("acct:"):
            return actor.oid[5:]
        return ""

    def username_to_nickname(self, username: str) -> str:
        return username_to_nickname(username)

    def _object_type_for_post(self, oid: str) -> str:
        object_type = oid_to_object_type(oid)
        return "note" if object_type.startswith("unknown") else object_type

    # === Parsing ===

    def actor_from_json(self, obj: Any) -> Actor:
        if obj is None:
            return Actor.empty()
        jso = require_dict(obj, "Person", self.host)
        oid = optional_str(jso, "id")
        if not oid:
            raise ParseError("Actor id is empty", jso, self.host)
        webfinger_id = oid[5:] if oid.startswith("acct:") else ""
        username = optional_str(jso, "preferredUsername") or username_to_nickname(webfinger_id)
        actor = Actor(
            oid=oid,
            username=username,
            real_name=optional_str(jso, "displayName"),
            host=actor_oid_to_host(oid),
            webfinger_id=webfinger_id,
            profile_url=optional_str(jso, "url"),
            homepage=optional_str(jso, "url"),
            summary=optional_str(jso, "summary"),
            location=optional_str(optional_dict(jso, "location") or {}, "displayName"),
            avatar_url=optional_str(optional_dict(jso, "image") or {}, "url"),
            created_date=self.parse_date(optional_str(jso, "published")),
            updated_date=self.parse_date(optional_str(jso, "updated")),
        )
        links = optional_dict(jso, "links") or {}
        for key, endpoint_type in (
            ("self", ActorEndpointType.API_PROFILE),
            ("activity-inbox", ActorEndpointType.API_INBOX),
            ("activity-outbox", ActorEndpointType.API_OUTBOX),
        ):
            actor.add_endpoint(endpoint_type, optional_str(optional_dict(links, key) or {}, "href"))
        for key, endpoint_type, count_attr in (
            ("following", ActorEndpointType.API_FOLLOWING, "following_count"),
            ("followers", ActorEndpointType.API_FOLLOWERS, "followers_count"),
            ("favorites", ActorEndpointType.API_LIKED, "favorites_count"),
        ):
            collection = optional_dict(jso, key) or {}
            actor.add_endpoint(endpoint_type, optional_str(collection, "url"))
            setattr(actor, count_attr, optional_int(collection, "totalItems"))
        pump_io = optional_dict(jso, "pump_io") or {}
        if pump_io.get("followed") is not None:
            actor.is_my_friend = TriState.from_bool(bool(pump_io.get("followed")))
        return actor

    def _audience_actor(self, obj: Any) -> Actor:
        if not isinstance(obj, dict):
            return Actor.empty()
        oid = optional_str(obj, "id")
        if oid == PUBLIC_COLLECTION_ID:
            return Actor.public()
        if optional_str(obj, "objectType") != "person":
            # Followers and other collections are not individual recipients
            return Actor.empty()
        return self.actor_from_json(obj)

    def _add_audience(self, note: Note, jso: dict[str, Any]) -> None:
        for key in ("to", "cc"):
            for recipient in optional_list(jso, key):
                try:
                    note.audience.add(self._audience_actor(recipient))
                except ParseError as e:
                    logger.warning("Skipped malformed recipient", error=str(e))

    def _attachments_from_json(self, jso: dict[str, Any]) -> Attachments:
        attachments = Attachments()
        object_type = optional_str(jso, "objectType")
        if object_type == "image":
            image = optional_dict(jso, "image") or {}
            full_image = optional_dict(jso, "fullImage") or image
            full = Attachment.from_uri_and_mime_type(
                optional_str(full_image, "url"), ContentType.IMAGE.general_mime_type
            )
            attachments.add(full)
            if image is not full_image:
                preview = Attachment.from_uri_and_mime_type(
                    optional_str(image, "url"), ContentType.IMAGE.general_mime_type
                )
                if preview != full:
                    attachments.add(preview.set_preview_of(full))
        elif object_type in ("video", "audio"):
            stream = optional_dict(jso, "stream") or {}
            attachments.add(Attachment.from_uri_and_mime_type(
                optional_str(stream, "url"), f"{object_type}/*"
            ))
            preview_image = optional_dict(jso, "image") or {}
            if attachments.items and optional_str(preview_image, "url"):
                preview = Attachment.from_uri_and_mime_type(
                    optional_str(preview_image, "url"), ContentType.IMAGE.general_mime_type
                )
                attachments.add(preview.set_preview_of(attachments.items[0]))
        return attachments.fold_previews()

    def note_from_json(self, obj: Any) -> Note:
        jso = require_dict(obj, "Note", self.host)
        oid = optional_str(jso, "id")
        if not oid:
            raise ParseError("Note id is empty", jso, self.host)
        note = Note(
            oid=oid,
            url=optional_str(jso, "url"),
            name=optional_str(jso, "displayName"),
            content=optional_str(jso, "content"),
            updated_date=self.parse_date(
                optional_str(jso, "updated") or optional_str(jso, "published")
            ),
        )
        if jso.get("liked") is not None:
            note.favorited = TriState.from_bool(bool(jso.get("liked")))
        note.attachments = self._attachments_from_json(jso)

        in_reply_to = optional_dict(jso, "inReplyTo")
        if in_reply_to is not None and optional_str(in_reply_to, "id"):
            note.in_reply_to = Activity.new_partial_note(
                self.account_actor,
                self.actor_from_json(in_reply_to.get("author")),
                optional_str(in_reply_to, "id"),
            )

        replies = optional_dict(jso, "replies") or {}
        parent = Activity.new_partial_note(self.account_actor, Actor.empty(), oid)
        for reply in parse_list(replies.get("items"), self.note_activity_from_json, "replies", self.host):
            reply.note.in_reply_to = parent
            note.replies.append(reply)
        return note

    def note_activity_from_json(self, obj: Any) -> Activity:
        """UPDATE activity of a bare object (note, comment, image...)."""
        note = self.note_from_json(obj)
        author = self.actor_from_json(obj.get("author"))
        return Activity(
            type=ActivityType.UPDATE,
            actor=author,
            obj=note,
            account_actor=self.account_actor,
            oid=note.oid,
            updated_date=note.updated_date,
        )

    def activity_from_json(self, obj: Any) -> Activity:
        jso = require_dict(obj, "Activity", self.host)
        verb = optional_str(jso, "verb")
        object_jso = jso.get("object")
        if not verb:
            # A bare object, e.g. a reply inside a collection
            return self.note_activity_from_json(jso)
        activity_type = VERB_TO_TYPE.get(verb, ActivityType.EMPTY)
        oid = optional_str(jso, "id")
        activity = Activity(
            type=activity_type,
            actor=self.actor_from_json(jso.get("actor")),
            account_actor=self.account_actor,
            oid=oid,
            timeline_position=TimelinePosition(oid),
            updated_date=self.parse_date(
                optional_str(jso, "updated") or optional_str(jso, "published")
            ),
        )
        if not isinstance(object_jso, dict):
            raise ParseError(f"Activity '{verb}' has no object", jso, self.host)

        object_type = optional_str(object_jso, "objectType")
        if object_type == "person":
            activity.obj = self.actor_from_json(object_jso)
        elif object_type == "activity":
            activity.obj = self.activity_from_json(object_jso)
        elif activity_type in (
            ActivityType.LIKE, ActivityType.UNDO_LIKE,
            ActivityType.ANNOUNCE, ActivityType.UNDO_ANNOUNCE,
        ):
            activity.obj = self.note_activity_from_json(object_jso)
        elif object_type in NOTE_OBJECT_TYPES or not object_type:
            note = self.note_from_json(object_jso)
            self._add_audience(note, jso)
            generator = optional_dict(jso, "generator") or {}
            note.via = optional_str(generator, "displayName")
            activity.obj = note
        else:
            logger.debug("Unsupported object type", object_type=object_type, oid=oid)
            activity.type = ActivityType.EMPTY
        return activity

    # === Reading ===

    def _pagination_params(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {"count": self.fixed_download_limit(limit, routine)}
        if not youngest.is_empty:
            params["since"] = youngest.position
        elif not oldest.is_empty:
            params["before"] = oldest.position
        return params

    async def get_timeline(
        self,
        routine: ApiRoutine,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        actor: Actor,
    ) -> list[Activity]:
        conu = await self.resolver.resolve(self, routine, actor)
        payload = await conu.http.get_request(
            conu.uri, self._pagination_params(routine, youngest, oldest, limit)
        )
        if payload is None:
            return []
        jso = require_dict(payload, "Collection", conu.host)
        return parse_list(jso.get("items"), self.activity_from_json, routine.value, conu.host)

    async def _get_actors(self, routine: ApiRoutine, actor: Actor) -> list[Actor]:
        conu = await self.resolver.resolve(self, routine, actor)
        payload = await conu.http.get_request(
            conu.uri, {"count": self.fixed_download_limit(0, routine)}
        )
        if payload is None:
            return []
        jso = require_dict(payload, "Collection", conu.host)
        return parse_list(jso.get("items"), self.actor_from_json, routine.value, conu.host)

    async def get_friends(self, actor: Actor) -> list[Actor]:
        return await self._get_actors(ApiRoutine.GET_FRIENDS, actor)

    async def get_followers(self, actor: Actor) -> list[Actor]:
        return await self._get_actors(ApiRoutine.GET_FOLLOWERS, actor)

    async def get_actor(self, actor: Actor) -> Actor:
        conu = await self.resolver.resolve(self, ApiRoutine.GET_ACTOR, actor)
        payload = await conu.http.get_request(conu.uri)
        if not payload:
            return Actor.empty()
        return self.actor_from_json(payload)

    async def verify_credentials(self) -> Actor:
        http = await self.resolver.connection_for_host(self.host)
        payload = await http.get_request(self.get_api_url(ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS))
        actor = self.actor_from_json(require_dict(payload, "Credentials", self.host))
        if not actor.is_empty:
            self.account_actor = actor
        return actor

    async def _get_object(self, routine: ApiRoutine, note_oid: str) -> Any:
        self.get_api_path(routine)
        host = url_host(note_oid)
        if not host:
            raise MalformedRequestError(f"{routine.value}: note id is not a URL: '{note_oid}'", self.host)
        http = await self.resolver.connection_for_host(host)
        return await http.get_request(note_oid)

    async def get_note(self, note_oid: str) -> Activity:
        payload = await self._get_object(ApiRoutine.GET_NOTE, note_oid)
        if not payload:
            return Activity.empty()
        return self.activity_from_json(payload)

    async def get_conversation(self, note_oid: str) -> list[Activity]:
        payload = await self._get_object(ApiRoutine.GET_CONVERSATION, note_oid)
        if not payload:
            return []
        note = self.note_from_json(payload)
        replies = optional_dict(payload, "replies") or {}
        total = optional_int(replies, "totalItems")
        url = optional_str(replies, "url")
        if url and total > len(note.replies):
            host = url_host(url)
            if not host:
                raise ParseError(f"Replies URL is not absolute: '{url}'", payload, self.host)
            http = await self.resolver.connection_for_host(host)
            collection = require_dict(await http.get_request(url), "Replies", self.host)
            parent = Activity.new_partial_note(self.account_actor, Actor.empty(), note.oid)
            fetched = parse_list(collection.get("items"), self.note_activity_from_json, "replies", self.host)
            for reply in fetched:
                reply.note.in_reply_to = parent
            return fetched
        return note.replies

    # === Writing ===

    async def _post_activity(self, routine: ApiRoutine, activity: dict[str, Any]) -> Activity:
        conu = await self.resolver.resolve(self, routine, self.account_actor)
        logger.debug("Posting activity", verb=activity.get("verb"), uri=conu.uri)
        payload = await conu.http.post_request(conu.uri, json_data=activity)
        if not payload:
            return Activity.empty()
        return self.activity_from_json(payload)

    def _object_ref(self, oid: str, object_type: str | None = None) -> dict[str, str]:
        return {"id": oid, "objectType": object_type or self._object_type_for_post(oid)}

    async def _note_verb(self, routine: ApiRoutine, verb: str, note_oid: str) -> Activity:
        if not note_oid:
            raise MalformedRequestError(f"{routine.value}: note id is empty", self.host)
        return await self._post_activity(routine, {
            "verb": verb,
            "object": self._object_ref(note_oid),
        })

    async def like(self, note_oid: str) -> Activity:
        return await self._note_verb(ApiRoutine.LIKE, "favorite", note_oid)

    async def undo_like(self, note_oid: str) -> Activity:
        return await self._note_verb(ApiRoutine.UNDO_LIKE, "unfavorite", note_oid)

    async def announce(self, note_oid: str) -> Activity:
        return await self._note_verb(ApiRoutine.ANNOUNCE, "share", note_oid)

    async def delete_note(self, note_oid: str) -> bool:
        await self._note_verb(ApiRoutine.DELETE_NOTE, "delete", note_oid)
        return True

    async def follow(self, actor_oid: str, follow: bool) -> Activity:
        routine = ApiRoutine.FOLLOW if follow else ApiRoutine.UNDO_FOLLOW
        if not actor_oid:
            raise MalformedRequestError(f"{routine.value}: actor id is empty", self.host)
        return await self._post_activity(routine, {
            "verb": "follow" if follow else "stop-following",
            "object": self._object_ref(actor_oid, "person"),
        })

    def _recipients(self, note: Note) -> list[dict[str, str]]:
        recipients = []
        if note.audience.is_empty or note.audience.is_public:
            recipients.append({"id": PUBLIC_COLLECTION_ID, "objectType": "collection"})
        for actor in note.audience.actors:
            if not actor.is_public and actor.oid:
                recipients.append({"id": actor.oid, "objectType": "person"})
        return recipients

    async def _upload_media(self, attachment: Attachment) -> dict[str, Any]:
        """Upload raw bytes; returns the object the host created for them."""
        content = await self.read_media(attachment.uri)
        conu = await self.resolver.resolve(self, ApiRoutine.UPLOAD_MEDIA, self.account_actor)
        payload = await conu.http.post_raw(conu.uri, content, attachment.mime_type)
        uploaded = require_dict(payload, "Upload response", conu.host)
        if not optional_str(uploaded, "id"):
            raise ParseError("Upload response has no 'id'", payload, conu.host)
        logger.info("Media uploaded", host=conu.host, uri=attachment.uri, media_id=uploaded["id"])
        return uploaded

    async def update_note(self, note: Note) -> Activity:
        routine = ApiRoutine.UPDATE_NOTE
        if not note.audience.is_empty and not note.audience.is_public:
            routine = ApiRoutine.UPDATE_PRIVATE_NOTE

        uploaded: dict[str, Any] | None = None
        for attachment in note.attachments:
            if attachment.is_downloadable:
                logger.info("Skipped downloadable attachment", uri=attachment.uri)
            elif uploaded is None:
                uploaded = await self._upload_media(attachment)
            else:
                logger.warning("Only one attachment per note is supported", uri=attachment.uri)

        in_reply_to = note.get_in_reply_to().note
        obj: dict[str, Any] = {"objectType": "comment" if in_reply_to.oid else "note"}
        if uploaded is not None:
            obj = self._object_ref(optional_str(uploaded, "id"), optional_str(uploaded, "objectType"))
        elif note.oid:
            obj["id"] = note.oid
        obj["content"] = note.content
        if note.name:
            obj["displayName"] = note.name
        if in_reply_to.oid:
            obj["inReplyTo"] = self._object_ref(in_reply_to.oid)

        activity = await self._post_activity(routine, {
            "verb": "update" if note.oid and uploaded is None else "post",
            "object": obj,
            "to": self._recipients(note),
        })
        if uploaded is not None and (note.content or note.name):
            # Posting an uploaded object does not change its text
            activity = await self._post_activity(routine, {"verb": "update", "object": obj})
        return activity
