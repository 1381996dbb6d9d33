"""Classic Twitter REST API v1.1 adapter."""

from typing import Any

import structlog

from ..activity_types import (
    Activity,
    ActivityType,
    Actor,
    ActorEndpointType,
    Attachment,
    ContentType,
    Note,
    TimelinePosition,
    TriState,
)
from ..api_routines import ApiRoutine
from ..errors import MalformedRequestError, ParseError
from ..http_connection import RateLimitStatus
from .base import (
    BYTES_IN_MB,
    OriginConfig,
    OriginType,
    first_tag_or_keyword,
    optional_dict,
    optional_int,
    optional_list,
    optional_str,
    parse_iso_date,
    parse_twitter_date,
    require_dict,
    strip_html,
)
from .twitter_like import TwitterLikeConnection

logger = structlog.get_logger()

TWITTER_API_HOST = "api.twitter.com"
TWITTER_UPLOAD_URL = "https://upload.twitter.com/1.1/media/upload.json"

TWITTER_API_PATHS = {
    ApiRoutine.ACCOUNT_RATE_LIMIT_STATUS: "application/rate_limit_status.json",
    ApiRoutine.ACCOUNT_VERIFY_CREDENTIALS: "account/verify_credentials.json",
    ApiRoutine.DELETE_NOTE: "statuses/destroy/%noteId%.json",
    ApiRoutine.FOLLOW: "friendships/create.json",
    ApiRoutine.UNDO_FOLLOW: "friendships/destroy.json",
    ApiRoutine.GET_FOLLOWERS: "followers/list.json",
    ApiRoutine.GET_FRIENDS: "friends/list.json",
    ApiRoutine.GET_NOTE: "statuses/show.json",
    ApiRoutine.GET_ACTOR: "users/show.json",
    ApiRoutine.HOME_TIMELINE: "statuses/home_timeline.json",
    ApiRoutine.NOTIFICATIONS_TIMELINE: "statuses/mentions_timeline.json",
    ApiRoutine.LIKED_TIMELINE: "favorites/list.json",
    ApiRoutine.ACTOR_TIMELINE: "statuses/user_timeline.json",
    ApiRoutine.LIKE: "favorites/create.json",
    ApiRoutine.UNDO_LIKE: "favorites/destroy.json",
    ApiRoutine.ANNOUNCE: "statuses/retweet/%noteId%.json",
    ApiRoutine.UNDO_ANNOUNCE: "statuses/unretweet/%noteId%.json",
    ApiRoutine.SEARCH_NOTES: "search/tweets.json",
    ApiRoutine.SEARCH_ACTORS: "users/search.json",
    ApiRoutine.UPDATE_NOTE: "statuses/update.json",
    ApiRoutine.UPLOAD_MEDIA: "media/upload.json",
}

# Routines whose requests name the actor in the query
_ACTOR_SCOPED = frozenset({
    ApiRoutine.ACTOR_TIMELINE,
    ApiRoutine.LIKED_TIMELINE,
    ApiRoutine.GET_ACTOR,
    ApiRoutine.GET_FRIENDS,
    ApiRoutine.GET_FOLLOWERS,
})


class TheTwitterConnection(TwitterLikeConnection):
    """Connection to twitter.com or a compatible classic API host."""

    origin_type = OriginType.TWITTER
    limit_param = "count"
    note_params = {"tweet_mode": "extended"}
    download_limits = {
        ApiRoutine.HOME_TIMELINE: 200,
        ApiRoutine.NOTIFICATIONS_TIMELINE: 200,
        ApiRoutine.LIKED_TIMELINE: 200,
        ApiRoutine.ACTOR_TIMELINE: 200,
        ApiRoutine.SEARCH_NOTES: 100,
        ApiRoutine.SEARCH_ACTORS: 20,
        ApiRoutine.GET_FRIENDS: 200,
        ApiRoutine.GET_FOLLOWERS: 200,
    }
    origin_config = OriginConfig(text_limit=280, upload_limit=5 * BYTES_IN_MB)

    def __init__(self, http, account_actor=None, media_reader=None):
        super().__init__(http, account_actor, media_reader)
        self.api_paths = dict(TWITTER_API_PATHS)
        if self.host == TWITTER_API_HOST:
            self.api_paths[ApiRoutine.UPLOAD_MEDIA] = TWITTER_UPLOAD_URL

    @property
    def api_base_url(self) -> str:
        return f"{self.http.data.origin_url.rstrip('/')}/1.1/"

    def parse_date(self, value: str | None) -> int:
        return parse_twitter_date(value) or parse_iso_date(value)

    def actor_params(self, routine: ApiRoutine, actor: Actor) -> dict[str, Any]:
        if routine not in _ACTOR_SCOPED:
            return {}
        if actor.oid:
            return {"user_id": actor.oid}
        if actor.username:
            return {"screen_name": actor.username}
        raise MalformedRequestError(f"{routine.value}: actor has no id and no username", self.host)

    def unwrap_actor_list(self, payload: Any) -> Any:
        if isinstance(payload, dict):
            return payload.get("users")
        return payload

    # === Parsing ===

    def actor_from_json(self, obj: Any) -> Actor:
        if obj is None:
            return Actor.empty()
        jso = require_dict(obj, "Actor", self.host)
        oid = optional_str(jso, "id_str") or optional_str(jso, "id")
        username = optional_str(jso, "screen_name")
        if not oid or not username:
            raise ParseError("Id or username is empty", jso, self.host)
        actor = Actor(
            oid=oid,
            username=username,
            real_name=optional_str(jso, "name"),
            host=self.host,
            summary=optional_str(jso, "description"),
            location=optional_str(jso, "location"),
            homepage=optional_str(jso, "url"),
            avatar_url=optional_str(jso, "profile_image_url_https")
            or optional_str(jso, "profile_image_url"),
            notes_count=optional_int(jso, "statuses_count"),
            following_count=optional_int(jso, "friends_count"),
            followers_count=optional_int(jso, "followers_count"),
            favorites_count=optional_int(jso, "favourites_count"),
            created_date=self.parse_date(optional_str(jso, "created_at")),
        )
        actor.webfinger_id = f"{username}@{self._web_host}"
        actor.profile_url = f"https://{self._web_host}/{username}"
        actor.add_endpoint(ActorEndpointType.BANNER, optional_str(jso, "profile_banner_url"))
        if jso.get("following") is not None:
            actor.is_my_friend = TriState.from_bool(bool(jso.get("following")))
        return actor

    @property
    def _web_host(self) -> str:
        host = self.host
        return host[4:] if host.startswith("api.") else host

    def activity_from_json(self, obj: Any) -> Activity:
        jso = require_dict(obj, "Tweet", self.host)
        oid = optional_str(jso, "id_str") or optional_str(jso, "id")
        updated_date = self.parse_date(optional_str(jso, "created_at"))
        actor = self.actor_from_json(jso.get("user"))

        retweeted = optional_dict(jso, "retweeted_status")
        if retweeted is not None:
            return Activity(
                type=ActivityType.ANNOUNCE,
                actor=actor,
                obj=self.activity_from_json(retweeted),
                account_actor=self.account_actor,
                oid=oid,
                timeline_position=TimelinePosition(oid),
                updated_date=updated_date,
            )

        activity = self.new_update_activity(oid, updated_date)
        activity.actor = actor
        note = activity.note
        note.content = optional_str(jso, "full_text") or optional_str(jso, "text")
        note.sensitive = bool(jso.get("possibly_sensitive"))
        note.via = strip_html(optional_str(jso, "source"))
        if actor.username:
            note.url = f"https://{self._web_host}/{actor.username}/status/{oid}"
        if jso.get("favorited") is not None:
            note.favorited = TriState.from_bool(bool(jso.get("favorited")))
        note.audience.add(Actor.public())

        entities = optional_dict(jso, "entities") or {}
        for mention in optional_list(entities, "user_mentions"):
            if isinstance(mention, dict) and optional_str(mention, "id_str"):
                note.audience.add(Actor(
                    oid=optional_str(mention, "id_str"),
                    username=optional_str(mention, "screen_name"),
                    host=self.host,
                ))

        self.set_in_reply_to(
            note,
            optional_str(jso, "in_reply_to_user_id_str") or optional_str(jso, "in_reply_to_user_id"),
            optional_str(jso, "in_reply_to_status_id_str") or optional_str(jso, "in_reply_to_status_id"),
            optional_str(jso, "in_reply_to_screen_name"),
        )

        media = optional_list(optional_dict(jso, "extended_entities") or entities, "media")
        for item in media:
            if isinstance(item, dict):
                note.attachments.add(self._attachment_from_json(item))
        return activity

    def _attachment_from_json(self, jso: dict[str, Any]) -> Attachment:
        media_type = optional_str(jso, "type")
        if media_type in ("video", "animated_gif"):
            variants = optional_list(optional_dict(jso, "video_info") or {}, "variants")
            for variant in variants:
                if isinstance(variant, dict) and optional_str(variant, "url"):
                    return Attachment.from_uri_and_mime_type(
                        optional_str(variant, "url"),
                        optional_str(variant, "content_type") or ContentType.VIDEO.general_mime_type,
                    )
        return Attachment.from_uri_and_mime_type(
            optional_str(jso, "media_url_https") or optional_str(jso, "media_url"),
            ContentType.IMAGE.value,
        )

    # === Operations ===

    async def search_notes(
        self,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
        limit: int,
        query: str,
    ) -> list[Activity]:
        routine = ApiRoutine.SEARCH_NOTES
        if not query:
            return []
        params = self.pagination_params(routine, youngest, oldest, limit)
        params["q"] = query
        payload = await self.http.get_request(self.get_api_url(routine), params)
        statuses = payload.get("statuses") if isinstance(payload, dict) else payload
        return self.activity_list_from_json(statuses, routine)

    async def search_actors(self, limit: int, query: str) -> list[Actor]:
        routine = ApiRoutine.SEARCH_ACTORS
        tag = first_tag_or_keyword(query)
        if not tag:
            return []
        params = {"q": tag, "count": self.fixed_download_limit(limit, routine)}
        payload = await self.http.get_request(self.get_api_url(routine), params)
        return self.actor_list_from_json(payload, routine)

    async def update_note(self, note: Note) -> Activity:
        media_ids = await self.upload_attachments(note, "media", "media_id_string")
        form: dict[str, Any] = {"status": note.content}
        in_reply_to = note.get_in_reply_to().note
        if in_reply_to.oid:
            form["in_reply_to_status_id"] = in_reply_to.oid
        if note.sensitive:
            form["possibly_sensitive"] = "true"
        if media_ids:
            form["media_ids"] = ",".join(media_ids)
        payload = await self.http.post_request(self.get_api_url(ApiRoutine.UPDATE_NOTE), form=form)
        return self.activity_from_json(payload)

    async def rate_limit_status(self) -> RateLimitStatus:
        payload = await self.http.get_request(
            self.get_api_url(ApiRoutine.ACCOUNT_RATE_LIMIT_STATUS),
            {"resources": "statuses"},
        )
        jso = require_dict(payload, "Rate limit status", self.host)
        resources = optional_dict(jso, "resources") or {}
        statuses = optional_dict(resources, "statuses") or {}
        home = optional_dict(statuses, "/statuses/home_timeline") or {}
        status = RateLimitStatus(
            remaining=optional_int(home, "remaining"),
            limit=optional_int(home, "limit"),
        )
        if not status.is_known and self.http.rate_limit is not None:
            return self.http.rate_limit
        return status
