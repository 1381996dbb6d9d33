"""Abstract API operations and endpoint template handling.

Each connection declares a table mapping ApiRoutine to an endpoint template.
A routine missing from the table (or mapped to "") is unsupported, which is
reported before any request is made.
"""

from enum import Enum
from urllib.parse import quote

NOTE_ID = "%noteId%"
ACTOR_ID = "%actorId%"
NICKNAME = "%nickname%"
TAG = "%tag%"


class ApiRoutine(str, Enum):
    """Abstract operations a connection may support."""
    GET_CONFIG = "get_config"
    ACCOUNT_VERIFY_CREDENTIALS = "account_verify_credentials"
    ACCOUNT_RATE_LIMIT_STATUS = "account_rate_limit_status"

    HOME_TIMELINE = "home_timeline"
    NOTIFICATIONS_TIMELINE = "notifications_timeline"
    LIKED_TIMELINE = "liked_timeline"
    PUBLIC_TIMELINE = "public_timeline"
    TAG_TIMELINE = "tag_timeline"
    ACTOR_TIMELINE = "actor_timeline"
    SEARCH_NOTES = "search_notes"

    GET_NOTE = "get_note"
    GET_CONVERSATION = "get_conversation"
    UPDATE_NOTE = "update_note"
    UPDATE_PRIVATE_NOTE = "update_private_note"
    DELETE_NOTE = "delete_note"
    UPLOAD_MEDIA = "upload_media"
    LIKE = "like"
    UNDO_LIKE = "undo_like"
    ANNOUNCE = "announce"
    UNDO_ANNOUNCE = "undo_announce"

    GET_ACTOR = "get_actor"
    SEARCH_ACTORS = "search_actors"
    FOLLOW = "follow"
    UNDO_FOLLOW = "undo_follow"
    GET_FRIENDS = "get_friends"
    GET_FOLLOWERS = "get_followers"

    @property
    def is_timeline(self) -> bool:
        return self in _TIMELINE_ROUTINES

    @property
    def is_actor_list(self) -> bool:
        return self in (ApiRoutine.GET_FRIENDS, ApiRoutine.GET_FOLLOWERS, ApiRoutine.SEARCH_ACTORS)


_TIMELINE_ROUTINES = frozenset({
    ApiRoutine.HOME_TIMELINE,
    ApiRoutine.NOTIFICATIONS_TIMELINE,
    ApiRoutine.LIKED_TIMELINE,
    ApiRoutine.PUBLIC_TIMELINE,
    ApiRoutine.TAG_TIMELINE,
    ApiRoutine.ACTOR_TIMELINE,
    ApiRoutine.SEARCH_NOTES,
})


def substitute(template: str, placeholder: str, value: str) -> str:
    """Replace a placeholder, URL-quoting the value."""
    return template.replace(placeholder, quote(value, safe="@:"))


def is_absolute(template: str) -> bool:
    return template.startswith(("http://", "https://"))


def join_url(base: str, template: str) -> str:
    """Join a relative template to an API base URL; absolute templates pass through."""
    if is_absolute(template):
        return template
    return f"{base.rstrip('/')}/{template.lstrip('/')}"
