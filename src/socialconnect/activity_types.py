"""Unified activity model shared by all social network connections.

Every adapter parses its wire format into these types, so storage and UI
collaborators never see backend-specific JSON.

Objects are created fresh for each parsed response and are filled in only
while the response is being parsed.
"""

import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from typing import TypeAlias, Union
from urllib.parse import urlparse

# Public addressing (ActivityStreams / Pump.io)
PUBLIC_COLLECTION_ID = "http://activityschema.org/collection/public"
AS_PUBLIC = "https://www.w3.org/ns/activitystreams#Public"
PUBLIC_IDS = frozenset({PUBLIC_COLLECTION_ID, AS_PUBLIC, "as:Public", "Public"})


class TriState(Enum):
    """Boolean that may also be unknown."""
    UNKNOWN = "unknown"
    TRUE = "true"
    FALSE = "false"

    @classmethod
    def from_bool(cls, value: bool | None) -> "TriState":
        if value is None:
            return cls.UNKNOWN
        return cls.TRUE if value else cls.FALSE

    def to_bool(self, default: bool) -> bool:
        """Coerce to bool; UNKNOWN becomes `default`."""
        if self is TriState.UNKNOWN:
            return default
        return self is TriState.TRUE


class ActivityType(str, Enum):
    """Normalized activity types."""
    EMPTY = "empty"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ANNOUNCE = "announce"
    UNDO_ANNOUNCE = "undo_announce"
    LIKE = "like"
    UNDO_LIKE = "undo_like"
    FOLLOW = "follow"
    UNDO_FOLLOW = "undo_follow"


class ObjectType(str, Enum):
    """Kind of object an Activity acts on."""
    EMPTY = "empty"
    NOTE = "note"
    ACTOR = "actor"
    ACTIVITY = "activity"


# Object types each activity type may carry. LIKE/ANNOUNCE and their undo
# may hold a nested activity only if that activity bears a note.
ALLOWED_OBJECT_TYPES: dict[ActivityType, frozenset[ObjectType]] = {
    ActivityType.EMPTY: frozenset(ObjectType),
    ActivityType.CREATE: frozenset({ObjectType.NOTE, ObjectType.ACTOR}),
    ActivityType.UPDATE: frozenset({ObjectType.NOTE, ObjectType.ACTOR}),
    ActivityType.DELETE: frozenset({ObjectType.NOTE, ObjectType.ACTOR}),
    ActivityType.ANNOUNCE: frozenset({ObjectType.NOTE, ObjectType.ACTIVITY}),
    ActivityType.UNDO_ANNOUNCE: frozenset({ObjectType.NOTE, ObjectType.ACTIVITY}),
    ActivityType.LIKE: frozenset({ObjectType.NOTE, ObjectType.ACTIVITY}),
    ActivityType.UNDO_LIKE: frozenset({ObjectType.NOTE, ObjectType.ACTIVITY}),
    ActivityType.FOLLOW: frozenset({ObjectType.ACTOR}),
    ActivityType.UNDO_FOLLOW: frozenset({ObjectType.ACTOR}),
}


class ActorEndpointType(str, Enum):
    """Endpoints an actor may advertise."""
    API_PROFILE = "api_profile"
    API_INBOX = "api_inbox"
    API_OUTBOX = "api_outbox"
    API_FOLLOWING = "api_following"
    API_FOLLOWERS = "api_followers"
    API_LIKED = "api_liked"
    BANNER = "banner"


class ContentType(str, Enum):
    """General kind of an attachment."""
    UNKNOWN = "unknown"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    TEXT = "text"

    @classmethod
    def from_mime_type(cls, mime_type: str) -> "ContentType":
        general = mime_type.split("/", 1)[0].lower() if mime_type else ""
        if general == "gifv":
            return cls.VIDEO
        try:
            return cls(general)
        except ValueError:
            return cls.UNKNOWN

    @property
    def general_mime_type(self) -> str:
        if self is ContentType.UNKNOWN:
            return ""
        return f"{self.value}/*"


@dataclass(frozen=True)
class TimelinePosition:
    """Opaque pagination cursor, meaningful only to the adapter that issued it."""
    position: str = ""

    @property
    def is_empty(self) -> bool:
        return not self.position

    def __str__(self) -> str:
        return self.position


TimelinePosition.EMPTY = TimelinePosition()


@dataclass(eq=False)
class Actor:
    """Normalized identity of a remote account."""
    oid: str = ""
    username: str = ""
    real_name: str = ""
    host: str = ""
    webfinger_id: str = ""
    profile_url: str = ""
    homepage: str = ""
    summary: str = ""
    location: str = ""
    avatar_url: str = ""
    endpoints: dict[ActorEndpointType, str] = field(default_factory=dict)
    notes_count: int = 0
    following_count: int = 0
    followers_count: int = 0
    favorites_count: int = 0
    created_date: int = 0
    updated_date: int = 0
    is_my_friend: TriState = TriState.UNKNOWN

    @classmethod
    def empty(cls) -> "Actor":
        return cls()

    @classmethod
    def public(cls) -> "Actor":
        """Marker recipient standing for the public collection."""
        return cls(oid=PUBLIC_COLLECTION_ID, username="Public")

    @property
    def is_empty(self) -> bool:
        return not self.oid and not self.username

    @property
    def is_public(self) -> bool:
        return self.oid in PUBLIC_IDS

    @property
    def unique_name(self) -> str:
        """user@host style name, best effort."""
        if self.webfinger_id:
            return self.webfinger_id
        if self.username and self.host and "@" not in self.username:
            return f"{self.username}@{self.host}"
        return self.username

    def get_host(self) -> str:
        """Host this actor lives on."""
        for candidate in (self.webfinger_id, self.username, self.oid):
            if "@" in candidate:
                host = candidate.rsplit("@", 1)[1]
                if host:
                    return host.lower()
        return self.host.lower()

    def add_endpoint(self, endpoint_type: ActorEndpointType, url: str) -> None:
        if url:
            self.endpoints[endpoint_type] = url

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Actor):
            return NotImplemented
        if self.is_empty or other.is_empty:
            return self.is_empty and other.is_empty
        if self.oid and other.oid:
            return self.oid == other.oid
        return self.unique_name == other.unique_name

    def __hash__(self) -> int:
        return hash(self.oid or self.unique_name)


@dataclass(eq=False)
class Attachment:
    """Media attached to a note."""
    uri: str
    content_type: ContentType = ContentType.UNKNOWN
    mime_type: str = ""
    # URI of the full-resolution attachment this one previews
    preview_of: str = ""
    preview: "Attachment | None" = None

    @classmethod
    def from_uri(cls, uri: str) -> "Attachment":
        return cls.from_uri_and_mime_type(uri, "")

    @classmethod
    def from_uri_and_mime_type(cls, uri: str, mime_type: str) -> "Attachment":
        mime_type = mime_type or ""
        if "/" not in mime_type and uri:
            guessed = mimetypes.guess_type(urlparse(uri).path)[0] or ""
            if not mime_type or (
                ContentType.from_mime_type(guessed) is ContentType.from_mime_type(mime_type)
            ):
                mime_type = guessed or mime_type
        return cls(
            uri=uri or "",
            content_type=ContentType.from_mime_type(mime_type),
            mime_type=mime_type,
        )

    @property
    def is_valid(self) -> bool:
        return bool(self.uri)

    @property
    def is_downloadable(self) -> bool:
        """True for attachments already available on the network."""
        return urlparse(self.uri).scheme in ("http", "https")

    def set_preview_of(self, full: "Attachment") -> "Attachment":
        self.preview_of = full.uri
        return self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attachment):
            return NotImplemented
        return self.uri == other.uri and self.content_type == other.content_type

    def __hash__(self) -> int:
        return hash((self.uri, self.content_type))


@dataclass
class Attachments:
    """Ordered, duplicate-free list of attachments."""
    items: list[Attachment] = field(default_factory=list)

    def add(self, attachment: Attachment) -> "Attachments":
        if attachment.is_valid and attachment not in self.items:
            self.items.append(attachment)
        return self

    def fold_previews(self) -> "Attachments":
        """Move preview items onto their full-resolution counterparts.

        Previews whose counterpart is missing are dropped.
        """
        full_items = [a for a in self.items if not a.preview_of]
        by_uri = {a.uri: a for a in full_items}
        for attachment in self.items:
            if attachment.preview_of:
                full = by_uri.get(attachment.preview_of)
                if full is not None and full.preview is None:
                    full.preview = attachment
        self.items = full_items
        return self

    @property
    def is_empty(self) -> bool:
        return not self.items

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)


@dataclass
class Audience:
    """Recipients of a note; may include the public marker."""
    actors: list[Actor] = field(default_factory=list)

    def add(self, actor: Actor) -> "Audience":
        if not actor.is_empty and actor not in self.actors:
            self.actors.append(actor)
        return self

    @property
    def is_public(self) -> bool:
        return any(a.is_public for a in self.actors)

    def first_non_public(self) -> Actor:
        for actor in self.actors:
            if not actor.is_public:
                return actor
        return Actor.empty()

    @property
    def is_empty(self) -> bool:
        return not self.actors

    def __len__(self) -> int:
        return len(self.actors)


@dataclass
class Note:
    """Normalized unit of posted content."""
    oid: str = ""
    url: str = ""
    name: str = ""
    summary: str = ""
    content: str = ""
    sensitive: bool = False
    in_reply_to: "Activity | None" = None
    audience: Audience = field(default_factory=Audience)
    attachments: Attachments = field(default_factory=Attachments)
    replies: list["Activity"] = field(default_factory=list)
    via: str = ""
    favorited: TriState = TriState.UNKNOWN
    updated_date: int = 0

    @classmethod
    def empty(cls) -> "Note":
        return cls()

    @property
    def is_empty(self) -> bool:
        return not self.oid and not self.content and self.attachments.is_empty

    def get_in_reply_to(self) -> "Activity":
        return self.in_reply_to if self.in_reply_to is not None else Activity.empty()


ActivityObject: TypeAlias = Union[Note, Actor, "Activity", None]


@dataclass
class Activity:
    """Normalized event wrapping an actor and an object."""
    type: ActivityType = ActivityType.EMPTY
    actor: Actor = field(default_factory=Actor)
    obj: ActivityObject = None
    # Account under which the data was fetched
    account_actor: Actor = field(default_factory=Actor)
    oid: str = ""
    timeline_position: TimelinePosition = TimelinePosition.EMPTY
    updated_date: int = 0

    @classmethod
    def empty(cls) -> "Activity":
        return cls()

    @classmethod
    def from_note(
        cls,
        account_actor: Actor,
        activity_type: ActivityType,
        actor: Actor,
        note: Note,
    ) -> "Activity":
        return cls(type=activity_type, actor=actor, obj=note, account_actor=account_actor)

    @classmethod
    def new_partial_note(cls, account_actor: Actor, author: Actor, note_oid: str) -> "Activity":
        """Placeholder for a note known only by its oid and author."""
        return cls(
            type=ActivityType.UPDATE,
            actor=author,
            obj=Note(oid=note_oid),
            account_actor=account_actor,
        )

    @property
    def is_empty(self) -> bool:
        return self.type is ActivityType.EMPTY and self.obj is None and self.actor.is_empty

    @property
    def object_type(self) -> ObjectType:
        if isinstance(self.obj, Note):
            return ObjectType.NOTE
        if isinstance(self.obj, Actor):
            return ObjectType.ACTOR
        if isinstance(self.obj, Activity):
            return ObjectType.ACTIVITY
        return ObjectType.EMPTY

    @property
    def note(self) -> Note:
        """Note of this activity or of the nested one."""
        if isinstance(self.obj, Note):
            return self.obj
        if isinstance(self.obj, Activity):
            return self.obj.note
        return Note.empty()

    @property
    def obj_actor(self) -> Actor:
        if isinstance(self.obj, Actor):
            return self.obj
        return Actor.empty()

    @property
    def nested(self) -> "Activity":
        if isinstance(self.obj, Activity):
            return self.obj
        return Activity.empty()

    @property
    def author(self) -> Actor:
        """Author of the note this activity is about."""
        if isinstance(self.obj, Activity):
            return self.obj.author
        if isinstance(self.obj, Note) and self.type in (
            ActivityType.CREATE, ActivityType.UPDATE, ActivityType.DELETE,
        ):
            return self.actor
        return Actor.empty()

    def is_consistent(self) -> bool:
        """Check the object type against the activity type."""
        if self.object_type is ObjectType.EMPTY:
            return self.type is ActivityType.EMPTY
        if self.object_type not in ALLOWED_OBJECT_TYPES[self.type]:
            return False
        if self.object_type is ObjectType.ACTIVITY and self.type is not ActivityType.EMPTY:
            return not self.note.is_empty
        return True
