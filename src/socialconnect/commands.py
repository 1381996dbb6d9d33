"""Background commands and their results.

A CommandData is one unit of queued work. Two commands are equal when they
would do the same work (command, account, timeline, item id); results,
descriptions and flags are ignored so that a resubmitted duplicate coalesces
with the queued one.
"""

import re
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from .errors import ConnectorError, MalformedRequestError, StatusCode

DEFAULT_MAX_RETRIES = 10
SUMMARY_TEXT_LIMIT = 40


class CommandEnum(Enum):
    """Commands with their stored code and priority (lower runs first)."""

    EMPTY = ("empty", 20)
    UNKNOWN = ("unknown", 20)
    DELETE_COMMAND = ("delete-command", 0)

    UPDATE_NOTE = ("update-status", 2)
    DELETE_NOTE = ("destroy-status", 2)
    LIKE = ("create-favorite", 2)
    UNDO_LIKE = ("destroy-favorite", 2)
    ANNOUNCE = ("reblog", 2)
    UNDO_ANNOUNCE = ("destroy-reblog", 2)
    FOLLOW = ("follow-user", 2)
    UNDO_FOLLOW = ("stop-following-user", 2)

    GET_NOTE = ("get-status", 4)
    GET_CONVERSATION = ("get-conversation", 4)
    GET_ACTOR = ("get-user", 4)
    SEARCH_ACTORS = ("search-users", 4)

    GET_CONFIG = ("get-config", 6)
    RATE_LIMIT_STATUS = ("rate-limit-status", 6)

    GET_TIMELINE = ("fetch-timeline", 8)
    GET_FRIENDS = ("get-friends", 8)
    GET_FOLLOWERS = ("get-followers", 8)
    GET_OLDER_TIMELINE = ("get-older-timeline", 9)

    GET_ATTACHMENT = ("fetch-attachment", 10)

    def __init__(self, code: str, priority: int):
        self.code = code
        self.priority = priority

    @classmethod
    def load(cls, code: str | None) -> "CommandEnum":
        if not code:
            return cls.EMPTY
        for command in cls:
            if command.code == code:
                return command
        return cls.UNKNOWN

    @property
    def title(self) -> str:
        return self.name.replace("_", " ").lower()


class TimelineType(str, Enum):
    """Kinds of timelines a command may synchronize."""
    UNKNOWN = "unknown"
    HOME = "home"
    NOTIFICATIONS = "notifications"
    FAVORITES = "favorites"
    PUBLIC = "public"
    SENT = "sent"
    SEARCH = "search"
    FRIENDS = "friends"
    FOLLOWERS = "followers"

    @classmethod
    def load(cls, value: str | None) -> "TimelineType":
        try:
            return cls(value or "unknown")
        except ValueError:
            return cls.UNKNOWN


@dataclass(frozen=True)
class Timeline:
    """Timeline reference: type plus the actor/origin scope and search query."""
    timeline_type: TimelineType = TimelineType.UNKNOWN
    actor_oid: str = ""
    origin_name: str = ""
    search_query: str = ""

    @property
    def is_empty(self) -> bool:
        return self.timeline_type is TimelineType.UNKNOWN

    def __str__(self) -> str:
        parts = [self.timeline_type.value]
        if self.actor_oid:
            parts.append(f"actor:{self.actor_oid}")
        if self.origin_name:
            parts.append(f"origin:{self.origin_name}")
        if self.search_query:
            parts.append(f"'{self.search_query}'")
        return " ".join(parts)


Timeline.EMPTY = Timeline()


_id_lock = threading.Lock()
_last_id = 0


def unique_current_time_ms() -> int:
    """Current time in millis, strictly increasing across calls."""
    global _last_id
    with _id_lock:
        now = int(time.time() * 1000)
        _last_id = max(now, _last_id + 1)
        return _last_id


def trim_text(text: str, limit: int = SUMMARY_TEXT_LIMIT) -> str:
    """Compact plain text of HTML, trimmed at a word boundary."""
    plain = re.sub(r"\s+", " ", re.sub(r"<[^>]+>", " ", text or "")).strip()
    if len(plain) <= limit:
        return plain
    cut = plain[:limit].rsplit(" ", 1)[0] or plain[:limit]
    return f"{cut}..."


@dataclass
class CommandResult:
    """Mutable execution state of a command."""
    retry_count: int = 0
    max_retries: int = DEFAULT_MAX_RETRIES
    last_executed_date: int = 0
    execution_count: int = 0
    downloaded_count: int = 0
    error_count: int = 0
    error_code: StatusCode | None = None
    error_message: str = ""
    is_hard_error: bool = False
    rate_limit_remaining: int = 0
    rate_limit_limit: int = 0

    def reset_retries(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.retry_count = 0
        self.max_retries = max_retries

    def prepare_for_launch(self) -> None:
        self.error_code = None
        self.error_message = ""
        self.is_hard_error = False

    def after_execution(self) -> None:
        self.execution_count += 1
        self.last_executed_date = int(time.time() * 1000)

    def set_error(self, error: ConnectorError) -> None:
        self.error_count += 1
        self.error_code = error.status_code
        self.error_message = error.message
        self.is_hard_error = error.is_hard

    def increment_retries(self) -> None:
        self.retry_count += 1

    def increment_downloaded(self, count: int = 1) -> None:
        self.downloaded_count += count

    @property
    def has_error(self) -> bool:
        return self.error_code is not None

    @property
    def retries_exhausted(self) -> bool:
        return self.retry_count >= self.max_retries

    def executed_more_seconds_ago_than(self, seconds: float) -> bool:
        if self.last_executed_date == 0:
            return True
        return time.time() * 1000 - self.last_executed_date > seconds * 1000

    def to_summary(self) -> str:
        parts = []
        if self.has_error:
            parts.append(f"error: {self.error_code.value} {self.error_message}".rstrip())
        if self.retry_count:
            parts.append(f"retries: {self.retry_count}/{self.max_retries}")
        if self.downloaded_count:
            parts.append(f"downloaded: {self.downloaded_count}")
        if self.rate_limit_limit:
            parts.append(f"rate limit: {self.rate_limit_remaining}/{self.rate_limit_limit}")
        return ", ".join(parts) or "no result yet"

    def to_bag(self) -> dict[str, Any]:
        bag: dict[str, Any] = {
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "last_executed_date": self.last_executed_date,
            "downloaded_count": self.downloaded_count,
            "error_count": self.error_count,
            "rate_limit_remaining": self.rate_limit_remaining,
            "rate_limit_limit": self.rate_limit_limit,
        }
        if self.error_code is not None:
            bag.update(ConnectorError(self.error_code, self.error_message).to_dict())
        return bag

    @classmethod
    def from_bag(cls, bag: dict[str, Any]) -> "CommandResult":
        result = cls(
            retry_count=int(bag.get("retry_count") or 0),
            max_retries=int(bag.get("max_retries") or DEFAULT_MAX_RETRIES),
            last_executed_date=int(bag.get("last_executed_date") or 0),
            downloaded_count=int(bag.get("downloaded_count") or 0),
            error_count=int(bag.get("error_count") or 0),
            rate_limit_remaining=int(bag.get("rate_limit_remaining") or 0),
            rate_limit_limit=int(bag.get("rate_limit_limit") or 0),
        )
        if bag.get("error_code"):
            error = ConnectorError.from_dict(bag)
            result.error_code = error.status_code
            result.error_message = error.message
        return result


def _to_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


@dataclass(eq=False)
class CommandData:
    """One queued unit of background synchronization work."""
    command: CommandEnum
    account_name: str = ""
    timeline: Timeline = Timeline.EMPTY
    # Meaning depends on the command: note oid, attachment key, or command id
    item_id: str = ""
    username: str = ""
    description: str = ""
    in_foreground: bool = False
    manually_launched: bool = False
    command_id: int = 0
    created_date: int = 0
    result: CommandResult = field(default_factory=CommandResult)

    def __post_init__(self):
        if not self.command_id:
            self.command_id = unique_current_time_ms()
        if self.created_date <= 0:
            self.created_date = self.command_id
        self.item_id = str(self.item_id or "")

    # === Factories ===

    @classmethod
    def empty(cls) -> "CommandData":
        return cls(CommandEnum.EMPTY)

    @classmethod
    def new_account_command(cls, command: CommandEnum, account_name: str) -> "CommandData":
        return cls(command, account_name=account_name)

    @classmethod
    def new_item_command(cls, command: CommandEnum, account_name: str, item_id: str) -> "CommandData":
        return cls(command, account_name=account_name, item_id=item_id)

    @classmethod
    def new_timeline_command(
        cls,
        command: CommandEnum,
        account_name: str,
        timeline_type: TimelineType,
        actor_oid: str = "",
        origin_name: str = "",
        search_query: str = "",
    ) -> "CommandData":
        return cls(
            command,
            account_name=account_name,
            timeline=Timeline(timeline_type, actor_oid, origin_name, search_query),
        )

    @classmethod
    def new_search(cls, account_name: str, query: str, origin_name: str = "") -> "CommandData":
        return cls.new_timeline_command(
            CommandEnum.GET_TIMELINE, account_name, TimelineType.SEARCH,
            origin_name=origin_name, search_query=query,
        )

    @classmethod
    def new_actor_command(
        cls,
        command: CommandEnum,
        account_name: str,
        actor_oid: str,
        username: str = "",
    ) -> "CommandData":
        data = cls.new_timeline_command(command, account_name, TimelineType.SENT, actor_oid)
        data.set_username(username)
        data.description = data.username
        return data

    @classmethod
    def new_update_note(cls, account_name: str, item_id: str, content: str = "") -> "CommandData":
        data = cls.new_item_command(CommandEnum.UPDATE_NOTE, account_name, item_id)
        data.description = trim_text(content)
        return data

    @classmethod
    def new_fetch_attachment(cls, account_name: str, item_id: str, content: str = "") -> "CommandData":
        data = cls.new_item_command(CommandEnum.GET_ATTACHMENT, account_name, item_id)
        data.description = trim_text(content)
        return data

    @classmethod
    def new_delete_command(cls, command_id: int) -> "CommandData":
        return cls(CommandEnum.DELETE_COMMAND, item_id=str(command_id))

    # === State ===

    @property
    def is_empty(self) -> bool:
        return self.command is CommandEnum.EMPTY

    @property
    def priority(self) -> int:
        return self.command.priority

    def set_username(self, username: str) -> "CommandData":
        """Set the username only if it is not known yet."""
        if not self.username and username:
            self.username = username
        return self

    def set_in_foreground(self, in_foreground: bool) -> "CommandData":
        self.in_foreground = in_foreground
        return self

    def set_manually_launched(self, manually_launched: bool) -> "CommandData":
        self.manually_launched = manually_launched
        return self

    def reset_retries(self, max_retries: int = DEFAULT_MAX_RETRIES) -> None:
        self.result.reset_retries(max_retries)

    def executed_more_seconds_ago_than(self, seconds: float) -> bool:
        return self.result.executed_more_seconds_ago_than(seconds)

    # === Identity and order ===

    @property
    def dedup_key(self) -> tuple:
        return (self.command, self.account_name, self.timeline, self.item_id)

    @property
    def sort_key(self) -> tuple[bool, int, int]:
        """Foreground first, then lower priority, then older command id."""
        return (not self.in_foreground, self.command.priority, self.command_id)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CommandData):
            return NotImplemented
        return self.dedup_key == other.dedup_key

    def __hash__(self) -> int:
        return hash(self.dedup_key)

    def __lt__(self, other: "CommandData") -> bool:
        return self.sort_key < other.sort_key

    # === Serialization ===

    def to_bag(self) -> dict[str, Any]:
        """Flat key/value form used to persist and transport commands."""
        bag: dict[str, Any] = {"command": self.command.code}
        if self.is_empty:
            return bag
        bag.update({
            "command_id": self.command_id,
            "created_date": self.created_date,
            "in_foreground": self.in_foreground,
            "manually_launched": self.manually_launched,
        })
        optional = {
            "account_name": self.account_name,
            "timeline_type": "" if self.timeline.is_empty else self.timeline.timeline_type.value,
            "actor_oid": self.timeline.actor_oid,
            "origin_name": self.timeline.origin_name,
            "search_query": self.timeline.search_query,
            "item_id": self.item_id,
            "username": self.username,
            "description": self.description,
        }
        bag.update({key: value for key, value in optional.items() if value})
        bag.update(self.result.to_bag())
        return bag

    @classmethod
    def from_bag(cls, bag: dict[str, Any]) -> "CommandData":
        """Restore a command; unknown command codes give an empty command.

        Raises:
            MalformedRequestError: If a numeric field is not a number
        """
        command = CommandEnum.load(bag.get("command"))
        if command in (CommandEnum.EMPTY, CommandEnum.UNKNOWN):
            return cls.empty()
        try:
            data = cls._from_known_bag(command, bag)
        except (TypeError, ValueError) as e:
            raise MalformedRequestError(f"Malformed {command.code} command: {e}") from e
        data.set_username(str(bag.get("username") or ""))
        return data

    @classmethod
    def _from_known_bag(cls, command: CommandEnum, bag: dict[str, Any]) -> "CommandData":
        return cls(
            command,
            account_name=str(bag.get("account_name") or ""),
            timeline=Timeline(
                TimelineType.load(bag.get("timeline_type")),
                str(bag.get("actor_oid") or ""),
                str(bag.get("origin_name") or ""),
                str(bag.get("search_query") or ""),
            ),
            item_id=str(bag.get("item_id") or ""),
            description=str(bag.get("description") or ""),
            in_foreground=_to_bool(bag.get("in_foreground")),
            manually_launched=_to_bool(bag.get("manually_launched")),
            command_id=int(bag.get("command_id") or 0),
            created_date=int(bag.get("created_date") or 0),
            result=CommandResult.from_bag(bag),
        )

    # === Presentation ===

    def summary(self) -> str:
        """Short human-readable description of the command and its result."""
        parts = [self.command.title]
        if self.in_foreground:
            parts.append(", foreground")
        if self.manually_launched:
            parts.append(", manual")
        if self.command in (CommandEnum.GET_TIMELINE, CommandEnum.GET_OLDER_TIMELINE):
            parts.append(f" {self.timeline}")
        elif self.command in (
            CommandEnum.FOLLOW, CommandEnum.UNDO_FOLLOW,
            CommandEnum.GET_FRIENDS, CommandEnum.GET_FOLLOWERS,
        ):
            parts.append(f" {self.username or self.timeline.actor_oid}")
        elif self.command in (CommandEnum.GET_ACTOR, CommandEnum.SEARCH_ACTORS):
            if self.username:
                parts.append(f" '{self.username}'")
        elif self.command in (CommandEnum.UPDATE_NOTE, CommandEnum.GET_ATTACHMENT):
            parts.append(f" '{trim_text(self.description)}'")
        elif self.account_name:
            parts.append(f" for {self.account_name}")
        seconds = max(0, int(time.time() - self.created_date / 1000))
        return (
            "".join(parts)
            + f"\ncreated {seconds} seconds ago"
            + f"\n{self.result.to_summary()}"
        )

    def __str__(self) -> str:
        items = [f"command:{self.command.code}"]
        if self.manually_launched:
            items.append("manual")
        if self.account_name:
            items.append(f"account:{self.account_name}")
        if self.username:
            items.append(f"username:{self.username}")
        if self.description and self.description != self.username:
            items.append(f"'{self.description}'")
        if not self.timeline.is_empty:
            items.append(str(self.timeline))
        if self.item_id:
            items.append(f"itemId:{self.item_id}")
        if self.in_foreground:
            items.append("foreground")
        return f"CommandData{{{', '.join(items)}}}"
