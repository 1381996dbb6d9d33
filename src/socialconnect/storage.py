"""Interface to the storage of notes, actors and timeline positions.

The executor hands parsed data to a Storage and reads what it needs to
post back. InMemoryStorage keeps everything in dicts and is used by the
service when no other storage is plugged in.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

import structlog

from .activity_types import Activity, Actor, Note, TimelinePosition
from .commands import Timeline
from .connections.base import OriginConfig

logger = structlog.get_logger()


@dataclass
class DownloadTarget:
    """Where an attachment comes from and where it goes."""
    uri: str
    path: Path


class Storage(Protocol):
    """What command execution needs from persistent storage."""

    async def save_activities(self, account_name: str, activities: list[Activity]) -> None:
        ...

    async def save_actors(self, account_name: str, actors: list[Actor]) -> None:
        ...

    async def get_actor(self, oid: str) -> Actor | None:
        ...

    async def get_positions(
        self, account_name: str, timeline: Timeline
    ) -> tuple[TimelinePosition, TimelinePosition]:
        """Youngest and oldest positions loaded so far."""
        ...

    async def set_positions(
        self,
        account_name: str,
        timeline: Timeline,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
    ) -> None:
        ...

    async def note_to_send(self, item_id: str) -> Note | None:
        ...

    async def note_sent(self, item_id: str, activity: Activity) -> None:
        ...

    async def note_deleted(self, note_oid: str) -> None:
        ...

    async def download_target(self, item_id: str) -> DownloadTarget | None:
        ...

    async def download_finished(self, item_id: str, size: int) -> None:
        ...

    async def save_origin_config(self, account_name: str, config: OriginConfig) -> None:
        ...


@dataclass
class InMemoryStorage:
    """Dict-backed Storage."""
    activities: dict[str, Activity] = field(default_factory=dict)
    actors: dict[str, Actor] = field(default_factory=dict)
    positions: dict[tuple[str, Timeline], tuple[TimelinePosition, TimelinePosition]] = field(
        default_factory=dict
    )
    outbox: dict[str, Note] = field(default_factory=dict)
    sent: dict[str, Activity] = field(default_factory=dict)
    downloads: dict[str, DownloadTarget] = field(default_factory=dict)
    downloaded: dict[str, int] = field(default_factory=dict)
    origin_configs: dict[str, OriginConfig] = field(default_factory=dict)

    async def save_activities(self, account_name: str, activities: list[Activity]) -> None:
        for activity in activities:
            key = activity.oid or activity.note.oid or activity.obj_actor.oid
            if key:
                self.activities[key] = activity
            if not activity.actor.is_empty:
                self.actors[activity.actor.oid or activity.actor.unique_name] = activity.actor

    async def save_actors(self, account_name: str, actors: list[Actor]) -> None:
        for actor in actors:
            if not actor.is_empty:
                self.actors[actor.oid or actor.unique_name] = actor

    async def get_actor(self, oid: str) -> Actor | None:
        return self.actors.get(oid)

    async def get_positions(
        self, account_name: str, timeline: Timeline
    ) -> tuple[TimelinePosition, TimelinePosition]:
        return self.positions.get(
            (account_name, timeline), (TimelinePosition.EMPTY, TimelinePosition.EMPTY)
        )

    async def set_positions(
        self,
        account_name: str,
        timeline: Timeline,
        youngest: TimelinePosition,
        oldest: TimelinePosition,
    ) -> None:
        self.positions[(account_name, timeline)] = (youngest, oldest)

    async def note_to_send(self, item_id: str) -> Note | None:
        return self.outbox.get(item_id)

    async def note_sent(self, item_id: str, activity: Activity) -> None:
        self.outbox.pop(item_id, None)
        self.sent[item_id] = activity
        await self.save_activities("", [activity])

    async def note_deleted(self, note_oid: str) -> None:
        self.activities = {
            key: activity for key, activity in self.activities.items()
            if activity.note.oid != note_oid
        }

    async def download_target(self, item_id: str) -> DownloadTarget | None:
        return self.downloads.get(item_id)

    async def download_finished(self, item_id: str, size: int) -> None:
        self.downloaded[item_id] = size

    async def save_origin_config(self, account_name: str, config: OriginConfig) -> None:
        self.origin_configs[account_name] = config
