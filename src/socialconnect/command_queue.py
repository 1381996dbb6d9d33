"""Deduplicating priority queue of commands.

Entries are kept in an arena keyed by the command's dedup tuple; a heap of
(sort key, sequence, dedup key) orders pending entries. Heap items whose entry
was removed, promoted or is no longer pending are skipped on pop.
"""

import asyncio
import heapq
from dataclasses import dataclass
from enum import Enum

import structlog

from .commands import CommandData

logger = structlog.get_logger()


class CommandState(str, Enum):
    """Lifecycle of a queued command."""
    PENDING = "pending"
    EXECUTING = "executing"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_TERMINAL = "failed_terminal"

    @property
    def is_terminal(self) -> bool:
        return self in (CommandState.SUCCEEDED, CommandState.FAILED_TERMINAL)


class QueueClosed(Exception):
    """The queue was closed while waiting for a command."""


@dataclass(eq=False)
class QueueEntry:
    """A command in the queue and the future its submitters wait on."""
    command: CommandData
    future: asyncio.Future
    state: CommandState = CommandState.PENDING


class CommandQueue:
    """Owned by the scheduler; every operation runs under one condition lock."""

    def __init__(self):
        self._entries: dict[tuple, QueueEntry] = {}
        self._heap: list[tuple[tuple, int, tuple]] = []
        self._sequence = 0
        self._condition = asyncio.Condition()
        self._closed = False

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def closed(self) -> bool:
        return self._closed

    def _push(self, entry: QueueEntry) -> None:
        self._sequence += 1
        heapq.heappush(
            self._heap, (entry.command.sort_key, self._sequence, entry.command.dedup_key)
        )

    def _pop_pending(self) -> QueueEntry | None:
        while self._heap:
            sort_key, _, key = heapq.heappop(self._heap)
            entry = self._entries.get(key)
            if entry is None or entry.state is not CommandState.PENDING:
                continue
            if entry.command.sort_key != sort_key:
                continue
            return entry
        return None

    async def put(self, command: CommandData) -> asyncio.Future:
        """Enqueue a command, or coalesce it with an equal queued one.

        Returns:
            Future resolved with the executed command when it leaves the queue
        """
        async with self._condition:
            existing = self._entries.get(command.dedup_key)
            if existing is not None:
                queued = existing.command
                if command.in_foreground and not queued.in_foreground:
                    queued.in_foreground = True
                    if existing.state is CommandState.PENDING:
                        self._push(existing)
                        self._condition.notify()
                if command.manually_launched:
                    queued.manually_launched = True
                logger.debug(
                    "Duplicate command coalesced",
                    command=str(command),
                    command_id=queued.command_id,
                    state=existing.state.value,
                )
                return existing.future

            entry = QueueEntry(command, asyncio.get_running_loop().create_future())
            self._entries[command.dedup_key] = entry
            self._push(entry)
            self._condition.notify()
            logger.debug("Command queued", command=str(command), command_id=command.command_id)
            return entry.future

    async def get(self) -> QueueEntry:
        """Wait for the next pending command and mark it executing.

        Raises:
            QueueClosed: If the queue is closed
        """
        async with self._condition:
            while True:
                if self._closed:
                    raise QueueClosed()
                entry = self._pop_pending()
                if entry is not None:
                    entry.state = CommandState.EXECUTING
                    return entry
                await self._condition.wait()

    async def requeue(self, entry: QueueEntry) -> None:
        """Put a retried command back as pending."""
        async with self._condition:
            if self._entries.get(entry.command.dedup_key) is not entry:
                return
            entry.state = CommandState.PENDING
            self._push(entry)
            self._condition.notify()

    async def mark_waiting(self, entry: QueueEntry) -> None:
        """Keep a failed command queued without making it eligible to run."""
        async with self._condition:
            entry.state = CommandState.FAILED_RETRYABLE

    async def finish(self, entry: QueueEntry, state: CommandState) -> None:
        """Remove a command that reached a terminal state and resolve its future."""
        async with self._condition:
            entry.state = state
            if self._entries.get(entry.command.dedup_key) is entry:
                del self._entries[entry.command.dedup_key]
            if not entry.future.done():
                entry.future.set_result(entry.command)

    async def remove(self, command_id: int) -> CommandData | None:
        """Cancel a command that is not executing.

        Returns:
            The removed command, None if there was no such command
        """
        async with self._condition:
            for key, entry in self._entries.items():
                if entry.command.command_id != command_id:
                    continue
                if entry.state is CommandState.EXECUTING:
                    logger.info("Cannot remove executing command", command_id=command_id)
                    return None
                del self._entries[key]
                if not entry.future.done():
                    entry.future.cancel()
                logger.info("Command removed", command=str(entry.command), command_id=command_id)
                return entry.command
            return None

    def snapshot(self) -> list[tuple[CommandData, CommandState]]:
        """Queued commands in execution order."""
        entries = sorted(self._entries.values(), key=lambda e: e.command.sort_key)
        return [(entry.command, entry.state) for entry in entries]

    def state_of(self, command: CommandData) -> CommandState | None:
        entry = self._entries.get(command.dedup_key)
        return entry.state if entry is not None else None

    async def close(self) -> None:
        """Wake all waiting workers; subsequent `get` calls raise QueueClosed."""
        async with self._condition:
            self._closed = True
            self._condition.notify_all()
