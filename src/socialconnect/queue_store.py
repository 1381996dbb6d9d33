"""Saves queued commands to the database and restores them on startup."""

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import async_sessionmaker

from .command_queue import CommandQueue, CommandState
from .commands import CommandData
from .errors import MalformedRequestError
from .models import StoredCommand

logger = structlog.get_logger()

# Commands in other states are executing or gone
SAVED_STATES = (CommandState.PENDING, CommandState.FAILED_RETRYABLE)


class QueueStore:
    """Queue persistence on top of the `stored_commands` table."""

    def __init__(self, session_maker: async_sessionmaker):
        self.session_maker = session_maker

    async def save(self, queue: CommandQueue) -> int:
        """Replace the stored commands with the pending ones of a queue.

        Returns:
            Number of commands saved
        """
        rows = [
            StoredCommand(
                command_id=command.command_id,
                command=command.command.code,
                account_name=command.account_name,
                in_foreground=command.in_foreground,
                state=state.value,
                bag=command.to_bag(),
                created_date=command.created_date,
            )
            for command, state in queue.snapshot()
            if state in SAVED_STATES
        ]
        async with self.session_maker() as session:
            await session.execute(delete(StoredCommand))
            session.add_all(rows)
            await session.commit()
        logger.info("Command queue saved", count=len(rows))
        return len(rows)

    async def load(self) -> list[CommandData]:
        """Stored commands in their saved order; unknown commands are dropped."""
        async with self.session_maker() as session:
            result = await session.execute(
                select(StoredCommand).order_by(StoredCommand.command_id)
            )
            rows = result.scalars().all()

        commands = []
        for row in rows:
            try:
                command = CommandData.from_bag(row.bag)
            except MalformedRequestError as e:
                logger.warning("Skipping malformed stored command", command_id=row.command_id, error=str(e))
                continue
            if command.is_empty:
                logger.warning("Skipping stored command", command=row.command, command_id=row.command_id)
                continue
            commands.append(command)
        logger.info("Command queue loaded", count=len(commands))
        return commands

    async def clear(self) -> None:
        async with self.session_maker() as session:
            await session.execute(delete(StoredCommand))
            await session.commit()
