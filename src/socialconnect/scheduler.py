"""Worker pool draining the command queue.

Each worker takes the next pending command, runs it with a wall-clock
bound, and moves it to SUCCEEDED, back to PENDING for a retry, or to
FAILED_TERMINAL.
"""

import asyncio
from typing import Any, Protocol

import structlog

from .classifier import Outcome, as_connector_error, classify
from .command_queue import CommandQueue, CommandState, QueueClosed, QueueEntry
from .commands import DEFAULT_MAX_RETRIES, CommandData, CommandEnum
from .errors import ConnectorError, TransportError

logger = structlog.get_logger()


class Executor(Protocol):
    async def execute(self, command: CommandData) -> None:
        ...


class CommandScheduler:
    """Runs queued commands on a bounded pool of asyncio tasks."""

    def __init__(
        self,
        executor: Executor,
        queue: CommandQueue | None = None,
        workers: int = 2,
        execution_timeout: float = 120.0,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = 0.0,
    ):
        """Initialize scheduler.

        Args:
            executor: Runs one command against its adapter
            queue: Queue to drain (a new one if omitted)
            workers: Number of worker tasks
            execution_timeout: Per-command wall-clock limit in seconds
            max_retries: Retry ceiling for freshly submitted commands
            retry_delay: Seconds a retryable command waits before it is pending again
        """
        self.executor = executor
        self.queue = queue or CommandQueue()
        self.workers = workers
        self.execution_timeout = execution_timeout
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._worker_tasks: list[asyncio.Task] = []
        self._retry_tasks: set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._worker_tasks)

    async def submit(self, command: CommandData) -> asyncio.Future:
        """Queue a command.

        Returns:
            Future resolved with the command when it leaves the queue. A
            duplicate of queued work gets the future of the queued command.
        """
        if command.is_empty:
            raise ValueError("Cannot submit an empty command")
        if command.result.retry_count == 0 and command.result.execution_count == 0:
            command.reset_retries(self.max_retries)
        return await self.queue.put(command)

    async def start(self) -> None:
        if self.running:
            return
        self._worker_tasks = [
            asyncio.create_task(self._worker(n), name=f"command-worker-{n}")
            for n in range(self.workers)
        ]
        logger.info("Scheduler started", workers=self.workers)

    async def stop(self) -> None:
        """Stop taking commands; executing ones are allowed to finish."""
        await self.queue.close()
        for task in self._retry_tasks:
            task.cancel()
        await asyncio.gather(*self._retry_tasks, return_exceptions=True)
        await asyncio.gather(*self._worker_tasks, return_exceptions=True)
        self._worker_tasks = []
        logger.info("Scheduler stopped", queued=len(self.queue))

    async def _worker(self, number: int) -> None:
        while True:
            try:
                entry = await self.queue.get()
            except QueueClosed:
                return
            await self.run_entry(entry)

    async def run_entry(self, entry: QueueEntry) -> Outcome:
        """Execute one dequeued command and apply its outcome."""
        command = entry.command
        command.result.prepare_for_launch()
        logger.debug("Executing command", command=str(command), command_id=command.command_id)

        error: BaseException | None = None
        try:
            await asyncio.wait_for(self._execute(command), timeout=self.execution_timeout)
        except asyncio.TimeoutError:
            error = TransportError(f"Execution exceeded {self.execution_timeout}s")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = e
        finally:
            command.result.after_execution()

        outcome = classify(command, error)
        await self._apply(entry, outcome, error)
        return outcome

    async def _execute(self, command: CommandData) -> None:
        if command.command is CommandEnum.DELETE_COMMAND:
            removed = await self.queue.remove(int(command.item_id or 0))
            if removed is not None:
                command.result.increment_downloaded()
            return
        await self.executor.execute(command)

    async def _apply(self, entry: QueueEntry, outcome: Outcome, error: BaseException | None) -> None:
        command = entry.command
        log: dict[str, Any] = {"command": str(command), "command_id": command.command_id}

        if outcome.is_success:
            if outcome is Outcome.SILENT_SUCCESS:
                logger.info("Target already gone, command done", error=str(error), **log)
            else:
                logger.info("Command succeeded", downloaded=command.result.downloaded_count, **log)
            await self.queue.finish(entry, CommandState.SUCCEEDED)
            return

        connector_error = as_connector_error(error)
        command.result.set_error(connector_error)
        if outcome is Outcome.RETRYABLE:
            command.result.increment_retries()
            if not command.result.retries_exhausted:
                logger.warning(
                    "Command failed, will retry",
                    error=str(connector_error),
                    retry_count=command.result.retry_count,
                    max_retries=command.result.max_retries,
                    **log,
                )
                await self._retry(entry)
                return

        if error is not None and not isinstance(error, ConnectorError):
            logger.exception("Command crashed", exc_info=error, **log)
        logger.error(
            "Command failed",
            error=str(connector_error),
            error_code=connector_error.status_code.value,
            retry_count=command.result.retry_count,
            **log,
        )
        await self.queue.finish(entry, CommandState.FAILED_TERMINAL)

    async def _retry(self, entry: QueueEntry) -> None:
        if self.retry_delay <= 0:
            await self.queue.requeue(entry)
            return
        await self.queue.mark_waiting(entry)
        task = asyncio.create_task(self._requeue_later(entry))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)

    async def _requeue_later(self, entry: QueueEntry) -> None:
        await asyncio.sleep(self.retry_delay)
        await self.queue.requeue(entry)
