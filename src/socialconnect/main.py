"""Main entry point for the social connector service.

Runs the command scheduler together with a small HTTP control API for
submitting, listing and cancelling commands.
"""

import argparse
import asyncio
import logging
import signal
from datetime import datetime, timezone

import structlog
from aiohttp import web

from .command_queue import CommandQueue
from .commands import CommandData, CommandEnum
from .config import AccountConfig, ConnectorConfig, load_config
from .connections import Connection, LocalConnection, create_connection
from .errors import ConnectorError
from .executor import CommandExecutor
from .http_connection import (
    ConnectionData,
    InMemoryClientKeysStore,
    OAuthClientKeys,
    build_origin_url,
)
from .models import init_db
from .queue_store import QueueStore
from .scheduler import CommandScheduler
from .storage import InMemoryStorage, Storage

logger = structlog.get_logger()

# Commands that are not bound to a configured account
ACCOUNTLESS_COMMANDS = (CommandEnum.DELETE_COMMAND, CommandEnum.GET_ATTACHMENT)


def connection_data_for(account: AccountConfig) -> ConnectionData:
    """Connection data of an account's own host."""
    keys = None
    if account.client_key and account.client_secret:
        keys = OAuthClientKeys(account.client_key, account.client_secret)
    return ConnectionData(
        origin_url=account.origin_url or build_origin_url(account.host, account.is_ssl),
        is_ssl=account.is_ssl,
        client_keys=keys,
        access_token=account.access_token,
        access_secret=account.access_secret,
        account_name=account.account_name,
    )


class ConnectorService:
    """Main service application."""

    def __init__(self, config: ConnectorConfig, storage: Storage | None = None):
        """Initialize service.

        Args:
            config: Service configuration
            storage: Where command results go (kept in memory if omitted)
        """
        self.config = config
        self.storage = storage or InMemoryStorage()
        self.keys_store = InMemoryClientKeysStore()
        self.local = LocalConnection()
        self.connections: dict[str, Connection] = {}
        self.session_maker = None
        self.queue_store = None
        self.executor = None
        self.scheduler = None
        self.app = None
        self._running = False

    async def setup(self) -> None:
        """Initialize database, connections and scheduler."""
        self.session_maker = await init_db(self.config.database.url)
        self.queue_store = QueueStore(self.session_maker)

        http = self.config.http
        for account in self.config.accounts:
            data = connection_data_for(account)
            if data.are_client_keys_present:
                self.keys_store.save(data.host, data.client_keys)
            self.connections[account.account_name] = create_connection(
                account.origin_type,
                data,
                keys_store=self.keys_store,
                local=self.local,
                timeout=http.timeout,
                user_agent=http.user_agent,
                application_name=http.application_name,
            )
            logger.info(
                "Account configured",
                account=account.account_name,
                origin_type=account.origin_type.value,
                host=data.host,
            )

        self.executor = CommandExecutor(
            self.connections,
            self.storage,
            local=self.local,
            download_limit=http.download_limit,
        )
        queue = self.config.queue
        self.scheduler = CommandScheduler(
            self.executor,
            CommandQueue(),
            workers=queue.workers,
            execution_timeout=queue.execution_timeout_seconds,
            max_retries=queue.max_retries,
            retry_delay=queue.retry_delay_seconds,
        )

        restored = await self.queue_store.load()
        for command in restored:
            await self.scheduler.submit(command)
        await self.queue_store.clear()

        logger.info("Service initialized", accounts=len(self.connections), restored=len(restored))

    async def cleanup(self) -> None:
        """Stop the scheduler, save what is still queued, close connections."""
        self._running = False

        if self.scheduler:
            await self.scheduler.stop()
            if self.queue_store:
                await self.queue_store.save(self.scheduler.queue)

        for connection in self.connections.values():
            await connection.close()
        await self.local.close()

        logger.info("Service cleaned up")

    # === HTTP Handlers ===

    def _queued_twin(self, command: CommandData) -> CommandData:
        """The queued command a submitted one was coalesced with."""
        for queued, _ in self.scheduler.queue.snapshot():
            if queued == command:
                return queued
        return command

    async def handle_submit(self, request: web.Request) -> web.Response:
        """Submit a command.

        POST /commands[?wait=seconds]
        Body: command property bag, e.g. {"command": "fetch-timeline", ...}
        """
        try:
            bag = await request.json()
        except ValueError:
            return web.json_response({"error": "Body must be a JSON object"}, status=400)
        if not isinstance(bag, dict):
            return web.json_response({"error": "Body must be a JSON object"}, status=400)

        timeout = None
        wait = request.query.get("wait")
        if wait:
            try:
                timeout = float(wait)
            except ValueError:
                return web.json_response({"error": "wait must be a number of seconds"}, status=400)

        try:
            command = CommandData.from_bag(bag)
        except ConnectorError as e:
            return web.json_response({"error": e.message}, status=400)
        if command.is_empty:
            return web.json_response(
                {"error": f"Unknown command: {bag.get('command')!r}"},
                status=400,
            )
        if command.command not in ACCOUNTLESS_COMMANDS and command.account_name not in self.connections:
            return web.json_response(
                {"error": f"Unknown account: {command.account_name!r}"},
                status=400,
            )

        future = await self.scheduler.submit(command)
        queued = self._queued_twin(command)
        if timeout is None:
            return web.json_response({
                "command_id": queued.command_id,
                "coalesced": queued is not command,
                "state": self._state_name(queued),
            }, status=202)

        try:
            finished = await asyncio.wait_for(asyncio.shield(future), timeout=timeout)
        except asyncio.TimeoutError:
            return web.json_response({
                "command_id": queued.command_id,
                "state": self._state_name(queued),
            }, status=202)
        except asyncio.CancelledError:
            if not future.cancelled():
                raise
            return web.json_response(
                {"command_id": queued.command_id, "state": "removed"},
                status=410,
            )
        return web.json_response({
            "command_id": finished.command_id,
            "success": not finished.result.has_error,
            "result": finished.to_bag(),
            "summary": finished.summary(),
        })

    def _state_name(self, command: CommandData) -> str:
        state = self.scheduler.queue.state_of(command)
        return state.value if state is not None else "done"

    async def handle_list(self, request: web.Request) -> web.Response:
        """List queued commands in execution order.

        GET /commands
        """
        return web.json_response({
            "commands": [
                {
                    "command_id": command.command_id,
                    "state": state.value,
                    "summary": command.summary(),
                    "bag": command.to_bag(),
                }
                for command, state in self.scheduler.queue.snapshot()
            ]
        })

    async def handle_cancel(self, request: web.Request) -> web.Response:
        """Remove a queued command.

        DELETE /commands/{command_id}
        """
        try:
            command_id = int(request.match_info["command_id"])
        except ValueError:
            return web.json_response({"error": "command_id must be an integer"}, status=400)

        removed = await self.scheduler.queue.remove(command_id)
        if removed is None:
            return web.json_response(
                {"error": "No such command, or it is executing"},
                status=404,
            )
        return web.json_response({"success": True, "command_id": removed.command_id})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Health check endpoint.

        GET /health
        """
        running = self.scheduler is not None and self.scheduler.running
        return web.json_response({
            "status": "healthy" if running else "degraded",
            "scheduler_running": running,
            "queued": len(self.scheduler.queue) if self.scheduler else 0,
            "accounts": sorted(self.connections),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    # === Server Setup ===

    def create_app(self) -> web.Application:
        """Create aiohttp web application."""
        app = web.Application()

        app.router.add_post("/commands", self.handle_submit)
        app.router.add_get("/commands", self.handle_list)
        app.router.add_delete("/commands/{command_id}", self.handle_cancel)
        app.router.add_get("/health", self.handle_health)

        return app

    async def run(self) -> None:
        """Run the scheduler and the control API until stopped."""
        await self.setup()
        self._running = True

        self.app = self.create_app()
        await self.scheduler.start()

        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(
            runner,
            self.config.server.host,
            self.config.server.port,
        )
        await site.start()

        logger.info(
            "Control API started",
            host=self.config.server.host,
            port=self.config.server.port,
        )

        # Wait for shutdown signal
        try:
            while self._running:
                await asyncio.sleep(1)
        finally:
            await runner.cleanup()
            await self.cleanup()


def configure_logging(level: str) -> None:
    level_number = logging.getLevelNamesMapping().get(level.upper(), logging.INFO)
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(level_number),
    )


async def async_main(config: ConnectorConfig | None = None) -> None:
    """Async main entry point."""
    if config is None:
        config = load_config()

    configure_logging(config.log_level)

    service = ConnectorService(config)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()

    def shutdown():
        service._running = False

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown)

    await service.run()


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(description="Social network connector service")
    parser.add_argument("--config", help="YAML configuration file (default: environment)")
    args = parser.parse_args()
    asyncio.run(async_main(load_config(args.config)))


if __name__ == "__main__":
    main()
