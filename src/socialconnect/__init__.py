"""Multi-protocol social network connectors.

This package talks to Twitter-like, Mastodon and Pump.io servers through one
activity model and runs the work as queued background commands.

Key components:
- activity_types: Unified activity model (Activity, Note, Actor, Audience)
- api_routines: Capability registry of abstract API operations
- http_connection: httpx transport with OAuth 1.0a/2.0 and client registration
- connections: Per-backend adapters (Twitter, Mastodon, Pump.io, local)
- resolver: Federated host resolution with per-host client registration
- commands: Queued commands and their results
- command_queue, scheduler, executor, classifier: Background execution
- config: Pydantic configuration management
- models, queue_store: SQLAlchemy persistence of the command queue
- main: Scheduler plus HTTP control API entry point
"""

from .activity_types import (
    Activity,
    ActivityType,
    Actor,
    Attachment,
    Attachments,
    Audience,
    ContentType,
    Note,
    ObjectType,
    TimelinePosition,
    TriState,
)
from .api_routines import ApiRoutine
from .classifier import Outcome, classify
from .command_queue import CommandQueue, CommandState
from .commands import CommandData, CommandEnum, CommandResult, Timeline, TimelineType
from .config import (
    AccountConfig,
    ConnectorConfig,
    DatabaseConfig,
    HttpConfig,
    QueueConfig,
    ServerConfig,
    load_config,
)
from .connections import (
    Connection,
    LocalConnection,
    MastodonConnection,
    OriginConfig,
    OriginType,
    PumpioConnection,
    TheTwitterConnection,
    create_connection,
)
from .errors import (
    CapabilityError,
    ConnectorError,
    MalformedRequestError,
    NoCredentialsError,
    ParseError,
    StatusCode,
    TransportError,
)
from .executor import CommandExecutor
from .http_connection import ConnectionData, HttpConnection, OAuthClientKeys
from .models import StoredCommand, init_db
from .queue_store import QueueStore
from .resolver import ConnectionAndUrl, ConnectionResolver
from .scheduler import CommandScheduler
from .storage import InMemoryStorage, Storage

__version__ = "0.1.0"

__all__ = [
    # Types
    "Activity",
    "ActivityType",
    "Actor",
    "Attachment",
    "Attachments",
    "Audience",
    "ContentType",
    "Note",
    "ObjectType",
    "TimelinePosition",
    "TriState",
    "ApiRoutine",
    # Errors
    "CapabilityError",
    "ConnectorError",
    "MalformedRequestError",
    "NoCredentialsError",
    "ParseError",
    "StatusCode",
    "TransportError",
    # Connections
    "Connection",
    "ConnectionAndUrl",
    "ConnectionData",
    "ConnectionResolver",
    "HttpConnection",
    "LocalConnection",
    "MastodonConnection",
    "OAuthClientKeys",
    "OriginConfig",
    "OriginType",
    "PumpioConnection",
    "TheTwitterConnection",
    "create_connection",
    # Commands
    "CommandData",
    "CommandEnum",
    "CommandExecutor",
    "CommandQueue",
    "CommandResult",
    "CommandScheduler",
    "CommandState",
    "Outcome",
    "Timeline",
    "TimelineType",
    "classify",
    # Storage
    "InMemoryStorage",
    "QueueStore",
    "Storage",
    "StoredCommand",
    "init_db",
    # Config
    "AccountConfig",
    "ConnectorConfig",
    "DatabaseConfig",
    "HttpConfig",
    "QueueConfig",
    "ServerConfig",
    "load_config",
]
