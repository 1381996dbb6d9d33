"""Configuration for the social connector service."""

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .connections.base import OriginType


class QueueConfig(BaseSettings):
    """Command queue and worker pool settings."""

    model_config = SettingsConfigDict(env_prefix="QUEUE_")

    workers: int = Field(
        default=2,
        ge=1,
        le=64,
        description="Number of concurrent command workers"
    )
    execution_timeout_seconds: float = Field(
        default=120.0,
        gt=0,
        description="Wall-clock limit for one command execution"
    )
    max_retries: int = Field(
        default=10,
        ge=1,
        description="Retries after which a failing command becomes terminal"
    )
    retry_delay_seconds: float = Field(
        default=0.0,
        ge=0,
        description="Delay before a retryable command is pending again"
    )


class HttpConfig(BaseSettings):
    """HTTP client settings."""

    model_config = SettingsConfigDict(env_prefix="HTTP_")

    timeout: float = Field(
        default=30.0,
        gt=0,
        description="Request timeout in seconds"
    )
    user_agent: str = Field(
        default="socialconnect/0.1",
        description="User-Agent header sent to every origin"
    )
    application_name: str = Field(
        default="SocialConnect",
        description="Client name used when registering with a host"
    )
    download_limit: int = Field(
        default=0,
        ge=0,
        description="Items requested per timeline page (0 = each backend's maximum)"
    )


class DatabaseConfig(BaseSettings):
    """Database settings."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    url: str = Field(
        default="sqlite+aiosqlite:///socialconnect.db",
        description="SQLAlchemy database URL for the persisted command queue"
    )


class ServerConfig(BaseSettings):
    """Control API server settings."""

    model_config = SettingsConfigDict(env_prefix="SERVER_")

    host: str = Field(
        default="127.0.0.1",
        description="Server host address"
    )
    port: int = Field(
        default=8080,
        ge=1,
        le=65535,
        description="Server port"
    )


class AccountConfig(BaseModel):
    """One account on one origin."""

    account_name: str = Field(description="Unique account name, e.g. user@host")
    origin_type: OriginType = Field(description="Backend of the origin")
    origin_url: str = Field(default="", description="Base URL of the origin")
    is_ssl: bool = Field(default=True, description="Use https for hosts resolved later")
    access_token: str = Field(default="", description="OAuth access token")
    access_secret: str = Field(default="", description="OAuth 1.0a token secret")
    client_key: str = Field(default="", description="Pre-registered OAuth client key")
    client_secret: str = Field(default="", description="Pre-registered OAuth client secret")

    @field_validator("origin_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def username(self) -> str:
        return self.account_name.split("@", 1)[0]

    @property
    def host(self) -> str:
        """Host part of the account name, or of the origin URL."""
        if "@" in self.account_name:
            return self.account_name.split("@", 1)[1].lower()
        return self.origin_url.split("://", 1)[-1].split("/", 1)[0].lower()


class ConnectorConfig(BaseSettings):
    """Main configuration combining all settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Sub-configs
    queue: QueueConfig = Field(default_factory=QueueConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)

    accounts: list[AccountConfig] = Field(
        default_factory=list,
        description="Accounts whose commands the service executes"
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("accounts")
    @classmethod
    def unique_account_names(cls, v: list[AccountConfig]) -> list[AccountConfig]:
        names = [account.account_name for account in v]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate account names: {', '.join(duplicates)}")
        return v

    def account(self, account_name: str) -> AccountConfig | None:
        for account in self.accounts:
            if account.account_name == account_name:
                return account
        return None

    @classmethod
    def from_yaml(cls, path: str) -> "ConnectorConfig":
        """Load configuration from YAML file."""
        import yaml
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})


def load_config(path: str | None = None) -> ConnectorConfig:
    """Load configuration from a YAML file, or from environment and .env file."""
    if path:
        return ConnectorConfig.from_yaml(path)
    return ConnectorConfig()
