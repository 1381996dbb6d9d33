"""Database models for the persisted command queue."""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, BigInteger, Boolean, DateTime, Index, String
from sqlalchemy.ext.asyncio import AsyncAttrs, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(AsyncAttrs, DeclarativeBase):
    """Base class for all models."""
    pass


class StoredCommand(Base):
    """A queued command saved across restarts.

    The full command lives in `bag`; the other columns are there for
    ordering and inspection.
    """
    __tablename__ = "stored_commands"

    command_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    command: Mapped[str] = mapped_column(String(32), nullable=False)
    account_name: Mapped[str] = mapped_column(String(255), default="", nullable=False)
    in_foreground: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Queue state at save time: pending or failed_retryable
    state: Mapped[str] = mapped_column(String(32), nullable=False)
    bag: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    created_date: Mapped[int] = mapped_column(BigInteger, nullable=False)
    saved_at: Mapped[datetime] = mapped_column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )

    __table_args__ = (
        Index("ix_stored_commands_account", "account_name"),
    )


async def init_db(database_url: str) -> async_sessionmaker:
    """Initialize database and return session maker."""
    engine = create_async_engine(database_url, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return async_sessionmaker(engine, expire_on_commit=False)
