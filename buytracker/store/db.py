"""SQLModel tables and the async database handle."""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import AsyncGenerator

from sqlalchemy import BigInteger, Column, DateTime
from sqlalchemy.engine import make_url
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlmodel import Field, SQLModel

from buytracker.models import utcnow


def utc_column(nullable: bool = True) -> Column:
    """Timestamp column holding timezone-aware UTC values."""
    return Column(DateTime(timezone=True), nullable=nullable)


class GroupConfigRecord(SQLModel, table=True):
    __tablename__ = "groupconfig"

    group_id: int = Field(sa_column=Column(BigInteger, primary_key=True))
    network: str | None = Field(default=None)
    admins: str = Field(default="[]")
    token_address: str | None = Field(default=None, index=True)
    token_name: str | None = Field(default=None)
    token_symbol: str | None = Field(default=None)
    token_decimals: int | None = Field(default=None)
    token_updated_at: datetime | None = Field(default=None, sa_column=utc_column())
    notifications_enabled: bool = Field(default=True)
    emojis: str | None = Field(default=None)
    image_file_id: str | None = Field(default=None)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=utc_column(nullable=False)
    )
    updated_at: datetime = Field(
        default_factory=utcnow, sa_column=utc_column(nullable=False)
    )


class LegacyTrackedToken(SQLModel, table=True):
    """Pre-1.0 layout: tokens listed per group instead of embedded in the config."""

    __tablename__ = "trackedtoken"

    id: int | None = Field(default=None, primary_key=True)
    group_id: int = Field(sa_column=Column(BigInteger, index=True, nullable=False))
    chain: str
    token_address: str
    token_name: str | None = Field(default=None)
    token_symbol: str | None = Field(default=None)
    decimals: int | None = Field(default=None)
    emojis: str | None = Field(default=None)
    image_file_id: str | None = Field(default=None)
    is_active: bool = Field(default=True)
    created_at: datetime = Field(
        default_factory=utcnow, sa_column=utc_column(nullable=False)
    )


class Setting(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str


class Database:
    """Async engine plus session factory for the group configuration tables."""

    # Seconds SQLite waits on a locked file before failing a write
    SQLITE_BUSY_TIMEOUT = 30

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: AsyncEngine | None = None
        self._session_maker: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    def connect(self) -> None:
        if self._engine:
            return

        connect_args = {}
        if self.is_sqlite:
            connect_args["timeout"] = self.SQLITE_BUSY_TIMEOUT
            database = make_url(self.url).database
            if database and database != ":memory:":
                Path(database).expanduser().resolve().parent.mkdir(
                    parents=True, exist_ok=True
                )

        self._engine = create_async_engine(self.url, connect_args=connect_args)
        self._session_maker = async_sessionmaker(self._engine, expire_on_commit=False)

    async def init_models(self) -> None:
        """Create missing tables; an unreachable database is fatal."""
        if not self._engine:
            raise RuntimeError("Database engine is not initialised")

        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except (OperationalError, OSError) as exc:
            raise RuntimeError(f"Database is unreachable: {exc}") from exc

    async def dispose(self) -> None:
        if self._engine:
            await self._engine.dispose()
            self._engine = None
            self._session_maker = None

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        if not self._session_maker:
            raise RuntimeError("Database session maker is not initialised")

        async with self._session_maker() as session:
            yield session


__all__ = [
    "Database",
    "GroupConfigRecord",
    "LegacyTrackedToken",
    "Setting",
]
