"""Database connection and session management."""
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from moneyunify_gateway.config import Settings

from .models import Base


class Database:
    """
    Owns one async engine and its session factory.

    Created by the entry point and handed to the store; there is no
    module-level engine.
    """

    def __init__(self, url: str, echo: bool = False, **engine_kwargs: Any) -> None:
        """
        Initialize database.

        Args:
            url: SQLAlchemy async URL (postgresql+asyncpg://..., sqlite+aiosqlite://...)
            echo: Echo SQL statements
            **engine_kwargs: Extra create_async_engine arguments
        """
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, echo=echo, **engine_kwargs)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        """Build a Database with pool options from settings."""
        kwargs: Dict[str, Any] = {}
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_pre_ping=True,  # Verify connections before using
                pool_recycle=3600,  # Recycle connections after 1 hour
            )
        return cls(settings.database_url, echo=settings.database_echo, **kwargs)

    async def init_db(self) -> None:
        """Create all tables defined in models if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> None:
        """Round-trip a trivial query."""
        async with self.session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

    async def close(self) -> None:
        """Close database connections and dispose of the engine."""
        await self.engine.dispose()
