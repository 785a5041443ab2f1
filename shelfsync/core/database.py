"""
Database service for ShelfSync
Async SQLAlchemy engine and session management
"""

import logging
from pathlib import Path
from typing import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy import text

from shelfsync.core.models import Base


DEFAULT_DATABASE_URL = "sqlite+aiosqlite:///./data/shelfsync.db"


class DatabaseService:
    """Async database service"""

    def __init__(self, database_url: str = DEFAULT_DATABASE_URL, echo: bool = False):
        self.database_url = database_url
        self.logger = logging.getLogger(__name__)

        engine_kwargs = {"echo": echo}
        if database_url.startswith("sqlite"):
            self._ensure_sqlite_directory(database_url)
            # Single shared connection keeps in-memory databases alive across sessions
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.engine = create_async_engine(database_url, **engine_kwargs)

        self.SessionLocal = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False
        )

        self.logger.info(f"Database service initialized: {database_url}")

    @staticmethod
    def _ensure_sqlite_directory(database_url: str):
        """Create the parent directory of a file-backed SQLite database"""
        _, _, path = database_url.partition(":///")
        if not path or path.startswith(":memory:"):
            return
        Path(path).parent.mkdir(parents=True, exist_ok=True)

    async def create_tables(self):
        """Create tables using SQLAlchemy directly"""
        self.logger.info("Creating tables using SQLAlchemy...")
        try:
            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            self.logger.info("All tables created successfully")
        except Exception as e:
            self.logger.error(f"Error creating tables: {e}")
            raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Get async database session"""
        async with self.SessionLocal() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> bool:
        """Check database connection health"""
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            self.logger.error(f"Database health check failed: {e}")
            return False

    async def close(self):
        """Close database connections"""
        await self.engine.dispose()
        self.logger.info("Database connections closed")

