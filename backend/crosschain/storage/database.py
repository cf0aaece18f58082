"""
Database configuration and session management.

Provides SQLAlchemy async engine setup and session management for both
SQLite (development) and PostgreSQL (production).
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional
from urllib.parse import urlparse

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from ..core.settings import get_settings
from .models import Base

logger = logging.getLogger(__name__)


def _parse_sqlite_url(database_url: str) -> tuple[str, Optional[Path]]:
    """
    Parse SQLite database URL and return async URL and database path.

    Args:
        database_url: Database URL in format sqlite:///path/to/db

    Returns:
        Tuple of (async_url, db_path); db_path is None for in-memory databases
    """
    if database_url.startswith("sqlite+aiosqlite://"):
        async_url = database_url
        db_path_str = database_url.replace("sqlite+aiosqlite:///", "")
    elif database_url.startswith("sqlite://"):
        db_path_str = database_url.replace("sqlite:///", "")
        async_url = f"sqlite+aiosqlite:///{db_path_str}"
    else:
        raise ValueError(f"Unsupported database URL format: {database_url}")

    if db_path_str in ("", ":memory:"):
        return async_url, None
    return async_url, Path(db_path_str)


class DatabaseManager:
    """
    Database manager supporting both SQLite and PostgreSQL.

    Features:
    - Automatic database type detection
    - Connection pooling for PostgreSQL
    - WAL mode for file-backed SQLite
    - Health check
    """

    def __init__(self, database_url: Optional[str] = None, echo: Optional[bool] = None) -> None:
        """
        Initialize database manager.

        Args:
            database_url: Override for the configured database URL
            echo: Override for SQL echo
        """
        settings = get_settings()
        self.database_url = database_url or settings.database_url
        self.echo = settings.database_echo if echo is None else echo
        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self.database_path: Optional[Path] = None
        self.database_type: Optional[str] = None
        self._is_initialized = False

    def _detect_database_type(self, database_url: str) -> str:
        """
        Detect database type from URL.

        Returns:
            Database type ('postgresql' or 'sqlite')
        """
        parsed = urlparse(database_url)

        if parsed.scheme.startswith("postgresql"):
            return "postgresql"
        elif parsed.scheme.startswith("sqlite"):
            return "sqlite"
        else:
            raise ValueError(f"Unsupported database type in URL: {database_url}")

    def _create_postgresql_engine(self, database_url: str) -> AsyncEngine:
        """Create PostgreSQL async engine with connection pooling."""
        if database_url.startswith("postgresql://"):
            async_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
        else:
            async_url = database_url

        return create_async_engine(
            async_url,
            echo=self.echo,
            pool_size=10,
            max_overflow=20,
            pool_recycle=3600,
            pool_pre_ping=True,
            connect_args={
                "command_timeout": 60,
                "server_settings": {"application_name": "crosschain_sync"},
            },
        )

    def _create_sqlite_engine(self, database_url: str) -> AsyncEngine:
        """Create SQLite async engine with WAL mode and pragmas."""
        async_url, db_path = _parse_sqlite_url(database_url)
        self.database_path = db_path

        if db_path is not None:
            db_path.parent.mkdir(parents=True, exist_ok=True)

        engine = create_async_engine(
            async_url,
            echo=self.echo,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        is_file_backed = db_path is not None

        @event.listens_for(engine.sync_engine, "connect")
        def set_sqlite_pragma(dbapi_connection, connection_record):
            """Set SQLite pragmas for performance and safety."""
            cursor = dbapi_connection.cursor()
            if is_file_backed:
                cursor.execute("PRAGMA journal_mode=WAL")
                cursor.execute("PRAGMA synchronous=NORMAL")
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA busy_timeout=30000")
            cursor.close()

        return engine

    async def initialize(self, create_tables: bool = True) -> None:
        """
        Initialize database engine and session factory.

        Args:
            create_tables: Create missing tables after connecting
        """
        if self._is_initialized:
            logger.debug("Database already initialized")
            return

        self.database_type = self._detect_database_type(self.database_url)

        if self.database_type == "postgresql":
            self.engine = self._create_postgresql_engine(self.database_url)
        else:
            self.engine = self._create_sqlite_engine(self.database_url)

        self.session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        try:
            if create_tables:
                await self.create_tables()
            if not await self.check_health():
                raise RuntimeError("Database health check failed during initialization")
        except Exception:
            await self.close()
            raise

        self._is_initialized = True
        logger.info(f"Database initialized successfully ({self.database_type})")

    async def create_tables(self) -> None:
        """Create all tables that do not exist yet."""
        if self.engine is None:
            raise RuntimeError("Database engine not created")
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        """Close database connections."""
        if self.engine:
            await self.engine.dispose()
            logger.info("Database engine disposed")

        self._is_initialized = False
        self.engine = None
        self.session_factory = None

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get database session context manager.

        Commits when the block exits cleanly and rolls back otherwise; the
        original error always propagates.

        Yields:
            AsyncSession: Database session
        """
        if not self.session_factory:
            raise RuntimeError("Database not initialized")

        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def check_health(self) -> bool:
        """
        Run a trivial query against the database.

        Returns:
            True if database is healthy
        """
        if self.engine is None:
            return False
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(text("SELECT 1"))
                return result.scalar() == 1
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return False

    async def health_check(self) -> Dict[str, Any]:
        """Health status dictionary for diagnostics."""
        healthy = self._is_initialized and await self.check_health()
        return {
            "status": "OK" if healthy else "ERROR",
            "healthy": healthy,
            "database_type": self.database_type,
        }

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized
