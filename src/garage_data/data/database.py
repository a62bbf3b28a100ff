"""
Relational Store
Owns the async engine and session factory of the durable store
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .models import Base


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RelationalStore:
    """
    Async SQLAlchemy engine wrapper

    - Creates the schema on initialize()
    - Hands out AsyncSession objects; callers own commit/rollback
    - Enforces SQLite foreign keys unless disabled
    """

    def __init__(self,
                 database_url: str,
                 enforce_foreign_keys: bool = True,
                 echo: bool = False):
        self.logger = logging.getLogger(__name__)
        self.database_url = database_url
        self.enforce_foreign_keys = enforce_foreign_keys
        self.echo = echo

        self.engine: Optional[AsyncEngine] = None
        self.session_factory: Optional[async_sessionmaker] = None
        self.initialized = False

    @property
    def is_sqlite(self) -> bool:
        return make_url(self.database_url).get_backend_name() == "sqlite"

    @property
    def database_file(self) -> Optional[Path]:
        """Path of the SQLite database file, None for other engines or in-memory databases"""
        if not self.is_sqlite:
            return None
        database = make_url(self.database_url).database
        if not database or database == ":memory:":
            return None
        return Path(database)

    def _create_engine(self) -> AsyncEngine:
        engine = create_async_engine(self.database_url, echo=self.echo, future=True)
        if self.is_sqlite and self.enforce_foreign_keys:
            event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    async def initialize(self):
        """Create the engine and all tables"""
        try:
            if self.engine is None:
                if self.database_file is not None:
                    self.database_file.parent.mkdir(parents=True, exist_ok=True)
                self.engine = self._create_engine()
                self.session_factory = async_sessionmaker(
                    self.engine,
                    class_=AsyncSession,
                    expire_on_commit=False
                )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self.initialized = True
            self.logger.info(f"Relational store initialized: {self.database_url}")

        except Exception as e:
            self.logger.error(f"Failed to initialize relational store: {e}")
            raise

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session; initializes the store on first use"""
        if not self.initialized:
            await self.initialize()
        async with self.session_factory() as session:
            yield session

    async def dispose(self):
        """Close every pooled connection; initialize() reopens the store"""
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.session_factory = None
        self.initialized = False
        self.logger.debug("Relational store disposed")
