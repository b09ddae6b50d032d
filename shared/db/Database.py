"""Async SQLAlchemy engine and session factory for the entity store."""

import os
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from shared.db.models import Base
from shared.helper.HelperConfig import HelperConfig


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    # SQLite ignores ON DELETE rules unless this is set per connection
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class Database:
    def __init__(self, helper_config: HelperConfig, url: str | None = None):
        self.logging = helper_config.get_logger()
        default_url = f"sqlite+aiosqlite:///{os.path.join(helper_config.get_root_dir(), 'data', 'pipeline.db')}"
        self.url = url or helper_config.get_string_val("DATABASE_URL", default=default_url)
        self.engine: AsyncEngine | None = None
        self.sessionmaker: async_sessionmaker[AsyncSession] | None = None

    def _is_sqlite(self) -> bool:
        return make_url(self.url).get_backend_name() == "sqlite"

    async def boot(self) -> None:
        """Create the engine and all tables that do not exist yet."""
        if self._is_sqlite():
            database = make_url(self.url).database
            if database and database != ":memory:":
                os.makedirs(os.path.dirname(os.path.abspath(database)), exist_ok=True)
        self.engine = create_async_engine(self.url)
        if self._is_sqlite():
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
        self.sessionmaker = async_sessionmaker(self.engine, expire_on_commit=False)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        self.logging.info("Entity store ready at %s", make_url(self.url).render_as_string(hide_password=True))

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            self.engine = None
            self.sessionmaker = None

    def session(self) -> AsyncSession:
        if self.sessionmaker is None:
            raise RuntimeError("Database not booted. Call boot() first.")
        return self.sessionmaker()
