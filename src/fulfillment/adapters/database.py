from typing import Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from fulfillment.adapters.orm import metadata


class AsyncSQLAlchemy:
    def __init__(self, db_uri: str) -> None:
        self._db_uri = db_uri
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None

    async def create_database(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def drop_database(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)

    async def connect(self, **kwargs):
        self._engine = create_async_engine(str(self._db_uri), **kwargs)

    async def disconnect(self):
        if self._engine is not None:
            await self._engine.dispose()
        self._engine = None
        self._session_factory = None

    def init_session_factory(
            self,
            autoflush: bool = False,
    ):
        # objects stay usable after commit, the allocator commits once per package
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            autoflush=autoflush,
            expire_on_commit=False,
        )

    @property
    def session_factory(self) -> async_sessionmaker:
        assert self._session_factory is not None
        return self._session_factory
