import uuid

import pytest
import pytest_asyncio

from fulfillment.adapters.database import AsyncSQLAlchemy
from fulfillment.adapters.orm import start_mappers


def random_order_id() -> int:
    return int(uuid.uuid4().hex[:6], 16)


@pytest.fixture(scope="session", autouse=True)
def mapper():
    start_mappers()


@pytest_asyncio.fixture(name="in_memory_db")
async def in_memory_db_maker():
    db = AsyncSQLAlchemy("sqlite+aiosqlite:///:memory:")
    await db.connect()
    await db.create_database()
    db.init_session_factory()
    yield db
    await db.drop_database()
    await db.disconnect()


@pytest.fixture
def sqlite_session_factory(in_memory_db):
    yield in_memory_db.session_factory
