import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from dependency_injector import providers
from httpx import ASGITransport, AsyncClient

from tests.fakes import FakeChannel


@pytest.fixture
def channel():
    return FakeChannel()


@pytest_asyncio.fixture(name="client")
async def test_client(channel):
    from fulfillment.entrypoints.app import app, container

    # fresh catalog, ledger and allocator for every app start
    container.catalog.reset()
    container.ledger.reset()
    container.allocator.reset()

    with container.redis.override(providers.Object(channel)):
        async with LifespanManager(app):
            async with AsyncClient(
                    transport=ASGITransport(app=app),
                    base_url="http://localhost:13370",
            ) as client:
                yield client
