import pytest
import pytest_asyncio

from backend import RoomRegistry
from connection import Connection
from dispatcher import RelayDispatcher
from tests.helpers import FakeWebSocket, Peers


@pytest.fixture
def registry():
    return RoomRegistry()


@pytest.fixture
def dispatcher(registry):
    return RelayDispatcher(registry)


@pytest.fixture
def make_connection():
    """Bare connections with no writer task, for tests that never deliver."""
    def factory(name=None, **socket_options):
        return Connection(FakeWebSocket(**socket_options), connection_id=name)

    return factory


@pytest_asyncio.fixture
async def peers(dispatcher):
    peers = Peers(dispatcher)
    yield peers
    await peers.stop()
