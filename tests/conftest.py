import httpx
import pytest
import pytest_asyncio

from console_service import ConsoleSession
from engine_client import EngineClient
from fake_engine import ENGINE_BASE, FakeEngine
from mutation_pipeline import MutationPipeline
from notifications import Notifier


@pytest.fixture
def engine():
    return FakeEngine()


@pytest_asyncio.fixture
async def client(engine):
    client = EngineClient(base_url=ENGINE_BASE, transport=httpx.MockTransport(engine))
    yield client
    await client.aclose()


@pytest.fixture
def notifier():
    return Notifier()


@pytest.fixture
def pipeline(notifier):
    return MutationPipeline(notifier)


@pytest_asyncio.fixture
async def session(client):
    return ConsoleSession(client)


@pytest_asyncio.fixture
async def loaded_session(session):
    await session.load()
    session.notifier.drain()
    return session
