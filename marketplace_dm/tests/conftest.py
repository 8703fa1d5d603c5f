import asyncio
import os
import tempfile
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Configure test environment before the app modules read it
_TMP = tempfile.mkdtemp(prefix='marketplace_dm_tests_')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(_TMP, 'test.db')}"
os.environ['UPLOAD_ROOT'] = os.path.join(_TMP, 'uploads')
os.environ.pop('REDIS_URL', None)

from marketplace_dm.main import app  # noqa: E402
from marketplace_dm.models import Base, engine  # noqa: E402
from marketplace_dm import crud  # noqa: E402


@pytest_asyncio.fixture
async def db():
    """Fresh schema per test; the engine is disposed so no connection outlives its loop"""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def client(db):
    async with AsyncClient(transport=ASGITransport(app=app), base_url='http://test') as ac:
        yield ac


@pytest_asyncio.fixture
async def users(db):
    """alice, bob and carol"""
    alice = await crud.create_user('alice', 'Alice A')
    bob = await crud.create_user('bob', 'Bob B')
    carol = await crud.create_user('carol', 'Carol C')
    return alice, bob, carol


@pytest.fixture
def fake_socket():
    class FakeSocket:
        def __init__(self):
            self.sent = []

        async def send_json(self, data):
            self.sent.append(data)

    return FakeSocket()


class FakePushSocket:
    """In-memory push socket; answers the auth frame like the server does"""

    def __init__(self):
        self.sent = []
        self.inbox = asyncio.Queue()
        self.closed = False

    async def send_json(self, data):
        self.sent.append(data)
        if data.get('type') == 'auth':
            self.inbox.put_nowait({'type': 'auth_success', 'message': 'Authenticated'})

    async def receive_json(self):
        return await self.inbox.get()

    async def close(self):
        self.closed = True


class FakeTransport:
    """Transport factory for the connection manager; fail=True refuses every connection"""

    def __init__(self):
        self.fail = False
        self.urls = []
        self.sockets = []

    @property
    def attempts(self):
        return len(self.urls)

    async def __call__(self, url):
        self.urls.append(url)
        if self.fail:
            raise OSError('connection refused')
        socket = FakePushSocket()
        self.sockets.append(socket)
        return socket


@pytest.fixture
def push_transport():
    return FakeTransport()


async def _wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError('condition not reached in time')
        await asyncio.sleep(0.005)


@pytest.fixture
def wait_until():
    return _wait_until
