import asyncio
import pytest
from marketplace_dm.client.connection import ConnectionManager, ConnectionState, push_url_from_origin
from marketplace_dm.client.query_cache import QueryCache


def make_manager(transport, cache=None, **kwargs):
    kwargs.setdefault('reconnect_delay', 0.01)
    return ConnectionManager('http://shop.test', 'tok', cache or QueryCache(), transport_factory=transport, **kwargs)


def test_push_url_from_origin():
    assert push_url_from_origin('https://shop.example.com', 'abc') == 'wss://shop.example.com/api/ws?token=abc'
    assert push_url_from_origin('http://localhost:8000/', 'abc') == 'ws://localhost:8000/api/ws?token=abc'


@pytest.mark.asyncio
async def test_connect_authenticates_and_reaches_ready(push_transport, wait_until):
    transport = push_transport
    manager = make_manager(transport)
    states = []
    manager.on('state', states.append)

    assert await manager.connect(7) is True
    await wait_until(lambda: manager.state == ConnectionState.READY)

    assert transport.urls == ['ws://shop.test/api/ws?token=tok']
    assert transport.sockets[0].sent == [{'type': 'auth', 'userId': 7}]
    assert states == [ConnectionState.CONNECTING, ConnectionState.AUTHENTICATED, ConnectionState.READY]

    # redundant connect for the same user is refused
    assert await manager.connect(7) is False
    assert transport.attempts == 1

    await manager.disconnect()
    assert manager.state == ConnectionState.DISCONNECTED
    assert transport.sockets[0].closed


@pytest.mark.asyncio
async def test_reconnect_stops_after_cap_and_resets_after_disconnect(push_transport, wait_until):
    transport = push_transport
    transport.fail = True
    manager = make_manager(transport, max_reconnect_attempts=5)
    offline = asyncio.Event()
    manager.on('offline', offline.set)

    await manager.connect(7)
    await asyncio.wait_for(offline.wait(), 2)

    # first attempt plus five reconnects
    assert transport.attempts == 6
    assert manager.reconnect_attempts == 5
    assert manager.live_updates_disabled
    assert not manager.reconnect_pending
    await asyncio.sleep(0.05)
    assert transport.attempts == 6

    await manager.disconnect()
    assert manager.reconnect_attempts == 0
    assert not manager.live_updates_disabled

    transport.fail = False
    await manager.connect(7)
    await wait_until(lambda: manager.state == ConnectionState.READY)
    assert manager.reconnect_attempts == 0
    await manager.disconnect()


@pytest.mark.asyncio
async def test_dropped_connection_reconnects_and_resets_counter(push_transport, wait_until):
    transport = push_transport
    manager = make_manager(transport)
    await manager.connect(7)
    await wait_until(lambda: manager.state == ConnectionState.READY)

    transport.sockets[0].inbox.put_nowait(None)
    await wait_until(lambda: transport.attempts == 2 and manager.state == ConnectionState.READY)
    assert manager.reconnect_attempts == 0
    assert transport.sockets[0].closed

    await manager.disconnect()


@pytest.mark.asyncio
async def test_disconnect_cancels_pending_reconnect(push_transport, wait_until):
    transport = push_transport
    transport.fail = True
    manager = make_manager(transport, reconnect_delay=0.2)
    await manager.connect(7)
    await wait_until(lambda: manager.reconnect_pending)

    await manager.disconnect()
    await manager.disconnect()
    assert not manager.reconnect_pending
    await asyncio.sleep(0.3)
    assert transport.attempts == 1
    assert manager.state == ConnectionState.DISCONNECTED


@pytest.mark.asyncio
async def test_notification_invalidates_caches(push_transport, wait_until):
    fetched = []
    cache = QueryCache()

    def fetcher(name):
        async def fetch():
            fetched.append(name)
            return name
        return fetch

    cache.register(('notifications',), fetcher('notifications'))
    cache.register(('notifications', 'unread_count'), fetcher('notification_count'))
    cache.register(('messages', 'all'), fetcher('messages'))
    cache.register(('messages', 3), fetcher('conversation'))

    transport = push_transport
    manager = make_manager(transport, cache=cache)
    seen = []
    manager.on('notification', seen.append)
    await manager.connect(7)
    await wait_until(lambda: manager.state == ConnectionState.READY)

    socket = transport.sockets[0]
    socket.inbox.put_nowait({'type': 'notification', 'data': {'type': 'system'}})
    await wait_until(lambda: len(fetched) == 2)
    assert sorted(fetched) == ['notification_count', 'notifications']

    fetched.clear()
    socket.inbox.put_nowait({'type': 'notification', 'data': {'type': 'message', 'relatedId': 1}})
    await wait_until(lambda: len(fetched) == 4)
    assert sorted(fetched) == ['conversation', 'messages', 'notification_count', 'notifications']
    assert [d['type'] for d in seen] == ['system', 'message']

    await manager.disconnect()
