import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect
from marketplace_dm.main import app
from marketplace_dm.auth import create_access_token
from marketplace_dm.ws_manager import push_notifier


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'id': user_id})}"}


def ws_url(user_id):
    return f"/api/ws?token={create_access_token({'id': user_id})}"


def test_push_handshake():
    # no context manager: startup hooks (redis, metrics) stay off
    client = TestClient(app)
    with client.websocket_connect(ws_url(41)) as ws:
        ws.send_json({'type': 'ping'})
        ws.send_json({'type': 'auth', 'userId': 41})
        assert ws.receive_json() == {'type': 'auth_success', 'message': 'Authenticated'}
        assert push_notifier.is_connected(41)


def test_push_ignores_binary_frames():
    client = TestClient(app)
    with client.websocket_connect(ws_url(44)) as ws:
        ws.send_bytes(b'\x00\x01')
        ws.send_json({'type': 'auth', 'userId': 44})
        assert ws.receive_json() == {'type': 'auth_success', 'message': 'Authenticated'}
        ws.send_bytes(b'after auth')
        ws.send_json({'type': 'ping'})
        assert push_notifier.is_connected(44)
    assert not push_notifier.is_connected(44)


def test_push_auth_mismatch_closes():
    client = TestClient(app)
    with client.websocket_connect(ws_url(42)) as ws:
        ws.send_json({'type': 'auth', 'userId': 43})
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
        assert exc.value.code == 1008
    assert not push_notifier.is_connected(43)


def test_push_requires_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect('/api/ws?token=garbage'):
            pass


@pytest.mark.asyncio
async def test_event_dropped_without_socket():
    assert await push_notifier.deliver_local(999, {'type': 'notification', 'data': {}}) == 0


@pytest.mark.asyncio
async def test_send_pushes_notification_to_receiver(client, users, fake_socket):
    alice, bob, _ = users
    await push_notifier.register(bob.id, fake_socket)
    try:
        r = await client.post('/api/messages', json={'receiverId': bob.id, 'content': 'live?'},
                              headers=auth_headers(alice.id))
        assert r.status_code == 201
    finally:
        await push_notifier.unregister(bob.id, fake_socket)

    assert len(fake_socket.sent) == 1
    event = fake_socket.sent[0]
    assert event['type'] == 'notification'
    assert event['data']['type'] == 'message'
    assert event['data']['relatedId'] == r.json()['id']
    assert event['data']['senderId'] == alice.id
    assert event['data']['userId'] == bob.id


@pytest.mark.asyncio
async def test_send_succeeds_when_receiver_offline(client, users):
    alice, bob, _ = users
    r = await client.post('/api/messages', json={'receiverId': bob.id, 'content': 'later'},
                          headers=auth_headers(alice.id))
    assert r.status_code == 201
