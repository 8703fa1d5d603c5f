import pytest
from marketplace_dm import crud
from marketplace_dm.auth import create_access_token


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'id': user_id})}"}


@pytest.mark.asyncio
async def test_notification_read_flow(client, users):
    alice, bob, _ = users
    first = await crud.create_notification(bob.id, 'New message', 'one', related_id=1)
    await crud.create_notification(bob.id, 'New message', 'two', related_id=2)

    r = await client.get('/api/notifications', headers=auth_headers(bob.id))
    assert [n['message'] for n in r.json()] == ['two', 'one']

    r = await client.get('/api/notifications/unread/count', headers=auth_headers(bob.id))
    assert r.json() == {'count': 2}

    r = await client.patch(f'/api/notifications/{first.id}/read', headers=auth_headers(alice.id))
    assert r.status_code == 403
    r = await client.patch(f'/api/notifications/{first.id}/read', headers=auth_headers(bob.id))
    assert r.status_code == 200
    assert r.json()['read'] is True

    r = await client.patch('/api/notifications/read-all', headers=auth_headers(bob.id))
    assert r.json()['ok'] is True
    r = await client.get('/api/notifications/unread/count', headers=auth_headers(bob.id))
    assert r.json() == {'count': 0}

    r = await client.patch('/api/notifications/read-all', headers=auth_headers(bob.id))
    assert r.json()['ok'] is False

    r = await client.patch('/api/notifications/999/read', headers=auth_headers(bob.id))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_user_profile(client, users):
    alice, bob, _ = users
    r = await client.get(f'/api/users/{bob.id}', headers=auth_headers(alice.id))
    assert r.status_code == 200
    assert r.json() == {'id': bob.id, 'username': 'bob', 'fullName': 'Bob B', 'avatar': None}

    r = await client.get('/api/users/4242', headers=auth_headers(alice.id))
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_healthz(client):
    r = await client.get('/healthz')
    assert r.json() == {'status': 'ok'}
