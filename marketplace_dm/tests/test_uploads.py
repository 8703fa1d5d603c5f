import io
import pytest
from PIL import Image
from marketplace_dm import file_storage
from marketplace_dm.file_storage import classify_mime
from marketplace_dm.auth import create_access_token


def auth_headers(user_id):
    return {"Authorization": f"Bearer {create_access_token({'id': user_id})}"}


def png_bytes():
    buf = io.BytesIO()
    Image.new('RGB', (4, 4), color=(200, 10, 10)).save(buf, format='PNG')
    return buf.getvalue()


def test_classify_mime():
    assert classify_mime('image/png') == 'image'
    assert classify_mime('application/pdf') == 'pdf'
    assert classify_mime('application/vnd.openxmlformats-officedocument.wordprocessingml.document') == 'document'
    assert classify_mime('text/plain') == 'file'


@pytest.mark.asyncio
async def test_single_upload_returns_legacy_shape(client):
    r = await client.post('/api/uploads/attachment', headers=auth_headers(1),
                          files={'file': ('photo.png', png_bytes(), 'image/png')})
    assert r.status_code == 200, r.text
    body = r.json()
    assert body['fileType'] == 'image'
    assert body['fileName'] == 'photo.png'
    assert body['fileUrl'].startswith('/uploads/messages/msg_1_')

    served = await client.get(body['fileUrl'])
    assert served.status_code == 200
    assert served.content == png_bytes()


@pytest.mark.asyncio
async def test_multi_upload_keeps_order(client):
    files = [
        ('files', ('b.png', png_bytes(), 'image/png')),
        ('files', ('a.pdf', b'%PDF-1.4 test', 'application/pdf')),
        ('files', ('notes.txt', b'plain', 'text/plain')),
    ]
    r = await client.post('/api/uploads/attachments', headers=auth_headers(1), files=files)
    assert r.status_code == 200, r.text
    described = r.json()['files']
    assert [(f['name'], f['type']) for f in described] == [('b.png', 'image'), ('a.pdf', 'pdf'), ('notes.txt', 'file')]


@pytest.mark.asyncio
async def test_oversize_rejected(client, monkeypatch):
    monkeypatch.setattr(file_storage, 'MAX_FILE_SIZE', 16)
    r = await client.post('/api/uploads/attachment', headers=auth_headers(1),
                          files={'file': ('big.txt', b'x' * 64, 'text/plain')})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_forbidden_type_rejected(client):
    r = await client.post('/api/uploads/attachments', headers=auth_headers(1),
                          files=[('files', ('ok.txt', b'fine', 'text/plain')),
                                 ('files', ('run.exe', b'MZ....', 'application/x-msdownload'))])
    assert r.status_code == 400
    assert 'not allowed' in r.json()['detail']


@pytest.mark.asyncio
async def test_broken_image_rejected(client):
    r = await client.post('/api/uploads/attachment', headers=auth_headers(1),
                          files={'file': ('fake.png', b'not an image', 'image/png')})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_upload_requires_auth(client):
    r = await client.post('/api/uploads/attachment', files={'file': ('a.txt', b'a', 'text/plain')})
    assert r.status_code == 401
