import json
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from ..auth import decode_token
from ..ws_manager import push_notifier

logger = logging.getLogger(__name__)

router = APIRouter()

@router.websocket('/ws')
async def push_channel(websocket: WebSocket, token: str = Query(None)):
    """
    Push channel. The first frame must be {"type": "auth", "userId": <id>} naming
    the token's user; the server answers {"type": "auth_success"} and from then
    on only writes notification events. Later client frames are ignored.
    """
    claims = decode_token(token) if token else None
    if not claims:
        await websocket.close(code=1008)
        return
    await websocket.accept()

    user_id = None
    try:
        while True:
            message = await websocket.receive()
            if message['type'] == 'websocket.disconnect':
                break
            raw = message.get('text')
            if raw is None or user_id is not None:
                # binary frames and anything after auth
                continue
            try:
                frame = json.loads(raw)
            except ValueError:
                logger.debug('non-JSON frame ignored before auth')
                continue
            if not isinstance(frame, dict) or frame.get('type') != 'auth' or frame.get('userId') is None:
                continue
            try:
                requested = int(frame['userId'])
            except (TypeError, ValueError):
                await websocket.close(code=1008)
                return
            if requested != claims['id']:
                logger.warning({'msg': 'push_auth_mismatch', 'token_user': claims['id'], 'requested': requested})
                await websocket.close(code=1008)
                return
            user_id = requested
            await push_notifier.register(user_id, websocket)
            await websocket.send_json({'type': 'auth_success', 'message': 'Authenticated'})
    except WebSocketDisconnect:
        pass
    finally:
        if user_id is not None:
            await push_notifier.unregister(user_id, websocket)
