import json
import logging
from typing import Dict, Set
from fastapi import WebSocket
from . import core

logger = logging.getLogger(__name__)

WS_EVENTS_CHANNEL = 'ws_events'

class PushNotifier:
    """
    Registry of authenticated push sockets, keyed by user id.

    Delivery is best-effort and at-most-once: an event for a user with no
    open socket is dropped, clients pick the change up on their next poll.
    With Redis configured, events go through the ws_events channel so the
    instance holding the socket delivers it.
    """

    def __init__(self):
        self.connections: Dict[int, Set[WebSocket]] = {}

    async def register(self, user_id: int, websocket: WebSocket):
        self.connections.setdefault(user_id, set()).add(websocket)
        core.PUSH_CONNECTIONS.inc()
        logger.info({'msg': 'push_registered', 'user_id': user_id})
        if core.REDIS:
            try:
                await core.REDIS.set(f'presence:{user_id}', 'online', ex=60)
            except Exception as e:
                logger.warning(f'presence update failed for user {user_id}: {e}')

    async def unregister(self, user_id: int, websocket: WebSocket):
        sockets = self.connections.get(user_id)
        if not sockets or websocket not in sockets:
            return
        sockets.discard(websocket)
        core.PUSH_CONNECTIONS.dec()
        if not sockets:
            del self.connections[user_id]
            if core.REDIS:
                try:
                    await core.REDIS.delete(f'presence:{user_id}')
                except Exception as e:
                    logger.warning(f'presence cleanup failed for user {user_id}: {e}')
        logger.info({'msg': 'push_unregistered', 'user_id': user_id})

    def is_connected(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def deliver_local(self, user_id: int, event: dict) -> int:
        """Write the event to every local socket of the user; returns how many took it"""
        ws_set = self.connections.get(user_id, set())
        if not ws_set:
            core.PUSH_DROPPED.inc()
            logger.info({'msg': 'push_dropped', 'user_id': user_id, 'type': event.get('type')})
            return 0
        delivered = 0
        for ws in list(ws_set):
            try:
                await ws.send_json(event)
                delivered += 1
            except Exception as e:
                logger.warning(f'push to user {user_id} failed, dropping socket: {e}')
                await self.unregister(user_id, ws)
        core.PUSH_DELIVERED.inc(delivered)
        return delivered

    async def notify(self, user_id: int, notification: dict) -> int:
        """Emit a notification event to the user's live connections"""
        event = {'type': 'notification', 'data': notification}
        if core.REDIS:
            try:
                await core.REDIS.publish(WS_EVENTS_CHANNEL, json.dumps({'user_id': user_id, 'event': event}, default=str))
                return 0
            except Exception as e:
                logger.warning(f'ws_events publish failed, delivering locally: {e}')
        return await self.deliver_local(user_id, event)

    # Redis pub/sub listener to route events between app instances
    async def start_redis_listener(self):
        if not core.REDIS:
            return
        pubsub = core.REDIS.pubsub()
        await pubsub.subscribe(WS_EVENTS_CHANNEL)
        logger.info(f'Listening for push events on {WS_EVENTS_CHANNEL}')
        async for item in pubsub.listen():
            if not item or item.get('type') != 'message':
                continue
            try:
                data = json.loads(item.get('data'))
                user_id = int(data['user_id'])
                event = data['event']
            except (TypeError, ValueError, KeyError) as e:
                logger.warning(f'malformed ws_events payload ignored: {e}')
                continue
            if self.is_connected(user_id):
                await self.deliver_local(user_id, event)

push_notifier = PushNotifier()
