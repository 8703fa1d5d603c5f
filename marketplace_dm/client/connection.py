"""
Push channel connection manager

DISCONNECTED -> CONNECTING -> AUTHENTICATED -> READY. Any transport error or
close drops back to DISCONNECTED and schedules a reconnect after a fixed
delay. After max_reconnect_attempts consecutive failures no further timer is
scheduled; live updates stay off until disconnect() + connect(). Polling in
the view controller keeps data correct in the meantime.

The attempt counter resets only when READY is reached, so a server that
accepts the socket and then drops it still counts as a failure.
"""

import asyncio
import enum
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set
from urllib.parse import urlencode, urlsplit, urlunsplit

import aiohttp

from .query_cache import QueryCache, NOTIFICATIONS

logger = logging.getLogger(__name__)

DEFAULT_RECONNECT_DELAY = 3.0
DEFAULT_MAX_RECONNECT_ATTEMPTS = 5


class ConnectionState(str, enum.Enum):
    DISCONNECTED = 'disconnected'
    CONNECTING = 'connecting'
    AUTHENTICATED = 'authenticated'
    READY = 'ready'


def push_url_from_origin(origin: str, token: str) -> str:
    """http(s)://host -> ws(s)://host/api/ws?token=..."""
    parts = urlsplit(origin)
    scheme = 'wss' if parts.scheme in ('https', 'wss') else 'ws'
    return urlunsplit((scheme, parts.netloc, '/api/ws', urlencode({'token': token}), ''))


class AiohttpPushSocket:
    """Push socket over aiohttp; receive_json returns None once the socket is closed"""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse):
        self._session = session
        self._ws = ws

    async def send_json(self, data: Dict[str, Any]) -> None:
        await self._ws.send_json(data)

    async def receive_json(self) -> Optional[Dict[str, Any]]:
        while True:
            msg = await self._ws.receive()
            if msg.type == aiohttp.WSMsgType.TEXT:
                try:
                    return json.loads(msg.data)
                except ValueError:
                    logger.warning({'msg': 'push_frame_not_json'})
                    continue
            if msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING,
                            aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                return None

    async def close(self) -> None:
        try:
            await self._ws.close()
        finally:
            await self._session.close()


async def aiohttp_transport(url: str) -> AiohttpPushSocket:
    session = aiohttp.ClientSession()
    try:
        ws = await session.ws_connect(url, heartbeat=20)
    except Exception:
        await session.close()
        raise
    return AiohttpPushSocket(session, ws)


TransportFactory = Callable[[str], Awaitable[Any]]


class ConnectionManager:
    """One push connection per signed-in session; events: state, notification, offline"""

    def __init__(
        self,
        origin: str,
        token: str,
        cache: QueryCache,
        transport_factory: TransportFactory = aiohttp_transport,
        reconnect_delay: float = DEFAULT_RECONNECT_DELAY,
        max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS,
    ):
        self.url = push_url_from_origin(origin, token)
        self.cache = cache
        self.reconnect_delay = reconnect_delay
        self.max_reconnect_attempts = max_reconnect_attempts
        self.state = ConnectionState.DISCONNECTED
        self.reconnect_attempts = 0
        self.live_updates_disabled = False
        self._transport_factory = transport_factory
        self._user_id: Optional[int] = None
        self._socket = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._invalidations: Set[asyncio.Task] = set()
        self._listeners: Dict[str, List[Callable[..., None]]] = {}

    # subscription surface

    def on(self, event: str, callback: Callable[..., None]) -> Callable[[], None]:
        self._listeners.setdefault(event, []).append(callback)

        def unsubscribe():
            callbacks = self._listeners.get(event, [])
            if callback in callbacks:
                callbacks.remove(callback)
        return unsubscribe

    def _emit(self, event: str, *args) -> None:
        for callback in list(self._listeners.get(event, [])):
            try:
                callback(*args)
            except Exception as e:
                logger.warning({'msg': 'push_listener_failed', 'event': event, 'error': str(e)})

    def _set_state(self, state: ConnectionState) -> None:
        if state == self.state:
            return
        self.state = state
        logger.info({'msg': 'push_state', 'state': state.value, 'user_id': self._user_id})
        self._emit('state', state)

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    # lifecycle

    async def connect(self, user_id: int) -> bool:
        """Start the connection; returns False when one for this user is already live or in flight"""
        busy = self.state != ConnectionState.DISCONNECTED or self.reconnect_pending
        if busy and user_id == self._user_id:
            logger.info({'msg': 'push_connect_refused', 'user_id': user_id, 'state': self.state.value})
            return False
        if busy:
            await self.disconnect()
        self._user_id = user_id
        self._start()
        return True

    async def disconnect(self) -> None:
        """Stop everything: timers, socket, pending invalidations. Safe to call repeatedly."""
        self._user_id = None
        self.reconnect_attempts = 0
        self.live_updates_disabled = False
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        await self._close_socket()
        for t in list(self._invalidations):
            t.cancel()
        self._invalidations.clear()
        self._set_state(ConnectionState.DISCONNECTED)

    def _start(self) -> None:
        self._set_state(ConnectionState.CONNECTING)
        self._task = asyncio.get_running_loop().create_task(self._run(self._user_id))

    async def _close_socket(self) -> None:
        socket, self._socket = self._socket, None
        if socket is None:
            return
        try:
            await socket.close()
        except Exception as e:
            logger.debug({'msg': 'push_socket_close_failed', 'error': str(e)})

    async def _run(self, user_id: int) -> None:
        try:
            self._socket = await self._transport_factory(self.url)
            await self._socket.send_json({'type': 'auth', 'userId': user_id})
            self._set_state(ConnectionState.AUTHENTICATED)
            while True:
                frame = await self._socket.receive_json()
                if frame is None:
                    logger.info({'msg': 'push_closed', 'user_id': user_id})
                    break
                self._handle_frame(frame)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning({'msg': 'push_transport_error', 'user_id': user_id, 'error': str(e)})
        await self._close_socket()
        self._task = None
        self._set_state(ConnectionState.DISCONNECTED)
        self._try_reconnect()

    def _try_reconnect(self) -> None:
        if self._user_id is None:
            return
        if self.reconnect_attempts >= self.max_reconnect_attempts:
            self.live_updates_disabled = True
            logger.warning({'msg': 'push_reconnect_exhausted', 'attempts': self.reconnect_attempts})
            self._emit('offline')
            return
        self.reconnect_attempts += 1
        logger.info({'msg': 'push_reconnect_scheduled', 'attempt': self.reconnect_attempts,
                     'delay': self.reconnect_delay})
        self._reconnect_handle = asyncio.get_running_loop().call_later(self.reconnect_delay, self._reconnect)

    def _reconnect(self) -> None:
        self._reconnect_handle = None
        if self._user_id is None:
            return
        self._start()

    # inbound frames

    def _handle_frame(self, frame: Dict[str, Any]) -> None:
        kind = frame.get('type')
        if kind == 'auth_success':
            self.reconnect_attempts = 0
            self.live_updates_disabled = False
            self._set_state(ConnectionState.READY)
        elif kind == 'notification':
            data = frame.get('data') or {}
            self._emit('notification', data)
            prefixes = [NOTIFICATIONS]
            if data.get('type') == 'message':
                prefixes.append(('messages',))
            self._schedule_invalidation(prefixes)
        else:
            logger.debug({'msg': 'push_frame_ignored', 'type': kind})

    def _schedule_invalidation(self, prefixes) -> None:
        # full refetch per event, so duplicates and reordering are harmless
        task = asyncio.get_running_loop().create_task(self.cache.invalidate(*prefixes))
        self._invalidations.add(task)
        task.add_done_callback(self._invalidations.discard)
