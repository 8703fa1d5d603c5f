"""
Signed-in messaging session
Owns the API client, query cache, push connection and conversation view for
one user. Created at sign-in, closed at sign-out.
"""

import logging
from typing import Any, Callable, Optional

import httpx

from .api import MessagingApiClient
from .connection import ConnectionManager, TransportFactory, aiohttp_transport
from .query_cache import QueryCache, NOTIFICATIONS, NOTIFICATIONS_UNREAD
from .view_controller import ConversationViewController, Viewport

logger = logging.getLogger(__name__)


class MessagingSession:
    def __init__(
        self,
        origin: str,
        token: str,
        user_id: int,
        viewport: Viewport = None,
        on_offline: Optional[Callable[[], None]] = None,
        http_transport: httpx.AsyncBaseTransport = None,
        push_transport: TransportFactory = aiohttp_transport,
        connect_push: bool = True,
        **controller_options: Any,
    ):
        self.user_id = user_id
        self.on_offline = on_offline
        self.connect_push = connect_push
        self.api = MessagingApiClient(origin, token, transport=http_transport)
        self.cache = QueryCache()
        self.connection = ConnectionManager(origin, token, self.cache, transport_factory=push_transport)
        self.view = ConversationViewController(
            self.api, self.cache, user_id, viewport=viewport, **controller_options
        )
        self.connection.on('offline', self._handle_offline)
        self._started = False

    async def __aenter__(self) -> 'MessagingSession':
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def start(self) -> None:
        if self._started:
            return
        self._started = True
        self.cache.register(NOTIFICATIONS, self.api.list_notifications)
        self.cache.register(NOTIFICATIONS_UNREAD, self.api.notification_unread_count)
        await self.view.start()
        await self.cache.invalidate(NOTIFICATIONS)
        if self.connect_push:
            await self.connection.connect(self.user_id)
        logger.info({'msg': 'session_started', 'user_id': self.user_id})

    async def close(self) -> None:
        if not self._started:
            return
        self._started = False
        await self.connection.disconnect()
        await self.view.close()
        self.cache.clear()
        await self.api.aclose()
        logger.info({'msg': 'session_closed', 'user_id': self.user_id})

    @property
    def live_updates_disabled(self) -> bool:
        return self.connection.live_updates_disabled

    def _handle_offline(self) -> None:
        logger.warning({'msg': 'live_updates_disabled', 'user_id': self.user_id})
        if self.on_offline is not None:
            self.on_offline()
