"""
Client-side query cache
Results are keyed by tuples such as ("messages", 7); invalidating a prefix
refetches every registered query under it. Push events and polling both go
through invalidate(), so the cache only ever holds server truth.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

logger = logging.getLogger(__name__)

QueryKey = Tuple[Any, ...]
Fetcher = Callable[[], Awaitable[Any]]
Listener = Callable[[QueryKey, Any], None]

MESSAGES_ALL = ('messages', 'all')
MESSAGES_CONTACTS = ('messages', 'contacts')
MESSAGES_UNREAD = ('messages', 'unread_count')
NOTIFICATIONS = ('notifications',)
NOTIFICATIONS_UNREAD = ('notifications', 'unread_count')


def conversation_key(contact_id: int) -> QueryKey:
    return ('messages', contact_id)


class QueryCache:
    def __init__(self):
        self._fetchers: Dict[QueryKey, Fetcher] = {}
        self._data: Dict[QueryKey, Any] = {}
        self._listeners: List[Listener] = []

    def register(self, key: QueryKey, fetcher: Fetcher) -> None:
        self._fetchers[key] = fetcher

    def remove(self, key: QueryKey) -> None:
        self._fetchers.pop(key, None)
        self._data.pop(key, None)

    def keys(self) -> List[QueryKey]:
        return list(self._fetchers)

    def get(self, key: QueryKey, default=None):
        return self._data.get(key, default)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Called with (key, data) after every successful fetch; returns an unsubscribe callable"""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener) if listener in self._listeners else None

    async def refetch(self, key: QueryKey) -> Any:
        """Fetch one query now; errors propagate to the caller"""
        fetcher = self._fetchers.get(key)
        if fetcher is None:
            return None
        data = await fetcher()
        # the query may have been removed while the fetch was in flight
        if key not in self._fetchers:
            return None
        self._data[key] = data
        for listener in list(self._listeners):
            listener(key, data)
        return data

    async def invalidate(self, *prefixes: QueryKey) -> None:
        """Refetch every registered key starting with one of the prefixes and wait for all of them"""
        matching = [k for k in self._fetchers if any(k[:len(p)] == p for p in prefixes)]
        if not matching:
            return
        results = await asyncio.gather(*(self.refetch(k) for k in matching), return_exceptions=True)
        for key, result in zip(matching, results):
            if isinstance(result, Exception):
                logger.warning({'msg': 'query_refetch_failed', 'key': list(key), 'error': str(result)})

    def clear(self) -> None:
        self._fetchers.clear()
        self._data.clear()
        self._listeners.clear()
