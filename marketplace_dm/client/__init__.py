from .api import MessagingApiClient
from .query_cache import QueryCache
from .connection import ConnectionManager, ConnectionState
from .view_controller import ConversationViewController, ReplyContext
from .session import MessagingSession

__all__ = [
    'MessagingApiClient',
    'QueryCache',
    'ConnectionManager',
    'ConnectionState',
    'ConversationViewController',
    'ReplyContext',
    'MessagingSession',
]
