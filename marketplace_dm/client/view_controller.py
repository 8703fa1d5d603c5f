"""
Conversation View Controller
Drives the visible conversation: loading and polling, reply context,
send (upload, create, refetch, scroll), the mark-read batch and the
quoted-reply jump. Rendering is delegated to a Viewport.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Set

from ..conversations import message_order_key, is_unread_for, resolve_reply_preview, total_unread
from ..errors import MessagingError
from .api import MessagingApiClient, UploadFileSpec
from .query_cache import (
    QueryCache,
    conversation_key,
    MESSAGES_ALL,
    MESSAGES_CONTACTS,
    MESSAGES_UNREAD,
)

logger = logging.getLogger(__name__)

INITIAL_SCROLL_DELAYS = (0.1, 0.3, 0.6, 1.0, 1.5)
REFRESH_SCROLL_DELAYS = (0.05, 0.2)
QUOTE_SCROLL_DELAY = 0.1
HIGHLIGHT_DURATION = 2.0
POLL_INTERVAL = 10.0


@dataclass
class ReplyContext:
    id: int
    content: str
    sender_id: int
    sender_name: Optional[str] = None


class Viewport:
    """Rendering hooks; the default implementation does nothing"""

    def scroll_to_bottom(self) -> None:
        pass

    def scroll_to_message(self, message_id: int) -> None:
        pass

    def highlight(self, message_id: Optional[int]) -> None:
        pass

    def show_error(self, text: str) -> None:
        pass


class ConversationViewController:
    def __init__(
        self,
        api: MessagingApiClient,
        cache: QueryCache,
        self_id: int,
        viewport: Viewport = None,
        poll_interval: float = POLL_INTERVAL,
        initial_scroll_delays: Sequence[float] = INITIAL_SCROLL_DELAYS,
        refresh_scroll_delays: Sequence[float] = REFRESH_SCROLL_DELAYS,
        quote_scroll_delay: float = QUOTE_SCROLL_DELAY,
        highlight_duration: float = HIGHLIGHT_DURATION,
    ):
        self.api = api
        self.cache = cache
        self.self_id = self_id
        self.viewport = viewport or Viewport()
        self.poll_interval = poll_interval
        self.initial_scroll_delays = tuple(initial_scroll_delays)
        self.refresh_scroll_delays = tuple(refresh_scroll_delays)
        self.quote_scroll_delay = quote_scroll_delay
        self.highlight_duration = highlight_duration

        self.active_contact_id: Optional[int] = None
        self.messages: List[Any] = []
        self.reply_context: Optional[ReplyContext] = None
        self.highlighted_id: Optional[int] = None

        self._first_load = True
        self._marking: Set[int] = set()
        self._tasks: Set[asyncio.Task] = set()
        self._scroll_handles: List[asyncio.TimerHandle] = []
        self._quote_scroll_handle: Optional[asyncio.TimerHandle] = None
        self._highlight_handle: Optional[asyncio.TimerHandle] = None
        self._poll_task: Optional[asyncio.Task] = None
        self._unsubscribe = None

    # lifecycle

    async def start(self) -> None:
        self.cache.register(MESSAGES_ALL, self.api.list_all_messages)
        self.cache.register(MESSAGES_CONTACTS, self.api.list_contacts)
        self.cache.register(MESSAGES_UNREAD, self.api.unread_count)
        self._unsubscribe = self.cache.subscribe(self._on_query)
        await self.cache.invalidate(MESSAGES_ALL, MESSAGES_CONTACTS, MESSAGES_UNREAD)
        if self.poll_interval and self._poll_task is None:
            self._poll_task = asyncio.get_running_loop().create_task(self._poll_loop())

    async def close(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        self._cancel_scrolls()
        self._cancel_quote_jump()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self.active_contact_id is not None:
            self.cache.remove(conversation_key(self.active_contact_id))

    async def settle(self) -> None:
        """Wait for background work started by the controller (mark-read batches)"""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _poll_loop(self) -> None:
        # push is only a shortcut; this loop keeps the view correct without it
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()

    async def refresh(self) -> None:
        await self.cache.invalidate(('messages',))

    # conversation

    async def select_contact(self, contact_id: int) -> Optional[List[Any]]:
        previous = self.active_contact_id
        if previous is not None and previous != contact_id:
            self.cache.remove(conversation_key(previous))
        self.active_contact_id = contact_id
        self.messages = []
        self.reply_context = None
        self._first_load = True
        self._cancel_scrolls()
        self._cancel_quote_jump()

        key = conversation_key(contact_id)
        self.cache.register(key, lambda: self.api.get_conversation(contact_id))
        try:
            await self.cache.refetch(key)
        except MessagingError as e:
            logger.warning({'msg': 'conversation_load_failed', 'contact_id': contact_id, 'error': e.message})
            if self.active_contact_id == contact_id:
                self.viewport.show_error(e.message)
            return None
        if self.active_contact_id != contact_id:
            logger.info({'msg': 'stale_conversation_discarded', 'contact_id': contact_id})
            return None
        return self.messages

    def _on_query(self, key, data) -> None:
        if self.active_contact_id is None or key != conversation_key(self.active_contact_id):
            return
        self._apply_conversation(data)

    def _apply_conversation(self, messages) -> None:
        previous_last = self.messages[-1].id if self.messages else None
        self.messages = sorted(messages, key=message_order_key)
        newest = self.messages[-1].id if self.messages else None
        if self._first_load:
            self._first_load = False
            self._schedule_scroll(self.initial_scroll_delays)
        elif newest != previous_last:
            self._schedule_scroll(self.refresh_scroll_delays)
        self._schedule_mark_read()

    # mark read

    def _schedule_mark_read(self) -> None:
        ids = [m.id for m in self.messages if is_unread_for(m, self.self_id) and m.id not in self._marking]
        if not ids:
            return
        self._marking.update(ids)
        task = asyncio.get_running_loop().create_task(self.mark_read_batch(ids))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def mark_read_batch(self, ids: Sequence[int]) -> int:
        """One PATCH per message, in parallel; partial failure is retried on the next refresh"""
        self._marking.update(ids)
        try:
            results = await asyncio.gather(*(self.api.mark_read(i) for i in ids), return_exceptions=True)
        finally:
            self._marking.difference_update(ids)

        updated = {r.id: r for r in results if not isinstance(r, BaseException)}
        failed = len(results) - len(updated)
        if failed:
            logger.warning({'msg': 'mark_read_partial_failure', 'failed': failed, 'total': len(ids)})
            self.viewport.show_error('Could not mark messages as read')
        if updated:
            self.messages = [updated.get(m.id, m) for m in self.messages]
            await self.cache.invalidate(MESSAGES_ALL, MESSAGES_CONTACTS, MESSAGES_UNREAD)
        return len(updated)

    # reply + send

    def set_reply(self, message, sender_name: Optional[str] = None) -> ReplyContext:
        self.reply_context = ReplyContext(
            id=message.id,
            content=message.content or message.attachment_name or '',
            sender_id=message.sender_id,
            sender_name=sender_name,
        )
        return self.reply_context

    def clear_reply(self) -> None:
        self.reply_context = None

    async def send(self, content: str = '', files: Optional[Sequence[UploadFileSpec]] = None):
        """Upload, create, refetch, scroll. Failures are shown and return None."""
        contact_id = self.active_contact_id
        if contact_id is None:
            self.viewport.show_error('No conversation selected')
            return None
        if not content.strip() and not files:
            self.viewport.show_error('Type a message or attach a file')
            return None

        reply_to_id = self.reply_context.id if self.reply_context else None
        try:
            attachments = await self.api.upload_attachments(files) if files else None
            message = await self.api.send_message(
                contact_id, content, reply_to_id=reply_to_id, attachments=attachments
            )
        except MessagingError as e:
            logger.warning({'msg': 'send_failed', 'contact_id': contact_id, 'error': e.message})
            self.viewport.show_error(e.message)
            return None

        self.reply_context = None
        # refetch instead of appending locally
        await self.cache.invalidate(MESSAGES_ALL, conversation_key(contact_id))
        if self.active_contact_id == contact_id:
            self._schedule_scroll(self.refresh_scroll_delays)
        return message

    # quoted replies

    def quoted_text(self, message) -> Optional[str]:
        return resolve_reply_preview(self.messages, message.reply_to_id)

    def jump_to_quoted(self, message_id: int) -> bool:
        if not any(m.id == message_id for m in self.messages):
            return False
        self._cancel_quote_jump()
        loop = asyncio.get_running_loop()
        self._quote_scroll_handle = loop.call_later(self.quote_scroll_delay, self._scroll_to_quoted, message_id)
        self.highlighted_id = message_id
        self.viewport.highlight(message_id)
        self._highlight_handle = loop.call_later(self.highlight_duration, self._clear_highlight, message_id)
        return True

    def _scroll_to_quoted(self, message_id: int) -> None:
        self._quote_scroll_handle = None
        self.viewport.scroll_to_message(message_id)

    def _clear_highlight(self, message_id: int) -> None:
        self._highlight_handle = None
        if self.highlighted_id == message_id:
            self.highlighted_id = None
            self.viewport.highlight(None)

    # derived state

    @property
    def contacts(self) -> List[dict]:
        return self.cache.get(MESSAGES_CONTACTS, [])

    def unread_total(self) -> int:
        return total_unread(self.cache.get(MESSAGES_ALL, []), self.self_id)

    # scrolling

    def _schedule_scroll(self, delays) -> None:
        self._cancel_scrolls()
        loop = asyncio.get_running_loop()
        self._scroll_handles = [loop.call_later(d, self.viewport.scroll_to_bottom) for d in delays]

    def _cancel_scrolls(self) -> None:
        for handle in self._scroll_handles:
            handle.cancel()
        self._scroll_handles = []

    def _cancel_quote_jump(self) -> None:
        if self._quote_scroll_handle is not None:
            self._quote_scroll_handle.cancel()
            self._quote_scroll_handle = None
        if self._highlight_handle is not None:
            self._highlight_handle.cancel()
            self._highlight_handle = None
        self.highlighted_id = None
