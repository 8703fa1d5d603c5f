"""
Conversation Materializer
Derives conversations, contact summaries and unread counters from the flat
message log. Nothing here is stored: every call recomputes from the messages
it is given, so results cannot drift from the log.

Works on anything exposing the Message attributes (ORM rows on the server,
MessageOut models in the client SDK).
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional

DELETED_REPLY_PLACEHOLDER = "Original message deleted"


@dataclass
class ContactSummary:
    contact_id: int
    last_message: str
    last_message_time: datetime
    last_message_id: int
    last_message_attachment_type: Optional[str]
    last_message_attachment_name: Optional[str]
    unread_count: int


def message_order_key(message):
    """Display order: createdAt ascending, id breaks ties"""
    return (message.created_at, message.id)


def counterpart_of(message, self_id: int) -> Optional[int]:
    if message.sender_id == self_id:
        return message.receiver_id
    if message.receiver_id == self_id:
        return message.sender_id
    return None


def is_unread_for(message, self_id: int) -> bool:
    return message.receiver_id == self_id and not message.read


def conversation_between(messages: Iterable, self_id: int, other_id: int) -> List:
    """Messages exchanged by the pair in either direction, oldest first"""
    pair = {self_id, other_id}
    conversation = [m for m in messages if {m.sender_id, m.receiver_id} == pair]
    conversation.sort(key=message_order_key)
    return conversation


def unread_counts(messages: Iterable, self_id: int) -> Dict[int, int]:
    """Unread incoming messages grouped by sender"""
    counts: Dict[int, int] = defaultdict(int)
    for m in messages:
        if is_unread_for(m, self_id) and m.sender_id != self_id:
            counts[m.sender_id] += 1
    return dict(counts)


def total_unread(messages: Iterable, self_id: int) -> int:
    return sum(unread_counts(messages, self_id).values())


def build_contact_summaries(messages: Iterable, self_id: int) -> List[ContactSummary]:
    """
    One summary per distinct counterpart, most recent conversation first.

    Single group-by pass: keeps the latest message per counterpart and counts
    unread incoming messages on the way.
    """
    latest = {}
    unread: Dict[int, int] = defaultdict(int)

    for m in messages:
        contact_id = counterpart_of(m, self_id)
        if contact_id is None or contact_id == self_id:
            continue
        current = latest.get(contact_id)
        if current is None or message_order_key(m) > message_order_key(current):
            latest[contact_id] = m
        if is_unread_for(m, self_id):
            unread[contact_id] += 1

    summaries = [
        ContactSummary(
            contact_id=contact_id,
            last_message=m.content or "",
            last_message_time=m.created_at,
            last_message_id=m.id,
            last_message_attachment_type=m.attachment_type,
            last_message_attachment_name=m.attachment_name,
            unread_count=unread.get(contact_id, 0),
        )
        for contact_id, m in latest.items()
    ]
    summaries.sort(key=lambda s: (s.last_message_time, s.last_message_id), reverse=True)
    return summaries


def resolve_reply_preview(messages: Iterable, reply_to_id: Optional[int]) -> Optional[str]:
    """
    Text to show inside a quoted reply.

    None when the message is not a reply; the placeholder when the target is
    no longer in the visible set.
    """
    if reply_to_id is None:
        return None
    for m in messages:
        if m.id == reply_to_id:
            if m.content:
                return m.content
            return m.attachment_name or ""
    return DELETED_REPLY_PLACEHOLDER
