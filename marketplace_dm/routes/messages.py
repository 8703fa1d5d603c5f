import os
import logging
from fastapi import APIRouter, Depends, HTTPException, Query
from typing import List, Optional
from ..schemas.messages import MessageIn, MessageOut, ContactSummaryOut, CountOut
from ..schemas.notifications import NotificationOut
from ..crud import (
    create_message,
    mark_message_read,
    list_messages_for_user,
    list_conversation,
    get_user_by_id,
    get_users_by_ids,
    create_notification,
)
from ..conversations import build_contact_summaries, total_unread
from ..cache import check_rate_limit
from ..core import MESSAGES_SENT
from ..ws_manager import push_notifier
from ..auth import get_current_user

logger = logging.getLogger(__name__)

MESSAGE_RATE_LIMIT = int(os.getenv('MESSAGE_RATE_LIMIT', '100'))

router = APIRouter()


async def notify_new_message(message, sender_id: int):
    """Notification row for the receiver plus a best-effort push; never fails the send"""
    try:
        sender = await get_user_by_id(sender_id)
        sender_name = sender.full_name if sender else 'Someone'
        n = await create_notification(
            message.receiver_id,
            title='New message',
            message=f'{sender_name} sent you a message',
            type='message',
            related_id=message.id,
        )
        payload = NotificationOut.model_validate(n).model_dump(mode='json', by_alias=True)
        payload['senderId'] = sender_id
        await push_notifier.notify(message.receiver_id, payload)
    except Exception as e:
        logger.warning({'msg': 'message_notification_failed', 'message_id': message.id, 'error': str(e)})


@router.post('', response_model=MessageOut, status_code=201)
async def send(payload: MessageIn, current_user: dict = Depends(get_current_user)):
    if not await check_rate_limit(current_user['id'], "send_message", limit=MESSAGE_RATE_LIMIT, window=3600):
        raise HTTPException(429, "Rate limit exceeded. Too many messages.")

    m = await create_message(current_user['id'], payload)
    MESSAGES_SENT.inc()

    await notify_new_message(m, current_user['id'])
    return m


@router.get('', response_model=List[MessageOut])
async def list_messages(
    user_id: Optional[int] = Query(None, alias='userId'),
    request_type: str = Query('all', alias='type'),
    current_user: dict = Depends(get_current_user),
):
    """Two-party conversation when userId is given, otherwise every message of the caller"""
    # type=all and type=contacts both return the full message list
    if user_id is not None:
        return await list_conversation(current_user['id'], user_id)
    return await list_messages_for_user(current_user['id'])


@router.get('/contacts', response_model=List[ContactSummaryOut])
async def contacts(current_user: dict = Depends(get_current_user)):
    messages = await list_messages_for_user(current_user['id'])
    summaries = build_contact_summaries(messages, current_user['id'])
    users = await get_users_by_ids([s.contact_id for s in summaries])

    result = []
    for s in summaries:
        user = users.get(s.contact_id)
        if user is None:
            # counterpart account is gone
            continue
        result.append(ContactSummaryOut(
            id=s.contact_id,
            full_name=user.full_name,
            avatar=user.avatar,
            last_message=s.last_message,
            last_message_time=s.last_message_time,
            last_message_attachment_type=s.last_message_attachment_type,
            last_message_attachment_name=s.last_message_attachment_name,
            unread_count=s.unread_count,
        ))
    return result


@router.get('/unread/count', response_model=CountOut)
async def unread_count(current_user: dict = Depends(get_current_user)):
    messages = await list_messages_for_user(current_user['id'])
    return CountOut(count=total_unread(messages, current_user['id']))


@router.patch('/{message_id}/read', response_model=MessageOut)
async def mark_read(message_id: int, current_user: dict = Depends(get_current_user)):
    return await mark_message_read(message_id, current_user['id'])
