from fastapi import APIRouter, Depends
from typing import List
from ..schemas.notifications import NotificationOut, ActionOkOut
from ..schemas.messages import CountOut
from ..crud import (
    list_notifications,
    count_unread_notifications,
    mark_notification_read,
    mark_all_notifications_read,
)
from ..auth import get_current_user

router = APIRouter()

@router.get('', response_model=List[NotificationOut])
async def my_notifications(current_user: dict = Depends(get_current_user)):
    return await list_notifications(current_user['id'])

@router.get('/unread/count', response_model=CountOut)
async def unread_count(current_user: dict = Depends(get_current_user)):
    return CountOut(count=await count_unread_notifications(current_user['id']))

@router.patch('/read-all', response_model=ActionOkOut)
async def read_all(current_user: dict = Depends(get_current_user)):
    updated = await mark_all_notifications_read(current_user['id'])
    if not updated:
        return ActionOkOut(ok=False, message='No unread notifications found')
    return ActionOkOut()

@router.patch('/{notification_id}/read', response_model=NotificationOut)
async def read_one(notification_id: int, current_user: dict = Depends(get_current_user)):
    return await mark_notification_read(notification_id, current_user['id'])
