from datetime import datetime
from typing import Optional
from .base import CamelModel

class NotificationOut(CamelModel):
    id: int
    user_id: int
    type: str
    title: str
    message: str
    related_id: Optional[int] = None
    read: bool = False
    created_at: Optional[datetime] = None

class ActionOkOut(CamelModel):
    ok: bool = True
    message: Optional[str] = None
