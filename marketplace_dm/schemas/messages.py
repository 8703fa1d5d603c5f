from datetime import datetime
from typing import List, Literal, Optional
from pydantic import Field, model_validator
from .base import CamelModel

AttachmentType = Literal['image', 'pdf', 'document', 'file']

class AttachmentDescriptor(CamelModel):
    url: str
    type: AttachmentType
    name: str

class MessageIn(CamelModel):
    receiver_id: int
    content: str = Field('', max_length=5000)
    reply_to_id: Optional[int] = None
    attachment: Optional[str] = None
    attachment_type: Optional[AttachmentType] = None
    attachment_name: Optional[str] = None
    attachments: Optional[List[AttachmentDescriptor]] = None

    @model_validator(mode='after')
    def _require_body(self):
        if not self.content.strip() and not self.attachment and not self.attachments:
            raise ValueError('content or at least one attachment is required')
        return self

class MessageOut(CamelModel):
    id: int
    sender_id: int
    receiver_id: int
    content: str
    attachment: Optional[str] = None
    attachment_type: Optional[str] = None
    attachment_name: Optional[str] = None
    attachments: Optional[List[AttachmentDescriptor]] = None
    reply_to_id: Optional[int] = None
    read: bool
    created_at: datetime

class ContactSummaryOut(CamelModel):
    id: int
    full_name: Optional[str] = None
    avatar: Optional[str] = None
    last_message: str
    last_message_time: datetime
    last_message_attachment_type: Optional[str] = None
    last_message_attachment_name: Optional[str] = None
    unread_count: int

class CountOut(CamelModel):
    count: int

# attachment upload responses
class SingleUploadOut(CamelModel):
    file_url: str
    file_type: AttachmentType
    file_name: str

class MultiUploadOut(CamelModel):
    files: List[AttachmentDescriptor]
