"""
Message Attachment Storage
Validates, classifies and stores files attached to direct messages, and
builds the public URLs they are served from.
"""

import io
import os
import uuid
import mimetypes
import logging
import aiofiles
from fastapi import UploadFile
from PIL import Image
from typing import List

from .errors import ValidationFailed

logger = logging.getLogger(__name__)

# Configuration
UPLOAD_ROOT = os.getenv('UPLOAD_ROOT', 'static/uploads')
UPLOAD_DIR = os.path.join(UPLOAD_ROOT, 'messages')
PUBLIC_PREFIX = '/uploads/messages'
MAX_FILE_SIZE = int(os.getenv('MESSAGE_ATTACHMENT_MAX_BYTES', str(10 * 1024 * 1024)))  # 10MB
MAX_FILES = int(os.getenv('MESSAGE_ATTACHMENT_MAX_FILES', '10'))

IMAGE_TYPES = {'image/jpeg', 'image/png', 'image/gif', 'image/webp'}
DOCUMENT_TYPES = {
    'application/msword',
    'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
    'application/vnd.oasis.opendocument.text',
    'application/vnd.ms-excel',
    'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'application/vnd.ms-powerpoint',
    'application/vnd.openxmlformats-officedocument.presentationml.presentation',
}
GENERIC_FILE_TYPES = {'text/plain', 'text/csv', 'application/zip'}
ALLOWED_TYPES = IMAGE_TYPES | {'application/pdf'} | DOCUMENT_TYPES | GENERIC_FILE_TYPES

# Ensure upload directory exists
os.makedirs(UPLOAD_DIR, exist_ok=True)


def classify_mime(content_type: str) -> str:
    """image | pdf | document | file"""
    content_type = (content_type or '').split(';')[0].strip().lower()
    if content_type.startswith('image/'):
        return 'image'
    if content_type == 'application/pdf':
        return 'pdf'
    if content_type in DOCUMENT_TYPES:
        return 'document'
    return 'file'


class AttachmentStorageManager:
    """Manages uploads of message attachments"""

    @staticmethod
    def generate_filename(user_id: int, original_filename: str, content_type: str) -> str:
        file_ext = os.path.splitext(original_filename)[1].lower()
        if not file_ext or len(file_ext) > 10:
            file_ext = mimetypes.guess_extension(content_type) or ''
        unique_id = uuid.uuid4().hex[:12]
        return f"msg_{user_id}_{unique_id}{file_ext}"

    @staticmethod
    def get_file_path(filename: str) -> str:
        return os.path.join(UPLOAD_DIR, filename)

    @staticmethod
    def get_public_url(filename: str) -> str:
        return f"{PUBLIC_PREFIX}/{filename}"

    @staticmethod
    async def read_and_validate(file: UploadFile) -> bytes:
        """Enforce the size ceiling and the MIME allow-list; returns the file content"""
        name = file.filename or 'attachment'
        if file.size and file.size > MAX_FILE_SIZE:
            raise ValidationFailed(f"File {name} is too large. Max size is {MAX_FILE_SIZE // (1024 * 1024)}MB")

        content_type = (file.content_type or '').split(';')[0].strip().lower()
        if content_type not in ALLOWED_TYPES:
            raise ValidationFailed(f"File type {content_type or 'unknown'} is not allowed")

        content = await file.read()
        if len(content) > MAX_FILE_SIZE:
            raise ValidationFailed(f"File {name} is too large. Max size is {MAX_FILE_SIZE // (1024 * 1024)}MB")
        if not content:
            raise ValidationFailed(f"File {name} is empty")

        if content_type in IMAGE_TYPES:
            try:
                with Image.open(io.BytesIO(content)) as img:
                    img.verify()
            except Exception:
                raise ValidationFailed(f"File {name} is not a valid image")

        return content

    @classmethod
    async def save_attachments(cls, user_id: int, files: List[UploadFile]) -> List[dict]:
        """
        Store a batch of attachments and return their descriptors in order.

        The whole batch is validated before anything touches the disk, so an
        invalid file never leaves part of the batch behind.
        """
        if not files:
            raise ValidationFailed("At least one file is required")
        if len(files) > MAX_FILES:
            raise ValidationFailed(f"Too many files. Max is {MAX_FILES} per message")

        validated = []
        for file in files:
            content = await cls.read_and_validate(file)
            validated.append((file, content))

        descriptors = []
        written = []
        try:
            for file, content in validated:
                content_type = file.content_type.split(';')[0].strip().lower()
                filename = cls.generate_filename(user_id, file.filename or 'attachment', content_type)
                file_path = cls.get_file_path(filename)
                async with aiofiles.open(file_path, 'wb') as f:
                    await f.write(content)
                written.append(file_path)
                descriptors.append({
                    'url': cls.get_public_url(filename),
                    'type': classify_mime(content_type),
                    'name': os.path.basename(file.filename or filename),
                })
        except OSError as e:
            for path in written:
                if os.path.exists(path):
                    os.remove(path)
            logger.error(f"Attachment write failed for user {user_id}: {e}")
            raise

        logger.info({'msg': 'attachments_stored', 'user_id': user_id, 'count': len(descriptors)})
        return descriptors

    @classmethod
    async def save_attachment(cls, user_id: int, file: UploadFile) -> dict:
        descriptors = await cls.save_attachments(user_id, [file])
        return descriptors[0]

# Global instance
attachment_storage = AttachmentStorageManager()
