"""
Attachment Upload Routes
Files are stored before the message that references them is created; an
upload whose message never gets sent stays on disk unreferenced.
"""

from fastapi import APIRouter, Depends, HTTPException, File, UploadFile
from typing import List
from ..schemas.messages import SingleUploadOut, MultiUploadOut
from ..file_storage import attachment_storage
from ..cache import check_rate_limit
from ..auth import get_current_user

router = APIRouter()


@router.post('/attachment', response_model=SingleUploadOut)
async def upload_attachment(
    file: UploadFile = File(...),
    current_user: dict = Depends(get_current_user)
):
    """Legacy single-file upload"""
    if not await check_rate_limit(current_user['id'], "attachment_upload", limit=200, window=3600):
        raise HTTPException(429, "Rate limit exceeded. Too many uploads.")

    descriptor = await attachment_storage.save_attachment(current_user['id'], file)
    return SingleUploadOut(
        file_url=descriptor['url'],
        file_type=descriptor['type'],
        file_name=descriptor['name'],
    )


@router.post('/attachments', response_model=MultiUploadOut)
async def upload_attachments(
    files: List[UploadFile] = File(...),
    current_user: dict = Depends(get_current_user)
):
    if not await check_rate_limit(current_user['id'], "attachment_upload", limit=200, window=3600):
        raise HTTPException(429, "Rate limit exceeded. Too many uploads.")

    descriptors = await attachment_storage.save_attachments(current_user['id'], files)
    return MultiUploadOut(files=descriptors)
