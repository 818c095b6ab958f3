# services/api/routers/images.py
from __future__ import annotations

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, status

from core.identity import SessionIdentity, get_identity
from core.validation import read_upload
from routers.memos import ensure_owner, get_images, get_storage, load_memo
from schemas.memo import ImageUploadOut
from settings import get_settings

logger = logging.getLogger(__name__)

Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/images", tags=["images"])


@router.post("", response_model=ImageUploadOut, status_code=status.HTTP_201_CREATED)
async def upload_image(
    identity: Identity,
    file: UploadFile = File(...),
    memo_id: Optional[str] = Form(None),
    storage=Depends(get_storage),
    images=Depends(get_images),
):
    """
    Standalone upload (profile photos, edit page). With `memo_id` the file is
    stored under that memo, otherwise under the user's temp folder.
    """
    if memo_id:
        ensure_owner(load_memo(storage, memo_id), identity)

    data = await read_upload(file, get_settings().max_image_bytes)
    try:
        url = images.upload_image(
            identity.user_id,
            data,
            content_type=file.content_type,
            filename=file.filename or "image",
            memo_id=memo_id,
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Image upload failed for {identity.user_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Image upload failed, please retry")

    return {"url": url}
