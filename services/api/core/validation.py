"""
Validation utilities for Ashiato Memo.
Ensures data integrity and provides clear error messages.
"""
from typing import Any, Dict, Iterable, List, Optional

from fastapi import HTTPException

ALLOWED_IMAGE_TYPES = ("image/jpeg", "image/jpg", "image/png", "image/gif", "image/webp")
MAX_IMAGE_BYTES = 5 * 1024 * 1024  # 5MB


def validate_image_upload(
    content_type: Optional[str],
    size: int,
    max_bytes: int = MAX_IMAGE_BYTES,
) -> None:
    """
    Validate an uploaded image before it is handed to the storage backend.

    Rules:
    - MIME type must be JPEG, PNG, GIF or WebP
    - Size must be positive and not exceed `max_bytes`

    Raises:
        HTTPException: 400 if validation fails
    """
    ctype = (content_type or "").split(";")[0].strip().lower()
    if ctype not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(
            status_code=400,
            detail=f"Only JPEG, PNG, GIF or WebP images can be uploaded, got {ctype or 'unknown'}",
        )
    if size <= 0:
        raise HTTPException(status_code=400, detail="Uploaded image is empty")
    if size > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"Image must be {max_bytes // (1024 * 1024)}MB or smaller, got {size} bytes",
        )


def validate_tags(tags: Iterable[str], vocabulary: Iterable[str]) -> None:
    """
    Ensure every tag belongs to the common tag vocabulary.

    Raises:
        HTTPException: 400 listing the unknown tags
    """
    allowed = set(vocabulary)
    unknown = [t for t in tags if t not in allowed]
    if unknown:
        raise HTTPException(
            status_code=400,
            detail=f"Unknown tags: {sorted(set(unknown))}",
        )


def ensure_unique_block_ids(blocks: List[Dict[str, Any]]) -> None:
    """
    Ensure all blocks have unique ids.

    Raises:
        HTTPException: 400 if a duplicate id is found
    """
    seen = set()
    duplicates = []

    for block in blocks:
        block_id = block.get("id")
        if block_id in seen:
            duplicates.append(block_id)
        seen.add(block_id)

    if duplicates:
        raise HTTPException(
            status_code=400,
            detail=f"Duplicate block ids found: {sorted(set(duplicates))}",
        )


def coerce_keyword(keyword: Optional[str]) -> str:
    """
    Map a missing keyword to "" (no filter). Any other value is matched as-is,
    surrounding whitespace included.
    """
    if keyword is None:
        return ""
    return keyword


async def read_upload(file, max_bytes: int = MAX_IMAGE_BYTES) -> bytes:
    """
    Read at most `max_bytes` from an UploadFile.

    Raises:
        HTTPException: 400 if the file is larger than `max_bytes`
    """
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=400,
            detail=f"Image must be {max_bytes // (1024 * 1024)}MB or smaller",
        )
    return data
