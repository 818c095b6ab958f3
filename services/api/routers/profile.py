# services/api/routers/profile.py
from __future__ import annotations

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException

from core.identity import SessionIdentity, get_identity
from routers.memos import get_storage
from schemas.profile import ProfileOut, ProfileUpdate

logger = logging.getLogger(__name__)

Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/profile", tags=["profile"])


@router.get("", response_model=ProfileOut)
async def get_profile(identity: Identity, storage=Depends(get_storage)):
    """Stored profile, falling back to what the auth provider reports."""
    try:
        profile = storage.get_user_profile(identity.user_id)
    except Exception as e:
        logger.error(f"Failed to load profile {identity.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load profile")

    merged = identity.with_profile(profile)
    return {
        "uid": identity.user_id,
        "display_name": merged.display_name or "",
        "photo_url": merged.photo_url,
        "bio": (profile or {}).get("bio"),
        "email": identity.email,
    }


@router.put("", response_model=ProfileOut)
async def update_profile(body: ProfileUpdate, identity: Identity, storage=Depends(get_storage)):
    try:
        saved = storage.save_user_profile(identity.user_id, body.model_dump())
    except Exception as e:
        logger.error(f"Failed to save profile {identity.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to save profile")

    logger.info(f"Updated profile for {identity.user_id}")
    return {
        "uid": identity.user_id,
        "display_name": saved.get("display_name") or "",
        "photo_url": saved.get("photo_url"),
        "bio": saved.get("bio"),
        "email": identity.email,
    }
