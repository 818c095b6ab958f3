# services/api/routers/analysis.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Annotated
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Request

from core.identity import SessionIdentity, get_identity
from core.stats import compute_stats
from models.memo import Memo
from routers.memos import get_storage
from schemas.profile import StatsOut
from settings import get_settings

logger = logging.getLogger(__name__)

Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/analysis", tags=["analysis"])


@router.get("/stats", response_model=StatsOut)
async def get_stats(request: Request, identity: Identity, storage=Depends(get_storage)):
    """Totals, reflection count, top tags and the last six months for the caller's memos."""
    try:
        rows = storage.list_memos_by_owner(identity.user_id)
    except Exception as e:
        logger.error(f"Failed to load memos for stats ({identity.user_id}): {e}")
        raise HTTPException(status_code=500, detail="Failed to load memos")

    catalog = request.app.state.catalog
    now = datetime.now(ZoneInfo(get_settings().timezone))
    stats = compute_stats(
        [Memo.from_storage(r) for r in rows],
        now,
        reflection_tag=catalog.reflection_tag,
    )
    return stats.to_api()
