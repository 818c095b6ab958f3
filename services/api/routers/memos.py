# services/api/routers/memos.py
from __future__ import annotations

import logging
import urllib.parse
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from adapters.base import MemoNotFound
from core.export_csv import export_filename, memo_to_csv
from core.identity import SessionIdentity, get_identity, resolve_public_identity
from core.report_pdf import PdfFontMissing, generate_memo_pdf
from core.stats import filter_by_keyword, filter_by_tag
from core.validation import coerce_keyword, ensure_unique_block_ids, validate_tags
from models.memo import Block, Memo, blocks_to_storage
from schemas.memo import MemoListOut, MemoOut, MemoPatch
from settings import get_settings

logger = logging.getLogger(__name__)


# ---- DI from main.py ----
def get_storage(request: Request):
    from main import get_storage_adapter
    return get_storage_adapter(request)


def get_images(request: Request):
    from main import get_image_storage
    return get_image_storage(request)


Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/memos", tags=["memos"])


# ---------- Helpers ----------

def load_memo(storage, memo_id: str) -> Memo:
    """Fetch a memo or raise 404 MEMO_NOT_FOUND."""
    try:
        row = storage.get_memo(memo_id)
    except Exception as e:
        logger.error(f"Failed to load memo {memo_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load memo")
    if not row:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MEMO_NOT_FOUND")
    return Memo.from_storage(row)


def ensure_owner(memo: Memo, identity: SessionIdentity) -> None:
    if memo.user_id != identity.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not the owner of this memo")


def ensure_readable(memo: Memo, identity: SessionIdentity) -> None:
    if not memo.is_public and memo.user_id != identity.user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="This memo is private")


def ensure_known_images(blocks: List[Block], memo: Memo, images) -> None:
    """Block images must already be on the memo or come from our image storage."""
    existing = {b.image_url for b in memo.blocks if b.image_url}
    for block in blocks:
        url = block.image_url
        if url and url not in existing and not images.owns_url(url):
            logger.warning(f"Rejected foreign image URL on memo {memo.memo_id}: {url}")
            raise HTTPException(status_code=400, detail="Image URL was not issued by this service")


def _content_disposition(filename: str) -> str:
    quoted = urllib.parse.quote(filename)
    return f"attachment; filename=\"memo\"; filename*=UTF-8''{quoted}"


# ---------- Endpoints ----------

@router.get("", response_model=MemoListOut)
async def list_my_memos(
    identity: Identity,
    storage=Depends(get_storage),
    keyword: Optional[str] = Query(None, max_length=200),
    tag: Optional[str] = Query(None, max_length=50),
):
    """The caller's memos, newest first, optionally filtered by keyword and tag."""
    try:
        rows = storage.list_memos_by_owner(identity.user_id)
    except Exception as e:
        logger.error(f"Failed to list memos for {identity.user_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to load memos")

    memos: List[Memo] = [Memo.from_storage(r) for r in rows]
    memos = filter_by_keyword(memos, coerce_keyword(keyword))
    if tag:
        memos = filter_by_tag(memos, tag)
    return {"memos": [m.to_api() for m in memos], "count": len(memos)}


@router.get("/public", response_model=MemoListOut)
async def list_public_memos(
    identity: Identity,
    storage=Depends(get_storage),
    keyword: Optional[str] = Query(None, max_length=200),
):
    """Shared feed of public memos, newest first."""
    try:
        rows = storage.list_public_memos()
    except Exception as e:
        logger.error(f"Failed to list public memos: {e}")
        raise HTTPException(status_code=500, detail="Failed to load public memos")

    memos = filter_by_keyword([Memo.from_storage(r) for r in rows], coerce_keyword(keyword))
    return {"memos": [m.to_api() for m in memos], "count": len(memos)}


@router.get("/{memo_id}", response_model=MemoOut)
async def get_memo(memo_id: str, identity: Identity, storage=Depends(get_storage)):
    memo = load_memo(storage, memo_id)
    ensure_readable(memo, identity)
    return memo.to_api()


@router.patch("/{memo_id}", response_model=MemoOut)
async def patch_memo(
    memo_id: str,
    body: MemoPatch,
    request: Request,
    identity: Identity,
    storage=Depends(get_storage),
    images=Depends(get_images),
):
    """Partial update from the edit page. Last write wins."""
    memo = load_memo(storage, memo_id)
    ensure_owner(memo, identity)

    catalog = request.app.state.catalog
    updates = {}
    if body.title is not None:
        updates["title"] = body.title
    if body.blocks is not None:
        blocks = [Block.from_api(b.model_dump()) for b in body.blocks]
        raw = blocks_to_storage(blocks)
        ensure_unique_block_ids(raw)
        validate_tags([t for b in blocks for t in b.tags], catalog.common_tags)
        ensure_known_images(blocks, memo, images)
        updates["blocks"] = raw

    is_public = memo.is_public if body.is_public is None else body.is_public
    if body.is_public is not None:
        updates["is_public"] = is_public
    if updates:
        public_identity = resolve_public_identity(storage, identity)
        updates["user_name"] = public_identity.public_name() if is_public else None

    try:
        storage.update_memo(memo_id, updates)
    except MemoNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MEMO_NOT_FOUND")
    except Exception as e:
        logger.error(f"Failed to update memo {memo_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to update memo")

    return load_memo(storage, memo_id).to_api()


@router.delete("/{memo_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_memo(
    memo_id: str,
    identity: Identity,
    storage=Depends(get_storage),
    images=Depends(get_images),
):
    memo = load_memo(storage, memo_id)
    ensure_owner(memo, identity)

    try:
        storage.delete_memo(memo_id)
    except MemoNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MEMO_NOT_FOUND")
    except Exception as e:
        logger.error(f"Failed to delete memo {memo_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to delete memo")

    # best effort, after the memo row is gone
    for block in memo.blocks:
        if block.image_url:
            try:
                images.delete_image(block.image_url)
            except Exception as e:
                logger.warning(f"Could not delete image {block.image_url}: {e}")

    logger.info(f"Deleted memo {memo_id}")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{memo_id}/export.csv")
async def export_csv(memo_id: str, identity: Identity, storage=Depends(get_storage)):
    memo = load_memo(storage, memo_id)
    ensure_readable(memo, identity)
    data = memo_to_csv(memo, tz=get_settings().timezone)
    return Response(
        content=data,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": _content_disposition(export_filename(memo, "csv"))},
    )


@router.get("/{memo_id}/export.pdf")
async def export_pdf(memo_id: str, identity: Identity, storage=Depends(get_storage)):
    memo = load_memo(storage, memo_id)
    ensure_readable(memo, identity)

    settings = get_settings()
    try:
        data = await generate_memo_pdf(
            memo,
            font_path=settings.pdf_font_path,
            tz=settings.timezone,
            fetch_timeout=settings.export_fetch_timeout_seconds,
        )
    except PdfFontMissing as e:
        logger.error(f"PDF export unavailable for memo {memo_id}: {e}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="PDF_FONT_UNAVAILABLE")
    except Exception as e:
        logger.error(f"PDF export failed for memo {memo_id}: {e}")
        raise HTTPException(status_code=500, detail="Failed to generate PDF")

    return Response(
        content=data,
        media_type="application/pdf",
        headers={"Content-Disposition": _content_disposition(export_filename(memo, "pdf"))},
    )
