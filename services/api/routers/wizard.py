# services/api/routers/wizard.py
"""
HTTP surface of the record-creation wizard.

Sessions live in an in-process TTL cache keyed by wizard id, so abandoned
drafts simply expire. Every transition returns the full session state.
"""
from __future__ import annotations

import logging
from typing import Annotated, Callable

from cachetools import TTLCache
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile, status

from adapters.base import MemoNotFound
from core.identity import SessionIdentity, get_identity, resolve_public_identity
from core.validation import read_upload
from models.wizard import (
    InvalidTransition,
    WizardController,
    WizardError,
    WizardSaveError,
    WizardValidationError,
)
from routers.memos import ensure_owner, get_images, get_storage, load_memo
from schemas.wizard import (
    BlockTextIn,
    CaptionIn,
    CategoryToggleIn,
    ChooseModeIn,
    ChooseTypeIn,
    TagToggleIn,
    TemplateIn,
    TitleIn,
    WizardStateOut,
)
from settings import get_settings

logger = logging.getLogger(__name__)

_settings = get_settings()
wizard_sessions: TTLCache = TTLCache(
    maxsize=_settings.wizard_max_sessions,
    ttl=_settings.wizard_session_ttl_seconds,
)
MAX_SESSIONS_PER_USER = _settings.wizard_max_sessions_per_user

Identity = Annotated[SessionIdentity, Depends(get_identity)]

router = APIRouter(prefix="/wizard", tags=["wizard"])


# ---------- Helpers ----------

def get_session(wizard_id: str, identity: Identity) -> WizardController:
    """Look up the caller's wizard; other users' sessions are invisible."""
    ctl = wizard_sessions.get(wizard_id)
    if ctl is None or ctl.identity.user_id != identity.user_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="WIZARD_NOT_FOUND")
    # re-insert to refresh the TTL
    wizard_sessions[wizard_id] = ctl
    return ctl


Session = Annotated[WizardController, Depends(get_session)]


def _register_session(ctl: WizardController) -> None:
    """
    Store a new session. A user at MAX_SESSIONS_PER_USER loses their own least
    recently used draft; when the cache is full of other users' drafts the new
    session is refused instead of evicting theirs.
    """
    wizard_sessions.expire()
    user_id = ctl.identity.user_id
    own = [wid for wid, c in wizard_sessions.items() if c.identity.user_id == user_id]
    if len(own) >= MAX_SESSIONS_PER_USER:
        wizard_sessions.pop(own[0], None)
        logger.info(f"Dropped oldest wizard {own[0]} of {user_id} (per-user limit)")
    elif len(wizard_sessions) >= wizard_sessions.maxsize:
        logger.warning(f"Wizard session capacity reached; refusing new session for {user_id}")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="WIZARD_CAPACITY_REACHED")
    wizard_sessions[ctl.wizard_id] = ctl


def _wizard_error(e: WizardError) -> HTTPException:
    if isinstance(e, InvalidTransition):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail={"code": e.code, "message": str(e)})
    if isinstance(e, WizardSaveError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail={"code": e.code, "message": str(e)})
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail={"code": e.code, "message": str(e)})


def _apply(ctl: WizardController, action: Callable[[], object]) -> dict:
    try:
        action()
    except WizardError as e:
        raise _wizard_error(e)
    return ctl.to_api()


# ---------- Session lifecycle ----------

@router.post("", response_model=WizardStateOut, status_code=status.HTTP_201_CREATED)
async def start_wizard(request: Request, identity: Identity):
    """Start a new record in select_type."""
    ctl = WizardController(
        request.app.state.catalog,
        identity,
        max_custom_categories=_settings.max_custom_categories,
    )
    _register_session(ctl)
    logger.info(f"Started wizard {ctl.wizard_id} for {identity.user_id}")
    return ctl.to_api()


@router.post("/edit/{memo_id}", response_model=WizardStateOut, status_code=status.HTTP_201_CREATED)
async def start_edit_wizard(
    memo_id: str,
    request: Request,
    identity: Identity,
    storage=Depends(get_storage),
):
    """Open an existing memo in editing(0)."""
    memo = load_memo(storage, memo_id)
    ensure_owner(memo, identity)
    try:
        ctl = WizardController.for_existing(
            memo,
            request.app.state.catalog,
            identity,
            max_custom_categories=_settings.max_custom_categories,
        )
    except WizardError as e:
        raise _wizard_error(e)
    _register_session(ctl)
    return ctl.to_api()


@router.get("/{wizard_id}", response_model=WizardStateOut)
async def get_wizard(ctl: Session):
    return ctl.to_api()


@router.delete("/{wizard_id}", status_code=status.HTTP_204_NO_CONTENT)
async def discard_wizard(wizard_id: str, ctl: Session):
    wizard_sessions.pop(wizard_id, None)
    logger.info(f"Discarded wizard {wizard_id}")


# ---------- Selection steps ----------

@router.post("/{wizard_id}/type", response_model=WizardStateOut)
async def choose_type(body: ChooseTypeIn, ctl: Session):
    return _apply(ctl, lambda: ctl.choose_type(body.record_type))


@router.post("/{wizard_id}/back", response_model=WizardStateOut)
async def go_back(ctl: Session):
    return _apply(ctl, ctl.go_back)


@router.post("/{wizard_id}/mode", response_model=WizardStateOut)
async def choose_mode(body: ChooseModeIn, ctl: Session):
    return _apply(ctl, lambda: ctl.choose_mode(body.record_mode))


@router.post("/{wizard_id}/categories/toggle", response_model=WizardStateOut)
async def toggle_category(body: CategoryToggleIn, ctl: Session):
    return _apply(ctl, lambda: ctl.toggle_custom_category(body.category_name))


@router.post("/{wizard_id}/categories/confirm", response_model=WizardStateOut)
async def confirm_categories(ctl: Session):
    return _apply(ctl, ctl.confirm_custom_categories)


# ---------- Editing ----------

@router.post("/{wizard_id}/title", response_model=WizardStateOut)
async def set_title(body: TitleIn, ctl: Session):
    return _apply(ctl, lambda: ctl.set_title(body.title))


@router.post("/{wizard_id}/block/text", response_model=WizardStateOut)
async def set_block_text(body: BlockTextIn, ctl: Session):
    return _apply(ctl, lambda: ctl.set_block_text(body.text))


@router.post("/{wizard_id}/block/tags/toggle", response_model=WizardStateOut)
async def toggle_block_tag(body: TagToggleIn, ctl: Session):
    return _apply(ctl, lambda: ctl.toggle_block_tag(body.tag))


@router.post("/{wizard_id}/block/template", response_model=WizardStateOut)
async def apply_template(body: TemplateIn, ctl: Session):
    return _apply(ctl, lambda: ctl.apply_template(body.template))


@router.post("/{wizard_id}/block/image", response_model=WizardStateOut)
async def upload_block_image(
    ctl: Session,
    file: UploadFile = File(...),
    images=Depends(get_images),
):
    """Upload an image for the focused block (validated before it is attached)."""
    data = await read_upload(file, _settings.max_image_bytes)

    def _upload():
        ctl.upload_block_image(
            images,
            data,
            content_type=file.content_type,
            filename=file.filename or "image",
        )

    try:
        return _apply(ctl, _upload)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Image upload failed for wizard {ctl.wizard_id}: {e}")
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Image upload failed, please retry")


@router.delete("/{wizard_id}/block/image", response_model=WizardStateOut)
async def remove_block_image(ctl: Session):
    return _apply(ctl, ctl.remove_block_image)


@router.post("/{wizard_id}/block/caption", response_model=WizardStateOut)
async def set_block_caption(body: CaptionIn, ctl: Session):
    return _apply(ctl, lambda: ctl.set_block_caption(body.caption))


@router.post("/{wizard_id}/next", response_model=WizardStateOut)
async def next_block(ctl: Session):
    return _apply(ctl, ctl.next)


@router.post("/{wizard_id}/previous", response_model=WizardStateOut)
async def previous_block(ctl: Session):
    return _apply(ctl, ctl.previous)


# ---------- Review & save ----------

@router.post("/{wizard_id}/review", response_model=WizardStateOut)
async def to_review(ctl: Session):
    return _apply(ctl, ctl.to_review)


@router.post("/{wizard_id}/public/toggle", response_model=WizardStateOut)
async def toggle_public(ctl: Session):
    return _apply(ctl, ctl.toggle_public)


@router.post("/{wizard_id}/edit", response_model=WizardStateOut)
async def back_to_edit(ctl: Session):
    return _apply(ctl, ctl.back_to_edit)


@router.post("/{wizard_id}/save", response_model=WizardStateOut)
async def save(ctl: Session, storage=Depends(get_storage)):
    """Persist the draft; the session stays available so a failed save can be retried."""
    try:
        ctl.identity = resolve_public_identity(storage, ctl.identity)
    except Exception as e:
        # best effort; fall back to the header identity
        logger.warning(f"Profile lookup failed for {ctl.identity.user_id}: {e}")

    try:
        ctl.save(storage)
    except MemoNotFound:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="MEMO_NOT_FOUND")
    except (InvalidTransition, WizardValidationError, WizardSaveError) as e:
        raise _wizard_error(e)
    return ctl.to_api()
