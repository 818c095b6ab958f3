# services/api/models/wizard.py
"""
Record-creation wizard.

    select_type -> select_mode -> [select_custom_categories] -> editing(i) -> review -> saved

`select_custom_categories` is only visited in custom mode; default mode goes
straight from select_mode to editing(0). The edit-existing variant starts in
editing(0) with a memo's title and blocks and updates that memo on save.

The controller never touches ambient state: the catalog and the session
identity are passed in, and persistence/image storage are passed to the
operations that need them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import uuid4

from adapters.base import MemoNotFound

from .catalog import CategoryCatalog, CategoryHint
from .memo import Block, BlockType, Memo, RecordMode, RecordType, blocks_to_storage

if TYPE_CHECKING:
    from adapters.base import StorageAdapter
    from core.identity import SessionIdentity
    from core.image_storage import ImageStorage

logger = logging.getLogger(__name__)

MAX_CUSTOM_CATEGORIES = 10


class WizardStep(str, Enum):
    SELECT_TYPE = "select_type"
    SELECT_MODE = "select_mode"
    SELECT_CUSTOM_CATEGORIES = "select_custom_categories"
    EDITING = "editing"
    REVIEW = "review"
    SAVED = "saved"


class WizardError(ValueError):
    """Base class for wizard failures. None of them lose draft data."""

    def __init__(self, code: str, message: Optional[str] = None):
        super().__init__(message or code)
        self.code = code


class InvalidTransition(WizardError):
    """Operation called in a step where it is not allowed."""


class WizardValidationError(WizardError):
    """Local validation failure (empty title, nothing written, unknown tag...)."""


class WizardSaveError(WizardError):
    """The persistence call failed; the draft is kept so save() can be retried."""


@dataclass
class Draft:
    """The in-progress memo. `blocks[i].order == i` always holds."""

    record_type: Optional[RecordType]
    record_mode: Optional[RecordMode]
    blocks: List[Block] = field(default_factory=list)
    title: str = ""
    is_public: bool = False

    def snapshot(self) -> "Draft":
        return Draft(
            record_type=self.record_type,
            record_mode=self.record_mode,
            blocks=[b.copy() for b in self.blocks],
            title=self.title,
            is_public=self.is_public,
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "record_type": self.record_type.value if self.record_type else None,
            "record_mode": self.record_mode.value if self.record_mode else None,
            "blocks": [b.to_api() for b in self.blocks],
            "is_public": self.is_public,
        }


class WizardController:
    def __init__(
        self,
        catalog: CategoryCatalog,
        identity: "SessionIdentity",
        *,
        max_custom_categories: int = MAX_CUSTOM_CATEGORIES,
        wizard_id: Optional[str] = None,
    ) -> None:
        self.wizard_id = wizard_id or uuid4().hex
        self.catalog = catalog
        self.identity = identity
        self.max_custom_categories = max_custom_categories

        self.step = WizardStep.SELECT_TYPE
        self.block_index = 0
        self.record_type: Optional[RecordType] = None
        self.record_mode: Optional[RecordMode] = None
        self.selected_categories: List[str] = []
        self.draft: Optional[Draft] = None
        self.review_snapshot: Optional[Draft] = None

        self.editing_memo_id: Optional[str] = None
        self.saved_memo_id: Optional[str] = None
        self.is_saving = False

    @classmethod
    def for_existing(
        cls,
        memo: Memo,
        catalog: CategoryCatalog,
        identity: "SessionIdentity",
        **kwargs: Any,
    ) -> "WizardController":
        """Start directly in editing(0) on a copy of a saved memo."""
        if not memo.blocks:
            raise WizardValidationError("NO_BLOCKS", "Memo has no blocks to edit")
        ctl = cls(catalog, identity, **kwargs)
        blocks = [b.copy() for b in memo.sorted_blocks()]
        for idx, b in enumerate(blocks):
            b.order = idx
        ctl.draft = Draft(
            record_type=None,
            record_mode=None,
            blocks=blocks,
            title=memo.title,
            is_public=memo.is_public,
        )
        ctl.editing_memo_id = memo.memo_id
        ctl.step = WizardStep.EDITING
        ctl.block_index = 0
        return ctl

    # ========== Guards ==========

    def _require(self, *steps: WizardStep) -> None:
        if self.step not in steps:
            allowed = ", ".join(s.value for s in steps)
            raise InvalidTransition(
                "INVALID_STEP",
                f"Not allowed in step '{self.step.value}' (expected {allowed})",
            )

    def _require_draft(self) -> Draft:
        if self.draft is None:
            raise InvalidTransition("NO_DRAFT", "Wizard has no draft yet")
        return self.draft

    @property
    def is_last_block(self) -> bool:
        return self.draft is not None and self.block_index == len(self.draft.blocks) - 1

    @property
    def current_block(self) -> Block:
        self._require(WizardStep.EDITING)
        return self._require_draft().blocks[self.block_index]

    # ========== Selection steps ==========

    def choose_type(self, record_type: RecordType) -> None:
        self._require(
            WizardStep.SELECT_TYPE,
            WizardStep.SELECT_MODE,
            WizardStep.SELECT_CUSTOM_CATEGORIES,
        )
        self.record_type = RecordType(record_type)
        self.record_mode = None
        self.selected_categories = []
        self.step = WizardStep.SELECT_MODE

    def go_back(self) -> None:
        """Undo the last selection step (the per-step cancel button)."""
        self._require(WizardStep.SELECT_MODE, WizardStep.SELECT_CUSTOM_CATEGORIES)
        if self.step == WizardStep.SELECT_CUSTOM_CATEGORIES:
            self.record_mode = None
            self.selected_categories = []
            self.step = WizardStep.SELECT_MODE
        else:
            self.record_type = None
            self.step = WizardStep.SELECT_TYPE

    def choose_mode(self, record_mode: RecordMode) -> None:
        self._require(WizardStep.SELECT_MODE)
        self.record_mode = RecordMode(record_mode)
        if self.record_mode == RecordMode.DEFAULT:
            self.selected_categories = self.catalog.category_names(self.record_type, RecordMode.DEFAULT)
            self._start_editing()
        else:
            self.selected_categories = []
            self.step = WizardStep.SELECT_CUSTOM_CATEGORIES

    def available_custom_categories(self) -> List[str]:
        if self.record_type is None:
            return []
        return self.catalog.category_names(self.record_type, RecordMode.CUSTOM)

    def toggle_custom_category(self, name: str) -> None:
        self._require(WizardStep.SELECT_CUSTOM_CATEGORIES)
        if name not in self.available_custom_categories():
            raise WizardValidationError("UNKNOWN_CATEGORY", f"Unknown category: {name}")
        if name in self.selected_categories:
            self.selected_categories = [c for c in self.selected_categories if c != name]
        elif len(self.selected_categories) < self.max_custom_categories:
            self.selected_categories = self.selected_categories + [name]
        # selection is full: further additions are ignored

    def confirm_custom_categories(self) -> None:
        self._require(WizardStep.SELECT_CUSTOM_CATEGORIES)
        if not self.selected_categories:
            raise WizardValidationError("NO_CATEGORIES_SELECTED", "Select at least one category")
        self._start_editing()

    def _start_editing(self) -> None:
        blocks = [
            Block(category_name=name, type=BlockType.TEXT, text="", tags=[], order=idx)
            for idx, name in enumerate(self.selected_categories)
        ]
        self.draft = Draft(
            record_type=self.record_type,
            record_mode=self.record_mode,
            blocks=blocks,
        )
        self.block_index = 0
        self.step = WizardStep.EDITING

    # ========== Editing ==========

    def set_title(self, text: str) -> None:
        self._require(WizardStep.EDITING)
        self._require_draft().title = text or ""

    def set_block_text(self, text: str) -> None:
        self.current_block.text = text or ""

    def toggle_block_tag(self, tag: str) -> None:
        block = self.current_block
        if not self.catalog.is_known_tag(tag):
            raise WizardValidationError("UNKNOWN_TAG", f"Unknown tag: {tag}")
        block.toggle_tag(tag)

    def apply_template(self, template: str) -> None:
        block = self.current_block
        existing = block.text or ""
        block.text = existing + ("\n\n" if existing else "") + (template or "")

    def upload_block_image(
        self,
        image_storage: "ImageStorage",
        data: bytes,
        *,
        content_type: Optional[str],
        filename: str,
    ) -> str:
        """
        Upload first, then point the focused block at the result. If the upload
        raises, the block keeps whatever image it had before.
        """
        block = self.current_block
        url = image_storage.upload_image(
            self.identity.user_id,
            data,
            content_type=content_type,
            filename=filename,
            memo_id=self.editing_memo_id,
        )
        block.image_url = url
        block.type = BlockType.IMAGE
        return url

    def set_block_caption(self, caption: Optional[str]) -> None:
        block = self.current_block
        if not block.image_url:
            raise WizardValidationError("NO_IMAGE", "Block has no image to caption")
        block.caption = caption or None

    def remove_block_image(self) -> None:
        block = self.current_block
        block.image_url = None
        block.caption = None
        block.type = BlockType.TEXT

    def hint_for_current_block(self) -> CategoryHint:
        block = self.current_block
        return self.catalog.hint_for(block.category_name, self._require_draft().record_type)

    def next(self) -> None:
        self._require(WizardStep.EDITING)
        if self.is_last_block:
            raise InvalidTransition("AT_LAST_BLOCK", "Already at the last block")
        self.block_index += 1

    def previous(self) -> None:
        self._require(WizardStep.EDITING)
        if self.block_index == 0:
            raise InvalidTransition("AT_FIRST_BLOCK", "Already at the first block")
        self.block_index -= 1

    # ========== Review ==========

    def to_review(self) -> Draft:
        self._require(WizardStep.EDITING)
        draft = self._require_draft()
        if not self.is_last_block:
            raise InvalidTransition("NOT_AT_LAST_BLOCK", "Review is reached from the last block")
        if not draft.title.strip():
            raise WizardValidationError("TITLE_REQUIRED", "Title is required")
        self.review_snapshot = draft.snapshot()
        self.step = WizardStep.REVIEW
        return self.review_snapshot

    def toggle_public(self) -> bool:
        self._require(WizardStep.REVIEW)
        draft = self._require_draft()
        draft.is_public = not draft.is_public
        if self.review_snapshot is not None:
            self.review_snapshot.is_public = draft.is_public
        return draft.is_public

    def back_to_edit(self) -> None:
        self._require(WizardStep.REVIEW)
        self.review_snapshot = None
        self.step = WizardStep.EDITING
        self.block_index = len(self._require_draft().blocks) - 1

    # ========== Save ==========

    def save(self, storage: "StorageAdapter") -> str:
        """
        Persist the draft. New drafts are created; edit sessions update their memo.

        Allowed in review, and in editing(last) for edit sessions. Raises
        WizardValidationError / InvalidTransition without side effects, and
        WizardSaveError when the storage call fails (the draft is kept).
        """
        if self.is_saving:
            raise InvalidTransition("SAVE_IN_PROGRESS", "A save is already running")
        if self.editing_memo_id and self.step == WizardStep.EDITING:
            if not self.is_last_block:
                raise InvalidTransition("NOT_AT_LAST_BLOCK", "Save is reached from the last block")
        else:
            self._require(WizardStep.REVIEW)

        draft = self._require_draft()
        title = draft.title.strip()
        if not title:
            raise WizardValidationError("TITLE_REQUIRED", "Title is required")
        if self.step == WizardStep.REVIEW and not any(b.has_text() for b in draft.blocks):
            raise WizardValidationError("CONTENT_REQUIRED", "Write something in at least one block")

        user_name = self.identity.public_name() if draft.is_public else None
        blocks = blocks_to_storage(draft.blocks)

        self.is_saving = True
        try:
            if self.editing_memo_id:
                storage.update_memo(
                    self.editing_memo_id,
                    {
                        "title": title,
                        "blocks": blocks,
                        "is_public": draft.is_public,
                        "user_name": user_name,
                    },
                )
                memo_id = self.editing_memo_id
            else:
                memo_id = storage.create_memo(
                    user_id=self.identity.user_id,
                    title=title,
                    blocks=blocks,
                    is_public=draft.is_public,
                    user_name=user_name,
                )
        except MemoNotFound:
            raise
        except Exception as e:
            logger.error(f"Saving wizard {self.wizard_id} failed: {e}")
            raise WizardSaveError("SAVE_FAILED", "Could not save the memo, please retry") from e
        finally:
            self.is_saving = False

        self.saved_memo_id = memo_id
        self.review_snapshot = None
        self.step = WizardStep.SAVED
        logger.info(f"Wizard {self.wizard_id} saved memo {memo_id}")
        return memo_id

    # ========== Serialisation ==========

    def to_api(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "wizard_id": self.wizard_id,
            "step": self.step.value,
            "block_index": self.block_index if self.draft else None,
            "block_count": len(self.draft.blocks) if self.draft else 0,
            "record_type": self.record_type.value if self.record_type else None,
            "record_mode": self.record_mode.value if self.record_mode else None,
            "selected_categories": list(self.selected_categories),
            "available_categories": self.available_custom_categories()
            if self.step == WizardStep.SELECT_CUSTOM_CATEGORIES
            else [],
            "editing_memo_id": self.editing_memo_id,
            "saved_memo_id": self.saved_memo_id,
            "draft": self.draft.to_api() if self.draft else None,
            "hint": None,
        }
        if self.step == WizardStep.EDITING:
            hint = self.hint_for_current_block()
            data["hint"] = {
                "category_name": hint.category_name,
                "hint": hint.hint,
                "templates": list(hint.templates),
                "detailed_templates": [
                    {"name": h.name, "template": h.template} for h in hint.detailed_templates
                ],
            }
        return data
