"""
Tests for the record-creation wizard state machine.

Run with: pytest tests/test_wizard.py -v
"""
import random

import pytest
from fastapi import HTTPException

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adapters.base import MemoNotFound
from core.identity import SessionIdentity
from core.validation import validate_image_upload
from models.catalog import (
    DEFAULT_CATALOG,
    CategoryCatalog,
    CategoryData,
    HintTemplate,
)
from models.memo import Block, BlockType, Memo, RecordMode, RecordType
from models.wizard import (
    InvalidTransition,
    WizardController,
    WizardSaveError,
    WizardStep,
    WizardValidationError,
)

IDENTITY = SessionIdentity(user_id="u1", display_name="Taro", email="taro@example.com")

CUSTOM_NAMES = tuple(f"cat{i:02d}" for i in range(12))

WIDE_CATALOG = CategoryCatalog(
    default_categories={
        RecordType.BUILDING: (CategoryData("概要", "hint", ("名称：",)), CategoryData("所感")),
        RecordType.ACTIVITY: (CategoryData("活動"),),
    },
    custom_categories={RecordType.BUILDING: CUSTOM_NAMES, RecordType.ACTIVITY: CUSTOM_NAMES},
    hint_templates={"cat00": (HintTemplate("基本", "場所："),)},
    common_tags=("#気づき", "#反省"),
)


class MemoryStorage:
    """Minimal in-memory persistence double."""

    def __init__(self):
        self.memos = {}
        self.created = 0

    def create_memo(self, user_id, title, blocks, is_public=False, user_name=None):
        self.created += 1
        memo_id = f"m{self.created}"
        self.memos[memo_id] = {
            "memo_id": memo_id,
            "user_id": user_id,
            "title": title,
            "blocks": blocks,
            "is_public": is_public,
            "user_name": user_name,
            "created_at": "2024-06-01T00:00:00+00:00",
        }
        return memo_id

    def update_memo(self, memo_id, updates):
        if memo_id not in self.memos:
            raise MemoNotFound(memo_id)
        self.memos[memo_id].update(updates)


class FailingStorage:
    def create_memo(self, *args, **kwargs):
        raise RuntimeError("backend down")

    def update_memo(self, *args, **kwargs):
        raise RuntimeError("backend down")


class FakeImageStorage:
    def __init__(self, fail=False):
        self.fail = fail
        self.uploads = []

    def upload_image(self, owner_id, data, *, content_type, filename, memo_id=None):
        validate_image_upload(content_type, len(data))
        if self.fail:
            raise RuntimeError("upload failed")
        self.uploads.append((owner_id, filename, memo_id))
        return f"https://img.test/{owner_id}/{filename}"


def _default_wizard(record_type=RecordType.BUILDING, catalog=DEFAULT_CATALOG):
    ctl = WizardController(catalog, IDENTITY)
    ctl.choose_type(record_type)
    ctl.choose_mode(RecordMode.DEFAULT)
    return ctl


def _custom_wizard(names, catalog=WIDE_CATALOG):
    ctl = WizardController(catalog, IDENTITY)
    ctl.choose_type(RecordType.BUILDING)
    ctl.choose_mode(RecordMode.CUSTOM)
    for name in names:
        ctl.toggle_custom_category(name)
    ctl.confirm_custom_categories()
    return ctl


def _to_last(ctl):
    while not ctl.is_last_block:
        ctl.next()


class TestSelectionSteps:
    """Tests for type/mode/category selection."""

    def test_initial_state(self):
        ctl = WizardController(DEFAULT_CATALOG, IDENTITY)
        assert ctl.step == WizardStep.SELECT_TYPE
        assert ctl.draft is None

    def test_choose_type_moves_to_mode(self):
        ctl = WizardController(DEFAULT_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.ACTIVITY)
        assert ctl.step == WizardStep.SELECT_MODE
        assert ctl.record_type == RecordType.ACTIVITY

    def test_choose_type_again_resets_selection(self):
        """Re-choosing the type from the category step clears mode and selection."""
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        ctl.toggle_custom_category("cat01")
        ctl.choose_type(RecordType.ACTIVITY)
        assert ctl.step == WizardStep.SELECT_MODE
        assert ctl.record_mode is None
        assert ctl.selected_categories == []

    def test_default_mode_builds_catalog_blocks(self):
        """Default mode gives the 7 catalog categories in catalog order."""
        ctl = _default_wizard()
        assert ctl.step == WizardStep.EDITING
        assert ctl.block_index == 0
        names = [b.category_name for b in ctl.draft.blocks]
        assert names == DEFAULT_CATALOG.category_names(RecordType.BUILDING, RecordMode.DEFAULT)
        assert len(names) == 7
        assert [b.order for b in ctl.draft.blocks] == list(range(7))

    def test_go_back(self):
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        ctl.toggle_custom_category("cat03")
        ctl.go_back()
        assert ctl.step == WizardStep.SELECT_MODE
        assert ctl.selected_categories == []
        ctl.go_back()
        assert ctl.step == WizardStep.SELECT_TYPE
        assert ctl.record_type is None

    def test_go_back_not_allowed_from_type(self):
        ctl = WizardController(DEFAULT_CATALOG, IDENTITY)
        with pytest.raises(InvalidTransition):
            ctl.go_back()

    def test_mode_before_type_is_invalid(self):
        ctl = WizardController(DEFAULT_CATALOG, IDENTITY)
        with pytest.raises(InvalidTransition):
            ctl.choose_mode(RecordMode.DEFAULT)

    def test_toggle_unknown_category(self):
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        with pytest.raises(WizardValidationError) as exc:
            ctl.toggle_custom_category("nope")
        assert exc.value.code == "UNKNOWN_CATEGORY"

    def test_toggle_twice_deselects(self):
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        ctl.toggle_custom_category("cat02")
        ctl.toggle_custom_category("cat05")
        ctl.toggle_custom_category("cat02")
        assert ctl.selected_categories == ["cat05"]

    def test_eleventh_category_is_ignored(self):
        """Selection is capped at 10; further additions are a silent no-op."""
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        for name in CUSTOM_NAMES:
            ctl.toggle_custom_category(name)
        assert ctl.selected_categories == list(CUSTOM_NAMES[:10])

    def test_confirm_requires_selection(self):
        ctl = WizardController(WIDE_CATALOG, IDENTITY)
        ctl.choose_type(RecordType.BUILDING)
        ctl.choose_mode(RecordMode.CUSTOM)
        with pytest.raises(WizardValidationError) as exc:
            ctl.confirm_custom_categories()
        assert exc.value.code == "NO_CATEGORIES_SELECTED"
        assert ctl.step == WizardStep.SELECT_CUSTOM_CATEGORIES

    def test_custom_blocks_follow_selection_order(self):
        """For every selection size 1..10 there is one block per category in selection order."""
        rng = random.Random(7)
        for size in range(1, 11):
            names = rng.sample(CUSTOM_NAMES, size)
            ctl = _custom_wizard(names)
            assert [b.category_name for b in ctl.draft.blocks] == names
            assert [b.order for b in ctl.draft.blocks] == list(range(size))
            assert len({b.block_id for b in ctl.draft.blocks}) == size


class TestEditing:
    """Tests for per-block editing and navigation."""

    def test_edits_only_touch_focused_block(self):
        ctl = _custom_wizard(["cat00", "cat01", "cat02"])
        ctl.set_block_text("first")
        ctl.next()
        ctl.set_block_text("second")
        assert [b.text for b in ctl.draft.blocks] == ["first", "second", ""]

    def test_navigation_does_not_mutate(self):
        """Any sequence of next/previous leaves block content unchanged."""
        ctl = _custom_wizard(["cat00", "cat01", "cat02", "cat03"])
        ctl.set_block_text("a")
        ctl.toggle_block_tag("#反省")
        before = [b.to_storage() for b in ctl.draft.blocks]

        rng = random.Random(3)
        for _ in range(50):
            try:
                if rng.random() < 0.5:
                    ctl.next()
                else:
                    ctl.previous()
            except InvalidTransition:
                pass
        assert [b.to_storage() for b in ctl.draft.blocks] == before

    def test_navigation_bounds(self):
        ctl = _custom_wizard(["cat00", "cat01"])
        with pytest.raises(InvalidTransition):
            ctl.previous()
        ctl.next()
        with pytest.raises(InvalidTransition):
            ctl.next()
        assert ctl.block_index == 1

    def test_toggle_tag_is_involution(self):
        ctl = _custom_wizard(["cat00"])
        ctl.toggle_block_tag("#気づき")
        original = list(ctl.current_block.tags)
        ctl.toggle_block_tag("#反省")
        ctl.toggle_block_tag("#反省")
        assert ctl.current_block.tags == original

    def test_unknown_tag_rejected(self):
        ctl = _custom_wizard(["cat00"])
        with pytest.raises(WizardValidationError) as exc:
            ctl.toggle_block_tag("#nope")
        assert exc.value.code == "UNKNOWN_TAG"
        assert ctl.current_block.tags == []

    def test_apply_template_appends(self):
        ctl = _custom_wizard(["cat00"])
        ctl.set_block_text("orig")
        ctl.apply_template("t1")
        ctl.apply_template("t2")
        assert ctl.current_block.text == "orig\n\nt1\n\nt2"

    def test_apply_template_on_empty_block(self):
        ctl = _custom_wizard(["cat00"])
        ctl.apply_template("場所：")
        assert ctl.current_block.text == "場所："

    def test_hint_for_default_category(self):
        ctl = _default_wizard()
        hint = ctl.hint_for_current_block()
        assert hint.category_name == "施設の概要"
        assert hint.hint
        assert hint.templates
        assert [t.name for t in hint.detailed_templates] == ["施設情報", "駐車場情報", "料金"]

    def test_hint_for_custom_category(self):
        """Custom categories carry no inline hint, only detailed templates."""
        ctl = _custom_wizard(["cat00", "cat01"])
        hint = ctl.hint_for_current_block()
        assert hint.hint is None
        assert hint.detailed_templates[0].template == "場所："
        ctl.next()
        assert not ctl.hint_for_current_block().available

    def test_editing_ops_invalid_outside_editing(self):
        ctl = WizardController(DEFAULT_CATALOG, IDENTITY)
        with pytest.raises(InvalidTransition):
            ctl.set_block_text("x")
        with pytest.raises(InvalidTransition):
            ctl.set_title("x")


class TestBlockImages:
    """Tests for attaching images to blocks."""

    def test_upload_sets_url_and_type(self):
        ctl = _custom_wizard(["cat00"])
        images = FakeImageStorage()
        url = ctl.upload_block_image(images, b"\x89PNG...", content_type="image/png", filename="a.png")
        assert ctl.current_block.image_url == url
        assert ctl.current_block.type == BlockType.IMAGE
        assert images.uploads == [("u1", "a.png", None)]

    def test_rejected_upload_leaves_block(self):
        ctl = _custom_wizard(["cat00"])
        with pytest.raises(HTTPException) as exc:
            ctl.upload_block_image(FakeImageStorage(), b"%PDF", content_type="application/pdf", filename="x.pdf")
        assert exc.value.status_code == 400
        assert ctl.current_block.image_url is None
        assert ctl.current_block.type == BlockType.TEXT

    def test_failed_upload_keeps_previous_image(self):
        ctl = _custom_wizard(["cat00"])
        ctl.upload_block_image(FakeImageStorage(), b"img", content_type="image/jpeg", filename="a.jpg")
        before = ctl.current_block.image_url
        with pytest.raises(RuntimeError):
            ctl.upload_block_image(FakeImageStorage(fail=True), b"img", content_type="image/jpeg", filename="b.jpg")
        assert ctl.current_block.image_url == before

    def test_caption_and_remove(self):
        ctl = _custom_wizard(["cat00"])
        with pytest.raises(WizardValidationError):
            ctl.set_block_caption("no image yet")
        ctl.upload_block_image(FakeImageStorage(), b"img", content_type="image/webp", filename="a.webp")
        ctl.set_block_caption("入口")
        assert ctl.current_block.caption == "入口"
        ctl.remove_block_image()
        assert ctl.current_block.image_url is None
        assert ctl.current_block.caption is None
        assert ctl.current_block.type == BlockType.TEXT


class TestReview:
    """Tests for review and the public flag."""

    def test_review_requires_last_block(self):
        ctl = _custom_wizard(["cat00", "cat01"])
        ctl.set_title("t")
        with pytest.raises(InvalidTransition):
            ctl.to_review()

    def test_empty_title_keeps_editing_state(self):
        """Default building draft without a title stays in editing(6) with text intact."""
        ctl = _default_wizard()
        texts = []
        for i in range(7):
            ctl.set_block_text(f"text {i}")
            texts.append(f"text {i}")
            if i < 6:
                ctl.next()
        with pytest.raises(WizardValidationError) as exc:
            ctl.to_review()
        assert exc.value.code == "TITLE_REQUIRED"
        assert ctl.step == WizardStep.EDITING
        assert ctl.block_index == 6
        assert [b.text for b in ctl.draft.blocks] == texts

    def test_review_snapshot_is_a_copy(self):
        ctl = _custom_wizard(["cat00"])
        ctl.set_title("t")
        ctl.set_block_text("a")
        snapshot = ctl.to_review()
        ctl.draft.blocks[0].text = "changed"
        assert snapshot.blocks[0].text == "a"

    def test_toggle_public_and_back(self):
        ctl = _custom_wizard(["cat00", "cat01"])
        ctl.set_title("t")
        ctl.next()
        ctl.to_review()
        assert ctl.toggle_public() is True
        ctl.back_to_edit()
        assert ctl.step == WizardStep.EDITING
        assert ctl.block_index == 1
        assert ctl.draft.is_public is True
        with pytest.raises(InvalidTransition):
            ctl.toggle_public()


class TestSave:
    """Tests for persisting drafts."""

    def _reviewed(self, text="行きました", public=False):
        ctl = _custom_wizard(["cat00"])
        ctl.set_title("動物園")
        ctl.set_block_text(text)
        ctl.to_review()
        if public:
            ctl.toggle_public()
        return ctl

    def test_private_save_has_no_user_name(self):
        storage = MemoryStorage()
        ctl = self._reviewed()
        memo_id = ctl.save(storage)
        row = storage.memos[memo_id]
        assert ctl.step == WizardStep.SAVED
        assert row["user_name"] is None
        assert row["is_public"] is False
        assert row["blocks"][0]["text"] == "行きました"
        assert row["blocks"][0]["tags"] == []

    def test_public_save_uses_display_name(self):
        storage = MemoryStorage()
        ctl = self._reviewed(public=True)
        row = storage.memos[ctl.save(storage)]
        assert row["is_public"] is True
        assert row["user_name"] == "Taro"

    def test_public_name_fallbacks(self):
        assert SessionIdentity("u", email="hanako@example.com").public_name() == "hanako"
        assert SessionIdentity("u").public_name() == "Anonymous"

    def test_content_required(self):
        storage = MemoryStorage()
        ctl = self._reviewed(text="   ")
        with pytest.raises(WizardValidationError) as exc:
            ctl.save(storage)
        assert exc.value.code == "CONTENT_REQUIRED"
        assert storage.created == 0
        assert ctl.step == WizardStep.REVIEW

    def test_save_only_from_review(self):
        ctl = _custom_wizard(["cat00"])
        ctl.set_title("t")
        ctl.set_block_text("x")
        with pytest.raises(InvalidTransition):
            ctl.save(MemoryStorage())

    def test_failed_save_keeps_draft_and_can_retry(self):
        ctl = self._reviewed()
        with pytest.raises(WizardSaveError):
            ctl.save(FailingStorage())
        assert ctl.step == WizardStep.REVIEW
        assert ctl.draft.blocks[0].text == "行きました"
        assert ctl.is_saving is False

        storage = MemoryStorage()
        memo_id = ctl.save(storage)
        assert memo_id in storage.memos

    def test_single_in_flight_save(self):
        """A save attempted while another is running is refused."""
        ctl = self._reviewed()
        seen = []

        class ReentrantStorage(MemoryStorage):
            def create_memo(inner, *args, **kwargs):
                try:
                    ctl.save(inner)
                except InvalidTransition as e:
                    seen.append(e.code)
                return super().create_memo(*args, **kwargs)

        storage = ReentrantStorage()
        ctl.save(storage)
        assert seen == ["SAVE_IN_PROGRESS"]
        assert storage.created == 1


class TestEditExisting:
    """Tests for editing a saved memo."""

    def _memo(self):
        return Memo(
            memo_id="m1",
            user_id="u1",
            title="旧タイトル",
            blocks=[
                Block(category_name="所感", text="b", order=1),
                Block(category_name="施設の概要", text="a", order=0, tags=["#反省"]),
            ],
        )

    def test_starts_in_editing_sorted(self):
        ctl = WizardController.for_existing(self._memo(), DEFAULT_CATALOG, IDENTITY)
        assert ctl.step == WizardStep.EDITING
        assert ctl.block_index == 0
        assert [b.text for b in ctl.draft.blocks] == ["a", "b"]
        assert ctl.draft.title == "旧タイトル"
        # hint lookup works without a record type
        assert ctl.hint_for_current_block().hint

    def test_save_from_last_block_updates(self):
        storage = MemoryStorage()
        storage.memos["m1"] = {"memo_id": "m1", "title": "旧タイトル"}
        ctl = WizardController.for_existing(self._memo(), DEFAULT_CATALOG, IDENTITY)
        ctl.set_title("新タイトル")
        with pytest.raises(InvalidTransition):
            ctl.save(storage)
        ctl.next()
        assert ctl.save(storage) == "m1"
        assert storage.memos["m1"]["title"] == "新タイトル"
        assert storage.created == 0

    def test_save_requires_title(self):
        ctl = WizardController.for_existing(self._memo(), DEFAULT_CATALOG, IDENTITY)
        ctl.next()
        ctl.set_title("  ")
        with pytest.raises(WizardValidationError):
            ctl.save(MemoryStorage())

    def test_deleted_memo_is_not_found(self):
        ctl = WizardController.for_existing(self._memo(), DEFAULT_CATALOG, IDENTITY)
        ctl.next()
        with pytest.raises(MemoNotFound):
            ctl.save(MemoryStorage())
        assert ctl.step == WizardStep.EDITING
