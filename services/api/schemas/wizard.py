"""
Pydantic schemas for the record-creation wizard endpoints.
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from models.memo import RecordMode, RecordType


class ChooseTypeIn(BaseModel):
    record_type: RecordType


class ChooseModeIn(BaseModel):
    record_mode: RecordMode


class CategoryToggleIn(BaseModel):
    category_name: str = Field(..., min_length=1)


class TitleIn(BaseModel):
    title: str = Field("", max_length=200)


class BlockTextIn(BaseModel):
    text: str = Field("", max_length=20000)


class TagToggleIn(BaseModel):
    tag: str = Field(..., min_length=1)


class TemplateIn(BaseModel):
    template: str = Field(..., min_length=1, max_length=5000)


class CaptionIn(BaseModel):
    caption: Optional[str] = Field(None, max_length=500)


class HintTemplateOut(BaseModel):
    name: str
    template: str


class HintOut(BaseModel):
    category_name: str
    hint: Optional[str] = None
    templates: List[str] = Field(default_factory=list)
    detailed_templates: List[HintTemplateOut] = Field(default_factory=list)


class WizardStateOut(BaseModel):
    """Snapshot of a wizard session returned after every transition."""
    wizard_id: str
    step: str
    block_index: Optional[int] = None
    block_count: int = 0
    record_type: Optional[RecordType] = None
    record_mode: Optional[RecordMode] = None
    selected_categories: List[str] = Field(default_factory=list)
    available_categories: List[str] = Field(default_factory=list)
    editing_memo_id: Optional[str] = None
    saved_memo_id: Optional[str] = None
    draft: Optional[Dict[str, Any]] = None
    hint: Optional[HintOut] = None
