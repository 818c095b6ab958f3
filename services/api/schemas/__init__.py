"""
Pydantic schemas for API request/response validation.
"""
from .memo import BlockIn, BlockOut, ImageUploadOut, MemoListOut, MemoOut, MemoPatch
from .profile import MonthCountOut, ProfileOut, ProfileUpdate, StatsOut, TagCountOut
from .wizard import (
    BlockTextIn,
    CaptionIn,
    CategoryToggleIn,
    ChooseModeIn,
    ChooseTypeIn,
    HintOut,
    HintTemplateOut,
    TagToggleIn,
    TemplateIn,
    TitleIn,
    WizardStateOut,
)

# Re-export all
__all__ = [
    "BlockIn",
    "BlockOut",
    "ImageUploadOut",
    "MemoListOut",
    "MemoOut",
    "MemoPatch",
    "MonthCountOut",
    "ProfileOut",
    "ProfileUpdate",
    "StatsOut",
    "TagCountOut",
    "BlockTextIn",
    "CaptionIn",
    "CategoryToggleIn",
    "ChooseModeIn",
    "ChooseTypeIn",
    "HintOut",
    "HintTemplateOut",
    "TagToggleIn",
    "TemplateIn",
    "TitleIn",
    "WizardStateOut",
]
