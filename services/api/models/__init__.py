from __future__ import annotations

from .memo import Block, BlockType, Memo, RecordMode, RecordType
from .catalog import DEFAULT_CATALOG, CategoryCatalog, CategoryData, CategoryHint, HintTemplate
from .wizard import (
    Draft,
    InvalidTransition,
    WizardController,
    WizardError,
    WizardSaveError,
    WizardStep,
    WizardValidationError,
)

__all__ = [
    "Block",
    "BlockType",
    "Memo",
    "RecordMode",
    "RecordType",
    "DEFAULT_CATALOG",
    "CategoryCatalog",
    "CategoryData",
    "CategoryHint",
    "HintTemplate",
    "Draft",
    "InvalidTransition",
    "WizardController",
    "WizardError",
    "WizardSaveError",
    "WizardStep",
    "WizardValidationError",
]
