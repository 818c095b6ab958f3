"""
Pydantic schemas for memos and blocks.
"""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.memo import BlockType


class BlockIn(BaseModel):
    """A block as sent by the client (memo edit page)."""
    id: Optional[str] = Field(None, description="Stable block id; generated when omitted")
    type: BlockType = BlockType.TEXT
    text: Optional[str] = ""
    image_url: Optional[str] = None
    caption: Optional[str] = Field(None, max_length=500)
    category_name: str = Field(..., min_length=1, max_length=100)
    tags: List[str] = Field(default_factory=list)
    order: int = Field(0, ge=0)

    @field_validator("tags")
    @classmethod
    def dedupe_tags(cls, v: List[str]) -> List[str]:
        # tags have set semantics; keep first occurrence order
        return list(dict.fromkeys(t for t in v if t))


class BlockOut(BaseModel):
    id: str
    type: BlockType
    text: Optional[str] = None
    image_url: Optional[str] = None
    caption: Optional[str] = None
    category_name: str
    tags: List[str] = Field(default_factory=list)
    order: int


class MemoOut(BaseModel):
    """Memo data for list/detail views."""
    memo_id: str
    user_id: str
    user_name: Optional[str] = None
    title: str
    blocks: List[BlockOut] = Field(default_factory=list)
    is_public: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class MemoPatch(BaseModel):
    """Partial update of a memo (edit page)."""
    title: Optional[str] = Field(None, max_length=200)
    blocks: Optional[List[BlockIn]] = Field(None, min_length=1, max_length=50)
    is_public: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("title must not be blank")
        return v.strip() if v is not None else v

    @model_validator(mode="after")
    def normalize_order(self) -> "MemoPatch":
        if self.blocks:
            ids = [b.id for b in self.blocks if b.id]
            if len(ids) != len(set(ids)):
                raise ValueError("Duplicate block ids")
            self.blocks = sorted(self.blocks, key=lambda b: b.order)
            for i, block in enumerate(self.blocks):
                block.order = i
        return self


class MemoListOut(BaseModel):
    memos: List[MemoOut]
    count: int


class ImageUploadOut(BaseModel):
    url: str
