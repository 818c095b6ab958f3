# services/api/models/memo.py
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4


class RecordType(str, Enum):
    BUILDING = "building"
    ACTIVITY = "activity"


class RecordMode(str, Enum):
    DEFAULT = "default"
    CUSTOM = "custom"


class BlockType(str, Enum):
    TEXT = "text"
    IMAGE = "image"


def _gen_id() -> str:
    return str(uuid4())


def parse_timestamp(val: Any) -> Optional[datetime]:
    """
    Accepts datetime objects or ISO-8601 strings (with or without a trailing 'Z').
    Naive values are taken to be UTC, which is what every adapter writes.
    """
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        s = str(val).strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        dt = datetime.fromisoformat(s)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _tags_from_storage(raw: Any) -> List[str]:
    # Sheets stores tags as a JSON list or as a comma-separated cell
    if raw is None:
        return []
    if isinstance(raw, str):
        s = raw.strip()
        if not s:
            return []
        if s.startswith("["):
            return [str(t) for t in json.loads(s) if t]
        return [t.strip() for t in s.split(",") if t.strip()]
    return [str(t) for t in raw if t]


@dataclass
class Block:
    """
    One category's content inside a memo.

    `tags` has set semantics (toggle on/off) but is kept as a list so the
    order in which the user picked tags survives a round-trip.
    """

    category_name: str
    block_id: str = field(default_factory=_gen_id)
    type: BlockType = BlockType.TEXT
    text: Optional[str] = ""
    image_url: Optional[str] = None
    caption: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    order: int = 0

    def has_content(self) -> bool:
        return bool((self.text or "").strip()) or bool(self.image_url)

    def has_text(self) -> bool:
        return bool((self.text or "").strip())

    def toggle_tag(self, tag: str) -> None:
        if tag in self.tags:
            self.tags = [t for t in self.tags if t != tag]
        else:
            self.tags = self.tags + [tag]

    def copy(self) -> "Block":
        return Block(
            category_name=self.category_name,
            block_id=self.block_id,
            type=self.type,
            text=self.text,
            image_url=self.image_url,
            caption=self.caption,
            tags=list(self.tags),
            order=self.order,
        )

    # --------------------
    # Conversions – storage layer
    # --------------------
    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Block":
        return cls(
            block_id=row.get("id") or _gen_id(),
            type=BlockType(row.get("type") or BlockType.TEXT.value),
            text=row.get("text"),
            image_url=row.get("image_url") or None,
            caption=row.get("caption") or None,
            category_name=(row.get("category_name") or "").strip(),
            tags=_tags_from_storage(row.get("tags")),
            order=int(row.get("order") or 0),
        )

    def to_storage(self) -> Dict[str, Any]:
        return {
            "id": self.block_id,
            "type": self.type.value,
            "text": self.text,
            "image_url": self.image_url,
            "caption": self.caption,
            "category_name": self.category_name,
            "tags": list(self.tags),
            "order": self.order,
        }

    # API and storage share one shape for blocks
    from_api = from_storage
    to_api = to_storage


@dataclass
class Memo:
    """
    Domain model for a saved outing memo.

    `memo_id` and `created_at` are assigned by the storage adapter.
    """

    memo_id: str
    user_id: str
    title: str
    blocks: List[Block] = field(default_factory=list)
    user_name: Optional[str] = None
    is_public: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def sorted_blocks(self) -> List[Block]:
        return sorted(self.blocks, key=lambda b: b.order)

    def content_blocks(self) -> List[Block]:
        return [b for b in self.sorted_blocks() if b.has_content()]

    @classmethod
    def from_storage(cls, row: Dict[str, Any]) -> "Memo":
        raw_blocks = row.get("blocks") or []
        if isinstance(raw_blocks, str):
            raw_blocks = json.loads(raw_blocks) if raw_blocks.strip() else []

        is_public = row.get("is_public")
        if isinstance(is_public, str):
            is_public = is_public.strip().upper() in ("TRUE", "1", "YES", "Y")

        return cls(
            memo_id=row.get("memo_id", ""),
            user_id=row.get("user_id", ""),
            user_name=row.get("user_name") or None,
            title=row.get("title") or "",
            blocks=[Block.from_storage(b) for b in raw_blocks],
            is_public=bool(is_public),
            created_at=parse_timestamp(row.get("created_at")),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_api(self) -> Dict[str, Any]:
        return {
            "memo_id": self.memo_id,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "title": self.title,
            "blocks": [b.to_api() for b in self.blocks],
            "is_public": self.is_public,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


def blocks_to_storage(blocks: List[Block]) -> List[Dict[str, Any]]:
    return [b.to_storage() for b in blocks]

