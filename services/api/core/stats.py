# services/api/core/stats.py
"""
Search and aggregation over an already-fetched list of memos.

Nothing here does I/O or mutates its inputs; callers fetch through the storage
adapter and pass "now" in explicitly.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from models.catalog import REFLECTION_TAG
from models.memo import Memo

TOP_TAG_LIMIT = 5
MONTH_WINDOW = 6


@dataclass(frozen=True)
class TagCount:
    tag: str
    count: int


@dataclass(frozen=True)
class MonthCount:
    month: str  # YYYY-MM
    count: int


@dataclass(frozen=True)
class MemoStats:
    total_count: int
    reflection_count: int
    current_month_count: int
    top_tags: List[TagCount] = field(default_factory=list)
    monthly_counts: List[MonthCount] = field(default_factory=list)

    def to_api(self) -> Dict:
        return {
            "total_count": self.total_count,
            "reflection_count": self.reflection_count,
            "current_month_count": self.current_month_count,
            "top_tags": [{"tag": t.tag, "count": t.count} for t in self.top_tags],
            "monthly_counts": [{"month": m.month, "count": m.count} for m in self.monthly_counts],
        }


def _matches_keyword(memo: Memo, needle: str) -> bool:
    if needle in (memo.title or "").lower():
        return True
    for block in memo.blocks:
        if needle in (block.text or "").lower():
            return True
        if any(needle in tag.lower() for tag in block.tags):
            return True
    return False


def filter_by_keyword(memos: Sequence[Memo], keyword: Optional[str]) -> List[Memo]:
    """Case-insensitive substring match on title, block text and tags. Empty keyword returns everything."""
    if not keyword:
        return list(memos)
    needle = keyword.lower()
    return [m for m in memos if _matches_keyword(m, needle)]


def filter_by_tag(memos: Sequence[Memo], tag: str) -> List[Memo]:
    """Memos with at least one block carrying exactly `tag`."""
    return [m for m in memos if any(tag in b.tags for b in m.blocks)]


def _month_key(dt: datetime, now: datetime) -> Tuple[int, int]:
    # compare calendar months in the caller's timezone
    if now.tzinfo is not None:
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=now.tzinfo)
        else:
            dt = dt.astimezone(now.tzinfo)
    return dt.year, dt.month


def _previous_months(now: datetime, count: int) -> List[Tuple[int, int]]:
    year, month = now.year, now.month
    months = []
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months


def top_tags(memos: Iterable[Memo], limit: int = TOP_TAG_LIMIT) -> List[TagCount]:
    counts: Dict[str, int] = {}
    for memo in memos:
        for block in memo.sorted_blocks():
            for tag in block.tags:
                counts[tag] = counts.get(tag, 0) + 1
    # stable sort: ties keep first-seen order
    ranked = sorted(counts.items(), key=lambda kv: kv[1], reverse=True)
    return [TagCount(tag=t, count=c) for t, c in ranked[:limit]]


def compute_stats(
    memos: Sequence[Memo],
    now: datetime,
    *,
    reflection_tag: str = REFLECTION_TAG,
    top_n: int = TOP_TAG_LIMIT,
    months: int = MONTH_WINDOW,
) -> MemoStats:
    current = (now.year, now.month)
    window = _previous_months(now, months)
    per_month = {key: 0 for key in window}

    current_month_count = 0
    for memo in memos:
        if memo.created_at is None:
            continue
        key = _month_key(memo.created_at, now)
        if key == current:
            current_month_count += 1
        if key in per_month:
            per_month[key] += 1

    return MemoStats(
        total_count=len(memos),
        reflection_count=len(filter_by_tag(memos, reflection_tag)),
        current_month_count=current_month_count,
        top_tags=top_tags(memos, top_n),
        monthly_counts=[
            MonthCount(month=f"{y:04d}-{m:02d}", count=per_month[(y, m)]) for y, m in window
        ],
    )
