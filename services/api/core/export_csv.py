# services/api/core/export_csv.py
"""
CSV export of a single memo, laid out for spreadsheet apps:

    "タイトル","<title>"
    "作成日","YYYY/MM/DD"

    "カテゴリ","内容","タグ"
    "<category>","<text>","<tag1>; <tag2>"
"""
from __future__ import annotations

import csv
import io
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo

from models.memo import Memo

BOM = "\ufeff"
HEADER_ROW = ["カテゴリ", "内容", "タグ"]


def format_date(dt: Optional[datetime], tz: Optional[str] = None) -> str:
    if dt is None:
        return ""
    if tz:
        dt = dt.astimezone(ZoneInfo(tz))
    return dt.strftime("%Y/%m/%d")


def memo_rows(memo: Memo, tz: Optional[str] = None) -> List[List[str]]:
    rows: List[List[str]] = [
        ["タイトル", memo.title],
        ["作成日", format_date(memo.created_at, tz)],
        [],
        HEADER_ROW,
    ]
    for block in memo.content_blocks():
        rows.append([block.category_name, block.text or "", "; ".join(block.tags)])
    return rows


def memo_to_csv(memo: Memo, tz: Optional[str] = None) -> bytes:
    """UTF-8 with BOM, every cell quoted."""
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in memo_rows(memo, tz):
        writer.writerow(row)
    return (BOM + buf.getvalue()).encode("utf-8")


def export_filename(memo: Memo, ext: str) -> str:
    name = (memo.title or "").strip().replace("/", "_").replace("\\", "_")
    return f"{name or 'memo'}.{ext}"
