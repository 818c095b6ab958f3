# services/api/core/report_pdf.py

from __future__ import annotations
import io
import logging
import os
from typing import Dict, Iterable, Optional

import httpx
from PIL import Image
from fpdf import FPDF

from core.export_csv import format_date
from models.memo import Memo

logger = logging.getLogger(__name__)

# Japanese-capable fonts looked up when PDF_FONT_PATH is not set
# (Debian/Ubuntu fonts-noto-cjk, fonts-ipaexfont, fonts-takao, fonts-vlgothic, macOS)
CJK_FONT_CANDIDATES = (
    "/usr/share/fonts/opentype/noto/NotoSansCJKjp-Regular.otf",
    "/usr/share/fonts/noto-cjk/NotoSansCJKjp-Regular.otf",
    "/usr/share/fonts/truetype/noto/NotoSansJP-Regular.ttf",
    "/usr/share/fonts/opentype/ipaexfont-gothic/ipaexg.ttf",
    "/usr/share/fonts/truetype/fonts-japanese-gothic.ttf",
    "/usr/share/fonts/opentype/ipafont-gothic/ipag.ttf",
    "/usr/share/fonts/truetype/takao-gothic/TakaoPGothic.ttf",
    "/usr/share/fonts/truetype/vlgothic/VL-Gothic-Regular.ttf",
    "/Library/Fonts/Arial Unicode.ttf",
    "/System/Library/Fonts/Supplemental/Arial Unicode.ttf",
)


class PdfFontMissing(RuntimeError):
    """The memo needs glyphs outside Latin-1 and no Unicode font is available."""


def resolve_font_path(configured: Optional[str] = None) -> Optional[str]:
    """
    The configured font if given (it must exist), else the first installed
    candidate from CJK_FONT_CANDIDATES, else None.
    """
    if configured:
        if not os.path.isfile(configured):
            raise PdfFontMissing(f"PDF font not found: {configured}")
        return configured
    for path in CJK_FONT_CANDIDATES:
        if os.path.isfile(path):
            return path
    return None


def _is_latin1(values: Iterable[Optional[str]]) -> bool:
    try:
        for v in values:
            (v or "").encode("latin-1")
    except UnicodeEncodeError:
        return False
    return True


def _memo_strings(memo: Memo):
    yield memo.title
    for block in memo.content_blocks():
        yield block.category_name
        yield block.text
        yield block.caption
        yield from block.tags


# ---------- Public API -------------------------------------------------------

async def generate_memo_pdf(
    memo: Memo,
    *,
    font_path: Optional[str] = None,
    tz: Optional[str] = None,
    fetch_timeout: float = 15.0,
) -> bytes:
    """
    Compile a memo into an A4 PDF (fpdf2). Returns PDF bytes.

    Args:
        memo:          The memo to export; only blocks with content are printed.
        font_path:     TTF/OTF with Japanese glyphs. When omitted an installed
                       font is looked up (see CJK_FONT_CANDIDATES); the core
                       Helvetica font is used only for pure Latin-1 memos.
        tz:            IANA timezone used for the created date.
        fetch_timeout: Timeout (seconds) for downloading block images.

    Raises:
        PdfFontMissing: the memo has non Latin-1 text and no font is available.
    """
    font_path = resolve_font_path(font_path)
    if font_path is None and not _is_latin1(_memo_strings(memo)):
        raise PdfFontMissing("No Japanese-capable font available; set PDF_FONT_PATH")

    blocks = memo.content_blocks()

    # 1) Fetch block images up front (skip the ones we cannot load)
    images = await _fetch_images([b.image_url for b in blocks if b.image_url], fetch_timeout)

    # 2) Build report pages
    report = _ReportBuilder(
        title=memo.title,
        subtitle=format_date(memo.created_at, tz),
        author=memo.user_name,
        font_path=font_path,
    )
    for block in blocks:
        report.add_block(
            category=block.category_name,
            tags=block.tags,
            text=block.text or "",
            image=images.get(block.image_url) if block.image_url else None,
            caption=block.caption,
        )

    # 3) Export to bytes
    return report.build()


# ---------- Internals --------------------------------------------------------

async def _fetch_images(urls, timeout: float) -> Dict[str, Image.Image]:
    out: Dict[str, Image.Image] = {}
    if not urls:
        return out
    async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
        for url in urls:
            if url in out:
                continue
            try:
                r = await client.get(url)
                r.raise_for_status()
                out[url] = Image.open(io.BytesIO(r.content)).convert("RGB")
            except Exception as e:
                logger.warning(f"Skipping image {url} in PDF export: {e}")
    return out


class _ReportBuilder:
    """
    Simple vertical-flow report:
      - A4 portrait, margins (L=R=15mm, T=B=15mm)
      - Title + created date header
      - For each block: category heading, tags, text, then the image (fit width).
      - Flows onto next page when needed.
    """

    def __init__(
        self,
        *,
        title: str,
        subtitle: str = "",
        author: Optional[str] = None,
        font_path: Optional[str] = None,
    ):
        self._pdf = FPDF(orientation="P", unit="mm", format="A4")
        self._pdf.set_auto_page_break(auto=True, margin=15)
        self._pdf.add_page()
        self._pdf.set_author(author or "")
        self._pdf.set_title(title or "Memo")

        self._unicode = bool(font_path)
        if font_path:
            self._pdf.add_font("MemoFont", "", font_path)
            self._family = "MemoFont"
        else:
            self._family = "Helvetica"

        # Header
        self._font(16, bold=True)
        self._pdf.multi_cell(0, 10, title or "Memo", new_x="LMARGIN", new_y="NEXT")
        if subtitle:
            self._font(10)
            self._pdf.cell(0, 6, subtitle, new_x="LMARGIN", new_y="NEXT")
        self._pdf.ln(4)

        self.page_h = self._pdf.h
        self.content_w = self._pdf.w - self._pdf.l_margin - self._pdf.r_margin

    def _font(self, size: int, bold: bool = False):
        # a single TTF has no bold face; size carries the emphasis then
        style = "B" if bold and not self._unicode else ""
        self._pdf.set_font(self._family, style, size)

    def add_block(
        self,
        *,
        category: str,
        tags,
        text: str,
        image: Optional[Image.Image] = None,
        caption: Optional[str] = None,
    ):
        # 1) Heading
        self._font(13, bold=True)
        self._pdf.multi_cell(0, 7, category, new_x="LMARGIN", new_y="NEXT")

        if tags:
            self._font(9)
            self._pdf.multi_cell(0, 5, " ".join(tags), new_x="LMARGIN", new_y="NEXT")

        # 2) Body
        if text.strip():
            self._font(11)
            self._pdf.multi_cell(0, 6, text, new_x="LMARGIN", new_y="NEXT")

        # 3) Image (fit to content width, keep aspect ratio)
        if image is not None and image.size[0] and image.size[1]:
            self._add_image(image)
            if caption:
                self._font(9)
                self._pdf.multi_cell(0, 5, caption, new_x="LMARGIN", new_y="NEXT")

        self._pdf.ln(4)

    def _add_image(self, image: Image.Image):
        img_w_px, img_h_px = image.size
        aspect = img_h_px / img_w_px
        target_w_mm = self.content_w
        target_h_mm = target_w_mm * aspect

        # cap at half a page
        max_h_mm = (self.page_h - self._pdf.t_margin - self._pdf.b_margin) / 2
        if target_h_mm > max_h_mm:
            target_h_mm = max_h_mm
            target_w_mm = target_h_mm / aspect

        if self._pdf.get_y() + target_h_mm > self.page_h - self._pdf.b_margin:
            self._pdf.add_page()

        bio = io.BytesIO()
        image.save(bio, format="PNG")
        bio.seek(0)

        y_mm = self._pdf.get_y()
        self._pdf.image(bio, x=self._pdf.l_margin, y=y_mm, w=target_w_mm, h=target_h_mm)
        self._pdf.set_y(y_mm + target_h_mm + 2)

    def build(self) -> bytes:
        return bytes(self._pdf.output())
