"""Native text-layer extraction with pypdf.

Lines are rebuilt from the text matrix the content stream moves through; runs
set noticeably larger than the body text, or short all-bold lines, are marked
as heading candidates with a leading ``## `` so the segmenter can open a
section there.
"""

from __future__ import annotations

import asyncio
import io
import logging
from collections import Counter
from dataclasses import dataclass

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from polisrag.core.config import settings
from polisrag.core.errors import ExtractionError
from polisrag.core.models import PageText
from polisrag.extraction.base import AttemptResult, Extracted, ExtractionStrategy, QualityFailure, clean_text

logger = logging.getLogger(__name__)

HEADING_MARKER = "## "


@dataclass
class _Run:
    text: str
    x: float
    y: float
    size: float
    bold: bool


def _font_is_bold(font_dict) -> bool:
    if not font_dict:
        return False
    try:
        base = str(font_dict.get("/BaseFont", ""))
    except AttributeError:
        return False
    low = base.lower()
    return "bold" in low or "black" in low or "heavy" in low


def _collect_runs(page) -> tuple[list[_Run], str]:
    runs: list[_Run] = []

    def visitor(text, cm, tm, font_dict, font_size):
        if not text:
            return
        x = tm[4] * cm[0] + tm[5] * cm[2] + cm[4]
        y = tm[4] * cm[1] + tm[5] * cm[3] + cm[5]
        scale = abs(tm[3] or 1.0) * abs(cm[3] or 1.0)
        size = float(font_size or 0.0) * scale
        runs.append(_Run(text=text, x=x, y=y, size=size, bold=_font_is_bold(font_dict)))

    plain = page.extract_text(visitor_text=visitor) or ""
    return runs, plain


def _dominant_size(runs: list[_Run]) -> float:
    weights: Counter = Counter()
    for r in runs:
        n = len(r.text.strip())
        if n and r.size > 0:
            weights[round(r.size, 1)] += n
    if not weights:
        return 0.0
    return weights.most_common(1)[0][0]


def _split_lines(runs: list[_Run]) -> list[list[_Run]]:
    lines: list[list[_Run]] = []
    current: list[_Run] = []
    last_y: float | None = None
    for run in runs:
        for n, piece in enumerate(run.text.split("\n")):
            if n > 0 and current:
                lines.append(current)
                current = []
                last_y = None
            if not piece:
                continue
            if current and last_y is not None and abs(run.y - last_y) > max(run.size, 1.0) * 0.5:
                lines.append(current)
                current = []
            current.append(_Run(piece, run.x, run.y, run.size, run.bold))
            last_y = run.y
    if current:
        lines.append(current)
    return lines


def _join_line(line: list[_Run]) -> str:
    out = line[0].text
    prev = line[0]
    for run in line[1:]:
        # rough advance width of the previous run
        expected_x = prev.x + len(prev.text) * prev.size * 0.5
        gap = run.x - expected_x
        if gap > prev.size and not out.endswith(" ") and not run.text.startswith(" "):
            out += " "
        out += run.text
        prev = run
    return out.strip()


def layout_text(runs: list[_Run], heading_ratio: float) -> str:
    body_size = _dominant_size(runs)
    out: list[str] = []
    for line in _split_lines(runs):
        text = _join_line(line)
        if not text:
            continue
        printable = [r for r in line if r.text.strip()]
        line_size = max((r.size for r in printable), default=0.0)
        all_bold = bool(printable) and all(r.bold for r in printable)
        has_letters = any(ch.isalpha() for ch in text)
        larger = body_size > 0 and line_size >= body_size * heading_ratio
        if has_letters and len(text) <= 160 and (larger or (all_bold and len(text) <= 120)):
            text = HEADING_MARKER + text
        out.append(text)
    return "\n".join(out)


class StructuredStrategy(ExtractionStrategy):
    name = "structured"

    def __init__(self, heading_ratio: float | None = None):
        self.heading_ratio = heading_ratio or settings.HEADING_FONT_RATIO

    async def attempt(self, data: bytes, file_name: str) -> AttemptResult:
        # pypdf is CPU-bound; keep the event loop free for other documents
        return await asyncio.to_thread(self._extract, data)

    def _extract(self, data: bytes) -> AttemptResult:
        try:
            reader = PdfReader(io.BytesIO(data))
            total = len(reader.pages)
        except PdfReadError as e:
            raise ExtractionError(f"unreadable PDF structure: {e}") from e
        pages: list[PageText] = []
        for number, page in enumerate(reader.pages, 1):
            runs, plain = _collect_runs(page)
            text = layout_text(runs, self.heading_ratio) if runs else ""
            if not text.strip():
                text = plain
            text = clean_text(text)
            if text:
                pages.append(PageText(page=number, text=text))
        if not pages:
            return QualityFailure(f"no text layer on {total} page(s)")
        return Extracted(pages=pages, method="structured", total_pages=total)
